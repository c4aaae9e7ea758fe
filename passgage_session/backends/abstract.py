"""
Key-Value Backend: storage-agnostic interface used by the session store.

Implementations must make a key written with a TTL unreadable after that
TTL elapses, at least on the next ``get``.
"""
from abc import ABC, abstractmethod
from typing import Optional


class AbstractBackend(ABC):
    """Async key-value persistence for session records."""

    name: str = "abstract"
    # True when the store expires keys on its own (no sweeper needed).
    native_expiry: bool = False
    # True when records survive the process and are shared between instances.
    durable: bool = False

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    async def put(self, key: str, value: str, ttl: int) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

    async def replace(self, key: str, value: str, ttl: int) -> bool:
        """Overwrite ``key`` only if it still exists. Returns False otherwise.

        The default is read-then-put; a delete landing between the two
        calls can still be undone. Backends with a conditional write
        override it.
        """
        if await self.get(key) is None:
            return False
        await self.put(key, value, ttl)
        return True

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed, when known."""

    @abstractmethod
    async def list_by_prefix(self, prefix: str) -> list[str]:
        """Return the live keys starting with ``prefix``."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} durable={self.durable}>"
