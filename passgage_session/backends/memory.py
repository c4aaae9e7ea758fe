"""In-process map backend for single-instance deployments and tests."""
import time
import logging
from typing import Callable, Optional

from .abstract import AbstractBackend

logger = logging.getLogger("passgage.backends")


class MemoryBackend(AbstractBackend):
    """Dict of ``key -> (value, deadline)`` with lazy expiry on read."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, deadline = item
        if self._clock() >= deadline:
            self._data.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def replace(self, key: str, value: str, ttl: int) -> bool:
        if self._live(key) is None:
            return False
        self._data[key] = (value, self._clock() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list_by_prefix(self, prefix: str) -> list[str]:
        return [
            key for key in list(self._data)
            if key.startswith(prefix) and self._live(key) is not None
        ]

    def sweep(self) -> int:
        """Drop every expired key. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, deadline) in self._data.items() if now >= deadline]
        for key in expired:
            self._data.pop(key, None)
        if expired:
            logger.debug("Memory backend swept %d expired key(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)
