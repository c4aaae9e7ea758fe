"""Pluggable key-value persistence for session records."""
from typing import Any

from .abstract import AbstractBackend
from .memory import MemoryBackend


def get_backend(name: str = "memory", **kwargs: Any) -> AbstractBackend:
    """Build a backend from its configured name (``memory``, ``kv``, ``redis``)."""
    name = (name or "memory").lower()
    if name == "memory":
        return MemoryBackend(**kwargs)
    if name == "kv":
        from .kv import KVBackend
        return KVBackend(**kwargs)
    if name == "redis":
        from .redis_store import RedisBackend
        return RedisBackend(**kwargs)
    raise ValueError(f"Unsupported session backend: {name}")


__all__ = ["AbstractBackend", "MemoryBackend", "get_backend"]
