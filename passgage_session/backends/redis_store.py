"""Remote cache/store backend on top of ``redis.asyncio``."""
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..exceptions import BackendUnavailable
from .abstract import AbstractBackend

logger = logging.getLogger("passgage.backends")


class RedisBackend(AbstractBackend):
    """Session records kept as plain Redis strings with ``EX`` expiry."""

    name = "redis"
    native_expiry = True
    durable = True

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        url: str = None,
        client: Any = None,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        scan_count: int = 500,
    ):
        if client is None:
            if not url:
                raise ValueError("RedisBackend needs a url or a client")
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self._redis = client
        self._scan_count = scan_count

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def get(self, key: str) -> Optional[str]:
        try:
            return self._text(await self._redis.get(key))
        except RedisError as err:
            logger.warning("Redis get failed: %s", type(err).__name__)
            raise BackendUnavailable(f"Redis read failed: {type(err).__name__}") from err

    async def put(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._redis.set(key, value, ex=max(1, int(ttl)))
        except RedisError as err:
            logger.warning("Redis set failed: %s", type(err).__name__)
            raise BackendUnavailable(f"Redis write failed: {type(err).__name__}") from err

    async def replace(self, key: str, value: str, ttl: int) -> bool:
        """``SET ... XX``: never recreates a key deleted by another instance."""
        try:
            return bool(await self._redis.set(key, value, ex=max(1, int(ttl)), xx=True))
        except RedisError as err:
            logger.warning("Redis set failed: %s", type(err).__name__)
            raise BackendUnavailable(f"Redis write failed: {type(err).__name__}") from err

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as err:
            raise BackendUnavailable(f"Redis delete failed: {type(err).__name__}") from err

    async def list_by_prefix(self, prefix: str) -> list[str]:
        keys = []
        try:
            async for key in self._redis.scan_iter(match=f"{prefix}*", count=self._scan_count):
                keys.append(self._text(key))
        except RedisError as err:
            raise BackendUnavailable(f"Redis scan failed: {type(err).__name__}") from err
        return keys

    async def close(self) -> None:
        await self._redis.aclose()
