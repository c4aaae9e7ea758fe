"""
Durable KV service backend reached over its REST API.

Uses the Cloudflare Workers KV layout::

    GET/PUT/DELETE {api}/accounts/{account}/storage/kv/namespaces/{ns}/values/{key}
    GET            {api}/accounts/{account}/storage/kv/namespaces/{ns}/keys?prefix=

The service expires keys itself; its minimum ``expiration_ttl`` is 60 seconds.
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp

from ..exceptions import BackendUnavailable
from .abstract import AbstractBackend

logger = logging.getLogger("passgage.backends")

DEFAULT_API_URL = "https://api.cloudflare.com/client/v4"
MIN_TTL = 60


class KVBackend(AbstractBackend):
    name = "kv"
    native_expiry = True
    durable = True

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not (account_id and namespace_id and api_token):
            raise ValueError("KVBackend needs account_id, namespace_id and api_token")
        self._base = (
            f"{api_url.rstrip('/')}/accounts/{account_id}"
            f"/storage/kv/namespaces/{namespace_id}"
        )
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers, timeout=self._timeout,
            )
            self._owns_session = True
        return self._session

    def _value_url(self, key: str) -> str:
        return f"{self._base}/values/{quote(key, safe='')}"

    @staticmethod
    def _unavailable(operation: str, err: Exception) -> BackendUnavailable:
        logger.warning("KV %s failed: %s", operation, type(err).__name__)
        return BackendUnavailable(f"KV {operation} failed: {type(err).__name__}")

    @staticmethod
    def _check(operation: str, response: aiohttp.ClientResponse) -> None:
        if response.status >= 400:
            logger.warning("KV %s answered HTTP %d", operation, response.status)
            raise BackendUnavailable(f"KV {operation} failed with HTTP {response.status}")

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self._client().get(self._value_url(key), headers=self._headers) as response:
                if response.status == 404:
                    return None
                self._check("get", response)
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise self._unavailable("get", err) from err

    async def put(self, key: str, value: str, ttl: int) -> None:
        params = {"expiration_ttl": str(max(MIN_TTL, int(ttl)))}
        try:
            async with self._client().put(
                self._value_url(key),
                params=params,
                data=value.encode("utf-8"),
                headers={**self._headers, "Content-Type": "text/plain"},
            ) as response:
                self._check("put", response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise self._unavailable("put", err) from err

    async def delete(self, key: str) -> bool:
        try:
            async with self._client().delete(self._value_url(key), headers=self._headers) as response:
                if response.status == 404:
                    return False
                self._check("delete", response)
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise self._unavailable("delete", err) from err

    async def list_by_prefix(self, prefix: str) -> list[str]:
        keys: list[str] = []
        cursor = None
        try:
            while True:
                params = {"prefix": prefix, "limit": "1000"}
                if cursor:
                    params["cursor"] = cursor
                async with self._client().get(
                    f"{self._base}/keys", params=params, headers=self._headers,
                ) as response:
                    self._check("list", response)
                    payload = await response.json()
                keys.extend(item["name"] for item in payload.get("result", []))
                cursor = (payload.get("result_info") or {}).get("cursor")
                if not cursor:
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise self._unavailable("list", err) from err
        return keys

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
