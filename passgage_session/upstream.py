"""
Minimal Passgage auth client used by the session operations.

Only the calls the broker needs: email/password login, token refresh and an
API-key check. The full REST catalogue lives elsewhere.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from .exceptions import InvalidCredentials, UpstreamUnavailable

logger = logging.getLogger("passgage.upstream")

LOGIN_PATH = "/api/public/auth/login"
REFRESH_PATH = "/api/public/auth/refresh"
KEY_CHECK_PATH = "/api/public/v1/users"

_REJECTED = (401, 403, 422)


@dataclass(frozen=True)
class LoginResult:
    token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None

    def __repr__(self) -> str:
        return f"LoginResult(expires_at={self.expires_at!r})"


class PassgageAuthClient:
    def __init__(
        self,
        base_url: str = "https://api.passgage.com",
        *,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _post(self, path: str, *, json: Any = None, headers: dict = None) -> tuple[int, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._client().post(url, json=json, headers=headers) as response:
                status = response.status
                if response.content_type == "application/json":
                    return status, await response.json()
                return status, None
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning("Passgage request to %s failed: %s", path, type(err).__name__)
            raise UpstreamUnavailable(f"Passgage API unreachable: {type(err).__name__}") from err

    @staticmethod
    def _login_result(payload: Any) -> LoginResult:
        data = (payload or {}).get("data") or {}
        token = data.get("token")
        if not token:
            raise InvalidCredentials("Login failed: no token returned")
        return LoginResult(
            token=token,
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )

    async def login(self, email: str, password: str) -> LoginResult:
        """Exchange email/password for a personal bearer token."""
        status, payload = await self._post(
            LOGIN_PATH, json={"email": email, "password": password},
        )
        if status in _REJECTED or (payload and payload.get("success") is False):
            raise InvalidCredentials("Login failed: invalid credentials")
        if status >= 400:
            raise UpstreamUnavailable(f"Passgage login answered HTTP {status}")
        return self._login_result(payload)

    async def refresh(self, token: str) -> LoginResult:
        """Obtain a new personal token from a still-valid one."""
        status, payload = await self._post(
            REFRESH_PATH, headers={"Authorization": f"Bearer {token}"},
        )
        if status in _REJECTED:
            raise InvalidCredentials("Token refresh rejected, please log in again")
        if status >= 400:
            raise UpstreamUnavailable(f"Passgage refresh answered HTTP {status}")
        return self._login_result(payload)

    async def verify_api_key(self, api_key: str) -> bool:
        """True when the administrative key is accepted upstream."""
        url = f"{self.base_url}{KEY_CHECK_PATH}"
        try:
            async with self._client().get(
                url,
                params={"per_page": "1"},
                headers={"Authorization": f"Bearer {api_key}"},
            ) as response:
                if response.status in _REJECTED:
                    return False
                if response.status >= 400:
                    raise UpstreamUnavailable(
                        f"Passgage key check answered HTTP {response.status}"
                    )
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise UpstreamUnavailable(
                f"Passgage API unreachable: {type(err).__name__}"
            ) from err

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
