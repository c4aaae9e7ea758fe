import base64
import secrets
from typing import Optional

import pytest

from passgage_session.backends import MemoryBackend
from passgage_session.exceptions import BackendUnavailable, InvalidCredentials
from passgage_session.storage import SessionStore
from passgage_session.upstream import LoginResult
from passgage_session.vault.config import VaultConfig
from passgage_session.vault.crypto import CredentialCipher


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyBackend(MemoryBackend):
    """Memory backend that can be switched off."""

    def __init__(self):
        super().__init__()
        self.down = False

    def _check(self):
        if self.down:
            raise BackendUnavailable("backend down")

    async def get(self, key):
        self._check()
        return await super().get(key)

    async def put(self, key, value, ttl):
        self._check()
        await super().put(key, value, ttl)

    async def replace(self, key, value, ttl):
        self._check()
        return await super().replace(key, value, ttl)

    async def delete(self, key):
        self._check()
        return await super().delete(key)


class FakeUpstream:
    """Stands in for PassgageAuthClient."""

    def __init__(self, password: str = "p", api_key: str = "admin-key"):
        self.password = password
        self.api_key = api_key
        self.logins = 0
        self.refreshes = 0
        self.refuse_refresh = False

    async def login(self, email: str, password: str) -> LoginResult:
        self.logins += 1
        if password != self.password:
            raise InvalidCredentials("Login failed: invalid credentials")
        return LoginResult(token=f"jwt-{self.logins}", refresh_token=f"rt-{self.logins}")

    async def refresh(self, token: str) -> LoginResult:
        self.refreshes += 1
        if self.refuse_refresh:
            raise InvalidCredentials("Token refresh rejected")
        return LoginResult(token=f"{token}-r{self.refreshes}")

    async def verify_api_key(self, api_key: str) -> bool:
        return api_key == self.api_key

    async def close(self) -> None:
        pass


@pytest.fixture
def master_keys():
    return {1: secrets.token_bytes(32), 2: secrets.token_bytes(32)}


@pytest.fixture
def vault_config(master_keys):
    return VaultConfig(master_keys=master_keys, active_key_id=1)


@pytest.fixture
def cipher(vault_config):
    return CredentialCipher(vault_config)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(cipher):
    """Cache-only store (no durable persistence)."""
    return SessionStore(cipher, session_timeout=3600)


@pytest.fixture
def durable_store(cipher, backend):
    """Store persisting every session to a memory backend."""
    return SessionStore(cipher, backend, session_timeout=3600, cache_ttl=60)


@pytest.fixture
def upstream():
    return FakeUpstream()


def b64key(raw: Optional[bytes] = None) -> str:
    return base64.b64encode(raw or secrets.token_bytes(32)).decode("ascii")
