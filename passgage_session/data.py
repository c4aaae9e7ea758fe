"""
Session data model.

``SessionData`` is the server-held record binding an opaque identifier to a
user's encrypted credentials and current authorization mode. It is owned
and mutated only by :class:`passgage_session.storage.SessionStore`.
``AuthContext`` is the per-request view derived from it.
"""
import time
import hashlib
import secrets
from enum import Enum
from typing import Any, Optional
from datetime import datetime, timedelta, timezone

import orjson
from pydantic import BaseModel, ConfigDict, Field


class AuthMode(str, Enum):
    NONE = "none"
    PERSONAL = "personal"
    ADMINISTRATIVE = "administrative"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """Opaque, unguessable session id.

    32 bytes from the OS CSPRNG mixed with a nanosecond timestamp and
    hashed, so the id carries no readable meaning.
    """
    seed = secrets.token_bytes(32) + str(time.time_ns()).encode("ascii")
    return hashlib.sha256(seed).hexdigest()


class Credentials(BaseModel):
    """Stored credentials. Every secret field holds cipher output only."""

    administrative_key: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def secret_fields(self) -> tuple[str, ...]:
        return ("administrative_key", "password", "token", "refresh_token")

    def modes(self) -> list[AuthMode]:
        available = []
        if self.administrative_key:
            available.append(AuthMode.ADMINISTRATIVE)
        if self.token or (self.email and self.password):
            available.append(AuthMode.PERSONAL)
        return available


class DecryptedCredentials(BaseModel):
    """Transient plaintext view. Never logged, never sent to a caller."""

    model_config = ConfigDict(frozen=True)

    administrative_key: Optional[str] = Field(default=None, repr=False)
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)


class SessionData(BaseModel):
    id: str = Field(default_factory=generate_session_id)
    auth_mode: AuthMode = AuthMode.NONE
    credentials: Credentials = Field(default_factory=Credentials)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    last_used_at: datetime = Field(default_factory=utcnow)

    def __repr__(self) -> str:
        return (
            f'<Passgage-Session [mode:{self.auth_mode.value}, '
            f'expires:{self.expires_at.isoformat()}]>'
        )

    __str__ = __repr__

    @classmethod
    def new(cls, credentials: Credentials, auth_mode: AuthMode, timeout: int) -> "SessionData":
        now = utcnow()
        return cls(
            auth_mode=auth_mode,
            credentials=credentials,
            created_at=now,
            expires_at=now + timedelta(seconds=timeout),
            last_used_at=now,
        )

    @property
    def available_modes(self) -> list[AuthMode]:
        return self.credentials.modes()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def ttl(self, now: Optional[datetime] = None) -> int:
        """Whole seconds left before expiry (may be negative)."""
        return int((self.expires_at - (now or utcnow())).total_seconds())

    def touch(self) -> None:
        self.last_used_at = utcnow()

    def to_record(self) -> str:
        """Serialize for a backend. Secrets are already ciphertext."""
        return orjson.dumps(self.model_dump(mode="json")).decode("utf-8")

    @classmethod
    def from_record(cls, record: Any) -> "SessionData":
        if isinstance(record, (bytes, bytearray)):
            record = record.decode("utf-8")
        return cls.model_validate(orjson.loads(record))

    def status(self) -> dict[str, Any]:
        return {
            "sessionId": self.id,
            "currentMode": self.auth_mode.value,
            "availableModes": [m.value for m in self.available_modes],
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "lastUsed": self.last_used_at.isoformat(),
        }


class AuthContext(BaseModel):
    """Per-request authorization view; carries only the active credential."""

    model_config = ConfigDict(frozen=True)

    mode: AuthMode
    administrative_key: Optional[str] = Field(default=None, repr=False)
    personal_token: Optional[str] = Field(default=None, repr=False)

    @property
    def authorization(self) -> str:
        """Value for the outbound ``Authorization`` header."""
        secret = (
            self.administrative_key
            if self.mode is AuthMode.ADMINISTRATIVE
            else self.personal_token
        )
        return f"Bearer {secret}"
