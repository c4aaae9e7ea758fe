"""
SessionStore: owner of every ``SessionData`` record.

Provides the public, asynchronous API of the broker:
- ``create_session(...)``: validate credentials, encrypt secrets, persist
- ``get_session(id)``: cache → backend, lazy expiry, ``last_used_at`` touch
- ``switch_mode(id, mode)`` / ``update_token(id, token, refresh)``
- ``destroy_session(id)``: idempotent removal from cache and backend
- ``get_credentials(id)``: transient decrypted view for internal callers

The in-process cache is a latency optimization only. When a backend is
configured it is the source of truth: cached entries older than
``cache_ttl`` are re-read from it, so a session destroyed or switched on
another instance is seen here within that window. Writes to an existing
session only land while its key is still in the backend, so a read or a
mode switch never revives a session destroyed elsewhere.

Security Note:
    Never log plaintext or ciphertext values, and never the full session
    id. Only log id prefixes, modes and counts.
"""
import asyncio
import time
import logging
from typing import Callable, Optional, Union

from .backends import AbstractBackend
from .conf import (
    DEFAULT_SESSION_TIMEOUT,
    MIN_BACKEND_TTL,
    SESSION_KEY_PREFIX,
)
from .data import (
    AuthMode,
    Credentials,
    DecryptedCredentials,
    SessionData,
    utcnow,
)
from .exceptions import (
    BackendUnavailable,
    InvalidCredentials,
    ModeUnavailable,
    SessionNotFound,
)
from .vault.crypto import Cipher

logger = logging.getLogger("passgage.session")


def short_id(session_id: str) -> str:
    return f"{session_id[:8]}…" if session_id else "-"


class _CacheEntry:
    __slots__ = ("session", "cached_at", "persisted")

    def __init__(self, session: SessionData, cached_at: float, persisted: bool = True):
        self.session = session
        self.cached_at = cached_at
        # False while a record created during a backend outage is unwritten
        self.persisted = persisted


class SessionStore:
    """Creates, resolves, mutates and expires sessions.

    Args:
        cipher: Process credential cipher.
        backend: Optional key-value backend. When given, every session is
            persisted there and the backend is the source of truth.
        session_timeout: Session lifetime in seconds.
        cache_ttl: Seconds a cached record is trusted before it is re-read
            from the backend. Ignored without a backend.
        sweep_interval: Seconds between background expiry sweeps; 0
            disables the sweeper.
    """

    def __init__(
        self,
        cipher: Cipher,
        backend: Optional[AbstractBackend] = None,
        *,
        session_timeout: int = DEFAULT_SESSION_TIMEOUT,
        cache_ttl: int = 60,
        sweep_interval: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cipher = cipher
        self._backend = backend
        self._timeout = session_timeout
        self._cache_ttl = cache_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def persistent(self) -> bool:
        return self._backend is not None

    @property
    def session_timeout(self) -> int:
        return self._timeout

    @property
    def backend(self) -> Optional[AbstractBackend]:
        return self._backend

    # ------------------------------------------------------------------
    # Backend helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    def _cache_put(self, session: SessionData) -> None:
        self._cache[session.id] = _CacheEntry(session, self._clock())

    async def _persist(self, session: SessionData, existing: bool = False) -> bool:
        """Write the record with its remaining lifetime as TTL.

        With ``existing`` the write only lands if the key is still in the
        backend, so a session destroyed by another instance is never
        recreated. Returns False in that case and drops the cached copy.
        """
        if self._backend is None:
            return True
        key = self._key(session.id)
        ttl = max(MIN_BACKEND_TTL, session.ttl())
        try:
            entry = self._cache.get(session.id)
            if not existing or (entry is not None and not entry.persisted):
                await self._backend.put(key, session.to_record(), ttl)
                if entry is not None:
                    entry.persisted = True
                return True
            if await self._backend.replace(key, session.to_record(), ttl):
                return True
            self._cache.pop(session.id, None)
            logger.info(
                "Session %s was removed from the backend", short_id(session.id),
            )
            return False
        except BackendUnavailable as err:
            logger.error(
                "Failed to persist session %s: %s", short_id(session.id), err.message,
            )
            raise BackendUnavailable(
                f"Session could not be persisted: {err.message}",
                session_id=session.id,
            ) from err

    async def _load(self, session_id: str) -> Optional[SessionData]:
        record = await self._backend.get(self._key(session_id))
        if record is None:
            return None
        return SessionData.from_record(record)

    async def _expire(self, session_id: str) -> None:
        self._cache.pop(session_id, None)
        if self._backend is not None:
            try:
                await self._backend.delete(self._key(session_id))
            except BackendUnavailable as err:
                logger.warning(
                    "Could not delete expired session %s: %s",
                    short_id(session_id), err.message,
                )
        logger.debug("Session %s expired", short_id(session_id))

    async def _fetch(self, session_id: str) -> Optional[SessionData]:
        """Return the live session without touching it."""
        if not session_id:
            return None
        entry = self._cache.get(session_id)
        session = entry.session if entry else None
        stale = (
            entry is not None
            and self._backend is not None
            and self._clock() - entry.cached_at >= self._cache_ttl
        )
        if self._backend is not None and (entry is None or stale):
            try:
                loaded = await self._load(session_id)
            except BackendUnavailable:
                if session is None:
                    raise
                logger.warning(
                    "Backend unavailable, serving cached session %s",
                    short_id(session_id),
                )
            else:
                if loaded is not None:
                    session = loaded
                    self._cache_put(session)
                elif entry is None or entry.persisted:
                    self._cache.pop(session_id, None)
                    return None
        if session is None:
            return None
        if session.is_expired():
            await self._expire(session_id)
            return None
        return session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_session(
        self,
        *,
        administrative_key: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> str:
        """Create a session from at least one recognizable credential form.

        Returns:
            The new opaque session id.

        Raises:
            InvalidCredentials: If no administrative key, email+password or
                personal token was supplied.
            BackendUnavailable: If persisting failed. ``session_id`` is set
                on the error and the session stays usable in this process.
        """
        if administrative_key:
            mode = AuthMode.ADMINISTRATIVE
        elif (email and password) or token:
            mode = AuthMode.PERSONAL
        else:
            raise InvalidCredentials(
                "Provide an administrative key, an email and password, "
                "or a personal token"
            )

        def seal(value: Optional[str]) -> Optional[str]:
            return self._cipher.encrypt(value) if value else None

        credentials = Credentials(
            administrative_key=seal(administrative_key),
            email=email or None,
            password=seal(password),
            token=seal(token),
            refresh_token=seal(refresh_token),
        )
        session = SessionData.new(credentials, mode, self._timeout)
        self._cache[session.id] = _CacheEntry(session, self._clock(), persisted=False)
        logger.info(
            "Session %s created: mode=%s", short_id(session.id), mode.value,
        )
        await self._persist(session)
        return session.id

    async def get_session(self, session_id: str) -> Optional[SessionData]:
        """Return the live session, or None if absent or expired.

        Raises:
            BackendUnavailable: If the session is not cached and the
                backend cannot be reached (retryable).
        """
        session = await self._fetch(session_id)
        if session is None:
            return None
        session.touch()
        if self._backend is not None:
            try:
                if not await self._persist(session, existing=True):
                    return None
            except BackendUnavailable:
                logger.warning(
                    "last_used_at of session %s not written back",
                    short_id(session_id),
                )
        return session

    async def switch_mode(self, session_id: str, mode: Union[AuthMode, str]) -> bool:
        """Switch the active authorization mode.

        Raises:
            SessionNotFound: If the session is absent or expired.
            ModeUnavailable: If the session has no credential for ``mode``.
        """
        mode = AuthMode(mode)
        session = await self._fetch(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        available = session.available_modes
        if mode not in available:
            logger.info(
                "Session %s: switch to %s refused", short_id(session_id), mode.value,
            )
            raise ModeUnavailable(mode.value, [m.value for m in available])
        session.auth_mode = mode
        session.touch()
        if not await self._persist(session, existing=True):
            raise SessionNotFound(session_id)
        logger.info("Session %s switched to %s", short_id(session_id), mode.value)
        return True

    async def update_token(
        self,
        session_id: str,
        token: str,
        refresh_token: Optional[str] = None,
    ) -> bool:
        """Store a new personal token after an upstream refresh round trip."""
        session = await self._fetch(session_id)
        if session is None:
            return False
        session.credentials.token = self._cipher.encrypt(token)
        session.credentials.refresh_token = (
            self._cipher.encrypt(refresh_token) if refresh_token else None
        )
        session.touch()
        if not await self._persist(session, existing=True):
            return False
        logger.debug("Session %s token updated", short_id(session_id))
        return True

    async def destroy_session(self, session_id: str) -> bool:
        """Remove the session everywhere. Returns False if it did not exist."""
        if not session_id:
            return False
        existed = self._cache.pop(session_id, None) is not None
        if self._backend is not None:
            key = self._key(session_id)
            if not existed:
                existed = await self._backend.get(key) is not None
            await self._backend.delete(key)
        if existed:
            logger.info("Session %s destroyed", short_id(session_id))
        return existed

    async def get_credentials(self, session_id: str) -> Optional[DecryptedCredentials]:
        """Decrypted credentials for internal use only (auth context, upstream login)."""
        session = await self._fetch(session_id)
        if session is None:
            return None
        return self.decrypt_credentials(session)

    def decrypt_credentials(self, session: SessionData) -> DecryptedCredentials:
        stored = session.credentials

        def unseal(value: Optional[str]) -> Optional[str]:
            return self._cipher.decrypt(value) if value else None

        return DecryptedCredentials(
            administrative_key=unseal(stored.administrative_key),
            email=stored.email,
            password=unseal(stored.password),
            token=unseal(stored.token),
            refresh_token=unseal(stored.refresh_token),
        )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def count(self) -> int:
        """Number of live sessions cached in this process."""
        now = utcnow()
        return sum(1 for e in self._cache.values() if not e.session.is_expired(now))

    def sweep_expired(self) -> int:
        """Drop expired sessions from the in-process cache."""
        now = utcnow()
        expired = [
            sid for sid, entry in self._cache.items() if entry.session.is_expired(now)
        ]
        for sid in expired:
            self._cache.pop(sid, None)
        sweep = getattr(self._backend, "sweep", None)
        if sweep is not None and not self._backend.native_expiry:
            sweep()
        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep_expired()

    def start_sweeper(self) -> Optional[asyncio.Task]:
        """Start the periodic sweep, unless the backend expires keys itself."""
        if self._sweep_interval <= 0:
            return None
        if self._backend is not None and self._backend.native_expiry:
            logger.debug("Backend %s expires keys natively; sweeper disabled", self._backend.name)
            return None
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        return self._sweeper

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def close(self) -> None:
        await self.stop()
        if self._backend is not None:
            await self._backend.close()
