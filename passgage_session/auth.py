"""Auth Context Resolver: session id -> per-request authorization context."""
import logging
from typing import Optional

from .data import AuthContext, AuthMode
from .exceptions import SessionNotFound
from .storage import SessionStore, short_id

logger = logging.getLogger("passgage.auth")


class AuthContextResolver:
    """Builds a fresh :class:`AuthContext` for every request.

    Only the ``last_used_at`` touch done by ``get_session`` changes state.
    The context carries the credential of the active mode and nothing else.
    """

    def __init__(self, store: SessionStore):
        self._store = store

    async def resolve(self, session_id: Optional[str]) -> Optional[AuthContext]:
        if not session_id:
            return None
        session = await self._store.get_session(session_id)
        if session is None or session.auth_mode is AuthMode.NONE:
            return None
        credentials = await self._store.get_credentials(session_id)
        if credentials is None:
            return None
        if session.auth_mode is AuthMode.ADMINISTRATIVE:
            if not credentials.administrative_key:
                return None
            return AuthContext(
                mode=AuthMode.ADMINISTRATIVE,
                administrative_key=credentials.administrative_key,
            )
        if not credentials.token:
            logger.info(
                "Session %s is in personal mode without a token", short_id(session_id),
            )
            return None
        return AuthContext(mode=AuthMode.PERSONAL, personal_token=credentials.token)

    async def require(self, session_id: Optional[str]) -> AuthContext:
        """Like :meth:`resolve`, raising ``SessionNotFound`` on failure."""
        context = await self.resolve(session_id)
        if context is None:
            raise SessionNotFound(session_id)
        return context
