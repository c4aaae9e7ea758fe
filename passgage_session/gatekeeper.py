"""
Request Gatekeeper: the request-time layer in front of every operation.

For each inbound request, in this order:
1. derive the Client Identity from network address and agent string;
2. run the synchronous rate-limit check (before any session lookup),
   then refuse operation names that are not registered;
3. extract the session id from ``X-Session-ID`` or ``Authorization: Bearer``;
4. let public operations through without a session;
5. otherwise resolve an ``AuthContext`` or refuse with 401;
6. after the downstream call, record success or failure for the client.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Container, Iterable, Mapping, Optional

from aiohttp import web
from multidict import CIMultiDict

from .auth import AuthContextResolver
from .conf import (
    AUTH_CONTEXT_KEY,
    CLIENT_IDENTITY_KEY,
    SESSION_ID_HEADER,
    SESSION_REQUEST_KEY,
)
from .data import AuthContext
from .exceptions import (
    AuthenticationRequired,
    BrokerError,
    RateLimitExceeded,
    UnknownOperation,
)
from .responses import error_response
from .security import (
    RateLimitDecision,
    SecurityMonitor,
    SlidingWindowRateLimiter,
    client_identity,
)

logger = logging.getLogger("passgage.gatekeeper")

PUBLIC_OPERATIONS = frozenset({
    "session_login",
    "session_login_with_key",
    "session_status",
    "session_switch_mode",
    "session_logout",
    "session_refresh",
    "health",
})

# seconds between limiter and monitor cleanups
CLEANUP_INTERVAL = 15 * 60

_ADDRESS_HEADERS = ("X-Forwarded-For", "CF-Connecting-IP", "X-Real-IP")


@dataclass(frozen=True)
class Admission:
    """Outcome of a successful gate check."""

    client_id: str
    operation: str
    session_id: Optional[str] = None
    auth_context: Optional[AuthContext] = None


class RequestGatekeeper:
    def __init__(
        self,
        resolver: AuthContextResolver,
        limiter: SlidingWindowRateLimiter,
        monitor: Optional[SecurityMonitor] = None,
        *,
        public_operations: Iterable[str] = PUBLIC_OPERATIONS,
        known_operations: Optional[Container[str]] = None,
        session_header: str = SESSION_ID_HEADER,
        cleanup_interval: float = CLEANUP_INTERVAL,
    ):
        self.resolver = resolver
        self.limiter = limiter
        self.monitor = monitor or SecurityMonitor()
        self.public_operations = frozenset(public_operations)
        # None accepts any operation name
        self.known_operations = known_operations
        self.session_header = session_header
        self.cleanup_interval = cleanup_interval
        self._cleaner: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    @staticmethod
    def client_address(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
        headers = CIMultiDict(headers)
        for name in _ADDRESS_HEADERS:
            value = headers.get(name)
            if value:
                return value.split(",")[0].strip()
        return peer or "unknown"

    def identify(self, headers: Mapping[str, str], peer: Optional[str] = None) -> str:
        headers = CIMultiDict(headers)
        return client_identity(
            self.client_address(headers, peer), headers.get("User-Agent"),
        )

    def extract_session_id(self, headers: Mapping[str, str]) -> Optional[str]:
        headers = CIMultiDict(headers)
        session_id = headers.get(self.session_header, "").strip()
        if session_id:
            return session_id
        authorization = headers.get("Authorization", "")
        scheme, _, credential = authorization.partition(" ")
        if scheme.lower() == "bearer" and credential.strip():
            return credential.strip()
        return None

    def requires_auth(self, operation: str) -> bool:
        return operation not in self.public_operations

    def is_known(self, operation: str) -> bool:
        return self.known_operations is None or operation in self.known_operations

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def check_rate_limit(self, client_id: str, operation: str = "") -> RateLimitDecision:
        """Synchronous quota check; raises ``RateLimitExceeded`` when refused."""
        blocked = self.monitor.blocked_for(client_id)
        if blocked:
            self.monitor.refuse(client_id)
            raise RateLimitExceeded(retry_after=blocked, message="Client temporarily blocked")
        decision = self.limiter.check(client_id)
        if not decision.allowed:
            self.monitor.record_event(
                "rate_limit", client_id, "low", limit=self.limiter.limit,
            )
            self.monitor.record(client_id, operation, False)
            logger.info("Rate limit exceeded for client %s", client_id)
            raise RateLimitExceeded(retry_after=decision.retry_after)
        return decision

    async def admit(
        self,
        operation: str,
        headers: Mapping[str, str],
        peer: Optional[str] = None,
    ) -> Admission:
        """Run the gate for one request.

        Raises:
            RateLimitExceeded: Quota exhausted (checked first).
            UnknownOperation: No such operation is registered.
            AuthenticationRequired: Operation needs a session and none resolved.
            BackendUnavailable: Session storage unreachable (retryable).
        """
        headers = CIMultiDict(headers)
        client_id = self.identify(headers, peer)
        self.check_rate_limit(client_id, operation)
        if not self.is_known(operation):
            self.monitor.record(client_id, operation, False)
            raise UnknownOperation(f"Unknown operation: {operation}")
        session_id = self.extract_session_id(headers)
        if not self.requires_auth(operation):
            return Admission(client_id, operation, session_id)
        context = await self.resolver.resolve(session_id)
        if context is None:
            self.monitor.record(client_id, operation, False, session_id)
            raise AuthenticationRequired()
        return Admission(client_id, operation, session_id, context)

    def record(self, admission: Admission, success: bool) -> None:
        self.monitor.record(
            admission.client_id, admission.operation, success, admission.session_id,
        )

    async def guard(
        self,
        operation: str,
        headers: Mapping[str, str],
        call: Callable[[Admission], Awaitable[Any]],
        peer: Optional[str] = None,
    ) -> Any:
        """Admit, run ``call`` with the admission, then record the outcome."""
        admission = await self.admit(operation, headers, peer)
        success = False
        try:
            result = await call(admission)
            success = True
            return result
        finally:
            self.record(admission, success)

    # ------------------------------------------------------------------
    # aiohttp integration
    # ------------------------------------------------------------------

    @staticmethod
    def operation_name(request: web.Request) -> str:
        operation = request.match_info.get("operation")
        if operation:
            return operation
        route = request.match_info.route
        return getattr(route, "name", None) or request.path

    def middleware(self):
        """aiohttp middleware applying the gate to every request."""

        @web.middleware
        async def gatekeeper_middleware(request: web.Request, handler):
            operation = self.operation_name(request)
            try:
                admission = await self.admit(operation, request.headers, request.remote)
            except RateLimitExceeded as err:
                return error_response(err, headers={
                    "Retry-After": str(err.retry_after),
                    "X-RateLimit-Remaining": str(err.remaining),
                })
            except BrokerError as err:
                return error_response(err)
            request[CLIENT_IDENTITY_KEY] = admission.client_id
            request[SESSION_REQUEST_KEY] = admission.session_id
            request[AUTH_CONTEXT_KEY] = admission.auth_context
            success = False
            try:
                response = await handler(request)
                success = response.status < 400
                return response
            finally:
                self.record(admission, success)

        return gatekeeper_middleware

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Forget idle rate-limit keys, idle clients and old events."""
        self.limiter.cleanup()
        self.monitor.cleanup()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    def start_cleanup(self) -> Optional[asyncio.Task]:
        """Start the periodic cleanup; a non-positive interval disables it."""
        if self.cleanup_interval <= 0:
            return None
        if self._cleaner is None or self._cleaner.done():
            self._cleaner = asyncio.get_running_loop().create_task(self._cleanup_loop())
        return self._cleaner

    async def stop(self) -> None:
        if self._cleaner is not None:
            self._cleaner.cancel()
            try:
                await self._cleaner
            except asyncio.CancelledError:
                pass
            self._cleaner = None
