"""
Session operations exposed to callers, declared as thin descriptors.

Each :class:`Operation` pairs a name with a pydantic argument schema and an
async handler. Every session operation goes through the single
:class:`SessionStore` API; the CRUD catalogue registers its own operations
on the same :class:`OperationRegistry` and receives the resolved
``AuthContext`` through :class:`Admission`.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .data import AuthMode
from .exceptions import (
    BackendUnavailable,
    InvalidArguments,
    InvalidCredentials,
    ModeUnavailable,
    SessionNotFound,
    UnknownOperation,
)
from .gatekeeper import Admission
from .security import SecurityMonitor
from .storage import SessionStore, short_id
from .upstream import PassgageAuthClient

logger = logging.getLogger("passgage.operations")

Handler = Callable[[Any, Optional[Admission]], Awaitable[dict]]

SESSION_CATEGORY = "Session Authentication"


class Arguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class NoArguments(Arguments):
    pass


class SessionLoginArgs(Arguments):
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1, repr=False)
    mode: Literal["personal", "administrative"] = "personal"


class SessionLoginWithKeyArgs(Arguments):
    administrative_key: str = Field(alias="administrativeKey", min_length=1, repr=False)


class SessionIdArgs(Arguments):
    session_id: str = Field(alias="sessionId", min_length=1)


class SessionSwitchModeArgs(SessionIdArgs):
    mode: Literal["personal", "administrative"]


@dataclass(frozen=True)
class Operation:
    name: str
    description: str
    arguments: type
    handler: Handler
    requires_auth: bool = True
    category: str = "General"
    message: str = "OK"

    def parse(self, arguments: Optional[dict]) -> Arguments:
        try:
            return self.arguments.model_validate(arguments or {})
        except ValidationError as err:
            errors = [
                {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
                for e in err.errors(include_input=False, include_url=False)
            ]
            raise InvalidArguments(
                f"Invalid arguments for {self.name}", errors=errors,
            ) from None

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "requiresAuth": self.requires_auth,
            "inputSchema": self.arguments.model_json_schema(by_alias=True),
        }


class OperationRegistry:
    def __init__(self):
        self._operations: dict[str, Operation] = {}

    def register(self, operation: Operation) -> Operation:
        if operation.name in self._operations:
            raise ValueError(f"Operation {operation.name} already registered")
        self._operations[operation.name] = operation
        return operation

    def get(self, name: str) -> Operation:
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperation(f"Unknown operation: {name}") from None

    def names(self) -> list[str]:
        return sorted(self._operations)

    def public_operations(self) -> frozenset:
        return frozenset(
            name for name, op in self._operations.items() if not op.requires_auth
        )

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    async def dispatch(
        self,
        name: str,
        arguments: Optional[dict] = None,
        admission: Optional[Admission] = None,
    ) -> tuple[Operation, dict]:
        operation = self.get(name)
        args = operation.parse(arguments)
        return operation, await operation.handler(args, admission)


class SessionOperations:
    """Handlers of the session operations, bound to one store."""

    def __init__(
        self,
        store: SessionStore,
        upstream: PassgageAuthClient,
        monitor: Optional[SecurityMonitor] = None,
        *,
        verify_api_keys: bool = True,
    ):
        self.store = store
        self.upstream = upstream
        self.monitor = monitor
        self.verify_api_keys = verify_api_keys

    async def _created(self, mode: AuthMode, **credentials: Optional[str]) -> dict:
        persisted = True
        try:
            session_id = await self.store.create_session(**credentials)
        except BackendUnavailable as err:
            if err.session_id is None:
                raise
            session_id, persisted = err.session_id, False
        result = {
            "sessionId": session_id,
            "mode": mode.value,
            "expiresIn": self.store.session_timeout,
            "persisted": persisted,
        }
        if not persisted:
            result["warning"] = (
                "Session storage is unavailable: this session only lives on "
                "the current instance and may be lost"
            )
        return result

    async def login(self, args: SessionLoginArgs, admission: Optional[Admission] = None) -> dict:
        if args.mode == AuthMode.ADMINISTRATIVE.value:
            raise ModeUnavailable(AuthMode.ADMINISTRATIVE.value, [AuthMode.PERSONAL.value])
        logger.info("Creating personal session")
        result = await self.upstream.login(args.email, args.password)
        return await self._created(
            AuthMode.PERSONAL,
            email=args.email,
            password=args.password,
            token=result.token,
            refresh_token=result.refresh_token,
        )

    async def login_with_key(
        self, args: SessionLoginWithKeyArgs, admission: Optional[Admission] = None,
    ) -> dict:
        logger.info("Creating administrative session")
        if self.verify_api_keys and not await self.upstream.verify_api_key(args.administrative_key):
            raise InvalidCredentials("Invalid administrative key or insufficient permissions")
        return await self._created(
            AuthMode.ADMINISTRATIVE, administrative_key=args.administrative_key,
        )

    async def switch_mode(
        self, args: SessionSwitchModeArgs, admission: Optional[Admission] = None,
    ) -> dict:
        await self.store.switch_mode(args.session_id, args.mode)
        return {"sessionId": args.session_id, "currentMode": args.mode}

    async def status(self, args: SessionIdArgs, admission: Optional[Admission] = None) -> dict:
        session = await self.store.get_session(args.session_id)
        if session is None:
            raise SessionNotFound(args.session_id)
        return session.status()

    async def logout(self, args: SessionIdArgs, admission: Optional[Admission] = None) -> dict:
        destroyed = await self.store.destroy_session(args.session_id)
        return {"destroyed": destroyed}

    async def refresh(self, args: SessionIdArgs, admission: Optional[Admission] = None) -> dict:
        """Refresh the personal token upstream, re-logging in if refresh is refused."""
        credentials = await self.store.get_credentials(args.session_id)
        if credentials is None:
            raise SessionNotFound(args.session_id)
        can_login = bool(credentials.email and credentials.password)
        if credentials.token:
            try:
                result = await self.upstream.refresh(credentials.token)
            except InvalidCredentials:
                if not can_login:
                    raise
                result = await self.upstream.login(credentials.email, credentials.password)
        elif can_login:
            result = await self.upstream.login(credentials.email, credentials.password)
        else:
            raise ModeUnavailable(AuthMode.PERSONAL.value)
        updated = await self.store.update_token(
            args.session_id, result.token, result.refresh_token,
        )
        if not updated:
            raise SessionNotFound(args.session_id)
        logger.info("Session %s token refreshed", short_id(args.session_id))
        return {"sessionId": args.session_id, "refreshed": True}

    async def health(self, args: NoArguments, admission: Optional[Admission] = None) -> dict:
        return {
            "status": "ok",
            "activeSessions": self.store.count(),
            "security": self.monitor.stats() if self.monitor else None,
        }

    def operations(self) -> list[Operation]:
        return [
            Operation(
                "session_login",
                "Create a new authentication session with your Passgage credentials",
                SessionLoginArgs, self.login, requires_auth=False,
                category=SESSION_CATEGORY, message="Session created successfully",
            ),
            Operation(
                "session_login_with_key",
                "Create a new authentication session with your company API key",
                SessionLoginWithKeyArgs, self.login_with_key, requires_auth=False,
                category=SESSION_CATEGORY, message="API key session created successfully",
            ),
            Operation(
                "session_switch_mode",
                "Switch authentication mode within your current session",
                SessionSwitchModeArgs, self.switch_mode, requires_auth=False,
                category=SESSION_CATEGORY, message="Mode switched",
            ),
            Operation(
                "session_status",
                "Check your current session status and available modes",
                SessionIdArgs, self.status, requires_auth=False,
                category=SESSION_CATEGORY, message="Session status retrieved",
            ),
            Operation(
                "session_logout",
                "Destroy your authentication session and clear credentials",
                SessionIdArgs, self.logout, requires_auth=False,
                category=SESSION_CATEGORY, message="Logged out",
            ),
            Operation(
                "session_refresh",
                "Refresh the personal token held by your session",
                SessionIdArgs, self.refresh, requires_auth=False,
                category=SESSION_CATEGORY, message="Token refreshed",
            ),
            Operation(
                "health",
                "Gateway status and active session count",
                NoArguments, self.health, requires_auth=False,
                category="Status",
            ),
        ]

    def register(self, registry: OperationRegistry) -> OperationRegistry:
        for operation in self.operations():
            registry.register(operation)
        return registry
