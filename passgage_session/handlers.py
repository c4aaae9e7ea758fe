"""
aiohttp surface of the broker.

    POST /operations/{operation}   JSON object of arguments
    GET  /health                   credential-less status check

The gatekeeper middleware runs before every handler; handlers only turn
operation results and broker errors into response envelopes.
"""
import logging
from typing import Optional

import orjson
from aiohttp import web

from .auth import AuthContextResolver
from .conf import (
    AUTH_CONTEXT_KEY,
    CLIENT_IDENTITY_KEY,
    SESSION_REQUEST_KEY,
    BrokerConfig,
)
from .exceptions import BrokerError, InvalidArguments
from .gatekeeper import Admission, RequestGatekeeper
from .operations import OperationRegistry, SessionOperations
from .responses import error_response, json_response, success
from .security import SecurityMonitor, SlidingWindowRateLimiter
from .storage import SessionStore
from .upstream import PassgageAuthClient
from .vault.crypto import Cipher, build_cipher

logger = logging.getLogger("passgage.handlers")


class Broker:
    """Wires cipher, store, resolver, gatekeeper and operations together."""

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        *,
        cipher: Optional[Cipher] = None,
        store: Optional[SessionStore] = None,
        upstream: Optional[PassgageAuthClient] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        monitor: Optional[SecurityMonitor] = None,
        verify_api_keys: bool = True,
    ):
        self.config = config or BrokerConfig.from_env()
        self.store = store or SessionStore(
            cipher or build_cipher(),
            self.config.build_backend() if self.config.backend != "memory" else None,
            session_timeout=self.config.session_timeout,
            cache_ttl=self.config.cache_ttl,
            sweep_interval=self.config.sweep_interval,
        )
        self.upstream = upstream or PassgageAuthClient(
            self.config.base_url, timeout=self.config.upstream_timeout,
        )
        self.monitor = monitor or SecurityMonitor()
        self.registry = OperationRegistry()
        SessionOperations(
            self.store, self.upstream, self.monitor, verify_api_keys=verify_api_keys,
        ).register(self.registry)
        self.resolver = AuthContextResolver(self.store)
        self.gatekeeper = RequestGatekeeper(
            self.resolver,
            limiter or SlidingWindowRateLimiter(
                self.config.rate_limit_max_requests, self.config.rate_limit_window,
            ),
            self.monitor,
            public_operations=self.registry.public_operations(),
            known_operations=self.registry,
            session_header=self.config.session_header,
            cleanup_interval=self.config.security_cleanup_interval,
        )

    async def close(self) -> None:
        await self.gatekeeper.stop()
        await self.store.close()
        await self.upstream.close()


BROKER_APP_KEY = web.AppKey("passgage_broker", Broker)


async def _read_arguments(request: web.Request) -> dict:
    body = await request.read()
    if not body:
        return {}
    try:
        arguments = orjson.loads(body)
    except orjson.JSONDecodeError:
        raise InvalidArguments("Request body is not valid JSON") from None
    if not isinstance(arguments, dict):
        raise InvalidArguments("Request body must be a JSON object")
    return arguments


def _admission(request: web.Request, operation: str) -> Admission:
    return Admission(
        client_id=request.get(CLIENT_IDENTITY_KEY, "unknown"),
        operation=operation,
        session_id=request.get(SESSION_REQUEST_KEY),
        auth_context=request.get(AUTH_CONTEXT_KEY),
    )


async def call_operation(request: web.Request) -> web.Response:
    broker: Broker = request.app[BROKER_APP_KEY]
    name = request.match_info["operation"]
    try:
        arguments = await _read_arguments(request)
        operation, data = await broker.registry.dispatch(
            name, arguments, _admission(request, name),
        )
    except BrokerError as err:
        if err.status >= 500:
            logger.error("Operation %s failed: %s", name, err.message)
        return error_response(err)
    return json_response(success(data, operation.message))


async def health(request: web.Request) -> web.Response:
    broker: Broker = request.app[BROKER_APP_KEY]
    _, data = await broker.registry.dispatch("health", {}, _admission(request, "health"))
    return json_response(success(data, "Gateway status"))


def setup_gateway(app: web.Application, broker: Broker) -> web.Application:
    app[BROKER_APP_KEY] = broker
    app.middlewares.append(broker.gatekeeper.middleware())
    app.router.add_post("/operations/{operation}", call_operation, name="operation")
    app.router.add_get("/health", health, name="health")

    async def _startup(app: web.Application) -> None:
        broker.store.start_sweeper()
        broker.gatekeeper.start_cleanup()

    async def _cleanup(app: web.Application) -> None:
        await broker.close()

    app.on_startup.append(_startup)
    app.on_cleanup.append(_cleanup)
    return app


def create_app(broker: Optional[Broker] = None) -> web.Application:
    return setup_gateway(web.Application(), broker or Broker())
