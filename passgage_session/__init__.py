"""Passgage Session.

Multi-tenant session and credential broker for the Passgage gateway.
"""
from .version import __version__
from .data import AuthContext, AuthMode, SessionData
from .exceptions import (
    AuthenticationRequired,
    BackendUnavailable,
    BrokerError,
    DecryptionError,
    InvalidCredentials,
    ModeUnavailable,
    RateLimitExceeded,
    SessionNotFound,
)
from .storage import SessionStore
from .auth import AuthContextResolver
from .gatekeeper import RequestGatekeeper

__all__ = (
    "__version__",
    "AuthContext",
    "AuthMode",
    "SessionData",
    "SessionStore",
    "AuthContextResolver",
    "RequestGatekeeper",
    "BrokerError",
    "AuthenticationRequired",
    "BackendUnavailable",
    "DecryptionError",
    "InvalidCredentials",
    "ModeUnavailable",
    "RateLimitExceeded",
    "SessionNotFound",
)
