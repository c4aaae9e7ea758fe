"""
Broker Errors: exception taxonomy shared by the store, the gatekeeper and
the operation layer.

Every error carries a machine-readable ``code``, the HTTP-equivalent
``status`` and whether the caller may retry. ``to_dict()`` builds the error
payload returned to callers.

Security Note:
    Messages and details must never include secret values (keys, passwords,
    tokens, ciphertext). Session ids are allowed.
"""
from typing import Any, Optional


class BrokerError(Exception):
    """Base class for all session broker failures."""

    code: str = "BROKER_ERROR"
    status: int = 500
    retryable: bool = False

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        payload.update(self.details)
        return payload


class InvalidCredentials(BrokerError):
    """Login rejected upstream, or no recognizable credential supplied."""

    code = "AUTH_FAILED"
    status = 401


class SessionNotFound(BrokerError):
    """Session is absent or expired."""

    code = "SESSION_NOT_FOUND"
    status = 401

    def __init__(self, session_id: Optional[str] = None, message: str = ""):
        super().__init__(
            message or "Session not found or expired, please log in again "
            "using the session_login operation",
            sessionRequired=True,
        )
        self.session_id = session_id


class AuthenticationRequired(BrokerError):
    """Operation needs a live session and none was resolved."""

    code = "AUTHENTICATION_REQUIRED"
    status = 401

    def __init__(self, message: str = ""):
        super().__init__(
            message or "Please authenticate first using the session_login "
            "or session_login_with_key operation",
            sessionRequired=True,
        )


class ModeUnavailable(BrokerError):
    """Switch requested to a mode the session has no credential for."""

    code = "MODE_UNAVAILABLE"
    status = 409

    def __init__(self, mode: str, available: Optional[list] = None):
        super().__init__(
            f"Cannot switch to {mode} mode: the session holds no credential "
            f"for it",
            availableModes=list(available or []),
        )
        self.mode = mode


class DecryptionError(BrokerError):
    """Ciphertext is corrupted, truncated or was produced under a foreign key."""

    code = "DECRYPTION_ERROR"
    status = 500


class RateLimitExceeded(BrokerError):
    """Request budget for the current window is exhausted."""

    code = "RATE_LIMITED"
    status = 429
    retryable = True

    def __init__(self, retry_after: int, remaining: int = 0, message: str = ""):
        super().__init__(
            message or "Rate limit exceeded",
            retryAfter=retry_after,
        )
        self.retry_after = retry_after
        self.remaining = remaining


class BackendUnavailable(BrokerError):
    """Durable session storage could not be reached."""

    code = "BACKEND_UNAVAILABLE"
    status = 503
    retryable = True

    def __init__(self, message: str = "", session_id: Optional[str] = None):
        super().__init__(message or "Session storage is unavailable")
        self.session_id = session_id


class UpstreamUnavailable(BrokerError):
    """The Passgage API could not be reached or answered with a server error."""

    code = "UPSTREAM_UNAVAILABLE"
    status = 502
    retryable = True


class InvalidArguments(BrokerError):
    """Operation arguments failed validation."""

    code = "INVALID_ARGUMENTS"
    status = 400


class UnknownOperation(BrokerError):
    """No operation is registered under the requested name."""

    code = "UNKNOWN_OPERATION"
    status = 404
