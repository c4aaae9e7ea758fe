"""
Broker configuration, read from the environment.

    SESSION_TIMEOUT           session lifetime in seconds (8 hours)
    SESSION_BACKEND           memory | kv | redis
    SESSION_CACHE_TTL         seconds a cached record is trusted when durable
    SESSION_SWEEP_INTERVAL    seconds between expiry sweeps (0 disables)
    SESSION_ID_HEADER         header carrying the session id
    RATE_LIMIT_WINDOW         sliding window length in seconds
    RATE_LIMIT_MAX_REQUESTS   request budget per window and client
    SECURITY_CLEANUP_INTERVAL seconds between rate-limit and monitor cleanups
                              (0 disables)
    PASSGAGE_BASE_URL         upstream API
    PASSGAGE_TIMEOUT          upstream timeout in seconds
    REDIS_URL                 redis backend connection
    KV_ACCOUNT_ID, KV_NAMESPACE_ID, KV_API_TOKEN, KV_API_URL
                              durable KV service backend
"""
import os
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .backends import AbstractBackend, get_backend

SESSION_KEY_PREFIX = "session:"
SESSION_ID_HEADER = "X-Session-ID"
SESSION_REQUEST_KEY = "passgage_session_id"
AUTH_CONTEXT_KEY = "passgage_auth_context"
CLIENT_IDENTITY_KEY = "passgage_client_identity"
# Durable records are never written with less TTL than this.
MIN_BACKEND_TTL = 60

DEFAULT_SESSION_TIMEOUT = 8 * 60 * 60


class BrokerConfig(BaseModel):
    """Validated broker settings."""

    session_timeout: int = Field(default=DEFAULT_SESSION_TIMEOUT, ge=60)
    backend: str = Field(default="memory")
    cache_ttl: int = Field(default=60, ge=0)
    sweep_interval: int = Field(default=3600, ge=0)
    session_header: str = SESSION_ID_HEADER
    rate_limit_window: int = Field(default=60, ge=1)
    rate_limit_max_requests: int = Field(default=100, ge=1)
    security_cleanup_interval: int = Field(default=900, ge=0)
    base_url: str = "https://api.passgage.com"
    upstream_timeout: float = Field(default=30.0, gt=0)
    redis_url: Optional[str] = None
    kv_account_id: Optional[str] = None
    kv_namespace_id: Optional[str] = None
    kv_api_token: Optional[str] = Field(default=None, repr=False)
    kv_api_url: str = "https://api.cloudflare.com/client/v4"
    environment: str = "development"

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "kv", "redis"):
            raise ValueError(f"Unsupported session backend: {v}")
        return v

    @classmethod
    def from_env(cls, environ: dict = None) -> "BrokerConfig":
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        mapping = {
            "SESSION_TIMEOUT": "session_timeout",
            "SESSION_BACKEND": "backend",
            "SESSION_CACHE_TTL": "cache_ttl",
            "SESSION_SWEEP_INTERVAL": "sweep_interval",
            "SESSION_ID_HEADER": "session_header",
            "RATE_LIMIT_WINDOW": "rate_limit_window",
            "RATE_LIMIT_MAX_REQUESTS": "rate_limit_max_requests",
            "SECURITY_CLEANUP_INTERVAL": "security_cleanup_interval",
            "PASSGAGE_BASE_URL": "base_url",
            "PASSGAGE_TIMEOUT": "upstream_timeout",
            "REDIS_URL": "redis_url",
            "KV_ACCOUNT_ID": "kv_account_id",
            "KV_NAMESPACE_ID": "kv_namespace_id",
            "KV_API_TOKEN": "kv_api_token",
            "KV_API_URL": "kv_api_url",
            "ENVIRONMENT": "environment",
        }
        for name, field in mapping.items():
            if env.get(name):
                values[field] = env[name]
        return cls(**values)

    def build_backend(self) -> AbstractBackend:
        if self.backend == "redis":
            return get_backend("redis", url=self.redis_url)
        if self.backend == "kv":
            return get_backend(
                "kv",
                account_id=self.kv_account_id,
                namespace_id=self.kv_namespace_id,
                api_token=self.kv_api_token,
                api_url=self.kv_api_url,
            )
        return get_backend("memory")
