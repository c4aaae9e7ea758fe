"""
Request-time abuse controls: client identity, sliding-window rate limiting,
brute-force blocking and risk scoring.

Everything here is synchronous and in-process: counters are short-lived and
never persisted, so checking a request never waits on storage.
"""
import math
import time
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger("passgage.security")

EVENT_RETENTION = 24 * 60 * 60
CLIENT_RETENTION = 2 * 60 * 60
RISK_WINDOW = 5 * 60
HIGH_RISK = 70
MAX_CLIENT_RECORDS = 1000
MAX_EVENTS = 10000


def client_identity(address: Optional[str], agent: Optional[str] = None) -> str:
    """Hashed fingerprint of a caller's network origin and agent string."""
    identifier = f"{address or 'unknown'}:{agent or 'unknown'}"
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """At most ``max_requests`` admitted requests per ``window`` seconds per key."""

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limit = max(1, int(max_requests))
        self._window = max(0.1, float(window))
        self._clock = clock
        self._hits: dict[str, deque] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window(self) -> float:
        return self._window

    def _prune(self, key: str, now: float) -> deque:
        hits = self._hits.setdefault(key, deque())
        while hits and (now - hits[0]) >= self._window:
            hits.popleft()
        return hits

    def check(self, key: str) -> RateLimitDecision:
        """Admit and count one request, or refuse it with a retry delay."""
        now = self._clock()
        hits = self._prune(key, now)
        if len(hits) >= self._limit:
            retry_after = max(1, math.ceil(hits[0] + self._window - now))
            return RateLimitDecision(False, 0, retry_after)
        hits.append(now)
        return RateLimitDecision(True, self._limit - len(hits))

    def cleanup(self) -> None:
        now = self._clock()
        for key in list(self._hits):
            if not self._prune(key, now):
                del self._hits[key]


@dataclass
class RequestRecord:
    timestamp: float
    endpoint: str
    success: bool
    session: Optional[str] = None


@dataclass
class ClientInfo:
    id: str
    address: Optional[str] = None
    agent: Optional[str] = None
    requests: deque = field(default_factory=lambda: deque(maxlen=MAX_CLIENT_RECORDS))
    failed_attempts: int = 0
    # requests refused while blocked, counted without a record
    rejected: int = 0
    last_failed_at: Optional[float] = None
    blocked_until: Optional[float] = None
    risk_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requests": len(self.requests),
            "failedAttempts": self.failed_attempts,
            "blocked": self.blocked_until is not None,
            "rejected": self.rejected,
            "riskScore": self.risk_score,
        }


@dataclass(frozen=True)
class SecurityEvent:
    type: str
    client_id: str
    timestamp: float
    severity: str
    details: dict

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "clientId": self.client_id,
            "timestamp": self.timestamp,
            "severity": self.severity,
            "details": self.details,
        }


class SecurityMonitor:
    """Tracks request outcomes per client identity.

    Clients whose failures inside ``lifetime`` exceed ``free_retries`` are
    blocked for ``min_wait * 2 ** (failures - free_retries)`` seconds,
    capped at ``max_wait``.
    """

    def __init__(
        self,
        *,
        free_retries: int = 5,
        min_wait: float = 10,
        max_wait: float = 300,
        lifetime: float = 3600,
        suspicious_threshold: int = 50,
        max_sessions_per_client: int = 5,
        failure_rate_threshold: float = 25.0,
        clock: Callable[[], float] = time.time,
    ):
        self.free_retries = free_retries
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.lifetime = lifetime
        self.suspicious_threshold = suspicious_threshold
        self.max_sessions_per_client = max_sessions_per_client
        self.failure_rate_threshold = failure_rate_threshold
        self._clock = clock
        self._clients: dict[str, ClientInfo] = {}
        self._events: deque = deque(maxlen=MAX_EVENTS)

    def _client(self, client_id: str, address: str = None, agent: str = None) -> ClientInfo:
        client = self._clients.get(client_id)
        if client is None:
            client = ClientInfo(id=client_id, address=address, agent=agent)
            self._clients[client_id] = client
        return client

    def client_info(self, client_id: str) -> Optional[ClientInfo]:
        return self._clients.get(client_id)

    def blocked_for(self, client_id: str) -> int:
        """Seconds the client stays blocked, 0 when it is not blocked."""
        client = self._clients.get(client_id)
        if client is None or client.blocked_until is None:
            return 0
        left = client.blocked_until - self._clock()
        if left <= 0:
            client.blocked_until = None
            return 0
        return max(1, math.ceil(left))

    def refuse(self, client_id: str) -> None:
        """Count a request turned away while blocked. Constant time, no event."""
        client = self._clients.get(client_id)
        if client is not None:
            client.rejected += 1

    def record_event(self, type_: str, client_id: str, severity: str, **details: Any) -> None:
        now = self._clock()
        self._events.append(SecurityEvent(type_, client_id, now, severity, details))
        while self._events and now - self._events[0].timestamp > EVENT_RETENTION:
            self._events.popleft()
        if severity in ("high", "critical"):
            logger.warning(
                "Security event: type=%s client=%s severity=%s details=%s",
                type_, client_id, severity, details,
            )

    def record(
        self,
        client_id: str,
        endpoint: str,
        success: bool,
        session: Optional[str] = None,
        address: Optional[str] = None,
        agent: Optional[str] = None,
    ) -> None:
        """Record one request outcome and update the client's standing."""
        now = self._clock()
        client = self._client(client_id, address, agent)
        client.requests.append(
            RequestRecord(now, endpoint, success, session[:8] if session else None)
        )
        while client.requests and now - client.requests[0].timestamp > self.lifetime:
            client.requests.popleft()
        if success:
            client.failed_attempts = max(0, client.failed_attempts - 1)
        else:
            client.failed_attempts += 1
            client.last_failed_at = now
            recent_failures = sum(1 for r in client.requests if not r.success)
            blocked = client.blocked_until is not None and client.blocked_until > now
            if recent_failures > self.free_retries and not blocked:
                self._block(client, recent_failures)
        self._score(client, now)
        self._watch(client, now)

    def _block(self, client: ClientInfo, failures: int) -> None:
        wait = min(
            self.min_wait * (2 ** (failures - self.free_retries)),
            self.max_wait,
        )
        client.blocked_until = self._clock() + wait
        self.record_event(
            "brute_force", client.id, "high", failureCount=failures, waitTime=wait,
        )

    def failure_rate(self, client: ClientInfo, since: float) -> float:
        recent = [r for r in client.requests if r.timestamp > since]
        if not recent:
            return 0.0
        return 100.0 * sum(1 for r in recent if not r.success) / len(recent)

    def _score(self, client: ClientInfo, now: float) -> None:
        recent = [r for r in client.requests if r.timestamp > now - RISK_WINDOW]
        score = 0
        if len(recent) > self.suspicious_threshold:
            score += 30
        failure_rate = self.failure_rate(client, now - RISK_WINDOW)
        if failure_rate > self.failure_rate_threshold:
            score += 25
        sessions = {r.session for r in recent if r.session}
        if len(sessions) > self.max_sessions_per_client:
            score += 20
        if client.failed_attempts > 10:
            score += 15
        endpoints = {r.endpoint for r in recent}
        if len(endpoints) > 20 and len(recent) > 50:
            # endpoint scanning
            score += 35
        client.risk_score = score
        if score > HIGH_RISK:
            self.record_event(
                "suspicious_activity", client.id, "high",
                riskScore=score, failureRate=round(failure_rate, 1),
                recentRequests=len(recent),
            )

    def _watch(self, client: ClientInfo, now: float) -> None:
        recent = [r for r in client.requests if r.timestamp > now - 60]
        if len(recent) > self.suspicious_threshold:
            self.record_event(
                "suspicious_activity", client.id, "medium",
                pattern="rapid_requests", requestCount=len(recent),
            )
        auth_failures = [
            r for r in recent if not r.success and "login" in r.endpoint
        ]
        if len(auth_failures) > 5:
            self.record_event(
                "suspicious_activity", client.id, "high",
                pattern="auth_bruteforce", authFailures=len(auth_failures),
            )

    def recent_events(self, limit: int = 50) -> list[SecurityEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        by_type: dict[str, int] = {}
        for event in self._events:
            by_type[event.type] = by_type.get(event.type, 0) + 1
        return {
            "totalClients": len(self._clients),
            "blockedClients": sum(
                1 for c in self._clients.values()
                if c.blocked_until is not None and c.blocked_until > now
            ),
            "highRiskClients": sum(
                1 for c in self._clients.values() if c.risk_score > HIGH_RISK
            ),
            "recentEvents": sum(1 for e in self._events if now - e.timestamp <= 3600),
            "rejectedRequests": sum(c.rejected for c in self._clients.values()),
            "eventsByType": by_type,
        }

    def cleanup(self) -> None:
        """Forget idle clients and old events."""
        now = self._clock()
        threshold = now - CLIENT_RETENTION
        for client_id, client in list(self._clients.items()):
            while client.requests and client.requests[0].timestamp <= threshold:
                client.requests.popleft()
            idle = not client.requests and (
                client.last_failed_at is None or client.last_failed_at < threshold
            )
            unblocked = client.blocked_until is None or client.blocked_until <= now
            if idle and unblocked:
                del self._clients[client_id]
        while self._events and now - self._events[0].timestamp > EVENT_RETENTION:
            self._events.popleft()
        logger.debug(
            "Security cleanup: %d client(s), %d event(s)",
            len(self._clients), len(self._events),
        )
