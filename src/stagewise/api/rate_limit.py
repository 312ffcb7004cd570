"""Fixed-window request rate limiter keyed by ``(route, caller identity)``.

The limiter is constructed explicitly and handed to the middleware; its
window store is pluggable.  ``InMemoryRateLimitStore`` is correct for a
single API process only.  ``SharedRateLimitStore`` keeps the windows in the
``rate_windows`` table so several processes see the same counters.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from stagewise.defaults import RATE_LIMIT_CLASSES
from stagewise.errors import RateLimitExceeded
from stagewise.models import RateWindow, now_ms
from stagewise.ports import RateWindowStorePort

log = logging.getLogger("stagewise.rate_limit")

_PURGE_EVERY = 1000


# ---------------------------------------------------------------------------
# Window stores
# ---------------------------------------------------------------------------

class RateLimitStore(Protocol):
    def hit(self, key: str, now: int, window_ms: int) -> RateWindow: ...


class InMemoryRateLimitStore:
    """Process-local windows.  Single-instance deployments only."""

    def __init__(self) -> None:
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: int, window_ms: int) -> RateWindow:
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start > window_ms:
                window = RateWindow(count=1, window_start=now)
                self._windows[key] = window
            else:
                window.count += 1
            return RateWindow(window.count, window.window_start)

    def purge(self, started_before: int) -> int:
        """Drop windows that started before *started_before*; returns how many."""
        with self._lock:
            stale = [k for k, w in self._windows.items() if w.window_start < started_before]
            for key in stale:
                del self._windows[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


class SharedRateLimitStore:
    """Windows persisted through the store's ``rate_windows`` table.

    Reset and increment happen in one conditional upsert, so concurrent
    processes never both restart an expired window.
    """

    def __init__(self, store: RateWindowStorePort) -> None:
        self._store = store

    def hit(self, key: str, now: int, window_ms: int) -> RateWindow:
        return self._store.hit_rate_window(key, now, window_ms)


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int


def rules_from_env(env: dict[str, str] | None = None) -> dict[str, RateLimitRule]:
    """Default rules per route class, overridable with ``STAGEWISE_RATE_LIMIT_<CLASS>=max/seconds``."""
    env = os.environ if env is None else env
    rules: dict[str, RateLimitRule] = {}
    for route_class, (max_requests, window_seconds) in RATE_LIMIT_CLASSES.items():
        raw = env.get(f"STAGEWISE_RATE_LIMIT_{route_class.upper()}", "")
        if raw:
            try:
                max_s, window_s = raw.split("/", 1)
                max_requests, window_seconds = int(max_s), int(window_s)
            except ValueError:
                log.warning("Ignoring malformed rate limit for %s: %r", route_class, raw)
        rules[route_class] = RateLimitRule(max_requests, window_seconds)
    return rules


class RateLimiter:
    """Fixed-window counter: resets once ``now - window_start`` exceeds the window."""

    def __init__(
        self,
        store: RateLimitStore | None = None,
        rules: dict[str, RateLimitRule] | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._rules = rules if rules is not None else rules_from_env()
        self._clock = clock or now_ms
        self._lock = threading.Lock()
        self._hits = 0
        # metrics
        self.total_throttled: int = 0
        self.throttled_by_class: dict[str, int] = defaultdict(int)

    def rule_for(self, route_class: str) -> RateLimitRule:
        return self._rules.get(route_class) or self._rules.get("standard") or RateLimitRule(
            *RATE_LIMIT_CLASSES["standard"]
        )

    def check(self, route: str, identity: str, route_class: str = "standard") -> RateLimitResult:
        """Count one request for ``route:identity`` and report whether it is over the limit."""
        rule = self.rule_for(route_class)
        key = f"{route_key(route)}:{identity}"
        now = self._clock()
        window = self._store.hit(key, now, rule.window_ms)
        count = window.count
        with self._lock:
            self._maybe_purge(now)

        reset_at = window.window_start + rule.window_ms
        limited = count > rule.max_requests
        if limited:
            self.total_throttled += 1
            self.throttled_by_class[route_class] += 1
            log.info("Rate limited %s (%s)", key, route_class)
        return RateLimitResult(
            limited=limited,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - count),
            reset_at=reset_at,
            retry_after=max(1, math.ceil((reset_at - now) / 1000)),
        )

    def enforce(self, route: str, identity: str, route_class: str = "standard") -> RateLimitResult:
        """Like ``check`` but raises ``RateLimitExceeded`` when limited."""
        result = self.check(route, identity, route_class)
        if result.limited:
            raise RateLimitExceeded(result.retry_after, limit=result.limit, reset_at=result.reset_at)
        return result

    def _maybe_purge(self, now: int) -> None:
        self._hits += 1
        if self._hits % _PURGE_EVERY or not isinstance(self._store, InMemoryRateLimitStore):
            return
        longest = max((r.window_ms for r in self._rules.values()), default=0)
        self._store.purge(now - longest)

    def reset(self) -> None:
        """Clear counters and in-memory windows (useful for tests)."""
        if isinstance(self._store, InMemoryRateLimitStore):
            self._store.clear()
        self.total_throttled = 0
        self.throttled_by_class.clear()


# ---------------------------------------------------------------------------
# HTTP glue
# ---------------------------------------------------------------------------

# Paths exempt from rate limiting
_EXEMPT_PREFIXES = ("/health", "/metrics")

# Every router is mounted under both prefixes; they share one quota
_VERSION_PREFIXES = ("/api", "/v1")


def route_key(path: str) -> str:
    """Strip the mount prefix so `/api/x` and `/v1/x` count as one route."""
    for prefix in _VERSION_PREFIXES:
        if path == prefix or path.startswith(prefix + "/"):
            return path[len(prefix):] or "/"
    return path


def route_class_for(path: str) -> str:
    if "/analytics/stage-duration" in path:
        return "analytics"
    if "/analytics/" in path:
        return "readonly"
    return "standard"


def client_identity(request: Request) -> str:
    """First ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit_response(exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "message": str(exc),
            "retryAfter": exc.retry_after,
        },
        headers={
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(exc.reset_at),
        },
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware that enforces per-route, per-caller rate limits."""

    def __init__(self, app, limiter: RateLimiter) -> None:
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        # Health/metrics always allowed
        if any(path.startswith(p) for p in _EXEMPT_PREFIXES):
            return await call_next(request)

        try:
            result = self.limiter.enforce(path, client_identity(request), route_class_for(path))
        except RateLimitExceeded as exc:
            return rate_limit_response(exc)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_at)
        return response
