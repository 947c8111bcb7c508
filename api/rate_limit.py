"""
Fixed-window rate limiting for the handshake and login endpoints.

Counters live in a process-local dict: this is a best-effort abuse guard,
not a security boundary, and it is not shared between workers or replicas.
Windows reset lazily on the first hit after expiry; stale entries are swept
opportunistically, at most once per ``sweep_interval_ms``, from ``check``.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from utils.clock import now_ms
from utils.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_MS = 60 * 1000


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    reset_in: int          # milliseconds until the window resets

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    @property
    def reset_in_seconds(self) -> int:
        return math.ceil(self.reset_in / 1000)


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "login": RateLimitConfig(limit=5, window_ms=15 * 60 * 1000),
    "oauth": RateLimitConfig(limit=10, window_ms=60 * 60 * 1000),
    "introspection": RateLimitConfig(limit=100, window_ms=60 * 1000),
}

# (path prefix, preset, key prefix)
_PATH_RULES: Tuple[Tuple[str, str, str], ...] = (
    ("/api/auth/sign-in", "login", "login"),
    ("/api/auth/sign-up", "login", "login"),
    ("/connect/authorize", "oauth", "oauth"),
    ("/connect/callback", "oauth", "oauth"),
    ("/api/auth/oauth/introspect", "introspection", "introspect"),
)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Process-scoped fixed-window counter store."""

    def __init__(
        self,
        *,
        clock_ms: Callable[[], float] = now_ms,
        sweep_interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS,
    ) -> None:
        self._clock_ms = clock_ms
        self._sweep_interval_ms = sweep_interval_ms
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock_ms()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one hit against *key* and report whether it is allowed."""
        now = self._clock_ms()
        with self._lock:
            if now - self._last_sweep >= self._sweep_interval_ms:
                self._sweep_locked(now)

            window = self._windows.get(key)
            if window is None or window.reset_at < now:
                window = _Window(count=0, reset_at=now + config.window_ms)
                self._windows[key] = window
            window.count += 1
            count, reset_at = window.count, window.reset_at

        return RateLimitResult(
            allowed=count <= config.limit,
            current=count,
            limit=config.limit,
            reset_in=max(0, int(reset_at - now)),
        )

    def sweep(self) -> int:
        """Drop every expired window now; returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock_ms())

    def _sweep_locked(self, now: float) -> int:
        self._last_sweep = now
        stale = [key for key, window in self._windows.items() if window.reset_at < now]
        for key in stale:
            del self._windows[key]
        return len(stale)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_in_seconds),
    }


def match_rule(path: str) -> Optional[Tuple[str, RateLimitConfig]]:
    """Return ``(key prefix, config)`` for rate-limited paths, else None."""
    for prefix, preset, key_prefix in _PATH_RULES:
        if path.startswith(prefix):
            return key_prefix, RATE_LIMITS[preset]
    return None


def register_rate_limiting(app: FastAPI) -> None:
    """Attach the rate limit middleware; the limiter lives on ``app.state``."""

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        rule = match_rule(request.url.path)
        if rule is None:
            return await call_next(request)

        key_prefix, config = rule
        limiter: RateLimiter = request.app.state.rate_limiter
        result = limiter.check(f"{key_prefix}:{get_client_ip(request)}", config)
        headers = rate_limit_headers(result)

        if not result.allowed:
            exc = RateLimitExceeded(retry_after=result.reset_in_seconds)
            logger.warning(
                "Rate limit exceeded for %s on %s", key_prefix, request.url.path
            )
            return JSONResponse(
                exc.to_dict(),
                status_code=exc.status_code,
                headers={**headers, "Retry-After": str(exc.retry_after)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
