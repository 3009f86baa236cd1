"""Per-client sliding-window rate limiting for the public API."""

from __future__ import annotations

import threading
import time
from collections import deque

from fastapi import HTTPException, Request, Response

from afyalink.api.auth import hash_key
from afyalink.config import settings


class SlidingWindowRateLimiter:
    """Thread-safe sliding-window limiter keyed by an arbitrary client key.

    Buckets whose newest hit has aged out of the window are swept at most
    once per window, so one-off client addresses do not accumulate.
    """

    def __init__(self, max_requests: int = 100, window_seconds: int = 60):
        self._max_requests = max_requests
        self._window = window_seconds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, hits in self._buckets.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._buckets[key]

    def is_allowed(self, key: str) -> tuple[bool, dict[str, str]]:
        """Record a hit for *key* and report whether it is within quota.

        Returns ``(allowed, headers)``; *headers* carries the
        ``X-RateLimit-*`` values for the response either way.
        """
        now = time.monotonic()
        cutoff = now - self._window

        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._buckets.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            headers = {
                "X-RateLimit-Limit": str(self._max_requests),
                "X-RateLimit-Remaining": str(max(self._max_requests - len(hits) - 1, 0)),
                "X-RateLimit-Reset": str(
                    int(self._window - (now - hits[0]) if hits else self._window)
                ),
            }

            if len(hits) >= self._max_requests:
                return False, headers

            hits.append(now)
            return True, headers

    @property
    def active_keys(self) -> int:
        with self._lock:
            return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.rate_limit_per_minute,
    window_seconds=settings.rate_limit_window,
)


def client_key(request: Request) -> str:
    """Bucket by API key when one is sent, otherwise by client address."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"key:{hash_key(api_key)}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """Router-level dependency: attach quota headers, 429 when exhausted."""
    allowed, headers = rate_limiter.is_allowed(client_key(request))
    for name, value in headers.items():
        response.headers[name] = value
    if not allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers=headers)
