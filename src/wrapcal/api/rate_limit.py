"""Per-client rate limiting for the AI endpoints.

A sliding-window limiter keyed by client IP.  Each client may make
``limit`` requests in any ``window`` seconds; the oldest request in the
window determines when the next slot opens.

The limiter is exposed to routes as the :func:`enforce_rate_limit`
dependency, which reads the limiter from ``app.state.rate_limiter`` and:

- raises a 429 ``HTTPException`` with ``X-RateLimit-*`` and ``Retry-After``
  headers when the client is over the limit
- otherwise records the ``X-RateLimit-*`` headers, which the
  :func:`attach_rate_limit_headers` middleware adds to the response even
  when the route itself fails
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, Request, Response


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one limiter check.

    Attributes:
        success: Whether the request is allowed.
        limit: Requests allowed per window.
        remaining: Requests left in the current window.
        reset: Epoch seconds at which the next slot opens.
    """

    success: bool
    limit: int
    remaining: int
    reset: float


class SlidingWindowRateLimiter:
    """In-memory sliding-window limiter.

    Args:
        limit: Requests allowed per window.
        window: Window length in seconds.
        clock: Time source returning epoch seconds (injectable for tests).
    """

    def __init__(
        self, limit: int, window: float, clock: Callable[[], float] = time.time
    ) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, identifier: str) -> RateLimitResult:
        """Record a request from *identifier* if it fits in the window."""
        now = self._clock()
        cutoff = now - self.window
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.setdefault(identifier, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return RateLimitResult(
                    success=False,
                    limit=self.limit,
                    remaining=0,
                    reset=hits[0] + self.window,
                )

            hits.append(now)
            return RateLimitResult(
                success=True,
                limit=self.limit,
                remaining=self.limit - len(hits),
                reset=hits[0] + self.window,
            )

    def reset(self) -> None:
        """Forget every recorded request."""
        with self._lock:
            self._hits.clear()

    def tracked_clients(self) -> int:
        """Number of identifiers currently holding window state."""
        with self._lock:
            return len(self._hits)

    def _sweep(self, cutoff: float) -> None:
        # Drop clients whose newest request has left the window.
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]


def get_client_ip(request: Request) -> str:
    """Best-effort client address for rate limiting.

    Proxy headers win over the socket peer: the first entry of
    ``x-forwarded-for``, then ``x-real-ip``.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Headers describing the caller's current allowance."""
    reset_at = datetime.fromtimestamp(result.reset, tz=timezone.utc)
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": reset_at.isoformat(),
    }


def enforce_rate_limit(request: Request) -> RateLimitResult | None:
    """FastAPI dependency applying ``app.state.rate_limiter``.

    The allowance headers are kept on ``request.state`` and copied onto the
    outgoing response by :func:`attach_rate_limit_headers`, so error replies
    from the route carry them too.

    Returns ``None`` when rate limiting is disabled.
    """
    limiter: SlidingWindowRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return None

    result = limiter.check(get_client_ip(request))
    headers = rate_limit_headers(result)
    request.state.rate_limit_headers = headers

    if not result.success:
        retry_after = max(0, math.ceil(result.reset - time.time()))
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={**headers, "Retry-After": str(retry_after)},
        )

    return result


async def attach_rate_limit_headers(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """HTTP middleware adding the headers recorded by :func:`enforce_rate_limit`."""
    response = await call_next(request)
    headers = getattr(request.state, "rate_limit_headers", None)
    if headers:
        response.headers.update(headers)
    return response
