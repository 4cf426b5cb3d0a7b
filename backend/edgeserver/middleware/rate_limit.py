"""
Edgeserver — Rate Limiting Middleware
======================================

What:  Per-client fixed-window rate limiting, one middleware instance per
       policy (general API, admin login).
How:   Each policy owns a FixedWindowStore mapping client key → (count,
       window start). A request increments its window; a count above the
       policy maximum is rejected with 429 and never reaches the handler.
Who:   Installed by pipeline.build_pipeline(), admin limiter first.

Algorithm: Fixed Window Counter
    1. key = client address (IPv6 grouped by prefix, see client_key)
    2. if the key's window has elapsed, start a new one with count 0
    3. count += 1
    4. if count > max → 429 with {"success": false, "message": ...}
    Bursts of up to 2×max across a window boundary are an accepted tradeoff.

    Steps 2-4 run without an await in between, so concurrent requests on the
    event loop can never interleave a read and a write of the same counter.

Success exemption (admin login):
    With skip_successful_requests, a response with status < 400 gives its hit
    back, so only failed attempts count. The decrement is ignored if the
    window rolled over while the request was in flight.

Stacked limiters:
    When a limiter further down the chain rejects a request, every limiter
    above it gives its hit back, so one policy being exhausted never uses
    up the quota of another.

Response headers (IETF draft "RateLimit header fields", draft-6 names):
    RateLimit-Policy, RateLimit-Limit, RateLimit-Remaining, RateLimit-Reset,
    plus Retry-After on rejection. Legacy X-RateLimit-* headers are not sent.

Production Upgrade Path:
    State is per process. Multi-worker deployments need a shared store
    (e.g. Redis INCR with TTL) behind the same increment/decrement interface.
"""

import ipaddress
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeserver.routing import path_matches

logger = logging.getLogger(__name__)

# Scope key naming the limiter that rejected the request.
REJECTED_BY = "edgeserver.rate_limited_by"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Static configuration of one limiter."""

    name: str
    path: str
    max_requests: int
    window_seconds: int
    message: str
    skip_successful_requests: bool = False


@dataclass(frozen=True)
class WindowHit:
    """Result of recording one request."""

    count: int
    window_start: float
    reset_at: float


class _Window:
    __slots__ = ("count", "start")

    def __init__(self, start: float) -> None:
        self.count = 0
        self.start = start


class FixedWindowStore:
    """
    In-memory fixed-window counters keyed by client.

    All methods are synchronous; callers must not hold state across an await.
    """

    # Sweep expired windows every N increments
    SWEEP_INTERVAL = 1000

    def __init__(
        self,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._increments = 0

    def now(self) -> float:
        return self._clock()

    def increment(self, key: str) -> WindowHit:
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.start >= self.window_seconds:
            window = _Window(start=now)
            self._windows[key] = window
        window.count += 1

        self._increments += 1
        if self._increments % self.SWEEP_INTERVAL == 0:
            self.sweep(now)

        return WindowHit(
            count=window.count,
            window_start=window.start,
            reset_at=window.start + self.window_seconds,
        )

    def decrement(self, key: str, window_start: float) -> None:
        window = self._windows.get(key)
        if window is None or window.start != window_start:
            return
        if window.count > 0:
            window.count -= 1

    def count(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None or self._clock() - window.start >= self.window_seconds:
            return 0
        return window.count

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove windows that have elapsed. Returns the number removed."""
        now = self._clock() if now is None else now
        expired: List[str] = [
            key for key, window in self._windows.items()
            if now - window.start >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("Swept %d expired rate-limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def client_key(scope: Scope, ipv6_subnet: int = 56) -> str:
    """
    Rate-limit key for the request's (proxy-resolved) client address.

    IPv4 addresses are used as-is. IPv6 addresses are grouped by their
    /`ipv6_subnet` network, since a single IPv6 client typically controls a
    whole prefix and could otherwise rotate addresses to escape the limit.
    """
    client = scope.get("client")
    if not client or not client[0]:
        return "unknown"
    host = client[0]
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return host
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return str(ip.ipv4_mapped)
        return str(ipaddress.IPv6Network(f"{ip}/{ipv6_subnet}", strict=False))
    return str(ip)


class RateLimitMiddleware:
    """
    Pure ASGI middleware enforcing one RateLimitPolicy on its path prefix.

    Requests outside `policy.path` pass through untouched (no headers, no
    counting).
    """

    def __init__(
        self,
        app: ASGIApp,
        policy: RateLimitPolicy,
        store: Optional[FixedWindowStore] = None,
        ipv6_subnet: int = 56,
    ) -> None:
        self.app = app
        self.policy = policy
        self.store = store if store is not None else FixedWindowStore(policy.window_seconds)
        self.ipv6_subnet = ipv6_subnet

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not path_matches(scope["path"], self.policy.path):
            await self.app(scope, receive, send)
            return

        key = client_key(scope, self.ipv6_subnet)
        hit = self.store.increment(key)
        headers = self._headers(hit)

        if hit.count > self.policy.max_requests:
            logger.warning(
                "Rate limit '%s' exceeded for %s: %d requests in %ds window",
                self.policy.name,
                key,
                hit.count,
                self.policy.window_seconds,
            )
            headers["Retry-After"] = headers["RateLimit-Reset"]
            response = JSONResponse(
                status_code=429,
                content={"success": False, "message": self.policy.message},
                headers=headers,
            )
            scope[REJECTED_BY] = self.policy.name
            await response(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                if scope.get(REJECTED_BY):
                    # Another limiter answered; its headers stand and this hit is returned.
                    self.store.decrement(key, hit.window_start)
                else:
                    response_headers = MutableHeaders(scope=message)
                    for name, value in headers.items():
                        response_headers[name] = value
                    if self.policy.skip_successful_requests and message["status"] < 400:
                        self.store.decrement(key, hit.window_start)
            await send(message)

        await self.app(scope, receive, send_with_headers)

    def _headers(self, hit: WindowHit) -> Dict[str, str]:
        limit = self.policy.max_requests
        reset = max(0, math.ceil(hit.reset_at - self.store.now()))
        return {
            "RateLimit-Policy": f"{limit};w={self.policy.window_seconds}",
            "RateLimit-Limit": str(limit),
            "RateLimit-Remaining": str(max(0, limit - hit.count)),
            "RateLimit-Reset": str(reset),
        }
