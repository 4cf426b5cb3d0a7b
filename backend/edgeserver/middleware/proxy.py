"""
Edgeserver — Trusted Proxy Middleware
======================================

What:  Rewrites the ASGI scope's client address and scheme from
       X-Forwarded-For / X-Forwarded-Proto, trusting exactly N proxy hops.
Who:   First stage of the pipeline, so secure-channel detection (HTTPS
       redirect, HSTS) and rate-limit keys see the original client.

Hop counting:
    The deployment sits behind one reverse proxy. That proxy appends the
    address it saw to X-Forwarded-For, so with N trusted hops the client is
    the N-th entry counted from the right. Entries further left were written
    by the client itself and are ignored, which is what stops a spoofed
    header from changing the rate-limit key.

    X-Forwarded-For: "6.6.6.6, 203.0.113.7"   (client forged the first entry)
    trusted_hops=1  → client = 203.0.113.7
    trusted_hops=0  → headers ignored, client = TCP peer
"""

import ipaddress
import logging
from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = {"http", "https"}


def normalize_address(raw: str) -> str:
    """
    Canonical text form of an address taken from a header or socket.

    Strips ports and IPv6 brackets and collapses IPv4-mapped IPv6
    ("::ffff:10.0.0.1") to plain IPv4. Unparseable input is returned stripped.
    """
    value = raw.strip()
    if value.startswith("["):
        end = value.find("]")
        if end != -1:
            value = value[1:end]
    elif value.count(":") == 1:
        # IPv4 with port
        value = value.split(":", 1)[0]

    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return value

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def resolve_forwarded_client(forwarded_for: str, trusted_hops: int) -> Optional[str]:
    """Pick the client address from an X-Forwarded-For chain."""
    if trusted_hops <= 0:
        return None
    entries = [e.strip() for e in forwarded_for.split(",") if e.strip()]
    if not entries:
        return None
    # Fewer entries than trusted hops: the leftmost is the best we have.
    index = max(len(entries) - trusted_hops, 0)
    return normalize_address(entries[index])


class TrustedProxyMiddleware:
    """
    Pure ASGI middleware applying the trusted-hop policy to every request.

    The scope is copied, never mutated in place, so the original connection
    details stay available to the server.
    """

    def __init__(self, app: ASGIApp, trusted_hops: int = 1) -> None:
        self.app = app
        self.trusted_hops = trusted_hops

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        headers = Headers(scope=scope)

        client = scope.get("client")
        if client:
            scope["client"] = (normalize_address(client[0]), client[1])

        if self.trusted_hops > 0:
            forwarded_for = headers.get("x-forwarded-for")
            if forwarded_for:
                host = resolve_forwarded_client(forwarded_for, self.trusted_hops)
                if host:
                    scope["client"] = (host, 0)

            forwarded_proto = headers.get("x-forwarded-proto")
            if forwarded_proto:
                scheme = forwarded_proto.split(",")[0].strip().lower()
                if scheme in _HTTP_SCHEMES:
                    if scope["type"] == "websocket":
                        scheme = "wss" if scheme == "https" else "ws"
                    scope["scheme"] = scheme
                else:
                    logger.debug("Ignoring unknown X-Forwarded-Proto value: %s", scheme)

        await self.app(scope, receive, send)


def is_secure(scope: Scope) -> bool:
    """True when the (proxy-resolved) request arrived over TLS."""
    return scope.get("scheme") in ("https", "wss")
