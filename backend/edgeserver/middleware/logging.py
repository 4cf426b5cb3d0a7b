"""
Edgeserver — Request Logging Middleware
========================================

What:  One log line per API response: method, path, status, duration and a
       prefix of the JSON body the handler emitted.
How:   Pure ASGI middleware that decorates `send`. Every message is forwarded
       first and observed second; the log line is written after the final
       body chunk has been handed to the server, so the duration covers the
       handler and the transmission.
Who:   Installed after the rate limiters, wrapping business routes and asset
       fallbacks. Only paths under the API prefix are logged.

Log Format:
    GET /api/notes 200 in 12ms :: {"items":[...]}
    Lines longer than `max_length` are cut to max_length-1 characters + "…".

Side channel only:
    Logging never changes status, headers or body. Body capture is bounded
    (it only keeps what can fit in the line), undecodable bytes are replaced,
    and any failure while formatting or emitting the line is swallowed.
"""

import logging
import time
from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeserver.routing import path_matches

logger = logging.getLogger("edgeserver.access")

ELLIPSIS = "…"


def _is_json(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def format_log_line(
    method: str,
    path: str,
    status: int,
    duration_ms: float,
    body: Optional[str],
    max_length: int,
) -> str:
    line = f"{method} {path} {status} in {int(duration_ms)}ms"
    if body:
        line += f" :: {body}"
    if len(line) > max_length:
        line = line[: max_length - 1] + ELLIPSIS
    return line


class _ResponseCapture:
    """Per-request snapshot of what the handler sent; dropped after logging."""

    __slots__ = ("status", "is_json", "body", "limit")

    def __init__(self, limit: int) -> None:
        self.status = 0
        self.is_json = False
        self.body = bytearray()
        self.limit = limit

    def observe(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.is_json = _is_json(Headers(raw=message.get("headers", [])).get("content-type"))
        elif message["type"] == "http.response.body" and self.is_json:
            room = self.limit - len(self.body)
            if room > 0:
                self.body.extend(message.get("body", b"")[:room])

    def text(self) -> Optional[str]:
        if not self.body:
            return None
        return self.body.decode("utf-8", errors="replace")


class RequestLoggingMiddleware:
    """Logs completed API responses without touching them."""

    def __init__(
        self,
        app: ASGIApp,
        api_prefix: str = "/api",
        max_length: int = 300,
    ) -> None:
        self.app = app
        self.api_prefix = api_prefix
        self.max_length = max_length

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not path_matches(scope["path"], self.api_prefix):
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        capture = _ResponseCapture(limit=self.max_length)

        async def send_and_record(message: Message) -> None:
            await send(message)
            try:
                capture.observe(message)
                if message["type"] == "http.response.body" and not message.get("more_body", False):
                    self._emit(scope, capture, start_time)
            except Exception:  # best-effort
                pass

        await self.app(scope, receive, send_and_record)

    def _emit(self, scope: Scope, capture: _ResponseCapture, start_time: float) -> None:
        duration_ms = (time.perf_counter() - start_time) * 1000
        line = format_log_line(
            scope["method"],
            scope["path"],
            capture.status,
            duration_ms,
            capture.text(),
            self.max_length,
        )
        if capture.status >= 500:
            level = logging.ERROR
        elif capture.status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, line)
