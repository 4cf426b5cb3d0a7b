"""
Edgeserver — Request Body Parser Middleware
============================================

What:  Size and syntax gate for JSON and form-encoded request bodies.
How:   Buffers the body (up to `limit` bytes), rejects oversized payloads with
       413 and malformed JSON with 400, then replays the buffered body to the
       downstream app so route handlers can parse it normally.
When:  After the CT report endpoint, before the rate limiters.

Bodies with other content types (multipart uploads, binary) pass through
untouched; their handlers enforce their own limits.
"""

import json
import logging
from typing import List

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

_PARSED_TYPES = ("application/json", "application/x-www-form-urlencoded")


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


class BodyParserMiddleware:
    """Pure ASGI middleware that validates and replays request bodies."""

    def __init__(self, app: ASGIApp, limit: int = 100 * 1024) -> None:
        self.app = app
        self.limit = limit

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        media_type = _media_type(headers.get("content-type", ""))
        if not (_is_json(media_type) or media_type in _PARSED_TYPES):
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit:
            await self._too_large(scope, receive, send)
            return

        chunks: List[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                logger.debug("Client disconnected while sending body to %s", scope["path"])
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.limit:
                await self._too_large(scope, receive, send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)

        if body and _is_json(media_type):
            try:
                json.loads(body)
            except ValueError:
                response = JSONResponse(status_code=400, content={"message": "Malformed JSON body"})
                await response(scope, receive, send)
                return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _too_large(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning("Rejected %s %s: body exceeds %d bytes", scope["method"], scope["path"], self.limit)
        response = JSONResponse(status_code=413, content={"message": "Request entity too large"})
        await response(scope, receive, send)
