"""
Edgeserver — Terminal Error Handling
=====================================

What:  Turns any error raised while handling a request into a minimal JSON
       response: {"message": "..."} with the error's status (default 500).
How:   - ErrorHandlerMiddleware: innermost pure ASGI middleware. Catches every
         exception escaping the router, logs it (traceback for 5xx, one line
         for 4xx) and answers, unless the response has already started, in
         which case it only logs. It never re-raises.
       - register_exception_handlers(): makes Starlette/FastAPI's own
         HTTPException and validation errors use the same body shape.

Status resolution:
    exc.status_code → exc.status → 500
Message resolution:
    EdgeServerError / HTTP exceptions / any error with an explicit status
    expose their message; anything else answers "Internal Server Error".
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edgeserver.exceptions import EdgeServerError

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Internal Server Error"


def _explicit_status(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, int) and 400 <= value <= 599:
            return value
    return None


def error_status(exc: BaseException) -> int:
    return _explicit_status(exc) or 500


def error_message(exc: BaseException) -> str:
    if isinstance(exc, EdgeServerError):
        return exc.message or DEFAULT_MESSAGE
    if isinstance(exc, StarletteHTTPException):
        return str(exc.detail) if exc.detail else DEFAULT_MESSAGE
    if _explicit_status(exc) is not None:
        return str(exc) or DEFAULT_MESSAGE
    return DEFAULT_MESSAGE


class ErrorHandlerMiddleware:
    """Last stage of the pipeline; nothing raised below it reaches the server."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking)
        except Exception as exc:
            status = error_status(exc)
            method, path = scope.get("method"), scope.get("path")
            if status >= 500:
                logger.error("Unhandled error on %s %s: %s", method, path, exc, exc_info=exc)
            else:
                logger.warning("%s %s failed with %d: %s", method, path, status, exc)

            if response_started:
                logger.warning("Response for %s %s already started; error not sent", method, path)
                return

            response = JSONResponse(status_code=status, content={"message": error_message(exc)})
            await response(scope, receive, send)


def register_exception_handlers(app: FastAPI) -> None:
    """Route framework-raised HTTP errors through the same `{"message"}` shape."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            logger.error("HTTP %d on %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": error_message(exc)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(
            status_code=422,
            content={"message": "Request validation failed", "details": jsonable_encoder(exc.errors())},
        )
