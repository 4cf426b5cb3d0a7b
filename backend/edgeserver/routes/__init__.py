"""
Edgeserver — Business Route Registration
=========================================

What:  The hook through which business routes join the application.
How:   The bootstrap awaits `register_routes(app)` after every edge stage is
       in place and before the asset fallback is added. Deployments pass
       their own registrar to `create_app()`; this default only mounts the
       health check.

A registrar is any callable taking the FastAPI app; it may be a coroutine
function when registration needs I/O (loading plugins, warming caches).
"""

from typing import Awaitable, Callable, Optional, Union

from fastapi import FastAPI

from edgeserver.routes import health

RouteRegistrar = Callable[[FastAPI], Optional[Union[Awaitable[None], None]]]


def register_routes(app: FastAPI) -> None:
    app.include_router(health.router)
