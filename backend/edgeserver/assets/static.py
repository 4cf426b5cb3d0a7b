"""
Edgeserver — Production Asset Delivery
=======================================

What:  Serves the client build output in production.
How:   1. resolve_static_root() probes candidate directories once at startup;
          the first one holding the entry point wins, none is fatal.
       2. StaticAssetsMiddleware sits in front of the security and rate-limit
          stages and answers directly for:
            /assets/*       immutable, 1-year cache; misses are a real 404
            other root files  (favicon, robots.txt, ...) standard caching
          Anything else continues down the pipeline.
       3. The SPA fallback route (registered after business routes) answers
          unmatched GET/HEAD requests with the entry point HTML.

State machine:
    Production-Uninitialized ──resolve ok──→ Production-Ready
                             └─no match───→ Production-Failed (startup aborts)
"""

import logging
import os
import stat
from pathlib import Path
from typing import List, Optional

import anyio
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.middleware import Middleware
from starlette.responses import PlainTextResponse, Response
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

from edgeserver.config import Settings
from edgeserver.exceptions import StaticRootNotFoundError
from edgeserver.routing import path_matches, strip_prefix

logger = logging.getLogger(__name__)


def static_root_candidates(settings: Settings, base_dir: Optional[Path] = None) -> List[Path]:
    """Ordered candidate directories: explicit override first, then conventions."""
    base = base_dir or Path.cwd()
    candidates: List[Path] = []
    if settings.frontend_dir:
        candidates.append(Path(settings.frontend_dir).expanduser())
    candidates.extend(Path(c) for c in settings.static_root_candidate_list)
    return [(c if c.is_absolute() else base / c).resolve() for c in candidates]


def resolve_static_root(
    candidates: List[Path],
    entry_point: str = "index.html",
) -> Path:
    """
    First candidate directory containing `entry_point`.

    Raises:
        StaticRootNotFoundError: no candidate qualifies.
    """
    for candidate in candidates:
        if (candidate / entry_point).is_file():
            logger.info("Serving client build from %s", candidate)
            return candidate
        logger.debug("Static root candidate %s has no %s", candidate, entry_point)
    raise StaticRootNotFoundError(entry_point, [str(c) for c in candidates])


class CachedStaticFiles(StaticFiles):
    """StaticFiles with a fixed Cache-Control header on every file response."""

    def __init__(self, *, directory: Path, cache_control: str, **kwargs) -> None:
        super().__init__(directory=directory, **kwargs)
        self.cache_control = cache_control

    def file_response(self, *args, **kwargs) -> Response:
        response = super().file_response(*args, **kwargs)
        response.headers["Cache-Control"] = self.cache_control
        return response

    async def find(self, path: str, scope: Scope) -> Optional[Response]:
        """Response for the regular file at URL `path`, or None."""
        relative = os.path.normpath(os.path.join(*path.split("/")))
        if relative == "." or relative.startswith(".."):
            return None
        full_path, stat_result = await anyio.to_thread.run_sync(self.lookup_path, relative)
        if stat_result is None or not stat.S_ISREG(stat_result.st_mode):
            return None
        return self.file_response(full_path, stat_result, scope)


class StaticAssetsMiddleware:
    """
    Short-circuits static file requests before the rest of the pipeline.

    Requests answered here never reach CORS, security headers, body parsing,
    rate limiting or the request logger.
    """

    def __init__(
        self,
        app: ASGIApp,
        root: Path,
        assets_path: str = "/assets",
        assets_max_age: int = 31536000,
        static_max_age: int = 3600,
    ) -> None:
        self.app = app
        self.assets_path = assets_path
        self.assets = CachedStaticFiles(
            directory=root / assets_path.strip("/"),
            cache_control=f"public, max-age={assets_max_age}, immutable",
            check_dir=False,
        )
        self.files = CachedStaticFiles(
            directory=root,
            cache_control=f"public, max-age={static_max_age}",
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] not in ("GET", "HEAD"):
            await self.app(scope, receive, send)
            return

        path = scope["path"]
        if path_matches(path, self.assets_path):
            response = await self.assets.find(strip_prefix(path, self.assets_path), scope)
            if response is None:
                # A missing bundle file is a broken deploy, not a client route.
                response = PlainTextResponse("Not Found", status_code=404)
            await response(scope, receive, send)
            return

        response = await self.files.find(path, scope)
        if response is None:
            await self.app(scope, receive, send)
            return
        await response(scope, receive, send)


class ProductionAssets:
    """Asset delivery for Environment.PRODUCTION."""

    def __init__(self, settings: Settings, base_dir: Optional[Path] = None) -> None:
        self.settings = settings
        self.root = resolve_static_root(
            static_root_candidates(settings, base_dir), settings.entry_point
        )
        self.entry_point = self.root / settings.entry_point

    def static_middleware(self) -> Optional[Middleware]:
        return Middleware(
            StaticAssetsMiddleware,
            root=self.root,
            assets_path=self.settings.assets_path,
            assets_max_age=self.settings.assets_max_age,
            static_max_age=self.settings.static_max_age,
        )

    def install_fallback(self, app: FastAPI) -> None:
        api_prefix = self.settings.api_prefix
        entry_point = self.entry_point

        async def spa_fallback(request: Request, full_path: str) -> FileResponse:
            if path_matches(request.url.path, api_prefix):
                raise HTTPException(status_code=404, detail="Not Found")
            return FileResponse(
                entry_point,
                media_type="text/html",
                headers={"Cache-Control": "no-cache"},
            )

        app.add_api_route(
            "/{full_path:path}",
            spa_fallback,
            methods=["GET", "HEAD"],
            include_in_schema=False,
            name="spa_fallback",
        )

    async def aclose(self) -> None:
        return None
