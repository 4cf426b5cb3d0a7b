"""
Edgeserver — Application Factory & Bootstrap
=============================================

What:  Assembles the edge pipeline around the business routes and starts the
       HTTP server.
How:   build_app() / create_app() return a configured FastAPI instance;
       bootstrap() wraps it in an EdgeServer (a uvicorn.Server); run() is
       the process entry point used by `python -m edgeserver`.

Bootstrap sequence (reordering breaks correctness):
     1. trusted proxy hop            ┐
     2. compression                  │
     3. [prod] static assets         │  pipeline.build_pipeline(),
     4. HTTPS redirect / CORS / hdrs │  installed as FastAPI middleware
     5. CT report endpoint           │  in this exact order
     6. body parser                  │
     7. rate limiters                │
     9. request logger               │
    12. terminal error handler       ┘  (innermost)
     8. /uploads static mount        ┐
    10. business routes (awaited)    │  router, in registration order
    11. dev transform / SPA fallback ┘
    13. bind and listen, then log readiness (EdgeServer.startup)
    Any exception before step 13 aborts the process with exit code 1.
"""

import asyncio
import inspect
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError as SettingsValidationError
from starlette.staticfiles import StaticFiles

from edgeserver import __version__
from edgeserver.assets import AssetDelivery, create_asset_delivery
from edgeserver.config import Settings, get_settings
from edgeserver.exceptions import BootstrapError
from edgeserver.middleware.errors import register_exception_handlers
from edgeserver.middleware.rate_limit import FixedWindowStore
from edgeserver.pipeline import build_pipeline
from edgeserver.routes import RouteRegistrar, register_routes as default_register_routes

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Uvicorn runs with log_config=None, so its records use this format too.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request lines come from edgeserver.access instead.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    logger.info("Starting edgeserver %s (%s)", __version__, settings.environment.value)

    yield

    logger.info("Server shutting down...")
    await app.state.assets.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def _assemble(settings: Settings, base_dir: Optional[Path]) -> FastAPI:
    """Steps 1-9 and 12: every edge stage plus the uploads mount."""
    assets: AssetDelivery = create_asset_delivery(settings, base_dir=base_dir)
    stores: Dict[str, FixedWindowStore] = {}
    stages = build_pipeline(settings, assets, stores)

    app = FastAPI(
        title="Edgeserver",
        version=__version__,
        docs_url=None if settings.is_production else "/api/docs",
        redoc_url=None,
        openapi_url=None if settings.is_production else "/api/openapi.json",
        middleware=[stage.middleware for stage in stages],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.assets = assets
    app.state.rate_limit_stores = stores
    app.state.pipeline = [stage.name for stage in stages]

    register_exception_handlers(app)

    upload_dir = Path(settings.upload_dir)
    if not upload_dir.is_absolute():
        upload_dir = (base_dir or Path.cwd()) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    logger.debug("Pipeline: %s", " → ".join(app.state.pipeline))
    return app


def create_app(
    settings: Optional[Settings] = None,
    register_routes: RouteRegistrar = default_register_routes,
    base_dir: Optional[Path] = None,
) -> FastAPI:
    """
    Synchronous factory (e.g. `uvicorn edgeserver.main:create_app --factory`).

    Only accepts synchronous registrars; use build_app() for coroutine ones.
    """
    settings = settings or get_settings()
    app = _assemble(settings, base_dir)

    result = register_routes(app)
    if inspect.isawaitable(result):
        if inspect.iscoroutine(result):
            result.close()
        raise BootstrapError("Asynchronous route registrar passed to create_app(); use build_app()")

    app.state.assets.install_fallback(app)
    return app


async def build_app(
    settings: Optional[Settings] = None,
    register_routes: RouteRegistrar = default_register_routes,
    base_dir: Optional[Path] = None,
) -> FastAPI:
    """Async factory; awaits the route registrar when it is a coroutine."""
    settings = settings or get_settings()
    app = _assemble(settings, base_dir)

    result = register_routes(app)
    if inspect.isawaitable(result):
        await result

    app.state.assets.install_fallback(app)
    return app


# ══════════════════════════════════════════════════════════════════════════
# Server Bootstrap
# ══════════════════════════════════════════════════════════════════════════

class EdgeServer(uvicorn.Server):
    """uvicorn.Server that reports readiness only once its sockets listen."""

    def __init__(self, config: uvicorn.Config, settings: Settings) -> None:
        super().__init__(config)
        self.settings = settings

    async def startup(self, sockets=None) -> None:
        # A failed bind exits inside super().startup(), before `started` is set.
        await super().startup(sockets=sockets)
        if self.started:
            logger.info(
                "Server online on %s:%d (%s, edgeserver %s)",
                self.settings.host,
                self.settings.port,
                self.settings.environment.value,
                __version__,
            )


async def bootstrap(
    settings: Settings,
    register_routes: RouteRegistrar = default_register_routes,
) -> EdgeServer:
    """Build the app and the (not yet listening) server handle."""
    app = await build_app(settings, register_routes)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        # X-Forwarded-* is handled by TrustedProxyMiddleware with hop counting.
        proxy_headers=False,
        server_header=False,
        log_config=None,
        access_log=False,
        lifespan="on",
    )
    return EdgeServer(config, settings)


async def serve(
    settings: Settings,
    register_routes: RouteRegistrar = default_register_routes,
) -> None:
    server = await bootstrap(settings, register_routes)
    await server.serve()


def run() -> None:
    """Process entry point. Exit code 1 on any bootstrap failure."""
    try:
        settings = get_settings()
    except SettingsValidationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    setup_logging(settings)
    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical("Fatal bootstrap error: %s", e, exc_info=True)
        sys.exit(1)
