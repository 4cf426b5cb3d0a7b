"""
Edgeserver — Asset Delivery Package
====================================

What:  Environment-specific delivery of the client application.

    development → DevelopmentAssets (dev.py): Vite-backed live transform
    production  → ProductionAssets  (static.py): build output + SPA fallback

Both implement the same small interface used by the bootstrap:

    static_middleware()  stage to put in front of security/limits, or None
    install_fallback(app) catch-all route registered after business routes
    aclose()             release resources at shutdown
"""

from pathlib import Path
from typing import Optional, Protocol

from fastapi import FastAPI
from starlette.middleware import Middleware

from edgeserver.assets.dev import DevelopmentAssets, ViteTransformer
from edgeserver.assets.static import ProductionAssets, resolve_static_root
from edgeserver.config import Environment, Settings


class AssetDelivery(Protocol):
    def static_middleware(self) -> Optional[Middleware]: ...

    def install_fallback(self, app: FastAPI) -> None: ...

    async def aclose(self) -> None: ...


def create_asset_delivery(settings: Settings, base_dir: Optional[Path] = None) -> AssetDelivery:
    """
    Build the asset delivery matching `settings.environment`.

    Raises:
        StaticRootNotFoundError: production mode without a usable build output.
    """
    if settings.environment is Environment.PRODUCTION:
        return ProductionAssets(settings, base_dir=base_dir)
    return DevelopmentAssets(settings, base_dir=base_dir)


__all__ = [
    "AssetDelivery",
    "DevelopmentAssets",
    "ProductionAssets",
    "ViteTransformer",
    "create_asset_delivery",
    "resolve_static_root",
]
