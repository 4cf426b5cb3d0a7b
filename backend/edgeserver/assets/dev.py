"""
Edgeserver — Development Asset Delivery
========================================

What:  Serves the client application from source during development, with
       the Vite dev server acting as the live transform engine.
How:   One catch-all route, registered after the business routes:
         - module/asset requests (/@vite/client, /src/main.tsx, /logo.svg, ...)
           are proxied to the Vite dev server, which transforms them on demand
         - every other route renders client/index.html: the entry script gets
           a cache-busting query, ViteTransformer injects the dev client
           scripts, and the result is sent as text/html
       Nothing is read from the build output in this mode.

Failures (template missing, dev server down) raise AssetTransformError and
end up in the terminal error handler; no partial response is ever written.

HMR: the injected /@vite/client opens its websocket directly against the
Vite dev server, so no websocket proxying happens here.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from starlette.middleware import Middleware
from starlette.responses import PlainTextResponse, Response

from edgeserver.config import Settings
from edgeserver.exceptions import AssetTransformError
from edgeserver.routing import path_matches

logger = logging.getLogger(__name__)

# Path prefixes owned by the Vite dev server.
VITE_PREFIXES = ("/@vite", "/@id", "/@fs", "/@react-refresh", "/src", "/node_modules")

# Hop-by-hop and encoding headers that must not be copied through the proxy.
_SKIPPED_HEADERS = {
    "connection",
    "keep-alive",
    "transfer-encoding",
    "content-encoding",
    "content-length",
    "upgrade",
    "host",
}

REACT_REFRESH_PREAMBLE = """<script type="module">
import RefreshRuntime from "/@react-refresh"
RefreshRuntime.injectIntoGlobalHook(window)
window.$RefreshReg$ = () => {}
window.$RefreshSig$ = () => (type) => type
window.__vite_plugin_react_preamble_installed__ = true
</script>"""

VITE_CLIENT_SCRIPT = '<script type="module" src="/@vite/client"></script>'


class ViteTransformer:
    """
    HTML half of the dev tooling: injects the scripts Vite needs into the page.

    The module graph itself is transformed by the dev server; the proxy in
    DevelopmentAssets forwards those requests.
    """

    def __init__(self, react_refresh: bool = True) -> None:
        self.react_refresh = react_refresh

    def transform_index_html(self, url: str, html: str) -> str:
        scripts = [VITE_CLIENT_SCRIPT]
        if self.react_refresh:
            scripts.insert(0, REACT_REFRESH_PREAMBLE)
        injection = "\n".join(scripts)

        lower = html.lower()
        head = lower.find("<head")
        if head != -1:
            close = lower.find(">", head)
            if close != -1:
                return f"{html[:close + 1]}\n{injection}{html[close + 1:]}"
        logger.debug("Template for %s has no <head>; prepending dev scripts", url)
        return f"{injection}\n{html}"


def cache_bust(template: str, entry: str) -> str:
    """Append a fresh ?v= query to the entry script reference."""
    version = uuid.uuid4().hex[:12]
    return template.replace(f'src="{entry}"', f'src="{entry}?v={version}"')


def is_dev_module_request(path: str) -> bool:
    if any(path_matches(path, prefix) for prefix in VITE_PREFIXES):
        return True
    last_segment = path.rsplit("/", 1)[-1]
    return "." in last_segment


def is_denied_path(path: str) -> bool:
    """Dotfiles (".env", ".git/...") are never exposed by the dev proxy."""
    if any(path_matches(path, prefix) for prefix in VITE_PREFIXES):
        # Pre-bundled deps live under /node_modules/.vite
        return False
    return any(segment.startswith(".") for segment in path.split("/") if segment)


class DevelopmentAssets:
    """Asset delivery for Environment.DEVELOPMENT."""

    def __init__(
        self,
        settings: Settings,
        transformer: Optional[ViteTransformer] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.settings = settings
        self.transformer = transformer or ViteTransformer(settings.vite_react_refresh)
        self.template_path = (base_dir or Path.cwd()) / settings.client_template
        self.client = client or httpx.AsyncClient(
            base_url=settings.vite_dev_url,
            timeout=settings.vite_proxy_timeout,
        )

    def static_middleware(self) -> Optional[Middleware]:
        return None

    def install_fallback(self, app: FastAPI) -> None:
        async def dev_fallback(request: Request, full_path: str) -> Response:
            path = request.url.path
            if path_matches(path, self.settings.api_prefix):
                raise HTTPException(status_code=404, detail="Not Found")
            if is_denied_path(path):
                logger.warning("Denied dev request for dotfile path %s", path)
                return PlainTextResponse("Forbidden", status_code=403)
            if not is_dev_module_request(path):
                return await self.render_index(request)
            return await self.proxy(request)

        app.add_api_route(
            "/{full_path:path}",
            dev_fallback,
            methods=["GET", "HEAD"],
            include_in_schema=False,
            name="dev_fallback",
        )

    async def render_index(self, request: Request) -> HTMLResponse:
        url = request.url.path
        if request.url.query:
            url += f"?{request.url.query}"

        try:
            async with aiofiles.open(self.template_path, "r", encoding="utf-8") as fh:
                template = await fh.read()
        except OSError as e:
            raise AssetTransformError(
                message=f"Could not read client template: {e.strerror or e}",
                context={"template": str(self.template_path)},
            ) from e

        template = cache_bust(template, self.settings.client_entry)
        try:
            html = self.transformer.transform_index_html(url, template)
        except Exception as e:
            raise AssetTransformError(
                message=f"Failed to transform client template: {e}",
                context={"url": url},
            ) from e

        return HTMLResponse(content=html, status_code=200)

    async def proxy(self, request: Request) -> Response:
        headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in _SKIPPED_HEADERS
        }
        target = request.url.path
        if request.url.query:
            target += f"?{request.url.query}"

        try:
            upstream = await self.client.request(request.method, target, headers=headers)
        except httpx.HTTPError as e:
            raise AssetTransformError(
                message=f"Vite dev server unavailable at {self.settings.vite_dev_url}",
                status_code=502,
                context={"path": target, "error": str(e)},
            ) from e

        response_headers = {
            k: v for k, v in upstream.headers.items()
            if k.lower() not in _SKIPPED_HEADERS
        }
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=response_headers,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
