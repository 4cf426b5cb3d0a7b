"""
Edgeserver — Test Configuration (conftest.py)
==============================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every app is built from an explicit Settings object rooted in a
       temporary directory, and exercised in-process through httpx's
       ASGITransport (no real server, no network).

Fixture Hierarchy:
    build_dir         tmp build output: index.html, favicon.ico, assets/app.js
    client_dir        tmp dev template: client/index.html
    dev_settings      development Settings
    prod_settings     production Settings pointing at build_dir
    business          stub business routes + call counters
    dev_app, prod_app apps built with create_app()
    dev_client        AsyncClient over dev_app (http://)
    prod_client       AsyncClient over prod_app (https://)
"""

import os
from pathlib import Path
from typing import Dict

import httpx
import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from httpx import ASGITransport, AsyncClient

from edgeserver.config import Settings
from edgeserver.main import create_app

os.environ.setdefault("LOG_LEVEL", "WARNING")

INDEX_HTML = "<!doctype html><html><head><title>App</title></head><body><div id=\"root\"></div></body></html>"
APP_JS = b"console.log('bundled app');\n"
FAVICON = b"\x00\x00\x01\x00fake-icon"
TEMPLATE_HTML = (
    "<!doctype html>\n<html>\n<head>\n<title>Dev</title>\n</head>\n<body>\n"
    '<div id="root"></div>\n<script type="module" src="/src/main.tsx"></script>\n'
    "</body>\n</html>\n"
)
ADMIN_PASSWORD = "s3cret"


class BusinessRoutes:
    """Stand-in for the real business routes, counting handler invocations."""

    def __init__(self) -> None:
        self.calls: Dict[str, int] = {"items": 0, "login": 0}

    def register(self, app: FastAPI) -> None:
        router = APIRouter(prefix="/api")

        @router.get("/items")
        async def list_items():
            self.calls["items"] += 1
            return {"items": [{"id": 1, "name": "Café"}, {"id": 2, "name": "Tea"}], "total": 2}

        @router.post("/admin/login")
        async def admin_login(request: Request):
            self.calls["login"] += 1
            payload = await request.json()
            if payload.get("password") == ADMIN_PASSWORD:
                return {"success": True}
            return JSONResponse(status_code=401, content={"success": False, "message": "Invalid credentials"})

        @router.post("/echo")
        async def echo(request: Request):
            return await request.json()

        @router.get("/big")
        async def big():
            return {"data": "x" * 5000}

        @router.get("/text")
        async def text():
            return PlainTextResponse("plain body")

        @router.get("/boom")
        async def boom():
            raise RuntimeError("database password is hunter2")

        @router.get("/teapot")
        async def teapot():
            error = ValueError("I refuse to brew coffee")
            error.status_code = 418
            raise error

        app.include_router(router)


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    root = tmp_path / "dist" / "public"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (root / "favicon.ico").write_bytes(FAVICON)
    (root / "assets" / "app.js").write_bytes(APP_JS)
    return root


@pytest.fixture
def client_dir(tmp_path: Path) -> Path:
    template = tmp_path / "client" / "index.html"
    template.parent.mkdir(parents=True)
    template.write_text(TEMPLATE_HTML, encoding="utf-8")
    return tmp_path


@pytest.fixture
def dev_settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="development",
        cors_origins="https://app.example.com",
        upload_dir=str(tmp_path / "uploads"),
        client_template=str(tmp_path / "client" / "index.html"),
        log_level="WARNING",
    )


@pytest.fixture
def prod_settings(tmp_path: Path, build_dir: Path) -> Settings:
    return Settings(
        environment="production",
        cors_origins="https://app.example.com",
        frontend_dir=str(build_dir),
        static_root_candidates="does-not-exist",
        upload_dir=str(tmp_path / "uploads"),
        log_level="WARNING",
    )


@pytest.fixture
def business() -> BusinessRoutes:
    return BusinessRoutes()


@pytest_asyncio.fixture
async def dev_app(dev_settings, business, client_dir):
    app = create_app(dev_settings, register_routes=business.register, base_dir=client_dir)
    yield app
    await app.state.assets.aclose()


@pytest.fixture
def prod_app(prod_settings, business, tmp_path):
    return create_app(prod_settings, register_routes=business.register, base_dir=tmp_path)


@pytest_asyncio.fixture
async def dev_client(dev_app):
    transport = ASGITransport(app=dev_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture
async def prod_client(prod_app):
    transport = ASGITransport(app=prod_app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as client:
        yield client


def make_client(app: FastAPI, base_url: str = "http://testserver") -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url=base_url)


def mock_vite(handler) -> httpx.AsyncClient:
    """httpx client whose requests are answered by `handler` instead of Vite."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://vite.test")
