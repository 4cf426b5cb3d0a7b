"""
Edgeserver — Pipeline & Bootstrap Tests
========================================

What:  Stage order per environment, route registration and the process
       entry point's failure behavior.
"""

import logging

import pytest
import uvicorn

from edgeserver import main
from edgeserver.config import Settings
from edgeserver.exceptions import BootstrapError
from edgeserver.main import EdgeServer, build_app, create_app

from conftest import make_client

COMMON_TAIL = [
    "cors",
    "security-headers",
    "ct-report",
    "body-parser",
    "admin-login-limiter",
    "general-limiter",
    "request-logger",
    "error-handler",
]


class TestStageOrder:

    def test_production_order(self, prod_app):
        assert prod_app.state.pipeline == [
            "proxy-trust",
            "compression",
            "static-assets",
            "https-redirect",
            *COMMON_TAIL,
        ]

    @pytest.mark.asyncio
    async def test_development_order(self, dev_app):
        assert dev_app.state.pipeline == ["proxy-trust", "compression", *COMMON_TAIL]

    def test_compression_can_be_disabled(self, prod_settings, tmp_path):
        settings = prod_settings.model_copy(update={"compression_enabled": False})
        app = create_app(settings, base_dir=tmp_path)
        assert "compression" not in app.state.pipeline

    def test_admin_limiter_precedes_general(self, prod_app):
        stages = prod_app.state.pipeline
        assert stages.index("admin-login-limiter") < stages.index("general-limiter")
        assert stages.index("body-parser") < stages.index("admin-login-limiter")


class TestCompression:

    @pytest.mark.asyncio
    async def test_large_api_response_is_gzipped(self, prod_client):
        response = await prod_client.get("/api/big", headers={"Accept-Encoding": "gzip"})
        assert response.headers["content-encoding"] == "gzip"
        assert len(response.json()["data"]) == 5000


class TestRouteRegistration:

    @pytest.mark.asyncio
    async def test_default_registrar_mounts_health(self, prod_settings, tmp_path):
        app = create_app(prod_settings, base_dir=tmp_path)
        async with make_client(app, "https://testserver") as client:
            response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["environment"] == "production"

    @pytest.mark.asyncio
    async def test_async_registrar_awaited_by_build_app(self, prod_settings, tmp_path):
        async def register(app):
            @app.get("/api/ping")
            async def ping():
                return {"pong": True}

        app = await build_app(prod_settings, register_routes=register, base_dir=tmp_path)
        async with make_client(app, "https://testserver") as client:
            response = await client.get("/api/ping")
        assert response.json() == {"pong": True}

    def test_create_app_rejects_async_registrar(self, prod_settings, tmp_path):
        async def register(app):
            return None

        with pytest.raises(BootstrapError):
            create_app(prod_settings, register_routes=register, base_dir=tmp_path)

    @pytest.mark.asyncio
    async def test_business_routes_take_precedence_over_fallback(self, prod_client):
        response = await prod_client.get("/api/items")
        assert response.json()["total"] == 2


class TestRun:

    def test_missing_build_output_exits_1(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = Settings(environment="production", static_root_candidates="dist/public")
        monkeypatch.setattr(main, "get_settings", lambda: settings)
        monkeypatch.setattr(main, "setup_logging", lambda settings: None)

        with pytest.raises(SystemExit) as exc_info:
            main.run()
        assert exc_info.value.code == 1

    def test_invalid_configuration_exits_1(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        main.get_settings.cache_clear()
        try:
            with pytest.raises(SystemExit) as exc_info:
                main.run()
        finally:
            main.get_settings.cache_clear()
        assert exc_info.value.code == 1


class TestReadiness:

    @staticmethod
    def online_records(caplog):
        return [r for r in caplog.records if r.getMessage().startswith("Server online")]

    @pytest.mark.asyncio
    async def test_readiness_logged_once_listening(self, monkeypatch, caplog, prod_app, prod_settings):
        async def listening(self, sockets=None):
            self.started = True

        monkeypatch.setattr(uvicorn.Server, "startup", listening)
        caplog.set_level(logging.INFO, logger="edgeserver.main")
        server = EdgeServer(uvicorn.Config(prod_app, port=prod_settings.port), prod_settings)

        await server.startup()

        [record] = self.online_records(caplog)
        assert f":{prod_settings.port}" in record.getMessage()

    @pytest.mark.asyncio
    async def test_no_readiness_when_bind_fails(self, monkeypatch, caplog, prod_app, prod_settings):
        async def bind_fails(self, sockets=None):
            raise SystemExit(1)

        monkeypatch.setattr(uvicorn.Server, "startup", bind_fails)
        caplog.set_level(logging.INFO, logger="edgeserver.main")
        server = EdgeServer(uvicorn.Config(prod_app), prod_settings)

        with pytest.raises(SystemExit):
            await server.startup()

        assert self.online_records(caplog) == []

    @pytest.mark.asyncio
    async def test_no_readiness_when_startup_aborts(self, monkeypatch, caplog, prod_app, prod_settings):
        async def lifespan_failed(self, sockets=None):
            self.should_exit = True

        monkeypatch.setattr(uvicorn.Server, "startup", lifespan_failed)
        caplog.set_level(logging.INFO, logger="edgeserver.main")
        server = EdgeServer(uvicorn.Config(prod_app), prod_settings)

        await server.startup()

        assert not server.started
        assert self.online_records(caplog) == []

    @pytest.mark.asyncio
    async def test_lifespan_does_not_claim_readiness(self, caplog, prod_app):
        caplog.set_level(logging.INFO, logger="edgeserver.main")

        async with main.lifespan(prod_app):
            assert self.online_records(caplog) == []
