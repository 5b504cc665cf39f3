"""
Tests for syncbridge/main.py - app factory, correlation middleware, lifespan.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from syncbridge.main import create_app, lifespan


def _make_mock_settings(**overrides):
    defaults = {
        "app_env": "test",
        "log_level": "WARNING",
        "encryption_key": "",
        "cron_secret": "cron",
        "admin_api_token": "admin",
        "sentry_dsn": "",
        "ingest_worker_enabled": False,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _app(**overrides):
    with (
        patch("syncbridge.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("syncbridge.main.configure_structured_logging"),
    ):
        return create_app()


class TestCreateApp:
    def test_metadata(self):
        app = _app()
        assert isinstance(app, FastAPI)
        assert app.title == "SyncBridge"

    def test_configures_logging_level(self):
        with (
            patch("syncbridge.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("syncbridge.main.configure_structured_logging") as mock_log,
        ):
            create_app()
        mock_log.assert_called_once_with("DEBUG")

    def test_routes_registered(self):
        app = _app()
        # Included routers may not expose a path of their own
        paths = {getattr(route, "path", None) for route in app.routes}
        paths |= set(app.openapi()["paths"])
        assert {
            "/hooks/{connection_id}",
            "/jobs/ingest",
            "/events",
            "/events/{event_id}",
            "/events/{event_id}/replay",
            "/items/lookup",
            "/items/resync",
            "/health",
            "/health/ready",
        } <= paths


class TestCorrelationIdMiddleware:
    def test_generated_when_missing(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        response = client.get("/health")
        assert len(response.headers["x-correlation-id"]) == 32

    def test_echoes_supplied_id(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        response = client.get("/health", headers={"X-Correlation-ID": "cid-123"})
        assert response.headers["x-correlation-id"] == "cid-123"

    def test_admin_routes_require_token(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        assert client.get("/events").status_code == 401
        assert client.post("/jobs/ingest").status_code == 401


class TestLifespan:
    async def test_starts_and_stops_polling_worker(self):
        started = asyncio.Event()

        async def _worker():
            started.set()
            await asyncio.sleep(3600)

        with (
            patch("syncbridge.main.get_settings", return_value=_make_mock_settings(ingest_worker_enabled=True)),
            patch("syncbridge.workers.ingest_worker.run_ingest_worker", side_effect=_worker),
            patch("syncbridge.utils.redis_client.close_redis", new_callable=AsyncMock) as mock_close,
        ):
            async with lifespan(MagicMock()):
                await asyncio.wait_for(started.wait(), timeout=1)

        mock_close.assert_awaited_once()

    async def test_worker_disabled_by_default(self):
        with (
            patch("syncbridge.main.get_settings", return_value=_make_mock_settings()),
            patch("syncbridge.workers.ingest_worker.run_ingest_worker") as mock_worker,
            patch("syncbridge.utils.redis_client.close_redis", new_callable=AsyncMock),
        ):
            async with lifespan(MagicMock()):
                pass

        mock_worker.assert_not_called()
