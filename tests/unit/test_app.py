"""Tests for the application factory and lifespan."""

from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from scout.app import create_app
from scout.config import AIConfig, AppConfig, AppSettings


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        ai=AIConfig(base_url="http://localhost:1234/v1", api_key="k"),
        app=AppSettings(data_dir=tmp_path),
    )


class TestCreateApp:
    def test_routes_mounted_under_api(self, tmp_path: Path) -> None:
        app = create_app(_config(tmp_path))
        paths = {route.path for route in app.routes}
        assert {"/api/chat", "/api/chats", "/api/chats/{chat_id}"} <= paths

    def test_lifespan_builds_and_closes_context(self, tmp_path: Path) -> None:
        app = create_app(_config(tmp_path))
        with TestClient(app) as client:
            context = app.state.context
            assert context.broker._sweeper is not None
            assert client.get("/api/chats").status_code == 401
        assert (tmp_path / "chat.db").exists()
        assert context.broker._sweeper is None

    def test_cors_allows_local_origin(self, tmp_path: Path) -> None:
        app = create_app(_config(tmp_path))
        with TestClient(app) as client:
            resp = client.options(
                "/api/chat",
                headers={"Origin": "http://localhost:8080", "Access-Control-Request-Method": "POST"},
            )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:8080"
