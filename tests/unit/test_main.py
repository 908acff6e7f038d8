"""Tests for __main__.py: config errors, --test, server startup."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_config(host: str = "127.0.0.1", port: int = 8080) -> MagicMock:
    config = MagicMock()
    config.app.host = host
    config.app.port = port
    config.app.log_level = "info"
    config.app.data_dir = Path("/tmp/scout-test")
    config.ai.base_url = "http://localhost:1234/v1"
    config.ai.model = "test-model"
    config.ai.verify_ssl = True
    config.search.api_key = ""
    config.tracing.enabled = False
    return config


class TestMain:
    def test_config_error_exits_with_guide(self, capsys: pytest.CaptureFixture[str]) -> None:
        from scout.__main__ import main

        with (
            patch.object(sys, "argv", ["scout"]),
            patch("scout.__main__.load_config", side_effect=ValueError("AI base_url is required.")),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Configuration error: AI base_url is required." in err
        assert "SERPER_API_KEY" in err

    def test_runs_server_with_config(self) -> None:
        from scout.__main__ import main

        config = _make_config(port=9000)
        app = MagicMock()
        with (
            patch.object(sys, "argv", ["scout"]),
            patch("scout.__main__.load_config", return_value=config),
            patch("scout.app.create_app", return_value=app) as mock_create,
            patch("scout.__main__.uvicorn.run") as mock_run,
        ):
            main()

        mock_create.assert_called_once_with(config)
        mock_run.assert_called_once_with(app, host="127.0.0.1", port=9000, log_level="info")

    def test_warns_when_binding_all_interfaces(self, capsys: pytest.CaptureFixture[str]) -> None:
        from scout.__main__ import _run_server

        with patch("scout.app.create_app"), patch("scout.__main__.uvicorn.run"):
            _run_server(_make_config(host="0.0.0.0"), Path("/tmp/none.yaml"))

        assert "Binding to all interfaces" in capsys.readouterr().err


class TestConnectionCheck:
    def test_success(self, capsys: pytest.CaptureFixture[str]) -> None:
        from scout.__main__ import main

        service = MagicMock()
        service.validate_connection = AsyncMock(return_value=(True, "Connected successfully", ["m1", "m2"]))
        service.close = AsyncMock()
        with (
            patch.object(sys, "argv", ["scout", "--test"]),
            patch("scout.__main__.load_config", return_value=_make_config()),
            patch("scout.services.ai_service.AIService", return_value=service),
            patch("scout.__main__.uvicorn.run") as mock_run,
        ):
            main()

        mock_run.assert_not_called()
        out = capsys.readouterr().out
        assert "2 model(s) available" in out
        assert "All checks passed." in out

    def test_failure_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        from scout.__main__ import main

        service = MagicMock()
        service.validate_connection = AsyncMock(return_value=(False, "Authentication failed.", []))
        service.close = AsyncMock()
        with (
            patch.object(sys, "argv", ["scout", "--test"]),
            patch("scout.__main__.load_config", return_value=_make_config()),
            patch("scout.services.ai_service.AIService", return_value=service),
            pytest.raises(SystemExit) as exc_info,
        ):
            main()

        assert exc_info.value.code == 1
        assert "FAILED - Authentication failed." in capsys.readouterr().out
