"""Unit tests for config API routes.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from proxypal.config import AppConfig
from proxypal.exceptions import PersistenceError, ReconciliationPartialFailure
from proxypal.manager.models import ProcessKind
from proxypal.manager.reconcile import ReconcileAction, ReconcileResult
from proxypal.manager.status import StatusRegistry


# =============================================================================
# Tests: GET /api/config
# =============================================================================


class TestGetConfig:
    def test_returns_camel_case_document(self, client: TestClient, mock_control: MagicMock):
        mock_control.get_config.return_value = AppConfig(port=9000)

        response = client.get("/api/config")

        assert response.status_code == 200
        data = response.json()
        assert data["port"] == 9000
        assert "autoStart" in data
        assert data["copilot"]["accountType"] == "individual"


# =============================================================================
# Tests: PUT /api/config
# =============================================================================


class TestSaveConfig:
    def test_saves_and_returns_actions(self, client: TestClient, mock_control: MagicMock, registry: StatusRegistry):
        # Arrange
        saved = AppConfig(port=8765)
        mock_control.save_config.return_value = ReconcileResult(
            config=saved,
            snapshot=registry.snapshot(),
            actions=((ProcessKind.PRIMARY, ReconcileAction.RESTART),),
        )

        # Act
        response = client.put("/api/config", json={"port": 8765})

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["config"]["port"] == 8765
        assert body["actions"] == [["proxy", "restart"]]
        assert "proxy" in body["status"]
        submitted = mock_control.save_config.call_args.args[0]
        assert isinstance(submitted, AppConfig)
        assert submitted.port == 8765

    def test_missing_fields_take_defaults(self, client: TestClient, mock_control: MagicMock, registry):
        mock_control.save_config.return_value = ReconcileResult(config=AppConfig(), snapshot=registry.snapshot())

        client.put("/api/config", json={})

        assert mock_control.save_config.call_args.args[0] == AppConfig()

    def test_invalid_document_is_422_and_not_saved(self, client: TestClient, mock_control: MagicMock):
        response = client.put("/api/config", json={"port": 0})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "CONFIG_INVALID"
        assert detail["validation_errors"][0]["loc"] == ["port"]
        mock_control.save_config.assert_not_called()

    def test_non_object_body_is_422(self, client: TestClient, mock_control: MagicMock):
        response = client.put("/api/config", json=[1, 2])

        assert response.status_code == 422
        mock_control.save_config.assert_not_called()

    def test_persistence_error_is_500(self, client: TestClient, mock_control: MagicMock):
        mock_control.save_config.side_effect = PersistenceError("disk full")

        response = client.put("/api/config", json={"port": 8765})

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "CONFIG_SAVE_FAILED"

    def test_partial_failure_is_502_with_saved_flag(
        self, client: TestClient, mock_control: MagicMock, registry: StatusRegistry
    ):
        mock_control.save_config.side_effect = ReconciliationPartialFailure(
            {ProcessKind.PRIMARY: "Port 8765 is already in use"},
            registry.snapshot(),
        )

        response = client.put("/api/config", json={"port": 8765})

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["code"] == "PROCESS_RESTART_FAILED"
        assert detail["details"]["config_saved"] is True
        assert detail["details"]["failed"] == {"proxy": "Port 8765 is already in use"}
        assert "proxy" in detail["details"]["status"]


# =============================================================================
# Tests: GET /api/config/path
# =============================================================================


class TestConfigPath:
    def test_reports_path_and_existence(self, client: TestClient, mock_control: MagicMock, tmp_path: Path):
        path = tmp_path / "config.json"
        mock_control.store.path = path

        before = client.get("/api/config/path").json()
        path.write_text("{}", encoding="utf-8")
        after = client.get("/api/config/path").json()

        assert before == {"path": str(path), "exists": False}
        assert after["exists"] is True
