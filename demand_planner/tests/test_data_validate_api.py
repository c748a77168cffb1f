r"""demand_planner/tests/test_data_validate_api.py"""

from __future__ import annotations

import sys
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from demand_planner.app.main import app  # noqa: E402

client = TestClient(app)


def _checks(payload: dict) -> dict[str, bool]:
    return {check["name"]: check["ok"] for check in payload["checks"]}


def test_validate_ok(monkeypatch, tmp_path: Path):
    (tmp_path / "consumption.csv").write_text(
        "item_id,month,quantity,category\nMAT-001,2024-01,12,raw-material\nMAT-001,2024-02,14,raw-material\n",
        encoding="utf-8",
    )
    (tmp_path / "settings.yaml").write_text("forecasting:\n  smoothing_alpha: 0.3\n", encoding="utf-8")

    from demand_planner.app.api.v1 import data as data_api

    monkeypatch.setattr(data_api._validation_service, "data_root", str(tmp_path))
    monkeypatch.setattr(data_api._validation_service, "config_root", str(tmp_path))

    response = client.get("/api/v1/data/validate")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert _checks(payload) == {
        "file_consumption_exists": True,
        "consumption_columns_ok": True,
        "consumption_values_ok": True,
        "forecast_settings_ok": True,
    }


def test_validate_reports_missing_file_and_bad_settings(monkeypatch, tmp_path: Path):
    (tmp_path / "settings.yaml").write_text("forecasting:\n  smoothing_alpha: 3\n", encoding="utf-8")

    from demand_planner.app.api.v1 import data as data_api

    monkeypatch.setattr(data_api._validation_service, "data_root", str(tmp_path))
    monkeypatch.setattr(data_api._validation_service, "config_root", str(tmp_path))

    response = client.get("/api/v1/data/validate")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is False
    assert _checks(payload) == {"file_consumption_exists": False, "forecast_settings_ok": False}


def test_validate_reports_bad_values(monkeypatch, tmp_path: Path):
    (tmp_path / "consumption.csv").write_text("item_id,month,quantity\nMAT-001,2024-01,n/a-ish\n", encoding="utf-8")

    from demand_planner.app.api.v1 import data as data_api

    monkeypatch.setattr(data_api._validation_service, "data_root", str(tmp_path))
    monkeypatch.setattr(data_api._validation_service, "config_root", str(tmp_path))

    payload = client.get("/api/v1/data/validate").json()
    assert _checks(payload)["consumption_columns_ok"] is True
    assert _checks(payload)["consumption_values_ok"] is False
