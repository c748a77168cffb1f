r"""demand_planner\app\services\validation_service.py"""

from __future__ import annotations

import os

from ..core.config import get_settings, load_forecast_parameters
from .history_service import ConsumptionHistoryService
from .io_utils import read_table, table_exists


class ValidationService:
    """Report whether the consumption data and forecasting settings are usable."""

    def __init__(self, data_root: str | None = None, config_root: str | None = None):
        settings = get_settings()
        self.data_root = data_root or settings.data_dir
        self.config_root = config_root or settings.config_dir

    def run(self) -> dict:
        checks = []

        def add(name: str, ok: bool, msg: str = "") -> None:
            checks.append({"name": name, "ok": bool(ok), "message": msg})

        consumption = os.path.join(self.data_root, ConsumptionHistoryService.FILE_NAME)
        present = table_exists(consumption)
        add("file_consumption_exists", present, consumption)

        if present:
            try:
                df = read_table(consumption, required=ConsumptionHistoryService.REQUIRED_COLUMNS)
            except ValueError as exc:
                add("consumption_columns_ok", False, str(exc))
            else:
                add("consumption_columns_ok", True, f"have: {list(df.columns)[:8]}")
                try:
                    history = ConsumptionHistoryService(self.data_root)
                    frame = history.load_consumption()
                except ValueError as exc:
                    add("consumption_values_ok", False, str(exc))
                else:
                    add(
                        "consumption_values_ok",
                        True,
                        f"{frame['item_id'].nunique()} items, latest month {history.latest_month()}",
                    )

        try:
            params = load_forecast_parameters(self.config_root)
        except ValueError as exc:
            add("forecast_settings_ok", False, str(exc))
        else:
            add("forecast_settings_ok", True, f"default algorithm {params.default_algorithm}")

        overall = all(x["ok"] for x in checks)
        return {"ok": overall, "checks": checks}
