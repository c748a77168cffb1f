r"""demand_planner/tests/conftest.py"""

from __future__ import annotations

import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from demand_planner.app.core import observability as obs  # noqa: E402
from demand_planner.app.services.timeseries_utils import format_month, next_months, parse_month  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_rate_limit_buckets(monkeypatch):
    """Give every test its own per-IP request window."""

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)


@pytest.fixture
def monthly_observations():
    """Build consecutive monthly observation records for one item."""

    def _build(item_id: str, start: str, quantities, **extra) -> list[dict]:
        months = next_months(format_month(parse_month(start) - 1), len(quantities))
        return [
            {"item_id": item_id, "month": month, "quantity": quantity, **extra}
            for month, quantity in zip(months, quantities)
        ]

    return _build
