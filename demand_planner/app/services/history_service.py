r"""demand_planner\app\services\history_service.py

Consumption history: normalisation of raw observations into per-item
``HistorySeries`` and a file-backed source for the planning API.

Observations arrive unsorted, possibly mixed across items and possibly
with repeated ``(item, month)`` keys.  Grouping sorts each item's history
by month and keeps the last observation seen for a repeated month
(last-write-wins).  Malformed records are collected and raised together
so bad data is visible instead of turning into a legitimate-looking zero
forecast.

Quantities may be numbers or numeric strings, since CSV exports and form
payloads carry ``"12"`` as often as ``12``.  An absent quantity, ``None``
and a blank string all mean nothing was recorded for the month and count
as 0.  Any other string, a non-finite value or a number too large for a
float is reported as malformed.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from ..core.config import get_settings
from ..models.schemas import Observation
from .io_utils import read_table, table_exists
from .timeseries_utils import format_month, is_month_label, is_number, parse_month

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result containers


@dataclass(frozen=True, slots=True)
class HistorySeries:
    """Month-ordered consumption history of a single item."""

    item_id: str
    months: Tuple[str, ...] = ()
    quantities: Tuple[float, ...] = ()
    item_name: str = ""
    item_code: str = ""
    category: str = ""

    def __post_init__(self) -> None:
        if len(self.months) != len(self.quantities):
            raise ValueError("months and quantities must have the same length")

    def __len__(self) -> int:
        return len(self.quantities)

    @property
    def last_month(self) -> Optional[str]:
        return self.months[-1] if self.months else None

    def split(self, test_window: int) -> Tuple["HistorySeries", "HistorySeries"]:
        """Split into ``(train, test)`` holding out the trailing months."""

        if test_window < 1:
            raise ValueError("test_window must be a positive integer")
        cut = max(len(self) - test_window, 0)
        train = HistorySeries(self.item_id, self.months[:cut], self.quantities[:cut],
                              self.item_name, self.item_code, self.category)
        test = HistorySeries(self.item_id, self.months[cut:], self.quantities[cut:],
                             self.item_name, self.item_code, self.category)
        return train, test


@dataclass(frozen=True, slots=True)
class ObservationIssue:
    index: int
    item_id: str
    reason: str

    def as_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "item_id": self.item_id, "reason": self.reason}


class InvalidObservationError(ValueError):
    """Raised when observations are structurally malformed."""

    def __init__(self, issues: List[ObservationIssue]) -> None:
        self.issues = list(issues)
        first = self.issues[0]
        more = f" (and {len(self.issues) - 1} more)" if len(self.issues) > 1 else ""
        super().__init__(
            f"Invalid observation at index {first.index} for item '{first.item_id}': {first.reason}{more}"
        )


# ---------------------------------------------------------------------------
# Observation parsing


_ALIASES: Dict[str, Tuple[str, ...]] = {
    "item_id": ("item_id", "itemId"),
    "item_name": ("item_name", "itemName"),
    "item_code": ("item_code", "itemCode"),
    "category": ("category",),
    "month": ("month",),
    "quantity": ("quantity",),
}


def _field(record: Mapping[str, Any], name: str) -> Any:
    for key in _ALIASES[name]:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _coerce_quantity(value: Any) -> Optional[float]:
    """Return the quantity as float, 0.0 when missing, ``None`` when invalid."""

    if value is None:
        return 0.0
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            LOGGER.debug("Blank quantity treated as no consumption")
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


@dataclass(slots=True)
class _ItemGroup:
    item_id: str
    item_name: str = ""
    item_code: str = ""
    category: str = ""
    points: Dict[str, float] = field(default_factory=dict)

    def to_series(self) -> HistorySeries:
        months = tuple(sorted(self.points))
        return HistorySeries(
            item_id=self.item_id,
            months=months,
            quantities=tuple(self.points[m] for m in months),
            item_name=self.item_name,
            item_code=self.item_code,
            category=self.category,
        )


def group_observations(
    records: Iterable[Observation | Mapping[str, Any]],
    categories: Optional[Iterable[str]] = None,
) -> List[HistorySeries]:
    """Group observations into month-sorted, de-duplicated item histories.

    Items keep the order of their first appearance.  A record with no
    month still registers its item, which then has an empty history.
    ``categories`` keeps only records whose explicit category is listed.
    """

    wanted = set(categories) if categories is not None else None
    groups: Dict[str, _ItemGroup] = {}
    issues: List[ObservationIssue] = []

    for index, record in enumerate(records):
        if isinstance(record, Observation):
            record = record.model_dump()
        if not isinstance(record, Mapping):
            issues.append(ObservationIssue(index, "", "record is not a mapping"))
            continue

        category = _text(_field(record, "category"))
        if wanted is not None and category not in wanted:
            continue

        item_id = _text(_field(record, "item_id"))
        quantity = _coerce_quantity(_field(record, "quantity"))
        if quantity is None:
            issues.append(ObservationIssue(index, item_id, f"non-numeric quantity {_field(record, 'quantity')!r}"))
            continue

        month = _field(record, "month")
        if month not in (None, "") and not is_month_label(month):
            issues.append(ObservationIssue(index, item_id, f"unparseable month label {month!r}"))
            continue

        group = groups.get(item_id)
        if group is None:
            group = groups[item_id] = _ItemGroup(item_id)
        group.item_name = group.item_name or _text(_field(record, "item_name"))
        group.item_code = group.item_code or _text(_field(record, "item_code"))
        group.category = group.category or category

        if month in (None, ""):
            continue
        if month in group.points:
            LOGGER.debug("Duplicate observation for item=%s month=%s; keeping the later one", item_id, month)
        group.points[month] = quantity

    if issues:
        raise InvalidObservationError(issues)
    return [group.to_series() for group in groups.values()]


# ---------------------------------------------------------------------------
# File-backed consumption source


class ConsumptionHistoryService:
    """Monthly consumption records read from ``<data_dir>/consumption.csv``.

    The file holds one row per consumption record (``item_id``, ``month``,
    ``quantity`` plus optional ``item_name``, ``item_code``, ``category``).
    Rows for the same item and month are summed, as production and
    packaging orders in the same month both consume material.
    """

    FILE_NAME = "consumption.csv"
    REQUIRED_COLUMNS = ("item_id", "month", "quantity")
    OPTIONAL_COLUMNS = ("item_name", "item_code", "category")

    def __init__(self, data_root: Optional[str] = None) -> None:
        self.data_root = Path(data_root or get_settings().data_dir)
        self._frame: Optional[pd.DataFrame] = None

    # ------------------------------------------------------------------
    @property
    def path(self) -> Path:
        return self.data_root / self.FILE_NAME

    def data_files_present(self) -> bool:
        return table_exists(self.path)

    # ------------------------------------------------------------------
    def load_consumption(self) -> pd.DataFrame:
        """Return consumption aggregated per item and month."""

        if self._frame is not None:
            return self._frame

        raw = read_table(self.path, dtype={"item_id": "string", "month": "string"}, required=self.REQUIRED_COLUMNS)
        df = raw.copy()
        df["item_id"] = df["item_id"].astype("string").fillna("")
        for col in self.OPTIONAL_COLUMNS:
            df[col] = df[col].astype("string").fillna("") if col in df.columns else ""

        quantity = pd.to_numeric(df["quantity"], errors="coerce")
        bad_rows = df.index[quantity.isna() & df["quantity"].notna()].tolist()
        if bad_rows:
            raise ValueError(f"{self.FILE_NAME} has non-numeric quantities in rows {bad_rows[:10]}")
        df["quantity"] = quantity.fillna(0.0).astype(float)

        months = pd.to_datetime(df["month"].astype("string").str.strip(), format="%Y-%m", errors="coerce")
        if months.isna().any():
            bad_months = df.index[months.isna()].tolist()
            raise ValueError(f"{self.FILE_NAME} has unparseable months in rows {bad_months[:10]}")
        df["month"] = months.dt.strftime("%Y-%m")

        aggregated = (
            df.groupby(["item_id", "month"], as_index=False, sort=True)
            .agg(
                quantity=("quantity", "sum"),
                item_name=("item_name", "first"),
                item_code=("item_code", "first"),
                category=("category", "first"),
            )
        )
        LOGGER.info(
            "Loaded %s consumption rows into %s item-months from %s", len(df), len(aggregated), self.path
        )
        self._frame = aggregated
        return aggregated

    # ------------------------------------------------------------------
    def has_item(self, item_id: str) -> bool:
        frame = self.load_consumption()
        return bool((frame["item_id"] == item_id).any())

    def latest_month(self) -> Optional[str]:
        frame = self.load_consumption()
        if frame.empty:
            return None
        return str(frame["month"].max())

    # ------------------------------------------------------------------
    def _window(
        self,
        months_back: int,
        item_id: Optional[str],
        reference_month: Optional[str],
    ) -> pd.DataFrame:
        if months_back < 0:
            raise ValueError("months_back must not be negative")

        frame = self.load_consumption()
        if item_id is not None:
            frame = frame[frame["item_id"] == item_id]

        reference = reference_month or self.latest_month()
        if reference is None or frame.empty:
            return frame.iloc[0:0]
        end = parse_month(reference)
        start = format_month(end - months_back)
        return frame[(frame["month"] >= start) & (frame["month"] <= format_month(end))]

    def get_historical_consumption(
        self,
        months_back: int = 12,
        item_id: Optional[str] = None,
        reference_month: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Observation records for the ``months_back`` months up to ``reference_month``.

        The window is inclusive on both ends, so ``months_back=6`` yields up
        to seven months.  ``reference_month`` defaults to the latest month
        in the data.
        """

        window = self._window(months_back, item_id, reference_month)
        return [
            {
                "item_id": str(row.item_id),
                "item_name": str(row.item_name),
                "item_code": str(row.item_code),
                "category": str(row.category),
                "month": str(row.month),
                "quantity": float(row.quantity),
            }
            for row in window.itertuples(index=False)
        ]

    def summary_by_category(
        self,
        months_back: int = 12,
        reference_month: Optional[str] = None,
    ) -> Dict[str, float]:
        """Total consumption per category over the same window as the history feed.

        Items without a category are totalled under ``""``.
        """

        window = self._window(months_back, None, reference_month)
        if window.empty:
            return {}
        totals = window.groupby("category", sort=True)["quantity"].sum()
        return {str(category): float(total) for category, total in totals.items()}
