r"""demand_planner\app\services\timeseries_utils.py

Numeric primitives shared by the forecasting algorithms.

Every helper takes an ordered sequence of monthly quantities (oldest
first) and returns plain Python values, so the algorithms built on top
stay pure and deterministic.  Month labels use the ``YYYY-MM`` format.
"""

from __future__ import annotations

import math
import re
from numbers import Real
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

_MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


# ---------------------------------------------------------------------------
# Month label helpers


def is_month_label(value: object) -> bool:
    return isinstance(value, str) and _MONTH_PATTERN.match(value) is not None


def parse_month(label: str) -> pd.Period:
    """Return the monthly ``pd.Period`` for a ``YYYY-MM`` label."""

    if not is_month_label(label):
        raise ValueError(f"Invalid month label {label!r}; expected YYYY-MM")
    return pd.Period(label, freq="M")


def format_month(period: pd.Period) -> str:
    return period.strftime("%Y-%m")


def next_months(after: str, count: int) -> List[str]:
    """Return ``count`` consecutive month labels following ``after``."""

    start = parse_month(after)
    return [format_month(start + offset) for offset in range(1, count + 1)]


def month_offset(origin: str, label: str) -> int:
    """Number of months from ``origin`` to ``label`` (negative if earlier)."""

    return (parse_month(label) - parse_month(origin)).n


# ---------------------------------------------------------------------------
# Numeric primitives


def as_array(xs: Sequence[float]) -> np.ndarray:
    return np.asarray(list(xs), dtype=float)


def mean(xs: Sequence[float]) -> float:
    """Arithmetic mean; an empty input yields ``0.0``."""

    values = as_array(xs)
    if values.size == 0:
        return 0.0
    return float(values.mean())


def linear_fit(xs: Sequence[float], positions: Optional[Sequence[float]] = None) -> Tuple[float, float]:
    """Ordinary least squares fit of ``xs`` against their positions.

    Positions default to ``0..n-1``.  Returns ``(slope, intercept)``.  With
    fewer than two points the slope is 0 and the intercept is the single
    value (or 0 when empty).
    """

    values = as_array(xs)
    n = values.size
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, float(values[0])

    x = np.arange(n, dtype=float) if positions is None else as_array(positions)
    if x.size != n:
        raise ValueError("positions must have the same length as the series")

    x_mean = float(x.mean())
    y_mean = float(values.mean())
    denominator = float(np.sum((x - x_mean) ** 2))
    if denominator == 0.0:
        return 0.0, y_mean
    slope = float(np.sum((x - x_mean) * (values - y_mean)) / denominator)
    intercept = y_mean - slope * x_mean
    return slope, intercept


def seasonal_index(
    xs: Sequence[float],
    period_length: int = 12,
    positions: Optional[Sequence[int]] = None,
) -> List[float]:
    """Additive seasonal index per ``position mod period_length``.

    Only the trailing full cycles are used: with ``n`` points the last
    ``(n // period_length) * period_length`` contribute.  Each index is
    the average deviation of its slot from the mean of those points.
    Fewer than ``period_length`` observations means no seasonality is
    detected and every index is 0.  Slots without observations (gaps in
    ``positions``) are 0 as well.
    """

    if period_length <= 0:
        raise ValueError("period_length must be a positive integer")

    values = as_array(xs)
    n = values.size
    index = [0.0] * period_length
    if n < period_length:
        return index

    slots = np.arange(n) if positions is None else np.asarray(list(positions), dtype=int)
    if slots.size != n:
        raise ValueError("positions must have the same length as the series")

    used = (n // period_length) * period_length
    values = values[-used:]
    slots = slots[-used:]
    overall = float(values.mean())

    for slot in range(period_length):
        mask = (slots % period_length) == slot
        if mask.any():
            index[slot] = float(values[mask].mean() - overall)
    return index


def exponential_smooth(xs: Sequence[float], alpha: float = 0.5) -> List[float]:
    """Single exponential smoothing: ``s[t] = alpha*x[t] + (1-alpha)*s[t-1]``."""

    if not 0.0 < alpha <= 1.0:
        raise ValueError("alpha must be in the interval (0, 1]")

    values = as_array(xs)
    if values.size == 0:
        return []

    smoothed = [float(values[0])]
    for value in values[1:]:
        smoothed.append(alpha * float(value) + (1.0 - alpha) * smoothed[-1])
    return smoothed


def clamp_non_negative(values: Sequence[float]) -> List[float]:
    """Clamp predictions to ``>= 0``.

    A NaN or infinite value means the computation overflowed, which is
    raised as ``ArithmeticError`` rather than passed off as a zero.
    """

    clamped: List[float] = []
    for step, value in enumerate(values):
        number = float(value)
        if not math.isfinite(number):
            raise ArithmeticError(f"non-finite prediction {number!r} at step {step}")
        clamped.append(max(number, 0.0))
    return clamped


def is_number(value: object) -> bool:
    """True for real, finite numbers (``bool`` excluded)."""

    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    try:
        number = float(value)
    except OverflowError:
        return False
    return math.isfinite(number)
