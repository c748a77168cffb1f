r"""demand_planner\app\services\forecast_algorithms.py

The five base demand-forecasting strategies.

Each algorithm maps an ordered history of monthly quantities to ``horizon``
non-negative predictions, one per future month.  ``target_months`` (the
labels of the months being predicted) and ``history_months`` (the labels
of the observed months) are optional; only the seasonal model uses the
calendar, the others work on index positions.

Sparse history is the normal case for new items, so no algorithm raises
for it.  Each one degrades to a simpler rule instead (last value, or 0).
The combined strategies live in :mod:`.ensemble`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.config import ForecastParameters
from ..models.schemas import AlgorithmId
from .timeseries_utils import (
    as_array,
    clamp_non_negative,
    exponential_smooth,
    linear_fit,
    mean,
    month_offset,
    seasonal_index,
)

AlgorithmFn = Callable[..., List[float]]


# ---------------------------------------------------------------------------
# Helper utilities


def check_horizon(horizon: int, target_months: Optional[Sequence[str]] = None) -> int:
    if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon < 1:
        raise ValueError("horizon must be a positive integer")
    if target_months is not None and len(target_months) != horizon:
        raise ValueError(
            f"target_months has {len(target_months)} labels but horizon is {horizon}"
        )
    return horizon


def _calendar_positions(
    n: int,
    horizon: int,
    history_months: Optional[Sequence[str]],
    target_months: Optional[Sequence[str]],
) -> Tuple[np.ndarray, np.ndarray]:
    """Month offsets of the observed and the predicted points.

    Offsets are counted from the first observed month so gaps in the
    history keep their calendar distance.  Without labels the history is
    assumed contiguous and the targets to follow it directly.
    """

    if history_months is None or len(history_months) != n:
        positions = np.arange(n)
        future = np.arange(n, n + horizon)
        return positions, future

    origin = history_months[0]
    positions = np.array([month_offset(origin, label) for label in history_months])
    if target_months is not None:
        future = np.array([month_offset(origin, label) for label in target_months])
    else:
        future = np.arange(positions[-1] + 1, positions[-1] + 1 + horizon)
    return positions, future


# ---------------------------------------------------------------------------
# Base algorithms


def moving_average(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    window: int = 3,
) -> List[float]:
    """Mean of the trailing ``window`` observations, held flat."""

    check_horizon(horizon, target_months)
    if window < 1:
        raise ValueError("window must be a positive integer")
    values = as_array(history)
    level = mean(values[-window:]) if values.size else 0.0
    return clamp_non_negative([level] * horizon)


def linear_regression(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
) -> List[float]:
    """Extrapolate the OLS line fitted over indices ``0..n-1``.

    One observation repeats that value; no observations predict 0.
    """

    check_horizon(horizon, target_months)
    values = as_array(history)
    n = values.size
    if n < 2:
        level = float(values[-1]) if n else 0.0
        return clamp_non_negative([level] * horizon)

    slope, intercept = linear_fit(values)
    return clamp_non_negative([slope * (n + step) + intercept for step in range(horizon)])


def _seasonal_fit(
    values: np.ndarray,
    positions: np.ndarray,
    season_length: int,
) -> Tuple[float, float, List[float]]:
    slope, intercept = linear_fit(values, positions)
    residuals = values - (slope * positions + intercept)
    index = seasonal_index(residuals, season_length, positions)
    return slope, intercept, index


def seasonal_trend(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    season_length: int = 12,
    outlier_threshold: float = 2.5,
) -> List[float]:
    """Linear trend plus an additive seasonal index by calendar position.

    The seasonal index is taken from the detrended residuals so the trend
    is not counted twice.  With at least two full seasons, observations
    whose residual from trend+season exceeds ``outlier_threshold``
    standard deviations are dropped and the model refitted.  With less
    than one full season this is plain :func:`linear_regression`.
    """

    check_horizon(horizon, target_months)
    values = as_array(history)
    n = values.size
    if n < season_length:
        return linear_regression(history, horizon, target_months)

    positions, future = _calendar_positions(n, horizon, history_months, target_months)
    slope, intercept, index = _seasonal_fit(values, positions, season_length)

    if n >= 2 * season_length:
        seasonal = np.array([index[p % season_length] for p in positions])
        residuals = values - (slope * positions + intercept + seasonal)
        spread = float(np.sqrt(np.mean(residuals**2)))
        # Residuals at rounding-noise level mean an exact fit, nothing to drop.
        noise_floor = 1e-9 * (float(np.mean(np.abs(values))) + 1.0)
        keep = np.abs(residuals) <= outlier_threshold * spread
        if spread > noise_floor and not keep.all() and int(keep.sum()) >= season_length:
            slope, intercept, index = _seasonal_fit(values[keep], positions[keep], season_length)

    predictions = [
        slope * float(position) + intercept + index[int(position) % season_length]
        for position in future
    ]
    return clamp_non_negative(predictions)


def exponential_smoothing(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    alpha: float = 0.5,
) -> List[float]:
    """Last smoothed level held flat across the horizon."""

    check_horizon(horizon, target_months)
    smoothed = exponential_smooth(history, alpha)
    level = smoothed[-1] if smoothed else 0.0
    return clamp_non_negative([level] * horizon)


def arima_like(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    ar_order: int = 1,
    ar_weight: float = 0.5,
) -> List[float]:
    """Simplified autoregressive forecast.

    This is an approximation, not a Box-Jenkins ARIMA fit: there is no
    differencing order selection and no AIC search.  Each step predicts
    ``ar_weight * level + (1 - ar_weight) * trend(t)`` where ``level`` is
    the mean of the last ``ar_order`` values (earlier predictions
    included) and ``trend`` the OLS line over the observed history.
    Fewer than two observations repeat the last value.
    """

    check_horizon(horizon, target_months)
    if ar_order < 1:
        raise ValueError("ar_order must be a positive integer")
    values = as_array(history)
    n = values.size
    if n < 2:
        level = float(values[-1]) if n else 0.0
        return clamp_non_negative([level] * horizon)

    slope, intercept = linear_fit(values)
    extended = [float(v) for v in values]
    for _ in range(horizon):
        t = len(extended)
        level = mean(extended[-ar_order:])
        trend = slope * t + intercept
        extended.append(max(ar_weight * level + (1.0 - ar_weight) * trend, 0.0))
    return clamp_non_negative(extended[n:])


# ---------------------------------------------------------------------------
# Strategy table entries


def _no_options(_: ForecastParameters) -> Dict[str, Any]:
    return {}


@dataclass(frozen=True, slots=True)
class ForecastAlgorithm:
    """An algorithm bound to the settings that parameterise it."""

    algorithm_id: AlgorithmId
    func: AlgorithmFn
    description: str
    options: Callable[[ForecastParameters], Dict[str, Any]] = _no_options
    combines: Tuple[AlgorithmId, ...] = ()

    def predict(
        self,
        history: Sequence[float],
        horizon: int,
        target_months: Optional[Sequence[str]] = None,
        history_months: Optional[Sequence[str]] = None,
        params: Optional[ForecastParameters] = None,
    ) -> List[float]:
        params = params or ForecastParameters()
        predictions = self.func(
            history,
            horizon,
            target_months,
            history_months=history_months,
            **self.options(params),
        )
        return clamp_non_negative(predictions)


BASE_ALGORITHMS: Dict[AlgorithmId, ForecastAlgorithm] = {
    AlgorithmId.MOVING_AVERAGE: ForecastAlgorithm(
        AlgorithmId.MOVING_AVERAGE,
        moving_average,
        "Mean of the most recent months held flat",
        lambda p: {"window": p.moving_average_window},
    ),
    AlgorithmId.LINEAR_REGRESSION: ForecastAlgorithm(
        AlgorithmId.LINEAR_REGRESSION,
        linear_regression,
        "Least squares trend line extrapolated forward",
    ),
    AlgorithmId.SEASONAL_TREND: ForecastAlgorithm(
        AlgorithmId.SEASONAL_TREND,
        seasonal_trend,
        "Linear trend plus a monthly seasonal index",
        lambda p: {"season_length": p.season_length, "outlier_threshold": p.outlier_threshold},
    ),
    AlgorithmId.EXPONENTIAL_SMOOTHING: ForecastAlgorithm(
        AlgorithmId.EXPONENTIAL_SMOOTHING,
        exponential_smoothing,
        "Single exponential smoothing held flat",
        lambda p: {"alpha": p.smoothing_alpha},
    ),
    AlgorithmId.ARIMA_LIKE: ForecastAlgorithm(
        AlgorithmId.ARIMA_LIKE,
        arima_like,
        "Autoregressive level blended with the trend (ARIMA approximation)",
        lambda p: {"ar_order": p.arima_ar_order, "ar_weight": p.arima_ar_weight},
    ),
}
