r"""demand_planner\app\services\ensemble.py

Combination of the base algorithms into a single forecast.

``ensemble`` averages the five base strategies with equal weights.
``weighted_ensemble`` first backtests each base strategy on the trailing
months of the history and weights it by the inverse of its error, so the
strategies that tracked this item best dominate the blend.

A base strategy that fails is excluded from the blend and the remaining
weights are re-normalised; one bad component never aborts the forecast.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence

from ..core.config import ForecastParameters
from ..models.schemas import AlgorithmId
from .forecast_algorithms import BASE_ALGORITHMS, ForecastAlgorithm, check_horizon
from .metrics import mean_absolute_error, root_mean_squared_error

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Combiner


def combine(
    predictions: Mapping[AlgorithmId, Optional[Sequence[float]]],
    weights: Optional[Mapping[AlgorithmId, float]] = None,
    *,
    horizon: Optional[int] = None,
) -> List[float]:
    """Blend per-algorithm prediction series into one series.

    Entries whose predictions are ``None`` are unavailable and excluded
    from the average.  Without ``weights`` every available algorithm
    counts equally; otherwise weights are normalised over the available
    algorithms.  A zero weight sum falls back to equal weights.  When
    nothing is available the result is zeros of length ``horizon``.
    """

    available: Dict[AlgorithmId, List[float]] = {
        algorithm: [float(v) for v in series]
        for algorithm, series in predictions.items()
        if series is not None
    }

    if horizon is None:
        horizon = len(next(iter(available.values()))) if available else 0
    for algorithm, series in available.items():
        if len(series) != horizon:
            raise ValueError(
                f"{AlgorithmId(algorithm).value} returned {len(series)} predictions, expected {horizon}"
            )

    if not available:
        return [0.0] * horizon

    if weights is None:
        effective = {algorithm: 1.0 for algorithm in available}
    else:
        effective = {}
        for algorithm in available:
            weight = float(weights.get(algorithm, 0.0))
            effective[algorithm] = weight if math.isfinite(weight) and weight > 0.0 else 0.0

    total = sum(effective.values())
    if total <= 0.0:
        effective = {algorithm: 1.0 for algorithm in available}
        total = float(len(effective))

    return [
        sum(effective[algorithm] * series[step] for algorithm, series in available.items()) / total
        for step in range(horizon)
    ]


def inverse_error_weights(
    errors: Mapping[AlgorithmId, Optional[float]],
    epsilon: float = 1e-6,
) -> Dict[AlgorithmId, float]:
    """Weights proportional to ``1 / (error + epsilon)``, summing to 1.

    Lower error never yields a lower weight.  Algorithms without an error
    score get weight 0; when no algorithm has one, all are weighted
    equally.
    """

    if epsilon <= 0.0:
        raise ValueError("epsilon must be positive")
    if not errors:
        return {}

    raw: Dict[AlgorithmId, float] = {}
    for algorithm, error in errors.items():
        if error is None or not math.isfinite(error) or error < 0.0:
            raw[algorithm] = 0.0
        else:
            raw[algorithm] = 1.0 / (error + epsilon)

    total = sum(raw.values())
    if total <= 0.0:
        share = 1.0 / len(errors)
        return {algorithm: share for algorithm in errors}
    return {algorithm: value / total for algorithm, value in raw.items()}


# ---------------------------------------------------------------------------
# Ensemble strategies


def _base_predictions(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]],
    history_months: Optional[Sequence[str]],
    params: ForecastParameters,
) -> Dict[AlgorithmId, Optional[List[float]]]:
    predictions: Dict[AlgorithmId, Optional[List[float]]] = {}
    for algorithm_id, algorithm in BASE_ALGORITHMS.items():
        try:
            predictions[algorithm_id] = algorithm.predict(
                history, horizon, target_months, history_months, params
            )
        except (ValueError, ArithmeticError) as exc:
            LOGGER.warning("Excluding %s from ensemble: %s", algorithm_id.value, exc)
            predictions[algorithm_id] = None
    return predictions


def holdout_errors(
    history: Sequence[float],
    test_window: int,
    history_months: Optional[Sequence[str]] = None,
    params: Optional[ForecastParameters] = None,
) -> Dict[AlgorithmId, Optional[float]]:
    """Error of each base algorithm on the trailing ``test_window`` points.

    Returns ``None`` for every algorithm when the history is too short to
    leave a training slice.
    """

    params = params or ForecastParameters()
    values = [float(v) for v in history]
    if test_window < 1 or len(values) <= test_window:
        return {algorithm_id: None for algorithm_id in BASE_ALGORITHMS}

    months = list(history_months) if history_months is not None else None
    train, actual = values[:-test_window], values[-test_window:]
    train_months = months[:-test_window] if months else None
    test_months = months[-test_window:] if months else None
    metric = root_mean_squared_error if params.ensemble_error_metric == "rmse" else mean_absolute_error

    errors: Dict[AlgorithmId, Optional[float]] = {}
    for algorithm_id, algorithm in BASE_ALGORITHMS.items():
        try:
            predicted = algorithm.predict(train, test_window, test_months, train_months, params)
        except (ValueError, ArithmeticError) as exc:
            LOGGER.warning("Backtest of %s failed: %s", algorithm_id.value, exc)
            errors[algorithm_id] = None
            continue
        errors[algorithm_id] = metric(actual, predicted)
    return errors


def ensemble(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    params: Optional[ForecastParameters] = None,
) -> List[float]:
    """Unweighted average of the five base algorithms."""

    check_horizon(horizon, target_months)
    params = params or ForecastParameters()
    predictions = _base_predictions(history, horizon, target_months, history_months, params)
    return combine(predictions, horizon=horizon)


def weighted_ensemble(
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    *,
    history_months: Optional[Sequence[str]] = None,
    params: Optional[ForecastParameters] = None,
) -> List[float]:
    """Average of the base algorithms weighted by inverse backtest error.

    Weights need more than ``ensemble_test_window + horizon`` observations;
    shorter histories use equal weights.
    """

    check_horizon(horizon, target_months)
    params = params or ForecastParameters()
    test_window = params.ensemble_test_window

    weights: Optional[Dict[AlgorithmId, float]] = None
    if len(history) > test_window + horizon:
        errors = holdout_errors(history, test_window, history_months, params)
        weights = inverse_error_weights(errors, params.ensemble_epsilon)
        LOGGER.debug("weighted_ensemble weights: %s", {k.value: round(v, 4) for k, v in weights.items()})

    predictions = _base_predictions(history, horizon, target_months, history_months, params)
    return combine(predictions, weights, horizon=horizon)


def _with_params(params: ForecastParameters) -> Dict[str, ForecastParameters]:
    return {"params": params}


ENSEMBLE_ALGORITHMS: Dict[AlgorithmId, ForecastAlgorithm] = {
    AlgorithmId.ENSEMBLE: ForecastAlgorithm(
        AlgorithmId.ENSEMBLE,
        ensemble,
        "Equal-weight average of the base algorithms",
        _with_params,
        tuple(BASE_ALGORITHMS),
    ),
    AlgorithmId.WEIGHTED_ENSEMBLE: ForecastAlgorithm(
        AlgorithmId.WEIGHTED_ENSEMBLE,
        weighted_ensemble,
        "Base algorithms weighted by inverse backtest error",
        _with_params,
        tuple(BASE_ALGORITHMS),
    ),
}
