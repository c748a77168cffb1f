"""Lookup table of every forecasting algorithm keyed by ``AlgorithmId``."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from ..core.config import ForecastParameters
from ..models.schemas import ALL_ALGORITHMS, AlgorithmId
from .ensemble import ENSEMBLE_ALGORITHMS
from .forecast_algorithms import BASE_ALGORITHMS, ForecastAlgorithm

ALGORITHMS: Dict[AlgorithmId, ForecastAlgorithm] = {**BASE_ALGORITHMS, **ENSEMBLE_ALGORITHMS}


def get_algorithm(algorithm: AlgorithmId | str) -> ForecastAlgorithm:
    try:
        return ALGORITHMS[AlgorithmId(algorithm)]
    except ValueError as exc:
        raise ValueError(f"Unknown forecasting algorithm '{algorithm}'") from exc


def resolve_algorithms(algorithms: Optional[Iterable[AlgorithmId | str]]) -> List[AlgorithmId]:
    """Validate a requested algorithm list, keeping order and dropping repeats.

    ``None`` selects all seven.
    """

    if algorithms is None:
        return list(ALL_ALGORITHMS)
    resolved: List[AlgorithmId] = []
    for algorithm in algorithms:
        algorithm_id = get_algorithm(algorithm).algorithm_id
        if algorithm_id not in resolved:
            resolved.append(algorithm_id)
    if not resolved:
        raise ValueError("At least one forecasting algorithm must be requested")
    return resolved


def run_algorithm(
    algorithm: AlgorithmId | str,
    history: Sequence[float],
    horizon: int,
    target_months: Optional[Sequence[str]] = None,
    history_months: Optional[Sequence[str]] = None,
    params: Optional[ForecastParameters] = None,
) -> List[float]:
    return get_algorithm(algorithm).predict(history, horizon, target_months, history_months, params)
