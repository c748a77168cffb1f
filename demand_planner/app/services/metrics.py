"""Forecast accuracy metrics.

Both metrics return ``None`` for an empty sample set.  A zero would read
as a perfect score, so callers must treat ``None`` as "unavailable".
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from ..models.schemas import AccuracyScore, AlgorithmId

Pair = Tuple[float, float]


def _paired(actual: Sequence[float], predicted: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
    if len(actual) != len(predicted):
        raise ValueError(
            f"actual and predicted differ in length ({len(actual)} != {len(predicted)})"
        )
    return np.asarray(actual, dtype=float), np.asarray(predicted, dtype=float)


def mean_absolute_error(actual: Sequence[float], predicted: Sequence[float]) -> Optional[float]:
    """``mean(|actual - predicted|)``; ``None`` when there are no pairs."""

    a, p = _paired(actual, predicted)
    if a.size == 0:
        return None
    return float(np.mean(np.abs(a - p)))


def root_mean_squared_error(actual: Sequence[float], predicted: Sequence[float]) -> Optional[float]:
    """``sqrt(mean((actual - predicted)^2))``; ``None`` when there are no pairs."""

    a, p = _paired(actual, predicted)
    if a.size == 0:
        return None
    return float(np.sqrt(np.mean((a - p) ** 2)))


def score_pairs(algorithm: AlgorithmId, pairs: Iterable[Pair]) -> AccuracyScore:
    """Build an :class:`AccuracyScore` from ``(actual, predicted)`` pairs."""

    pair_list = list(pairs)
    actual = [a for a, _ in pair_list]
    predicted = [p for _, p in pair_list]
    return AccuracyScore(
        algorithm=algorithm,
        mae=mean_absolute_error(actual, predicted),
        rmse=root_mean_squared_error(actual, predicted),
        sample_size=len(pair_list),
    )
