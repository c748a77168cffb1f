from __future__ import annotations

from pathlib import Path
import sys


ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import math

import pytest

from demand_planner.app.models.schemas import ALL_ALGORITHMS, AccuracyScore, AlgorithmId
from demand_planner.app.services.accuracy_service import AccuracyEvaluator, rank_algorithms
from demand_planner.app.services.history_service import HistorySeries
from demand_planner.app.services.metrics import mean_absolute_error, root_mean_squared_error, score_pairs


def _series(item_id: str, quantities) -> HistorySeries:
    months = tuple(f"{2023 + i // 12}-{i % 12 + 1:02d}" for i in range(len(quantities)))
    return HistorySeries(item_id, months, tuple(float(q) for q in quantities))


def test_metrics_on_known_pairs() -> None:
    assert mean_absolute_error([1, 2], [2, 4]) == pytest.approx(1.5)
    assert root_mean_squared_error([1, 2], [2, 4]) == pytest.approx(math.sqrt(2.5))


def test_metrics_are_zero_only_for_exact_predictions() -> None:
    assert mean_absolute_error([3, 4, 5], [3, 4, 5]) == 0.0
    assert root_mean_squared_error([3, 4, 5], [3, 4, 5]) == 0.0
    assert mean_absolute_error([3, 4, 5], [3, 4, 6]) > 0.0


def test_metrics_unavailable_without_samples() -> None:
    assert mean_absolute_error([], []) is None
    assert root_mean_squared_error([], []) is None

    score = score_pairs(AlgorithmId.ENSEMBLE, [])
    assert score.sample_size == 0
    assert not score.available


def test_metrics_reject_length_mismatch() -> None:
    with pytest.raises(ValueError):
        mean_absolute_error([1, 2, 3], [1, 2])


def test_backtest_on_known_series() -> None:
    known = _series("MAT-001", [100, 104, 98, 110, 107, 115, 112, 120, 118, 125, 123, 130])
    short = _series("MAT-002", [5, 6, 7, 8, 9, 10])

    report = AccuracyEvaluator().evaluate([known, short], test_window=6)

    assert report.test_window == 6
    assert report.items_evaluated == ["MAT-001"]
    assert report.items_skipped == ["MAT-002"]
    assert list(report.scores) == list(ALL_ALGORITHMS)
    for score in report.scores.values():
        assert score.sample_size == 6
        assert score.mae is not None and score.mae >= 0.0
        assert score.rmse is not None and score.rmse >= score.mae - 1e-9
    assert set(report.per_item) == {"MAT-001"}


def test_errors_are_pooled_across_items() -> None:
    first = _series("A", [10, 10, 10, 10, 20, 20])
    second = _series("B", [5, 5, 8])

    report = AccuracyEvaluator().evaluate([first, second], [AlgorithmId.MOVING_AVERAGE], test_window=2)
    score = report.scores[AlgorithmId.MOVING_AVERAGE]

    # A misses by 10 twice, B by 0 then 3.
    assert score.sample_size == 4
    assert score.mae == pytest.approx(23.0 / 4)
    assert score.rmse == pytest.approx(math.sqrt(209.0 / 4))


def test_all_items_skipped_reports_unavailable() -> None:
    report = AccuracyEvaluator().evaluate([_series("A", [1, 2, 3])], test_window=3)

    assert report.items_evaluated == []
    assert report.items_skipped == ["A"]
    for score in report.scores.values():
        assert score.mae is None
        assert score.rmse is None


def test_invalid_test_window_rejected() -> None:
    with pytest.raises(ValueError):
        AccuracyEvaluator().evaluate([_series("A", [1, 2, 3])], test_window=0)


def test_rank_algorithms_puts_unavailable_last() -> None:
    scores = {
        AlgorithmId.MOVING_AVERAGE: AccuracyScore(algorithm=AlgorithmId.MOVING_AVERAGE, mae=4.0, rmse=5.0, sample_size=6),
        AlgorithmId.LINEAR_REGRESSION: AccuracyScore(algorithm=AlgorithmId.LINEAR_REGRESSION, sample_size=0),
        AlgorithmId.ENSEMBLE: AccuracyScore(algorithm=AlgorithmId.ENSEMBLE, mae=2.0, rmse=6.0, sample_size=6),
        AlgorithmId.ARIMA_LIKE: AccuracyScore(algorithm=AlgorithmId.ARIMA_LIKE, mae=2.0, rmse=3.0, sample_size=6),
    }

    assert rank_algorithms(scores) == [
        AlgorithmId.ARIMA_LIKE,
        AlgorithmId.ENSEMBLE,
        AlgorithmId.MOVING_AVERAGE,
        AlgorithmId.LINEAR_REGRESSION,
    ]
