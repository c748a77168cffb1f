r"""demand_planner\app\services\accuracy_service.py

Backtesting harness scoring each algorithm against held-out history.

For every item the trailing ``test_window`` months are held out, the
algorithm is trained on the remainder and asked to predict the held-out
months.  Items whose history is not longer than the window are skipped
rather than scored on a degenerate split.

The aggregate score pools every ``(actual, predicted)`` pair across items
before computing MAE and RMSE.  Averaging per-item scores instead would
let an item with two held-out points weigh as much as one with twelve.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.config import ForecastParameters
from ..models.schemas import AccuracyReport, AccuracyScore, AlgorithmId
from .history_service import HistorySeries
from .metrics import Pair, score_pairs
from .registry import resolve_algorithms, run_algorithm

LOGGER = logging.getLogger(__name__)


def rank_algorithms(
    scores: Mapping[AlgorithmId, AccuracyScore],
    order: Optional[Sequence[AlgorithmId]] = None,
) -> List[AlgorithmId]:
    """Order algorithms best first: lowest MAE, then lowest RMSE.

    Unavailable scores sort last; remaining ties keep ``order``.
    """

    sequence = list(order) if order is not None else list(scores)

    def _key(algorithm: AlgorithmId) -> tuple:
        score = scores.get(algorithm)
        if score is None or not score.available:
            return (1, 0.0, 0.0, sequence.index(algorithm))
        return (0, score.mae, score.rmse or 0.0, sequence.index(algorithm))

    return sorted(sequence, key=_key)


class AccuracyEvaluator:
    """Compute MAE/RMSE per algorithm over a trailing holdout window."""

    def __init__(self, params: Optional[ForecastParameters] = None) -> None:
        self.params = params or ForecastParameters()

    # ------------------------------------------------------------------
    def backtest_series(
        self,
        series: HistorySeries,
        algorithms: Sequence[AlgorithmId],
        test_window: int,
    ) -> Optional[Dict[AlgorithmId, List[Pair]]]:
        """Return ``(actual, predicted)`` pairs per algorithm for one item.

        ``None`` means the item is too short for the window and was skipped.
        """

        if test_window < 1:
            raise ValueError("test_window must be a positive integer")
        if len(series) <= test_window:
            return None

        train, test = series.split(test_window)
        pairs: Dict[AlgorithmId, List[Pair]] = {}
        for algorithm in algorithms:
            try:
                predicted = run_algorithm(
                    algorithm,
                    train.quantities,
                    test_window,
                    test.months,
                    train.months,
                    self.params,
                )
            except ArithmeticError as exc:
                raise ValueError(
                    f"{algorithm.value} cannot backtest item '{series.item_id}': {exc}"
                ) from exc
            pairs[algorithm] = list(zip(test.quantities, predicted))
        return pairs

    # ------------------------------------------------------------------
    def evaluate(
        self,
        histories: Iterable[HistorySeries],
        algorithms: Optional[Iterable[AlgorithmId | str]] = None,
        test_window: Optional[int] = None,
    ) -> AccuracyReport:
        """Score ``algorithms`` (default: all) across ``histories``."""

        window = self.params.accuracy_test_window if test_window is None else int(test_window)
        if window < 1:
            raise ValueError("test_window must be a positive integer")
        selected = resolve_algorithms(algorithms)

        pooled: Dict[AlgorithmId, List[Pair]] = {algorithm: [] for algorithm in selected}
        per_item: Dict[str, Dict[AlgorithmId, AccuracyScore]] = {}
        evaluated: List[str] = []
        skipped: List[str] = []

        for series in histories:
            pairs = self.backtest_series(series, selected, window)
            if pairs is None:
                LOGGER.debug(
                    "Skipping item=%s: %s observations <= test window %s", series.item_id, len(series), window
                )
                skipped.append(series.item_id)
                continue

            evaluated.append(series.item_id)
            per_item[series.item_id] = {
                algorithm: score_pairs(algorithm, item_pairs) for algorithm, item_pairs in pairs.items()
            }
            for algorithm, item_pairs in pairs.items():
                pooled[algorithm].extend(item_pairs)

        LOGGER.info(
            "Accuracy backtest window=%s evaluated=%s skipped=%s", window, len(evaluated), len(skipped)
        )
        return AccuracyReport(
            test_window=window,
            scores={algorithm: score_pairs(algorithm, pooled[algorithm]) for algorithm in selected},
            items_evaluated=evaluated,
            items_skipped=skipped,
            per_item=per_item,
        )
