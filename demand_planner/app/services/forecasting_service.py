r"""demand_planner\app\services\forecasting_service.py

Material consumption forecasting for production planning.

``ForecastingService`` is the single entry point used by the planning
screens.  It groups raw monthly consumption observations by item, runs
every requested algorithm over each item's sorted history and returns one
``ForecastResult`` per item.  Optionally it backtests each item and
recommends the algorithm that tracked its history best.

The service keeps no state between calls apart from its configuration
and registered listeners; every call recomputes from the supplied
observations.  Items are independent, so with ``max_workers > 1`` they
are forecast on a thread pool without changing the output order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from ..core.config import ForecastParameters, get_settings, load_forecast_parameters
from ..models.schemas import (
    AccuracyReport,
    AlgorithmId,
    ForecastPoint,
    ForecastResult,
    Observation,
)
from .accuracy_service import AccuracyEvaluator, rank_algorithms
from .history_service import HistorySeries, group_observations
from .metrics import score_pairs
from .registry import resolve_algorithms, run_algorithm
from .timeseries_utils import is_month_label, next_months

LOGGER = logging.getLogger(__name__)

ForecastListener = Callable[[List[ForecastResult]], None]
ObservationInput = Union[Observation, Mapping[str, Any]]


class ForecastingService:
    """Generate per-item consumption forecasts from monthly history."""

    def __init__(
        self,
        config_root: Optional[str] = None,
        params: Optional[ForecastParameters] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.config_root = config_root or get_settings().config_dir
        self.params = params or load_forecast_parameters(self.config_root)
        if max_workers is not None:
            self.params = ForecastParameters(**{**self.params.model_dump(), "max_workers": max_workers})

        try:
            self.default_algorithm = AlgorithmId(self.params.default_algorithm)
        except ValueError as exc:
            raise ValueError(f"Unknown default_algorithm '{self.params.default_algorithm}'") from exc

        self.evaluator = AccuracyEvaluator(self.params)
        self._listeners: List[ForecastListener] = []

    # ------------------------------------------------------------------
    def subscribe(self, listener: ForecastListener) -> Callable[[], None]:
        """Call ``listener`` with every completed forecast; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, results: List[ForecastResult]) -> None:
        for listener in list(self._listeners):
            try:
                listener(results)
            except Exception:
                LOGGER.exception("Forecast listener %r failed", listener)

    # ------------------------------------------------------------------
    def _check_horizon(self, horizon_months: int) -> int:
        if isinstance(horizon_months, bool) or not isinstance(horizon_months, int):
            raise ValueError("horizon_months must be an integer")
        if horizon_months < 1 or horizon_months > self.params.max_horizon_months:
            raise ValueError(
                f"horizon_months must be between 1 and {self.params.max_horizon_months}"
            )
        return horizon_months

    @staticmethod
    def _check_month(label: Optional[str], name: str) -> None:
        if label is not None and not is_month_label(label):
            raise ValueError(f"{name} must be formatted as YYYY-MM, got {label!r}")

    # ------------------------------------------------------------------
    def _months_for(
        self,
        series: HistorySeries,
        horizon_months: int,
        target_months: Optional[Sequence[str]],
        current_month: Optional[str],
        latest_month: Optional[str],
    ) -> List[str]:
        if target_months is not None:
            return list(target_months)
        anchor = current_month or series.last_month or latest_month
        if anchor is None:
            raise ValueError("current_month is required when no observation carries a month")
        return next_months(anchor, horizon_months)

    # ------------------------------------------------------------------
    def recommend_algorithm(
        self,
        series: HistorySeries,
        algorithms: Sequence[AlgorithmId],
        test_window: Optional[int] = None,
    ) -> Optional[AlgorithmId]:
        """Best backtested algorithm among ``algorithms`` for one item.

        Falls back to the configured default algorithm (when requested)
        if the history is too short to backtest.
        """

        window = test_window or self.params.accuracy_test_window
        pairs = self.evaluator.backtest_series(series, algorithms, window)
        if pairs is None:
            return self.default_algorithm if self.default_algorithm in algorithms else None

        scores = {algorithm: score_pairs(algorithm, item_pairs) for algorithm, item_pairs in pairs.items()}
        return rank_algorithms(scores, algorithms)[0]

    # ------------------------------------------------------------------
    def forecast_series(
        self,
        series: HistorySeries,
        horizon_months: int,
        target_months: Sequence[str],
        algorithms: Sequence[AlgorithmId],
        recommend: bool = False,
    ) -> ForecastResult:
        """Forecast one item with every algorithm, algorithm-major then by month."""

        points: List[ForecastPoint] = []
        for algorithm in algorithms:
            try:
                predictions = run_algorithm(
                    algorithm,
                    series.quantities,
                    horizon_months,
                    target_months,
                    series.months,
                    self.params,
                )
            except ArithmeticError as exc:
                LOGGER.warning("%s failed for item=%s: %s", algorithm.value, series.item_id, exc)
                raise ValueError(
                    f"{algorithm.value} cannot forecast item '{series.item_id}': {exc}"
                ) from exc
            points.extend(
                ForecastPoint(month=month, algorithm=algorithm, predicted=value)
                for month, value in zip(target_months, predictions)
            )

        return ForecastResult(
            item_id=series.item_id,
            item_name=series.item_name,
            category=series.category,
            forecasts=points,
            recommended_algorithm=self.recommend_algorithm(series, algorithms) if recommend else None,
        )

    # ------------------------------------------------------------------
    def smart_forecast(
        self,
        observations: Iterable[ObservationInput],
        horizon_months: int,
        target_months: Optional[Sequence[str]] = None,
        algorithms: Optional[Iterable[AlgorithmId | str]] = None,
        *,
        current_month: Optional[str] = None,
        categories: Optional[Iterable[str]] = None,
        recommend: bool = False,
    ) -> List[ForecastResult]:
        """Forecast every item present in ``observations``.

        Parameters
        ----------
        observations:
            Monthly consumption records, in any order and possibly for
            many items.  Repeated ``(item, month)`` keys keep the last
            record.
        horizon_months:
            Number of future months to predict.
        target_months:
            Labels of the predicted months; must contain
            ``horizon_months`` entries.  When omitted the months follow
            ``current_month`` or, failing that, each item's last
            observed month.
        algorithms:
            Algorithms to run, in output order.  Defaults to all seven.
        categories:
            Only forecast items whose records carry one of these
            categories.
        recommend:
            Backtest each item and set ``recommended_algorithm``.

        Items with no usable history still appear, with zero forecasts.
        Malformed observations raise ``InvalidObservationError``.
        """

        horizon = self._check_horizon(horizon_months)
        selected = resolve_algorithms(algorithms)
        self._check_month(current_month, "current_month")
        if target_months is not None:
            target_months = list(target_months)
            if len(target_months) != horizon:
                raise ValueError(
                    f"target_months has {len(target_months)} labels but horizon_months is {horizon}"
                )
            for label in target_months:
                self._check_month(label, "target month")

        histories = group_observations(observations, categories)
        latest_month = max((s.last_month for s in histories if s.last_month), default=None)
        LOGGER.info(
            "Smart forecast items=%s horizon=%s algorithms=%s",
            len(histories),
            horizon,
            ",".join(a.value for a in selected),
        )

        def _run(series: HistorySeries) -> ForecastResult:
            months = self._months_for(series, horizon, target_months, current_month, latest_month)
            return self.forecast_series(series, horizon, months, selected, recommend)

        if self.params.max_workers > 1 and len(histories) > 1:
            with ThreadPoolExecutor(max_workers=self.params.max_workers) as pool:
                results = list(pool.map(_run, histories))
        else:
            results = [_run(series) for series in histories]

        self._notify(results)
        return results

    # ------------------------------------------------------------------
    def evaluate_accuracy(
        self,
        observations: Iterable[ObservationInput],
        algorithms: Optional[Iterable[AlgorithmId | str]] = None,
        test_window: Optional[int] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> AccuracyReport:
        """Backtest ``algorithms`` over every item and pool the errors."""

        histories = group_observations(observations, categories)
        return self.evaluator.evaluate(histories, algorithms, test_window)
