r"""demand_planner\app\api\v1\accuracy.py

Backtesting routes scoring the forecasting algorithms."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from .forecasts import _error_payload, _forecast_service, _history_service, _invalid_observations, load_item_history
from ...core.observability import record_forecast_run
from ...models import schemas
from ...services.history_service import InvalidObservationError

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _round_metric(value: object) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return round(float(value), 6)
    return None


def _rounded(score: schemas.AccuracyScore) -> schemas.AccuracyScore:
    return score.model_copy(update={"mae": _round_metric(score.mae), "rmse": _round_metric(score.rmse)})


def _evaluate(
    observations: list[dict[str, Any]],
    algorithms: Optional[List[schemas.AlgorithmId]],
    test_window: Optional[int],
) -> schemas.AccuracyReport:
    started = time.perf_counter()
    try:
        report = _forecast_service.evaluate_accuracy(observations, algorithms, test_window)
    except InvalidObservationError as exc:
        LOGGER.warning("Accuracy run rejected, malformed observations: %s", exc)
        raise _invalid_observations(exc) from exc
    except ValueError as exc:
        LOGGER.warning("Accuracy run rejected: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive programming
        LOGGER.exception("Unexpected error during accuracy backtest")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("backtest_failed", "An unexpected error occurred while running the backtest."),
        ) from exc

    record_forecast_run(
        "accuracy",
        [algorithm.value for algorithm in report.scores],
        len(report.items_evaluated),
        time.perf_counter() - started,
    )
    return report.model_copy(
        update={
            "scores": {algorithm: _rounded(score) for algorithm, score in report.scores.items()},
            "per_item": {
                item: {algorithm: _rounded(score) for algorithm, score in scores.items()}
                for item, scores in report.per_item.items()
            },
        }
    )


@router.post("/accuracy", response_model=schemas.AccuracyReport)
def evaluate_accuracy(request: schemas.AccuracyRequest) -> schemas.AccuracyReport:
    """Backtest the requested algorithms over the supplied observations."""

    LOGGER.info("Accuracy request received observations=%s", len(request.observations))
    return _evaluate(request.observations, request.algorithms, request.test_window)


@router.get("/accuracy/{item_id}", response_model=schemas.AccuracyReport)
def item_accuracy(
    item_id: str,
    test_window: Optional[int] = Query(None, ge=1, le=36, description="Trailing months held out for testing"),
    months_back: int = Query(24, ge=1, le=120, description="History window in months"),
    algorithms: Optional[List[schemas.AlgorithmId]] = Query(None, description="Algorithms to score"),
) -> schemas.AccuracyReport:
    """Return MAE/RMSE per algorithm for one stored item."""

    observations = load_item_history(_history_service, item_id, months_back)
    return _evaluate(observations, algorithms, test_window)
