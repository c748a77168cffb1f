"""Routes for material consumption forecasts."""

from __future__ import annotations

import logging
import time
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...core.observability import record_forecast_run
from ...models import schemas
from ...services.forecasting_service import ForecastingService
from ...services.history_service import ConsumptionHistoryService, InvalidObservationError
from ...services.registry import resolve_algorithms

LOGGER = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_MONTHS_BACK = 12
MAX_MONTHS_BACK = 120

_forecast_service = ForecastingService()
_history_service = ConsumptionHistoryService()


def _error_payload(code: str, message: str) -> dict[str, Any]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _invalid_observations(exc: InvalidObservationError) -> HTTPException:
    payload = _error_payload("invalid_observations", str(exc))
    payload["issues"] = [issue.as_dict() for issue in exc.issues]
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=payload)


def load_item_history(
    history_service: ConsumptionHistoryService,
    item_id: str,
    months_back: int,
) -> list[dict[str, Any]]:
    """Fetch stored consumption for ``item_id`` or raise the matching HTTP error."""

    if not history_service.data_files_present():
        LOGGER.error("Consumption history missing while loading item_id=%s", item_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload(
                "data_unavailable",
                "Consumption history file is missing. Upload consumption.csv and retry.",
            ),
        )
    try:
        if not history_service.has_item(item_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=_error_payload("item_not_found", f"Item '{item_id}' has no recorded consumption."),
            )
        return history_service.get_historical_consumption(months_back, item_id=item_id)
    except ValueError as exc:
        LOGGER.error("Consumption history unreadable for item_id=%s: %s", item_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("data_invalid", str(exc)),
        ) from exc


def _run_forecast(
    observations: list[dict[str, Any]],
    horizon_months: int,
    target_months: Optional[List[str]],
    algorithms: Optional[List[schemas.AlgorithmId]],
    current_month: Optional[str],
    categories: Optional[List[str]],
    recommend: bool,
) -> schemas.ForecastResponse:
    started = time.perf_counter()
    try:
        results = _forecast_service.smart_forecast(
            observations,
            horizon_months,
            target_months,
            algorithms,
            current_month=current_month,
            categories=categories,
            recommend=recommend,
        )
    except InvalidObservationError as exc:
        LOGGER.warning("Forecast rejected, malformed observations: %s", exc)
        raise _invalid_observations(exc) from exc
    except ValueError as exc:
        LOGGER.warning("Forecast rejected: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive programming
        LOGGER.exception("Unexpected error while forecasting")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("forecast_failed", "An unexpected error occurred while forecasting."),
        ) from exc

    record_forecast_run(
        "forecast",
        [algorithm.value for algorithm in resolve_algorithms(algorithms)],
        len(results),
        time.perf_counter() - started,
    )
    return schemas.ForecastResponse(
        horizon_months=horizon_months,
        target_months=target_months,
        results=results,
    )


@router.post("/forecasts", response_model=schemas.ForecastResponse)
def create_forecast(request: schemas.ForecastRequest) -> schemas.ForecastResponse:
    """Forecast every item in the supplied consumption observations."""

    LOGGER.info(
        "Forecast request received observations=%s horizon=%s",
        len(request.observations),
        request.horizon_months,
    )
    return _run_forecast(
        request.observations,
        request.horizon_months,
        request.target_months,
        request.algorithms,
        request.current_month,
        request.categories,
        request.recommend,
    )


@router.get("/forecasts/{item_id}", response_model=schemas.ForecastResponse)
def get_forecast(
    item_id: str,
    horizon_months: int = Query(3, ge=1, description="Number of future months to forecast"),
    months_back: int = Query(DEFAULT_MONTHS_BACK, ge=1, le=MAX_MONTHS_BACK, description="History window in months"),
    algorithms: Optional[List[schemas.AlgorithmId]] = Query(None, description="Algorithms to run"),
    current_month: Optional[str] = Query(None, description="Month the forecast is made in (YYYY-MM)"),
    recommend: bool = Query(False, description="Backtest and recommend an algorithm"),
) -> schemas.ForecastResponse:
    """Forecast a single item from the stored consumption history."""

    LOGGER.info("Forecast request received for item_id=%s horizon=%s", item_id, horizon_months)
    observations = load_item_history(_history_service, item_id, months_back)
    return _run_forecast(observations, horizon_months, None, algorithms, current_month, None, recommend)
