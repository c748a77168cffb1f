r"""demand_planner\app\models\schemas.py

Pydantic models used throughout the forecasting core and the API.

These models serve as both request payload validators and response
serialisation schemas.  Using typed models ensures that the planning UI
and the service agree on the structure of the data being exchanged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlgorithmId(str, Enum):
    """Closed set of forecasting algorithms."""

    MOVING_AVERAGE = "moving_average"
    LINEAR_REGRESSION = "linear_regression"
    SEASONAL_TREND = "seasonal_trend"
    EXPONENTIAL_SMOOTHING = "exponential_smoothing"
    ARIMA_LIKE = "arima_like"
    ENSEMBLE = "ensemble"
    WEIGHTED_ENSEMBLE = "weighted_ensemble"


ALL_ALGORITHMS: tuple[AlgorithmId, ...] = tuple(AlgorithmId)


class Observation(BaseModel):
    """Actual consumption of one item in one calendar month."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    item_id: str = Field("", alias="itemId")
    month: str = Field(..., description="Calendar month formatted as YYYY-MM")
    quantity: float = Field(0.0, description="Consumed quantity in stock units")
    item_name: str = Field("", alias="itemName")
    item_code: str = Field("", alias="itemCode")
    category: str = Field("", description="Explicit item category, e.g. raw-material")


class ForecastPoint(BaseModel):
    """A single predicted month for one algorithm."""

    month: str
    algorithm: AlgorithmId
    predicted: float = Field(..., ge=0.0, description="Predicted consumption, never negative")


class ForecastResult(BaseModel):
    """All forecast points for one item."""

    item_id: str
    item_name: str = ""
    category: str = ""
    forecasts: List[ForecastPoint]
    recommended_algorithm: Optional[AlgorithmId] = Field(
        None, description="Best backtested algorithm when ranking was requested"
    )

    def predictions_for(self, algorithm: AlgorithmId | str) -> List[float]:
        """Return the predicted values of ``algorithm`` in month order."""

        algo = AlgorithmId(algorithm)
        return [point.predicted for point in self.forecasts if point.algorithm == algo]


class AccuracyScore(BaseModel):
    """MAE/RMSE of one algorithm over a paired sample set.

    ``mae`` and ``rmse`` are ``None`` when the sample set was empty, which
    the UI renders as "n/a" rather than a misleading zero.
    """

    algorithm: AlgorithmId
    mae: Optional[float] = None
    rmse: Optional[float] = None
    sample_size: int = 0

    @property
    def available(self) -> bool:
        return self.sample_size > 0 and self.mae is not None


class AccuracyReport(BaseModel):
    """Backtest scores pooled across items, plus the per-item breakdown."""

    test_window: int
    scores: Dict[AlgorithmId, AccuracyScore]
    items_evaluated: List[str] = Field(default_factory=list)
    items_skipped: List[str] = Field(default_factory=list)
    per_item: Dict[str, Dict[AlgorithmId, AccuracyScore]] = Field(default_factory=dict)


class ForecastRequest(BaseModel):
    """Payload for a multi-item smart forecast."""

    observations: List[Dict[str, Any]] = Field(default_factory=list)
    horizon_months: int = Field(3, ge=1, description="Number of future months to forecast")
    target_months: Optional[List[str]] = None
    algorithms: Optional[List[AlgorithmId]] = None
    current_month: Optional[str] = Field(
        None, description="Month the forecast is made in; target months follow it"
    )
    categories: Optional[List[str]] = None
    recommend: bool = False


class ForecastResponse(BaseModel):
    """Forecast results for every item present in the request."""

    horizon_months: int
    target_months: Optional[List[str]] = None
    results: List[ForecastResult]


class AccuracyRequest(BaseModel):
    """Payload for an accuracy backtest."""

    observations: List[Dict[str, Any]] = Field(default_factory=list)
    test_window: Optional[int] = Field(None, ge=1)
    algorithms: Optional[List[AlgorithmId]] = None


class AlgorithmInfo(BaseModel):
    """Catalogue entry describing an algorithm."""

    algorithm: AlgorithmId
    description: str
    combines: List[AlgorithmId] = Field(default_factory=list)
