from __future__ import annotations

from pathlib import Path
import sys


ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import pytest

from demand_planner.app.core.config import ForecastParameters
from demand_planner.app.models.schemas import ALL_ALGORITHMS, AlgorithmId, Observation
from demand_planner.app.services.forecasting_service import ForecastingService
from demand_planner.app.services.history_service import InvalidObservationError, group_observations

MA = AlgorithmId.MOVING_AVERAGE
LR = AlgorithmId.LINEAR_REGRESSION


def _service(**overrides) -> ForecastingService:
    return ForecastingService(params=ForecastParameters(**overrides))


def test_grouping_sorts_months_and_keeps_first_appearance_order() -> None:
    records = [
        {"item_id": "B", "month": "2024-03", "quantity": 3},
        {"item_id": "A", "month": "2024-02", "quantity": 20},
        {"item_id": "B", "month": "2024-01", "quantity": 1},
        {"item_id": "A", "month": "2024-01", "quantity": 10},
    ]

    histories = group_observations(records)

    assert [series.item_id for series in histories] == ["B", "A"]
    assert histories[0].months == ("2024-01", "2024-03")
    assert histories[0].quantities == (1.0, 3.0)


def test_group_accepts_aliases_and_models() -> None:
    records = [
        {"itemId": "A", "itemName": "Steel sheet", "month": "2024-01", "quantity": "12.5"},
        Observation(item_id="A", month="2024-02", quantity=7),
    ]

    (series,) = group_observations(records)

    assert series.item_name == "Steel sheet"
    assert series.quantities == (12.5, 7.0)


def test_duplicate_month_keeps_last_observation() -> None:
    records = [
        {"item_id": "A", "month": "2024-01", "quantity": 10},
        {"item_id": "A", "month": "2024-02", "quantity": 20},
        {"item_id": "A", "month": "2024-02", "quantity": 40},
    ]

    (result,) = _service().smart_forecast(records, 1, algorithms=[MA])

    assert result.predictions_for(MA) == pytest.approx([25.0])


def test_every_item_gets_every_algorithm_and_month(monthly_observations) -> None:
    records = monthly_observations("MAT-001", "2024-01", [100, 110, 120, 130, 140, 150])
    records += monthly_observations("PKG-010", "2024-03", [40, 42, 41, 43])

    results = _service().smart_forecast(records, 3)

    assert [result.item_id for result in results] == ["MAT-001", "PKG-010"]
    for result in results:
        assert len(result.forecasts) == 3 * len(ALL_ALGORITHMS)
        assert [point.algorithm for point in result.forecasts[:3]] == [ALL_ALGORITHMS[0]] * 3
        assert all(point.predicted >= 0.0 for point in result.forecasts)
        assert result.recommended_algorithm is None
    assert [point.month for point in results[0].forecasts[:3]] == ["2024-07", "2024-08", "2024-09"]
    assert [point.month for point in results[1].forecasts[:3]] == ["2024-07", "2024-08", "2024-09"]


def test_item_without_history_is_reported_with_zero_forecast(monthly_observations) -> None:
    records = monthly_observations("A", "2024-01", [5, 6, 7])
    records.append({"item_id": "NEW", "month": None, "quantity": None})

    results = _service().smart_forecast(records, 2, algorithms=[MA, AlgorithmId.ENSEMBLE])

    new = results[1]
    assert new.item_id == "NEW"
    assert len(new.forecasts) == 4
    assert all(point.predicted == 0.0 for point in new.forecasts)
    assert [point.month for point in new.forecasts[:2]] == ["2024-04", "2024-05"]


def test_months_follow_current_month_when_given(monthly_observations) -> None:
    records = monthly_observations("A", "2024-01", [5, 6, 7])

    (result,) = _service().smart_forecast(records, 2, algorithms=[MA], current_month="2024-10")

    assert [point.month for point in result.forecasts] == ["2024-11", "2024-12"]


def test_explicit_target_months_are_used_verbatim(monthly_observations) -> None:
    records = monthly_observations("A", "2024-01", [5, 6, 7])

    (result,) = _service().smart_forecast(records, 2, ["2025-06", "2025-07"], [LR])

    assert [point.month for point in result.forecasts] == ["2025-06", "2025-07"]


def test_target_months_must_match_horizon(monthly_observations) -> None:
    with pytest.raises(ValueError):
        _service().smart_forecast(monthly_observations("A", "2024-01", [1, 2]), 3, ["2024-03"])


@pytest.mark.parametrize("horizon", [0, 121])
def test_horizon_out_of_range(horizon: int, monthly_observations) -> None:
    with pytest.raises(ValueError):
        _service().smart_forecast(monthly_observations("A", "2024-01", [1, 2]), horizon)


def test_unknown_algorithm_rejected(monthly_observations) -> None:
    with pytest.raises(ValueError):
        _service().smart_forecast(monthly_observations("A", "2024-01", [1, 2]), 1, algorithms=["prophet"])


def test_no_month_anywhere_requires_current_month() -> None:
    records = [{"item_id": "A", "quantity": 4}]

    with pytest.raises(ValueError):
        _service().smart_forecast(records, 1)

    (result,) = _service().smart_forecast(records, 1, algorithms=[MA], current_month="2024-05")
    assert result.forecasts[0].month == "2024-06"
    assert result.forecasts[0].predicted == 0.0


def test_malformed_observations_are_all_reported() -> None:
    records = [
        {"item_id": "A", "month": "2024-01", "quantity": "lots"},
        {"item_id": "A", "month": "January", "quantity": 3},
        {"item_id": "A", "month": "2024-02", "quantity": 3},
        "not a record",
    ]

    with pytest.raises(InvalidObservationError) as excinfo:
        _service().smart_forecast(records, 1)

    assert [issue.index for issue in excinfo.value.issues] == [0, 1, 3]
    assert isinstance(excinfo.value, ValueError)


def test_quantity_too_large_for_a_float_is_reported() -> None:
    records = [
        {"item_id": "A", "month": "2024-01", "quantity": 10**400},
        {"item_id": "A", "month": "2024-02", "quantity": 3},
    ]

    with pytest.raises(InvalidObservationError) as excinfo:
        _service().smart_forecast(records, 1, ["2024-03"])

    (issue,) = excinfo.value.issues
    assert issue.index == 0
    assert issue.reason.startswith("non-numeric quantity")


def test_numeric_strings_are_read_and_blank_quantities_count_as_zero() -> None:
    records = [
        {"item_id": "A", "month": "2024-01", "quantity": "12"},
        {"item_id": "A", "month": "2024-02", "quantity": " 7.5 "},
        {"item_id": "A", "month": "2024-03", "quantity": ""},
        {"item_id": "A", "month": "2024-04"},
    ]

    (series,) = group_observations(records)

    assert series.quantities == (12.0, 7.5, 0.0, 0.0)
    with pytest.raises(InvalidObservationError):
        group_observations([{"item_id": "A", "month": "2024-01", "quantity": "inf"}])


def test_overflowing_algorithm_is_reported_not_zeroed() -> None:
    records = [
        {"item_id": "HUGE", "month": "2024-01", "quantity": 1e308},
        {"item_id": "HUGE", "month": "2024-02", "quantity": 1.5e308},
        {"item_id": "HUGE", "month": "2024-03", "quantity": 1.7e308},
    ]

    with pytest.raises(ValueError, match="moving_average cannot forecast item 'HUGE'"):
        _service().smart_forecast(records, 2, algorithms=[MA])

    # Only exponential smoothing stays finite, so the ensemble is that forecast alone.
    (result,) = _service().smart_forecast(
        records, 2, algorithms=[AlgorithmId.ENSEMBLE, AlgorithmId.EXPONENTIAL_SMOOTHING]
    )
    ensemble = result.predictions_for(AlgorithmId.ENSEMBLE)
    smoothing = result.predictions_for(AlgorithmId.EXPONENTIAL_SMOOTHING)
    assert ensemble == pytest.approx(smoothing)
    assert all(value > 1e307 for value in ensemble)


def test_category_filter_is_explicit(monthly_observations) -> None:
    records = monthly_observations("MAT-001", "2024-01", [1, 2, 3], category="raw-material")
    records += monthly_observations("PKG-010", "2024-01", [4, 5, 6], category="packaging")
    records += monthly_observations("RAW-NOTE", "2024-01", [7, 8, 9], category="packaging")

    results = _service().smart_forecast(records, 1, algorithms=[MA], categories=["raw-material"])

    assert [result.item_id for result in results] == ["MAT-001"]
    assert results[0].category == "raw-material"


def test_parallel_run_matches_sequential(monthly_observations) -> None:
    records = []
    for index in range(6):
        records += monthly_observations(f"MAT-{index:03d}", "2023-01", [10 + index * step for step in range(18)])

    sequential = _service().smart_forecast(records, 3)
    parallel = ForecastingService(params=ForecastParameters(), max_workers=4).smart_forecast(records, 3)

    assert [r.model_dump() for r in parallel] == [r.model_dump() for r in sequential]


def test_recommend_picks_lowest_backtest_error(monthly_observations) -> None:
    records = monthly_observations("LINE", "2024-01", [10.0 * step for step in range(1, 13)])
    records += monthly_observations("NEW", "2024-01", [3, 4])

    line, new = _service().smart_forecast(records, 2, recommend=True)

    assert line.recommended_algorithm == LR
    assert new.recommended_algorithm == AlgorithmId.ENSEMBLE


def test_listeners_receive_results_until_unsubscribed(monthly_observations) -> None:
    service = _service()
    received = []
    unsubscribe = service.subscribe(received.append)
    records = monthly_observations("A", "2024-01", [1, 2, 3])

    service.smart_forecast(records, 1, algorithms=[MA])
    unsubscribe()
    service.smart_forecast(records, 1, algorithms=[MA])

    assert len(received) == 1
    assert received[0][0].item_id == "A"


def test_failing_listener_does_not_break_forecast(monthly_observations) -> None:
    service = _service()

    def _broken(_results) -> None:
        raise RuntimeError("listener down")

    service.subscribe(_broken)
    results = service.smart_forecast(monthly_observations("A", "2024-01", [1, 2, 3]), 1, algorithms=[MA])

    assert results[0].predictions_for(MA) == pytest.approx([2.0])


def test_evaluate_accuracy_groups_raw_observations(monthly_observations) -> None:
    records = monthly_observations("A", "2023-01", [100 + (step % 3) for step in range(12)])
    records += monthly_observations("B", "2023-01", [1, 2, 3])

    report = _service().evaluate_accuracy(records, [MA, LR], test_window=6)

    assert report.items_evaluated == ["A"]
    assert report.items_skipped == ["B"]
    assert set(report.scores) == {MA, LR}


def test_unknown_default_algorithm_rejected() -> None:
    with pytest.raises(ValueError):
        ForecastingService(params=ForecastParameters(default_algorithm="prophet"))
