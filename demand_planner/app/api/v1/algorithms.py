"""Catalogue of the available forecasting algorithms."""

from __future__ import annotations

from fastapi import APIRouter

from ...models import schemas
from ...services.registry import ALGORITHMS

router = APIRouter()


@router.get("/algorithms", response_model=list[schemas.AlgorithmInfo])
def list_algorithms() -> list[schemas.AlgorithmInfo]:
    """Describe every algorithm, in the order forecasts list them."""

    return [
        schemas.AlgorithmInfo(
            algorithm=algorithm.algorithm_id,
            description=algorithm.description,
            combines=list(algorithm.combines),
        )
        for algorithm in ALGORITHMS.values()
    ]
