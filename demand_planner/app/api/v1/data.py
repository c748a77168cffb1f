r"""demand_planner\app\api\v1\data.py

Data readiness checks for the consumption history files."""

from __future__ import annotations

from fastapi import APIRouter

from ...services.validation_service import ValidationService

router = APIRouter()
_validation_service = ValidationService()


@router.get("/data/validate")
def validate() -> dict:
    """Run the data and configuration checks; ``ok`` is false if any fails."""

    return _validation_service.run()
