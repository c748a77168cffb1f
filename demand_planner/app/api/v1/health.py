r"""demand_planner\app\api\v1\health.py

Health check endpoints.

Orchestrators and load balancers call `/api/v1/health` to verify that the
service is running and its algorithm table is loaded.
"""

from fastapi import APIRouter

from ...services.registry import ALGORITHMS

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, object]:
    """Return a basic health indicator."""
    return {"status": "ok", "algorithms": len(ALGORITHMS)}
