r"""demand_planner\app\main.py

Main entrypoint for the FastAPI application.

The API exposes endpoints to forecast monthly material consumption for
one or many items, to backtest the forecasting algorithms against held-out
history and to list the available algorithms.  A health endpoint is also
provided for readiness/liveness checks.  Configuration is read from
environment variables and YAML files in `configs/`.
"""


from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Load .env from repo root before the routers read their settings
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

from .api.v1 import (  # noqa: E402
    accuracy,
    algorithms,
    data,
    forecasts,
    health,
)
from .core.config import get_settings  # noqa: E402
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint  # noqa: E402


logging.getLogger(__name__).info("Data directory: %s", get_settings().data_dir)

app = FastAPI(title="Factory Demand Planner API", version="0.1.0")

# Allow cross-origin requests from the planning UI (and others).
origins = [origin.strip() for origin in get_settings().cors_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # In production specify your UI domain(s)
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")
app.include_router(accuracy.router, prefix="/api/v1")
app.include_router(algorithms.router, prefix="/api/v1")
app.include_router(data.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()
