"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables, the ``ForecastParameters`` model holding the tunable
constants of the forecasting algorithms, and helper functions to load them
from YAML files in ``configs/``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Location of consumption history files and YAML configuration
    data_dir: str = "data"
    config_dir: str = "configs"

    # Comma separated list of allowed CORS origins; empty means "*"
    cors_origins: str = ""


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class ForecastParameters(BaseModel):
    """Tunable constants for the forecasting algorithms and evaluator."""

    moving_average_window: int = Field(3, ge=1, le=36)
    smoothing_alpha: float = Field(0.5, gt=0.0, le=1.0)
    season_length: int = Field(12, ge=2, le=24)
    outlier_threshold: float = Field(2.5, gt=0.0)
    arima_ar_order: int = Field(1, ge=1, le=12)
    arima_ar_weight: float = Field(0.5, ge=0.0, le=1.0)
    ensemble_test_window: int = Field(6, ge=1, le=36)
    ensemble_error_metric: Literal["mae", "rmse"] = "mae"
    ensemble_epsilon: float = Field(1e-6, gt=0.0)
    accuracy_test_window: int = Field(6, ge=1, le=36)
    max_horizon_months: int = Field(120, ge=1)
    default_algorithm: str = "ensemble"
    max_workers: int = Field(1, ge=1, le=64)


def load_forecast_parameters(config_root: str | None = None) -> ForecastParameters:
    """Read the ``forecasting`` section of ``settings.yaml``.

    Missing files or sections yield the defaults.  Invalid values raise a
    ``ValueError`` so misconfiguration is visible at start-up.
    """

    root = config_root or get_settings().config_dir
    settings = load_yaml(os.path.join(root, "settings.yaml"))
    section = settings.get("forecasting") or {}
    if not isinstance(section, dict):
        raise ValueError("'forecasting' section of settings.yaml must be a mapping")

    known = {key: value for key, value in section.items() if key in ForecastParameters.model_fields}
    try:
        return ForecastParameters(**known)
    except ValidationError as exc:
        raise ValueError(f"Invalid forecasting settings: {exc}") from exc
