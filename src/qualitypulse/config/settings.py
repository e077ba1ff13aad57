"""Configuration settings and loading."""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import IO, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qualitypulse.errors import ConfigValidationError, ErrorContext
from qualitypulse.models import QUALITY_DIMENSIONS
from qualitypulse.observability.logging import configure_logging

DEFAULT_DIMENSION_WEIGHTS = {
    "reliability": 0.30,
    "performance": 0.25,
    "maintainability": 0.20,
    "coverage": 0.15,
    "stability": 0.10,
}

DEFAULT_DIMENSION_TARGETS = {
    "reliability": 95.0,
    "performance": 85.0,
    "maintainability": 90.0,
    "coverage": 80.0,
    "stability": 95.0,
}


class StabilityThresholds(BaseModel):
    """Score cut-offs for the stability bands.

    A test scoring at least ``stable`` is stable, one scoring at least
    ``unstable`` is unstable, and anything lower is flaky. Scores below
    ``flaky`` mark a critically flaky test.
    """

    model_config = ConfigDict(frozen=True)

    stable: float = Field(default=0.95, ge=0.0, le=1.0)
    unstable: float = Field(default=0.80, ge=0.0, le=1.0)
    flaky: float = Field(default=0.50, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_order(self) -> StabilityThresholds:
        if not self.flaky <= self.unstable <= self.stable:
            raise ConfigValidationError(
                message="Stability thresholds must satisfy flaky <= unstable <= stable",
                field="stability_thresholds",
                value={"stable": self.stable, "unstable": self.unstable, "flaky": self.flaky},
                expected="flaky <= unstable <= stable",
            )
        return self

    def band(self, score: float) -> str:
        """Map a stability score to its band name."""
        if score >= self.stable:
            return "stable"
        if score >= self.unstable:
            return "unstable"
        return "flaky"


class AnalyticsConfig(BaseSettings):
    """Configuration for the QualityPulse analytics engine."""

    model_config = SettingsConfigDict(
        env_prefix="QUALITYPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: str = "quality-tracking"
    trend_retention_days: int = Field(default=90, gt=0)
    execution_retention_days: int = Field(default=30, gt=0)
    quality_retention_days: int = Field(default=30, gt=0)

    stable_change_percent: float = Field(default=5.0, ge=0.0, description="|change %| below this is a stable trend")
    variance_threshold: float = Field(default=100.0, ge=0.0, description="Pass-rate variance that flags an anomaly")
    forecast_window: int = Field(default=5, ge=2, description="Points used by the linear forecast")
    dimension_trend_percent: float = Field(default=2.0, ge=0.0)

    stability_thresholds: StabilityThresholds = Field(default_factory=StabilityThresholds)
    dimension_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_DIMENSION_WEIGHTS))
    dimension_targets: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_DIMENSION_TARGETS))

    coverage_summary_path: str = "coverage/coverage-summary.json"
    lock_timeout: float = Field(default=10.0, gt=0.0)

    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("dimension_weights", mode="after")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        if set(v) != set(QUALITY_DIMENSIONS):
            raise ConfigValidationError(
                message=f"dimension_weights must name exactly: {', '.join(QUALITY_DIMENSIONS)}",
                field="dimension_weights",
                value=v,
                context=ErrorContext(extra={"dimensions": list(QUALITY_DIMENSIONS)}),
            )
        if any(weight < 0 for weight in v.values()):
            raise ConfigValidationError(
                message="dimension_weights must not be negative",
                field="dimension_weights",
                value=v,
            )
        if not math.isclose(sum(v.values()), 1.0, abs_tol=1e-6):
            raise ConfigValidationError(
                message=f"dimension_weights must sum to 1.0, got {sum(v.values()):.4f}",
                field="dimension_weights",
                value=v,
                expected="sum == 1.0",
            )
        return v

    @field_validator("dimension_targets", mode="after")
    @classmethod
    def validate_targets(cls, v: dict[str, float]) -> dict[str, float]:
        missing = set(QUALITY_DIMENSIONS) - set(v)
        if missing:
            raise ConfigValidationError(
                message=f"dimension_targets is missing: {', '.join(sorted(missing))}",
                field="dimension_targets",
                value=v,
            )
        out_of_range = {name: target for name, target in v.items() if not 0 <= target <= 100}
        if out_of_range:
            raise ConfigValidationError(
                message=f"dimension_targets must be within [0, 100]: {out_of_range}",
                field="dimension_targets",
                value=v,
            )
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ConfigValidationError(
                message=f"Invalid log level: {v}. Valid: {sorted(valid)}",
                field="log_level",
                value=v,
            )
        return str(v).upper()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    def configure_logging(self, stream: IO[str] | None = None) -> logging.Logger:
        """Apply ``log_level`` and ``log_json`` to the ``qualitypulse`` loggers."""
        return configure_logging(self.log_level, json_format=self.log_json, stream=stream)


def load_config(config_path: str | Path | None = None) -> AnalyticsConfig:
    """Load configuration from file and environment.

    Priority: env vars > config file > defaults
    """
    config_data: dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
            if not isinstance(config_data, dict):
                raise ConfigValidationError(
                    message=f"Config file must hold a mapping, got {type(config_data).__name__}",
                    field=str(config_path),
                    value=config_data,
                )

    env_overrides = _get_env_overrides()
    config_data.update(env_overrides)

    return AnalyticsConfig(**config_data)


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables.

    Keyword arguments beat the environment in pydantic-settings, so the
    scalar settings most often tuned in CI are re-applied here on top of
    the file values.
    """
    overrides: dict[str, Any] = {}

    env_mappings = {
        "QUALITYPULSE_DATA_DIR": "data_dir",
        "QUALITYPULSE_TREND_RETENTION_DAYS": ("trend_retention_days", int),
        "QUALITYPULSE_EXECUTION_RETENTION_DAYS": ("execution_retention_days", int),
        "QUALITYPULSE_QUALITY_RETENTION_DAYS": ("quality_retention_days", int),
        "QUALITYPULSE_STABLE_CHANGE_PERCENT": ("stable_change_percent", float),
        "QUALITYPULSE_COVERAGE_SUMMARY_PATH": "coverage_summary_path",
        "QUALITYPULSE_LOG_LEVEL": "log_level",
        "QUALITYPULSE_LOG_JSON": ("log_json", lambda x: x.lower() in ("true", "1", "yes")),
    }

    for env_key, config_key in env_mappings.items():
        value = os.environ.get(env_key)
        if value is not None:
            if isinstance(config_key, tuple):
                key, converter = config_key
                overrides[key] = converter(value)
            else:
                overrides[config_key] = value

    return overrides
