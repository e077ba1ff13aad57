"""Configuration for QualityPulse."""

from qualitypulse.config.settings import (
    DEFAULT_DIMENSION_TARGETS,
    DEFAULT_DIMENSION_WEIGHTS,
    AnalyticsConfig,
    StabilityThresholds,
    load_config,
)

__all__ = [
    "DEFAULT_DIMENSION_TARGETS",
    "DEFAULT_DIMENSION_WEIGHTS",
    "AnalyticsConfig",
    "StabilityThresholds",
    "load_config",
]
