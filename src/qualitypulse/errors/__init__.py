"""QualityPulse error hierarchy."""

from qualitypulse.errors.base import (
    ConfigValidationError,
    ErrorCode,
    ErrorContext,
    HistoryCorruptedError,
    HistoryError,
    HistoryLockError,
    HistoryWriteError,
    QualityPulseError,
    ValidationError,
)

__all__ = [
    "ConfigValidationError",
    "ErrorCode",
    "ErrorContext",
    "HistoryCorruptedError",
    "HistoryError",
    "HistoryLockError",
    "HistoryWriteError",
    "QualityPulseError",
    "ValidationError",
]
