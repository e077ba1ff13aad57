"""Custom exception hierarchy for QualityPulse.

QualityPulse errors carry:
- Structured error codes for programmatic handling
- Context describing the history file or config field involved
- Actionable suggestions for recovery

The analytics engine degrades instead of failing: analyzers catch
``QualityPulseError`` from storage, log it and continue with an empty
history. Only configuration errors surface to the caller.

Example:
    try:
        config = load_config("qualitypulse.yaml")
    except ConfigValidationError as e:
        print(f"Error: {e}")
        for suggestion in e.suggestions:
            print(f"  - {suggestion}")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for QualityPulse.

    Error codes are organized by category:
    - E2xx: Configuration errors
    - E3xx: History storage errors
    - E9xx: Unknown/internal errors
    """

    # Configuration errors (E2xx)
    VALIDATION_FAILED = "E201"
    INVALID_CONFIG = "E202"

    # History storage errors (E3xx)
    HISTORY_ERROR = "E301"
    HISTORY_CORRUPTED = "E302"
    HISTORY_LOCKED = "E303"
    HISTORY_WRITE_FAILED = "E304"

    # Unknown/internal errors (E9xx)
    UNKNOWN = "E999"

    @property
    def category(self) -> str:
        """Get the error category name."""
        code_num = int(self.value[1:])
        if code_num < 300:
            return "configuration"
        elif code_num < 400:
            return "history"
        else:
            return "unknown"


@dataclass
class ErrorContext:
    """Structured context for error logging and debugging.

    Attributes:
        history_file: Path of the history series involved, if any.
        test_title: Title of the test record involved, if any.
        extra: Additional context-specific information.
        timestamp: When the error occurred.
    """

    history_file: str | None = None
    test_title: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for serialization."""
        result = {
            "history_file": self.history_file,
            "test_title": self.test_title,
            "extra": self.extra,
            "timestamp": self.timestamp.isoformat(),
        }
        return {k: v for k, v in result.items() if v is not None}

    def format_location(self) -> str:
        """Format the error location as a readable string."""
        parts = []
        if self.history_file:
            parts.append(f"file={self.history_file}")
        if self.test_title:
            parts.append(f"test={self.test_title}")
        return " > ".join(parts) if parts else "unknown location"


class QualityPulseError(Exception):
    """Base exception for all QualityPulse errors.

    Attributes:
        error_code: Unique ErrorCode for this error type
        message: Human-readable error description
        context: ErrorContext with file/test details
        suggestions: List of actionable steps to resolve the issue
        recoverable: Whether analysis can continue past the error
        cause: The underlying exception (if any)
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unexpected error occurred"
    default_suggestions: list[str] = []

    def __init__(
        self,
        message: str | None = None,
        error_code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
        recoverable: bool = True,
        suggestions: list[str] | None = None,
        **extra_context: Any,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = recoverable
        self._suggestions = suggestions

        if extra_context:
            self.context.extra.update(extra_context)

        super().__init__(self.message)

    @property
    def suggestions(self) -> list[str]:
        """Get actionable suggestions for resolving this error."""
        if self._suggestions is not None:
            return self._suggestions
        return self.default_suggestions.copy()

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]

        location = self.context.format_location()
        if location != "unknown location":
            parts.append(f"at {location}")

        return " | ".join(parts)

    def format_verbose(self) -> str:
        """Format error with full details including suggestions."""
        lines = [f"Error [{self.error_code.value}]: {self.message}"]

        location = self.context.format_location()
        if location != "unknown location":
            lines.append(f"Location: {location}")

        if self.cause is not None:
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for suggestion in self.suggestions:
                lines.append(f"  - {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class ValidationError(QualityPulseError):
    """Validation failed.

    Check the 'field' and 'value' attributes for specific details
    about what failed validation.
    """

    error_code = ErrorCode.VALIDATION_FAILED
    default_message = "Validation failed"
    default_suggestions = [
        "Check the field name and value mentioned in the error",
        "Review the expected format in the configuration reference",
    ]

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.expected = expected
        kwargs.setdefault("recoverable", False)
        super().__init__(message=message, **kwargs)

    def __str__(self) -> str:
        base = super().__str__()
        if self.field:
            base = f"{base} (field: {self.field})"
        return base

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        result["value"] = repr(self.value)
        if self.expected:
            result["expected"] = self.expected
        return result


class ConfigValidationError(ValidationError):
    """Configuration validation failed.

    The qualitypulse.yaml file or a QUALITYPULSE_* environment variable
    holds an invalid value.
    """

    error_code = ErrorCode.INVALID_CONFIG
    default_message = "Invalid configuration"
    default_suggestions = [
        "Check qualitypulse.yaml syntax with a YAML linter",
        "Dimension weights must sum to 1.0",
        "Stability thresholds must satisfy flaky <= unstable <= stable",
    ]


class HistoryError(QualityPulseError):
    """Reading or writing a trend history file failed."""

    error_code = ErrorCode.HISTORY_ERROR
    default_message = "History storage error"
    default_suggestions = [
        "Check that the data directory exists and is writable",
    ]


class HistoryCorruptedError(HistoryError):
    """A history file exists but does not hold a JSON array of snapshots."""

    error_code = ErrorCode.HISTORY_CORRUPTED
    default_message = "History file is corrupted"
    default_suggestions = [
        "Inspect the file for partial writes or manual edits",
        "Delete the file to start a fresh history",
    ]


class HistoryLockError(HistoryError):
    """The history lock could not be acquired in time."""

    error_code = ErrorCode.HISTORY_LOCKED
    default_message = "Timed out waiting for history lock"
    default_suggestions = [
        "Another analysis process may be writing the same history",
        "Remove a stale '.lock' file left behind by a crashed process",
        "Increase lock_timeout in the configuration",
    ]


class HistoryWriteError(HistoryError):
    """Persisting a history file failed."""

    error_code = ErrorCode.HISTORY_WRITE_FAILED
    default_message = "Failed to write history file"
    default_suggestions = [
        "Check free disk space and permissions on the data directory",
    ]
