"""Core data models for QualityPulse.

``TestRunResult`` is the input record handed over by the test execution
layer. It is immutable: every analyzer reads it and none mutate it.
Everything derived from it lives next to the analyzer that derives it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

QUALITY_DIMENSIONS = ("reliability", "performance", "maintainability", "coverage", "stability")


class TestStatus(Enum):
    """Outcome of a single test execution."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timedOut"

    @classmethod
    def _missing_(cls, value: object) -> TestStatus | None:
        if isinstance(value, str):
            normalized = value.replace("_", "").replace("-", "").lower()
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None

    @property
    def is_failure(self) -> bool:
        return self in (TestStatus.FAILED, TestStatus.TIMED_OUT)


class Priority(Enum):
    """Priority of a recommendation or action item."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: lower ranks sort first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class Effort(Enum):
    """Rough effort estimate for a recommendation."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class TrendDirection(Enum):
    """Direction of a metric between two runs, from a quality standpoint."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class TestError(BaseModel):
    """Error attached to a failed test execution."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    message: str = ""
    stack: str | None = None

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, v: Any) -> str:
        return "" if v is None else str(v)


class TestRunResult(BaseModel):
    """One test execution as reported by the test runner.

    Attributes:
        title: Full test title, used as the grouping key.
        status: passed, failed, skipped or timedOut.
        duration: Wall time in milliseconds.
        retry: Number of retries before this outcome.
        error: Error details for failures.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    title: str
    status: TestStatus
    duration: float = Field(default=0.0, ge=0)
    retry: int = Field(default=0, ge=0)
    error: TestError | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, TestStatus):
            return TestStatus(v)
        return v

    @field_validator("duration", mode="before")
    @classmethod
    def default_duration(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("retry", mode="before")
    @classmethod
    def default_retry(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def passed(self) -> bool:
        return self.status is TestStatus.PASSED

    @property
    def failed(self) -> bool:
        return self.status.is_failure

    @property
    def error_message(self) -> str:
        return self.error.message if self.error else ""

    @property
    def error_stack(self) -> str:
        return (self.error.stack or "") if self.error else ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the runner's wire shape."""
        data: dict[str, Any] = {
            "title": self.title,
            "status": self.status.value,
            "duration": self.duration,
            "retry": self.retry,
        }
        if self.error is not None:
            data["error"] = {"message": self.error.message, "stack": self.error.stack}
        return data


def coerce_results(
    results: Iterable[TestRunResult | Mapping[str, Any]] | None,
) -> list[TestRunResult]:
    """Validate raw records into TestRunResults.

    Records that fail validation are logged and skipped so a single bad
    record never aborts the analysis.
    """
    if not results:
        return []

    coerced: list[TestRunResult] = []
    for index, item in enumerate(results):
        if isinstance(item, TestRunResult):
            coerced.append(item)
            continue
        try:
            coerced.append(TestRunResult.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid test result at index %d: %s", index, e.errors()[0]["msg"])
    return coerced


def safe_ratio(numerator: float, denominator: float) -> float:
    """Divide, returning 0.0 when the denominator is zero."""
    if not denominator:
        return 0.0
    value = numerator / denominator
    return value if math.isfinite(value) else 0.0


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp to [low, high], mapping NaN to ``low``."""
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def sort_by_priority(items: list[Any]) -> list[Any]:
    """Stable sort of items exposing a ``priority`` attribute."""
    return sorted(items, key=lambda item: item.priority.rank)
