"""Pytest fixtures for QualityPulse tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from qualitypulse.config import AnalyticsConfig
from qualitypulse.models import TestRunResult

RUN_TIME = datetime(2026, 10, 18, 12, 0, 0)

TIMEOUT_MESSAGE = "Timeout 5000ms exceeded"


def make_result(
    title: str = "checkout completes order",
    status: str = "passed",
    duration: float = 1000.0,
    retry: int = 0,
    message: str | None = None,
    stack: str | None = None,
) -> TestRunResult:
    """Build a TestRunResult with sensible defaults."""
    data: dict[str, Any] = {"title": title, "status": status, "duration": duration, "retry": retry}
    if message is not None or stack is not None:
        data["error"] = {"message": message or "", "stack": stack}
    return TestRunResult.model_validate(data)


@pytest.fixture
def result_factory() -> Callable[..., TestRunResult]:
    return make_result


@pytest.fixture
def mixed_results() -> list[TestRunResult]:
    """Seven passes and three timeouts across distinct tests."""
    passed = [make_result(title=f"dashboard renders widget {i}") for i in range(7)]
    failed = [
        make_result(title=f"report export {i}", status="failed", duration=5000.0, message=TIMEOUT_MESSAGE)
        for i in range(3)
    ]
    return passed + failed


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "quality-tracking"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path) -> AnalyticsConfig:
    """Config whose coverage summary lives inside the test's tmp dir."""
    return AnalyticsConfig(
        data_dir=str(tmp_path / "quality-tracking"),
        coverage_summary_path=str(tmp_path / "coverage" / "coverage-summary.json"),
        lock_timeout=0.5,
    )
