"""Quality trend tracking: pass rate, test duration, stability and coverage.

Example:
    >>> analyzer = TrendAnalyzer("./quality-tracking")
    >>> analyzer.collect(results)
    >>> analysis = analyzer.analyze("weekly")
    >>> analysis.metric("pass_rate").direction
    <TrendDirection.STABLE: 'stable'>
"""

from __future__ import annotations

import json
import logging
import os
import platform
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from qualitypulse.config import AnalyticsConfig
from qualitypulse.models import Effort, Priority, TestRunResult, TrendDirection, clamp, safe_ratio
from qualitypulse.storage import to_epoch_ms
from qualitypulse.trends.base import (
    BaseTrendAnalyzer,
    InsightType,
    MetricSpec,
    TrendInsight,
    TrendMetric,
    TrendRecommendation,
)

logger = logging.getLogger(__name__)


@dataclass
class TestSummary:
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    pass_rate: float = 0.0
    duration: float = 0.0
    retries: int = 0


@dataclass
class PerformanceMetrics:
    average_test_duration: float = 0.0
    slowest_test: float = 0.0
    fastest_test: float = 0.0
    total_execution_time: float = 0.0
    parallel_efficiency: float = 0.0


@dataclass
class StabilitySnapshot:
    stable_tests: int = 0
    flaky_tests: int = 0
    new_failures: int = 0
    resolved_failures: int = 0
    stability_score: float = 0.0


@dataclass
class CoverageMetrics:
    statements: float = 0.0
    branches: float = 0.0
    functions: float = 0.0
    lines: float = 0.0

    @property
    def average(self) -> float:
        return (self.statements + self.branches + self.functions + self.lines) / 4


@dataclass
class EnvironmentInfo:
    os: str = ""
    python_version: str = ""
    ci: bool = False
    branch: str | None = None
    commit: str | None = None

    @classmethod
    def detect(cls) -> EnvironmentInfo:
        """Fingerprint the machine and CI context of the current run."""
        env = os.environ
        return cls(
            os=f"{platform.system()} {platform.machine()}".strip(),
            python_version=platform.python_version(),
            ci=env.get("CI", "").lower() in ("true", "1", "yes"),
            branch=env.get("GITHUB_REF_NAME") or env.get("CI_COMMIT_REF_NAME") or env.get("GIT_BRANCH"),
            commit=env.get("GITHUB_SHA") or env.get("CI_COMMIT_SHA") or env.get("GIT_COMMIT"),
        )


@dataclass
class TrendDataPoint:
    """Quality snapshot of one run."""

    date: str
    timestamp: int
    summary: TestSummary = field(default_factory=TestSummary)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    stability: StabilitySnapshot = field(default_factory=StabilitySnapshot)
    coverage: CoverageMetrics = field(default_factory=CoverageMetrics)
    environment: EnvironmentInfo = field(default_factory=EnvironmentInfo)
    failed_tests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "timestamp": self.timestamp,
            "summary": asdict(self.summary),
            "performance": asdict(self.performance),
            "stability": asdict(self.stability),
            "coverage": asdict(self.coverage),
            "environment": asdict(self.environment),
            "failed_tests": list(self.failed_tests),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrendDataPoint:
        """Validate a stored snapshot; raises ``pydantic.ValidationError``."""
        return _TREND_POINT_ADAPTER.validate_python(data)


_TREND_POINT_ADAPTER = TypeAdapter(TrendDataPoint)


def load_coverage_summary(path: str | Path) -> CoverageMetrics:
    """Read totals from an Istanbul-style ``coverage-summary.json``.

    A missing or unreadable file yields zero coverage.
    """
    path = Path(path)
    if not path.exists():
        return CoverageMetrics()
    try:
        with open(path, encoding="utf-8") as f:
            total = json.load(f).get("total", {})
        return CoverageMetrics(
            statements=float(total.get("statements", {}).get("pct", 0)),
            branches=float(total.get("branches", {}).get("pct", 0)),
            functions=float(total.get("functions", {}).get("pct", 0)),
            lines=float(total.get("lines", {}).get("pct", 0)),
        )
    except (OSError, ValueError, AttributeError, TypeError) as e:
        logger.warning("Ignoring unreadable coverage summary %s: %s", path, e)
        return CoverageMetrics()


class TrendAnalyzer(BaseTrendAnalyzer[TrendDataPoint]):
    """Track pass rate, duration, stability and coverage across runs.

    Args:
        data_dir: Directory holding ``trend-history.json``.
        config: Analytics configuration.
        retention_days: Overrides ``config.trend_retention_days``.
        coverage_path: Coverage summary read on ``collect``; defaults to
            ``config.coverage_summary_path``.
    """

    history_file = "trend-history.json"
    metric_specs = (
        MetricSpec("pass_rate", lambda p: p.summary.pass_rate, higher_is_better=True),
        MetricSpec("performance", lambda p: p.performance.average_test_duration, higher_is_better=False, high=None),
        MetricSpec("stability", lambda p: p.stability.stability_score, higher_is_better=True),
        MetricSpec("coverage", lambda p: p.coverage.average, higher_is_better=True),
    )
    anomaly_metric = "pass_rate"

    def __init__(
        self,
        data_dir: str | Path,
        config: AnalyticsConfig | None = None,
        retention_days: int | None = None,
        coverage_path: str | Path | None = None,
    ) -> None:
        super().__init__(data_dir, config=config, retention_days=retention_days)
        self.coverage_path = Path(coverage_path or self.config.coverage_summary_path)
        self._coverage_override: CoverageMetrics | None = None

    def _configured_retention(self) -> int:
        return self.config.trend_retention_days

    def collect(
        self,
        results: Iterable[TestRunResult | Mapping[str, Any]],
        now: datetime | None = None,
        coverage: CoverageMetrics | Mapping[str, float] | None = None,
    ) -> TrendDataPoint:
        """Record this run; ``coverage`` overrides the coverage summary file."""
        if coverage is not None and not isinstance(coverage, CoverageMetrics):
            coverage = CoverageMetrics(**coverage)
        self._coverage_override = coverage
        try:
            return super().collect(results, now=now)
        finally:
            self._coverage_override = None

    def build_point(
        self,
        results: list[TestRunResult],
        now: datetime,
        history: list[TrendDataPoint],
    ) -> TrendDataPoint:
        passed = [r for r in results if r.passed]
        failed = [r for r in results if r.failed]
        skipped = [r for r in results if not r.passed and not r.failed]
        durations = [r.duration for r in results]
        total_time = sum(durations)
        slowest = max(durations, default=0.0)

        failed_titles = sorted({r.title for r in failed})
        previous_failed = set(history[-1].failed_tests) if history else set()

        return TrendDataPoint(
            date=now.date().isoformat(),
            timestamp=to_epoch_ms(now),
            summary=TestSummary(
                total=len(results),
                passed=len(passed),
                failed=len(failed),
                skipped=len(skipped),
                pass_rate=clamp(safe_ratio(len(passed), len(results)) * 100),
                duration=total_time,
                retries=sum(r.retry for r in results),
            ),
            performance=PerformanceMetrics(
                average_test_duration=safe_ratio(total_time, len(results)),
                slowest_test=slowest,
                fastest_test=min(durations, default=0.0),
                total_execution_time=total_time,
                parallel_efficiency=clamp(safe_ratio(slowest, total_time) * 100),
            ),
            stability=StabilitySnapshot(
                stable_tests=sum(1 for r in passed if r.retry == 0),
                flaky_tests=sum(1 for r in results if r.retry > 0),
                new_failures=len(set(failed_titles) - previous_failed),
                resolved_failures=len(previous_failed - set(failed_titles)),
                stability_score=clamp(safe_ratio(sum(1 for r in passed if r.retry == 0), len(results)) * 100),
            ),
            coverage=self._coverage_override or load_coverage_summary(self.coverage_path),
            environment=EnvironmentInfo.detect(),
            failed_tests=failed_titles,
        )

    def point_to_dict(self, point: TrendDataPoint) -> dict[str, Any]:
        return point.to_dict()

    def point_from_dict(self, data: dict[str, Any]) -> TrendDataPoint:
        return TrendDataPoint.from_dict(data)

    def point_timestamp(self, point: TrendDataPoint) -> int:
        return point.timestamp

    def point_date(self, point: TrendDataPoint) -> str:
        return point.date

    def _generate_insights(
        self,
        trends: dict[str, TrendMetric],
        history: list[TrendDataPoint],
    ) -> list[TrendInsight]:
        insights: list[TrendInsight] = []
        pass_rate = trends["pass_rate"]
        performance = trends["performance"]
        stability = trends["stability"]
        coverage = trends["coverage"]

        if pass_rate.change_percent < -10:
            insights.append(
                TrendInsight(
                    type=InsightType.REGRESSION,
                    severity=Priority.HIGH,
                    title="Pass rate dropped",
                    description=f"Pass rate fell {abs(pass_rate.change_percent):.1f}% to {pass_rate.current:.1f}%",
                    impact="More failing tests reach the main branch",
                    data={"metric": "pass_rate", "change_percent": pass_rate.change_percent},
                )
            )
        elif pass_rate.change_percent > 5:
            insights.append(
                TrendInsight(
                    type=InsightType.IMPROVEMENT,
                    severity=Priority.MEDIUM,
                    title="Pass rate improved",
                    description=f"Pass rate rose {pass_rate.change_percent:.1f}% to {pass_rate.current:.1f}%",
                    impact="Fewer failures to triage",
                    data={"metric": "pass_rate", "change_percent": pass_rate.change_percent},
                )
            )

        if performance.change_percent > 20:
            insights.append(
                TrendInsight(
                    type=InsightType.REGRESSION,
                    severity=Priority.HIGH,
                    title="Tests got slower",
                    description=(
                        f"Average test duration grew {performance.change_percent:.1f}% "
                        f"to {performance.current:.0f}ms"
                    ),
                    impact="Slower feedback for every change",
                    data={"metric": "performance", "change_percent": performance.change_percent},
                )
            )
        elif performance.change_percent < -10:
            insights.append(
                TrendInsight(
                    type=InsightType.IMPROVEMENT,
                    severity=Priority.MEDIUM,
                    title="Tests got faster",
                    description=f"Average test duration fell {abs(performance.change_percent):.1f}%",
                    impact="Faster feedback for every change",
                    data={"metric": "performance", "change_percent": performance.change_percent},
                )
            )

        if stability.change_percent < -10:
            insights.append(
                TrendInsight(
                    type=InsightType.REGRESSION,
                    severity=Priority.HIGH,
                    title="Stability dropped",
                    description=f"First-attempt stability fell {abs(stability.change_percent):.1f}%",
                    impact="More tests need retries to pass",
                    data={"metric": "stability", "change_percent": stability.change_percent},
                )
            )

        if coverage.change_percent > 5:
            insights.append(
                TrendInsight(
                    type=InsightType.IMPROVEMENT,
                    severity=Priority.MEDIUM,
                    title="Coverage increased",
                    description=f"Average coverage rose {coverage.change_percent:.1f}% to {coverage.current:.1f}%",
                    impact="More code is protected by tests",
                    data={"metric": "coverage", "change_percent": coverage.change_percent},
                )
            )
        elif coverage.change_percent < -5:
            insights.append(
                TrendInsight(
                    type=InsightType.REGRESSION,
                    severity=Priority.MEDIUM,
                    title="Coverage decreased",
                    description=f"Average coverage fell {abs(coverage.change_percent):.1f}% to {coverage.current:.1f}%",
                    impact="New code is landing without tests",
                    data={"metric": "coverage", "change_percent": coverage.change_percent},
                )
            )

        return insights

    def _generate_recommendations(
        self,
        trends: dict[str, TrendMetric],
        insights: list[TrendInsight],
        history: list[TrendDataPoint],
    ) -> list[TrendRecommendation]:
        recommendations: list[TrendRecommendation] = []

        if trends["pass_rate"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.HIGH,
                    category="stability",
                    title="Harden failing tests",
                    description="Pass rate is declining; triage new failures before they accumulate",
                    expected_impact="Restores the pass rate to its previous level",
                    effort=Effort.MEDIUM,
                    affected_tests=list(history[-1].failed_tests),
                )
            )
        if trends["performance"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.MEDIUM,
                    category="performance",
                    title="Optimize slow tests",
                    description="Average test duration is rising; profile the slowest tests and their setup",
                    expected_impact="Shorter runs and faster feedback",
                    effort=Effort.MEDIUM,
                )
            )
        if trends["stability"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.HIGH,
                    category="stability",
                    title="Reduce retry dependence",
                    description="Fewer tests pass on the first attempt; fix the flakiness behind the retries",
                    expected_impact="More trustworthy first-run results",
                    effort=Effort.MEDIUM,
                )
            )
        if trends["coverage"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.MEDIUM,
                    category="coverage",
                    title="Expand test coverage",
                    description="Coverage is falling; require tests for new code paths",
                    expected_impact="Fewer untested regressions",
                    effort=Effort.LARGE,
                )
            )

        high_regressions = [i for i in insights if i.type is InsightType.REGRESSION and i.severity is Priority.HIGH]
        if high_regressions:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.CRITICAL,
                    category="regression",
                    title="Address regressions immediately",
                    description="; ".join(insight.title for insight in high_regressions),
                    expected_impact="Stops quality from degrading further",
                    effort=Effort.MEDIUM,
                )
            )

        return recommendations
