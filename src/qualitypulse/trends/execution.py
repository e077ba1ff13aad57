"""Execution trend tracking: run time, parallelism and success rates.

``ExecutionTrendAnalyzer`` shares its trend core with ``TrendAnalyzer``
and additionally follows the slowest tests from run to run.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

from qualitypulse.analysis.categories import categorize_test, suite_name
from qualitypulse.models import Effort, Priority, TestRunResult, TrendDirection, clamp, safe_ratio
from qualitypulse.storage import to_epoch_ms
from qualitypulse.trends.base import (
    BaseTrendAnalyzer,
    InsightType,
    MetricSpec,
    TrendAnalysis,
    TrendInsight,
    TrendMetric,
    TrendRecommendation,
    percent_change,
)

logger = logging.getLogger(__name__)

TOP_TESTS = 5
FAST_SUITE_MS = 5_000
MEDIUM_SUITE_MS = 15_000
TEST_TREND_PERCENT = 10.0


@dataclass
class TestPerformance:
    __test__ = False

    title: str
    duration: float
    status: str = "passed"
    retries: int = 0
    category: str = "other"

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "duration": self.duration,
            "status": self.status,
            "retries": self.retries,
            "category": self.category,
        }


@dataclass
class ExecutionMetrics:
    total_execution_time: float = 0.0
    average_test_time: float = 0.0
    median_test_time: float = 0.0
    slowest_tests: list[TestPerformance] = field(default_factory=list)
    fastest_tests: list[TestPerformance] = field(default_factory=list)
    parallel_efficiency: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_execution_time": self.total_execution_time,
            "average_test_time": self.average_test_time,
            "median_test_time": self.median_test_time,
            "slowest_tests": [test.to_dict() for test in self.slowest_tests],
            "fastest_tests": [test.to_dict() for test in self.fastest_tests],
            "parallel_efficiency": self.parallel_efficiency,
        }


@dataclass
class SuccessMetrics:
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    flaky_tests: int = 0
    success_rate: float = 0.0
    first_time_success_rate: float = 0.0
    retry_success_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SuiteMetrics:
    suite_name: str
    test_count: int
    total_time: float
    success_rate: float
    average_time: float
    performance: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ExecutionDataPoint:
    """Execution snapshot of one run."""

    date: str
    timestamp: int
    execution: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    success: SuccessMetrics = field(default_factory=SuccessMetrics)
    suites: list[SuiteMetrics] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "timestamp": self.timestamp,
            "execution": self.execution.to_dict(),
            "success": self.success.to_dict(),
            "suites": [suite.to_dict() for suite in self.suites],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionDataPoint:
        """Validate a stored snapshot; raises ``pydantic.ValidationError``."""
        return _EXECUTION_POINT_ADAPTER.validate_python(data)


_EXECUTION_POINT_ADAPTER = TypeAdapter(ExecutionDataPoint)


@dataclass
class TestTrend:
    """Duration change of one test between the two latest runs."""

    __test__ = False

    title: str
    current_duration: float
    previous_duration: float | None
    change_percent: float
    direction: TrendDirection

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "current_duration": self.current_duration,
            "previous_duration": self.previous_duration,
            "change_percent": self.change_percent,
            "direction": self.direction.value,
        }


@dataclass
class PerformanceTrends:
    slowest_tests: list[TestTrend] = field(default_factory=list)
    improving_tests: list[TestTrend] = field(default_factory=list)
    degrading_tests: list[TestTrend] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slowest_tests": [t.to_dict() for t in self.slowest_tests],
            "improving_tests": [t.to_dict() for t in self.improving_tests],
            "degrading_tests": [t.to_dict() for t in self.degrading_tests],
        }


@dataclass
class ExecutionTrendAnalysis(TrendAnalysis):
    performance_trends: PerformanceTrends = field(default_factory=PerformanceTrends)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["performance_trends"] = self.performance_trends.to_dict()
        return data


class ExecutionTrendAnalyzer(BaseTrendAnalyzer[ExecutionDataPoint]):
    """Track run time, parallel efficiency and success rates across runs.

    Args:
        data_dir: Directory holding ``execution-history.json``.
        config: Analytics configuration.
        retention_days: Overrides ``config.execution_retention_days``.
    """

    history_file = "execution-history.json"
    metric_specs = (
        MetricSpec("total_time", lambda p: p.execution.total_execution_time, higher_is_better=False, high=None),
        MetricSpec("average_time", lambda p: p.execution.average_test_time, higher_is_better=False, high=None),
        MetricSpec("parallel_efficiency", lambda p: p.execution.parallel_efficiency, higher_is_better=True),
        MetricSpec("success_rate", lambda p: p.success.success_rate, higher_is_better=True),
        MetricSpec("first_time_success", lambda p: p.success.first_time_success_rate, higher_is_better=True),
        MetricSpec("retry_success", lambda p: p.success.retry_success_rate, higher_is_better=True),
    )
    anomaly_metric = "success_rate"

    def _configured_retention(self) -> int:
        return self.config.execution_retention_days

    def analyze(self, period: str = "weekly", now: datetime | None = None) -> TrendAnalysis:
        return super().analyze(period, now=now)

    def build_point(
        self,
        results: list[TestRunResult],
        now: datetime,
        history: list[ExecutionDataPoint],
    ) -> ExecutionDataPoint:
        return ExecutionDataPoint(
            date=now.date().isoformat(),
            timestamp=to_epoch_ms(now),
            execution=self._execution_metrics(results),
            success=self._success_metrics(results),
            suites=self._suite_metrics(results),
        )

    @staticmethod
    def _execution_metrics(results: list[TestRunResult]) -> ExecutionMetrics:
        if not results:
            return ExecutionMetrics()

        durations = [r.duration for r in results]
        total_time = sum(durations)
        ranked = sorted(results, key=lambda r: r.duration, reverse=True)
        performances = [
            TestPerformance(
                title=r.title,
                duration=r.duration,
                status=r.status.value,
                retries=r.retry,
                category=categorize_test(r.title),
            )
            for r in ranked
        ]

        return ExecutionMetrics(
            total_execution_time=total_time,
            average_test_time=total_time / len(results),
            median_test_time=float(statistics.median(durations)),
            slowest_tests=performances[:TOP_TESTS],
            fastest_tests=list(reversed(performances[-TOP_TESTS:])),
            parallel_efficiency=clamp(safe_ratio(max(durations), total_time) * 100),
        )

    @staticmethod
    def _success_metrics(results: list[TestRunResult]) -> SuccessMetrics:
        passed = [r for r in results if r.passed]
        retried = [r for r in results if r.retry > 0]
        retried_passes = [r for r in retried if r.passed]

        return SuccessMetrics(
            total_tests=len(results),
            passed_tests=len(passed),
            failed_tests=sum(1 for r in results if r.failed),
            skipped_tests=sum(1 for r in results if not r.passed and not r.failed),
            flaky_tests=len(retried_passes),
            success_rate=clamp(safe_ratio(len(passed), len(results)) * 100),
            first_time_success_rate=clamp(safe_ratio(sum(1 for r in passed if r.retry == 0), len(results)) * 100),
            retry_success_rate=clamp(safe_ratio(len(retried_passes), len(retried)) * 100),
        )

    @staticmethod
    def _suite_metrics(results: list[TestRunResult]) -> list[SuiteMetrics]:
        groups: dict[str, list[TestRunResult]] = {}
        for r in results:
            groups.setdefault(suite_name(r.title), []).append(r)

        suites: list[SuiteMetrics] = []
        for name, members in groups.items():
            total_time = sum(r.duration for r in members)
            average = total_time / len(members)
            if average < FAST_SUITE_MS:
                band = "fast"
            elif average < MEDIUM_SUITE_MS:
                band = "medium"
            else:
                band = "slow"
            suites.append(
                SuiteMetrics(
                    suite_name=name,
                    test_count=len(members),
                    total_time=total_time,
                    success_rate=clamp(safe_ratio(sum(1 for r in members if r.passed), len(members)) * 100),
                    average_time=average,
                    performance=band,
                )
            )
        return sorted(suites, key=lambda s: s.total_time, reverse=True)

    def point_to_dict(self, point: ExecutionDataPoint) -> dict[str, Any]:
        return point.to_dict()

    def point_from_dict(self, data: dict[str, Any]) -> ExecutionDataPoint:
        return ExecutionDataPoint.from_dict(data)

    def point_timestamp(self, point: ExecutionDataPoint) -> int:
        return point.timestamp

    def point_date(self, point: ExecutionDataPoint) -> str:
        return point.date

    def _insufficient_data(self, period: str, history: list[ExecutionDataPoint]) -> TrendAnalysis:
        analysis = super()._insufficient_data(period, history)
        return ExecutionTrendAnalysis(**{f.name: getattr(analysis, f.name) for f in fields(analysis)})

    def _extend_analysis(self, analysis: TrendAnalysis, history: list[ExecutionDataPoint]) -> TrendAnalysis:
        performance_trends = self._performance_trends(history)
        recommendations = list(analysis.recommendations)
        if performance_trends.degrading_tests or performance_trends.slowest_tests:
            recommendations = self._finalize_recommendations(
                [r for r in recommendations if r.category != "maintenance"]
                + self._test_recommendations(performance_trends)
            )
        return ExecutionTrendAnalysis(
            period=analysis.period,
            sufficient_data=analysis.sufficient_data,
            data_points=analysis.data_points,
            time_range=analysis.time_range,
            trends=analysis.trends,
            insights=analysis.insights,
            predictions=analysis.predictions,
            recommendations=recommendations,
            performance_trends=performance_trends,
        )

    def _performance_trends(self, history: list[ExecutionDataPoint]) -> PerformanceTrends:
        latest = history[-1].execution.slowest_tests
        previous = {t.title: t.duration for t in history[-2].execution.slowest_tests}

        test_trends: list[TestTrend] = []
        for test in latest:
            before = previous.get(test.title)
            change_pct = percent_change(test.duration, before) if before is not None else 0.0
            if before is None or abs(change_pct) < TEST_TREND_PERCENT:
                direction = TrendDirection.STABLE
            elif change_pct < 0:
                direction = TrendDirection.IMPROVING
            else:
                direction = TrendDirection.DECLINING
            test_trends.append(
                TestTrend(
                    title=test.title,
                    current_duration=test.duration,
                    previous_duration=before,
                    change_percent=change_pct,
                    direction=direction,
                )
            )

        return PerformanceTrends(
            slowest_tests=test_trends[:TOP_TESTS],
            improving_tests=sorted(
                (t for t in test_trends if t.direction is TrendDirection.IMPROVING),
                key=lambda t: t.change_percent,
            )[:TOP_TESTS],
            degrading_tests=sorted(
                (t for t in test_trends if t.direction is TrendDirection.DECLINING),
                key=lambda t: t.change_percent,
                reverse=True,
            )[:TOP_TESTS],
        )

    @staticmethod
    def _test_recommendations(performance_trends: PerformanceTrends) -> list[TrendRecommendation]:
        recommendations: list[TrendRecommendation] = []
        if performance_trends.degrading_tests:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.HIGH,
                    category="performance",
                    title="Fix tests that are getting slower",
                    description="These tests slowed down noticeably since the previous run",
                    expected_impact="Keeps total run time from creeping up",
                    effort=Effort.MEDIUM,
                    affected_tests=[t.title for t in performance_trends.degrading_tests],
                )
            )
        if performance_trends.slowest_tests:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.LOW,
                    category="performance",
                    title="Review the slowest tests",
                    description="The slowest tests dominate run time; check their setup and waits",
                    expected_impact="Shorter critical path for parallel runs",
                    effort=Effort.SMALL,
                    affected_tests=[t.title for t in performance_trends.slowest_tests],
                )
            )
        return recommendations

    def _generate_insights(
        self,
        trends: dict[str, TrendMetric],
        history: list[ExecutionDataPoint],
    ) -> list[TrendInsight]:
        insights: list[TrendInsight] = []
        total_time = trends["total_time"]
        success_rate = trends["success_rate"]
        efficiency = trends["parallel_efficiency"]
        first_time = trends["first_time_success"]

        if total_time.change_percent > 20:
            insights.append(
                TrendInsight(
                    type=InsightType.PERFORMANCE,
                    severity=Priority.HIGH,
                    title="Run time increased",
                    description=f"Total execution time grew {total_time.change_percent:.1f}%",
                    impact="Longer pipelines delay every merge",
                    data={"metric": "total_time", "change_percent": total_time.change_percent},
                )
            )
        elif total_time.change_percent < -20:
            insights.append(
                TrendInsight(
                    type=InsightType.IMPROVEMENT,
                    severity=Priority.HIGH,
                    title="Run time decreased",
                    description=f"Total execution time fell {abs(total_time.change_percent):.1f}%",
                    impact="Faster pipelines",
                    data={"metric": "total_time", "change_percent": total_time.change_percent},
                )
            )

        if success_rate.change_percent < -10:
            insights.append(
                TrendInsight(
                    type=InsightType.SUCCESS,
                    severity=Priority.HIGH,
                    title="Success rate dropped",
                    description=(
                        f"Success rate fell {abs(success_rate.change_percent):.1f}% "
                        f"to {success_rate.current:.1f}%"
                    ),
                    impact="More runs need manual triage",
                    data={"metric": "success_rate", "change_percent": success_rate.change_percent},
                )
            )

        if efficiency.current < 20:
            insights.append(
                TrendInsight(
                    type=InsightType.EFFICIENCY,
                    severity=Priority.MEDIUM,
                    title="Low parallel efficiency",
                    description=f"Parallel efficiency is {efficiency.current:.1f}%",
                    impact="Run time is spread over many tests with little to gain from more workers",
                    data={"metric": "parallel_efficiency", "value": efficiency.current},
                )
            )

        if first_time.current < 80:
            insights.append(
                TrendInsight(
                    type=InsightType.SUCCESS,
                    severity=Priority.MEDIUM,
                    title="Low first-time success",
                    description=f"Only {first_time.current:.1f}% of tests pass on the first attempt",
                    impact="Retries hide flakiness and lengthen runs",
                    data={"metric": "first_time_success", "value": first_time.current},
                )
            )

        return insights

    def _generate_recommendations(
        self,
        trends: dict[str, TrendMetric],
        insights: list[TrendInsight],
        history: list[ExecutionDataPoint],
    ) -> list[TrendRecommendation]:
        recommendations: list[TrendRecommendation] = []

        if trends["total_time"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.HIGH,
                    category="performance",
                    title="Optimize execution time",
                    description="Total run time is growing; parallelize suites and trim slow setup",
                    expected_impact="Shorter pipelines",
                    effort=Effort.MEDIUM,
                )
            )
        if trends["success_rate"].direction is TrendDirection.DECLINING:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.HIGH,
                    category="stability",
                    title="Improve test stability",
                    description="Success rate is falling; investigate new failures",
                    expected_impact="Fewer blocked merges",
                    effort=Effort.MEDIUM,
                )
            )
        if trends["parallel_efficiency"].current < 20:
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.MEDIUM,
                    category="parallelization",
                    title="Rebalance parallel workers",
                    description="Shard tests by measured duration to use workers evenly",
                    expected_impact="Better use of CI capacity",
                    effort=Effort.SMALL,
                )
            )
        if trends["first_time_success"].direction is TrendDirection.DECLINING or any(
            i.data.get("metric") == "first_time_success" for i in insights
        ):
            recommendations.append(
                TrendRecommendation(
                    priority=Priority.MEDIUM,
                    category="stability",
                    title="Reduce retries",
                    description="Fix tests that only pass after a retry",
                    expected_impact="Shorter and more honest runs",
                    effort=Effort.MEDIUM,
                )
            )
        return recommendations
