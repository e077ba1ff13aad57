"""Per-test and per-category stability scoring.

``StabilityMonitor`` groups a batch of results by test title, scores each
test as successes/total, sorts it into a stability band and rolls the
scores up into keyword-derived categories. It also keeps a cumulative
tally across calls for long-running processes.

Example:
    >>> monitor = StabilityMonitor()
    >>> metrics = monitor.monitor(results)
    >>> for name, info in metrics.test_stability.items():
    ...     print(name, info.stability_score, info.band.value)
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from qualitypulse.analysis.categories import categorize_test
from qualitypulse.analysis.classifier import ErrorClassifier
from qualitypulse.config import StabilityThresholds
from qualitypulse.models import Effort, Priority, TestRunResult, clamp, coerce_results, safe_ratio, sort_by_priority

logger = logging.getLogger(__name__)

SUGGESTION_RETRY_RATE = 0.3
SUGGESTION_DURATION_MS = 20_000
RECOMMEND_RETRY_RATE = 0.5
RECOMMEND_DURATION_MS = 30_000
CATEGORY_SCORE_FLOOR = 0.8
CATEGORY_FLAKY_PROPORTION = 0.2
SUITE_SCORE_FLOOR = 0.9


class StabilityBand(Enum):
    STABLE = "stable"
    UNSTABLE = "unstable"
    FLAKY = "flaky"


@dataclass
class TestStabilityInfo:
    """Stability of one test across the runs in a batch.

    Attributes:
        test_name: Exact test title.
        total_runs: Number of results for the test.
        successful_runs: Results that passed.
        failed_runs: Results that failed or timed out.
        stability_score: successful_runs / total_runs, in [0, 1].
        average_duration: Mean duration in milliseconds.
        retry_rate: Total retries / total_runs.
        last_failure_reason: Error message of the most recent failure.
        suggestions: Improvement suggestions for the test.
        band: Stability band of the score.
    """

    __test__ = False

    test_name: str
    total_runs: int
    successful_runs: int
    failed_runs: int
    stability_score: float
    average_duration: float
    retry_rate: float
    last_failure_reason: str | None
    suggestions: list[str]
    band: StabilityBand

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_name": self.test_name,
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "stability_score": self.stability_score,
            "average_duration": self.average_duration,
            "retry_rate": self.retry_rate,
            "last_failure_reason": self.last_failure_reason,
            "suggestions": list(self.suggestions),
            "band": self.band.value,
        }


@dataclass
class CategoryStabilityInfo:
    """Stability bands of the tests in one category."""

    category: str
    total_tests: int
    stable_tests: int
    unstable_tests: int
    flaky_tests: int
    stability_score: float
    common_issues: list[str]
    tests: list[str] = field(default_factory=list)

    @property
    def flaky_proportion(self) -> float:
        return safe_ratio(self.flaky_tests, self.total_tests)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "total_tests": self.total_tests,
            "stable_tests": self.stable_tests,
            "unstable_tests": self.unstable_tests,
            "flaky_tests": self.flaky_tests,
            "stability_score": self.stability_score,
            "common_issues": list(self.common_issues),
            "tests": list(self.tests),
        }


@dataclass
class StabilityTrend:
    """Snapshot recorded on every ``monitor`` call."""

    date: str
    overall_stability: float
    test_count: int
    new_failures: int
    resolved_issues: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "overall_stability": self.overall_stability,
            "test_count": self.test_count,
            "new_failures": self.new_failures,
            "resolved_issues": self.resolved_issues,
        }


@dataclass
class StabilityRecommendation:
    priority: Priority
    category: str
    issue: str
    impact: str
    solution: str
    effort: Effort
    affected_tests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value,
            "category": self.category,
            "issue": self.issue,
            "impact": self.impact,
            "solution": self.solution,
            "effort": self.effort.value,
            "affected_tests": list(self.affected_tests),
        }


@dataclass
class StabilityMetrics:
    """Everything ``StabilityMonitor.monitor`` derives from one batch."""

    overall_stability: float
    test_stability: dict[str, TestStabilityInfo]
    category_stability: dict[str, CategoryStabilityInfo]
    stability_trends: list[StabilityTrend]
    recommendations: list[StabilityRecommendation]

    def tests_in_band(self, band: StabilityBand) -> list[str]:
        return [name for name, info in self.test_stability.items() if info.band is band]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_stability": self.overall_stability,
            "test_stability": {name: info.to_dict() for name, info in self.test_stability.items()},
            "category_stability": {name: info.to_dict() for name, info in self.category_stability.items()},
            "stability_trends": [trend.to_dict() for trend in self.stability_trends],
            "recommendations": [rec.to_dict() for rec in self.recommendations],
        }


@dataclass
class _TestTally:
    """Running counts for one test title."""

    total: int = 0
    successes: int = 0
    failures: int = 0
    duration_sum: float = 0.0
    retry_sum: int = 0
    last_failure: TestRunResult | None = None

    def add(self, result: TestRunResult) -> None:
        self.total += 1
        self.duration_sum += result.duration
        self.retry_sum += result.retry
        if result.passed:
            self.successes += 1
        elif result.failed:
            self.failures += 1
            self.last_failure = result

    def merge(self, other: _TestTally) -> None:
        self.total += other.total
        self.successes += other.successes
        self.failures += other.failures
        self.duration_sum += other.duration_sum
        self.retry_sum += other.retry_sum
        if other.last_failure is not None:
            self.last_failure = other.last_failure


class StabilityMonitor:
    """Score test stability for a batch of results.

    Args:
        thresholds: Band cut-offs, see ``StabilityThresholds``.
        classifier: Classifier used for failure root causes.
    """

    def __init__(
        self,
        thresholds: StabilityThresholds | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.thresholds = thresholds or StabilityThresholds()
        self.classifier = classifier or ErrorClassifier()
        self._cumulative: dict[str, _TestTally] = {}
        self._trends: list[StabilityTrend] = []
        self._last_failing: set[str] | None = None

    def monitor(
        self,
        results: Iterable[TestRunResult | Mapping[str, Any]],
        now: datetime | None = None,
    ) -> StabilityMetrics:
        """Analyze one batch of results."""
        records = coerce_results(results)
        tallies = self._tally(records)

        test_stability = {name: self._build_test_info(name, tally) for name, tally in tallies.items()}
        category_stability = self._analyze_categories(test_stability, records)

        successes = sum(tally.successes for tally in tallies.values())
        overall = clamp(safe_ratio(successes, len(records)), 0.0, 1.0)

        for name, tally in tallies.items():
            self._cumulative.setdefault(name, _TestTally()).merge(tally)
        self._record_trend(overall, tallies, now or datetime.now())

        recommendations = self._generate_recommendations(test_stability, category_stability)

        logger.info(
            "Stability analyzed: %d tests, overall %.2f, %d recommendations",
            len(test_stability),
            overall,
            len(recommendations),
        )

        return StabilityMetrics(
            overall_stability=overall,
            test_stability=test_stability,
            category_stability=category_stability,
            stability_trends=list(self._trends),
            recommendations=recommendations,
        )

    def cumulative_stability(self) -> dict[str, TestStabilityInfo]:
        """Stability of every test seen since this monitor was created."""
        return {name: self._build_test_info(name, tally) for name, tally in self._cumulative.items()}

    @staticmethod
    def _tally(records: list[TestRunResult]) -> dict[str, _TestTally]:
        tallies: dict[str, _TestTally] = {}
        for record in records:
            tallies.setdefault(record.title, _TestTally()).add(record)
        return tallies

    def _build_test_info(self, name: str, tally: _TestTally) -> TestStabilityInfo:
        score = clamp(safe_ratio(tally.successes, tally.total), 0.0, 1.0)
        average_duration = safe_ratio(tally.duration_sum, tally.total)
        retry_rate = safe_ratio(tally.retry_sum, tally.total)
        band = StabilityBand(self.thresholds.band(score))

        last_failure_reason = None
        if tally.last_failure is not None:
            last_failure_reason = tally.last_failure.error_message or f"Test {tally.last_failure.status.value}"

        return TestStabilityInfo(
            test_name=name,
            total_runs=tally.total,
            successful_runs=tally.successes,
            failed_runs=tally.failures,
            stability_score=score,
            average_duration=average_duration,
            retry_rate=retry_rate,
            last_failure_reason=last_failure_reason,
            suggestions=self._suggestions(band, retry_rate, average_duration, tally.last_failure),
            band=band,
        )

    def _suggestions(
        self,
        band: StabilityBand,
        retry_rate: float,
        average_duration: float,
        last_failure: TestRunResult | None,
    ) -> list[str]:
        suggestions: list[str] = []

        if band is StabilityBand.FLAKY:
            suggestions.extend(
                [
                    "Redesign the test to remove nondeterministic steps",
                    "Isolate the test from shared state and ordering",
                    "Replace fixed sleeps with explicit wait conditions",
                ]
            )
        elif band is StabilityBand.UNSTABLE:
            suggestions.extend(
                [
                    "Investigate wait conditions and element readiness",
                    "Check for timing dependencies on slow services",
                ]
            )

        if retry_rate > SUGGESTION_RETRY_RATE:
            suggestions.append("Reduce reliance on retries by fixing the underlying flakiness")
        if average_duration > SUGGESTION_DURATION_MS:
            suggestions.append("Speed up or split the test, it averages over 20 seconds")

        if last_failure is not None:
            classification = self.classifier.classify(last_failure)
            suggestions.extend(classification.resolution[:2])

        return suggestions

    def _analyze_categories(
        self,
        test_stability: dict[str, TestStabilityInfo],
        records: list[TestRunResult],
    ) -> dict[str, CategoryStabilityInfo]:
        members: dict[str, list[TestStabilityInfo]] = {}
        for name, info in test_stability.items():
            members.setdefault(categorize_test(name), []).append(info)

        root_causes: dict[str, Counter[str]] = {}
        for record in records:
            if record.failed:
                cause = self.classifier.classify(record).root_cause
                root_causes.setdefault(categorize_test(record.title), Counter())[cause] += 1

        categories: dict[str, CategoryStabilityInfo] = {}
        for category, infos in members.items():
            stable = sum(1 for info in infos if info.band is StabilityBand.STABLE)
            unstable = sum(1 for info in infos if info.band is StabilityBand.UNSTABLE)
            flaky = sum(1 for info in infos if info.band is StabilityBand.FLAKY)
            counter = root_causes.get(category, Counter())
            categories[category] = CategoryStabilityInfo(
                category=category,
                total_tests=len(infos),
                stable_tests=stable,
                unstable_tests=unstable,
                flaky_tests=flaky,
                stability_score=clamp(safe_ratio(stable, len(infos)), 0.0, 1.0),
                common_issues=[cause for cause, _ in counter.most_common(3)],
                tests=[info.test_name for info in infos],
            )
        return categories

    def _record_trend(self, overall: float, tallies: dict[str, _TestTally], now: datetime) -> None:
        failing = {name for name, tally in tallies.items() if tally.failures}
        previous = self._last_failing or set()
        self._trends.append(
            StabilityTrend(
                date=now.date().isoformat(),
                overall_stability=overall,
                test_count=len(tallies),
                new_failures=len(failing - previous),
                resolved_issues=len(previous - failing) if self._last_failing is not None else 0,
            )
        )
        self._last_failing = failing

    def _generate_recommendations(
        self,
        test_stability: dict[str, TestStabilityInfo],
        category_stability: dict[str, CategoryStabilityInfo],
    ) -> list[StabilityRecommendation]:
        recommendations: list[StabilityRecommendation] = []

        for name, info in test_stability.items():
            if info.stability_score < self.thresholds.flaky:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.HIGH,
                        category="flaky_test",
                        issue=f"Test '{name}' is critically flaky ({info.stability_score:.0%} pass rate)",
                        impact="Unreliable results hide real regressions and erode trust in the suite",
                        solution="Rewrite the test around deterministic waits and isolated data",
                        effort=Effort.MEDIUM,
                        affected_tests=[name],
                    )
                )
            elif info.stability_score < self.thresholds.stable:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.MEDIUM,
                        category="unstable_test",
                        issue=f"Test '{name}' is {info.band.value} ({info.stability_score:.0%} pass rate)",
                        impact="Intermittent failures slow down reviews and releases",
                        solution="Investigate wait conditions and external dependencies",
                        effort=Effort.SMALL,
                        affected_tests=[name],
                    )
                )

            if info.retry_rate > RECOMMEND_RETRY_RATE:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.MEDIUM,
                        category="retry",
                        issue=f"Test '{name}' depends on retries (retry rate {info.retry_rate:.2f})",
                        impact="Retries mask flakiness and lengthen runs",
                        solution="Fix the cause of the first-attempt failures",
                        effort=Effort.SMALL,
                        affected_tests=[name],
                    )
                )
            if info.average_duration > RECOMMEND_DURATION_MS:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.LOW,
                        category="performance",
                        issue=f"Test '{name}' averages {info.average_duration / 1000:.1f}s",
                        impact="Slow tests delay feedback",
                        solution="Split the test or reduce its setup cost",
                        effort=Effort.MEDIUM,
                        affected_tests=[name],
                    )
                )

        for category, info in category_stability.items():
            if info.stability_score < CATEGORY_SCORE_FLOOR:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.HIGH,
                        category="category",
                        issue=f"Category '{category}' stability is {info.stability_score:.0%}",
                        impact="A whole feature area produces unreliable results",
                        solution="Review shared fixtures and environment for the category",
                        effort=Effort.LARGE,
                        affected_tests=[
                            name for name in info.tests if test_stability[name].band is not StabilityBand.STABLE
                        ],
                    )
                )
            if info.flaky_proportion > CATEGORY_FLAKY_PROPORTION:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.MEDIUM,
                        category="category",
                        issue=f"{info.flaky_proportion:.0%} of tests in '{category}' are flaky",
                        impact="Flaky tests cluster in one feature area",
                        solution="Look for a shared cause such as test data or page readiness",
                        effort=Effort.MEDIUM,
                        affected_tests=[
                            name for name in info.tests if test_stability[name].band is StabilityBand.FLAKY
                        ],
                    )
                )

        if test_stability:
            mean_score = sum(info.stability_score for info in test_stability.values()) / len(test_stability)
            if mean_score < SUITE_SCORE_FLOOR:
                recommendations.append(
                    StabilityRecommendation(
                        priority=Priority.HIGH,
                        category="suite",
                        issue=f"Average test stability is {mean_score:.0%}",
                        impact="The suite as a whole cannot gate releases reliably",
                        solution="Schedule a stabilization effort before adding new tests",
                        effort=Effort.LARGE,
                        affected_tests=[
                            name for name, info in test_stability.items() if info.band is not StabilityBand.STABLE
                        ],
                    )
                )

        return sort_by_priority(recommendations)
