"""Weighted quality scoring and improvement tracking.

``QualityImprovementTracker`` runs the other analyzers over one batch of
results, scores five quality dimensions, compares them with the previous
snapshot and turns the gaps into action items, recommendations and a
roadmap.

Example:
    >>> tracker = QualityImprovementTracker("./quality-tracking")
    >>> report = tracker.generate_report(results)
    >>> print(report.executive_summary.overall_health, report.quality_metrics.overall_score)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from qualitypulse.analysis import (
    ClassifyingFailureAnalyzer,
    ErrorClassifier,
    FailureAnalysisReport,
    FailureAnalyzer,
    StabilityMetrics,
    StabilityMonitor,
)
from qualitypulse.config import AnalyticsConfig
from qualitypulse.errors import QualityPulseError
from qualitypulse.models import (
    QUALITY_DIMENSIONS,
    Effort,
    Priority,
    TestRunResult,
    TrendDirection,
    clamp,
    coerce_results,
    safe_ratio,
    sort_by_priority,
)
from qualitypulse.observability.logging import log_context
from qualitypulse.storage import HistoryStore, to_epoch_ms
from qualitypulse.trends import (
    CoverageMetrics,
    ExecutionDataPoint,
    ExecutionTrendAnalyzer,
    TrendAnalysis,
    TrendAnalyzer,
    TrendDataPoint,
    percent_change,
)

logger = logging.getLogger(__name__)

QUALITY_HISTORY_FILE = "quality-history.json"
CHANGE_THRESHOLD = 5.0
STABILITY_RECOMMENDATION_FLOOR = 0.9

DIMENSION_GUIDANCE: dict[str, dict[str, str]] = {
    "reliability": {
        "title": "Raise test reliability",
        "description": "Fix failing tests and the flakiness behind retried passes",
        "impact": "Test results can gate releases with confidence",
    },
    "performance": {
        "title": "Speed up test execution",
        "description": "Shorten slow tests and balance work across parallel workers",
        "impact": "Faster feedback on every change",
    },
    "maintainability": {
        "title": "Reduce retry dependence",
        "description": "Replace retries with deterministic waits and isolated test data",
        "impact": "Lower maintenance cost and clearer failures",
    },
    "coverage": {
        "title": "Expand test coverage",
        "description": "Add tests for uncovered branches and require coverage for new code",
        "impact": "Fewer regressions escape to production",
    },
    "stability": {
        "title": "Stabilize flaky tests",
        "description": "Quarantine and rewrite tests whose outcome changes between runs",
        "impact": "Consistent results from run to run",
    },
}

NEXT_STEPS = [
    "Review the action items with the team",
    "Schedule fixes for critical and high priority items",
    "Re-run the quality analysis after the fixes land",
]


@dataclass
class DimensionScore:
    """Score of one quality dimension on a 0-100 scale."""

    name: str
    current: float
    previous: float
    target: float
    trend: TrendDirection
    weight: float

    @property
    def gap(self) -> float:
        return self.target - self.current

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "previous": self.previous,
            "target": self.target,
            "trend": self.trend.value,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DimensionScore:
        return cls(
            name=data["name"],
            current=float(data["current"]),
            previous=float(data["previous"]),
            target=float(data["target"]),
            trend=TrendDirection(data["trend"]),
            weight=float(data["weight"]),
        )


@dataclass
class QualityChange:
    """An improvement or regression of one dimension."""

    dimension: str
    previous: float
    current: float
    impact: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "previous": self.previous,
            "current": self.current,
            "impact": self.impact,
            "description": self.description,
        }


@dataclass
class ActionItem:
    id: str
    title: str
    description: str
    priority: Priority
    dimension: str
    effort: Effort
    impact: str
    created_date: str
    status: str = "open"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "dimension": self.dimension,
            "effort": self.effort.value,
            "impact": self.impact,
            "created_date": self.created_date,
            "status": self.status,
        }


@dataclass
class QualityMetrics:
    """Quality snapshot of one run."""

    date: str
    timestamp: int
    overall_score: int
    dimensions: dict[str, DimensionScore]
    improvements: list[QualityChange] = field(default_factory=list)
    regressions: list[QualityChange] = field(default_factory=list)
    action_items: list[ActionItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "timestamp": self.timestamp,
            "overall_score": self.overall_score,
            "dimensions": {name: score.to_dict() for name, score in self.dimensions.items()},
            "improvements": [change.to_dict() for change in self.improvements],
            "regressions": [change.to_dict() for change in self.regressions],
            "action_items": [item.to_dict() for item in self.action_items],
        }


@dataclass
class ExecutiveSummary:
    overall_health: str
    overall_score: int
    key_achievements: list[str]
    critical_concerns: list[str]
    next_steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_health": self.overall_health,
            "overall_score": self.overall_score,
            "key_achievements": list(self.key_achievements),
            "critical_concerns": list(self.critical_concerns),
            "next_steps": list(self.next_steps),
        }


@dataclass
class QualityRecommendation:
    priority: Priority
    category: str
    title: str
    description: str
    expected_impact: str
    timeline: str
    effort_estimate: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "expected_impact": self.expected_impact,
            "timeline": self.timeline,
            "effort_estimate": self.effort_estimate,
        }


@dataclass
class Roadmap:
    current_quarter: list[str] = field(default_factory=list)
    next_quarter: list[str] = field(default_factory=list)
    long_term: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_quarter": list(self.current_quarter),
            "next_quarter": list(self.next_quarter),
            "long_term": list(self.long_term),
        }


@dataclass
class QualityReport:
    """Everything the report renderer needs for one run."""

    report_date: str
    executive_summary: ExecutiveSummary
    quality_metrics: QualityMetrics
    trend_analysis: TrendAnalysis
    execution_analysis: TrendAnalysis
    stability_metrics: StabilityMetrics
    failure_analysis: FailureAnalysisReport
    recommendations: list[QualityRecommendation]
    roadmap: Roadmap

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_date": self.report_date,
            "executive_summary": self.executive_summary.to_dict(),
            "quality_metrics": self.quality_metrics.to_dict(),
            "trend_analysis": self.trend_analysis.to_dict(),
            "execution_analysis": self.execution_analysis.to_dict(),
            "stability_metrics": self.stability_metrics.to_dict(),
            "failure_analysis": self.failure_analysis.to_dict(),
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "roadmap": self.roadmap.to_dict(),
        }


def compute_overall_score(dimensions: Mapping[str, DimensionScore]) -> int:
    """Weighted sum of the dimension scores, rounded to an integer."""
    total = sum(score.current * score.weight for score in dimensions.values())
    return int(clamp(round(total)))


def health_label(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 80:
        return "good"
    if score >= 70:
        return "fair"
    return "poor"


class QualityImprovementTracker:
    """Score quality dimensions and track them from run to run.

    Args:
        data_dir: Directory for all history files; defaults to
            ``config.data_dir``.
        config: Analytics configuration.
        failure_analyzer: Produces the failure report; defaults to a
            classifier-backed analyzer.
        classifier: Classifier shared by the default collaborators.
    """

    def __init__(
        self,
        data_dir: str | Path | None = None,
        config: AnalyticsConfig | None = None,
        failure_analyzer: FailureAnalyzer | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.config = config or AnalyticsConfig()
        self.data_dir = Path(data_dir) if data_dir is not None else self.config.data_path
        self.classifier = classifier or ErrorClassifier()
        self.trend_analyzer = TrendAnalyzer(self.data_dir, config=self.config)
        self.execution_analyzer = ExecutionTrendAnalyzer(self.data_dir, config=self.config)
        self.stability_monitor = StabilityMonitor(self.config.stability_thresholds, classifier=self.classifier)
        self.failure_analyzer: FailureAnalyzer = failure_analyzer or ClassifyingFailureAnalyzer(self.classifier)
        self.store = HistoryStore(self.data_dir / QUALITY_HISTORY_FILE, lock_timeout=self.config.lock_timeout)

    def generate_report(
        self,
        results: Iterable[TestRunResult | Mapping[str, Any]],
        period: str = "daily",
        now: datetime | None = None,
        collect: bool = True,
        coverage: CoverageMetrics | Mapping[str, float] | None = None,
    ) -> QualityReport:
        """Analyze one run and produce the full quality report.

        Args:
            results: Test results of the run.
            period: Look-back period for trend analysis.
            now: Time of the run; defaults to the current time.
            collect: Persist snapshots of this run to the histories.
            coverage: Coverage percentages; read from the coverage
                summary file when omitted.
        """
        now = now or datetime.now()
        records = coerce_results(results)

        with log_context(run_id=now.isoformat(timespec="seconds"), tests=len(records)):
            logger.info("Generating quality report for %d results", len(records))

            if collect:
                trend_point = self.trend_analyzer.collect(records, now=now, coverage=coverage)
                execution_point = self.execution_analyzer.collect(records, now=now)
            else:
                trend_point = self._preview_trend_point(records, now, coverage)
                execution_point = self.execution_analyzer.build_point(
                    records, now, self.execution_analyzer.load_history()
                )

            trend_analysis = self.trend_analyzer.analyze(period, now=now)
            execution_analysis = self.execution_analyzer.analyze(period, now=now)
            stability = self.stability_monitor.monitor(records, now=now)
            failures = self.failure_analyzer.analyze(records)

            metrics = self.calculate_quality_metrics(records, trend_point, execution_point, stability, now)
            recommendations = self.generate_recommendations(metrics, stability, failures)

            report = QualityReport(
                report_date=now.date().isoformat(),
                executive_summary=self.executive_summary(metrics),
                quality_metrics=metrics,
                trend_analysis=trend_analysis,
                execution_analysis=execution_analysis,
                stability_metrics=stability,
                failure_analysis=failures,
                recommendations=recommendations,
                roadmap=self.build_roadmap(recommendations),
            )

            if collect:
                self._save_snapshot(metrics, now)

            logger.info(
                "Quality score %d (%s), %d action items",
                metrics.overall_score,
                report.executive_summary.overall_health,
                len(metrics.action_items),
            )
            return report

    def _preview_trend_point(
        self,
        records: list[TestRunResult],
        now: datetime,
        coverage: CoverageMetrics | Mapping[str, float] | None,
    ) -> TrendDataPoint:
        point = self.trend_analyzer.build_point(records, now, self.trend_analyzer.load_history())
        if coverage is not None:
            point.coverage = coverage if isinstance(coverage, CoverageMetrics) else CoverageMetrics(**coverage)
        return point

    def calculate_quality_metrics(
        self,
        records: list[TestRunResult],
        trend_point: TrendDataPoint,
        execution_point: ExecutionDataPoint,
        stability: StabilityMetrics,
        now: datetime,
    ) -> QualityMetrics:
        """Score the five dimensions and diff them against the last snapshot."""
        current = self.dimension_values(records, trend_point, execution_point, stability)
        previous = self._previous_dimensions()

        dimensions: dict[str, DimensionScore] = {}
        for name in QUALITY_DIMENSIONS:
            value = current[name]
            before = previous.get(name, value)
            dimensions[name] = DimensionScore(
                name=name,
                current=value,
                previous=before,
                target=self.config.dimension_targets[name],
                trend=self._dimension_trend(value, before),
                weight=self.config.dimension_weights[name],
            )

        improvements, regressions = self._detect_changes(dimensions)
        return QualityMetrics(
            date=now.date().isoformat(),
            timestamp=to_epoch_ms(now),
            overall_score=compute_overall_score(dimensions),
            dimensions=dimensions,
            improvements=improvements,
            regressions=regressions,
            action_items=self._action_items(dimensions, regressions, now),
        )

    @staticmethod
    def dimension_values(
        records: list[TestRunResult],
        trend_point: TrendDataPoint,
        execution_point: ExecutionDataPoint,
        stability: StabilityMetrics,
    ) -> dict[str, float]:
        """Raw 0-100 values of the five quality dimensions."""
        stability_score = stability.overall_stability

        reliability = min(100.0, trend_point.summary.pass_rate + 0.3 * stability_score * 100)

        if records:
            average_seconds = execution_point.execution.average_test_time / 1000
            time_score = max(0.0, 100 - average_seconds * 2)
        else:
            time_score = 100.0
        performance = 0.6 * time_score + 0.4 * execution_point.execution.parallel_efficiency

        retry_rate = safe_ratio(sum(1 for r in records if r.retry > 0), len(records))
        maintainability = max(0.0, 100 - retry_rate * 50)

        return {
            "reliability": clamp(reliability),
            "performance": clamp(performance),
            "maintainability": clamp(maintainability),
            "coverage": clamp(trend_point.coverage.average),
            "stability": clamp(stability_score * 100),
        }

    def _previous_dimensions(self) -> dict[str, float]:
        history = self.store.load()
        if not history:
            return {}
        dimensions = history[-1].get("dimensions")
        if not isinstance(dimensions, dict):
            logger.warning("Ignoring snapshot without dimension scores in %s", QUALITY_HISTORY_FILE)
            return {}
        previous: dict[str, float] = {}
        for name, data in dimensions.items():
            if not isinstance(data, dict):
                logger.warning("Ignoring malformed %s score in %s", name, QUALITY_HISTORY_FILE)
                continue
            try:
                previous[name] = float(data["current"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed %s score in %s", name, QUALITY_HISTORY_FILE)
        return previous

    def _dimension_trend(self, current: float, previous: float) -> TrendDirection:
        change = percent_change(current, previous)
        if change > self.config.dimension_trend_percent:
            return TrendDirection.IMPROVING
        if change < -self.config.dimension_trend_percent:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE

    @staticmethod
    def _detect_changes(
        dimensions: dict[str, DimensionScore],
    ) -> tuple[list[QualityChange], list[QualityChange]]:
        improvements: list[QualityChange] = []
        regressions: list[QualityChange] = []
        for name, score in dimensions.items():
            delta = score.current - score.previous
            if delta > CHANGE_THRESHOLD and score.trend is TrendDirection.IMPROVING:
                improvements.append(
                    QualityChange(
                        dimension=name,
                        previous=score.previous,
                        current=score.current,
                        impact=abs(delta),
                        description=f"{name.capitalize()} improved by {delta:.1f} points",
                    )
                )
            elif delta < -CHANGE_THRESHOLD and score.trend is TrendDirection.DECLINING:
                regressions.append(
                    QualityChange(
                        dimension=name,
                        previous=score.previous,
                        current=score.current,
                        impact=abs(delta),
                        description=f"{name.capitalize()} dropped by {abs(delta):.1f} points",
                    )
                )
        return improvements, regressions

    @staticmethod
    def _action_items(
        dimensions: dict[str, DimensionScore],
        regressions: list[QualityChange],
        now: datetime,
    ) -> list[ActionItem]:
        created = now.date().isoformat()
        items: list[ActionItem] = []

        for regression in regressions:
            if regression.impact > 10:
                priority = Priority.CRITICAL
            elif regression.impact > 5:
                priority = Priority.HIGH
            else:
                priority = Priority.MEDIUM
            items.append(
                ActionItem(
                    id=f"regression-{regression.dimension}",
                    title=f"Fix {regression.dimension} regression",
                    description=regression.description,
                    priority=priority,
                    dimension=regression.dimension,
                    effort=Effort.MEDIUM,
                    impact=f"Recovers {regression.impact:.1f} points",
                    created_date=created,
                )
            )

        for name, score in dimensions.items():
            gap = score.gap
            if gap <= 0:
                continue
            if gap > 20:
                priority, effort = Priority.HIGH, Effort.LARGE
            elif gap > 10:
                priority, effort = Priority.MEDIUM, Effort.MEDIUM
            else:
                priority, effort = Priority.LOW, Effort.SMALL
            items.append(
                ActionItem(
                    id=f"target-{name}",
                    title=f"Bring {name} up to target",
                    description=(
                        f"{name.capitalize()} is {score.current:.1f}, "
                        f"{gap:.1f} points below its target of {score.target:.0f}"
                    ),
                    priority=priority,
                    dimension=name,
                    effort=effort,
                    impact=DIMENSION_GUIDANCE[name]["impact"],
                    created_date=created,
                )
            )

        return sort_by_priority(items)

    @staticmethod
    def executive_summary(metrics: QualityMetrics) -> ExecutiveSummary:
        achievements = [change.description for change in metrics.improvements]
        concerns = [change.description for change in metrics.regressions]
        for name, score in metrics.dimensions.items():
            if score.current < score.target - 10:
                concerns.append(f"{name.capitalize()} is well below target ({score.current:.1f} vs {score.target:.0f})")

        next_steps = list(NEXT_STEPS)
        if metrics.action_items:
            next_steps.insert(0, f"Start with: {metrics.action_items[0].title}")

        return ExecutiveSummary(
            overall_health=health_label(metrics.overall_score),
            overall_score=metrics.overall_score,
            key_achievements=achievements,
            critical_concerns=concerns,
            next_steps=next_steps,
        )

    @staticmethod
    def generate_recommendations(
        metrics: QualityMetrics,
        stability: StabilityMetrics,
        failures: FailureAnalysisReport,
    ) -> list[QualityRecommendation]:
        recommendations: list[QualityRecommendation] = []

        for name, score in metrics.dimensions.items():
            gap = score.gap
            if gap <= 0:
                continue
            if gap > 20:
                priority, effort_estimate = Priority.CRITICAL, "4-6 weeks"
            elif gap > 10:
                priority, effort_estimate = Priority.HIGH, "2-3 weeks"
            else:
                priority, effort_estimate = Priority.MEDIUM, "1-2 weeks"
            if gap > 30:
                timeline = "long_term"
            elif gap > 20:
                timeline = "next_quarter"
            else:
                timeline = "current_quarter"
            guidance = DIMENSION_GUIDANCE[name]
            recommendations.append(
                QualityRecommendation(
                    priority=priority,
                    category=name,
                    title=guidance["title"],
                    description=f"{guidance['description']} ({score.current:.1f} now, target {score.target:.0f})",
                    expected_impact=guidance["impact"],
                    timeline=timeline,
                    effort_estimate=effort_estimate,
                )
            )

        if failures.total_failures > 0:
            top = failures.categories[0].category if failures.categories else "unclassified"
            recommendations.append(
                QualityRecommendation(
                    priority=Priority.HIGH,
                    category="failure_analysis",
                    title="Resolve current failures",
                    description=f"{failures.total_failures} failing tests, most often {top} failures",
                    expected_impact="Restores a green build",
                    timeline="current_quarter",
                    effort_estimate="1-2 weeks",
                )
            )

        if stability.overall_stability < STABILITY_RECOMMENDATION_FLOOR:
            recommendations.append(
                QualityRecommendation(
                    priority=Priority.HIGH,
                    category="stability",
                    title="Run a stabilization sprint",
                    description=f"Overall stability is {stability.overall_stability:.0%}",
                    expected_impact="Reliable results on every run",
                    timeline="current_quarter",
                    effort_estimate="2-3 weeks",
                )
            )

        return sort_by_priority(recommendations)

    @staticmethod
    def build_roadmap(recommendations: list[QualityRecommendation]) -> Roadmap:
        roadmap = Roadmap()
        for rec in recommendations:
            getattr(roadmap, rec.timeline).append(rec.title)
        return roadmap

    def _save_snapshot(self, metrics: QualityMetrics, now: datetime) -> None:
        try:
            self.store.append(metrics.to_dict(), retention_days=self.config.quality_retention_days, now=now)
        except QualityPulseError as e:
            logger.warning("Could not persist quality snapshot: %s", e)

    def quality_history(self) -> list[dict[str, Any]]:
        """Persisted quality snapshots, oldest first."""
        return self.store.load()
