"""Shared machinery for historical trend analysis.

A trend analyzer appends one snapshot per run to a ``HistoryStore`` and
later compares the two most recent snapshots inside a look-back window.
Subclasses define the snapshot shape, the tracked metrics and the
insight/recommendation rules; everything numeric lives here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from qualitypulse.config import AnalyticsConfig
from qualitypulse.errors import QualityPulseError
from qualitypulse.models import (
    Effort,
    Priority,
    TestRunResult,
    TrendDirection,
    clamp,
    coerce_results,
    safe_ratio,
    sort_by_priority,
)
from qualitypulse.storage import HistoryStore, to_epoch_ms

logger = logging.getLogger(__name__)

PERIOD_WINDOWS = {"daily": 7, "weekly": 30, "monthly": 90}
ANOMALY_WINDOW = 5
MAX_CONFIDENCE = 0.9

PointT = TypeVar("PointT")


class InsightType(Enum):
    IMPROVEMENT = "improvement"
    REGRESSION = "regression"
    ANOMALY = "anomaly"
    PERFORMANCE = "performance"
    SUCCESS = "success"
    EFFICIENCY = "efficiency"


@dataclass(frozen=True)
class MetricSpec(Generic[PointT]):
    """How to read one tracked metric out of a snapshot.

    Attributes:
        name: Key of the metric in ``TrendAnalysis.trends``.
        extract: Reads the metric value from a snapshot.
        higher_is_better: Polarity used for the trend direction.
        low: Lower bound of the metric's valid range.
        high: Upper bound, or None when unbounded.
    """

    name: str
    extract: Callable[[PointT], float]
    higher_is_better: bool
    low: float = 0.0
    high: float | None = 100.0

    def bound(self, value: float) -> float:
        return clamp(value, self.low, self.high if self.high is not None else float("inf"))


@dataclass
class TrendMetric:
    """Comparison of a metric between the two most recent snapshots."""

    metric: str
    current: float
    previous: float
    change: float
    change_percent: float
    direction: TrendDirection
    confidence: float
    data_points: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def zeroed(cls, metric: str) -> TrendMetric:
        return cls(
            metric=metric,
            current=0.0,
            previous=0.0,
            change=0.0,
            change_percent=0.0,
            direction=TrendDirection.STABLE,
            confidence=0.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "change_percent": self.change_percent,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "data_points": list(self.data_points),
        }


@dataclass
class TrendInsight:
    type: InsightType
    severity: Priority
    title: str
    description: str
    impact: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "data": dict(self.data),
        }


@dataclass
class TrendPrediction:
    metric: str
    predicted_value: float
    confidence: float
    timeframe: str
    factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "predicted_value": self.predicted_value,
            "confidence": self.confidence,
            "timeframe": self.timeframe,
            "factors": list(self.factors),
        }


@dataclass
class TrendRecommendation:
    priority: Priority
    category: str
    title: str
    description: str
    expected_impact: str
    effort: Effort
    affected_tests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "expected_impact": self.expected_impact,
            "effort": self.effort.value,
            "affected_tests": list(self.affected_tests),
        }


@dataclass
class TrendAnalysis:
    """Result of ``analyze`` over one look-back period."""

    period: str
    sufficient_data: bool
    data_points: int
    time_range: dict[str, str | None]
    trends: dict[str, TrendMetric] = field(default_factory=dict)
    insights: list[TrendInsight] = field(default_factory=list)
    predictions: list[TrendPrediction] = field(default_factory=list)
    recommendations: list[TrendRecommendation] = field(default_factory=list)

    def metric(self, name: str) -> TrendMetric:
        """Trend of ``name``, zeroed when it was not computed."""
        return self.trends.get(name) or TrendMetric.zeroed(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "sufficient_data": self.sufficient_data,
            "data_points": self.data_points,
            "time_range": dict(self.time_range),
            "trends": {name: trend.to_dict() for name, trend in self.trends.items()},
            "insights": [insight.to_dict() for insight in self.insights],
            "predictions": [prediction.to_dict() for prediction in self.predictions],
            "recommendations": [rec.to_dict() for rec in self.recommendations],
        }


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent, 0.0 when ``previous`` is zero."""
    return safe_ratio(current - previous, previous) * 100


def compute_trend_metric(
    metric: str,
    series: list[tuple[str, float]],
    higher_is_better: bool,
    stable_threshold: float = 5.0,
) -> TrendMetric:
    """Build a ``TrendMetric`` from the last two values of ``series``.

    Args:
        metric: Metric name.
        series: (date, value) pairs in ascending time order.
        higher_is_better: Whether a rising value is an improvement.
        stable_threshold: |change %| below which the trend is stable.
    """
    if not series:
        return TrendMetric.zeroed(metric)

    current = series[-1][1]
    previous = series[-2][1] if len(series) > 1 else current
    change = current - previous
    change_pct = percent_change(current, previous)

    if abs(change_pct) < stable_threshold:
        direction = TrendDirection.STABLE
    elif (change > 0) == higher_is_better:
        direction = TrendDirection.IMPROVING
    else:
        direction = TrendDirection.DECLINING

    return TrendMetric(
        metric=metric,
        current=current,
        previous=previous,
        change=change,
        change_percent=change_pct,
        direction=direction,
        confidence=clamp(min(MAX_CONFIDENCE, 0.5 + abs(change_pct) / 100), 0.0, 1.0),
        data_points=[{"date": date, "value": value} for date, value in series],
    )


def linear_predict(values: list[float]) -> float:
    """Next value of an ordinary least-squares line fitted over 0..n-1."""
    n = len(values)
    if n == 0:
        return 0.0
    if n == 1:
        return values[0]

    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_xx = (n - 1) * n * (2 * n - 1) / 6

    slope = safe_ratio(n * sum_xy - sum_x * sum_y, n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return slope * n + intercept


def variance(values: list[float]) -> float:
    """Population variance, 0.0 for an empty list."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


class BaseTrendAnalyzer(ABC, Generic[PointT]):
    """Collect per-run snapshots and analyze their trends.

    Subclasses set ``history_file``, ``metric_specs`` and
    ``anomaly_metric``, and implement snapshot building plus the insight
    and recommendation rules.

    Args:
        data_dir: Directory holding the history file.
        config: Analytics configuration; defaults are used when omitted.
        retention_days: Overrides the configured retention.
    """

    history_file: str = "history.json"
    metric_specs: tuple[MetricSpec[PointT], ...] = ()
    anomaly_metric: str = ""

    def __init__(
        self,
        data_dir: str | Path,
        config: AnalyticsConfig | None = None,
        retention_days: int | None = None,
    ) -> None:
        self.config = config or AnalyticsConfig()
        self.data_dir = Path(data_dir)
        self.retention_days = retention_days or self._configured_retention()
        self.store = HistoryStore(self.data_dir / self.history_file, lock_timeout=self.config.lock_timeout)

    @abstractmethod
    def _configured_retention(self) -> int: ...

    @abstractmethod
    def build_point(self, results: list[TestRunResult], now: datetime, history: list[PointT]) -> PointT:
        """Summarize one run into a snapshot."""

    @abstractmethod
    def point_to_dict(self, point: PointT) -> dict[str, Any]: ...

    @abstractmethod
    def point_from_dict(self, data: dict[str, Any]) -> PointT: ...

    @abstractmethod
    def point_timestamp(self, point: PointT) -> int: ...

    @abstractmethod
    def point_date(self, point: PointT) -> str: ...

    @abstractmethod
    def _generate_insights(self, trends: dict[str, TrendMetric], history: list[PointT]) -> list[TrendInsight]: ...

    @abstractmethod
    def _generate_recommendations(
        self,
        trends: dict[str, TrendMetric],
        insights: list[TrendInsight],
        history: list[PointT],
    ) -> list[TrendRecommendation]: ...

    def collect(
        self,
        results: Iterable[TestRunResult | Mapping[str, Any]],
        now: datetime | None = None,
    ) -> PointT:
        """Summarize this run and append it to the history.

        The snapshot is built from the history read under the write lock.
        Storage failures are logged; the snapshot is returned either way.
        """
        now = now or datetime.now()
        records = coerce_results(results)
        built: list[PointT] = []

        def build_entry(entries: list[dict[str, Any]]) -> dict[str, Any]:
            built.append(self.build_point(records, now, self._parse_points(entries)))
            return self.point_to_dict(built[-1])

        try:
            self.store.update(build_entry, retention_days=self.retention_days, now=now)
        except QualityPulseError as e:
            logger.warning("Could not persist %s snapshot: %s", self.history_file, e)
        else:
            logger.info("Recorded %s snapshot for %s", self.history_file, self.point_date(built[-1]))
        if not built:
            built.append(self.build_point(records, now, self.load_history()))
        return built[-1]

    def load_history(self) -> list[PointT]:
        """Load snapshots in ascending time order, skipping malformed entries."""
        return self._parse_points(self.store.load())

    def _parse_points(self, entries: list[dict[str, Any]]) -> list[PointT]:
        points: list[PointT] = []
        for entry in entries:
            try:
                points.append(self.point_from_dict(entry))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed snapshot in %s: %d invalid field(s)", self.history_file, e.error_count()
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed snapshot in %s: %r", self.history_file, e)
        points.sort(key=self.point_timestamp)
        return points

    def analyze(self, period: str = "daily", now: datetime | None = None) -> TrendAnalysis:
        """Compute trends, insights, predictions and recommendations."""
        if period not in PERIOD_WINDOWS:
            logger.warning("Unknown period %r, falling back to daily", period)
            period = "daily"

        now = now or datetime.now()
        cutoff = to_epoch_ms(now - timedelta(days=PERIOD_WINDOWS[period]))
        history = [point for point in self.load_history() if self.point_timestamp(point) >= cutoff]

        if len(history) < 2:
            return self._insufficient_data(period, history)

        trends = {
            spec.name: compute_trend_metric(
                spec.name,
                [(self.point_date(point), spec.extract(point)) for point in history],
                spec.higher_is_better,
                self.config.stable_change_percent,
            )
            for spec in self.metric_specs
        }

        insights = self._generate_insights(trends, history)
        anomaly = self._detect_anomaly(history)
        if anomaly is not None:
            insights.append(anomaly)

        analysis = TrendAnalysis(
            period=period,
            sufficient_data=True,
            data_points=len(history),
            time_range={"start": self.point_date(history[0]), "end": self.point_date(history[-1])},
            trends=trends,
            insights=insights,
            predictions=self._generate_predictions(trends, history),
            recommendations=self._finalize_recommendations(self._generate_recommendations(trends, insights, history)),
        )
        return self._extend_analysis(analysis, history)

    def _extend_analysis(self, analysis: TrendAnalysis, history: list[PointT]) -> TrendAnalysis:
        return analysis

    def _generate_predictions(self, trends: dict[str, TrendMetric], history: list[PointT]) -> list[TrendPrediction]:
        predictions: list[TrendPrediction] = []
        window = self.config.forecast_window
        for spec in self.metric_specs:
            trend = trends[spec.name]
            if trend.direction is TrendDirection.STABLE:
                continue
            values = [spec.extract(point) for point in history[-window:]]
            predictions.append(
                TrendPrediction(
                    metric=spec.name,
                    predicted_value=spec.bound(linear_predict(values)),
                    confidence=trend.confidence,
                    timeframe="next run",
                    factors=[
                        f"Linear fit over the last {len(values)} runs",
                        f"Current trend is {trend.direction.value}",
                    ],
                )
            )
        return predictions

    def _detect_anomaly(self, history: list[PointT]) -> TrendInsight | None:
        spec = next((s for s in self.metric_specs if s.name == self.anomaly_metric), None)
        if spec is None:
            return None
        values = [spec.extract(point) for point in history[-ANOMALY_WINDOW:]]
        spread = variance(values)
        if spread <= self.config.variance_threshold:
            return None
        return TrendInsight(
            type=InsightType.ANOMALY,
            severity=Priority.MEDIUM,
            title="Unstable results",
            description=f"{spec.name} varies strongly across the last {len(values)} runs (variance {spread:.1f})",
            impact="Swinging results make it hard to tell real regressions from noise",
            data={"metric": spec.name, "variance": spread, "values": values},
        )

    @staticmethod
    def _finalize_recommendations(recommendations: list[TrendRecommendation]) -> list[TrendRecommendation]:
        if not recommendations:
            recommendations = [
                TrendRecommendation(
                    priority=Priority.LOW,
                    category="maintenance",
                    title="Maintain current quality",
                    description="All tracked metrics are steady; keep monitoring each run",
                    expected_impact="Keeps quality at its current level",
                    effort=Effort.SMALL,
                )
            ]
        return sort_by_priority(recommendations)

    def _insufficient_data(self, period: str, history: list[PointT]) -> TrendAnalysis:
        logger.info("Not enough %s history for a %s trend (%d points)", self.history_file, period, len(history))
        dates = [self.point_date(point) for point in history]
        return TrendAnalysis(
            period=period,
            sufficient_data=False,
            data_points=len(history),
            time_range={"start": dates[0] if dates else None, "end": dates[-1] if dates else None},
            recommendations=[
                TrendRecommendation(
                    priority=Priority.MEDIUM,
                    category="data_collection",
                    title="Accumulate more history",
                    description="At least two runs inside the period are needed to compute trends",
                    expected_impact="Enables trend analysis and forecasting",
                    effort=Effort.SMALL,
                )
            ],
        )
