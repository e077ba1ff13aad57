"""Tests for QualityImprovementTracker."""

from __future__ import annotations

import json
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from qualitypulse.analysis import ErrorCategory
from qualitypulse.config import AnalyticsConfig
from qualitypulse.models import QUALITY_DIMENSIONS, Priority, TestRunResult, TrendDirection
from qualitypulse.quality import QualityImprovementTracker
from qualitypulse.quality.tracker import (
    DimensionScore,
    QualityRecommendation,
    compute_overall_score,
    health_label,
)
from qualitypulse.storage import to_epoch_ms

NOW = datetime(2026, 10, 18, 12, 0, 0)
YESTERDAY = NOW - timedelta(days=1)

FULL_COVERAGE = {"statements": 90.0, "branches": 90.0, "functions": 90.0, "lines": 90.0}


@pytest.fixture
def tracker(data_dir: Path, config: AnalyticsConfig) -> QualityImprovementTracker:
    return QualityImprovementTracker(data_dir, config=config)


@pytest.fixture
def green_results(result_factory: Callable[..., TestRunResult]) -> list[TestRunResult]:
    return [result_factory(title=f"dashboard renders widget {i}") for i in range(10)]


# ============================================================================
# Scoring helpers
# ============================================================================


class TestScoring:
    """Tests for the weighted score and health labels."""

    def test_compute_overall_score(self) -> None:
        dimensions = {
            "reliability": DimensionScore("reliability", 90, 90, 95, TrendDirection.STABLE, 0.5),
            "coverage": DimensionScore("coverage", 70, 70, 80, TrendDirection.STABLE, 0.5),
        }

        assert compute_overall_score(dimensions) == 80

    def test_overall_score_property(self) -> None:
        rng = random.Random(3)
        for _ in range(100):
            raw = [rng.random() for _ in QUALITY_DIMENSIONS]
            weights = [w / sum(raw) for w in raw]
            dimensions = {
                name: DimensionScore(name, rng.uniform(0, 100), 0.0, 90.0, TrendDirection.STABLE, weight)
                for name, weight in zip(QUALITY_DIMENSIONS, weights)
            }

            score = compute_overall_score(dimensions)

            assert 0 <= score <= 100
            assert score == round(sum(d.current * d.weight for d in dimensions.values()))

    @pytest.mark.parametrize(
        ("score", "label"),
        [(95, "excellent"), (90, "excellent"), (85, "good"), (70, "fair"), (69, "poor"), (0, "poor")],
    )
    def test_health_label(self, score: int, label: str) -> None:
        assert health_label(score) == label

    def test_roadmap_groups_by_timeline(self) -> None:
        recommendations = [
            QualityRecommendation(Priority.HIGH, "coverage", "A", "", "", "long_term", "4-6 weeks"),
            QualityRecommendation(Priority.HIGH, "stability", "B", "", "", "current_quarter", "1-2 weeks"),
            QualityRecommendation(Priority.LOW, "performance", "C", "", "", "current_quarter", "1-2 weeks"),
        ]

        roadmap = QualityImprovementTracker.build_roadmap(recommendations)

        assert roadmap.current_quarter == ["B", "C"]
        assert roadmap.next_quarter == []
        assert roadmap.long_term == ["A"]


# ============================================================================
# End-to-end report
# ============================================================================


class TestGenerateReport:
    """Tests for a full report over one run."""

    def test_mixed_run(self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]) -> None:
        report = tracker.generate_report(mixed_results, now=NOW)

        assert report.report_date == "2026-10-18"
        assert report.stability_metrics.overall_stability == pytest.approx(0.7)

        failures = report.failure_analysis
        assert failures.total_failures == 3
        assert [c.category for c in failures.categories] == [ErrorCategory.TIMING.value]
        assert failures.categories[0].percentage == 100.0

        dimensions = report.quality_metrics.dimensions
        assert 70 <= dimensions["reliability"].current <= 100
        assert dimensions["reliability"].current == pytest.approx(91.0)
        assert dimensions["stability"].current == pytest.approx(70.0)
        assert dimensions["maintainability"].current == 100.0
        assert dimensions["coverage"].current == 0.0
        assert dimensions["performance"].current == pytest.approx(0.6 * 95.6 + 0.4 * 5000 / 22000 * 100)

    def test_overall_score_is_weighted_sum(
        self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]
    ) -> None:
        metrics = tracker.generate_report(mixed_results, now=NOW).quality_metrics

        weighted = sum(score.current * score.weight for score in metrics.dimensions.values())
        assert metrics.overall_score == round(weighted)
        assert metrics.overall_score == 71

    def test_first_run_has_no_changes(
        self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]
    ) -> None:
        metrics = tracker.generate_report(mixed_results, now=NOW).quality_metrics

        for score in metrics.dimensions.values():
            assert score.previous == score.current
            assert score.trend is TrendDirection.STABLE
        assert metrics.improvements == []
        assert metrics.regressions == []

    def test_regressions_across_runs(
        self,
        tracker: QualityImprovementTracker,
        green_results: list[TestRunResult],
        mixed_results: list[TestRunResult],
    ) -> None:
        tracker.generate_report(green_results, now=YESTERDAY)
        metrics = tracker.generate_report(mixed_results, now=NOW).quality_metrics

        regressed = {change.dimension: change for change in metrics.regressions}
        assert set(regressed) == {"reliability", "stability"}
        assert regressed["stability"].impact == pytest.approx(30.0)
        assert metrics.dimensions["stability"].trend is TrendDirection.DECLINING

        items = {item.id: item for item in metrics.action_items}
        assert items["regression-stability"].priority is Priority.CRITICAL
        assert items["regression-reliability"].priority is Priority.HIGH
        assert metrics.action_items[0].priority is Priority.CRITICAL

    def test_improvements_across_runs(
        self,
        tracker: QualityImprovementTracker,
        green_results: list[TestRunResult],
        mixed_results: list[TestRunResult],
    ) -> None:
        tracker.generate_report(mixed_results, now=YESTERDAY)
        report = tracker.generate_report(green_results, now=NOW)

        improved = {change.dimension for change in report.quality_metrics.improvements}
        assert improved == {"reliability", "stability"}
        assert len(report.executive_summary.key_achievements) == 2

    def test_action_items_for_target_gaps(
        self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]
    ) -> None:
        items = {item.id: item for item in tracker.generate_report(mixed_results, now=NOW).quality_metrics.action_items}

        assert items["target-coverage"].priority is Priority.HIGH
        assert items["target-stability"].priority is Priority.HIGH
        assert items["target-reliability"].priority is Priority.LOW
        assert "target-maintainability" not in items

    def test_recommendations_and_roadmap(
        self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]
    ) -> None:
        report = tracker.generate_report(mixed_results, now=NOW)

        by_category = {rec.category: rec for rec in report.recommendations}
        assert by_category["coverage"].priority is Priority.CRITICAL
        assert by_category["coverage"].timeline == "long_term"
        titles = {rec.title: rec for rec in report.recommendations}
        assert titles["Stabilize flaky tests"].priority is Priority.CRITICAL
        assert titles["Run a stabilization sprint"].priority is Priority.HIGH
        assert "failure_analysis" in by_category
        ranks = [rec.priority.rank for rec in report.recommendations]
        assert ranks == sorted(ranks)

        roadmap = report.roadmap
        assert roadmap.long_term == ["Expand test coverage"]
        assert roadmap.next_quarter == ["Stabilize flaky tests"]
        assert len(roadmap.current_quarter) + len(roadmap.next_quarter) + len(roadmap.long_term) == len(
            report.recommendations
        )

    def test_executive_summary(self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]) -> None:
        summary = tracker.generate_report(mixed_results, now=NOW).executive_summary

        assert summary.overall_health == "fair"
        assert summary.overall_score == 71
        assert any(concern.startswith("Coverage is well below target") for concern in summary.critical_concerns)
        assert summary.next_steps[0].startswith("Start with: ")

    def test_coverage_override(self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]) -> None:
        metrics = tracker.generate_report(mixed_results, now=NOW, coverage=FULL_COVERAGE).quality_metrics

        assert metrics.dimensions["coverage"].current == 90.0
        assert "target-coverage" not in {item.id for item in metrics.action_items}

    def test_empty_run(self, tracker: QualityImprovementTracker) -> None:
        report = tracker.generate_report([], now=NOW)

        dimensions = report.quality_metrics.dimensions
        assert report.stability_metrics.overall_stability == 0.0
        assert dimensions["reliability"].current == 0.0
        assert dimensions["performance"].current == pytest.approx(60.0)
        assert report.failure_analysis.total_failures == 0
        assert report.quality_metrics.overall_score == 35
        assert report.executive_summary.overall_health == "poor"

    def test_invalid_records_are_skipped(self, tracker: QualityImprovementTracker) -> None:
        records = [
            {"title": "cart adds item", "status": "passed", "duration": 1000},
            {"title": "cart removes item", "status": "exploded"},
            {"status": "passed"},
        ]

        report = tracker.generate_report(records, now=NOW)

        assert list(report.stability_metrics.test_stability) == ["cart adds item"]

    def test_report_serializes(self, tracker: QualityImprovementTracker, mixed_results: list[TestRunResult]) -> None:
        data = tracker.generate_report(mixed_results, now=NOW).to_dict()

        assert data["executive_summary"]["overall_health"] == "fair"
        assert data["quality_metrics"]["dimensions"]["stability"]["trend"] == "stable"
        assert data["failure_analysis"]["total_failures"] == 3


# ============================================================================
# Persistence
# ============================================================================


class TestSnapshots:
    """Tests for persisted quality snapshots."""

    def test_snapshot_is_persisted(
        self, tracker: QualityImprovementTracker, data_dir: Path, mixed_results: list[TestRunResult]
    ) -> None:
        tracker.generate_report(mixed_results, now=NOW)

        history = tracker.quality_history()
        assert len(history) == 1
        assert history[0]["overall_score"] == 71
        assert history[0]["date"] == "2026-10-18"
        assert (data_dir / "trend-history.json").exists()
        assert (data_dir / "execution-history.json").exists()

    def test_collect_false_writes_nothing(
        self, tracker: QualityImprovementTracker, data_dir: Path, mixed_results: list[TestRunResult]
    ) -> None:
        report = tracker.generate_report(mixed_results, now=NOW, collect=False)

        assert report.quality_metrics.overall_score == 71
        assert tracker.quality_history() == []
        assert list(data_dir.iterdir()) == []

    def test_trends_follow_the_runs(
        self,
        tracker: QualityImprovementTracker,
        green_results: list[TestRunResult],
        mixed_results: list[TestRunResult],
    ) -> None:
        tracker.generate_report(green_results, now=YESTERDAY)
        report = tracker.generate_report(mixed_results, now=NOW)

        assert report.trend_analysis.sufficient_data is True
        assert report.trend_analysis.metric("pass_rate").direction is TrendDirection.DECLINING
        assert report.execution_analysis.metric("success_rate").direction is TrendDirection.DECLINING
        assert len(tracker.quality_history()) == 2

    def test_data_dir_defaults_to_config(self, config: AnalyticsConfig) -> None:
        assert QualityImprovementTracker(config=config).data_dir == Path(config.data_dir)

    @pytest.mark.parametrize("dimensions", [None, [], "broken", {"reliability": None, "coverage": [90]}])
    def test_malformed_previous_snapshot_counts_as_first_run(
        self,
        tracker: QualityImprovementTracker,
        data_dir: Path,
        mixed_results: list[TestRunResult],
        dimensions: object,
    ) -> None:
        snapshot = {"date": "2026-10-17", "timestamp": to_epoch_ms(YESTERDAY), "dimensions": dimensions}
        (data_dir / "quality-history.json").write_text(json.dumps([snapshot]), encoding="utf-8")

        metrics = tracker.generate_report(mixed_results, now=NOW).quality_metrics

        assert metrics.overall_score == 71
        assert all(score.previous == score.current for score in metrics.dimensions.values())
        assert metrics.regressions == []
        assert len(tracker.quality_history()) == 2
