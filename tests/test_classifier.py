"""Tests for failure classification."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest

from qualitypulse.analysis import (
    CLASSIFICATION_RULES,
    ClassificationRule,
    ClassifyingFailureAnalyzer,
    ErrorCategory,
    ErrorClassifier,
    ErrorSeverity,
)
from qualitypulse.analysis.classifier import DEFAULT_ROOT_CAUSE, GENERIC_PREVENTION
from qualitypulse.models import TestRunResult

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


# ============================================================================
# Rule matching
# ============================================================================


class TestRuleMatching:
    """Tests for first-match rule selection."""

    @pytest.mark.parametrize(
        ("message", "category", "severity"),
        [
            ("net::ERR_CONNECTION_RESET at https://shop.test/api", ErrorCategory.NETWORK, ErrorSeverity.HIGH),
            ("Timeout 5000ms exceeded", ErrorCategory.TIMING, ErrorSeverity.MEDIUM),
            ("locator('#buy') not found", ErrorCategory.TEST_CODE, ErrorSeverity.MEDIUM),
            ("ReferenceError: cart is not defined", ErrorCategory.APPLICATION, ErrorSeverity.HIGH),
            ("expect(received).toBe(expected) but got 3", ErrorCategory.TEST_CODE, ErrorSeverity.MEDIUM),
            ("Navigation failed because page crashed", ErrorCategory.APPLICATION, ErrorSeverity.HIGH),
            ("Browser has been disconnected", ErrorCategory.BROWSER, ErrorSeverity.CRITICAL),
            ("connect ECONNREFUSED 127.0.0.1:5432", ErrorCategory.ENVIRONMENT, ErrorSeverity.HIGH),
            ("database error: relation missing", ErrorCategory.DATA, ErrorSeverity.MEDIUM),
            ("worker OOMKilled by the scheduler", ErrorCategory.INFRASTRUCTURE, ErrorSeverity.HIGH),
        ],
    )
    def test_categories(
        self,
        classifier: ErrorClassifier,
        result_factory: Callable[..., TestRunResult],
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity,
    ) -> None:
        result = result_factory(title="plain test", status="failed", message=message)

        classification = classifier.classify(result)

        assert classification.category is category
        assert classification.severity is severity

    def test_first_matching_rule_wins(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        # Matches both the network rule and the timing rule.
        dual = result_factory(
            title="plain test",
            status="failed",
            message="net::ERR_TIMED_OUT while waiting: Timeout 3000ms exceeded",
        )
        network_only = result_factory(title="plain test", status="failed", message="net::ERR_TIMED_OUT")

        dual_classification = classifier.classify(dual)
        expected = classifier.classify(network_only)

        assert dual_classification.category is ErrorCategory.NETWORK
        assert (dual_classification.severity, dual_classification.root_cause, dual_classification.confidence) == (
            expected.severity,
            expected.root_cause,
            expected.confidence,
        )

    def test_rule_order_is_configurable(self, result_factory: Callable[..., TestRunResult]) -> None:
        timing_first = ErrorClassifier(rules=[CLASSIFICATION_RULES[1], CLASSIFICATION_RULES[0]])
        result = result_factory(status="failed", message="net::ERR_FAILED after Timeout 3000ms exceeded")

        assert timing_first.classify(result).category is ErrorCategory.TIMING

    def test_match_is_case_insensitive(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        result = result_factory(title="plain test", status="failed", message="CONNECTION WAS REFUSED")

        assert classifier.classify(result).category is ErrorCategory.NETWORK

    def test_title_is_part_of_haystack(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        result = result_factory(title="browser crashed during upload", status="failed")

        assert classifier.classify(result).category is ErrorCategory.BROWSER

    def test_root_cause_is_first_candidate(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        result = result_factory(status="failed", message="Timeout 5000ms exceeded")
        rule = CLASSIFICATION_RULES[1]

        classification = classifier.classify(result)

        assert classification.root_cause == rule.root_causes[0]
        assert classification.contributing_factors == list(rule.root_causes[1:])
        assert classification.confidence == pytest.approx(rule.confidence)

    def test_custom_rule(self, result_factory: Callable[..., TestRunResult]) -> None:
        rule = ClassificationRule(
            patterns=(r"quota exceeded",),
            category=ErrorCategory.INFRASTRUCTURE,
            severity=ErrorSeverity.LOW,
            confidence=0.6,
            root_causes=("Cloud quota exhausted",),
        )
        classifier = ErrorClassifier(rules=[rule])

        classification = classifier.classify(result_factory(status="failed", message="Quota exceeded for runners"))

        assert classification.root_cause == "Cloud quota exhausted"
        assert classification.contributing_factors == []


# ============================================================================
# Defaults and robustness
# ============================================================================


class TestDefaultClassification:
    """Tests for the fallback classification."""

    def test_unmatched_error_falls_back(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        result = result_factory(title="plain test", status="failed", message="something odd happened")

        classification = classifier.classify(result)

        assert classification.category is ErrorCategory.APPLICATION
        assert classification.severity is ErrorSeverity.MEDIUM
        assert classification.confidence == 0.5
        assert classification.root_cause == DEFAULT_ROOT_CAUSE
        assert classification.resolution == list(GENERIC_PREVENTION)

    def test_missing_error(self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]) -> None:
        classification = classifier.classify(result_factory(title="plain test", status="failed"))

        assert classification.confidence == 0.5

    def test_malformed_mapping_does_not_raise(self, classifier: ErrorClassifier) -> None:
        classification = classifier.classify({"status": "exploded"})

        assert classification.category is ErrorCategory.APPLICATION
        assert classification.confidence == 0.5

    def test_mapping_input(self, classifier: ErrorClassifier) -> None:
        classification = classifier.classify(
            {"title": "plain test", "status": "timedOut", "error": {"message": "Timeout 30000ms exceeded"}}
        )

        assert classification.category is ErrorCategory.TIMING

    @pytest.mark.parametrize(
        "message",
        ["", "Timeout", "net::ERR_ABORTED", "((((", "\x00\x01", "expected 1 actual 2", "x" * 5000],
    )
    def test_outputs_are_bounded(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult], message: str
    ) -> None:
        classification = classifier.classify(result_factory(status="failed", message=message))

        assert 0.0 <= classification.confidence <= 1.0
        assert classification.category in set(ErrorCategory)
        assert classification.impact


# ============================================================================
# Evidence and root cause analysis
# ============================================================================


class TestEvidence:
    """Tests for evidence extraction."""

    def test_extracts_url_status_duration_and_frames(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        result = result_factory(
            status="failed",
            message="Request to https://api.shop.test/orders failed with status: 503 after 1200ms",
            stack="Error\n    at placeOrder (/app/src/orders.ts:42:7)\n    at run (/app/src/runner.ts:10:3)",
        )

        evidence = classifier.classify(result).evidence

        assert "Request URL: https://api.shop.test/orders" in evidence
        assert "HTTP status code: 503" in evidence
        assert "Duration: 1200ms" in evidence
        assert "Stack frames: /app/src/orders.ts:42:7, /app/src/runner.ts:10:3" in evidence

    def test_python_frames(self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]) -> None:
        result = result_factory(
            status="failed",
            message="AssertionError",
            stack='Traceback (most recent call last):\n  File "tests/test_cart.py", line 12, in test_total',
        )

        assert "Stack frames: tests/test_cart.py:12" in classifier.classify(result).evidence

    def test_no_evidence(self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]) -> None:
        assert classifier.classify(result_factory(status="failed", message="boom")).evidence == []

    def test_root_cause_analysis(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        analysis = classifier.analyze_root_cause(
            result_factory(status="failed", message="waiting for selector timed out")
        )

        assert analysis.primary_cause == "Page loads slowly"
        assert analysis.similar_issues
        assert len(analysis.prevention_measures) == 4


# ============================================================================
# Error trends
# ============================================================================


class TestErrorTrends:
    """Tests for error trend tracking across batches."""

    def test_counts_by_category_and_root_cause(
        self, classifier: ErrorClassifier, mixed_results: list[TestRunResult]
    ) -> None:
        trends = classifier.update_error_trends(mixed_results, now=datetime(2026, 10, 18))

        assert len(trends) == 1
        assert trends[0].error_type == "timing-Page loads slowly"
        assert trends[0].occurrences == 3
        assert len(trends[0].affected_tests) == 3

    def test_direction_between_batches(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        timeout = result_factory(status="failed", message="Timeout 5000ms exceeded")
        classifier.update_error_trends([timeout])
        trends = classifier.update_error_trends([timeout, timeout])

        assert trends[0].occurrences == 3
        assert trends[0].trend == "increasing"

        trends = classifier.update_error_trends([])
        assert trends[0].trend == "decreasing"

    def test_sorted_by_occurrences(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        results = [result_factory(status="failed", message="Browser crashed")] + [
            result_factory(status="failed", message="Timeout 5000ms exceeded") for _ in range(2)
        ]

        trends = classifier.update_error_trends(results)

        assert [t.occurrences for t in trends] == [2, 1]

    def test_passed_results_are_ignored(
        self, classifier: ErrorClassifier, result_factory: Callable[..., TestRunResult]
    ) -> None:
        assert classifier.update_error_trends([result_factory()]) == []


# ============================================================================
# Failure reports
# ============================================================================


class TestFailureReport:
    """Tests for the classifier-backed failure analyzer."""

    def test_report_counts(self, mixed_results: list[TestRunResult]) -> None:
        report = ClassifyingFailureAnalyzer().analyze(mixed_results)

        assert report.total_failures == 3
        assert report.categories[0].category == "timing"
        assert report.categories[0].percentage == 100.0
        assert len(report.categories[0].examples) == 3
        assert report.patterns[0].count == 3
        assert report.recommendations

    def test_empty_batch(self) -> None:
        report = ClassifyingFailureAnalyzer().analyze([])

        assert report.total_failures == 0
        assert report.categories == []
        assert report.stability_metrics.average_retries == 0.0

    def test_stability_metrics(self, result_factory: Callable[..., TestRunResult]) -> None:
        results = [
            result_factory(title="a", status="failed", message="boom"),
            result_factory(title="a", status="passed"),
            result_factory(title="b", status="failed", message="boom"),
            result_factory(title="c", status="passed", retry=1),
            result_factory(title="d", status="failed", retry=1, message="boom"),
        ]

        metrics = ClassifyingFailureAnalyzer().analyze(results).stability_metrics

        assert metrics.flaky_tests == 2
        assert metrics.consistent_failures == 2
        assert metrics.retry_success_rate == 50.0
        assert metrics.average_retries == 0.4

    def test_to_dict(self, mixed_results: list[TestRunResult]) -> None:
        data = ClassifyingFailureAnalyzer().analyze(mixed_results).to_dict()

        assert data["total_failures"] == 3
        assert data["classifications"][0]["category"] == "timing"
