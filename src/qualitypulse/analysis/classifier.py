"""Failure classification with root-cause inference.

``ErrorClassifier`` maps one failed test to an error category, severity,
root cause and confidence using an ordered rule table. The first rule
with any matching pattern wins, so specific rules precede generic ones.

Example:
    >>> classifier = ErrorClassifier()
    >>> result = TestRunResult(
    ...     title="checkout completes",
    ...     status="failed",
    ...     error={"message": "Timeout 5000ms exceeded"},
    ... )
    >>> classifier.classify(result).category
    <ErrorCategory.TIMING: 'timing'>
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from qualitypulse.models import TestRunResult, clamp, coerce_results

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Category of a test failure."""

    NETWORK = "network"
    TIMING = "timing"
    TEST_CODE = "test_code"
    APPLICATION = "application"
    BROWSER = "browser"
    ENVIRONMENT = "environment"
    DATA = "data"
    INFRASTRUCTURE = "infrastructure"


class ErrorSeverity(Enum):
    """How badly a failure hurts the product or the pipeline."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table.

    Attributes:
        patterns: Regular expressions matched case-insensitively.
        category: Category assigned on match.
        severity: Severity assigned on match.
        confidence: Confidence assigned on match.
        root_causes: Candidate causes, most likely first.
    """

    patterns: tuple[str, ...]
    category: ErrorCategory
    severity: ErrorSeverity
    confidence: float
    root_causes: tuple[str, ...]

    def matches(self, haystack: str) -> bool:
        return any(re.search(pattern, haystack, re.IGNORECASE) for pattern in self.patterns)


CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        patterns=(r"net::ERR_", r"NetworkError", r"fetch.*failed", r"Connection.*refused"),
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.HIGH,
        confidence=0.9,
        root_causes=(
            "Network connection failure",
            "Server unreachable",
            "DNS resolution failure",
            "Firewall blocking the request",
        ),
    ),
    ClassificationRule(
        patterns=(r"timeout", r"Timeout.*exceeded", r"waiting.*timed out"),
        category=ErrorCategory.TIMING,
        severity=ErrorSeverity.MEDIUM,
        confidence=0.8,
        root_causes=(
            "Page loads slowly",
            "Network latency",
            "Slow server response",
            "Inaccurate wait conditions",
        ),
    ),
    ClassificationRule(
        patterns=(r"locator.*not found", r"element.*not found", r"selector.*not found"),
        category=ErrorCategory.TEST_CODE,
        severity=ErrorSeverity.MEDIUM,
        confidence=0.85,
        root_causes=(
            "Element selector changed",
            "Page structure changed",
            "Element not rendered yet",
            "Dynamic content not loaded",
        ),
    ),
    ClassificationRule(
        patterns=(r"ReferenceError", r"TypeError", r"SyntaxError", r"is not defined"),
        category=ErrorCategory.APPLICATION,
        severity=ErrorSeverity.HIGH,
        confidence=0.9,
        root_causes=(
            "Runtime error in application code",
            "Missing variable or function definition",
            "Type mismatch",
            "Syntax error",
        ),
    ),
    ClassificationRule(
        patterns=(r"expect.*to.*but", r"assertion.*failed", r"expected.*actual"),
        category=ErrorCategory.TEST_CODE,
        severity=ErrorSeverity.MEDIUM,
        confidence=0.7,
        root_causes=(
            "Assertion condition is wrong",
            "Expected value changed",
            "Test data mismatch",
            "Application behavior changed",
        ),
    ),
    ClassificationRule(
        patterns=(r"navigation.*failed", r"page.*not.*loaded", r"route.*not.*found"),
        category=ErrorCategory.APPLICATION,
        severity=ErrorSeverity.HIGH,
        confidence=0.8,
        root_causes=(
            "Routing misconfiguration",
            "Page failed to load",
            "Navigation logic error",
            "Missing route",
        ),
    ),
    ClassificationRule(
        patterns=(r"browser.*crashed", r"browser.*disconnected", r"session.*terminated"),
        category=ErrorCategory.BROWSER,
        severity=ErrorSeverity.CRITICAL,
        confidence=0.95,
        root_causes=(
            "Browser process crashed",
            "Out of memory",
            "Browser session terminated",
            "Browser compatibility issue",
        ),
    ),
    ClassificationRule(
        patterns=(r"ECONNREFUSED", r"ENOTFOUND", r"permission.*denied", r"access.*denied"),
        category=ErrorCategory.ENVIRONMENT,
        severity=ErrorSeverity.HIGH,
        confidence=0.85,
        root_causes=(
            "Environment misconfiguration",
            "Service not started",
            "Insufficient permissions",
            "Port already in use",
        ),
    ),
    ClassificationRule(
        patterns=(r"data.*not.*found", r"invalid.*data", r"database.*error"),
        category=ErrorCategory.DATA,
        severity=ErrorSeverity.MEDIUM,
        confidence=0.75,
        root_causes=(
            "Test data missing",
            "Invalid data format",
            "Database connection problem",
            "Data state inconsistent",
        ),
    ),
    ClassificationRule(
        patterns=(r"out of memory", r"no space left", r"OOMKilled", r"container.*(exited|killed)"),
        category=ErrorCategory.INFRASTRUCTURE,
        severity=ErrorSeverity.HIGH,
        confidence=0.8,
        root_causes=(
            "Runner resources exhausted",
            "CI container terminated",
            "Disk space exhausted",
            "Shared infrastructure outage",
        ),
    ),
)

DEFAULT_ROOT_CAUSE = "Unknown cause"

SIMILAR_ISSUES: dict[ErrorCategory, tuple[str, ...]] = {
    ErrorCategory.NETWORK: ("API request timeout", "Connection refused", "DNS resolution failure"),
    ErrorCategory.TIMING: ("Element wait timeout", "Page load timeout", "Animation not finished"),
    ErrorCategory.TEST_CODE: ("Selector broke", "Assertion logic error", "Outdated test data"),
    ErrorCategory.APPLICATION: ("JavaScript runtime error", "Unhandled promise rejection", "State management bug"),
    ErrorCategory.BROWSER: ("Browser crash", "Out of memory", "Compatibility issue"),
    ErrorCategory.ENVIRONMENT: ("Port conflict", "Permission problem", "Missing dependency"),
    ErrorCategory.DATA: ("Missing data", "Data format error", "Database connection failure"),
    ErrorCategory.INFRASTRUCTURE: ("Runner eviction", "Disk full", "Container restart"),
}

PREVENTION_MEASURES: dict[ErrorCategory, tuple[str, ...]] = {
    ErrorCategory.NETWORK: (
        "Add a retry mechanism for network requests",
        "Use request interception and mocking",
        "Raise network timeouts",
        "Add a network status check before the test",
    ),
    ErrorCategory.TIMING: (
        "Use smart waits instead of fixed sleeps",
        "Increase wait timeouts for slow pages",
        "Wait for network idle before asserting",
        "Wait on explicit element states",
    ),
    ErrorCategory.TEST_CODE: (
        "Use stable selectors such as data-testid",
        "Add explicit element waits",
        "Review test code regularly",
        "Use the page object pattern",
    ),
    ErrorCategory.APPLICATION: (
        "Add error boundaries in the application",
        "Improve error handling paths",
        "Cover the code path with unit tests",
        "Add type checking",
    ),
    ErrorCategory.BROWSER: (
        "Tune browser launch options",
        "Add memory monitoring to the runner",
        "Split tests into smaller batches",
        "Use a stable browser version",
    ),
    ErrorCategory.ENVIRONMENT: (
        "Standardize environment configuration",
        "Add environment health checks",
        "Run tests in containers",
        "Automate environment setup",
    ),
    ErrorCategory.DATA: (
        "Create test data with factories",
        "Isolate test data per test",
        "Validate data before use",
        "Clean up data after each test",
    ),
    ErrorCategory.INFRASTRUCTURE: (
        "Right-size CI runner resources",
        "Monitor runner memory and disk",
        "Retry jobs evicted by the scheduler",
        "Pin infrastructure images",
    ),
}

GENERIC_PREVENTION = (
    "Analyze the failure further",
    "Add logging around the failing step",
    "Reproduce the failure locally",
    "Review recent changes to the code under test",
)

IMPACT_MATRIX: dict[ErrorCategory, dict[ErrorSeverity, str]] = {
    ErrorCategory.NETWORK: {
        ErrorSeverity.CRITICAL: "Core features unreachable for all users",
        ErrorSeverity.HIGH: "Key features unavailable while the network fails",
        ErrorSeverity.MEDIUM: "Some requests fail intermittently",
        ErrorSeverity.LOW: "Occasional slow or dropped requests",
    },
    ErrorCategory.TIMING: {
        ErrorSeverity.CRITICAL: "Test suite cannot complete",
        ErrorSeverity.HIGH: "Many tests fail on timing",
        ErrorSeverity.MEDIUM: "Test results are unreliable",
        ErrorSeverity.LOW: "Occasional timing failures",
    },
    ErrorCategory.TEST_CODE: {
        ErrorSeverity.CRITICAL: "Test suite no longer exercises the product",
        ErrorSeverity.HIGH: "Large parts of the suite report false failures",
        ErrorSeverity.MEDIUM: "Test maintenance cost is rising",
        ErrorSeverity.LOW: "Minor test code issue",
    },
    ErrorCategory.APPLICATION: {
        ErrorSeverity.CRITICAL: "Application is unusable",
        ErrorSeverity.HIGH: "A core feature is broken",
        ErrorSeverity.MEDIUM: "A feature behaves incorrectly",
        ErrorSeverity.LOW: "Cosmetic application defect",
    },
    ErrorCategory.BROWSER: {
        ErrorSeverity.CRITICAL: "Test environment is unusable",
        ErrorSeverity.HIGH: "Browser instability aborts test runs",
        ErrorSeverity.MEDIUM: "Some browser sessions are lost",
        ErrorSeverity.LOW: "Rare browser hiccups",
    },
    ErrorCategory.ENVIRONMENT: {
        ErrorSeverity.CRITICAL: "No tests can run in this environment",
        ErrorSeverity.HIGH: "Environment problems block test runs",
        ErrorSeverity.MEDIUM: "Environment problems cause intermittent failures",
        ErrorSeverity.LOW: "Minor environment drift",
    },
    ErrorCategory.DATA: {
        ErrorSeverity.CRITICAL: "Test data is unusable",
        ErrorSeverity.HIGH: "Missing data blocks key scenarios",
        ErrorSeverity.MEDIUM: "Data issues cause scattered failures",
        ErrorSeverity.LOW: "Isolated data inconsistency",
    },
    ErrorCategory.INFRASTRUCTURE: {
        ErrorSeverity.CRITICAL: "CI pipeline is down",
        ErrorSeverity.HIGH: "Runner failures abort test runs",
        ErrorSeverity.MEDIUM: "Runner capacity slows feedback",
        ErrorSeverity.LOW: "Occasional runner noise",
    },
}

_URL_PATTERN = re.compile(r"https?://[^\s'\"<>)]+")
_STATUS_PATTERN = re.compile(r"status(?:\s*code)?\s*:?\s*(\d{3})\b", re.IGNORECASE)
_DURATION_PATTERN = re.compile(r"(\d+)\s?ms\b", re.IGNORECASE)
_JS_FRAME_PATTERN = re.compile(r"at\s+.*?\(([^)]+)\)")
_PY_FRAME_PATTERN = re.compile(r'File "([^"]+)", line (\d+)')


@dataclass
class ErrorClassification:
    """Classification of one failed test.

    Attributes:
        category: Failure category.
        severity: Failure severity.
        root_cause: Most likely root cause.
        impact: Impact text for category and severity.
        resolution: Suggested resolution steps.
        confidence: Confidence in [0, 1].
        contributing_factors: Less likely causes from the same rule.
        evidence: Human-readable evidence found in the error text.
    """

    category: ErrorCategory
    severity: ErrorSeverity
    root_cause: str
    impact: str
    resolution: list[str]
    confidence: float
    contributing_factors: list[str] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "root_cause": self.root_cause,
            "impact": self.impact,
            "resolution": list(self.resolution),
            "confidence": self.confidence,
            "contributing_factors": list(self.contributing_factors),
            "evidence": list(self.evidence),
        }


@dataclass
class RootCauseAnalysis:
    """Detailed root-cause view of one failure."""

    primary_cause: str
    contributing_factors: list[str]
    evidence: list[str]
    similar_issues: list[str]
    prevention_measures: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_cause": self.primary_cause,
            "contributing_factors": list(self.contributing_factors),
            "evidence": list(self.evidence),
            "similar_issues": list(self.similar_issues),
            "prevention_measures": list(self.prevention_measures),
        }


@dataclass
class ErrorTrend:
    """Occurrences of one ``category-rootcause`` pair across updates."""

    error_type: str
    category: ErrorCategory
    root_cause: str
    occurrences: int
    trend: str
    first_seen: datetime
    last_seen: datetime
    affected_tests: list[str] = field(default_factory=list)
    last_batch_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "category": self.category.value,
            "root_cause": self.root_cause,
            "occurrences": self.occurrences,
            "trend": self.trend,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "affected_tests": list(self.affected_tests),
        }


class ErrorClassifier:
    """Classify failed tests against an ordered rule table.

    Example:
        >>> classifier = ErrorClassifier()
        >>> classification = classifier.classify(failed_result)
        >>> print(classification.root_cause, classification.confidence)
    """

    def __init__(self, rules: Iterable[ClassificationRule] | None = None) -> None:
        self.rules: tuple[ClassificationRule, ...] = tuple(rules) if rules is not None else CLASSIFICATION_RULES
        self._error_trends: dict[str, ErrorTrend] = {}

    def classify(self, result: TestRunResult | Mapping[str, Any]) -> ErrorClassification:
        """Classify one failed test. Never raises."""
        try:
            return self._classify(result)
        except Exception:
            logger.warning("Classification failed, using default classification", exc_info=True)
            return self._default_classification()

    def _classify(self, result: TestRunResult | Mapping[str, Any]) -> ErrorClassification:
        coerced = coerce_results([result])
        if not coerced:
            return self._default_classification()
        record = coerced[0]

        rule = self.match_rule(record)
        evidence = self.extract_evidence(record)
        if rule is None:
            classification = self._default_classification()
            classification.evidence = evidence
            return classification

        return ErrorClassification(
            category=rule.category,
            severity=rule.severity,
            root_cause=rule.root_causes[0],
            impact=impact_for(rule.category, rule.severity),
            resolution=list(PREVENTION_MEASURES.get(rule.category, GENERIC_PREVENTION)),
            confidence=clamp(rule.confidence, 0.0, 1.0),
            contributing_factors=list(rule.root_causes[1:]),
            evidence=evidence,
        )

    def match_rule(self, result: TestRunResult) -> ClassificationRule | None:
        """Return the first rule matching the result's error text, if any."""
        haystack = " ".join((result.error_message, result.error_stack, result.title)).lower()
        for rule in self.rules:
            if rule.matches(haystack):
                return rule
        return None

    def analyze_root_cause(self, result: TestRunResult | Mapping[str, Any]) -> RootCauseAnalysis:
        """Expand a classification into a root-cause analysis."""
        classification = self.classify(result)
        return RootCauseAnalysis(
            primary_cause=classification.root_cause,
            contributing_factors=classification.contributing_factors,
            evidence=classification.evidence,
            similar_issues=list(SIMILAR_ISSUES.get(classification.category, ())),
            prevention_measures=classification.resolution,
        )

    @staticmethod
    def extract_evidence(result: TestRunResult) -> list[str]:
        """Best-effort scan of the error text for URLs, status codes, durations and frames."""
        text = f"{result.error_message}\n{result.error_stack}"
        evidence: list[str] = []

        for url in _unique(_URL_PATTERN.findall(text))[:3]:
            evidence.append(f"Request URL: {url}")

        status = _STATUS_PATTERN.search(text)
        if status:
            evidence.append(f"HTTP status code: {status.group(1)}")

        duration = _DURATION_PATTERN.search(text)
        if duration:
            evidence.append(f"Duration: {duration.group(1)}ms")

        frames = _JS_FRAME_PATTERN.findall(text)
        frames += [f"{path}:{line}" for path, line in _PY_FRAME_PATTERN.findall(text)]
        frames = _unique(frames)[:3]
        if frames:
            evidence.append(f"Stack frames: {', '.join(frames)}")

        return evidence

    def update_error_trends(
        self,
        results: Iterable[TestRunResult | Mapping[str, Any]],
        now: datetime | None = None,
    ) -> list[ErrorTrend]:
        """Fold a batch of failures into the running error trends."""
        now = now or datetime.now()
        batch_counts: dict[str, int] = {}

        for result in coerce_results(results):
            if not result.failed:
                continue
            classification = self.classify(result)
            error_type = f"{classification.category.value}-{classification.root_cause}"
            batch_counts[error_type] = batch_counts.get(error_type, 0) + 1

            trend = self._error_trends.get(error_type)
            if trend is None:
                trend = ErrorTrend(
                    error_type=error_type,
                    category=classification.category,
                    root_cause=classification.root_cause,
                    occurrences=0,
                    trend="stable",
                    first_seen=now,
                    last_seen=now,
                )
                self._error_trends[error_type] = trend
            trend.occurrences += 1
            trend.last_seen = now
            if result.title not in trend.affected_tests:
                trend.affected_tests.append(result.title)

        for error_type, trend in self._error_trends.items():
            count = batch_counts.get(error_type, 0)
            if count > trend.last_batch_count:
                trend.trend = "increasing"
            elif count < trend.last_batch_count:
                trend.trend = "decreasing"
            else:
                trend.trend = "stable"
            trend.last_batch_count = count

        return self.get_error_trends()

    def get_error_trends(self) -> list[ErrorTrend]:
        """Error trends, most frequent first."""
        return sorted(self._error_trends.values(), key=lambda t: t.occurrences, reverse=True)

    @staticmethod
    def _default_classification() -> ErrorClassification:
        return ErrorClassification(
            category=ErrorCategory.APPLICATION,
            severity=ErrorSeverity.MEDIUM,
            root_cause=DEFAULT_ROOT_CAUSE,
            impact=impact_for(ErrorCategory.APPLICATION, ErrorSeverity.MEDIUM),
            resolution=list(GENERIC_PREVENTION),
            confidence=0.5,
        )


def impact_for(category: ErrorCategory, severity: ErrorSeverity) -> str:
    """Look up the impact text for a category and severity."""
    return IMPACT_MATRIX.get(category, {}).get(severity, "Impact unknown, analyze further")


def _unique(items: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)
