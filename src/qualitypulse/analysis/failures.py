"""Failure analysis reports.

The quality tracker asks a ``FailureAnalyzer`` for a report of the
batch's failures. Any object with a matching ``analyze`` method can be
plugged in; ``ClassifyingFailureAnalyzer`` builds the report from
``ErrorClassifier`` classifications.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from qualitypulse.analysis.classifier import ErrorClassification, ErrorClassifier
from qualitypulse.models import TestRunResult, coerce_results, safe_ratio


@dataclass
class ClassifiedFailure:
    test_title: str
    classification: ErrorClassification

    def to_dict(self) -> dict[str, Any]:
        return {"test_title": self.test_title, **self.classification.to_dict()}


@dataclass
class FailureCategoryStats:
    category: str
    count: int
    percentage: float
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "count": self.count,
            "percentage": self.percentage,
            "examples": list(self.examples),
        }


@dataclass
class FailurePattern:
    """Failures sharing a category and root cause."""

    pattern: str
    count: int
    affected_tests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"pattern": self.pattern, "count": self.count, "affected_tests": list(self.affected_tests)}


@dataclass
class FailureStabilityMetrics:
    flaky_tests: int = 0
    consistent_failures: int = 0
    retry_success_rate: float = 0.0
    average_retries: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "flaky_tests": self.flaky_tests,
            "consistent_failures": self.consistent_failures,
            "retry_success_rate": self.retry_success_rate,
            "average_retries": self.average_retries,
        }


@dataclass
class FailureAnalysisReport:
    """Classified failures of one batch."""

    total_failures: int
    patterns: list[FailurePattern] = field(default_factory=list)
    categories: list[FailureCategoryStats] = field(default_factory=list)
    classifications: list[ClassifiedFailure] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    stability_metrics: FailureStabilityMetrics = field(default_factory=FailureStabilityMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_failures": self.total_failures,
            "patterns": [pattern.to_dict() for pattern in self.patterns],
            "categories": [category.to_dict() for category in self.categories],
            "classifications": [failure.to_dict() for failure in self.classifications],
            "recommendations": list(self.recommendations),
            "stability_metrics": self.stability_metrics.to_dict(),
        }


class FailureAnalyzer(Protocol):
    def analyze(self, results: Iterable[TestRunResult | Mapping[str, Any]]) -> FailureAnalysisReport: ...


class ClassifyingFailureAnalyzer:
    """Build failure reports from ``ErrorClassifier`` classifications."""

    def __init__(self, classifier: ErrorClassifier | None = None) -> None:
        self.classifier = classifier or ErrorClassifier()

    def analyze(self, results: Iterable[TestRunResult | Mapping[str, Any]]) -> FailureAnalysisReport:
        records = coerce_results(results)
        failures = [record for record in records if record.failed]

        classified = [ClassifiedFailure(record.title, self.classifier.classify(record)) for record in failures]

        category_counts: Counter[str] = Counter()
        examples: dict[str, list[str]] = {}
        patterns: dict[str, FailurePattern] = {}
        for failure in classified:
            category = failure.classification.category.value
            category_counts[category] += 1
            category_examples = examples.setdefault(category, [])
            if failure.test_title not in category_examples and len(category_examples) < 3:
                category_examples.append(failure.test_title)

            key = f"{category}-{failure.classification.root_cause}"
            pattern = patterns.setdefault(key, FailurePattern(pattern=key, count=0))
            pattern.count += 1
            if failure.test_title not in pattern.affected_tests:
                pattern.affected_tests.append(failure.test_title)

        categories = [
            FailureCategoryStats(
                category=category,
                count=count,
                percentage=round(safe_ratio(count, len(failures)) * 100, 1),
                examples=examples[category],
            )
            for category, count in category_counts.most_common()
        ]

        return FailureAnalysisReport(
            total_failures=len(failures),
            patterns=sorted(patterns.values(), key=lambda p: p.count, reverse=True),
            categories=categories,
            classifications=classified,
            recommendations=self._recommendations(classified),
            stability_metrics=self._stability_metrics(records),
        )

    @staticmethod
    def _recommendations(classified: list[ClassifiedFailure]) -> list[str]:
        recommendations: list[str] = []
        for failure in classified:
            for step in failure.classification.resolution[:2]:
                if step not in recommendations:
                    recommendations.append(step)
        return recommendations

    @staticmethod
    def _stability_metrics(records: list[TestRunResult]) -> FailureStabilityMetrics:
        outcomes: dict[str, set[bool]] = {}
        for record in records:
            if record.passed or record.failed:
                outcomes.setdefault(record.title, set()).add(record.passed)

        retried = [record for record in records if record.retry > 0]
        retried_passes = sum(1 for record in retried if record.passed)
        flaky_titles = {title for title, seen in outcomes.items() if seen == {True, False}}
        flaky_titles |= {record.title for record in retried if record.passed}

        return FailureStabilityMetrics(
            flaky_tests=len(flaky_titles),
            consistent_failures=sum(1 for seen in outcomes.values() if seen == {False}),
            retry_success_rate=round(safe_ratio(retried_passes, len(retried)) * 100, 1),
            average_retries=round(safe_ratio(sum(record.retry for record in records), len(records)), 2),
        )
