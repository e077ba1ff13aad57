"""Failure classification and stability analysis."""

from qualitypulse.analysis.categories import categorize_test, suite_name
from qualitypulse.analysis.classifier import (
    CLASSIFICATION_RULES,
    ClassificationRule,
    ErrorCategory,
    ErrorClassification,
    ErrorClassifier,
    ErrorSeverity,
    ErrorTrend,
    RootCauseAnalysis,
)
from qualitypulse.analysis.failures import (
    ClassifyingFailureAnalyzer,
    FailureAnalysisReport,
    FailureAnalyzer,
    FailureCategoryStats,
)
from qualitypulse.analysis.stability import (
    CategoryStabilityInfo,
    StabilityBand,
    StabilityMetrics,
    StabilityMonitor,
    StabilityRecommendation,
    StabilityTrend,
    TestStabilityInfo,
)

__all__ = [
    "CLASSIFICATION_RULES",
    "CategoryStabilityInfo",
    "ClassificationRule",
    "ClassifyingFailureAnalyzer",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorSeverity",
    "ErrorTrend",
    "FailureAnalysisReport",
    "FailureAnalyzer",
    "FailureCategoryStats",
    "RootCauseAnalysis",
    "StabilityBand",
    "StabilityMetrics",
    "StabilityMonitor",
    "StabilityRecommendation",
    "StabilityTrend",
    "TestStabilityInfo",
    "categorize_test",
    "suite_name",
]
