"""QualityPulse - test quality analytics.

Turns the results of a test run into quality signals: failure
classification, test stability, historical trends with forecasts and a
weighted quality score with action items.

Quick Start:
    from qualitypulse import QualityImprovementTracker

    tracker = QualityImprovementTracker("./quality-tracking")
    report = tracker.generate_report(results)
    print(report.executive_summary.overall_health)
"""

from __future__ import annotations

# Analysis
from qualitypulse.analysis import (
    ClassifyingFailureAnalyzer,
    ErrorCategory,
    ErrorClassification,
    ErrorClassifier,
    ErrorSeverity,
    FailureAnalysisReport,
    StabilityMetrics,
    StabilityMonitor,
)

# Configuration
from qualitypulse.config import AnalyticsConfig, StabilityThresholds, load_config

# Errors
from qualitypulse.errors import ConfigValidationError, QualityPulseError

# Input records
from qualitypulse.models import TestRunResult, TestStatus, TrendDirection

# Logging
from qualitypulse.observability import configure_logging, log_context

# Quality tracking
from qualitypulse.quality import QualityImprovementTracker, QualityMetrics, QualityReport

# Trends
from qualitypulse.trends import ExecutionTrendAnalyzer, TrendAnalysis, TrendAnalyzer, TrendMetric

__version__ = "0.1.0"

__all__ = [
    "AnalyticsConfig",
    "ClassifyingFailureAnalyzer",
    "ConfigValidationError",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorSeverity",
    "ExecutionTrendAnalyzer",
    "FailureAnalysisReport",
    "QualityImprovementTracker",
    "QualityMetrics",
    "QualityPulseError",
    "QualityReport",
    "StabilityMetrics",
    "StabilityMonitor",
    "StabilityThresholds",
    "TestRunResult",
    "TestStatus",
    "TrendAnalysis",
    "TrendAnalyzer",
    "TrendDirection",
    "TrendMetric",
    "configure_logging",
    "load_config",
    "log_context",
]
