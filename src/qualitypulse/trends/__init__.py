"""Historical trend analysis."""

from qualitypulse.trends.base import (
    PERIOD_WINDOWS,
    BaseTrendAnalyzer,
    InsightType,
    MetricSpec,
    TrendAnalysis,
    TrendInsight,
    TrendMetric,
    TrendPrediction,
    TrendRecommendation,
    compute_trend_metric,
    linear_predict,
    percent_change,
    variance,
)
from qualitypulse.trends.execution import (
    ExecutionDataPoint,
    ExecutionTrendAnalysis,
    ExecutionTrendAnalyzer,
    PerformanceTrends,
)
from qualitypulse.trends.quality import (
    CoverageMetrics,
    EnvironmentInfo,
    TrendAnalyzer,
    TrendDataPoint,
    load_coverage_summary,
)

__all__ = [
    "PERIOD_WINDOWS",
    "BaseTrendAnalyzer",
    "CoverageMetrics",
    "EnvironmentInfo",
    "ExecutionDataPoint",
    "ExecutionTrendAnalysis",
    "ExecutionTrendAnalyzer",
    "InsightType",
    "MetricSpec",
    "PerformanceTrends",
    "TrendAnalysis",
    "TrendAnalyzer",
    "TrendDataPoint",
    "TrendInsight",
    "TrendMetric",
    "TrendPrediction",
    "TrendRecommendation",
    "compute_trend_metric",
    "linear_predict",
    "load_coverage_summary",
    "percent_change",
    "variance",
]
