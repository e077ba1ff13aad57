"""Quality scoring and improvement tracking."""

from qualitypulse.quality.tracker import (
    ActionItem,
    DimensionScore,
    ExecutiveSummary,
    QualityChange,
    QualityImprovementTracker,
    QualityMetrics,
    QualityRecommendation,
    QualityReport,
    Roadmap,
    compute_overall_score,
    health_label,
)

__all__ = [
    "ActionItem",
    "DimensionScore",
    "ExecutiveSummary",
    "QualityChange",
    "QualityImprovementTracker",
    "QualityMetrics",
    "QualityRecommendation",
    "QualityReport",
    "Roadmap",
    "compute_overall_score",
    "health_label",
]
