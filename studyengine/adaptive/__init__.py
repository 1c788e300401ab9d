"""
Adaptive Generation.

Components:
- PerformanceAnalyzer: Builds a performance profile from response history
- AdaptiveConfigGenerator: Adjusts a merged config to that profile
"""
from studyengine.adaptive.models import (
    AdaptiveGenerationConfig,
    AnalysisOutcome,
    ContentTypeStats,
    CountAdjustment,
    PerformanceLevel,
    PerformanceProfile,
    ResponseRecord,
)
from studyengine.adaptive.performance_analyzer import PerformanceAnalyzer
from studyengine.adaptive.config_generator import AdaptiveConfigGenerator

__all__ = [
    "PerformanceAnalyzer",
    "AdaptiveConfigGenerator",
    "AdaptiveGenerationConfig",
    "AnalysisOutcome",
    "ContentTypeStats",
    "CountAdjustment",
    "PerformanceProfile",
    "ResponseRecord",
    "PerformanceLevel",
]
