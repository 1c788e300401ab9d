"""
Adaptive Learning Models.

Performance profiles derived from response history, the explicit analysis
outcome wrapper, and the policy constants the adaptive config generator
applies.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from studyengine.exceptions import AnalysisFailure
from studyengine.generation.models import Difficulty, GenerationConfig


class PerformanceLevel(str, Enum):
    STRUGGLING = "struggling"
    AVERAGE = "average"
    EXCELLING = "excelling"


# =============================================================================
# ANALYSIS THRESHOLDS (scores are on a 0-100 scale)
# =============================================================================

STRUGGLING_BELOW = 60.0
EXCELLING_FROM = 80.0
LEARNING_GAP_BELOW = 70.0
BEGINNER_BELOW = 50.0
ADVANCED_FROM = 85.0
NEUTRAL_LAST_SCORE = 75.0
STREAK_SCORE = 70.0
ENGAGEMENT_PER_COMPLETION = 10.0


@dataclass(frozen=True)
class ResponseRecord:
    """One row of a learner's response history."""
    content_type: str
    score: Optional[float]
    attempts: int = 1
    last_attempt_at: Optional[datetime] = None
    item_id: Optional[str] = None


@dataclass(frozen=True)
class ContentTypeStats:
    """Aggregated history for one content type."""
    content_type: str
    mean_score: float
    total_attempts: int
    completed_count: int

    @property
    def engagement(self) -> float:
        """Rewards both accuracy and volume."""
        return (self.mean_score + self.completed_count * ENGAGEMENT_PER_COMPLETION) / 2


class PerformanceProfile(BaseModel):
    """A learner's measured performance. Derived per request, never stored on its own."""

    model_config = ConfigDict(frozen=True)

    performance_level: PerformanceLevel = PerformanceLevel.AVERAGE
    learning_gaps: tuple[str, ...] = ()
    preferred_difficulty: Difficulty = Difficulty.INTERMEDIATE
    content_type_engagement: dict[str, float] = Field(default_factory=dict)
    last_score: float = NEUTRAL_LAST_SCORE
    streak_count: int = 0

    @classmethod
    def neutral(cls) -> PerformanceProfile:
        """Safe default used whenever analysis cannot produce a profile."""
        return cls()


@dataclass(frozen=True)
class AnalysisOutcome:
    """
    Result of a performance analysis: exactly one of profile / failure is set.

    Callers collapse it explicitly with profile_or_default(), so the fallback
    to the neutral profile is visible at the call site.
    """
    profile: Optional[PerformanceProfile] = None
    failure: Optional[AnalysisFailure] = None

    @classmethod
    def ok(cls, profile: PerformanceProfile) -> AnalysisOutcome:
        return cls(profile=profile)

    @classmethod
    def failed(cls, failure: AnalysisFailure) -> AnalysisOutcome:
        return cls(failure=failure)

    @property
    def succeeded(self) -> bool:
        return self.profile is not None

    def profile_or_default(self) -> PerformanceProfile:
        return self.profile if self.profile is not None else PerformanceProfile.neutral()


# =============================================================================
# ADAPTATION POLICY
# =============================================================================

class CountAdjustment(NamedTuple):
    """Raise a count field by `increment`, never past `cap`."""
    field: str
    increment: int
    cap: int

    def apply(self, current: int) -> int:
        # A count already above the cap is left as configured, never lowered
        return max(current, min(current + self.increment, self.cap))


STRUGGLING_ADJUSTMENTS: tuple[CountAdjustment, ...] = (
    CountAdjustment("cuecards_count", 5, 20),
    CountAdjustment("golden_notes_count", 2, 10),
)

EXCELLING_ADJUSTMENTS: tuple[CountAdjustment, ...] = (
    CountAdjustment("exam_exercises_count", 2, 8),
)

# Gap remediation uses larger increments and higher caps
GAP_ADJUSTMENTS: Mapping[str, CountAdjustment] = MappingProxyType({
    "cuecards_count": CountAdjustment("cuecards_count", 10, 30),
    "mcqs_count": CountAdjustment("mcqs_count", 5, 20),
    "exam_exercises_count": CountAdjustment("exam_exercises_count", 3, 10),
    "golden_notes_count": CountAdjustment("golden_notes_count", 3, 12),
})

BASE_REASON = "Base configuration"


class AdaptiveGenerationConfig(BaseModel):
    """A merged configuration adjusted to a learner, with the reasons why."""

    model_config = ConfigDict(frozen=True)

    config: GenerationConfig
    profile: PerformanceProfile
    adaptation_reasons: tuple[str, ...] = (BASE_REASON,)

    @property
    def adaptation_reason(self) -> str:
        return " | ".join(self.adaptation_reasons)
