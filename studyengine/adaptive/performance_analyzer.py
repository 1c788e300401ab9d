"""
Performance Analyzer.

Aggregates a learner's response history into a PerformanceProfile:
- Mean score, attempts and completions per content type
- Overall level (struggling / average / excelling)
- Learning gaps (content types with a low mean score)
- Preferred difficulty
- Engagement per content type, last score and current streak

Analysis never raises. Failures come back as an AnalysisOutcome carrying an
AnalysisFailure, and the caller decides to fall back to the neutral profile.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from loguru import logger

from studyengine.adaptive.models import (
    ADVANCED_FROM,
    BEGINNER_BELOW,
    EXCELLING_FROM,
    LEARNING_GAP_BELOW,
    NEUTRAL_LAST_SCORE,
    STREAK_SCORE,
    STRUGGLING_BELOW,
    AnalysisOutcome,
    ContentTypeStats,
    PerformanceLevel,
    PerformanceProfile,
    ResponseRecord,
)
from studyengine.exceptions import AnalysisFailure
from studyengine.generation.models import Difficulty


class PerformanceAnalyzer:
    """Build performance profiles from response history."""

    def analyze(self, records: Iterable[ResponseRecord]) -> AnalysisOutcome:
        """
        Analyze response history.

        Args:
            records: The learner's response rows (any order)

        Returns:
            AnalysisOutcome with either a profile or the failure that prevented one
        """
        try:
            profile = self.build_profile(list(records))
        except Exception as e:  # Intentionally broad - analysis must never block a session
            logger.warning(f"Performance analysis failed, neutral profile applies: {e}")
            return AnalysisOutcome.failed(AnalysisFailure(str(e)))
        return AnalysisOutcome.ok(profile)

    def build_profile(self, records: list[ResponseRecord]) -> PerformanceProfile:
        stats = self.aggregate(records)
        if not stats:
            # No scored history yet: nothing to adapt to
            return PerformanceProfile.neutral()

        overall = sum(s.mean_score for s in stats) / len(stats)

        return PerformanceProfile(
            performance_level=self.performance_level(overall),
            learning_gaps=tuple(
                s.content_type for s in stats if s.mean_score < LEARNING_GAP_BELOW
            ),
            preferred_difficulty=self.preferred_difficulty(overall),
            content_type_engagement={s.content_type: s.engagement for s in stats},
            last_score=self.last_score(records),
            streak_count=self.streak_count(records),
        )

    @staticmethod
    def aggregate(records: list[ResponseRecord]) -> list[ContentTypeStats]:
        """Per content type stats, sorted by content type. Unscored rows count as completions only."""
        scores: dict[str, list[float]] = defaultdict(list)
        attempts: dict[str, int] = defaultdict(int)
        completed: dict[str, int] = defaultdict(int)

        for record in records:
            content_type = record.content_type
            completed[content_type] += 1
            attempts[content_type] += int(record.attempts or 0)
            if record.score is not None:
                scores[content_type].append(float(record.score))

        return [
            ContentTypeStats(
                content_type=content_type,
                mean_score=sum(scores[content_type]) / len(scores[content_type]),
                total_attempts=attempts[content_type],
                completed_count=completed[content_type],
            )
            for content_type in sorted(completed)
            if scores[content_type]
        ]

    @staticmethod
    def performance_level(overall_score: float) -> PerformanceLevel:
        if overall_score < STRUGGLING_BELOW:
            return PerformanceLevel.STRUGGLING
        if overall_score < EXCELLING_FROM:
            return PerformanceLevel.AVERAGE
        return PerformanceLevel.EXCELLING

    @staticmethod
    def preferred_difficulty(overall_score: float) -> Difficulty:
        if overall_score < BEGINNER_BELOW:
            return Difficulty.BEGINNER
        if overall_score < ADVANCED_FROM:
            return Difficulty.INTERMEDIATE
        return Difficulty.ADVANCED

    @staticmethod
    def _most_recent_first(records: list[ResponseRecord]) -> list[ResponseRecord]:
        dated = [r for r in records if r.score is not None and r.last_attempt_at is not None]
        return sorted(dated, key=lambda r: r.last_attempt_at or datetime.min, reverse=True)

    def last_score(self, records: list[ResponseRecord]) -> float:
        recent = self._most_recent_first(records)
        if not recent:
            return NEUTRAL_LAST_SCORE
        return float(recent[0].score)

    def streak_count(self, records: list[ResponseRecord]) -> int:
        """Consecutive most-recent responses at or above the streak score."""
        streak = 0
        for record in self._most_recent_first(records):
            if record.score < STREAK_SCORE:
                break
            streak += 1
        return streak
