"""
Unit tests for PerformanceAnalyzer.

Pure aggregation over in-memory response rows; no database required.
"""

from datetime import datetime, timedelta

import pytest

from studyengine.adaptive import (
    PerformanceAnalyzer,
    PerformanceLevel,
    PerformanceProfile,
    ResponseRecord,
)
from studyengine.exceptions import AnalysisFailure
from studyengine.generation.models import Difficulty

T0 = datetime(2025, 3, 1, 10, 0, 0)


def rows(content_type, scores, start=T0):
    return [
        ResponseRecord(content_type, score, attempts=1, last_attempt_at=start + timedelta(minutes=i))
        for i, score in enumerate(scores)
    ]


class TestProfile:
    def test_empty_history_is_neutral(self):
        outcome = PerformanceAnalyzer().analyze([])
        assert outcome.succeeded
        assert outcome.profile == PerformanceProfile.neutral()
        assert outcome.profile.last_score == 75
        assert outcome.profile.streak_count == 0

    def test_struggling_learner_with_gap(self):
        history = rows("cuecard", [40, 50]) + rows("mcq", [55, 65])
        profile = PerformanceAnalyzer().analyze(history).profile

        # Per-type means 45 and 60, overall 52.5
        assert profile.performance_level == PerformanceLevel.STRUGGLING
        assert profile.preferred_difficulty == Difficulty.INTERMEDIATE
        assert profile.learning_gaps == ("cuecard", "mcq")

    def test_overall_is_mean_of_type_means(self):
        # cuecard mean 90 over 4 rows, mcq mean 60 over 1 row: overall 75, not 84
        history = rows("cuecard", [90, 90, 90, 90]) + rows("mcq", [60])
        profile = PerformanceAnalyzer().analyze(history).profile
        assert profile.performance_level == PerformanceLevel.AVERAGE
        assert profile.learning_gaps == ("mcq",)

    @pytest.mark.parametrize(
        "score, level, difficulty",
        [
            (45, PerformanceLevel.STRUGGLING, Difficulty.BEGINNER),
            (59, PerformanceLevel.STRUGGLING, Difficulty.INTERMEDIATE),
            (60, PerformanceLevel.AVERAGE, Difficulty.INTERMEDIATE),
            (80, PerformanceLevel.EXCELLING, Difficulty.INTERMEDIATE),
            (85, PerformanceLevel.EXCELLING, Difficulty.ADVANCED),
        ],
    )
    def test_thresholds(self, score, level, difficulty):
        profile = PerformanceAnalyzer().analyze(rows("cuecard", [score])).profile
        assert profile.performance_level == level
        assert profile.preferred_difficulty == difficulty

    def test_null_scores_are_ignored_for_means(self):
        history = rows("cuecard", [80, None, 90])
        profile = PerformanceAnalyzer().analyze(history).profile
        stats = PerformanceAnalyzer.aggregate(history)
        assert stats[0].mean_score == 85
        assert stats[0].completed_count == 3
        assert profile.performance_level == PerformanceLevel.EXCELLING

    def test_engagement_rewards_volume(self):
        history = rows("cuecard", [80, 80]) + rows("mcq", [80])
        profile = PerformanceAnalyzer().analyze(history).profile
        assert profile.content_type_engagement == {"cuecard": 50.0, "mcq": 45.0}

    def test_last_score_uses_latest_timestamp(self):
        history = [
            ResponseRecord("cuecard", 90, last_attempt_at=T0 + timedelta(hours=2)),
            ResponseRecord("cuecard", 30, last_attempt_at=T0),
        ]
        assert PerformanceAnalyzer().analyze(history).profile.last_score == 90

    def test_streak_counts_recent_passing_scores(self):
        history = rows("cuecard", [90, 40, 80, 75, 100])
        assert PerformanceAnalyzer().analyze(history).profile.streak_count == 3


class TestFailure:
    def test_failure_is_returned_not_raised(self):
        class Exploding(PerformanceAnalyzer):
            def build_profile(self, records):
                raise RuntimeError("bad row")

        outcome = Exploding().analyze(rows("cuecard", [50]))
        assert not outcome.succeeded
        assert isinstance(outcome.failure, AnalysisFailure)
        assert outcome.profile_or_default() == PerformanceProfile.neutral()
