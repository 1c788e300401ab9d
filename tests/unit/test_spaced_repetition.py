"""
Unit tests for the SM-2 scheduler and difficulty drift.

Stateless helpers only; the updater's persistence is covered by integration tests.
"""

from datetime import timedelta

import pytest

from studyengine.study import Feedback, SchedulingState, SM2Scheduler, adjust_difficulty
from studyengine.study.spaced_repetition import (
    MINIMUM_EASE_FACTOR,
    quality_for_feedback,
)


class TestQuality:
    def test_feedback_mapping(self):
        assert quality_for_feedback(Feedback.TOO_EASY) == 5
        assert quality_for_feedback("knew_some") == 3
        assert quality_for_feedback(Feedback.INCORRECT) == 0


class TestIntervals:
    def test_bootstrap_sequence(self, now):
        scheduler = SM2Scheduler()
        first = scheduler.review(None, 5, now)
        second = scheduler.review(first, 5, now)
        third = scheduler.review(second, 5, now)

        assert first.interval_days == 1
        assert second.interval_days == 6
        # Grows with the ease in effect before the third review (2.7)
        assert third.interval_days == round(6 * second.ease_factor)
        assert third.interval_days == 16

    def test_half_rounds_up(self, now):
        state = SchedulingState(ease_factor=2.5, interval_days=3)
        assert SM2Scheduler().review(state, 5, now).interval_days == 8  # 7.5 -> 8

    def test_next_review_date(self, now):
        state = SM2Scheduler().review(SchedulingState(interval_days=1), 4, now)
        assert state.interval_days == 6
        assert state.next_review_at == now + timedelta(days=6)
        assert state.last_seen_at == now

    def test_incorrect_resets_interval_keeps_ease(self, now):
        state = SchedulingState(ease_factor=2.2, interval_days=30, consecutive_correct=4)
        after = SM2Scheduler().review(state, 0, now)
        assert after.interval_days == 1
        assert after.ease_factor == 2.2
        assert after.consecutive_correct == 0
        assert after.times_incorrect == 1
        assert after.next_review_at == now + timedelta(days=1)

    def test_counters(self, now):
        scheduler = SM2Scheduler()
        state = scheduler.review(None, 3, now)
        state = scheduler.review(state, 5, now)
        assert state.review_count == 2
        assert state.times_correct == 2
        assert state.consecutive_correct == 2


class TestEase:
    def test_knew_some_lowers_ease(self, now):
        state = SM2Scheduler().review(None, 3, now)
        assert state.ease_factor == pytest.approx(2.36)

    def test_ease_never_below_floor(self, now):
        scheduler = SM2Scheduler()
        state = SchedulingState(ease_factor=1.35, interval_days=6)
        for _ in range(20):
            state = scheduler.review(state, 3, now)
            assert state.ease_factor >= MINIMUM_EASE_FACTOR
        assert state.ease_factor == MINIMUM_EASE_FACTOR

    def test_rejects_invalid_quality(self, now):
        with pytest.raises(ValueError):
            SM2Scheduler().review(None, 6, now)


class TestDifficulty:
    def test_too_easy_lowers(self):
        assert adjust_difficulty(5.0, Feedback.TOO_EASY, 2000) == 4.0
        assert adjust_difficulty(0.5, Feedback.TOO_EASY, 2000) == 0.0

    def test_incorrect_raises(self):
        assert adjust_difficulty(5.0, Feedback.INCORRECT, 2000) == 7.0
        assert adjust_difficulty(9.0, Feedback.INCORRECT, 2000) == 10.0

    def test_knew_some_depends_on_response_time(self):
        assert adjust_difficulty(5.0, Feedback.KNEW_SOME, 5000) == 5.5
        assert adjust_difficulty(5.0, Feedback.KNEW_SOME, 1000) == 4.5
        assert adjust_difficulty(5.0, Feedback.KNEW_SOME, 3000) == 5.0

    def test_missing_difficulty_starts_mid_scale(self):
        assert adjust_difficulty(None, Feedback.INCORRECT, 0) == 7.0
