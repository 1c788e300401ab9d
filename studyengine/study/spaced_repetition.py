"""
Spaced-Repetition Updater (SM-2).

Updates per-item scheduling after each response:
- Feedback maps to an SM-2 quality (too_easy=5, knew_some=3, incorrect=0)
- Correct answers (quality >= 3) grow the interval 1 -> 6 -> round(interval * ease)
- Incorrect answers reset the interval to 1 day and leave ease unchanged
- Item difficulty (0-10) drifts with feedback and response time

The updater also records progress and opens, escalates or closes learning gaps,
which feed the performance analyzer and the item selector.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from loguru import logger
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from studyengine.clock import as_naive_utc, utcnow
from studyengine.exceptions import SchedulingUpdateFailure, StudyEngineError
from studyengine.study.models import (
    FEEDBACK_QUALITY,
    CandidateItem,
    Feedback,
    LearningGapRecord,
    ResponseEvent,
    ReviewChanges,
    SchedulingState,
)

if TYPE_CHECKING:
    from studyengine.study.repository import LearningRepository


# =============================================================================
# SM-2 CONSTANTS
# =============================================================================

INITIAL_EASE_FACTOR = 2.5
MINIMUM_EASE_FACTOR = 1.3
INITIAL_INTERVAL = 1
SECOND_INTERVAL = 6
PASSING_QUALITY = 3
PROGRESS_POINTS_PER_QUALITY = 20  # quality 0-5 -> score 0-100

# Difficulty drift
MIN_DIFFICULTY = 0.0
MAX_DIFFICULTY = 10.0
DEFAULT_DIFFICULTY = 5.0
BASELINE_RESPONSE_MS = 3000


def quality_for_feedback(feedback: Feedback | str) -> int:
    """SM-2 quality for a feedback value."""
    return FEEDBACK_QUALITY[Feedback(feedback)]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_connection_failure(error: BaseException) -> bool:
    """True for errors that mean the database itself is unreachable."""
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def adjust_difficulty(
    difficulty: Optional[float], feedback: Feedback, time_spent_ms: int
) -> float:
    """
    Drift item difficulty with the learner's feedback.

    too_easy lowers by 1 and incorrect raises by 2. knew_some moves by 0.5
    when the response was well outside the 3 second baseline: slower than
    1.5x raises, faster than 0.5x lowers.
    """
    current = DEFAULT_DIFFICULTY if difficulty is None else difficulty
    if feedback == Feedback.TOO_EASY:
        return max(MIN_DIFFICULTY, current - 1)
    if feedback == Feedback.INCORRECT:
        return min(MAX_DIFFICULTY, current + 2)
    if time_spent_ms > BASELINE_RESPONSE_MS * 1.5:
        return min(MAX_DIFFICULTY, current + 0.5)
    if time_spent_ms < BASELINE_RESPONSE_MS * 0.5:
        return max(MIN_DIFFICULTY, current - 0.5)
    return current


class SM2Scheduler:
    """Pure SM-2 state transitions."""

    def __init__(self, minimum_ease: float = MINIMUM_EASE_FACTOR):
        self.minimum_ease = minimum_ease

    def review(
        self,
        state: Optional[SchedulingState],
        quality: int,
        now: Optional[datetime] = None,
    ) -> SchedulingState:
        """
        Apply one review.

        Args:
            state: Current state, or None for an item never reviewed
            quality: SM-2 quality 0-5
            now: Review time (defaults to current UTC)

        Returns:
            The next SchedulingState
        """
        if not 0 <= quality <= 5:
            raise ValueError(f"SM-2 quality must be between 0 and 5, got {quality}")

        now = as_naive_utc(now) if now else utcnow()
        state = state or SchedulingState()
        ease = state.ease_factor

        if quality >= PASSING_QUALITY:
            if state.interval_days == 0:
                interval = INITIAL_INTERVAL
            elif state.interval_days == INITIAL_INTERVAL:
                interval = SECOND_INTERVAL
            else:
                # Interval grows with the ease factor in effect before this review
                interval = _round_half_up(state.interval_days * ease)
            ease = ease + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
            ease = max(self.minimum_ease, ease)
            correct = True
        else:
            interval = INITIAL_INTERVAL
            correct = False

        return replace(
            state,
            ease_factor=ease,
            interval_days=interval,
            review_count=state.review_count + 1,
            consecutive_correct=state.consecutive_correct + 1 if correct else 0,
            times_correct=state.times_correct + (1 if correct else 0),
            times_incorrect=state.times_incorrect + (0 if correct else 1),
            next_review_at=now + timedelta(days=interval),
            last_seen_at=now,
        )


@dataclass
class ReviewOutcome:
    """What one response changed."""
    item_id: str
    quality: int
    state: SchedulingState
    difficulty: float
    gap: Optional[LearningGapRecord] = None
    gap_recovered: bool = False


@dataclass
class BatchReport:
    """Result of a batch of scheduling updates."""
    outcomes: list[ReviewOutcome] = field(default_factory=list)
    failures: list[SchedulingUpdateFailure] = field(default_factory=list)

    @property
    def failed_item_ids(self) -> list[str]:
        return [f.item_id for f in self.failures]


class SpacedRepetitionUpdater:
    """
    Apply responses to scheduling, progress and learning gaps.

    Batches are best effort: one item's failure is logged and the rest of
    the batch still runs.
    """

    def __init__(
        self,
        repository: LearningRepository,
        scheduler: Optional[SM2Scheduler] = None,
        gap_base_severity: int = 5,
        gap_slow_response_ms: int = 30000,
        gap_recovery_streak: int = 3,
    ):
        self.repository = repository
        self.scheduler = scheduler or SM2Scheduler()
        self.gap_base_severity = gap_base_severity
        self.gap_slow_response_ms = gap_slow_response_ms
        self.gap_recovery_streak = gap_recovery_streak

    def apply(
        self,
        user_id: str,
        event: ResponseEvent,
        now: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """
        Apply one response.

        The previous state is read and the scheduling, difficulty, progress
        and gap writes happen in one transaction: either all of them land or
        none do.

        Raises:
            ItemNotFoundError: the item does not exist
        """
        now = as_naive_utc(event.answered_at or now or utcnow())
        quality = quality_for_feedback(event.feedback)

        def plan(item: CandidateItem, previous: Optional[SchedulingState]) -> ReviewChanges:
            state = self.scheduler.review(previous, quality, now)
            gap_severity = None
            if quality < PASSING_QUALITY:
                gap_severity = self.gap_base_severity
                if event.time_spent_ms > self.gap_slow_response_ms:
                    gap_severity *= 2
            return ReviewChanges(
                state=state,
                difficulty=adjust_difficulty(item.difficulty, event.feedback, event.time_spent_ms),
                score=quality * PROGRESS_POINTS_PER_QUALITY,
                gap_severity=gap_severity,
                recover_gap=(
                    gap_severity is None
                    and state.consecutive_correct >= self.gap_recovery_streak
                ),
            )

        changes, gap, recovered = self.repository.record_review(user_id, event.item_id, plan, now)
        return ReviewOutcome(
            item_id=event.item_id,
            quality=quality,
            state=changes.state,
            difficulty=changes.difficulty,
            gap=gap,
            gap_recovered=recovered,
        )

    def apply_batch(
        self,
        user_id: str,
        events: Iterable[ResponseEvent],
        now: Optional[datetime] = None,
    ) -> BatchReport:
        """
        Apply responses independently, collecting per-item failures.

        Lost database connections are not per-item failures and propagate.
        """
        report = BatchReport()
        for event in events:
            try:
                report.outcomes.append(self.apply(user_id, event, now))
            except (StudyEngineError, SQLAlchemyError) as e:
                if is_connection_failure(e):
                    raise
                failure = SchedulingUpdateFailure(event.item_id, str(e))
                logger.warning(str(failure))
                report.failures.append(failure)
        return report
