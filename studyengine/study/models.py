"""
Study session models.

Candidate items, selection results, SM-2 scheduling state and the records a
study session produces.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID


class Feedback(str, Enum):
    """Learner self-assessment after seeing an item."""
    TOO_EASY = "too_easy"
    KNEW_SOME = "knew_some"
    INCORRECT = "incorrect"


# SM-2 quality (0-5) per feedback value
FEEDBACK_QUALITY = {
    Feedback.TOO_EASY: 5,
    Feedback.KNEW_SOME: 3,
    Feedback.INCORRECT: 0,
}


class SelectionReason(str, Enum):
    """Why an item was scored the way it was."""
    GAP = "gap"
    REVIEW = "review"
    NEW = "new"
    NONE = "none"


class SessionPriority(str, Enum):
    """Dominant tier of a planned session."""
    GAPS = "gaps"
    REVIEWS = "reviews"
    MIXED = "mixed"
    NEW = "new"


@dataclass(frozen=True)
class CandidateItem:
    """An item eligible for selection, with the scope it belongs to."""
    item_id: str
    course_id: str
    unit_id: str
    content_type: str = "cuecard"
    difficulty: Optional[float] = None


@dataclass(frozen=True)
class ScoredItem:
    """A candidate with its selection priority."""
    item: CandidateItem
    priority: float
    reason: SelectionReason

    @property
    def item_id(self) -> str:
        return self.item.item_id


@dataclass(frozen=True)
class SessionScope:
    """Course plus an optional set of units. No units means the whole course."""
    course_id: str
    unit_ids: frozenset[str] = frozenset()

    def contains(self, item: CandidateItem) -> bool:
        if item.course_id != self.course_id:
            return False
        return not self.unit_ids or item.unit_id in self.unit_ids


@dataclass
class SelectionMetadata:
    """Tier counts for a selection."""
    gap_items: int = 0
    review_items: int = 0
    new_items: int = 0
    total_available: int = 0
    priority: SessionPriority = SessionPriority.NEW


@dataclass
class SelectionResult:
    """Selected items in presentation order plus metadata."""
    items: list[ScoredItem] = field(default_factory=list)
    metadata: SelectionMetadata = field(default_factory=SelectionMetadata)

    @property
    def item_ids(self) -> list[str]:
        return [s.item_id for s in self.items]

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class SchedulingState:
    """SM-2 state of one item for one learner."""
    ease_factor: float = 2.5
    interval_days: int = 0
    review_count: int = 0
    consecutive_correct: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    next_review_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReviewChanges:
    """
    Everything one response writes.

    gap_severity opens a gap at that severity (or escalates the active one);
    recover_gap closes active gaps on the item.
    """
    state: SchedulingState
    difficulty: float
    score: int
    gap_severity: Optional[int] = None
    recover_gap: bool = False


@dataclass(frozen=True)
class ResponseEvent:
    """One answered item."""
    item_id: str
    feedback: Feedback
    time_spent_ms: int = 0
    answered_at: Optional[datetime] = None

    @property
    def is_correct(self) -> bool:
        return self.feedback != Feedback.INCORRECT


@dataclass
class SessionPlan:
    """A persisted, selected study session."""
    session_id: UUID
    user_id: str
    scope: SessionScope
    selection: SelectionResult
    started_at: datetime

    @property
    def item_ids(self) -> list[str]:
        return self.selection.item_ids


@dataclass
class SessionSummary:
    """Outcome of a completed session."""
    session_id: UUID
    items_correct: int = 0
    items_incorrect: int = 0
    failed_item_ids: list[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def accuracy(self) -> float:
        answered = self.items_correct + self.items_incorrect
        if answered > 0:
            return (self.items_correct / answered) * 100
        return 0.0


@dataclass(frozen=True)
class LearningGapRecord:
    """An active or recovered learning gap."""
    gap_id: UUID
    user_id: str
    item_id: str
    content_type: str
    severity: int
    failure_count: int
    is_active: bool
    last_failure_at: datetime
    recovered_at: Optional[datetime] = None


@dataclass(frozen=True)
class DueItem:
    """An item whose review date has arrived."""
    item_id: str
    next_review_at: datetime
    days_overdue: int
    interval_days: int
    ease_factor: float


@dataclass
class RetentionStats:
    """Scheduling health for one learner."""
    total_items: int = 0
    due_now: int = 0
    mastered: int = 0
    struggling: int = 0
    average_ease: float = 0.0
    upcoming: dict[date, int] = field(default_factory=dict)
