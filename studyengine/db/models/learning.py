"""
Learning state models.

SQLAlchemy models for practice items and per-learner state:
- Practice items (cuecards / questions) scoped to a course unit
- SM-2 scheduling state per learner per item
- Learning gaps detected from incorrect responses
- User progress (the response log the performance analyzer reads)
- Study sessions planned by the item selector
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from studyengine.clock import utcnow

from .base import Base


class PracticeItem(Base):
    """
    A single practice item eligible for study sessions.

    Items belong to exactly one course and one unit (week/module). Spaced
    repetition items carry a continuous 0-10 difficulty; quiz items may carry
    a discrete easy/medium/hard label instead.
    """

    __tablename__ = "practice_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    course_id: Mapped[str] = mapped_column(Text, nullable=False)
    unit_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(50), default="cuecard", nullable=False)

    front: Mapped[str] = mapped_column(Text, default="")
    back: Mapped[str] = mapped_column(Text, default="")
    difficulty: Mapped[float | None] = mapped_column(Float)
    difficulty_label: Mapped[str | None] = mapped_column(String(10))  # 'easy', 'medium', 'hard'

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_practice_items_scope", "course_id", "unit_id"),)

    def __repr__(self) -> str:
        return f"<PracticeItem id={self.id} course={self.course_id} unit={self.unit_id}>"


class ItemScheduling(Base):
    """
    SM-2 scheduling state per learner per item.

    Created lazily on the first response and updated on every response after.
    """

    __tablename__ = "item_scheduling"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("practice_items.id", ondelete="CASCADE"), nullable=False
    )

    ease_factor: Mapped[float] = mapped_column(Float, default=2.5, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_review_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    consecutive_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_incorrect: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_item_scheduling_user_item"),
        Index("idx_item_scheduling_user_due", "user_id", "next_review_at", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<ItemScheduling user={self.user_id} item={self.item_id} "
            f"interval={self.interval_days} ease={self.ease_factor:.2f}>"
        )


class LearningGap(Base):
    """
    A detected weakness for one learner on one item.

    Escalated on repeated failures; closed (is_active=False) once the learner
    answers the item correctly enough times in a row.
    """

    __tablename__ = "learning_gaps"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(50), nullable=False)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)
    concept_id: Mapped[str | None] = mapped_column(Text)

    severity: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-10
    failure_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_failure_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    identified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    recovered_at: Mapped[datetime | None] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_learning_gaps_user_active", "user_id", "is_active"),
        Index("idx_learning_gaps_content", "content_type", "item_id"),
    )

    def __repr__(self) -> str:
        return f"<LearningGap user={self.user_id} item={self.item_id} severity={self.severity}>"


class UserProgress(Base):
    """Latest score and attempt count per learner per item."""

    __tablename__ = "user_progress"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(50), nullable=False)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default="not_started"
    )  # 'not_started', 'in_progress', 'completed'
    score: Mapped[int | None] = mapped_column(Integer)  # 0-100
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "content_type", "item_id", name="uq_user_progress_item"),
        Index("idx_user_progress_user_last_attempt", "user_id", "last_attempt_at"),
    )


class StudySession(Base):
    """A planned study session and, once finished, its outcome."""

    __tablename__ = "study_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(Text, nullable=False)
    unit_ids: Mapped[list] = mapped_column(JSON, default=list)

    max_items: Mapped[int] = mapped_column(Integer, nullable=False)
    item_ids: Mapped[list] = mapped_column(JSON, default=list)
    gap_items: Mapped[int] = mapped_column(Integer, default=0)
    review_items: Mapped[int] = mapped_column(Integer, default=0)
    new_items: Mapped[int] = mapped_column(Integer, default=0)
    priority: Mapped[str] = mapped_column(String(10), default="new")  # 'gaps', 'reviews', 'mixed', 'new'

    status: Mapped[str] = mapped_column(String(20), default="planned")  # 'planned', 'completing', 'completed'
    items_correct: Mapped[int] = mapped_column(Integer, default=0)
    items_incorrect: Mapped[int] = mapped_column(Integer, default=0)
    failed_item_ids: Mapped[list] = mapped_column(JSON, default=list)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<StudySession id={self.id} user={self.user_id} status={self.status}>"

    @property
    def accuracy(self) -> float:
        """Session accuracy percentage."""
        answered = (self.items_correct or 0) + (self.items_incorrect or 0)
        if answered > 0:
            return (self.items_correct / answered) * 100
        return 0.0
