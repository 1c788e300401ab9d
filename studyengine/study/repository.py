"""
Learning Repository.

SQLAlchemy access to practice items and per-learner learning state:
- Candidate pools and the gap / due / new inputs of the item selector
- SM-2 scheduling rows, item difficulty and user progress
- Learning gap upsert and recovery
- Study session rows
- Due-item queries and retention statistics

Every method opens its own transaction through the injected session factory
and returns plain dataclasses, never ORM rows.
"""
from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from studyengine.adaptive.models import ResponseRecord
from studyengine.clock import as_naive_utc, utcnow
from studyengine.db.database import SessionFactory, session_scope
from studyengine.db.models import (
    ItemScheduling,
    LearningGap,
    PracticeItem,
    StudySession,
    UserProgress,
)
from studyengine.exceptions import ItemNotFoundError, StudyEngineError
from studyengine.study.models import (
    CandidateItem,
    DueItem,
    LearningGapRecord,
    RetentionStats,
    ReviewChanges,
    SchedulingState,
    SelectionResult,
    SessionScope,
    SessionSummary,
)

MAX_GAP_SEVERITY = 10
INITIAL_EASE = 2.5
MASTERED_INTERVAL_DAYS = 21
STRUGGLING_EASE = 2.0

SESSION_PLANNED = "planned"
SESSION_COMPLETING = "completing"
SESSION_COMPLETED = "completed"


def days_overdue(next_review_at: datetime, now: datetime) -> int:
    """Whole days past the review date, never negative."""
    return max(0, math.floor((now - next_review_at) / timedelta(days=1)))


class LearningRepository:
    """Persistence for practice items and learner state."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or session_scope

    def _get_session(self):
        return self._session_factory()

    # =========================================================================
    # Practice items
    # =========================================================================

    def add_items(self, items: Iterable[CandidateItem]) -> int:
        """Insert or update practice items. Returns how many were written."""
        count = 0
        with self._get_session() as session:
            for item in items:
                row = session.get(PracticeItem, item.item_id)
                if row is None:
                    row = PracticeItem(id=item.item_id)
                    session.add(row)
                row.course_id = item.course_id
                row.unit_id = item.unit_id
                row.content_type = item.content_type
                row.difficulty = item.difficulty
                count += 1
        return count

    def get_item(self, item_id: str) -> CandidateItem:
        with self._get_session() as session:
            row = session.get(PracticeItem, item_id)
            if row is None:
                raise ItemNotFoundError(f"Practice item {item_id} not found")
            return self._to_candidate(row)

    def candidate_pool(self, scope: SessionScope) -> list[CandidateItem]:
        """Every item in the course, restricted to the scope's units when given."""
        with self._get_session() as session:
            stmt = select(PracticeItem).where(PracticeItem.course_id == scope.course_id)
            if scope.unit_ids:
                stmt = stmt.where(PracticeItem.unit_id.in_(sorted(scope.unit_ids)))
            stmt = stmt.order_by(PracticeItem.id)
            return [self._to_candidate(row) for row in session.scalars(stmt)]

    # =========================================================================
    # Selector inputs
    # =========================================================================

    def gap_severities(self, user_id: str, scope: SessionScope) -> dict[str, int]:
        """Highest active gap severity per in-scope item."""
        with self._get_session() as session:
            stmt = (
                select(LearningGap.item_id, LearningGap.severity)
                .join(PracticeItem, PracticeItem.id == LearningGap.item_id)
                .where(LearningGap.user_id == user_id)
                .where(LearningGap.is_active.is_(True))
                .where(self._scope_clause(scope))
            )
            severities: dict[str, int] = {}
            for item_id, severity in session.execute(stmt):
                severities[item_id] = max(severity, severities.get(item_id, 0))
            return severities

    def overdue_days(
        self, user_id: str, scope: SessionScope, now: Optional[datetime] = None
    ) -> dict[str, int]:
        """Days overdue per in-scope item whose review date has arrived."""
        return {d.item_id: d.days_overdue for d in self.due_items(user_id, scope, now)}

    def new_item_ids(self, user_id: str, scope: SessionScope) -> set[str]:
        """In-scope items the learner has never reviewed, or whose scheduling was reset."""
        with self._get_session() as session:
            stmt = (
                select(PracticeItem.id)
                .outerjoin(
                    ItemScheduling,
                    and_(
                        ItemScheduling.item_id == PracticeItem.id,
                        ItemScheduling.user_id == user_id,
                    ),
                )
                .where(self._scope_clause(scope))
                .where(
                    or_(
                        ItemScheduling.id.is_(None),
                        ItemScheduling.review_count == 0,
                        ItemScheduling.is_active.is_(False),
                    )
                )
            )
            return set(session.scalars(stmt))

    # =========================================================================
    # Scheduling
    # =========================================================================

    def get_scheduling(self, user_id: str, item_id: str) -> Optional[SchedulingState]:
        with self._get_session() as session:
            row = self._scheduling_row(session, user_id, item_id)
            return self._to_state(row) if row is not None else None

    def apply_review(
        self,
        user_id: str,
        item_id: str,
        state: SchedulingState,
        difficulty: Optional[float] = None,
        score: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Write the new scheduling state, item difficulty and progress together."""
        now = now or utcnow()
        with self._get_session() as session:
            item = self._item_row(session, item_id)
            self._write_scheduling(session, user_id, item_id, state, now)
            if difficulty is not None:
                item.difficulty = difficulty
            if score is not None:
                self._upsert_progress(session, user_id, item.content_type, item_id, score, now)

    def record_review(
        self,
        user_id: str,
        item_id: str,
        plan: Callable[[CandidateItem, Optional[SchedulingState]], ReviewChanges],
        now: datetime,
    ) -> tuple[ReviewChanges, Optional[LearningGapRecord], bool]:
        """
        Read, plan and write one response in a single transaction.

        Args:
            user_id: Learner
            item_id: Answered item
            plan: Called with the item and its current scheduling state (None
                when never reviewed or reset); returns the changes to write
            now: Review time

        Returns:
            (changes, the opened or escalated gap, whether a gap was recovered)

        Raises:
            ItemNotFoundError: the item does not exist; nothing is written
        """
        with self._get_session() as session:
            item = self._item_row(session, item_id)
            row = self._scheduling_row(session, user_id, item_id)
            previous = self._to_state(row) if row is not None and row.is_active else None

            changes = plan(self._to_candidate(item), previous)

            self._write_scheduling(session, user_id, item_id, changes.state, now, row=row)
            item.difficulty = changes.difficulty
            self._upsert_progress(session, user_id, item.content_type, item_id, changes.score, now)

            gap = None
            recovered = False
            if changes.gap_severity is not None:
                gap = self._upsert_gap(
                    session, user_id, item_id, item.content_type, changes.gap_severity, now
                )
            elif changes.recover_gap:
                recovered = self._recover_gaps(session, user_id, item_id, now)
        return changes, gap, recovered

    def reset_scheduling(
        self, user_id: str, item_id: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Return an item's scheduling to its initial state so it is treated as new.

        The row is kept and deactivated until the next response reactivates it.
        """
        now = now or utcnow()
        with self._get_session() as session:
            row = self._scheduling_row(session, user_id, item_id)
            if row is None:
                return False
            row.ease_factor = INITIAL_EASE
            row.interval_days = 0
            row.review_count = 0
            row.consecutive_correct = 0
            row.times_correct = 0
            row.times_incorrect = 0
            row.next_review_at = now
            row.is_active = False
        logger.info(f"Reset scheduling for item {item_id} (user {user_id})")
        return True

    def due_items(
        self,
        user_id: str,
        scope: Optional[SessionScope] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[DueItem]:
        """Items whose review date has arrived, most overdue first."""
        now = as_naive_utc(now) if now else utcnow()
        with self._get_session() as session:
            stmt = (
                select(ItemScheduling)
                .join(PracticeItem, PracticeItem.id == ItemScheduling.item_id)
                .where(ItemScheduling.user_id == user_id)
                .where(ItemScheduling.is_active.is_(True))
                .where(ItemScheduling.next_review_at <= now)
                .order_by(ItemScheduling.next_review_at)
            )
            if scope is not None:
                stmt = stmt.where(self._scope_clause(scope))
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                DueItem(
                    item_id=row.item_id,
                    next_review_at=row.next_review_at,
                    days_overdue=days_overdue(row.next_review_at, now),
                    interval_days=row.interval_days,
                    ease_factor=row.ease_factor,
                )
                for row in session.scalars(stmt)
            ]

    def review_schedule(
        self, user_id: str, days_ahead: int = 7, now: Optional[datetime] = None
    ) -> dict[date, int]:
        """Upcoming reviews per day for the next `days_ahead` days (overdue counts as today)."""
        now = as_naive_utc(now) if now else utcnow()
        horizon = datetime.combine(now.date() + timedelta(days=days_ahead), datetime.min.time())
        with self._get_session() as session:
            stmt = (
                select(ItemScheduling.next_review_at)
                .where(ItemScheduling.user_id == user_id)
                .where(ItemScheduling.is_active.is_(True))
                .where(ItemScheduling.next_review_at < horizon)
            )
            counts: Counter[date] = Counter(
                max(due.date(), now.date()) for due in session.scalars(stmt)
            )
        return dict(sorted(counts.items()))

    def retention_stats(self, user_id: str, now: Optional[datetime] = None) -> RetentionStats:
        """
        Scheduling health for a learner.

        Mastered items have an interval of at least 21 days; struggling items
        have a low ease factor or missed their most recent review.
        """
        now = as_naive_utc(now) if now else utcnow()
        with self._get_session() as session:
            rows = list(
                session.scalars(
                    select(ItemScheduling)
                    .where(ItemScheduling.user_id == user_id)
                    .where(ItemScheduling.is_active.is_(True))
                )
            )
            stats = RetentionStats(total_items=len(rows))
            if not rows:
                return stats
            stats.due_now = sum(1 for r in rows if r.next_review_at <= now)
            stats.mastered = sum(1 for r in rows if r.interval_days >= MASTERED_INTERVAL_DAYS)
            stats.struggling = sum(
                1
                for r in rows
                if r.ease_factor < STRUGGLING_EASE
                or (r.review_count > 0 and r.consecutive_correct == 0)
            )
            stats.average_ease = sum(r.ease_factor for r in rows) / len(rows)
        stats.upcoming = self.review_schedule(user_id, now=now)
        return stats

    # =========================================================================
    # Learning gaps
    # =========================================================================

    def upsert_learning_gap(
        self,
        user_id: str,
        item_id: str,
        content_type: str,
        initial_severity: int = 5,
        now: Optional[datetime] = None,
        concept_id: Optional[str] = None,
    ) -> LearningGapRecord:
        """
        Open a gap for a failed item, or escalate the active one.

        A repeat failure raises severity by one (capped at 10) and counts the
        failure.
        """
        now = now or utcnow()
        with self._get_session() as session:
            return self._upsert_gap(
                session, user_id, item_id, content_type, initial_severity, now, concept_id
            )

    def recover_learning_gap(
        self, user_id: str, item_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Close every active gap on the item. Returns True if one was open."""
        with self._get_session() as session:
            return self._recover_gaps(session, user_id, item_id, now or utcnow())

    def active_gaps(self, user_id: str) -> list[LearningGapRecord]:
        with self._get_session() as session:
            stmt = (
                select(LearningGap)
                .where(LearningGap.user_id == user_id)
                .where(LearningGap.is_active.is_(True))
                .order_by(LearningGap.severity.desc())
            )
            return [self._to_gap(g) for g in session.scalars(stmt)]

    # =========================================================================
    # Progress
    # =========================================================================

    def response_history(
        self, user_id: str, course_id: Optional[str] = None
    ) -> list[ResponseRecord]:
        """Progress rows as analyzer input, optionally limited to one course."""
        with self._get_session() as session:
            stmt = select(UserProgress).where(UserProgress.user_id == user_id)
            if course_id is not None:
                stmt = stmt.join(PracticeItem, PracticeItem.id == UserProgress.item_id).where(
                    PracticeItem.course_id == course_id
                )
            return [
                ResponseRecord(
                    content_type=row.content_type,
                    score=row.score,
                    attempts=row.attempts,
                    last_attempt_at=row.last_attempt_at,
                    item_id=row.item_id,
                )
                for row in session.scalars(stmt)
            ]

    # =========================================================================
    # Study sessions
    # =========================================================================

    def create_session(
        self,
        user_id: str,
        scope: SessionScope,
        max_items: int,
        selection: SelectionResult,
        now: Optional[datetime] = None,
    ) -> tuple[UUID, datetime]:
        now = now or utcnow()
        metadata = selection.metadata
        with self._get_session() as session:
            row = StudySession(
                user_id=user_id,
                course_id=scope.course_id,
                unit_ids=sorted(scope.unit_ids),
                max_items=max_items,
                item_ids=selection.item_ids,
                gap_items=metadata.gap_items,
                review_items=metadata.review_items,
                new_items=metadata.new_items,
                priority=metadata.priority.value,
                status=SESSION_PLANNED,
                started_at=now,
            )
            session.add(row)
            session.flush()
            return row.id, row.started_at

    def complete_session(
        self,
        session_id: UUID,
        items_correct: int,
        items_incorrect: int,
        failed_item_ids: list[str],
        now: Optional[datetime] = None,
    ) -> SessionSummary:
        now = now or utcnow()
        with self._get_session() as session:
            row = session.get(StudySession, session_id)
            if row is None:
                raise StudyEngineError(f"Study session {session_id} not found")
            row.status = SESSION_COMPLETED
            row.items_correct = items_correct
            row.items_incorrect = items_incorrect
            row.failed_item_ids = list(failed_item_ids)
            row.completed_at = now
            return SessionSummary(
                session_id=row.id,
                items_correct=items_correct,
                items_incorrect=items_incorrect,
                failed_item_ids=list(failed_item_ids),
                completed_at=now,
            )

    def claim_session(self, session_id: UUID, user_id: str) -> None:
        """
        Move a planned session owned by `user_id` to 'completing'.

        The conditional update lets exactly one caller complete a session.

        Raises:
            StudyEngineError: the session does not exist, belongs to another
                learner or is no longer planned
        """
        with self._get_session() as session:
            result = session.execute(
                update(StudySession)
                .where(StudySession.id == session_id)
                .where(StudySession.user_id == user_id)
                .where(StudySession.status == SESSION_PLANNED)
                .values(status=SESSION_COMPLETING)
            )
            if result.rowcount == 1:
                return
            row = session.get(StudySession, session_id)
            if row is None:
                raise StudyEngineError(f"Study session {session_id} not found")
            if row.user_id != user_id:
                raise StudyEngineError(f"Study session {session_id} belongs to another learner")
            raise StudyEngineError(f"Study session {session_id} is already {row.status}")

    def release_session(self, session_id: UUID) -> None:
        """Return a claimed session to 'planned' after its completion failed."""
        with self._get_session() as session:
            session.execute(
                update(StudySession)
                .where(StudySession.id == session_id)
                .where(StudySession.status == SESSION_COMPLETING)
                .values(status=SESSION_PLANNED)
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _scope_clause(scope: SessionScope):
        clause = PracticeItem.course_id == scope.course_id
        if scope.unit_ids:
            clause = and_(clause, PracticeItem.unit_id.in_(sorted(scope.unit_ids)))
        return clause

    @staticmethod
    def _item_row(session: Session, item_id: str) -> PracticeItem:
        item = session.get(PracticeItem, item_id)
        if item is None:
            raise ItemNotFoundError(f"Practice item {item_id} not found")
        return item

    def _write_scheduling(
        self,
        session: Session,
        user_id: str,
        item_id: str,
        state: SchedulingState,
        now: datetime,
        row: Optional[ItemScheduling] = None,
    ) -> None:
        if row is None:
            row = self._scheduling_row(session, user_id, item_id)
        if row is None:
            row = ItemScheduling(user_id=user_id, item_id=item_id)
            session.add(row)
        row.ease_factor = state.ease_factor
        row.interval_days = state.interval_days
        row.next_review_at = state.next_review_at or now
        row.review_count = state.review_count
        row.consecutive_correct = state.consecutive_correct
        row.times_correct = state.times_correct
        row.times_incorrect = state.times_incorrect
        row.last_seen_at = state.last_seen_at or now
        row.is_active = True

    def _upsert_gap(
        self,
        session: Session,
        user_id: str,
        item_id: str,
        content_type: str,
        initial_severity: int,
        now: datetime,
        concept_id: Optional[str] = None,
    ) -> LearningGapRecord:
        gap = session.scalars(
            select(LearningGap)
            .where(LearningGap.user_id == user_id)
            .where(LearningGap.item_id == item_id)
            .where(LearningGap.content_type == content_type)
            .where(LearningGap.is_active.is_(True))
            .order_by(LearningGap.identified_at.desc())
        ).first()

        if gap is None:
            gap = LearningGap(
                user_id=user_id,
                item_id=item_id,
                content_type=content_type,
                concept_id=concept_id,
                severity=min(initial_severity, MAX_GAP_SEVERITY),
                failure_count=1,
                last_failure_at=now,
                identified_at=now,
                is_active=True,
            )
            session.add(gap)
            logger.info(f"Learning gap opened on {item_id} for {user_id} (severity {gap.severity})")
        else:
            gap.severity = min(gap.severity + 1, MAX_GAP_SEVERITY)
            gap.failure_count += 1
            gap.last_failure_at = now
            logger.debug(f"Learning gap on {item_id} escalated to severity {gap.severity}")

        session.flush()
        return self._to_gap(gap)

    @staticmethod
    def _recover_gaps(session: Session, user_id: str, item_id: str, now: datetime) -> bool:
        gaps = list(
            session.scalars(
                select(LearningGap)
                .where(LearningGap.user_id == user_id)
                .where(LearningGap.item_id == item_id)
                .where(LearningGap.is_active.is_(True))
            )
        )
        for gap in gaps:
            gap.is_active = False
            gap.recovered_at = now
        if gaps:
            logger.info(f"Learning gap on {item_id} recovered for {user_id}")
        return bool(gaps)

    @staticmethod
    def _scheduling_row(session: Session, user_id: str, item_id: str) -> Optional[ItemScheduling]:
        return session.scalars(
            select(ItemScheduling)
            .where(ItemScheduling.user_id == user_id)
            .where(ItemScheduling.item_id == item_id)
        ).first()

    @staticmethod
    def _upsert_progress(
        session: Session,
        user_id: str,
        content_type: str,
        item_id: str,
        score: int,
        now: datetime,
    ) -> None:
        row = session.scalars(
            select(UserProgress)
            .where(UserProgress.user_id == user_id)
            .where(UserProgress.content_type == content_type)
            .where(UserProgress.item_id == item_id)
        ).first()
        if row is None:
            row = UserProgress(
                user_id=user_id, content_type=content_type, item_id=item_id, attempts=0
            )
            session.add(row)
        row.status = "completed"
        row.score = score
        row.attempts = (row.attempts or 0) + 1
        row.last_attempt_at = now

    @staticmethod
    def _to_candidate(row: PracticeItem) -> CandidateItem:
        return CandidateItem(
            item_id=row.id,
            course_id=row.course_id,
            unit_id=row.unit_id,
            content_type=row.content_type,
            difficulty=row.difficulty,
        )

    @staticmethod
    def _to_state(row: ItemScheduling) -> SchedulingState:
        return SchedulingState(
            ease_factor=row.ease_factor,
            interval_days=row.interval_days,
            review_count=row.review_count,
            consecutive_correct=row.consecutive_correct,
            times_correct=row.times_correct,
            times_incorrect=row.times_incorrect,
            next_review_at=row.next_review_at,
            last_seen_at=row.last_seen_at,
        )

    @staticmethod
    def _to_gap(gap: LearningGap) -> LearningGapRecord:
        return LearningGapRecord(
            gap_id=gap.id,
            user_id=gap.user_id,
            item_id=gap.item_id,
            content_type=gap.content_type,
            severity=gap.severity,
            failure_count=gap.failure_count,
            is_active=gap.is_active,
            last_failure_at=gap.last_failure_at,
            recovered_at=gap.recovered_at,
        )
