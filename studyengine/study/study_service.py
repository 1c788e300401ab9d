"""
Study Service.

Entry point for session and generation flows:
- Resolve the effective / adaptive generation config for a learner and unit
- Submit generation jobs with the resolved config
- Plan study sessions with the smart item selector
- Record responses (SM-2 update, progress, learning gaps)
- Complete sessions with best-effort batched scheduling updates
"""

from __future__ import annotations

import random
import threading
from collections.abc import Iterable, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
from uuid import UUID

from loguru import logger

from config import Settings, get_settings
from studyengine.adaptive.config_generator import AdaptiveConfigGenerator
from studyengine.adaptive.models import AdaptiveGenerationConfig
from studyengine.adaptive.performance_analyzer import PerformanceAnalyzer
from studyengine.clock import as_naive_utc, utcnow
from studyengine.exceptions import SessionInProgressError
from studyengine.generation.config_store import ConfigStore
from studyengine.generation.jobs import GenerationJobSubmitter, HttpGenerationJobClient, JobHandle
from studyengine.generation.merge import PriorityMerger
from studyengine.generation.models import ConfigScope, ConfigurationSource, GenerationConfig
from studyengine.study.item_selector import SmartItemSelector
from studyengine.study.models import (
    Feedback,
    ResponseEvent,
    SessionPlan,
    SessionScope,
    SessionSummary,
)
from studyengine.study.repository import LearningRepository
from studyengine.study.spaced_repetition import ReviewOutcome, SpacedRepetitionUpdater


class SessionLockRegistry:
    """
    One lock per (user, course, units) key while anyone holds or waits on it.

    Entries are reference counted and dropped when the last user releases.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, list] = {}  # key -> [lock, users]

    @property
    def key_count(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, key: tuple) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: tuple) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: tuple, timeout: float) -> Iterator[None]:
        lock = self._acquire_entry(key)
        try:
            if not lock.acquire(timeout=timeout):
                raise SessionInProgressError(f"A session start is already running for {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release_entry(key)


_session_locks = SessionLockRegistry()


class StudyService:
    """
    High-level service for one learner.

    Coordinates the config store, priority merge, performance analyzer,
    adaptive generator, item selector and SM-2 updater. Every collaborator
    can be injected; defaults use the configured database.
    """

    def __init__(
        self,
        user_id: str,
        *,
        config_store: Optional[ConfigStore] = None,
        repository: Optional[LearningRepository] = None,
        merger: Optional[PriorityMerger] = None,
        analyzer: Optional[PerformanceAnalyzer] = None,
        generator: Optional[AdaptiveConfigGenerator] = None,
        selector: Optional[SmartItemSelector] = None,
        updater: Optional[SpacedRepetitionUpdater] = None,
        job_submitter: Optional[GenerationJobSubmitter] = None,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
        lock_registry: Optional[SessionLockRegistry] = None,
    ):
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.config_store = config_store or ConfigStore()
        self.repository = repository or LearningRepository()
        self.merger = merger or PriorityMerger()
        self.analyzer = analyzer or PerformanceAnalyzer()
        self.generator = generator or AdaptiveConfigGenerator()
        self.selector = selector or SmartItemSelector(rng=rng)
        self.updater = updater or SpacedRepetitionUpdater(
            self.repository,
            gap_base_severity=self.settings.gap_base_severity,
            gap_slow_response_ms=self.settings.gap_slow_response_ms,
            gap_recovery_streak=self.settings.gap_recovery_streak,
        )
        self._job_submitter = job_submitter
        self._locks = lock_registry if lock_registry is not None else _session_locks

    # =========================================================================
    # Generation configuration
    # =========================================================================

    def _scope(
        self, course_id: str, unit_id: Optional[str], institution_id: Optional[str]
    ) -> ConfigScope:
        return ConfigScope(
            institution_id=institution_id,
            course_id=course_id,
            unit_id=unit_id,
            user_id=self.user_id,
        )

    def effective_config(
        self,
        course_id: str,
        unit_id: Optional[str] = None,
        institution_id: Optional[str] = None,
    ) -> GenerationConfig:
        """Merge every active source for the scope, including the latest adaptive record."""
        records = self.config_store.active_records(self._scope(course_id, unit_id, institution_id))
        return self.merger.merge(records)

    def resolve_generation_config(
        self,
        course_id: str,
        unit_id: str,
        institution_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> AdaptiveGenerationConfig:
        """
        Build, persist and return the adaptive config for a unit.

        Previous adaptive records are left out of the merge so adaptations
        never compound on themselves.
        """
        scope = self._scope(course_id, unit_id, institution_id)
        records = self.config_store.active_records(
            scope, exclude=(ConfigurationSource.ADAPTIVE_ALGORITHM,)
        )
        merged = self.merger.merge(records)

        outcome = self.analyzer.analyze(self.repository.response_history(self.user_id, course_id))
        if not outcome.succeeded:
            logger.warning(f"Using neutral profile for {self.user_id}: {outcome.failure}")
        adaptive = self.generator.generate(merged, outcome.profile_or_default())

        self.config_store.append_adaptive(scope, adaptive, actor=actor or self.user_id)
        logger.info(
            f"Resolved generation config for {self.user_id} on {course_id}/{unit_id}: "
            f"{adaptive.adaptation_reason}"
        )
        return adaptive

    def request_generation(
        self,
        course_id: str,
        unit_id: str,
        material_refs: Sequence[str],
        institution_id: Optional[str] = None,
    ) -> JobHandle:
        """Resolve the adaptive config and submit a generation job with it."""
        adaptive = self.resolve_generation_config(course_id, unit_id, institution_id)
        if self._job_submitter is not None:
            return self._job_submitter.submit_generation_job(
                unit_id, course_id, material_refs, adaptive.config
            )
        with HttpGenerationJobClient.from_settings() as client:
            return client.submit_generation_job(unit_id, course_id, material_refs, adaptive.config)

    # =========================================================================
    # Study sessions
    # =========================================================================

    def start_session(
        self,
        course_id: str,
        unit_ids: Optional[Iterable[str]] = None,
        max_items: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SessionPlan:
        """
        Select and persist a study session.

        Raises:
            SessionInProgressError: another start for the same scope did not
                finish within the lock timeout
        """
        scope = SessionScope(course_id=course_id, unit_ids=frozenset(unit_ids or ()))
        if max_items is None:
            max_items = self.settings.session_max_items
        now = as_naive_utc(now) if now else utcnow()
        key = (self.user_id, course_id, tuple(sorted(scope.unit_ids)))

        with self._locks.hold(key, timeout=self.settings.session_lock_timeout_seconds):
            pool = self.repository.candidate_pool(scope)
            selection = self.selector.select(
                pool,
                scope,
                max_items,
                gap_severities=self.repository.gap_severities(self.user_id, scope),
                days_overdue=self.repository.overdue_days(self.user_id, scope, now),
                new_item_ids=self.repository.new_item_ids(self.user_id, scope),
            )
            session_id, started_at = self.repository.create_session(
                self.user_id, scope, max_items, selection, now
            )

        logger.info(
            f"Planned session {session_id} for {self.user_id}: {len(selection)} items "
            f"({selection.metadata.priority.value})"
        )
        return SessionPlan(
            session_id=session_id,
            user_id=self.user_id,
            scope=scope,
            selection=selection,
            started_at=started_at,
        )

    def record_response(
        self,
        item_id: str,
        feedback: Feedback | str,
        time_spent_ms: int,
        now: Optional[datetime] = None,
    ) -> ReviewOutcome:
        """Apply one response immediately."""
        event = ResponseEvent(item_id=item_id, feedback=Feedback(feedback), time_spent_ms=time_spent_ms)
        return self.updater.apply(self.user_id, event, now)

    def complete_session(
        self,
        session_id: UUID,
        responses: Iterable[ResponseEvent],
        now: Optional[datetime] = None,
    ) -> SessionSummary:
        """
        Apply a session's responses and mark it completed.

        Scheduling updates are independent per item; failed items are listed
        in the summary and the session is completed regardless. A lost
        database connection propagates and leaves the session planned.

        Raises:
            StudyEngineError: the session is unknown, belongs to another
                learner or was already completed
        """
        responses = list(responses)
        now = as_naive_utc(now) if now else utcnow()
        self.repository.claim_session(session_id, self.user_id)
        try:
            report = self.updater.apply_batch(self.user_id, responses, now)
        except Exception:
            self.repository.release_session(session_id)
            raise
        if report.failures:
            logger.warning(
                f"Session {session_id}: {len(report.failures)} scheduling updates failed"
            )

        correct = sum(1 for r in responses if r.is_correct)
        return self.repository.complete_session(
            session_id,
            items_correct=correct,
            items_incorrect=len(responses) - correct,
            failed_item_ids=report.failed_item_ids,
            now=now,
        )
