"""
Configuration Store.

Persists generation configuration records and reads back the active record
for each (source, scope):
- save(): deactivate the previous active record and insert the new one
  atomically; adaptive-algorithm records are appended, never deactivated
- get_active() / require_active(): the active record or None / ConfigNotFoundError
- history() and usage_analytics() for reporting

Rows are validated into ConfigurationRecord at this boundary. A row whose
payload no longer validates is logged and treated as absent.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studyengine.clock import utcnow
from studyengine.db.database import SessionFactory, session_scope
from studyengine.db.models import GenerationConfigRecord
from studyengine.exceptions import ConfigConflictError, ConfigNotFoundError
from studyengine.generation.models import (
    SOURCE_SCOPE_FIELDS,
    ConfigScope,
    ConfigurationRecord,
    ConfigurationSource,
    GenerationConfig,
    GenerationSettings,
)

if TYPE_CHECKING:
    from studyengine.adaptive.models import AdaptiveGenerationConfig

# Insert attempts per save: first try plus one retry after a lost race
_SAVE_ATTEMPTS = 2


@dataclass
class ConfigUsageAnalytics:
    """Difficulty/focus usage across stored configuration records."""

    total_configs: int = 0
    difficulty_distribution: dict[str, int] = field(default_factory=dict)
    focus_distribution: dict[str, int] = field(default_factory=dict)
    source_distribution: dict[str, int] = field(default_factory=dict)
    most_common_pattern: Optional[str] = None


class ConfigStore:
    """Read and write generation configuration records."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or session_scope

    def _get_session(self):
        return self._session_factory()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_active(
        self, source: ConfigurationSource, scope: ConfigScope
    ) -> Optional[ConfigurationRecord]:
        """
        Latest active record for a source and scope.

        Only the identifiers the source is keyed by are considered, so a unit
        scope also finds the course default of its course.

        Returns:
            The record, or None when the scope lacks identifiers the source
            needs or nothing active is stored
        """
        if not scope.covers(source):
            return None
        scope_key = scope.for_source(source).key

        with self._get_session() as session:
            stmt = (
                select(GenerationConfigRecord)
                .where(GenerationConfigRecord.config_source == source.value)
                .where(GenerationConfigRecord.scope_key == scope_key)
                .where(GenerationConfigRecord.is_active.is_(True))
                .order_by(GenerationConfigRecord.applied_at.desc())
            )
            for row in session.scalars(stmt):
                record = self._to_record(row)
                if record is not None:
                    return record
        return None

    def require_active(
        self, source: ConfigurationSource, scope: ConfigScope
    ) -> ConfigurationRecord:
        record = self.get_active(source, scope)
        if record is None:
            raise ConfigNotFoundError(source.value, self._scope_key_or_raw(source, scope))
        return record

    def active_records(
        self,
        scope: ConfigScope,
        exclude: Iterable[ConfigurationSource] = (),
    ) -> list[ConfigurationRecord]:
        """The active record of every source that applies to the scope."""
        excluded = set(exclude)
        records = []
        for source in ConfigurationSource:
            if source in excluded:
                continue
            record = self.get_active(source, scope)
            if record is not None:
                records.append(record)
        return records

    def history(
        self,
        source: ConfigurationSource,
        scope: ConfigScope,
        limit: int = 20,
    ) -> list[ConfigurationRecord]:
        """All records (active or not) for a source and scope, newest first."""
        scope_key = scope.for_source(source).key
        with self._get_session() as session:
            stmt = (
                select(GenerationConfigRecord)
                .where(GenerationConfigRecord.config_source == source.value)
                .where(GenerationConfigRecord.scope_key == scope_key)
                .order_by(GenerationConfigRecord.applied_at.desc())
                .limit(limit)
            )
            records = [self._to_record(row) for row in session.scalars(stmt)]
        return [r for r in records if r is not None]

    # =========================================================================
    # Writes
    # =========================================================================

    def save(
        self,
        source: ConfigurationSource,
        scope: ConfigScope,
        payload: GenerationSettings,
        actor: Optional[str] = None,
    ) -> UUID:
        """
        Store a new active record, replacing the previous one.

        Args:
            source: Configuration source
            scope: Scope identifiers (narrowed to what the source is keyed by)
            payload: Settings to store; unset fields fall through when merged
            actor: Who made the change

        Returns:
            The new record id

        Raises:
            ValueError: scope lacks identifiers the source needs
            ConfigConflictError: a concurrent writer won twice in a row
        """
        if source == ConfigurationSource.ADAPTIVE_ALGORITHM:
            return self._insert(source, scope.for_source(source), payload.present_fields(), actor)

        narrowed = scope.for_source(source)
        for attempt in range(1, _SAVE_ATTEMPTS + 1):
            try:
                with self._get_session() as session:
                    self._deactivate_previous(session, source, narrowed.key)
                    row = self._new_row(source, narrowed, payload.present_fields(), actor)
                    session.add(row)
                    session.flush()
                    record_id = row.id
            except IntegrityError:
                logger.warning(
                    f"Concurrent {source.value} save for '{narrowed.key}' "
                    f"(attempt {attempt}/{_SAVE_ATTEMPTS})"
                )
                continue
            logger.info(f"Saved {source.value} configuration for '{narrowed.key}'")
            return record_id

        raise ConfigConflictError(source.value, narrowed.key)

    def append_adaptive(
        self,
        scope: ConfigScope,
        adaptive: AdaptiveGenerationConfig,
        actor: Optional[str] = None,
    ) -> UUID:
        """
        Append an adaptive-algorithm record with its adaptation metadata.

        Adaptive records form an insert-only log; the most recent one wins.
        """
        source = ConfigurationSource.ADAPTIVE_ALGORITHM
        narrowed = scope.for_source(source)
        profile = adaptive.profile
        return self._insert(
            source,
            narrowed,
            adaptive.config.model_dump(mode="json"),
            actor,
            adaptation_reason=adaptive.adaptation_reason,
            user_performance_level=profile.performance_level.value,
            learning_gaps=list(profile.learning_gaps),
            adaptive_factors={
                "preferred_difficulty": profile.preferred_difficulty.value,
                "content_type_engagement": dict(profile.content_type_engagement),
                "last_score": profile.last_score,
                "streak_count": profile.streak_count,
            },
        )

    def _insert(
        self,
        source: ConfigurationSource,
        scope: ConfigScope,
        config_data: dict,
        actor: Optional[str],
        **metadata,
    ) -> UUID:
        with self._get_session() as session:
            row = self._new_row(source, scope, config_data, actor, **metadata)
            session.add(row)
            session.flush()
            record_id = row.id
        logger.debug(f"Appended {source.value} configuration for '{scope.key}'")
        return record_id

    def _deactivate_previous(self, session: Session, source: ConfigurationSource, scope_key: str) -> None:
        session.execute(
            update(GenerationConfigRecord)
            .where(GenerationConfigRecord.config_source == source.value)
            .where(GenerationConfigRecord.scope_key == scope_key)
            .where(GenerationConfigRecord.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
        )

    @staticmethod
    def _new_row(
        source: ConfigurationSource,
        scope: ConfigScope,
        config_data: dict,
        actor: Optional[str],
        **metadata,
    ) -> GenerationConfigRecord:
        now = utcnow()
        return GenerationConfigRecord(
            config_source=source.value,
            institution_id=scope.institution_id,
            course_id=scope.course_id,
            unit_id=scope.unit_id,
            user_id=scope.user_id,
            scope_key=scope.key,
            config_data=GenerationSettings.model_validate(config_data).model_dump(
                mode="json", exclude_none=True
            ),
            is_active=True,
            applied_at=now,
            created_at=now,
            updated_at=now,
            created_by=actor,
            **metadata,
        )

    # =========================================================================
    # Analytics
    # =========================================================================

    def usage_analytics(self, user_id: Optional[str] = None) -> ConfigUsageAnalytics:
        """
        Count difficulty and focus patterns across stored records.

        Unset fields count as the hardcoded default, since that is what a
        merge would have produced for them.
        """
        defaults = GenerationConfig()
        with self._get_session() as session:
            stmt = select(GenerationConfigRecord)
            if user_id is not None:
                stmt = stmt.where(GenerationConfigRecord.user_id == user_id)
            rows = list(session.scalars(stmt))

            difficulties: Counter[str] = Counter()
            focuses: Counter[str] = Counter()
            sources: Counter[str] = Counter()
            patterns: Counter[str] = Counter()
            for row in rows:
                data = row.config_data or {}
                difficulty = data.get("difficulty", defaults.difficulty.value)
                focus = data.get("focus", defaults.focus.value)
                difficulties[difficulty] += 1
                focuses[focus] += 1
                sources[row.config_source] += 1
                patterns[f"{difficulty}-{focus}"] += 1

        most_common = patterns.most_common(1)
        return ConfigUsageAnalytics(
            total_configs=len(rows),
            difficulty_distribution=dict(difficulties),
            focus_distribution=dict(focuses),
            source_distribution=dict(sources),
            most_common_pattern=most_common[0][0] if most_common else None,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _to_record(row: GenerationConfigRecord) -> Optional[ConfigurationRecord]:
        try:
            source = ConfigurationSource(row.config_source)
            scope = ConfigScope(
                **{name: getattr(row, name) for name in SOURCE_SCOPE_FIELDS[source]}
            )
            return ConfigurationRecord(
                id=row.id,
                source=source,
                scope=scope,
                payload=GenerationSettings.model_validate(row.config_data or {}),
                is_active=row.is_active,
                applied_at=row.applied_at,
                created_by=row.created_by,
                adaptation_reason=row.adaptation_reason,
            )
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring unreadable configuration record {row.id}: {e}")
            return None

    @staticmethod
    def _scope_key_or_raw(source: ConfigurationSource, scope: ConfigScope) -> str:
        return scope.for_source(source).key if scope.covers(source) else scope.key
