"""
Integration tests for ConfigStore against SQLite.
"""

import pytest
from sqlalchemy import select

from studyengine.adaptive import AdaptiveConfigGenerator, PerformanceLevel, PerformanceProfile
from studyengine.db.models import GenerationConfigRecord
from studyengine.exceptions import ConfigConflictError, ConfigNotFoundError
from studyengine.generation import (
    ConfigScope,
    ConfigStore,
    ConfigurationSource,
    Difficulty,
    GenerationConfig,
    GenerationSettings,
    PriorityMerger,
)

SCOPE = ConfigScope(institution_id="i1", course_id="c1", unit_id="u3", user_id="alice")


class TestSaveAndRead:
    def test_get_active_returns_none_when_missing(self, config_store):
        assert config_store.get_active(ConfigurationSource.COURSE_DEFAULT, SCOPE) is None

    def test_require_active_raises_not_found(self, config_store):
        with pytest.raises(ConfigNotFoundError):
            config_store.require_active(ConfigurationSource.COURSE_DEFAULT, SCOPE)

    def test_save_then_read(self, config_store):
        record_id = config_store.save(
            ConfigurationSource.COURSE_DEFAULT,
            SCOPE,
            GenerationSettings(cuecards_count=15, difficulty="advanced"),
            actor="instructor",
        )
        record = config_store.require_active(ConfigurationSource.COURSE_DEFAULT, SCOPE)
        assert record.id == record_id
        assert record.scope == ConfigScope(course_id="c1")
        assert record.payload.cuecards_count == 15
        assert record.payload.mcqs_count is None
        assert record.created_by == "instructor"

    def test_save_replaces_previous_active(self, config_store, session_factory):
        source = ConfigurationSource.UNIT_OVERRIDE
        config_store.save(source, SCOPE, GenerationSettings(mcqs_count=5))
        config_store.save(source, SCOPE, GenerationSettings(mcqs_count=8))

        assert config_store.get_active(source, SCOPE).payload.mcqs_count == 8
        with session_factory() as session:
            rows = list(
                session.scalars(
                    select(GenerationConfigRecord).where(
                        GenerationConfigRecord.config_source == source.value
                    )
                )
            )
        assert len(rows) == 2
        assert sum(1 for r in rows if r.is_active) == 1
        assert len(config_store.history(source, SCOPE)) == 2

    def test_scopes_are_independent(self, config_store):
        source = ConfigurationSource.COURSE_DEFAULT
        config_store.save(source, ConfigScope(course_id="c1"), GenerationSettings(mcqs_count=5))
        config_store.save(source, ConfigScope(course_id="c2"), GenerationSettings(mcqs_count=9))
        assert config_store.get_active(source, SCOPE).payload.mcqs_count == 5

    def test_save_requires_scope_identifiers(self, config_store):
        with pytest.raises(ValueError):
            config_store.save(
                ConfigurationSource.UNIT_OVERRIDE,
                ConfigScope(course_id="c1"),
                GenerationSettings(mcqs_count=5),
            )

    def test_corrupt_payload_is_treated_as_missing(self, config_store, session_factory):
        config_store.save(
            ConfigurationSource.COURSE_DEFAULT, SCOPE, GenerationSettings(mcqs_count=5)
        )
        with session_factory() as session:
            row = session.scalars(select(GenerationConfigRecord)).one()
            row.config_data = {"mcqs_count": "lots"}
        assert config_store.get_active(ConfigurationSource.COURSE_DEFAULT, SCOPE) is None


class TestConflicts:
    def test_lost_race_raises_conflict_after_retry(self, session_factory):
        class RacingStore(ConfigStore):
            """Skips deactivation, as if another writer committed in between."""

            def _deactivate_previous(self, session, source, scope_key):
                return None

        store = ConfigStore(session_factory)
        store.save(ConfigurationSource.COURSE_DEFAULT, SCOPE, GenerationSettings(mcqs_count=5))

        with pytest.raises(ConfigConflictError):
            RacingStore(session_factory).save(
                ConfigurationSource.COURSE_DEFAULT, SCOPE, GenerationSettings(mcqs_count=6)
            )
        assert store.get_active(ConfigurationSource.COURSE_DEFAULT, SCOPE).payload.mcqs_count == 5


class TestAdaptiveRecords:
    def _adaptive(self, cuecards):
        profile = PerformanceProfile(
            performance_level=PerformanceLevel.STRUGGLING,
            learning_gaps=("cuecard",),
            preferred_difficulty=Difficulty.BEGINNER,
        )
        return AdaptiveConfigGenerator().generate(GenerationConfig(cuecards_count=cuecards), profile)

    def test_adaptive_records_are_insert_only(self, config_store, session_factory):
        config_store.append_adaptive(SCOPE, self._adaptive(10))
        config_store.append_adaptive(SCOPE, self._adaptive(12))

        with session_factory() as session:
            rows = list(session.scalars(select(GenerationConfigRecord)))
        assert len(rows) == 2
        assert all(r.is_active for r in rows)
        assert rows[0].user_performance_level == "struggling"
        assert rows[0].learning_gaps == ["cuecard"]
        assert "struggling" in rows[0].adaptation_reason

    def test_latest_adaptive_record_wins_merge(self, config_store):
        config_store.append_adaptive(SCOPE, self._adaptive(10))  # 25 cuecards
        config_store.append_adaptive(SCOPE, self._adaptive(12))  # 27 cuecards

        merged = PriorityMerger().merge(config_store.active_records(SCOPE))
        assert merged.cuecards_count == 27

    def test_active_records_can_exclude_sources(self, config_store):
        config_store.append_adaptive(SCOPE, self._adaptive(10))
        config_store.save(ConfigurationSource.COURSE_DEFAULT, SCOPE, GenerationSettings(mcqs_count=4))

        records = config_store.active_records(
            SCOPE, exclude=(ConfigurationSource.ADAPTIVE_ALGORITHM,)
        )
        assert [r.source for r in records] == [ConfigurationSource.COURSE_DEFAULT]


class TestMergeScenario:
    def test_course_default_over_system_default(self, config_store):
        config_store.save(
            ConfigurationSource.SYSTEM_DEFAULT, ConfigScope(), GenerationSettings(cuecards_count=10)
        )
        config_store.save(
            ConfigurationSource.COURSE_DEFAULT,
            SCOPE,
            GenerationSettings(cuecards_count=15, difficulty="advanced"),
        )
        merged = PriorityMerger().merge(config_store.active_records(SCOPE))
        assert merged == GenerationConfig(cuecards_count=15, difficulty="advanced")


class TestAnalytics:
    def test_usage_analytics(self, config_store):
        config_store.save(
            ConfigurationSource.COURSE_DEFAULT, SCOPE, GenerationSettings(difficulty="advanced")
        )
        config_store.save(
            ConfigurationSource.USER_PREFERENCE,
            SCOPE,
            GenerationSettings(difficulty="advanced", focus="practical"),
        )
        config_store.save(
            ConfigurationSource.COURSE_DEFAULT,
            ConfigScope(course_id="c2"),
            GenerationSettings(difficulty="advanced"),
        )
        config_store.save(ConfigurationSource.UNIT_OVERRIDE, SCOPE, GenerationSettings(mcqs_count=3))

        analytics = config_store.usage_analytics()
        assert analytics.total_configs == 4
        assert analytics.difficulty_distribution == {"advanced": 3, "intermediate": 1}
        assert analytics.focus_distribution == {"mixed": 3, "practical": 1}
        assert analytics.source_distribution["course_default"] == 2
        assert analytics.most_common_pattern == "advanced-mixed"

        assert config_store.usage_analytics(user_id="alice").total_configs == 1
