"""
Integration fixtures: an in-memory SQLite database per test.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from config import Settings
from studyengine.db.database import init_db, scoped_session_factory
from studyengine.generation import ConfigStore
from studyengine.study import CandidateItem, LearningRepository


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return scoped_session_factory(engine)


@pytest.fixture
def config_store(session_factory):
    return ConfigStore(session_factory)


@pytest.fixture
def repository(session_factory):
    return LearningRepository(session_factory)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        session_max_items=20,
        session_lock_timeout_seconds=0.5,
        gap_base_severity=5,
        gap_slow_response_ms=30000,
        gap_recovery_streak=3,
    )


@pytest.fixture
def course_items(repository):
    """Six cuecards in unit u1 and four in unit u2 of course c1, plus one item in c2."""
    items = [CandidateItem(f"c1-u1-{i}", "c1", "u1", difficulty=5.0) for i in range(6)]
    items += [CandidateItem(f"c1-u2-{i}", "c1", "u2", difficulty=5.0) for i in range(4)]
    items.append(CandidateItem("c2-u1-0", "c2", "u1", difficulty=5.0))
    repository.add_items(items)
    return items
