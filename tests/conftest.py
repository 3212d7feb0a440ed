"""Pytest fixtures and configuration for records inventory tests."""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from recinventory.database.database import Base, build_session_factory, init_db, set_sqlite_pragmas
from recinventory.database.repository import AuditEventRepository, SeriesRepository
from recinventory.database.transaction import TransactionCoordinator
from recinventory.service import InventoryService


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_ACTOR = "test-user"


def _memory_engine():
    """Engine over a fresh in-memory SQLite database with the schema created.

    StaticPool keeps one connection, so every session sees the same database.
    """
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    event.listen(engine, "connect", set_sqlite_pragmas)
    init_db(engine_override=engine)
    return engine


@pytest.fixture(scope="function")
def db_engine():
    engine = _memory_engine()
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def target_service():
    """A second InventoryService over its own database, for cross-store imports."""
    engine = _memory_engine()
    try:
        yield InventoryService(TransactionCoordinator(build_session_factory(engine)), actor="importer")
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory):
    """A plain session for repository-level tests (the test decides when to commit)."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def series_repository(db_session: Session):
    """Create a SeriesRepository instance for testing."""
    return SeriesRepository(db_session)


@pytest.fixture
def audit_repository(db_session: Session):
    return AuditEventRepository(db_session)


@pytest.fixture
def coordinator(session_factory):
    return TransactionCoordinator(session_factory)


@pytest.fixture
def service(coordinator):
    """InventoryService over the test database."""
    return InventoryService(coordinator, actor=TEST_ACTOR)


@pytest.fixture
def sample_record_base():
    """Base series record for creating test records.

    Returns a dict with default attributes that can be overridden.
    """
    return {
        "schedule_number": "25-012",
        "item_number": "1",
        "record_series_title": "Board Meeting Minutes",
        "division": "Administration",
        "notes": None,
        "dates_covered_start": "1998",
        "dates_covered_end": "present",
        "retention_text": "Retain permanently in agency",
        "retention_term": None,
        "retention_trigger": None,
        "volume_paper_cubic_feet": 2.5,
        "volume_electronic_bytes": 1048576,
        "tags": ["governance", "minutes"],
        "media_types": ["paper", "electronic"],
        "omb_or_statute_refs": [],
        "related_series": [],
        "ui_extras": {"seriesDescription": "Minutes of regular and special board meetings"},
    }


@pytest.fixture
def make_record(sample_record_base):
    """Factory: ``make_record(item_number="2", title=...)`` returns a new record dict."""
    def _make(**overrides):
        return {**sample_record_base, **overrides}
    return _make


@pytest.fixture
def schedule_records(make_record):
    """Three series under schedule 25-012."""
    return [
        make_record(item_number="1", record_series_title="Board Meeting Minutes"),
        make_record(item_number="2", record_series_title="Board Meeting Agendas", tags=["governance"]),
        make_record(item_number="3", record_series_title="Correspondence", division="Finance", tags=[]),
    ]


@pytest.fixture
def test_client(service):
    """Create a FastAPI test client with the service dependency overridden."""
    from recinventory.api.app import app, get_service

    app.dependency_overrides[get_service] = lambda: service

    with TestClient(app) as client:
        yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()
