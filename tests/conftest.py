"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

import pytest
from sqlalchemy.orm import sessionmaker

from shiai.db.models import (
    Base,
    Category,
    Competitor,
    JudgeAssignment,
    Registration,
)
from shiai.db.session import create_db_engine
from shiai.events import RecordingPublisher


@pytest.fixture(scope="session")
def test_engine():
    """
    Create a test database engine.

    Uses SQLite in-memory for fast tests that don't need
    PostgreSQL-specific features.
    """
    return create_db_engine("sqlite:///:memory:")


@pytest.fixture(scope="session")
def tables(test_engine):
    """
    Create all tables for testing.

    This fixture runs once per test session.
    """
    Base.metadata.create_all(test_engine)
    yield
    Base.metadata.drop_all(test_engine)


@pytest.fixture
def db_session(test_engine, tables):
    """
    Create a database session for a test.

    Each test gets its own session with automatic rollback,
    ensuring tests don't affect each other.
    """
    connection = test_engine.connect()
    transaction = connection.begin()

    Session = sessionmaker(bind=connection, autoflush=False)
    session = Session()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_category(db_session):
    def _make(discipline="sparring", name=None, tatami_number=1):
        category = Category(
            name=name or f"Senior {discipline.title()}",
            discipline=discipline,
            tatami_number=tatami_number,
        )
        db_session.add(category)
        db_session.flush()
        return category

    return _make


@pytest.fixture
def make_competitor(db_session):
    def _make(category, name=None, club=None, approval_status="Approved", payment_status="Paid", register=True):
        competitor = Competitor(category_id=category.id, name=name or "Competitor", club=club)
        db_session.add(competitor)
        db_session.flush()
        if register:
            db_session.add(
                Registration(
                    competitor_id=competitor.id,
                    category_id=category.id,
                    approval_status=approval_status,
                    payment_status=payment_status,
                )
            )
            db_session.flush()
        return competitor

    return _make


@pytest.fixture
def make_competitors(make_competitor):
    def _make(category, count, **kwargs):
        return [make_competitor(category, name=f"Competitor {i}", **kwargs) for i in range(1, count + 1)]

    return _make


@pytest.fixture
def make_judge(db_session):
    def _make(category, judge_id, confirmed=True, role="Judge"):
        assignment = JudgeAssignment(
            judge_id=judge_id,
            category_id=category.id,
            judge_role=role,
            is_confirmed=confirmed,
        )
        db_session.add(assignment)
        db_session.flush()
        return assignment

    return _make


@pytest.fixture
def make_panel(make_judge):
    """Confirm judges 1..count on a category's tatami."""
    def _make(category, count=5):
        return [make_judge(category, judge_id) for judge_id in range(1, count + 1)]

    return _make


@pytest.fixture
def file_engine(tmp_path):
    """
    A file-backed SQLite engine with every table created.

    For tests that commit or use more than one thread, which the shared
    in-memory engine cannot serve.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'shiai.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
