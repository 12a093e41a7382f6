"""
Pytest fixtures for testing
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base
from app.infrastructure.db.models import User, Patient
from app.utils.clock import fixed_clock


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    # StaticPool: one shared connection, so TestClient worker threads see the same DB
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite has no JSONB, remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def now() -> datetime:
    """Fixed 'now' for all time-dependent code: Monday 2024-01-01 00:00 UTC"""
    return datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return fixed_clock(now)


@pytest.fixture
def utc():
    """Practice timezone for application tests (keeps wall-clock == UTC)"""
    return timezone.utc


@pytest.fixture
def user(db_session) -> User:
    u = User(email="terapeuta@example.com")
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture
def patient(db_session, user) -> Patient:
    p = Patient(user_id=user.id, name="Ana Souza")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def weekly_monday_rule() -> dict:
    """Every Monday 09:00 from 2024-01-01"""
    return {
        "frequency": "weekly",
        "interval": 1,
        "daysOfWeek": [1],
        "startDate": "2024-01-01",
        "startTime": "09:00",
    }
