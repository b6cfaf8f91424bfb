# backend/tests/conftest.py
"""
Pytest configuration for the TutorLink backend.

Every test gets a fresh in-memory SQLite database with the full schema, so
commits made by the services under test never leak between tests.
"""

import os

# Set testing mode BEFORE any tutorlink imports
os.environ["CI"] = "1"
os.environ["IS_TESTING"] = "true"
os.environ["SESSION_LOCK_ENABLED"] = "false"
os.environ["POINTS_LEDGER_MODE"] = "compensating"

from datetime import timedelta
from typing import Callable, Generator

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tutorlink.api.dependencies.database import get_db
from tutorlink.core.session_lock import SessionSlotLock
from tutorlink.core.timezone_utils import utc_now
from tutorlink.database import Base
from tutorlink.database.engines import build_engine
from tutorlink.main import app
import tutorlink.models  # noqa: F401
from tutorlink.models.tutoring_session import SessionStatus, TutoringSession
from tutorlink.models.user import User
from tutorlink.services.scheduling_service import SchedulingService

UserFactory = Callable[..., User]
SessionFactory = Callable[..., TutoringSession]


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = build_engine("sqlite+pysqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    """Session configured like SessionLocal, bound to the per-test engine."""
    TestingSessionLocal = sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False, future=True
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def user_factory(db: Session) -> UserFactory:
    counter = {"n": 0}

    def _create(
        *,
        balance: int = 100,
        is_tutor: bool = False,
        banned: bool = False,
        name: str | None = None,
    ) -> User:
        counter["n"] += 1
        label = name or f"user{counter['n']}"
        user = User(
            email=f"{label}@campus.example.edu",
            display_name=label.title(),
            points_balance=balance,
            is_tutor=is_tutor,
            banned=banned,
        )
        db.add(user)
        db.commit()
        return user

    return _create


@pytest.fixture
def tutor(user_factory: UserFactory) -> User:
    return user_factory(name="tutor", is_tutor=True, balance=100)


@pytest.fixture
def tutee(user_factory: UserFactory) -> User:
    return user_factory(name="tutee", balance=100)


@pytest.fixture
def session_factory(db: Session, tutor: User, tutee: User) -> SessionFactory:
    """Insert sessions directly, bypassing the engine's booking rules."""
    offset = {"hours": 24}

    def _create(
        *,
        status: SessionStatus = SessionStatus.REQUESTED,
        point_cost: int = 30,
        tutor_confirmed: bool = False,
        tutee_confirmed: bool = False,
        scheduled_in: timedelta | None = None,
        tutor_user: User | None = None,
        tutee_user: User | None = None,
    ) -> TutoringSession:
        if scheduled_in is None:
            offset["hours"] += 1
            scheduled_in = timedelta(hours=offset["hours"])
        session = TutoringSession(
            tutor_id=(tutor_user or tutor).id,
            tutee_id=(tutee_user or tutee).id,
            skill_id="calculus-1",
            status=status.value,
            scheduled_time=(utc_now() + scheduled_in).replace(microsecond=0),
            point_cost=point_cost,
            tutor_confirmed=tutor_confirmed,
            tutee_confirmed=tutee_confirmed,
        )
        db.add(session)
        db.commit()
        return session

    return _create


@pytest.fixture
def scheduling_service(db: Session) -> SchedulingService:
    return SchedulingService(db, slot_lock=SessionSlotLock(enabled=False))


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """API client whose requests share the test's DB session."""

    def _override_get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
