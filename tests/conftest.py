"""Pytest fixtures and configuration for TaskFlow tests."""

import os

from cryptography.fernet import Fernet

# Settings are read once per process; pin them before any taskflow import.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["API_SECRET"] = "test-secret"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode("utf-8")
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.pop("TASK_STORE_URL", None)
os.environ.pop("OPENAI_API_KEY", None)

import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from taskflow.database.database import Base, get_db
from taskflow.database.repository import TaskRepository
from taskflow.database.draft_task_repository import DraftTaskRepository
from taskflow.engine.draft_review import DraftReviewService
from taskflow.models.draft_task import DraftTaskCreate


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_PASSWORD = "correct-horse"


@pytest.fixture
def test_password():
    """Plain-text password of the seeded user."""
    return TEST_PASSWORD


@pytest.fixture(scope="session")
def test_password_hash():
    from taskflow.auth.passwords import hash_password
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope="function")
def db_session(test_user_id, test_password_hash):
    """Create a database session for testing.

    Uses an in-memory SQLite database that is created fresh for each test,
    seeded with one user.
    """
    from sqlalchemy import event
    from taskflow.database.models import UserDB

    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    session.add(UserDB(
        id=test_user_id,
        username="tester",
        email="test@example.com",
        password_hash=test_password_hash,
        xp=0,
        level=1,
        streak=0,
        created_at=datetime.utcnow(),
    ))
    session.commit()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_user_id():
    """Test user ID for multi-user testing."""
    return 1


@pytest.fixture
def other_user_id(db_session):
    """A second user, for ownership checks."""
    from taskflow.database.models import UserDB

    db_session.add(UserDB(
        id=2,
        username="other",
        email="other@example.com",
        password_hash="x",
        created_at=datetime.utcnow(),
    ))
    db_session.commit()
    return 2


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def draft_repository(db_session: Session):
    return DraftTaskRepository(db_session)


@pytest.fixture
def review_service(draft_repository, task_repository):
    return DraftReviewService(draft_repository, task_repository)


@pytest.fixture
def make_draft(draft_repository, test_user_id):
    """Factory for pending drafts."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "source": "gmail",
            "source_id": f"msg-{counter['n']}",
            "title": f"Draft {counter['n']}",
            "description": "From: boss@example.com",
            "workspace": "job",
            "energy": "medium",
            "estimated_time": 30,
            "tags": ["gmail"],
            "ai_confidence": 0.9,
        }
        data.update(overrides)
        user_id = data.pop("user_id", test_user_id)
        return draft_repository.create(user_id, DraftTaskCreate(**data))

    return _make


@pytest.fixture
def test_user(db_session, test_user_id):
    """The seeded user as a pydantic model."""
    from taskflow.database.user_repository import UserRepository
    return UserRepository(db_session).get(test_user_id)


@pytest.fixture
def test_client(db_session: Session, test_user):
    """Create a FastAPI test client with overridden database dependency and authentication."""
    from taskflow.api.app import app
    from taskflow.auth.dependencies import get_current_user

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    def override_get_current_user():
        return test_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db_session: Session):
    """Test client with the real bearer-token authentication."""
    from taskflow.api.app import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
