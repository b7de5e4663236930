"""
Pytest configuration and fixtures for the intern portal tests.

Provides test database isolation, an in-memory identity store and a
recording notifier for the recovery flow.
"""
import os

# Settings are read at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFIER_PROVIDER", "stub")
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from intern_portal.core.security import hash_password  # noqa: E402
from intern_portal.services.recovery.challenge_store import ChallengeStore  # noqa: E402
from intern_portal.services.recovery.rate_limit import RateLimitService  # noqa: E402
from tests.helpers.recovery_fakes import PHONE, InMemoryIdentityStore, RecordingNotifier  # noqa: E402

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(test_engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    # SQLAlchemy emits BEGIN instead of pysqlite, so session SAVEPOINTs nest
    # inside the per-test transaction
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create and tear down the test schema once per test session."""
    from intern_portal.db import Base
    from intern_portal import models  # noqa: F401

    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """
    Provide a clean database session for each test.

    Transactions are rolled back after each test to ensure no test data
    leaks between tests.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return ChallengeStore()


@pytest.fixture
def identities():
    return InMemoryIdentityStore()


@pytest.fixture
def intern_user(db):
    """Registered intern with phone 919876543210"""
    from intern_portal.models import User

    user = User(
        name="Test Intern",
        email="intern@example.com",
        password_hash=hash_password("old-password"),
        role="intern",
        phone=PHONE,
        intern_id="INT-0001",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def client(db, notifier, store):
    """
    FastAPI TestClient with the test database, a fresh challenge store, a
    recording notifier and a fresh rate limiter.
    """
    from fastapi.testclient import TestClient

    from intern_portal.db import get_db
    from intern_portal.dependencies import (
        challenge_store_dependency,
        notifier_dependency,
        rate_limiter_dependency,
    )
    from intern_portal.main import app

    limiter = RateLimitService(start_limit=100, verify_limit=100, window_seconds=600)

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[challenge_store_dependency] = lambda: store
    app.dependency_overrides[notifier_dependency] = lambda: notifier
    app.dependency_overrides[rate_limiter_dependency] = lambda: limiter

    try:
        # raise_server_exceptions=False so unhandled errors become 500 responses
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
