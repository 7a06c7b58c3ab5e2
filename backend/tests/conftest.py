# backend/tests/conftest.py
"""
Pytest configuration for the update-delivery backend.

Tests run against in-memory SQLite and the broadcaster ``memory://`` backend;
no PostgreSQL or Redis is needed.
"""

import os

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["IS_TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["BROADCAST_URL"] = "memory://"
os.environ["SECRET_KEY"] = "test-secret-key-for-updates"

import threading
from typing import Any, Callable

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from app.database import Base, engine
import app.models  # noqa: F401
from app.models.user_update import UserUpdate
from app.services.updates.log_store import UpdateLogStore

# The in-memory database is one connection (StaticPool) shared by every
# worker thread, so sessions must not overlap.
_DB_LOCK = threading.Lock()


class SerializedSession(Session):
    """Session that holds the test DB lock from creation until close()."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        _DB_LOCK.acquire()
        self._holds_db_lock = True
        super().__init__(*args, **kwargs)

    def close(self) -> None:
        try:
            super().close()
        finally:
            if self._holds_db_lock:
                self._holds_db_lock = False
                _DB_LOCK.release()


@pytest.fixture(scope="session", autouse=True)
def _create_tables():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def _clean_update_log(session_factory):
    yield
    db = session_factory()
    try:
        db.execute(delete(UserUpdate))
        db.commit()
    finally:
        db.close()


@pytest.fixture
def session_factory() -> Callable[[], Session]:
    return sessionmaker(
        bind=engine,
        class_=SerializedSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def store(session_factory) -> UpdateLogStore:
    return UpdateLogStore(session_factory, max_attempts=6, max_retained=5000, trim_every=100)
