import os

# Settings are read at import time; point them at throwaway values first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SYNC_API_KEY", "test-sync-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("COURTLISTENER_API_KEY", "test-courtlistener-token")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from judgesync.models_sqlalchemy import Base
from judgesync.models_sqlalchemy import directory, sync_queue  # noqa: F401
from judgesync.services.courtlistener_client import request_pacer
from judgesync.services.sync_workers import SyncQueueManager

SYNC_API_KEY = os.environ["SYNC_API_KEY"]
CRON_SECRET = os.environ["CRON_SECRET"]


class TickingClock:
    """Returns an aware UTC time that moves forward on every call."""

    def __init__(self, start=None, step_seconds=1):
        self.current = start or datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_seconds)

    def __call__(self):
        value = self.current
        self.current = self.current + self.step
        return value

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_request_pacer():
    request_pacer.reset()
    yield
    request_pacer.reset()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'judgesync.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def manager(session_factory, clock):
    return SyncQueueManager(
        session_factory,
        clock=clock,
        max_retries=3,
        retry_backoff_seconds=0,
        poll_interval_seconds=0.01,
        store_backoff_seconds=0.01,
        job_timeout_seconds=5,
    )
