import os

# Must be set before trust_analytics.core.config is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("API_KEY", None)

from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from trust_analytics.core.database import build_engine, init_db
from trust_analytics.services.analytics import AnalyticsEngine
from trust_analytics.services.cache import ResultCache
from trust_analytics.services.event_store import EventStore

# 2023-11-14T22:13:20Z, a Tuesday
NOW_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


class FakeClock:
    def __init__(self, value: float = 0.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache_clock():
    return FakeClock()


@pytest.fixture
def cache(cache_clock):
    return ResultCache(ttl_seconds=300, clock=cache_clock)


@pytest.fixture
def store(db_session, cache):
    return EventStore(db_session, cache=cache)


@pytest.fixture
def analytics(store, cache):
    return AnalyticsEngine(store, cache=cache, clock=lambda: NOW_MS)


@pytest.fixture
def make_event():
    """Factory for raw event payloads; extra kwargs become properties"""

    def _make(event_type: str, timestamp: int = NOW_MS - HOUR_MS, user_id: str = "user_1",
              event_id: str | None = None, **properties):
        return {
            "event_id": event_id or str(uuid4()),
            "user_id": user_id,
            "event_type": event_type,
            "timestamp": timestamp,
            "properties": properties,
        }

    return _make
