import time

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from uuid import uuid4

from trust_analytics.api.deps import get_store
from trust_analytics.core.config import settings
from trust_analytics.core.database import get_db
from trust_analytics.core.errors import StorageError
from trust_analytics.main import app
from trust_analytics.services.cache import result_cache
from trust_analytics.services.event_store import EventStore

transport = ASGITransport(app=app)

HOUR_MS = 60 * 60 * 1000


def event(event_type: str, hours_ago: float = 1, **properties):
    return {
        "eventId": str(uuid4()),
        "userId": properties.pop("user_id", "test_user_1"),
        "eventType": event_type,
        "timestamp": int(time.time() * 1000 - hours_ago * HOUR_MS),
        "properties": properties,
    }


@pytest.fixture
def api_db(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    result_cache.invalidate_all()
    yield session_factory
    app.dependency_overrides.clear()
    result_cache.invalidate_all()


@pytest_asyncio.fixture
async def client(api_db):
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health_check(client):
    """Test health endpoint"""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_root_lists_endpoints(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["endpoints"]["dashboard"] == "/api/dashboard"


@pytest.mark.asyncio
async def test_ingest_accepts_all_body_shapes(client):
    single = await client.post("/api/events", json=event("user_action"))
    assert single.status_code == 201
    assert single.json()["processed"] == 1

    bare = await client.post("/api/events", json=[event("user_action"), event("user_action")])
    assert bare.json()["processed"] == 2

    wrapped = await client.post("/api/events", json={"events": [event("user_action")]})
    data = wrapped.json()
    assert data["totalReceived"] == 1
    assert data["processed"] == 1


@pytest.mark.asyncio
async def test_ingest_rejects_empty_and_oversized_batches(client):
    empty = await client.post("/api/events", json={"events": []})
    assert empty.status_code == 422

    oversized = await client.post(
        "/api/events", json=[event("user_action") for _ in range(settings.max_batch_size + 1)]
    )
    assert oversized.status_code == 422


@pytest.mark.asyncio
async def test_ingest_reports_per_record_outcomes(client):
    duplicate = event("user_action")
    response = await client.post("/api/events", json={"events": [
        duplicate,
        dict(duplicate),
        event("page_view"),
        {"eventType": "user_action", "timestamp": 1},
    ]})

    data = response.json()
    assert response.status_code == 201
    assert (data["processed"], data["skipped"], data["errors"]) == (1, 1, 2)
    assert data["eventIds"] == [duplicate["eventId"]]
    assert [f["index"] for f in data["failures"]] == [2, 3]


@pytest.mark.asyncio
async def test_get_and_list_events(client):
    vote = event("vote_cast", promptId="turn_1", value=1)
    await client.post("/api/events", json=[vote, event("user_action")])

    response = await client.get(f"/api/events/{vote['eventId']}")
    assert response.status_code == 200
    assert response.json()["turnId"] == "turn_1"

    missing = await client.get("/api/events/does-not-exist")
    assert missing.status_code == 404

    listed = await client.get("/api/events", params={"eventType": "vote_cast", "timeRange": "24h"})
    data = listed.json()
    assert data["total"] == 1
    assert data["events"][0]["eventId"] == vote["eventId"]
    assert data["hasMore"] is False


@pytest.mark.asyncio
async def test_invalid_query_parameters(client):
    bad_range = await client.get("/api/dashboard", params={"timeRange": "2w"})
    assert bad_range.status_code == 400

    inverted = await client.get("/api/analytics/votes", params={"start": 200, "end": 100})
    assert inverted.status_code == 400

    bad_type = await client.get("/api/events", params={"eventType": "page_view"})
    assert bad_type.status_code == 400


@pytest.mark.asyncio
async def test_event_ingestion_and_dashboard_flow(client):
    """Test complete flow: ingest events → query dashboard"""
    events = [
        event("conversation_started", 3, conversationId="conv_1"),
        event("turn_completed", 2.5, turn_id="turn_1", conversationId="conv_1", turnSequence=1,
              responseTime=900),
        event("vote_cast", 2.4, turn_id="turn_1", value=1, comment="helpful"),
        event("vote_cast", 2.3, promptId="turn_0", value=1),
        event("vote_cast", 2.2, turn_id="turn_2", value=-1),
        event("journey_step", 2, journeyName="onboarding", completed=True),
        event("conversation_ended", 1, conversationId="conv_1", messageCount=4),
    ]

    response = await client.post("/api/events", json={"events": events})
    assert response.json()["processed"] == 7

    response = await client.get("/api/dashboard", params={"timeRange": "7d"})
    assert response.status_code == 200
    data = response.json()

    assert data["dateRange"]["label"] == "7d"
    assert data["conversationStats"]["totalConversations"] == 1
    assert data["conversationStats"]["completionRate"] == 100.0
    assert data["conversationStats"]["averageMessages"] == 4
    assert data["feedbackStats"]["totalFeedback"] == 3
    assert data["feedbackStats"]["positiveRate"] == 0.667
    assert data["feedbackStats"]["recentComments"] == ["helpful"]
    assert data["journeyStats"]["popularJourneys"][0]["name"] == "onboarding"
    assert data["trust"]["sampleSize"] == 3
    assert data["recentActivity"]["totalEvents"] == 7

    # New events invalidate the cached dashboard
    await client.post("/api/events", json=event("vote_cast", 0.5, turn_id="turn_3", value=1))
    refreshed = (await client.get("/api/dashboard", params={"timeRange": "7d"})).json()
    assert refreshed["feedbackStats"]["totalFeedback"] == 4


@pytest.mark.asyncio
async def test_analytics_endpoints(client):
    await client.post("/api/events", json=[
        event("turn_completed", turn_id="turn_1"),
        event("turn_failed", turn_id="turn_2"),
        event("vote_cast", turn_id="turn_1", value=1),
    ])

    overview = (await client.get("/api/analytics/overview", params={"timeRange": "ALL"})).json()
    assert overview["totalEvents"] == 3

    votes = (await client.get("/api/analytics/votes")).json()
    assert votes["overview"]["totalVotes"] == 1

    turns = (await client.get("/api/analytics/turns")).json()
    assert turns["overview"]["successRate"] == 50.0
    assert turns["overview"]["turnsWithFeedback"] == 1

    journeys = await client.get("/api/analytics/journeys")
    assert journeys.status_code == 200
    assert journeys.json()["overview"]["totalJourneys"] == 0


@pytest.mark.asyncio
async def test_turn_correlation(client):
    await client.post("/api/events", json=[
        event("turn_completed", 2, turn_id="turn_1"),
        event("vote_cast", 1, promptId="turn_1", value=-1, comment="wrong"),
    ])

    response = await client.get("/api/turns/turn_1/correlation")
    assert response.status_code == 200
    data = response.json()
    assert data["turnEventId"] is not None
    assert data["voteValue"] == -1
    assert data["voteComment"] == "wrong"

    missing = await client.get("/api/turns/nope/correlation")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_legacy_stats(client):
    await client.post("/api/events", json=[
        event("vote_cast", 2, user_id="u1", promptId="p1", value=1, comment="nice"),
        event("vote_cast", 1, user_id="u1", turn_id="p1", value=-1),
    ])

    user_stats = (await client.get("/api/stats", params={"userId": "u1"})).json()
    assert user_stats["totalVotes"] == 2
    assert user_stats["positiveRate"] == 0.5
    assert user_stats["topFeedback"] == ["nice"]

    prompt_stats = (await client.get("/api/stats/prompt/p1")).json()
    assert prompt_stats["promptId"] == "p1"
    assert prompt_stats["totalVotes"] == 2

    missing_user = await client.get("/api/stats")
    assert missing_user.status_code == 422


@pytest.mark.asyncio
async def test_storage_failure_maps_to_503(client, api_db):
    class UnavailableStore(EventStore):
        def scan(self, filters, max_rows=None):
            raise StorageError("scan", "database is locked")

    def failing_store():
        session = api_db()
        try:
            yield UnavailableStore(session, cache=result_cache)
        finally:
            session.close()

    app.dependency_overrides[get_store] = failing_store

    response = await client.get("/api/dashboard")
    assert response.status_code == 503
    assert response.json()["operation"] == "scan"


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "api_key", "secret")

    assert (await client.get("/api/dashboard")).status_code == 401
    assert (await client.get("/api/dashboard", headers={"X-API-Key": "secret"})).status_code == 200
    assert (await client.get("/api/dashboard", headers={"Authorization": "Bearer secret"})).status_code == 200
    assert (await client.get("/health")).status_code == 200
