"""
Tracking service endpoints.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from fleettrack.config import Settings
from fleettrack.main import create_app
from fleettrack.models import Location
from fleettrack.realtime import InMemoryRealtimeClient

from .conftest import FakeStore, drain


@pytest.fixture
def app(store):
    settings = Settings(SERVICE_NAME="fleettrack-test", STALENESS_CHECK_INTERVAL_SECONDS=60.0)
    return create_app(settings=settings, store=store, realtime=InMemoryRealtimeClient())


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "fleettrack-test"
    assert response.json()["status"] == "running"


def test_health(client, store):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["components"] == {"dynamo_store": "healthy", "realtime": "healthy"}

    store.healthy = False
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_tracking_lifecycle(client, store):
    store.vehicle_locations["veh-1"] = Location(
        latitude=28.6304, longitude=77.2177, address="Connaught Place", timestamp=datetime.now(timezone.utc)
    )

    response = client.post("/trips/trip-1/tracking")
    assert response.status_code == 200
    body = response.json()
    assert body["vehicle_id"] == "veh-1"
    assert body["is_live"] and body["is_updating"]
    assert body["status"] == {"kind": "connecting", "since": None}
    assert body["location"]["address"] == "Connaught Place"
    assert body["metrics"]["remaining_distance_meters"] > 0

    # a second start returns the running session
    assert client.post("/trips/trip-1/tracking").json()["vehicle_id"] == "veh-1"
    assert client.get("/metrics").json()["active_sessions"] == 1

    response = client.get("/trips/trip-1/tracking")
    assert response.status_code == 200
    assert response.json()["destination"] == {"latitude": 28.6139, "longitude": 77.2090}

    response = client.delete("/trips/trip-1/tracking")
    assert response.json() == {"message": "Stopped tracking trip trip-1"}
    assert client.get("/trips/trip-1/tracking").status_code == 404
    assert client.delete("/trips/trip-1/tracking").status_code == 404
    assert client.get("/metrics").json()["active_sessions"] == 0


def test_tracking_without_known_position(client):
    body = client.post("/trips/trip-1/tracking").json()
    assert body["location"] is None
    assert body["metrics"] is None


def test_unknown_trip(client):
    response = client.post("/trips/nope/tracking")
    assert response.status_code == 404
    assert response.json()["detail"] == "Trip nope not found"
    assert response.json()["recovery_suggestion"]


def test_only_ongoing_trips_can_be_tracked(client):
    response = client.post("/trips/trip-2/tracking")
    assert response.status_code == 409
    assert "Scheduled" in response.json()["detail"]


def test_requests_before_startup_are_rejected(app):
    client = TestClient(app)
    assert client.post("/trips/trip-1/tracking").status_code == 503
    assert client.get("/health").json()["status"] == "starting"


class SlowStore(FakeStore):
    """Yields to the loop before answering, like a real network call."""

    async def get_trip(self, trip_id):
        await asyncio.sleep(0.01)
        return await super().get_trip(trip_id)


@pytest.mark.asyncio
async def test_concurrent_starts_share_one_session(store):
    slow_store = SlowStore()
    slow_store.trips = store.trips
    realtime = InMemoryRealtimeClient()
    app = create_app(settings=Settings(), store=slow_store, realtime=realtime)

    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            first, second = await asyncio.gather(
                client.post("/trips/trip-1/tracking"),
                client.post("/trips/trip-1/tracking"),
            )
            await drain()

            assert first.status_code == second.status_code == 200
            assert len(app.state.sessions) == 1
            assert realtime.subscriber_count == 1

            await client.delete("/trips/trip-1/tracking")
            assert realtime.subscriber_count == 0


@pytest.mark.asyncio
async def test_shutdown_waits_for_sessions_to_unsubscribe(store):
    realtime = InMemoryRealtimeClient()
    app = create_app(settings=Settings(), store=store, realtime=realtime)

    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            await client.post("/trips/trip-1/tracking")
            await drain()
            assert realtime.subscriber_count == 1

    assert realtime.subscriber_count == 0
    assert app.state.sessions == {}
