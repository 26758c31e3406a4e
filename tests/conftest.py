"""
Shared test fixtures.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from fleettrack.models import Location, TripRecord, TripStatus
from fleettrack.realtime import ChangeAction, ChangeEvent, InMemoryRealtimeClient

T0 = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Virtual wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeStore:
    """Stands in for DynamoStore."""

    def __init__(self):
        self.trips: Dict[str, TripRecord] = {}
        self.vehicle_locations: Dict[str, Location] = {}
        self.healthy = True

    async def health_check(self) -> bool:
        return self.healthy

    async def get_trip(self, trip_id: str) -> Optional[TripRecord]:
        return self.trips.get(trip_id)

    async def get_vehicle_location(self, vehicle_id: str) -> Optional[Location]:
        return self.vehicle_locations.get(vehicle_id)


def vehicle_change(vehicle_id: str, action: ChangeAction = ChangeAction.UPDATE, **fields) -> ChangeEvent:
    return ChangeEvent(action=action, table="vehicles", record={"id": vehicle_id, **fields})


async def drain(times: int = 5):
    """Let pending tasks run a few steps."""
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def realtime():
    return InMemoryRealtimeClient()


@pytest.fixture
def store():
    store = FakeStore()
    store.trips["trip-1"] = TripRecord(
        id="trip-1",
        vehicle_id="veh-1",
        driver_id="drv-1",
        status=TripStatus.ONGOING,
        end_latitude=28.6139,
        end_longitude=77.2090,
    )
    store.trips["trip-2"] = TripRecord(id="trip-2", vehicle_id="veh-2", status=TripStatus.SCHEDULED)
    return store
