"""
Remote provider: decode, staleness, and subscription lifecycle.
"""

import asyncio
import gc
import weakref
from datetime import datetime, timedelta, timezone

import pytest

from fleettrack.models import Location, ProviderStatus, StatusKind
from fleettrack.realtime import ChangeAction, RealtimeChannel, RealtimeClient
from fleettrack.remote_provider import (
    REMOTE_ADDRESS_LABEL,
    RemoteLocationProvider,
    decode_location,
    parse_timestamp,
)

from .conftest import T0, drain, vehicle_change


def make_provider(realtime, clock, **kwargs):
    return RemoteLocationProvider("veh-1", realtime, clock=clock, **kwargs)


# ---------------------------------------------------------------- decoding

def test_decode_full_record(clock):
    location = decode_location({
        "latitude": 28.6139,
        "longitude": 77.2090,
        "last_location_update": "2026-10-19T09:58:30.250Z",
        "address": "Janpath, New Delhi",
    }, clock)

    assert location == Location(
        latitude=28.6139,
        longitude=77.2090,
        address="Janpath, New Delhi",
        timestamp=datetime(2026, 10, 19, 9, 58, 30, 250000, tzinfo=timezone.utc),
    )


def test_decode_defaults_address_and_timestamp(clock):
    location = decode_location({"latitude": 1.5, "longitude": 2}, clock)

    assert location.address == REMOTE_ADDRESS_LABEL
    assert location.timestamp == T0
    assert location.longitude == 2.0


def test_decode_unparseable_timestamp_falls_back_to_now(clock):
    location = decode_location({"latitude": 1.0, "longitude": 2.0, "last_location_update": "yesterday-ish"}, clock)
    assert location.timestamp == T0


@pytest.mark.parametrize("record", [
    {"longitude": 77.2},
    {"latitude": 28.6},
    {"latitude": None, "longitude": 77.2},
    {"latitude": "28.6", "longitude": 77.2},
    {"latitude": True, "longitude": 77.2},
])
def test_decode_requires_numeric_coordinates(record, clock):
    assert decode_location(record, clock) is None


def test_parse_timestamp_normalizes_to_utc():
    parsed = parse_timestamp("2026-10-19T15:30:00.500+05:30")
    assert parsed == datetime(2026, 10, 19, 10, 0, 0, 500000, tzinfo=timezone.utc)
    assert parse_timestamp("2026-10-19T10:00:00") == T0
    assert parse_timestamp(12345) is None


# ---------------------------------------------------------------- handling changes

def test_valid_change_replaces_location(realtime, clock):
    provider = make_provider(realtime, clock)

    assert provider.handle_change({"latitude": 28.6, "longitude": 77.2, "last_location_update": T0.isoformat()})

    assert provider.current_location == Location(
        latitude=28.6, longitude=77.2, address=REMOTE_ADDRESS_LABEL, timestamp=T0
    )
    assert provider.status == ProviderStatus.active()


def test_change_without_coordinates_is_a_no_op(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.handle_change({"latitude": 28.6, "longitude": 77.2, "last_location_update": T0.isoformat()})
    before = provider.current_location

    assert not provider.handle_change({"latitude": 10.0, "address": "nowhere"})

    assert provider.current_location == before


# ---------------------------------------------------------------- staleness

def test_fix_goes_stale_after_threshold(realtime, clock):
    provider = make_provider(realtime, clock, stale_threshold=300)
    provider.handle_change({"latitude": 1.0, "longitude": 2.0, "last_location_update": T0.isoformat()})
    assert provider.status == ProviderStatus.active()

    clock.advance(300)
    provider.check_staleness()
    assert provider.status == ProviderStatus.active()

    clock.advance(1)
    provider.check_staleness()
    assert provider.status == ProviderStatus.stale(since=T0)
    assert provider.is_stale


def test_fresh_fix_after_stale_is_active_immediately(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.handle_change({"latitude": 1.0, "longitude": 2.0, "last_location_update": T0.isoformat()})
    clock.advance(600)
    provider.check_staleness()
    assert provider.is_stale

    provider.handle_change({"latitude": 1.1, "longitude": 2.1, "last_location_update": clock().isoformat()})

    assert provider.status == ProviderStatus.active()


def test_old_fix_in_change_is_stale_on_arrival(realtime, clock):
    provider = make_provider(realtime, clock)
    old = "2026-10-19T09:00:00.000Z"

    provider.handle_change({"latitude": 1.0, "longitude": 2.0, "last_location_update": old})

    assert provider.status.kind == StatusKind.STALE
    assert provider.status.since == parse_timestamp(old)


def test_initial_location_is_evaluated_at_construction(realtime, clock):
    fresh = Location(latitude=1.0, longitude=2.0, address="Depot", timestamp=T0)
    stale = Location(latitude=1.0, longitude=2.0, address="Depot", timestamp=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))

    assert make_provider(realtime, clock, initial_location=fresh).status == ProviderStatus.active()
    assert make_provider(realtime, clock, initial_location=stale).status == ProviderStatus.stale(since=stale.timestamp)
    assert make_provider(realtime, clock).status == ProviderStatus.offline()


def test_naive_timestamps_are_treated_as_utc(realtime, clock):
    naive = datetime(2026, 10, 19, 9, 59, 0)
    seed = Location(latitude=1.0, longitude=2.0, address="Depot", timestamp=naive)

    provider = make_provider(realtime, clock, initial_location=seed)

    assert provider.current_location.timestamp == naive.replace(tzinfo=timezone.utc)
    assert provider.status == ProviderStatus.active()
    clock.advance(300)
    provider.check_staleness()
    assert provider.status == ProviderStatus.stale(since=naive.replace(tzinfo=timezone.utc))


def test_location_timestamps_are_normalized_to_utc():
    ist = timezone(timedelta(hours=5, minutes=30))
    location = Location(latitude=1.0, longitude=2.0, address="Depot", timestamp=datetime(2026, 10, 19, 15, 30, tzinfo=ist))

    assert location.timestamp == T0
    assert location.timestamp.tzinfo == timezone.utc


def test_staleness_check_without_location_does_nothing(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.check_staleness()
    assert provider.status == ProviderStatus.offline()


# ---------------------------------------------------------------- lifecycle

@pytest.mark.asyncio
async def test_start_tracking_subscribes_and_receives_changes(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()

    assert provider.status == ProviderStatus.connecting()
    assert provider.is_updating
    await drain()
    assert realtime.subscriber_count == 1

    delivered = realtime.publish(vehicle_change("veh-1", latitude=28.6, longitude=77.2, address="Connaught Place"))
    await drain()

    assert delivered == 1
    assert provider.current_location.address == "Connaught Place"
    assert provider.status == ProviderStatus.active()
    provider.stop_tracking()


@pytest.mark.asyncio
async def test_only_matching_changes_are_applied(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()
    await drain()

    realtime.publish(vehicle_change("veh-2", latitude=1.0, longitude=1.0))
    realtime.publish(vehicle_change("veh-1", action=ChangeAction.DELETE, latitude=2.0, longitude=2.0))
    await drain()
    assert provider.current_location is None

    realtime.publish(vehicle_change("veh-1", action=ChangeAction.INSERT, latitude=3.0, longitude=3.0))
    realtime.publish(vehicle_change("veh-1", latitude=4.0, longitude=4.0))
    await drain()

    # delivery order, last write wins
    assert (provider.current_location.latitude, provider.current_location.longitude) == (4.0, 4.0)
    provider.stop_tracking()


@pytest.mark.asyncio
async def test_start_tracking_twice_keeps_one_subscription(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()
    subscription, timer = provider._realtime_task, provider._staleness_task

    provider.start_tracking()
    await drain()

    assert provider._realtime_task is subscription
    assert provider._staleness_task is timer
    assert realtime.subscriber_count == 1
    provider.stop_tracking()


@pytest.mark.asyncio
async def test_stop_tracking_tears_down_subscription_and_timer(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()
    await drain()
    subscription, timer = provider._realtime_task, provider._staleness_task

    provider.stop_tracking()
    await drain()

    assert subscription.done() and timer.done()
    assert realtime.subscriber_count == 0
    assert provider.status == ProviderStatus.offline()
    assert not provider.is_updating


@pytest.mark.asyncio
async def test_stop_tracking_is_idempotent(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.stop_tracking()
    provider.start_tracking()
    await drain()

    for _ in range(3):
        provider.stop_tracking()

    assert provider.status == ProviderStatus.offline()
    assert not provider.is_updating
    assert provider._realtime_task is None and provider._staleness_task is None


@pytest.mark.asyncio
async def test_dropped_provider_stops_tracking(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()
    await drain()
    assert realtime.subscriber_count == 1
    subscription, timer = provider._realtime_task, provider._staleness_task
    provider_ref = weakref.ref(provider)

    del provider
    gc.collect()
    await drain()

    assert provider_ref() is None
    assert subscription.cancelled() and timer.cancelled()
    assert realtime.subscriber_count == 0


@pytest.mark.asyncio
async def test_wait_closed_finishes_unsubscribing(realtime, clock):
    provider = make_provider(realtime, clock)
    provider.start_tracking()
    await drain()

    provider.stop_tracking()
    await provider.wait_closed()

    assert realtime.subscriber_count == 0


@pytest.mark.asyncio
async def test_context_manager_stops_tracking(realtime, clock):
    with make_provider(realtime, clock) as provider:
        assert provider.is_updating
        await drain()
    await drain()

    assert provider.status == ProviderStatus.offline()
    assert realtime.subscriber_count == 0


@pytest.mark.asyncio
async def test_timer_marks_quiet_feed_stale(realtime, clock):
    provider = make_provider(realtime, clock, stale_threshold=300, check_interval=0.01)
    provider.start_tracking()
    await drain()
    realtime.publish(vehicle_change("veh-1", latitude=1.0, longitude=2.0, last_location_update=T0.isoformat()))
    await drain()
    assert provider.status == ProviderStatus.active()

    clock.advance(301)
    await asyncio.sleep(0.05)

    assert provider.status == ProviderStatus.stale(since=T0)
    provider.stop_tracking()


@pytest.mark.asyncio
async def test_observers_see_status_transitions(realtime, clock):
    provider = make_provider(realtime, clock)
    seen = []
    unsubscribe = provider.observe("status", lambda status: seen.append(status.kind))

    provider.start_tracking()
    await drain()
    realtime.publish(vehicle_change("veh-1", latitude=1.0, longitude=2.0))
    await drain()
    provider.stop_tracking()
    unsubscribe()
    provider.start_tracking()
    provider.stop_tracking()

    assert seen == [StatusKind.CONNECTING, StatusKind.ACTIVE, StatusKind.OFFLINE]


def test_observe_rejects_unknown_field(realtime, clock):
    with pytest.raises(ValueError):
        make_provider(realtime, clock).observe("speed", print)


class BrokenChannel(RealtimeChannel):
    async def subscribe(self) -> None:
        raise ConnectionError("realtime socket closed")


class BrokenRealtimeClient(RealtimeClient):
    def channel(self, name, table, entity_id, actions=()):
        return BrokenChannel(name, table, entity_id, actions)


@pytest.mark.asyncio
async def test_subscription_failure_leaves_provider_connecting():
    provider = RemoteLocationProvider("veh-1", BrokenRealtimeClient())
    provider.start_tracking()
    await drain()

    assert provider._realtime_task.done()
    assert provider.status == ProviderStatus.connecting()
    assert provider.is_updating
    provider.stop_tracking()
    assert provider.status == ProviderStatus.offline()
