"""
Location provider that follows a vehicle through realtime row changes

Used by fleet managers to track a vehicle they are not sitting in.
"""

import asyncio
import weakref
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .metrics import utc_now
from .models import Location, ProviderStatus, StatusKind
from .provider import LocationProvider
from .realtime import ChangeAction, RealtimeChannel, RealtimeClient

logger = logging.getLogger(__name__)

VEHICLES_TABLE = "vehicles"
REMOTE_ADDRESS_LABEL = "Updated Location"
DEFAULT_STALE_THRESHOLD = 300.0
DEFAULT_CHECK_INTERVAL = 60.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (fractional seconds allowed) to aware UTC."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_coordinate(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def decode_location(
    record: Dict[str, Any],
    clock: Callable[[], datetime] = utc_now,
) -> Optional[Location]:
    """Build a Location from a vehicles row, or None if lat/lon are missing.

    A missing or unparseable `last_location_update` falls back to now, and a
    missing `address` to a generic label.
    """
    latitude = _as_coordinate(record.get("latitude"))
    longitude = _as_coordinate(record.get("longitude"))
    if latitude is None or longitude is None:
        return None

    timestamp = parse_timestamp(record.get("last_location_update")) or clock()
    address = record.get("address")
    if not isinstance(address, str):
        address = REMOTE_ADDRESS_LABEL

    return Location(
        latitude=latitude,
        longitude=longitude,
        address=address,
        timestamp=timestamp,
    )


def _cancel_tasks(vehicle_id: str, *tasks: asyncio.Task) -> None:
    try:
        for task in tasks:
            task.cancel()
    except RuntimeError:
        # owning loop already closed, its tasks are gone with it
        return
    logger.info(f"Stopped tracking vehicle {vehicle_id}")


async def _follow_channel(
    provider_ref: "weakref.ref[RemoteLocationProvider]",
    channel: RealtimeChannel,
    vehicle_id: str,
):
    """Apply channel changes to the provider while it is alive.

    Holds the provider only through `provider_ref`, so a dropped provider
    can be collected and its finalizer cancels this task.
    """
    try:
        await channel.subscribe()
        async for change in channel.changes():
            provider = provider_ref()
            if provider is None:
                break
            provider.handle_change(change.record)
            provider = None
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # status is left as-is; staleness reports the silent feed
        logger.error(f"Realtime subscription for vehicle {vehicle_id} failed: {str(e)}")
    finally:
        await channel.unsubscribe()


async def _staleness_timer(provider_ref: "weakref.ref[RemoteLocationProvider]", interval: float):
    while True:
        await asyncio.sleep(interval)
        provider = provider_ref()
        if provider is None:
            return
        provider.check_staleness()
        provider = None


class RemoteLocationProvider(LocationProvider):
    """Subscribes to a vehicle's row changes and tracks fix freshness.

    Staleness is evaluated on every incoming fix and on a repeating timer,
    so a feed that goes quiet turns STALE within one check interval after
    the threshold passes. There is no reconnect: a dead channel is only
    visible as staleness.

    The running tasks do not keep the provider alive. Dropping a tracking
    provider cancels its subscription and timer as if stop_tracking() had
    been called.
    """

    def __init__(
        self,
        vehicle_id: str,
        realtime: RealtimeClient,
        initial_location: Optional[Location] = None,
        stale_threshold: float = DEFAULT_STALE_THRESHOLD,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        self.vehicle_id = str(vehicle_id)
        self.realtime = realtime
        self.stale_threshold = stale_threshold
        self.check_interval = check_interval
        self.clock = clock

        self._realtime_task: Optional[asyncio.Task] = None
        self._staleness_task: Optional[asyncio.Task] = None
        self._finalizer: Optional[weakref.finalize] = None
        self._stopped_tasks: List[asyncio.Task] = []

        if initial_location is not None:
            self._current_location = initial_location
            self.check_staleness()

    @property
    def channel_name(self) -> str:
        return f"vehicle_tracking_{self.vehicle_id}"

    def start_tracking(self) -> None:
        """Open the subscription and start the staleness timer.

        Must be called from the event loop that will own the provider.
        A second call while tracking does nothing.
        """
        if self._is_updating:
            return

        self._set("status", ProviderStatus.connecting())
        self._set("is_updating", True)

        channel = self.realtime.channel(
            self.channel_name,
            table=VEHICLES_TABLE,
            entity_id=self.vehicle_id,
            actions=(ChangeAction.INSERT, ChangeAction.UPDATE),
        )
        provider_ref = weakref.ref(self)
        self._realtime_task = asyncio.create_task(_follow_channel(provider_ref, channel, self.vehicle_id))
        self._staleness_task = asyncio.create_task(_staleness_timer(provider_ref, self.check_interval))
        self._finalizer = weakref.finalize(
            self, _cancel_tasks, self.vehicle_id, self._realtime_task, self._staleness_task
        )
        self._finalizer.atexit = False
        logger.info(f"Started tracking vehicle {self.vehicle_id}")

    def stop_tracking(self) -> None:
        self._set("is_updating", False)
        self._set("status", ProviderStatus.offline())

        if self._finalizer is not None:
            # runs at most once; cancels both tasks
            self._finalizer()
            self._finalizer = None
        self._stopped_tasks = [task for task in self._stopped_tasks if not task.done()]
        for task in (self._realtime_task, self._staleness_task):
            if task is not None:
                self._stopped_tasks.append(task)
        self._realtime_task = None
        self._staleness_task = None

    def handle_change(self, record: Dict[str, Any]) -> bool:
        """Apply one row change. Returns False when the row is dropped."""
        location = decode_location(record, self.clock)
        if location is None:
            logger.debug(f"Dropping change for vehicle {self.vehicle_id} without coordinates")
            return False

        self._set("current_location", location)
        self.check_staleness()
        return True

    def check_staleness(self) -> None:
        """Compare the last fix's age against the threshold"""
        location = self._current_location
        if location is None:
            return

        age = (self.clock() - location.timestamp).total_seconds()
        if age > self.stale_threshold:
            if self._status.kind != StatusKind.STALE:
                logger.warning(f"Location for vehicle {self.vehicle_id} is stale ({int(age)}s old)")
            self._set("status", ProviderStatus.stale(since=location.timestamp))
        else:
            self._set("status", ProviderStatus.active())

    async def wait_closed(self) -> None:
        """Wait for cancelled tasks from stop_tracking() to finish unwinding"""
        tasks = [task for task in self._stopped_tasks if not task.done()]
        self._stopped_tasks = []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
