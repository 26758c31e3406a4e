"""
Trip tracking session: a provider plus live distance/ETA for one trip
"""

import logging
from typing import Optional

from .metrics import MetricsCalculator
from .models import DerivedMetrics, Location, TrackingSnapshot, TripRecord
from .provider import LocationProvider

logger = logging.getLogger(__name__)


class TripTrackingSession:
    """Follows one trip's vehicle and keeps its metrics current.

    Metrics are recomputed in full whenever the provider publishes a new
    location and the trip has a destination.
    """

    def __init__(
        self,
        trip: TripRecord,
        provider: LocationProvider,
        calculator: Optional[MetricsCalculator] = None,
    ):
        self.trip = trip
        self.provider = provider
        self.calculator = calculator or MetricsCalculator()
        self.metrics: Optional[DerivedMetrics] = None

        self._unsubscribe = provider.observe("current_location", self._on_location)
        if provider.current_location is not None:
            self._on_location(provider.current_location)

    @property
    def is_live(self) -> bool:
        return self.trip.is_live

    def start_tracking(self) -> bool:
        """Start the provider. Only ongoing trips are tracked."""
        if not self.is_live:
            logger.info(f"Trip {self.trip.id} is {self.trip.status.value}, not tracking")
            return False
        self.provider.start_tracking()
        return True

    def stop_tracking(self) -> None:
        self.provider.stop_tracking()

    def close(self) -> None:
        self.stop_tracking()
        self._unsubscribe()

    async def aclose(self) -> None:
        """close(), then wait for the provider to finish unwinding"""
        self.close()
        await self.provider.wait_closed()

    def _on_location(self, location: Optional[Location]) -> None:
        destination = self.trip.destination
        if location is None or destination is None:
            return
        self.metrics = self.calculator(location, destination)

    def snapshot(self) -> TrackingSnapshot:
        return TrackingSnapshot(
            trip_id=self.trip.id,
            vehicle_id=self.trip.vehicle_id,
            is_live=self.is_live,
            location=self.provider.current_location,
            heading=self.provider.heading,
            status=self.provider.status,
            is_updating=self.provider.is_updating,
            destination=self.trip.destination,
            metrics=self.metrics,
        )
