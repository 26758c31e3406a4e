"""
Location provider backed by the device's own positioning sensor
"""

import logging

from .errors import LocationError
from .models import Location, ProviderStatus
from .provider import LocationProvider
from .sensor import AccuracyMode, PositioningSensor, SensorFix

logger = logging.getLogger(__name__)

DEVICE_ADDRESS_LABEL = "Current Location"


class DeviceLocationProvider(LocationProvider):
    """Relays a local sensor's fixes. Used by drivers on their own phone.

    Reverse geocoding is a separate concern, so every fix carries a
    placeholder address. The sensor manages its own delivery; there is no
    retry logic here.
    """

    def __init__(self, sensor: PositioningSensor):
        super().__init__()
        self.sensor = sensor
        self._detach = [
            sensor.add_fix_listener(self._handle_fix),
            sensor.add_updating_listener(lambda updating: self._set("is_updating", updating)),
        ]
        self._set("is_updating", sensor.is_updating)

    def start_tracking(self) -> None:
        self.sensor.request_when_in_use_authorization()
        self.sensor.configure_for_mode(AccuracyMode.TRACKING)
        self._set("status", ProviderStatus.connecting())
        try:
            self.sensor.start_updating_location()
        except LocationError as e:
            # stays CONNECTING; the consumer sees no fixes arrive
            logger.warning(f"Could not start device location updates: {e.message}")

    def stop_tracking(self) -> None:
        if self.sensor.is_updating:
            self.sensor.stop_location_updates()
        self._set("status", ProviderStatus.offline())

    def close(self) -> None:
        """Stop tracking and detach from the sensor"""
        self.stop_tracking()
        for detach in self._detach:
            detach()
        self._detach = []

    def _handle_fix(self, fix: SensorFix) -> None:
        self._set("current_location", Location(
            latitude=fix.latitude,
            longitude=fix.longitude,
            address=DEVICE_ADDRESS_LABEL,
            timestamp=fix.timestamp,
        ))
        self._set("status", ProviderStatus.active())
        if fix.course >= 0:
            self._set("heading", fix.course)
