"""
Positioning sensor abstraction consumed by the device provider
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from .errors import LocationUnavailableError, PermissionDeniedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensorFix:
    """Raw fix as delivered by the platform. course < 0 means unknown."""
    latitude: float
    longitude: float
    timestamp: datetime
    course: float = -1.0
    speed: Optional[float] = None
    accuracy: Optional[float] = None


class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    AUTHORIZED_WHEN_IN_USE = "authorized_when_in_use"
    AUTHORIZED_ALWAYS = "authorized_always"


class AccuracyMode(str, Enum):
    PLANNING = "planning"      # high accuracy for map display
    TRACKING = "tracking"      # balanced for trip monitoring
    BACKGROUND = "background"  # minimal for geofencing

    @property
    def desired_accuracy_m(self) -> float:
        return {"planning": 0.0, "tracking": 10.0, "background": 100.0}[self.value]

    @property
    def distance_filter_m(self) -> float:
        return {"planning": 0.0, "tracking": 50.0, "background": 200.0}[self.value]


FixListener = Callable[[SensorFix], None]
UpdatingListener = Callable[[bool], None]


class PositioningSensor(ABC):
    """Continuous fix source with a permission model"""

    def __init__(self):
        self.authorization_status = AuthorizationStatus.NOT_DETERMINED
        self.mode = AccuracyMode.PLANNING
        self.is_updating = False
        self._fix_listeners: List[FixListener] = []
        self._updating_listeners: List[UpdatingListener] = []

    @property
    def has_permission(self) -> bool:
        return self.authorization_status in (
            AuthorizationStatus.AUTHORIZED_WHEN_IN_USE,
            AuthorizationStatus.AUTHORIZED_ALWAYS,
        )

    @property
    def services_enabled(self) -> bool:
        return True

    @abstractmethod
    def _prompt_for_authorization(self) -> AuthorizationStatus:
        """Ask the platform for when-in-use permission"""

    def request_when_in_use_authorization(self) -> None:
        if self.authorization_status != AuthorizationStatus.NOT_DETERMINED:
            logger.debug(f"Location permission already determined: {self.authorization_status.value}")
            return
        self.authorization_status = self._prompt_for_authorization()
        logger.info(f"Location authorization changed: {self.authorization_status.value}")

    def configure_for_mode(self, mode: AccuracyMode) -> None:
        self.mode = mode
        logger.info(
            f"Configured for mode: {mode.value} "
            f"(accuracy: {mode.desired_accuracy_m}m, filter: {mode.distance_filter_m}m)"
        )

    def start_updating_location(self) -> None:
        """Begin continuous updates.

        Raises:
            LocationUnavailableError: location services are disabled
            PermissionDeniedError: permission has not been granted
        """
        if not self.services_enabled:
            raise LocationUnavailableError()
        if not self.has_permission:
            raise PermissionDeniedError(
                f"Location permission not granted. Current: {self.authorization_status.value}"
            )
        self._set_updating(True)
        logger.info("Started location updates")

    def stop_location_updates(self) -> None:
        self._set_updating(False)
        logger.info("Stopped location updates")

    def add_fix_listener(self, callback: FixListener) -> Callable[[], None]:
        self._fix_listeners.append(callback)
        return lambda: self._fix_listeners.remove(callback) if callback in self._fix_listeners else None

    def add_updating_listener(self, callback: UpdatingListener) -> Callable[[], None]:
        self._updating_listeners.append(callback)
        return lambda: self._updating_listeners.remove(callback) if callback in self._updating_listeners else None

    def _set_updating(self, value: bool) -> None:
        if self.is_updating == value:
            return
        self.is_updating = value
        for callback in list(self._updating_listeners):
            callback(value)

    def _deliver(self, fix: SensorFix) -> None:
        """Hand a fix to listeners. Dropped while updates are stopped."""
        if not self.is_updating:
            return
        for callback in list(self._fix_listeners):
            callback(fix)
