"""
Location provider interface shared by device and remote sources
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from .models import Location, ProviderStatus, StatusKind

logger = logging.getLogger(__name__)

OBSERVABLE_FIELDS = ("current_location", "heading", "status", "is_updating")

Listener = Callable[[Any], None]


class LocationProvider(ABC):
    """Source of live positions for one tracked entity.

    Exposes four read-only fields (current_location, heading, status,
    is_updating) and two commands (start_tracking, stop_tracking).
    Consumers register callbacks with observe(); every notification is
    emitted from the event loop that owns the provider, and callbacks must
    not mutate provider state.
    """

    def __init__(self):
        self._current_location: Optional[Location] = None
        self._heading: Optional[float] = None
        self._status = ProviderStatus.offline()
        self._is_updating = False
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in OBSERVABLE_FIELDS}

    @property
    def current_location(self) -> Optional[Location]:
        return self._current_location

    @property
    def heading(self) -> Optional[float]:
        return self._heading

    @property
    def status(self) -> ProviderStatus:
        return self._status

    @property
    def is_updating(self) -> bool:
        return self._is_updating

    @property
    def is_stale(self) -> bool:
        return self._status.kind == StatusKind.STALE

    @abstractmethod
    def start_tracking(self) -> None:
        """Start receiving updates"""

    @abstractmethod
    def stop_tracking(self) -> None:
        """Stop receiving updates. Safe to call repeatedly or before start."""

    async def wait_closed(self) -> None:
        """Wait until work cancelled by stop_tracking() has finished"""

    def observe(self, field: str, callback: Listener) -> Callable[[], None]:
        """Call `callback(new_value)` whenever `field` changes.

        Returns a function that removes the callback.
        """
        if field not in self._listeners:
            raise ValueError(f"Unknown field: {field}")
        self._listeners[field].append(callback)

        def unsubscribe():
            if callback in self._listeners[field]:
                self._listeners[field].remove(callback)

        return unsubscribe

    def _set(self, field: str, value: Any) -> None:
        attr = f"_{field}"
        if getattr(self, attr) == value:
            return
        setattr(self, attr, value)
        for callback in list(self._listeners[field]):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Listener for {field} failed: {str(e)}")

    def __enter__(self):
        self.start_tracking()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop_tracking()
        return False
