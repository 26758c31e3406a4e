"""
Remaining distance and ETA estimation for a tracked trip
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .models import Coordinate, DerivedMetrics, Location

ROAD_DISTANCE_FACTOR = 1.3  # straight line -> approximate road distance
AVERAGE_SPEED_MPS = 11.1    # fallback speed, ~40 km/h


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return distance in meters between two lat/lon points."""
    R = 6371000
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dlambda/2)**2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compass bearing in degrees [0, 360) from point 1 towards point 2."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)
    x = math.sin(dlambda) * math.cos(phi2)
    y = math.cos(phi1)*math.sin(phi2) - math.sin(phi1)*math.cos(phi2)*math.cos(dlambda)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def calculate_eta_seconds(distance: float, speed: float = AVERAGE_SPEED_MPS) -> float:
    """Convert distance (m) and speed (m/s) into seconds remaining."""
    if speed <= 0:
        speed = AVERAGE_SPEED_MPS
    return distance / speed


def format_duration(seconds: float) -> str:
    """Abbreviated hours/minutes, e.g. "3h 37m", "45m", "2h"."""
    total_minutes = int(max(seconds, 0) // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def recalculate_metrics(
    current: Location,
    destination: Coordinate,
    now: Optional[datetime] = None,
    road_factor: float = ROAD_DISTANCE_FACTOR,
    average_speed: float = AVERAGE_SPEED_MPS,
) -> DerivedMetrics:
    """Estimate remaining road distance and ETA from the current fix.

    This is a heuristic: the straight-line distance is scaled by a fixed
    road factor, and the ETA assumes a constant average speed. No route
    service is consulted.
    """
    direct = haversine_distance(
        current.latitude, current.longitude,
        destination.latitude, destination.longitude,
    )
    remaining = direct * road_factor
    seconds_remaining = calculate_eta_seconds(remaining, average_speed)

    now = now or utc_now()
    return DerivedMetrics(
        remaining_distance_meters=remaining,
        eta=now + timedelta(seconds=seconds_remaining),
        formatted_eta=format_duration(seconds_remaining),
    )


class MetricsCalculator:
    """Holds the tuning constants and clock for repeated recomputation"""

    def __init__(
        self,
        road_factor: float = ROAD_DISTANCE_FACTOR,
        average_speed: float = AVERAGE_SPEED_MPS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.road_factor = road_factor
        self.average_speed = average_speed
        self.clock = clock

    def __call__(self, current: Location, destination: Coordinate) -> DerivedMetrics:
        return recalculate_metrics(
            current,
            destination,
            now=self.clock(),
            road_factor=self.road_factor,
            average_speed=self.average_speed,
        )
