"""
Simulated positioning sensor that drives along a fixed route
"""

import asyncio
import random
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .metrics import haversine_distance, initial_bearing, utc_now
from .sensor import AuthorizationStatus, PositioningSensor, SensorFix


class SimulatedSensor(PositioningSensor):
    """Simulates a vehicle's GPS moving along a route at constant speed"""

    def __init__(
        self,
        route_points: List[Tuple[float, float]],
        speed_kmh: float = 40.0,
        grant_permission: bool = True,
        noise_degrees: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__()
        if len(route_points) < 2:
            raise ValueError("A route needs at least two points")
        self.route_points = route_points
        self.speed_kmh = speed_kmh
        self.grant_permission = grant_permission
        self.noise_degrees = noise_degrees
        self.clock = clock
        self.current_position_index = 0
        self.current_position = route_points[0]
        self.course = -1.0

    def _prompt_for_authorization(self) -> AuthorizationStatus:
        if self.grant_permission:
            return AuthorizationStatus.AUTHORIZED_WHEN_IN_USE
        return AuthorizationStatus.DENIED

    def calculate_next_position(self, time_delta_seconds: float) -> Tuple[float, float]:
        """Advance along the route by speed * time, wrapping at the end."""
        speed_ms = (self.speed_kmh * 1000) / 3600  # km/h -> m/s
        if speed_ms <= 0:
            return self.current_position
        remaining_time = time_delta_seconds

        while remaining_time > 0:
            next_idx = (self.current_position_index + 1) % len(self.route_points)
            start = self.current_position
            end = self.route_points[next_idx]

            segment_dist = haversine_distance(start[0], start[1], end[0], end[1])
            travel_dist = speed_ms * remaining_time

            if segment_dist > 0:
                self.course = initial_bearing(start[0], start[1], end[0], end[1])

            if travel_dist >= segment_dist:
                # reach the waypoint, carry leftover time into the next segment
                self.current_position = end
                self.current_position_index = next_idx
                remaining_time -= segment_dist / speed_ms
            else:
                frac = travel_dist / segment_dist
                self.current_position = (
                    start[0] + (end[0] - start[0]) * frac,
                    start[1] + (end[1] - start[1]) * frac,
                )
                remaining_time = 0

        return self.current_position

    def current_fix(self) -> SensorFix:
        lat, lon = self.current_position
        if self.noise_degrees:
            lat += random.uniform(-self.noise_degrees, self.noise_degrees)
            lon += random.uniform(-self.noise_degrees, self.noise_degrees)
        return SensorFix(
            latitude=round(lat, 6),
            longitude=round(lon, 6),
            timestamp=self.clock(),
            course=self.course,
            speed=self.speed_kmh / 3.6,
        )

    def step(self, time_delta_seconds: float) -> Optional[SensorFix]:
        """Move, then deliver one fix. Returns None while updates are stopped."""
        self.calculate_next_position(time_delta_seconds)
        if not self.is_updating:
            return None
        fix = self.current_fix()
        self._deliver(fix)
        return fix

    async def run(self, interval: float, count: Optional[int] = None):
        """Emit a fix every `interval` seconds until stopped or `count` reached."""
        emitted = 0
        while self.is_updating and (count is None or emitted < count):
            await asyncio.sleep(interval)
            if self.step(interval) is not None:
                emitted += 1


def create_sample_route() -> List[Tuple[float, float]]:
    """A short delivery loop around Connaught Place, New Delhi"""
    return [
        (28.632900, 77.219500),  # Rajiv Chowk
        (28.630400, 77.222800),  # Outer Circle, east
        (28.627600, 77.219300),  # Janpath crossing
        (28.628900, 77.214600),  # Baba Kharak Singh Marg
        (28.632400, 77.215100),  # Outer Circle, north-west
        (28.632900, 77.219500),
    ]
