"""
Data models for FleetTrack location tracking
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum

class Coordinate(BaseModel):
    """A bare lat/lon pair"""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        frozen = True

class Location(BaseModel):
    """Snapshot of a tracked entity's position"""
    latitude: float
    longitude: float
    address: str
    timestamp: datetime

    class Config:
        frozen = True

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        """Naive timestamps are taken as UTC"""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)

class StatusKind(str, Enum):
    ACTIVE = "active"
    STALE = "stale"
    OFFLINE = "offline"
    CONNECTING = "connecting"

class ProviderStatus(BaseModel):
    """Freshness/connectivity of a location stream.

    `since` is only set for STALE and holds the timestamp of the last fix.
    """
    kind: StatusKind
    since: Optional[datetime] = None

    class Config:
        frozen = True

    @classmethod
    def active(cls) -> "ProviderStatus":
        return cls(kind=StatusKind.ACTIVE)

    @classmethod
    def stale(cls, since: datetime) -> "ProviderStatus":
        return cls(kind=StatusKind.STALE, since=since)

    @classmethod
    def offline(cls) -> "ProviderStatus":
        return cls(kind=StatusKind.OFFLINE)

    @classmethod
    def connecting(cls) -> "ProviderStatus":
        return cls(kind=StatusKind.CONNECTING)

class DerivedMetrics(BaseModel):
    """Remaining distance and ETA, recomputed on every location change"""
    remaining_distance_meters: float
    eta: datetime
    formatted_eta: str

class TripStatus(str, Enum):
    SCHEDULED = "Scheduled"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

class TripRecord(BaseModel):
    """The parts of a trip the tracking map needs"""
    id: str
    vehicle_id: str
    driver_id: Optional[str] = None
    status: TripStatus = TripStatus.SCHEDULED
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    end_address: Optional[str] = None

    @property
    def destination(self) -> Optional[Coordinate]:
        if self.end_latitude is None or self.end_longitude is None:
            return None
        return Coordinate(latitude=self.end_latitude, longitude=self.end_longitude)

    @property
    def is_live(self) -> bool:
        return self.status == TripStatus.ONGOING

class TrackingSnapshot(BaseModel):
    """Point-in-time view of a trip tracking session"""
    trip_id: str
    vehicle_id: str
    is_live: bool
    location: Optional[Location] = None
    heading: Optional[float] = None
    status: ProviderStatus
    is_updating: bool
    destination: Optional[Coordinate] = None
    metrics: Optional[DerivedMetrics] = None

class VehicleUpdate(BaseModel):
    """Position report published for a vehicle"""
    vehicle_id: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    timestamp: Optional[datetime] = None

class HealthStatus(BaseModel):
    """Service health status"""
    status: str  # healthy, unhealthy, starting
    timestamp: str
    components: Dict[str, str]
    details: Optional[Dict[str, Any]] = None
