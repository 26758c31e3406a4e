"""
Configuration for the FleetTrack location tracking service
"""

from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    """Application settings"""

    # AWS Configuration
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None

    # Realtime change stream (Kinesis)
    KINESIS_STREAM_NAME: str = "fleettrack-vehicle-changes-dev"
    KINESIS_SHARD_ITERATOR_TYPE: str = "LATEST"
    KINESIS_BATCH_SIZE: int = 100
    KINESIS_POLL_INTERVAL: float = 1.0

    # DynamoDB Configuration
    VEHICLE_TABLE_NAME: str = "fleettrack-vehicles-dev"
    TRIP_TABLE_NAME: str = "fleettrack-trips-dev"

    # Tracking
    STALE_THRESHOLD_SECONDS: float = 300.0  # fix older than this is stale
    STALENESS_CHECK_INTERVAL_SECONDS: float = 60.0
    ROAD_DISTANCE_FACTOR: float = 1.3
    AVERAGE_SPEED_MPS: float = 11.1  # ~40 km/h fallback

    # Service Configuration
    SERVICE_NAME: str = "fleettrack"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
