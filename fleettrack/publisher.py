"""
Publishes vehicle position changes onto the realtime change stream

This is the write side that remote providers consume: each report becomes
an UPDATE event on the vehicles table, partitioned by vehicle id so one
vehicle's updates stay ordered.
"""

import json
import boto3
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import InvalidCoordinateError, InvalidVehicleIdError
from .models import Location, VehicleUpdate
from .realtime import ChangeAction, ChangeEvent
from .remote_provider import VEHICLES_TABLE

logger = logging.getLogger(__name__)

MAX_LAT = 90.0
MIN_LAT = -90.0
MAX_LON = 180.0
MIN_LON = -180.0


def validate_gps_coordinates(lat: float, lon: float) -> bool:
    """Validate GPS coordinates are within valid ranges"""
    if isinstance(lat, bool) or not isinstance(lat, (int, float)) or not MIN_LAT <= lat <= MAX_LAT:
        raise InvalidCoordinateError(f"Invalid latitude: {lat}. Must be between {MIN_LAT} and {MAX_LAT}")

    if isinstance(lon, bool) or not isinstance(lon, (int, float)) or not MIN_LON <= lon <= MAX_LON:
        raise InvalidCoordinateError(f"Invalid longitude: {lon}. Must be between {MIN_LON} and {MAX_LON}")

    return True


def validate_vehicle_id(vehicle_id: str) -> bool:
    """Vehicle ids are uuids or slugs: letters, digits, dash, underscore"""
    if not isinstance(vehicle_id, str) or len(vehicle_id) == 0:
        raise InvalidVehicleIdError("Vehicle ID must be a non-empty string")

    if len(vehicle_id) > 64:
        raise InvalidVehicleIdError("Vehicle ID must be at most 64 characters")

    if not all(c.isalnum() or c in ['-', '_'] for c in vehicle_id):
        raise InvalidVehicleIdError("Vehicle ID can only contain letters, numbers, dash, and underscore")

    return True


def build_change_event(update: VehicleUpdate, now: Optional[datetime] = None) -> ChangeEvent:
    """Validate a report and shape it like a vehicles row update"""
    validate_vehicle_id(update.vehicle_id)
    validate_gps_coordinates(update.latitude, update.longitude)

    timestamp = update.timestamp or now or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    record: Dict[str, Any] = {
        'id': update.vehicle_id,
        'latitude': update.latitude,
        'longitude': update.longitude,
        'last_location_update': timestamp.astimezone(timezone.utc).isoformat(timespec='milliseconds'),
    }
    if update.address:
        record['address'] = update.address

    return ChangeEvent(action=ChangeAction.UPDATE, table=VEHICLES_TABLE, record=record)


class VehicleUpdatePublisher:
    """Puts vehicle change events on a Kinesis stream"""

    def __init__(self, stream_name: str, region: str = "us-east-1", kinesis_client=None):
        self.stream_name = stream_name
        self.kinesis_client = kinesis_client or boto3.client('kinesis', region_name=region)
        self.published_count = 0

    def publish(self, update: VehicleUpdate) -> Dict[str, Any]:
        """Validate and send one report. Returns the Kinesis put_record response."""
        event = build_change_event(update)

        try:
            response = self.kinesis_client.put_record(
                StreamName=self.stream_name,
                Data=json.dumps(event.model_dump(mode='json', by_alias=True)),
                PartitionKey=update.vehicle_id
            )
        except Exception as e:
            logger.error(f"Failed to publish update for vehicle {update.vehicle_id}: {str(e)}")
            raise

        self.published_count += 1
        logger.info(f"Published update for vehicle {update.vehicle_id}: {response['SequenceNumber']}")
        return response

    def publish_location(self, vehicle_id: str, location: Location) -> Dict[str, Any]:
        return self.publish(VehicleUpdate(
            vehicle_id=vehicle_id,
            latitude=location.latitude,
            longitude=location.longitude,
            address=location.address,
            timestamp=location.timestamp,
        ))
