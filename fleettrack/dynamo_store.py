"""
DynamoDB lookups for trips and vehicles
"""

import boto3
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from .models import Location, TripRecord, TripStatus
from .remote_provider import decode_location, parse_timestamp

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """DynamoDB returns numbers as Decimal"""
    if isinstance(value, Decimal):
        return float(value)
    return value


class DynamoStore:
    """Reads the trip and vehicle rows a tracking session starts from"""

    def __init__(self, vehicle_table: str, trip_table: str, region: str = "us-east-1", dynamodb=None):
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=region)
        self.vehicle_table = self.dynamodb.Table(vehicle_table)
        self.trip_table = self.dynamodb.Table(trip_table)
        self.vehicle_table_name = vehicle_table
        self.trip_table_name = trip_table

    async def health_check(self) -> bool:
        """Check if DynamoDB tables are accessible"""
        try:
            loop = asyncio.get_running_loop()

            vehicle_status = await loop.run_in_executor(
                None,
                lambda: self.vehicle_table.table_status
            )
            trip_status = await loop.run_in_executor(
                None,
                lambda: self.trip_table.table_status
            )

            return vehicle_status == 'ACTIVE' and trip_status == 'ACTIVE'
        except Exception as e:
            logger.error(f"DynamoDB health check failed: {str(e)}")
            return False

    async def get_trip(self, trip_id: str) -> Optional[TripRecord]:
        """Fetch a trip, or None if it does not exist or cannot be read"""
        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.trip_table.get_item(Key={'id': trip_id})
            )

            item = response.get('Item')
            if not item:
                return None

            return TripRecord(
                id=item['id'],
                vehicle_id=item['vehicle_id'],
                driver_id=item.get('driver_id'),
                status=TripStatus(item.get('status', TripStatus.SCHEDULED.value)),
                end_latitude=_plain(item.get('end_latitude')),
                end_longitude=_plain(item.get('end_longitude')),
                end_address=item.get('end_address'),
            )

        except Exception as e:
            logger.error(f"Error fetching trip {trip_id}: {str(e)}")
            return None

    async def get_vehicle_location(self, vehicle_id: str) -> Optional[Location]:
        """Last known position of a vehicle, used to seed a remote provider.

        Rows without a usable `last_location_update` are ignored: with no
        timestamp the fix's freshness is unknown.
        """
        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.vehicle_table.get_item(Key={'id': vehicle_id})
            )

            item = response.get('Item')
            if not item or parse_timestamp(item.get('last_location_update')) is None:
                return None

            record: Dict[str, Any] = {key: _plain(value) for key, value in item.items()}
            return decode_location(record)

        except Exception as e:
            logger.error(f"Error fetching vehicle {vehicle_id}: {str(e)}")
            return None
