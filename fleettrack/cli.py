#!/usr/bin/env python3
"""
FleetTrack command line tools

    fleettrack simulate --vehicle-id veh-001 --publish
    fleettrack watch --vehicle-id veh-001 --dest-lat 28.61 --dest-lon 77.21
    fleettrack map --snapshot snapshot.json --output map.html
    fleettrack serve --port 8000
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
import uvicorn
from dotenv import load_dotenv

from .config import settings
from .device_provider import DeviceLocationProvider
from .kinesis_channel import KinesisRealtimeClient
from .map_render import save_map
from .metrics import MetricsCalculator
from .models import Coordinate, Location, ProviderStatus, TrackingSnapshot
from .publisher import VehicleUpdatePublisher
from .remote_provider import RemoteLocationProvider
from .simulator import SimulatedSensor, create_sample_route

# Load environment variables
load_dotenv()


def describe_status(status: ProviderStatus) -> str:
    if status.since is not None:
        return f"{status.kind.value} (since {status.since.isoformat()})"
    return status.kind.value


@click.group()
@click.option('--log-level', envvar='LOG_LEVEL', default=settings.LOG_LEVEL, help='Logging level')
def cli(log_level):
    """FleetTrack live location tools"""
    logging.basicConfig(level=log_level.upper())


@cli.command()
@click.option('--vehicle-id', default='veh-sim-001', help='Vehicle ID to report as')
@click.option('--interval', envvar='PUBLISH_INTERVAL', default=5.0, help='Seconds between fixes')
@click.option('--speed', envvar='VEHICLE_SPEED_KMH', default=40.0, help='Simulated speed in km/h')
@click.option('--count', default=None, type=int, help='Stop after this many fixes')
@click.option('--publish/--no-publish', default=False, help='Publish each fix to the change stream')
@click.option('--stream', envvar='KINESIS_STREAM_NAME', default=settings.KINESIS_STREAM_NAME, help='Kinesis stream name')
@click.option('--region', envvar='AWS_REGION', default=settings.AWS_REGION, help='AWS region')
def simulate(vehicle_id, interval, speed, count, publish, stream, region):
    """Drive a simulated vehicle and relay it through a device provider"""
    sensor = SimulatedSensor(create_sample_route(), speed_kmh=speed)
    provider = DeviceLocationProvider(sensor)
    publisher = VehicleUpdatePublisher(stream, region) if publish else None
    pending = []

    def on_location(location: Optional[Location]):
        if location is None:
            return
        click.echo(
            f"{location.timestamp.isoformat()} {vehicle_id} "
            f"({location.latitude:.6f}, {location.longitude:.6f}) heading={provider.heading}"
        )
        if publisher:
            # put_record is blocking
            loop = asyncio.get_running_loop()
            pending.append(loop.run_in_executor(None, publisher.publish_location, vehicle_id, location))

    provider.observe("current_location", on_location)
    provider.observe("status", lambda status: click.echo(f"status: {describe_status(status)}"))

    click.echo(f"Starting simulated vehicle {vehicle_id} at {speed} km/h, fix every {interval}s")
    if publisher:
        click.echo(f"Publishing to stream: {stream}")
    click.echo("Press Ctrl+C to stop...\n")

    async def run():
        provider.start_tracking()
        try:
            await sensor.run(interval, count)
        finally:
            # failures are already logged by the publisher
            await asyncio.gather(*pending, return_exceptions=True)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopping simulator...")
    finally:
        provider.close()


@cli.command()
@click.option('--vehicle-id', required=True, help='Vehicle ID to follow')
@click.option('--dest-lat', type=float, default=None, help='Destination latitude')
@click.option('--dest-lon', type=float, default=None, help='Destination longitude')
@click.option('--duration', type=float, default=None, help='Stop after this many seconds')
@click.option('--stream', envvar='KINESIS_STREAM_NAME', default=settings.KINESIS_STREAM_NAME, help='Kinesis stream name')
@click.option('--region', envvar='AWS_REGION', default=settings.AWS_REGION, help='AWS region')
def watch(vehicle_id, dest_lat, dest_lon, duration, stream, region):
    """Follow a vehicle over the change stream"""
    destination = None
    if dest_lat is not None and dest_lon is not None:
        destination = Coordinate(latitude=dest_lat, longitude=dest_lon)
    calculator = MetricsCalculator(settings.ROAD_DISTANCE_FACTOR, settings.AVERAGE_SPEED_MPS)

    realtime = KinesisRealtimeClient(
        stream_name=stream,
        region=region,
        shard_iterator_type=settings.KINESIS_SHARD_ITERATOR_TYPE,
        batch_size=settings.KINESIS_BATCH_SIZE,
        poll_interval=settings.KINESIS_POLL_INTERVAL
    )
    provider = RemoteLocationProvider(
        vehicle_id,
        realtime,
        stale_threshold=settings.STALE_THRESHOLD_SECONDS,
        check_interval=settings.STALENESS_CHECK_INTERVAL_SECONDS
    )

    def on_location(location: Optional[Location]):
        if location is None:
            return
        line = f"{location.timestamp.isoformat()} ({location.latitude:.6f}, {location.longitude:.6f}) {location.address}"
        if destination is not None:
            metrics = calculator(location, destination)
            line += f" | {metrics.remaining_distance_meters / 1000:.1f} km, ETA {metrics.formatted_eta}"
        click.echo(line)

    provider.observe("current_location", on_location)
    provider.observe("status", lambda status: click.echo(f"status: {describe_status(status)}"))

    async def run():
        provider.start_tracking()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            provider.stop_tracking()

    click.echo(f"Watching vehicle {vehicle_id} on stream {stream}")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped watching")


@cli.command()
@click.option('--host', envvar='HOST', default='0.0.0.0', help='Bind address')
@click.option('--port', envvar='PORT', default=8000, help='Bind port')
def serve(host, port):
    """Run the tracking dashboard service"""
    uvicorn.run("fleettrack.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())


@cli.command(name='map')
@click.option('--snapshot', 'snapshot_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Tracking snapshot JSON (as served by GET /trips/{id}/tracking)')
@click.option('--output', default='map.html', help='Output HTML file for the map')
@click.option('--zoom', type=int, default=13, help='Initial zoom level')
def render_map(snapshot_path, output, zoom):
    """Render a tracking snapshot as an interactive map"""
    snapshot = TrackingSnapshot.model_validate(json.loads(Path(snapshot_path).read_text()))
    save_map(snapshot, output_file=output, zoom_start=zoom)
    click.echo(f"Map saved to {output}")


if __name__ == "__main__":
    cli()
