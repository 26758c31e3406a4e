"""
FleetTrack tracking dashboard service
Follows trip vehicles over the realtime change stream and serves live status, distance and ETA
"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
from collections import Counter
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from . import __version__
from .config import Settings, settings as default_settings
from .dynamo_store import DynamoStore
from .errors import LocationError, TripNotFoundError
from .kinesis_channel import KinesisRealtimeClient
from .metrics import MetricsCalculator
from .models import HealthStatus, TrackingSnapshot
from .realtime import RealtimeClient
from .remote_provider import RemoteLocationProvider
from .trip_map import TripTrackingSession

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DynamoStore] = None,
    realtime: Optional[RealtimeClient] = None,
) -> FastAPI:
    """Build the service. Collaborators left as None are created from settings at startup."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting FleetTrack tracking service...")

        app.state.store = store or DynamoStore(
            vehicle_table=settings.VEHICLE_TABLE_NAME,
            trip_table=settings.TRIP_TABLE_NAME,
            region=settings.AWS_REGION
        )
        app.state.realtime = realtime or KinesisRealtimeClient(
            stream_name=settings.KINESIS_STREAM_NAME,
            region=settings.AWS_REGION,
            shard_iterator_type=settings.KINESIS_SHARD_ITERATOR_TYPE,
            batch_size=settings.KINESIS_BATCH_SIZE,
            poll_interval=settings.KINESIS_POLL_INTERVAL
        )

        yield

        logger.info("Shutting down FleetTrack tracking service...")
        sessions: Dict[str, TripTrackingSession] = app.state.sessions
        closing = list(sessions.values())
        sessions.clear()
        await asyncio.gather(*(session.aclose() for session in closing))

    app = FastAPI(
        title="FleetTrack Tracking Service",
        description="Live vehicle location tracking for fleet managers",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.store = None
    app.state.realtime = None
    app.state.sessions = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_initialized(request: Request):
        if request.app.state.store is None or request.app.state.realtime is None:
            raise HTTPException(status_code=503, detail="Service not initialized")

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint"""
        return {
            "service": settings.SERVICE_NAME,
            "version": __version__,
            "status": "running"
        }

    @app.get("/health", response_model=HealthStatus)
    async def health_check(request: Request):
        """Health check endpoint"""
        state = request.app.state
        health = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {}
        }

        for name, component in (("dynamo_store", state.store), ("realtime", state.realtime)):
            if component is None:
                health["components"][name] = "initializing"
                continue
            healthy = await component.health_check()
            health["components"][name] = "healthy" if healthy else "unhealthy"

        if "unhealthy" in health["components"].values():
            health["status"] = "unhealthy"
            return JSONResponse(content=health, status_code=503)
        elif "initializing" in health["components"].values():
            health["status"] = "starting"

        return HealthStatus(**health)

    @app.get("/metrics")
    async def metrics(request: Request):
        """Tracking session counters"""
        sessions: Dict[str, TripTrackingSession] = request.app.state.sessions
        statuses = Counter(session.provider.status.kind.value for session in sessions.values())
        return {
            "active_sessions": len(sessions),
            "sessions_by_status": dict(statuses),
        }

    @app.post("/trips/{trip_id}/tracking", response_model=TrackingSnapshot)
    async def start_trip_tracking(trip_id: str, request: Request):
        """Start following a trip's vehicle. Idempotent per trip."""
        require_initialized(request)
        state = request.app.state

        session = state.sessions.get(trip_id)
        if session is not None:
            return session.snapshot()

        trip = await state.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        if not trip.is_live:
            raise HTTPException(status_code=409, detail=f"Trip is {trip.status.value}, only ongoing trips can be tracked")

        initial_location = await state.store.get_vehicle_location(trip.vehicle_id)
        # another request may have started the trip while this one awaited the store
        session = state.sessions.get(trip_id)
        if session is not None:
            return session.snapshot()

        provider = RemoteLocationProvider(
            vehicle_id=trip.vehicle_id,
            realtime=state.realtime,
            initial_location=initial_location,
            stale_threshold=settings.STALE_THRESHOLD_SECONDS,
            check_interval=settings.STALENESS_CHECK_INTERVAL_SECONDS
        )
        session = TripTrackingSession(
            trip,
            provider,
            MetricsCalculator(
                road_factor=settings.ROAD_DISTANCE_FACTOR,
                average_speed=settings.AVERAGE_SPEED_MPS
            )
        )
        session.start_tracking()
        state.sessions[trip_id] = session
        return session.snapshot()

    @app.get("/trips/{trip_id}/tracking", response_model=TrackingSnapshot)
    async def get_trip_tracking(trip_id: str, request: Request):
        """Current location, status, distance and ETA for a tracked trip"""
        session = request.app.state.sessions.get(trip_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Trip is not being tracked")
        return session.snapshot()

    @app.delete("/trips/{trip_id}/tracking")
    async def stop_trip_tracking(trip_id: str, request: Request):
        """Stop following a trip's vehicle"""
        session = request.app.state.sessions.pop(trip_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail="Trip is not being tracked")
        await session.aclose()
        return {"message": f"Stopped tracking trip {trip_id}"}

    @app.exception_handler(LocationError)
    async def location_error_handler(request, exc: LocationError):
        return JSONResponse(
            status_code=404 if isinstance(exc, TripNotFoundError) else 400,
            content={"detail": exc.message, "recovery_suggestion": exc.recovery_suggestion}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


logging.basicConfig(level=default_settings.LOG_LEVEL)
app = create_app()
