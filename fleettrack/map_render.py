"""
Render a tracking snapshot as an interactive Folium map
"""

import folium

from .models import StatusKind, TrackingSnapshot

STATUS_COLORS = {
    StatusKind.ACTIVE: "green",
    StatusKind.STALE: "orange",
    StatusKind.OFFLINE: "gray",
    StatusKind.CONNECTING: "blue",
}


def status_label(snapshot: TrackingSnapshot) -> str:
    status = snapshot.status
    if status.kind == StatusKind.STALE and status.since is not None:
        return f"stale since {status.since.strftime('%H:%M')}"
    return status.kind.value


def build_map(snapshot: TrackingSnapshot, zoom_start: int = 13) -> folium.Map:
    """Vehicle marker coloured by status, destination marker, and the line between them"""
    if snapshot.location is None and snapshot.destination is None:
        raise ValueError(f"Trip {snapshot.trip_id} has neither a location nor a destination")

    points = []
    if snapshot.location is not None:
        points.append((snapshot.location.latitude, snapshot.location.longitude))
    if snapshot.destination is not None:
        points.append((snapshot.destination.latitude, snapshot.destination.longitude))

    center = (
        sum(p[0] for p in points) / len(points),
        sum(p[1] for p in points) / len(points),
    )
    m = folium.Map(location=center, zoom_start=zoom_start)

    if snapshot.location is not None:
        popup = f"{snapshot.vehicle_id} @ {snapshot.location.address} ({status_label(snapshot)})"
        if snapshot.metrics is not None:
            popup += f" ETA {snapshot.metrics.formatted_eta}"
        folium.CircleMarker(
            location=points[0],
            radius=8,
            popup=popup,
            weight=1,
            color=STATUS_COLORS[snapshot.status.kind],
            fill=True,
            fill_opacity=0.8
        ).add_to(m)

    if snapshot.destination is not None:
        folium.Marker(location=points[-1], popup=f"Destination for trip {snapshot.trip_id}").add_to(m)

    if len(points) == 2:
        folium.PolyLine(points, weight=2, color="gray", dash_array="6").add_to(m)

    return m


def save_map(snapshot: TrackingSnapshot, output_file: str = "map.html", zoom_start: int = 13) -> str:
    build_map(snapshot, zoom_start=zoom_start).save(output_file)
    return output_file
