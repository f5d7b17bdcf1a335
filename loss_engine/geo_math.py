"""
Geodesy and time helpers used by normalisation and clustering.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Final, Optional, Sequence

# Mean Earth radius in kilometres
EARTH_RADIUS_KM: Final[float] = 6371.0

# Absorbs float noise so a point placed exactly R away is still "within R"
DISTANCE_TOLERANCE_KM: Final[float] = 1e-9


def haversine_km(
    lat1: float, lon1: float,
    lat2: float, lon2: float,
) -> float:
    """
    Great-circle distance between two points in kilometres.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometres
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_KM * c


def within_radius(distance_km: float, radius_km: float) -> bool:
    """Inclusive radius check."""
    return distance_km <= radius_km + DISTANCE_TOLERANCE_KM


def offset_north(lat: float, lon: float, distance_km: float) -> tuple[float, float]:
    """Point `distance_km` due north of (lat, lon)."""
    return lat + math.degrees(distance_km / EARTH_RADIUS_KM), lon


def hours_between(a: datetime, b: datetime) -> float:
    """Absolute gap between two aware datetimes in hours."""
    return abs((a - b).total_seconds()) / 3600.0


# =============================================================================
# Time
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or pass through a datetime) as aware UTC.

    Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


# =============================================================================
# Geometry
# =============================================================================


def ring_centroid(ring: Sequence[Sequence[float]]) -> Optional[tuple[float, float]]:
    """
    Vertex-mean centroid of a GeoJSON linear ring.

    GeoJSON rings repeat the first vertex at the end; the closing
    vertex is not counted twice.

    Returns:
        (latitude, longitude) or None for an empty/invalid ring
    """
    points = [p for p in ring if len(p) >= 2]
    if len(points) > 1 and list(points[0][:2]) == list(points[-1][:2]):
        points = points[:-1]
    if not points:
        return None

    lon = sum(float(p[0]) for p in points) / len(points)
    lat = sum(float(p[1]) for p in points) / len(points)
    return lat, lon


def geometry_centroid(geometry: Any) -> Optional[tuple[float, float]]:
    """
    Representative point for a GeoJSON geometry.

    Point -> its coordinates. Polygon -> centroid of the outer ring.
    MultiPolygon -> centroid of the first polygon's outer ring.
    Anything else -> None.
    """
    if not isinstance(geometry, dict):
        return None

    geo_type = geometry.get("type")
    coords = geometry.get("coordinates")
    try:
        if geo_type == "Point":
            return float(coords[1]), float(coords[0])
        if geo_type == "Polygon":
            return ring_centroid(coords[0])
        if geo_type == "MultiPolygon":
            return ring_centroid(coords[0][0])
    except (TypeError, IndexError, KeyError, ValueError, AttributeError):
        return None
    return None


def valid_coordinates(lat: float, lon: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lon <= 180
