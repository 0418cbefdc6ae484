# drone-dispatch/dronedispatch/utils.py
"""
Utility functions for the drone delivery dispatch core.

Provides geographic calculations, linear interpolation along a leg,
bounding-box clamping and the injectable clocks used for timestamps.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Tuple, Union

from . import config

LatLng = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Uses the Haversine formula to compute the distance between two GPS coordinates.
    The intermediate term is clamped to [0, 1] so near-identical points return
    ~0 instead of NaN from floating point overshoot.

    Args:
        lat1: Latitude of point 1 in decimal degrees
        lon1: Longitude of point 1 in decimal degrees
        lat2: Latitude of point 2 in decimal degrees
        lon2: Longitude of point 2 in decimal degrees

    Returns:
        Distance in kilometers between the two points

    Example:
        >>> round(haversine_distance(0.0, 0.0, 1.0, 0.0), 1)
        111.2
    """
    # Convert decimal degrees to radians
    lon1, lat1, lon2, lat2 = map(math.radians, [lon1, lat1, lon2, lat2])

    # Haversine formula
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = math.sin(dlat / 2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2)**2
    a = min(1.0, max(0.0, a))
    c = 2 * math.asin(math.sqrt(a))

    return c * config.EARTH_RADIUS_KM


def distance_km(a: LatLng, b: LatLng) -> float:
    """Great-circle distance between two (lat, lng) tuples in kilometers."""
    return haversine_distance(a[0], a[1], b[0], b[1])


def interpolate_points(start: LatLng, end: LatLng, steps: int) -> List[LatLng]:
    """
    Evenly spaced intermediate points between two coordinates.

    Interpolation is linear in coordinate space (not geodesic) at fractions
    i / (steps + 1) for i in 1..steps. Endpoints are not included.

    Example:
        >>> interpolate_points((0.0, 0.0), (3.0, 3.0), 2)
        [(1.0, 1.0), (2.0, 2.0)]
    """
    points: List[LatLng] = []
    for i in range(1, steps + 1):
        ratio = i / (steps + 1)
        lat = start[0] + (end[0] - start[0]) * ratio
        lng = start[1] + (end[1] - start[1]) * ratio
        points.append((lat, lng))
    return points


def clamp_to_bounds(lat: float, lng: float, bounds: Optional[Dict[str, float]] = None) -> LatLng:
    """Clamp a coordinate into the operating bounding box."""
    if bounds is None:
        bounds = config.OPERATING_BOUNDS
    lat = max(bounds["min_lat"], min(bounds["max_lat"], lat))
    lng = max(bounds["min_lng"], min(bounds["max_lng"], lng))
    return (lat, lng)


def calculate_travel_time_minutes(distance: float) -> float:
    """
    Calculate estimated travel time for a given distance.

    Args:
        distance: Distance in kilometers

    Returns:
        Estimated travel time in minutes (inf if the configured speed is 0)
    """
    if config.AVG_SPEED_KMH <= 0:
        return float('inf')
    return (distance / config.AVG_SPEED_KMH) * 60


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded up. Never negative."""
    seconds = (end - start).total_seconds()
    return max(0, math.ceil(seconds / 60))


def format_time_duration(minutes: float) -> str:
    """
    Format a duration in minutes as a human-readable string.

    Args:
        minutes: Duration in minutes

    Returns:
        Formatted string like "1h 23m" or "45m"
    """
    if minutes < 60:
        return f"{minutes:.0f}m"
    hours = int(minutes // 60)
    mins = int(minutes % 60)
    return f"{hours}h {mins}m"


# =============================================================================
# CLOCKS
# =============================================================================

class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now()


class ManualClock:
    """
    A clock that only moves when told to. Used by tests and the CLI demo so
    durations and deadlines are deterministic.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2025, 1, 15, 17, 0, 0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, minutes: Union[int, float] = 0, seconds: Union[int, float] = 0) -> datetime:
        with self._lock:
            self._now += timedelta(minutes=minutes, seconds=seconds)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value
