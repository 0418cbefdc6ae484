# drone-dispatch/dronedispatch/routing.py
"""
Route generation for delivery missions.

A route is the ordered waypoint sequence

    start -> N points -> pickup -> M points -> delivery -> K points -> end

where ``end`` repeats the start coordinate (the drone flies back to where it
took off). Intermediate points are linear interpolations; there is no
obstacle avoidance or airspace model.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from . import config, utils
from .models import Waypoint, WaypointRole


@dataclass(frozen=True)
class Route:
    """A generated route together with its precomputed length and duration."""
    waypoints: Tuple[Waypoint, ...]
    distance_km: float
    duration_min: int

    @property
    def num_waypoints(self) -> int:
        return len(self.waypoints)


def _leg(start: utils.LatLng, end: utils.LatLng, steps: int):
    return [Waypoint(lat, lng, WaypointRole.WAYPOINT)
            for lat, lng in utils.interpolate_points(start, end, steps)]


def generate_route(
    start: utils.LatLng,
    pickup: utils.LatLng,
    delivery: utils.LatLng,
    to_pickup_steps: Optional[int] = None,
    to_delivery_steps: Optional[int] = None,
    return_steps: Optional[int] = None,
) -> Tuple[Waypoint, ...]:
    """
    Build the waypoint sequence for a mission.

    Args:
        start: Vehicle position when the mission is created
        pickup: Pickup coordinate
        delivery: Delivery coordinate
        to_pickup_steps: Points between start and pickup (default STEPS_TO_PICKUP)
        to_delivery_steps: Points between pickup and delivery (default STEPS_TO_DELIVERY)
        return_steps: Points between delivery and end (default STEPS_RETURN)

    Returns:
        Tuple of waypoints; 22 long with the default step counts
    """
    if to_pickup_steps is None:
        to_pickup_steps = config.STEPS_TO_PICKUP
    if to_delivery_steps is None:
        to_delivery_steps = config.STEPS_TO_DELIVERY
    if return_steps is None:
        return_steps = config.STEPS_RETURN

    route = [Waypoint(start[0], start[1], WaypointRole.START)]
    route.extend(_leg(start, pickup, to_pickup_steps))
    route.append(Waypoint(pickup[0], pickup[1], WaypointRole.PICKUP))
    route.extend(_leg(pickup, delivery, to_delivery_steps))
    route.append(Waypoint(delivery[0], delivery[1], WaypointRole.DELIVERY))
    route.extend(_leg(delivery, start, return_steps))
    route.append(Waypoint(start[0], start[1], WaypointRole.END))
    return tuple(route)


def route_distance(route: Sequence[Waypoint]) -> float:
    """Sum of great-circle distances between consecutive waypoints (km)."""
    total = 0.0
    for prev, curr in zip(route, route[1:]):
        total += utils.distance_km(prev.loc, curr.loc)
    return total


def estimated_duration(route: Sequence[Waypoint]) -> int:
    """Flight time in whole minutes at AVG_SPEED_KMH, never below 1."""
    minutes = utils.calculate_travel_time_minutes(route_distance(route))
    return max(config.MIN_ROUTE_DURATION_MINS, math.ceil(minutes))


def build_route(start: utils.LatLng, pickup: utils.LatLng, delivery: utils.LatLng) -> Route:
    """Generate a route and precompute its distance and duration."""
    waypoints = generate_route(start, pickup, delivery)
    return Route(
        waypoints=waypoints,
        distance_km=route_distance(waypoints),
        duration_min=estimated_duration(waypoints),
    )
