# drone-dispatch/dronedispatch/scoring.py
"""
Scoring functions for vehicle selection.

Each eligible vehicle "bids" on an order with a cost; the dispatcher awards
the order to the lowest bidder.

Key Design Principles:
1. Lower score = better bid = higher priority
2. Distance to the pickup dominates; a fuller battery is a tie-breaker
3. Ties are broken by vehicle id so assignment is reproducible
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

from . import config, utils
from .models import Order, Vehicle, VehicleStatus


def is_eligible(vehicle: Vehicle, order: Order) -> bool:
    """
    Hard constraints a vehicle must meet before it may bid.

    - active (not decommissioned)
    - AVAILABLE
    - battery >= MIN_ASSIGNMENT_BATTERY
    - capacity >= package weight
    """
    return (
        vehicle.is_active
        and vehicle.status == VehicleStatus.AVAILABLE
        and vehicle.battery >= config.MIN_ASSIGNMENT_BATTERY
        and vehicle.capacity_kg >= order.package_weight
    )


def calculate_assignment_score(vehicle: Vehicle, order: Order) -> float:
    """
    Cost for a vehicle to take on an order.

    score = W_PICKUP_DISTANCE * distance_to_pickup_km
          + W_BATTERY_DEFICIT * (100 - battery)

    Args:
        vehicle: The bidding vehicle (its position falls back to home base)
        order: The order being bid on

    Returns:
        Cost score (lower is better)
    """
    distance_to_pickup = utils.distance_km(vehicle.position, order.pickup_loc)
    battery_deficit = 100.0 - vehicle.battery
    return (config.W_PICKUP_DISTANCE * distance_to_pickup
            + config.W_BATTERY_DEFICIT * battery_deficit)


def rank_candidates(vehicles: Iterable[Vehicle], order: Order) -> List[Tuple[float, Vehicle]]:
    """
    Filter out ineligible vehicles and sort the rest by (score, vehicle_id).

    Returns:
        List of (score, vehicle), best first. Empty if nobody can take the order.
    """
    scored = [
        (calculate_assignment_score(vehicle, order), vehicle)
        for vehicle in vehicles
        if is_eligible(vehicle, order)
    ]
    scored.sort(key=lambda item: (item[0], item[1].vehicle_id))
    return scored
