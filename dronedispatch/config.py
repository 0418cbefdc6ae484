# drone-dispatch/dronedispatch/config.py
"""
Configuration parameters for the drone delivery dispatch core.

This module centralizes all tunable parameters, making it easy to:
- Adjust pricing and delivery-time promises
- Fine-tune vehicle eligibility and assignment scoring
- Configure the fleet simulation tick

Components read these values at call time (``config.NAME``), so tests and
deployments can override them by patching the module attribute.
"""

from typing import Dict, Final

# =============================================================================
# GEO CONSTANTS
# =============================================================================

EARTH_RADIUS_KM: Final[float] = 6371.0
"""Mean Earth radius used by the haversine formula."""

OPERATING_BOUNDS: Dict[str, float] = {
    "min_lat": 40.5,
    "max_lat": 41.0,
    "min_lng": -74.3,
    "max_lng": -73.7,
}
"""Operating bounding box (roughly the New York City area). Simulated
positions are clamped into it."""

# =============================================================================
# PRICING AND DELIVERY PROMISES
# =============================================================================

BASE_FEE: Final[float] = 5.0
"""Flat fee charged for every order."""

FEE_PER_KM: Final[float] = 0.5
"""Fee per kilometer of pickup-to-delivery distance."""

FEE_PER_KG: Final[float] = 0.2
"""Fee per kilogram of package weight."""

URGENCY_FEE_MULTIPLIERS: Dict[str, float] = {
    "STANDARD": 1.0,
    "PRIORITY": 1.5,
    "URGENT": 2.0,
}
"""Multiplier applied to the base price for each urgency tier."""

URGENCY_DELIVERY_MINUTES: Dict[str, int] = {
    "STANDARD": 35,
    "PRIORITY": 20,
    "URGENT": 12,
}
"""Promised delivery window in minutes, measured from order creation."""

TRACKING_CODE_PREFIX: Final[str] = "DD"
"""Prefix for human-shareable tracking codes."""

# =============================================================================
# ROUTING
# =============================================================================

AVG_SPEED_KMH: float = 30.0
"""Assumed average ground speed of a drone. 30 km/h = 0.5 km/min."""

STEPS_TO_PICKUP: int = 5
"""Interpolated waypoints between the vehicle start and the pickup point."""

STEPS_TO_DELIVERY: int = 8
"""Interpolated waypoints between the pickup and the delivery point."""

STEPS_RETURN: int = 5
"""Interpolated waypoints on the way back to the start point."""

MIN_ROUTE_DURATION_MINS: Final[int] = 1
"""Lower bound on any estimated mission duration."""

# =============================================================================
# ASSIGNMENT
# =============================================================================
# Lower score = better candidate.

MIN_ASSIGNMENT_BATTERY: float = 30.0
"""Vehicles below this battery percentage are never assigned new orders."""

W_PICKUP_DISTANCE: float = 0.7
"""Weight for the distance between the vehicle and the pickup point (km)."""

W_BATTERY_DEFICIT: float = 0.3
"""Weight for the missing battery percentage (100 - battery)."""

MAX_ASSIGNMENT_ATTEMPTS: int = 3
"""How many times order intake retries after losing a reservation race."""

# =============================================================================
# FLEET SIMULATION
# =============================================================================

SIMULATION_TICK_SECONDS: float = 5.0
"""Real-time period of the fleet simulation tick."""

POSITION_JITTER_DEG: float = 0.001
"""Magnitude of the per-tick random walk applied to vehicle positions."""

MAX_BATTERY_DRAIN_PER_TICK: float = 2.0
"""Upper bound of the random battery drain while delivering (percent)."""

MAX_BATTERY_CHARGE_PER_TICK: float = 2.0
"""Upper bound of the random recharge while charging (percent)."""

LOW_BATTERY_THRESHOLD: float = 20.0
"""Below this level a vehicle is forced into CHARGING and an alert is raised."""

# Idle AVAILABLE vehicles below MIN_ASSIGNMENT_BATTERY go to CHARGING without an alert.

CHARGED_THRESHOLD: float = 80.0
"""Charging vehicles become AVAILABLE again once they reach this level."""

RETRY_PENDING_ON_TICK: bool = True
"""Retry assignment of pending orders at the end of every tick."""

TELEMETRY_HISTORY_SIZE: int = 720
"""Telemetry readings kept per vehicle (one hour at the default tick)."""

# =============================================================================
# EVENT PUBLISHING
# =============================================================================

WEBHOOK_URL: str = ""
"""
Endpoint that receives every published event as JSON.
Empty string disables webhook forwarding.
"""

WEBHOOK_TIMEOUT_SECONDS: float = 2.0
"""Timeout for webhook requests. Fail fast to avoid blocking the tick."""
