# drone-dispatch/dronedispatch/__init__.py

from .models import (
    Vehicle,
    Order,
    Mission,
    Waypoint,
    TrackingEvent,
    Telemetry,
    VehicleStatus,
    OrderStatus,
    MissionStatus,
    Urgency,
    ControlAction,
    EventKind,
)
from .config import (
    AVG_SPEED_KMH,
    MIN_ASSIGNMENT_BATTERY,
    LOW_BATTERY_THRESHOLD,
    SIMULATION_TICK_SECONDS,
)
from .errors import (
    DispatchError,
    NoCapacity,
    ReservationConflict,
    InvalidTransition,
    InvalidAction,
    InvalidProgress,
    NotFound,
    InvariantViolation,
)
from .stores import InMemoryFleetStore, InMemoryOrderStore, InMemoryMissionStore
from .events import InMemoryEventBus, WebhookPublisher
from .dispatch import Assignment, DispatchEngine
from .missions import MissionController
from .simulation import FleetSimulator, TickReport
from .pricing import estimate_fee, estimate_delivery_deadline
from .routing import generate_route, build_route
from .scoring import calculate_assignment_score, rank_candidates

__version__ = "1.0.0"

__all__ = [
    # Models
    "Vehicle",
    "Order",
    "Mission",
    "Waypoint",
    "TrackingEvent",
    "Telemetry",
    "VehicleStatus",
    "OrderStatus",
    "MissionStatus",
    "Urgency",
    "ControlAction",
    "EventKind",
    # Errors
    "DispatchError",
    "NoCapacity",
    "ReservationConflict",
    "InvalidTransition",
    "InvalidAction",
    "InvalidProgress",
    "NotFound",
    "InvariantViolation",
    # Core
    "InMemoryFleetStore",
    "InMemoryOrderStore",
    "InMemoryMissionStore",
    "InMemoryEventBus",
    "WebhookPublisher",
    "Assignment",
    "DispatchEngine",
    "MissionController",
    "FleetSimulator",
    "TickReport",
    # Functions
    "estimate_fee",
    "estimate_delivery_deadline",
    "generate_route",
    "build_route",
    "calculate_assignment_score",
    "rank_candidates",
    # Config
    "AVG_SPEED_KMH",
    "MIN_ASSIGNMENT_BATTERY",
    "LOW_BATTERY_THRESHOLD",
    "SIMULATION_TICK_SECONDS",
]
