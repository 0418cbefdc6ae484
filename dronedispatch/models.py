# drone-dispatch/dronedispatch/models.py
"""
Core domain models for the drone delivery dispatch core.

This module defines the fundamental data structures shared by every component:
- Vehicle: A delivery drone with home base, position, battery and capacity
- Order: A delivery request from pickup to delivery with its priced terms
- Mission: The route and lifecycle of one assigned order
- TrackingEvent / Telemetry: Append-only history records
- PositionUpdate / StatusChange / Alert: Typed payloads for live fan-out
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class VehicleStatus(Enum):
    """
    Operational states of a drone.

    - AVAILABLE: Idle and eligible for new orders
    - DELIVERING: Flying an active mission
    - RESERVED: Its mission is paused; not eligible for new orders
    - CHARGING: Recharging after a low-battery event
    - MAINTENANCE / OFFLINE: Taken out of service by an operator
    """
    AVAILABLE = "AVAILABLE"
    DELIVERING = "DELIVERING"
    RESERVED = "RESERVED"
    CHARGING = "CHARGING"
    MAINTENANCE = "MAINTENANCE"
    OFFLINE = "OFFLINE"


class OrderStatus(Enum):
    """Lifecycle states for an order in the delivery system."""
    PENDING = "PENDING"          # Order created, awaiting assignment
    ASSIGNED = "ASSIGNED"        # Vehicle and mission allocated
    PICKED_UP = "PICKED_UP"      # Vehicle has collected the package
    IN_TRANSIT = "IN_TRANSIT"    # Final approach
    DELIVERED = "DELIVERED"      # Successfully delivered to customer
    CANCELLED = "CANCELLED"      # Mission aborted
    FAILED = "FAILED"            # Delivery failed

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES


class MissionStatus(Enum):
    """Lifecycle states of a mission."""
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_MISSION_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_MISSION_STATUSES


class Urgency(Enum):
    """Urgency tier chosen by the customer. Drives fee and promised time."""
    STANDARD = "STANDARD"
    PRIORITY = "PRIORITY"
    URGENT = "URGENT"

    @classmethod
    def parse(cls, value: Any) -> "Urgency":
        """Accept an Urgency or its name in any case."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown urgency: {value!r}") from None


class WaypointRole(Enum):
    """Role of a waypoint within a mission route."""
    START = "start"
    WAYPOINT = "waypoint"
    PICKUP = "pickup"
    DELIVERY = "delivery"
    END = "end"


class ControlAction(Enum):
    """Operator commands accepted by the mission state machine."""
    PAUSE = "pause"
    RESUME = "resume"
    ABORT = "abort"


class EventKind(Enum):
    """Topics used for live-update fan-out."""
    POSITION_UPDATE = "vehicle.position"
    ALERT = "vehicle.alert"
    ORDER_STATUS = "order.status"
    MISSION_STATUS = "mission.status"
    VEHICLE_STATUS = "vehicle.status"


TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.FAILED,
})

ACTIVE_MISSION_STATUSES = frozenset({MissionStatus.ASSIGNED, MissionStatus.IN_PROGRESS})

TERMINAL_MISSION_STATUSES = frozenset({MissionStatus.COMPLETED, MissionStatus.ABORTED})


@dataclass(frozen=True)
class Waypoint:
    """
    A single point in a mission route.

    Attributes:
        lat: Latitude in decimal degrees
        lng: Longitude in decimal degrees
        role: What the vehicle does at this point
    """
    lat: float
    lng: float
    role: WaypointRole = WaypointRole.WAYPOINT

    @property
    def loc(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "type": self.role.value}


@dataclass
class Vehicle:
    """
    Represents a delivery drone in the fleet.

    Attributes:
        vehicle_id: Unique identifier
        name: Human-readable call sign used in tracking descriptions
        home_lat/lng: Home base the drone returns to after each mission
        capacity_kg: Maximum payload weight
        battery: Energy level, 0-100
        model: Hardware model label
        status: Current operational state
        current_lat/lng: Last known position, None until the drone has moved
        operator_id: Optional operator responsible for this drone
        is_active: False once the drone is decommissioned (soft delete)
    """
    vehicle_id: str
    name: str
    home_lat: float
    home_lng: float
    capacity_kg: float
    battery: float = 100.0
    model: str = ""
    status: VehicleStatus = VehicleStatus.AVAILABLE
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    operator_id: Optional[str] = None
    is_active: bool = True

    @property
    def home_loc(self) -> Tuple[float, float]:
        return (self.home_lat, self.home_lng)

    @property
    def position(self) -> Tuple[float, float]:
        """Current position, or the home base if the drone has never moved."""
        if self.current_lat is None or self.current_lng is None:
            return self.home_loc
        return (self.current_lat, self.current_lng)

    def __repr__(self) -> str:
        return f"Vehicle({self.vehicle_id}, {self.status.value}, battery={self.battery:.0f})"


@dataclass
class Order:
    """
    Represents a delivery order.

    Distance, fee and estimated delivery are computed once when the order is
    submitted and never recomputed afterwards.
    """
    order_id: str
    tracking_code: str
    customer_id: str
    pickup_lat: float
    pickup_lng: float
    delivery_lat: float
    delivery_lng: float
    package_weight: float
    urgency: Urgency
    distance_km: float
    delivery_fee: float
    created_at: datetime
    estimated_delivery: datetime
    pickup_address: str = ""
    delivery_address: str = ""
    package_description: str = ""
    delivery_instructions: str = ""
    requested_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    status: OrderStatus = OrderStatus.PENDING
    vehicle_id: Optional[str] = None

    @property
    def pickup_loc(self) -> Tuple[float, float]:
        """Returns the pickup location as a (lat, lng) tuple."""
        return (self.pickup_lat, self.pickup_lng)

    @property
    def delivery_loc(self) -> Tuple[float, float]:
        """Returns the delivery location as a (lat, lng) tuple."""
        return (self.delivery_lat, self.delivery_lng)

    def __repr__(self) -> str:
        return f"Order({self.tracking_code}, {self.status.value})"


@dataclass
class Mission:
    """
    The route and lifecycle of one assigned order.

    Attributes:
        mission_id: Unique identifier
        order_id: The order being delivered
        vehicle_id: The drone flying the mission
        waypoints: Ordered route, start -> pickup -> delivery -> end
        estimated_duration: Expected flight time in whole minutes
        current_index: Progress along the route, 0..total_steps
        status: Current mission state
        start_time/end_time: Set on first advance and on completion/abort
        actual_duration: Whole minutes between start and end
        failure_reason: Why the mission was aborted
        controlled_by: Last operator that paused, resumed or aborted it
    """
    mission_id: str
    order_id: str
    vehicle_id: str
    waypoints: Tuple[Waypoint, ...]
    estimated_duration: int
    created_at: datetime
    current_index: int = 0
    status: MissionStatus = MissionStatus.ASSIGNED
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    actual_duration: Optional[int] = None
    failure_reason: Optional[str] = None
    controlled_by: Optional[str] = None

    @property
    def total_steps(self) -> int:
        return len(self.waypoints)

    def __repr__(self) -> str:
        return (f"Mission({self.mission_id}, {self.status.value}, "
                f"step={self.current_index}/{self.total_steps})")


@dataclass(frozen=True)
class TrackingEvent:
    """Append-only history entry attached to an order."""
    order_id: str
    kind: str
    description: str
    location: str
    timestamp: datetime
    coord: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class Telemetry:
    """Position and battery reading recorded by the fleet simulation."""
    vehicle_id: str
    lat: float
    lng: float
    battery: float
    timestamp: datetime


# =============================================================================
# LIVE-UPDATE PAYLOADS
# =============================================================================

@dataclass(frozen=True)
class PositionUpdate:
    vehicle_id: str
    lat: float
    lng: float
    battery: float
    status: VehicleStatus
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "lat": self.lat,
            "lng": self.lng,
            "battery": self.battery,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StatusChange:
    """
    A state transition of an order, mission or vehicle.

    ``entity`` is one of 'order', 'mission' or 'vehicle'; the related ids are
    filled in where known so subscribers can route the update.
    """
    entity: str
    entity_id: str
    status: str
    previous: Optional[str]
    timestamp: datetime
    order_id: Optional[str] = None
    mission_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "status": self.status,
            "previous": self.previous,
            "timestamp": self.timestamp.isoformat(),
            "order_id": self.order_id,
            "mission_id": self.mission_id,
            "vehicle_id": self.vehicle_id,
            "message": self.message,
        }


@dataclass(frozen=True)
class Alert:
    vehicle_id: str
    alert_type: str
    message: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "type": self.alert_type,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }
