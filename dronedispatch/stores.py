# drone-dispatch/dronedispatch/stores.py
"""
Store interfaces and in-memory implementations.

The dispatch core never talks to a database directly. It receives store
handles implementing the protocols below. The in-memory stores back the tests
and the CLI demo; a persistent implementation only needs to honour the same
contracts:

- reads return copies (a consistent point-in-time snapshot), never the live
  record, so scoring cannot race with the simulation tick
- ``reserve_vehicle``, ``transition_vehicle``, ``update_vehicle_if_unchanged``
  and ``deactivate_vehicle`` are atomic check-then-set operations
"""

from __future__ import annotations

import dataclasses
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol

from . import config
from .errors import InvalidTransition, NotFound
from .models import (
    Mission,
    MissionStatus,
    Order,
    OrderStatus,
    Telemetry,
    Vehicle,
    VehicleStatus,
)


# =============================================================================
# PROTOCOLS
# =============================================================================

class FleetStore(Protocol):
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle: ...

    def get_vehicle(self, vehicle_id: str) -> Vehicle: ...

    def list_vehicles(self, include_inactive: bool = False) -> List[Vehicle]: ...

    def list_candidate_vehicles(self, min_capacity: float, min_battery: float) -> List[Vehicle]: ...

    def reserve_vehicle(self, vehicle_id: str) -> bool: ...

    def transition_vehicle(self, vehicle_id: str, expected: VehicleStatus, new: VehicleStatus,
                           **fields: Any) -> bool: ...

    def update_vehicle(self, vehicle_id: str, **fields: Any) -> Vehicle: ...

    def update_vehicle_if_unchanged(self, vehicle_id: str, snapshot: Vehicle,
                                    **fields: Any) -> Optional[Vehicle]: ...

    def release_vehicle(self, vehicle_id: str) -> Vehicle: ...

    def deactivate_vehicle(self, vehicle_id: str) -> Vehicle: ...

    def record_telemetry(self, reading: Telemetry) -> None: ...

    def telemetry_for(self, vehicle_id: str, limit: Optional[int] = None) -> List[Telemetry]: ...


class OrderStore(Protocol):
    def create_order(self, order: Order) -> Order: ...

    def get_order(self, order_id: str) -> Order: ...

    def get_by_tracking_code(self, tracking_code: str) -> Order: ...

    def tracking_code_exists(self, tracking_code: str) -> bool: ...

    def update_order_status(self, order_id: str, status: OrderStatus,
                            expected: Optional[OrderStatus] = None, **fields: Any) -> Order: ...

    def list_orders(self, status: Optional[OrderStatus] = None) -> List[Order]: ...


class MissionStore(Protocol):
    def create_mission(self, mission: Mission) -> Mission: ...

    def get_mission(self, mission_id: str) -> Mission: ...

    def update_mission(self, mission_id: str, **fields: Any) -> Mission: ...

    def find_active_for_vehicle(self, vehicle_id: str) -> Optional[Mission]: ...

    def find_active_for_order(self, order_id: str) -> Optional[Mission]: ...

    def list_missions(self, status: Optional[MissionStatus] = None) -> List[Mission]: ...


# Missions that still hold their vehicle and order (everything non-terminal).
OPEN_MISSION_STATUSES = frozenset({
    MissionStatus.ASSIGNED,
    MissionStatus.IN_PROGRESS,
    MissionStatus.PAUSED,
})

# Vehicles in these states hold (or are about to hold) a mission.
BUSY_VEHICLE_STATUSES = frozenset({
    VehicleStatus.DELIVERING,
    VehicleStatus.RESERVED,
})


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryFleetStore:
    """Thread-safe fleet registry keyed by vehicle id."""

    def __init__(self, vehicles: Optional[List[Vehicle]] = None) -> None:
        self._lock = threading.RLock()
        self._vehicles: Dict[str, Vehicle] = {}
        self._telemetry: Dict[str, Deque[Telemetry]] = {}
        for vehicle in vehicles or []:
            self.add_vehicle(vehicle)

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._lock:
            if vehicle.vehicle_id in self._vehicles:
                raise ValueError(f"Duplicate vehicle id: {vehicle.vehicle_id}")
            self._vehicles[vehicle.vehicle_id] = dataclasses.replace(vehicle)
            return dataclasses.replace(vehicle)

    def _get(self, vehicle_id: str) -> Vehicle:
        try:
            return self._vehicles[vehicle_id]
        except KeyError:
            raise NotFound("Vehicle", vehicle_id) from None

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        with self._lock:
            return dataclasses.replace(self._get(vehicle_id))

    def list_vehicles(self, include_inactive: bool = False) -> List[Vehicle]:
        with self._lock:
            return [
                dataclasses.replace(v) for v in self._vehicles.values()
                if include_inactive or v.is_active
            ]

    def list_candidate_vehicles(self, min_capacity: float, min_battery: float) -> List[Vehicle]:
        """Snapshot of active, AVAILABLE vehicles meeting capacity and battery minimums."""
        with self._lock:
            return [
                dataclasses.replace(v) for v in self._vehicles.values()
                if v.is_active
                and v.status == VehicleStatus.AVAILABLE
                and v.capacity_kg >= min_capacity
                and v.battery >= min_battery
            ]

    def reserve_vehicle(self, vehicle_id: str) -> bool:
        """Atomically flip an active AVAILABLE vehicle to DELIVERING."""
        return self.transition_vehicle(vehicle_id, VehicleStatus.AVAILABLE, VehicleStatus.DELIVERING)

    def transition_vehicle(self, vehicle_id: str, expected: VehicleStatus, new: VehicleStatus,
                           **fields: Any) -> bool:
        """
        Compare-and-set on the status of an active vehicle. ``fields`` are
        written together with the new status, and only if the swap succeeds.
        """
        with self._lock:
            vehicle = self._get(vehicle_id)
            if not vehicle.is_active or vehicle.status != expected:
                return False
            self._apply(vehicle, fields)
            vehicle.status = new
            return True

    @staticmethod
    def _apply(vehicle: Vehicle, fields: Dict[str, Any]) -> None:
        for name in fields:
            if not hasattr(vehicle, name):
                raise AttributeError(f"Vehicle has no field {name!r}")
        for name, value in fields.items():
            setattr(vehicle, name, value)

    def update_vehicle(self, vehicle_id: str, **fields: Any) -> Vehicle:
        with self._lock:
            vehicle = self._get(vehicle_id)
            self._apply(vehicle, fields)
            return dataclasses.replace(vehicle)

    def update_vehicle_if_unchanged(self, vehicle_id: str, snapshot: Vehicle,
                                    **fields: Any) -> Optional[Vehicle]:
        """
        Write ``fields`` only if the vehicle's status, position and active flag
        still match ``snapshot``.

        Returns:
            The updated vehicle, or None if another flow changed it first
        """
        with self._lock:
            vehicle = self._get(vehicle_id)
            if (vehicle.is_active != snapshot.is_active
                    or vehicle.status != snapshot.status
                    or vehicle.current_lat != snapshot.current_lat
                    or vehicle.current_lng != snapshot.current_lng):
                return None
            self._apply(vehicle, fields)
            return dataclasses.replace(vehicle)

    def release_vehicle(self, vehicle_id: str) -> Vehicle:
        return self.update_vehicle(vehicle_id, status=VehicleStatus.AVAILABLE)

    def deactivate_vehicle(self, vehicle_id: str) -> Vehicle:
        """
        Soft-delete a vehicle that is not flying or holding a mission.

        Raises:
            NotFound: Unknown vehicle id
            InvalidTransition: The vehicle is DELIVERING or RESERVED
        """
        with self._lock:
            vehicle = self._get(vehicle_id)
            if vehicle.status in BUSY_VEHICLE_STATUSES:
                raise InvalidTransition(
                    f"Vehicle {vehicle.name} is {vehicle.status.value}; cannot decommission"
                )
            vehicle.is_active = False
            vehicle.status = VehicleStatus.OFFLINE
            return dataclasses.replace(vehicle)

    def record_telemetry(self, reading: Telemetry) -> None:
        """Append a reading. Only the last TELEMETRY_HISTORY_SIZE per vehicle are kept."""
        with self._lock:
            history = self._telemetry.get(reading.vehicle_id)
            if history is None:
                history = self._telemetry[reading.vehicle_id] = deque(
                    maxlen=config.TELEMETRY_HISTORY_SIZE
                )
            history.append(reading)

    def telemetry_for(self, vehicle_id: str, limit: Optional[int] = None) -> List[Telemetry]:
        """Readings for a vehicle, newest last. ``limit`` keeps only the most recent."""
        with self._lock:
            readings = list(self._telemetry.get(vehicle_id, []))
        if limit is not None:
            readings = readings[-limit:] if limit > 0 else []
        return readings


class InMemoryOrderStore:
    """Thread-safe order registry. Orders in a terminal status are frozen."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._orders: Dict[str, Order] = {}
        self._by_code: Dict[str, str] = {}

    def create_order(self, order: Order) -> Order:
        with self._lock:
            if order.order_id in self._orders:
                raise ValueError(f"Duplicate order id: {order.order_id}")
            if order.tracking_code in self._by_code:
                raise ValueError(f"Duplicate tracking code: {order.tracking_code}")
            self._orders[order.order_id] = dataclasses.replace(order)
            self._by_code[order.tracking_code] = order.order_id
            return dataclasses.replace(order)

    def _get(self, order_id: str) -> Order:
        try:
            return self._orders[order_id]
        except KeyError:
            raise NotFound("Order", order_id) from None

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            return dataclasses.replace(self._get(order_id))

    def get_by_tracking_code(self, tracking_code: str) -> Order:
        with self._lock:
            order_id = self._by_code.get(tracking_code)
            if order_id is None:
                raise NotFound("Order", tracking_code)
            return dataclasses.replace(self._orders[order_id])

    def tracking_code_exists(self, tracking_code: str) -> bool:
        with self._lock:
            return tracking_code in self._by_code

    def update_order_status(self, order_id: str, status: OrderStatus,
                            expected: Optional[OrderStatus] = None, **fields: Any) -> Order:
        """
        Move an order to a new status and set any accompanying fields
        (vehicle_id, actual_delivery, ...).

        Args:
            order_id: Order to update
            status: New status
            expected: If given, the update only applies while the order is
                still in this status

        Raises:
            NotFound: Unknown order id
            InvalidTransition: The order is already in a terminal status, or
                is not in ``expected``
        """
        with self._lock:
            order = self._get(order_id)
            if order.status.is_terminal or (expected is not None and order.status != expected):
                raise InvalidTransition(
                    f"Order {order.tracking_code} is {order.status.value}; "
                    f"cannot move to {status.value}"
                )
            for name, value in fields.items():
                if not hasattr(order, name):
                    raise AttributeError(f"Order has no field {name!r}")
                setattr(order, name, value)
            order.status = status
            return dataclasses.replace(order)

    def list_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        """Orders sorted by creation time, oldest first."""
        with self._lock:
            orders = [
                dataclasses.replace(o) for o in self._orders.values()
                if status is None or o.status == status
            ]
        return sorted(orders, key=lambda o: (o.created_at, o.order_id))


class InMemoryMissionStore:
    """Thread-safe mission registry."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._missions: Dict[str, Mission] = {}

    def create_mission(self, mission: Mission) -> Mission:
        with self._lock:
            if mission.mission_id in self._missions:
                raise ValueError(f"Duplicate mission id: {mission.mission_id}")
            self._missions[mission.mission_id] = dataclasses.replace(mission)
            return dataclasses.replace(mission)

    def _get(self, mission_id: str) -> Mission:
        try:
            return self._missions[mission_id]
        except KeyError:
            raise NotFound("Mission", mission_id) from None

    def get_mission(self, mission_id: str) -> Mission:
        with self._lock:
            return dataclasses.replace(self._get(mission_id))

    def update_mission(self, mission_id: str, **fields: Any) -> Mission:
        with self._lock:
            mission = self._get(mission_id)
            for name, value in fields.items():
                if not hasattr(mission, name):
                    raise AttributeError(f"Mission has no field {name!r}")
                setattr(mission, name, value)
            return dataclasses.replace(mission)

    def _find_open(self, **match: str) -> Optional[Mission]:
        with self._lock:
            for mission in self._missions.values():
                if mission.status not in OPEN_MISSION_STATUSES:
                    continue
                if all(getattr(mission, k) == v for k, v in match.items()):
                    return dataclasses.replace(mission)
        return None

    def find_active_for_vehicle(self, vehicle_id: str) -> Optional[Mission]:
        """The non-terminal mission holding this vehicle, if any."""
        return self._find_open(vehicle_id=vehicle_id)

    def find_active_for_order(self, order_id: str) -> Optional[Mission]:
        """The non-terminal mission for this order, if any."""
        return self._find_open(order_id=order_id)

    def list_missions(self, status: Optional[MissionStatus] = None) -> List[Mission]:
        with self._lock:
            missions = [
                dataclasses.replace(m) for m in self._missions.values()
                if status is None or m.status == status
            ]
        return sorted(missions, key=lambda m: (m.created_at, m.mission_id))
