# drone-dispatch/dronedispatch/missions.py
"""
Mission state machine.

    assigned --advance(1)--> in-progress --advance(final)--> completed
    in-progress --pause--> paused --resume--> in-progress
    {assigned, in-progress, paused} --abort--> aborted

``completed`` and ``aborted`` are terminal. Each transition also moves the
vehicle and the order and appends tracking events for every order status
change. Operations on the same mission are serialized with a per-mission lock
so, e.g., a concurrent pause and abort cannot both apply.

Waypoint progress is fed from outside (operator console, telemetry proximity
check, the CLI demo); the fleet simulation never advances it on its own.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Union

from . import utils
from .dispatch import get_status_description
from .errors import (
    InvalidAction,
    InvalidProgress,
    InvalidTransition,
    InvariantViolation,
    NotFound,
)
from .events import EventSink, fan_out
from .models import (
    ControlAction,
    EventKind,
    Mission,
    MissionStatus,
    Order,
    OrderStatus,
    StatusChange,
    Vehicle,
    VehicleStatus,
)
from .stores import FleetStore, MissionStore, OrderStore

logger = logging.getLogger(__name__)

DEFAULT_ABORT_REASON = "Mission aborted by operator"


class MissionController:
    """
    Owns the lifecycle of assigned delivery missions.

    Attributes:
        fleet: Fleet store handle
        orders: Order store handle
        missions: Mission store handle
        events: Event sink for tracking events and live updates
        clock: Time source
    """

    def __init__(
        self,
        fleet: FleetStore,
        orders: OrderStore,
        missions: MissionStore,
        events: EventSink,
        clock: Optional[utils.Clock] = None,
    ) -> None:
        self.fleet = fleet
        self.orders = orders
        self.missions = missions
        self.events = events
        self.clock = clock or utils.SystemClock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, mission_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(mission_id)
            if lock is None:
                lock = self._locks[mission_id] = threading.Lock()
            return lock

    def _forget_lock(self, mission: Mission) -> None:
        """Drop the lock of a mission that has reached a terminal state."""
        if mission.status.is_terminal:
            with self._locks_guard:
                self._locks.pop(mission.mission_id, None)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get_mission(self, mission_id: str) -> Mission:
        return self.missions.get_mission(mission_id)

    def active_mission_for_vehicle(self, vehicle_id: str) -> Optional[Mission]:
        return self.missions.find_active_for_vehicle(vehicle_id)

    def list_missions(self, status: Optional[MissionStatus] = None) -> List[Mission]:
        return self.missions.list_missions(status)

    def _load_parties(self, mission: Mission):
        """Fetch the vehicle and order a mission points at, or fail loudly."""
        try:
            vehicle = self.fleet.get_vehicle(mission.vehicle_id)
            order = self.orders.get_order(mission.order_id)
        except NotFound as e:
            logger.error(f"Mission {mission.mission_id} references missing {e.kind.lower()} "
                         f"{e.identifier}")
            raise InvariantViolation(
                f"Mission {mission.mission_id} references missing {e.kind.lower()} {e.identifier}"
            ) from e
        return vehicle, order

    # =========================================================================
    # PROGRESS
    # =========================================================================

    def _derive_order_status(self, mission: Mission, order: Order, index: int) -> OrderStatus:
        if index >= mission.total_steps:
            return OrderStatus.DELIVERED
        if index == mission.total_steps - 1:
            return OrderStatus.IN_TRANSIT
        if index == 1 and order.status == OrderStatus.ASSIGNED:
            return OrderStatus.PICKED_UP
        return order.status

    def advance_progress(self, mission_id: str, new_index: int) -> Mission:
        """
        Move a mission along its route.

        Args:
            mission_id: Mission to advance
            new_index: New waypoint index, current_index..total_steps

        Returns:
            The updated mission

        Raises:
            NotFound: Unknown mission
            InvalidTransition: Mission is paused or terminal
            InvalidProgress: Index moves backwards or past the route end
        """
        with self._lock_for(mission_id):
            mission = self.missions.get_mission(mission_id)
            if not mission.status.is_active:
                raise InvalidTransition(
                    f"Mission {mission_id} is {mission.status.value}; cannot advance"
                )
            if new_index < mission.current_index or new_index > mission.total_steps:
                raise InvalidProgress(mission_id, mission.current_index, new_index, mission.total_steps)

            vehicle, order = self._load_parties(mission)
            now = self.clock.now()
            previous_status = mission.status

            fields = {"current_index": new_index, "status": MissionStatus.IN_PROGRESS}
            if mission.start_time is None:
                fields["start_time"] = now
            mission = self.missions.update_mission(mission_id, **fields)

            if previous_status != MissionStatus.IN_PROGRESS:
                self._publish_mission(mission, previous_status, now)

            order_status = self._derive_order_status(mission, order, new_index)
            if order_status != order.status:
                self._move_order(mission, order, vehicle, order_status, now)

            if new_index >= mission.total_steps:
                mission = self._complete(mission, vehicle, now)
                self._forget_lock(mission)

            return mission

    def _move_order(self, mission: Mission, order: Order, vehicle: Vehicle,
                    status: OrderStatus, now: datetime) -> Order:
        fields = {}
        if status == OrderStatus.DELIVERED:
            fields["actual_delivery"] = now
        updated = self.orders.update_order_status(order.order_id, status, **fields)

        waypoint_index = min(mission.current_index, mission.total_steps - 1)
        self.events.append_tracking_event(
            order.order_id,
            status.value,
            get_status_description(status, vehicle.name),
            vehicle.name,
            coord=mission.waypoints[waypoint_index].loc if mission.waypoints else None,
            timestamp=now,
        )
        fan_out(self.events, EventKind.ORDER_STATUS, StatusChange(
            entity="order",
            entity_id=order.order_id,
            status=status.value,
            previous=order.status.value,
            timestamp=now,
            order_id=order.order_id,
            mission_id=mission.mission_id,
            vehicle_id=vehicle.vehicle_id,
            message=get_status_description(status, vehicle.name),
        ))
        return updated

    def _complete(self, mission: Mission, vehicle: Vehicle, now: datetime) -> Mission:
        """Close a mission at its final waypoint and send the drone home."""
        mission = self.missions.update_mission(
            mission.mission_id,
            status=MissionStatus.COMPLETED,
            end_time=now,
            actual_duration=utils.minutes_between(mission.start_time, now),
        )
        self._set_vehicle(vehicle, VehicleStatus.AVAILABLE, now, mission,
                          current_lat=vehicle.home_lat, current_lng=vehicle.home_lng)
        self._publish_mission(mission, MissionStatus.IN_PROGRESS, now)
        logger.info(f"Mission {mission.mission_id} completed by {vehicle.name} "
                    f"in {mission.actual_duration} min (est. {mission.estimated_duration})")
        return mission

    # =========================================================================
    # OPERATOR CONTROL
    # =========================================================================

    def control(
        self,
        mission_id: str,
        action: Union[ControlAction, str],
        reason: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> Mission:
        """
        Pause, resume or abort a mission.

        - pause: IN_PROGRESS -> PAUSED, vehicle RESERVED
        - resume: PAUSED -> IN_PROGRESS, vehicle DELIVERING
        - abort: any non-terminal -> ABORTED, vehicle AVAILABLE, order CANCELLED

        Raises:
            InvalidAction: Unknown action
            NotFound: Unknown mission
            InvalidTransition: Action not allowed from the current state
        """
        try:
            action = action if isinstance(action, ControlAction) else ControlAction(str(action).lower())
        except ValueError:
            raise InvalidAction(action) from None

        with self._lock_for(mission_id):
            mission = self.missions.get_mission(mission_id)
            if mission.status.is_terminal:
                raise InvalidTransition(
                    f"Mission {mission_id} is {mission.status.value}; cannot {action.value}"
                )

            if action == ControlAction.PAUSE:
                return self._pause(mission, acting_user_id)
            if action == ControlAction.RESUME:
                return self._resume(mission, acting_user_id)
            mission = self._abort(mission, reason, acting_user_id)
            self._forget_lock(mission)
            return mission

    def _pause(self, mission: Mission, acting_user_id: Optional[str]) -> Mission:
        if mission.status != MissionStatus.IN_PROGRESS:
            raise InvalidTransition(f"Mission {mission.mission_id} is {mission.status.value}; cannot pause")
        vehicle, _ = self._load_parties(mission)
        now = self.clock.now()
        updated = self.missions.update_mission(
            mission.mission_id, status=MissionStatus.PAUSED, controlled_by=acting_user_id
        )
        self._set_vehicle(vehicle, VehicleStatus.RESERVED, now, updated)
        self._publish_mission(updated, mission.status, now)
        logger.info(f"Mission {mission.mission_id} paused by {acting_user_id or 'system'}")
        return updated

    def _resume(self, mission: Mission, acting_user_id: Optional[str]) -> Mission:
        if mission.status != MissionStatus.PAUSED:
            raise InvalidTransition(f"Mission {mission.mission_id} is {mission.status.value}; cannot resume")
        vehicle, _ = self._load_parties(mission)
        now = self.clock.now()
        updated = self.missions.update_mission(
            mission.mission_id, status=MissionStatus.IN_PROGRESS, controlled_by=acting_user_id
        )
        self._set_vehicle(vehicle, VehicleStatus.DELIVERING, now, updated)
        self._publish_mission(updated, mission.status, now)
        logger.info(f"Mission {mission.mission_id} resumed by {acting_user_id or 'system'}")
        return updated

    def _abort(self, mission: Mission, reason: Optional[str], acting_user_id: Optional[str]) -> Mission:
        vehicle, order = self._load_parties(mission)
        now = self.clock.now()
        description = reason or DEFAULT_ABORT_REASON
        updated = self.missions.update_mission(
            mission.mission_id,
            status=MissionStatus.ABORTED,
            end_time=now,
            failure_reason=description,
            controlled_by=acting_user_id,
        )
        self._set_vehicle(vehicle, VehicleStatus.AVAILABLE, now, updated)

        if not order.status.is_terminal:
            self.orders.update_order_status(order.order_id, OrderStatus.CANCELLED)
            self.events.append_tracking_event(
                order.order_id,
                OrderStatus.CANCELLED.value,
                description,
                "Control Center",
                coord=vehicle.position,
                timestamp=now,
            )
            fan_out(self.events, EventKind.ORDER_STATUS, StatusChange(
                entity="order",
                entity_id=order.order_id,
                status=OrderStatus.CANCELLED.value,
                previous=order.status.value,
                timestamp=now,
                order_id=order.order_id,
                mission_id=mission.mission_id,
                vehicle_id=vehicle.vehicle_id,
                message=description,
            ))
        else:
            logger.error(f"Aborted mission {mission.mission_id} had terminal order "
                         f"{order.tracking_code} ({order.status.value})")

        self._publish_mission(updated, mission.status, now)
        logger.warning(f"Mission {mission.mission_id} aborted: {description}")
        return updated

    # =========================================================================
    # SIDE EFFECTS
    # =========================================================================

    def _set_vehicle(self, vehicle: Vehicle, status: VehicleStatus, now: datetime,
                     mission: Mission, **fields) -> Vehicle:
        """
        Move the vehicle to a new status, writing ``fields`` in the same
        store operation. A vehicle the simulation has sent to charge stays
        CHARGING; the charger hands it back when full.
        """
        if vehicle.status in (VehicleStatus.CHARGING, status):
            if fields:
                self.fleet.update_vehicle(vehicle.vehicle_id, **fields)
        elif not self.fleet.transition_vehicle(vehicle.vehicle_id, vehicle.status, status, **fields):
            logger.warning(f"{vehicle.name} changed state concurrently; "
                           f"not moving it to {status.value}")
            if fields:
                self.fleet.update_vehicle(vehicle.vehicle_id, **fields)
        updated = self.fleet.get_vehicle(vehicle.vehicle_id)
        if updated.status != vehicle.status:
            fan_out(self.events, EventKind.VEHICLE_STATUS, StatusChange(
                entity="vehicle",
                entity_id=vehicle.vehicle_id,
                status=updated.status.value,
                previous=vehicle.status.value,
                timestamp=now,
                mission_id=mission.mission_id,
                vehicle_id=vehicle.vehicle_id,
            ))
        return updated

    def _publish_mission(self, mission: Mission, previous: MissionStatus, now: datetime) -> None:
        fan_out(self.events, EventKind.MISSION_STATUS, StatusChange(
            entity="mission",
            entity_id=mission.mission_id,
            status=mission.status.value,
            previous=previous.value,
            timestamp=now,
            order_id=mission.order_id,
            mission_id=mission.mission_id,
            vehicle_id=mission.vehicle_id,
            message=mission.failure_reason or "",
        ))
