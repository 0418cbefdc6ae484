# drone-dispatch/dronedispatch/dispatch.py
"""
Dispatch Engine: order intake and vehicle assignment.

Flow for a new order:

1. **Intake**: validate, compute distance / fee / ETA once, issue a tracking
   code and store the order as PENDING.
2. **Bidding**: every eligible vehicle in a point-in-time fleet snapshot bids
   with its assignment score (see ``scoring``). Lowest bid wins, ties broken by
   vehicle id.
3. **Reservation**: the winner is flipped AVAILABLE -> DELIVERING with an
   atomic claim. Selection and claim happen under one lock so two orders can
   never take the same vehicle.
4. **Mission**: a route is generated from the vehicle's position and the
   order's pickup/delivery points, and the mission is stored.

If nobody can take the order it stays PENDING; ``dispatch_pending`` retries
later (the fleet simulation calls it every tick).

Operators can cancel or fail an order with ``update_order_status``. Orders
already flying a mission are cancelled by aborting that mission.
"""

from __future__ import annotations

import logging
import random
import string
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Set, Tuple, Union

from . import config, pricing, routing, scoring, utils
from .errors import (
    InvalidTransition,
    NoCapacity,
    NotFound,
    ReservationConflict,
)
from .events import EventSink, fan_out
from .models import (
    EventKind,
    Mission,
    Order,
    OrderStatus,
    StatusChange,
    Urgency,
    Vehicle,
    VehicleStatus,
)
from .stores import FleetStore, MissionStore, OrderStore

if TYPE_CHECKING:
    from .missions import MissionController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Assignment:
    """Result of a successful assignment."""
    order: Order
    vehicle: Vehicle
    mission: Mission
    score: float


def get_status_description(status: OrderStatus, vehicle_name: Optional[str] = None) -> str:
    """Human-readable tracking description for an order status."""
    descriptions = {
        OrderStatus.PENDING: "Order received, awaiting drone assignment",
        OrderStatus.ASSIGNED: f"Package assigned to {vehicle_name}",
        OrderStatus.PICKED_UP: f"Package picked up by {vehicle_name}",
        OrderStatus.IN_TRANSIT: f"Package in transit via {vehicle_name}",
        OrderStatus.DELIVERED: f"Package delivered successfully by {vehicle_name}",
        OrderStatus.CANCELLED: "Delivery cancelled",
        OrderStatus.FAILED: "Delivery failed",
    }
    return descriptions.get(status, f"Status updated to {status.value}")


class DispatchEngine:
    """
    Orchestrates order intake and order-to-vehicle assignment.

    The engine is the "auctioneer": it announces an order to the eligible
    vehicles, collects their bids and awards the order to the lowest bidder.

    Attributes:
        fleet: Fleet store handle
        orders: Order store handle
        missions: Mission store handle
        events: Event sink for tracking events and live updates
        clock: Time source
        rng: Random source used for tracking code suffixes
        controller: Mission state machine, used to abort the mission of an
            order an operator cancels
    """

    def __init__(
        self,
        fleet: FleetStore,
        orders: OrderStore,
        missions: MissionStore,
        events: EventSink,
        clock: Optional[utils.Clock] = None,
        rng: Optional[random.Random] = None,
        controller: Optional[MissionController] = None,
    ) -> None:
        self.fleet = fleet
        self.orders = orders
        self.missions = missions
        self.events = events
        self.clock = clock or utils.SystemClock()
        self.rng = rng or random.Random()
        self.controller = controller
        # Held only across select-and-reserve.
        self._assignment_lock = threading.Lock()
        # Orders claimed a vehicle but are not yet ASSIGNED in the store.
        self._in_flight: Set[str] = set()

    # =========================================================================
    # ORDER INTAKE
    # =========================================================================

    def _generate_tracking_code(self, now: datetime) -> str:
        alphabet = string.ascii_uppercase + string.digits
        while True:
            suffix = "".join(self.rng.choice(alphabet) for _ in range(4))
            code = f"{config.TRACKING_CODE_PREFIX}{int(now.timestamp() * 1000)}{suffix}"
            if not self.orders.tracking_code_exists(code):
                return code

    def create_order(
        self,
        customer_id: str,
        pickup: Tuple[float, float],
        delivery: Tuple[float, float],
        package_weight: float,
        urgency: Union[Urgency, str] = Urgency.STANDARD,
        pickup_address: str = "",
        delivery_address: str = "",
        package_description: str = "",
        delivery_instructions: str = "",
        requested_delivery: Optional[datetime] = None,
    ) -> Order:
        """
        Validate and store a new PENDING order.

        Distance, fee and estimated delivery are computed here, once.

        Raises:
            ValueError: Non-positive weight or unknown urgency
        """
        if package_weight is None or package_weight <= 0:
            raise ValueError(f"Package weight must be positive, got {package_weight!r}")
        urgency = Urgency.parse(urgency)

        now = self.clock.now()
        distance = utils.distance_km(pickup, delivery)
        order = Order(
            order_id=uuid.uuid4().hex,
            tracking_code=self._generate_tracking_code(now),
            customer_id=customer_id,
            pickup_lat=pickup[0],
            pickup_lng=pickup[1],
            delivery_lat=delivery[0],
            delivery_lng=delivery[1],
            package_weight=package_weight,
            urgency=urgency,
            distance_km=distance,
            delivery_fee=pricing.estimate_fee(distance, urgency, package_weight),
            created_at=now,
            estimated_delivery=pricing.estimate_delivery_deadline(now, urgency),
            pickup_address=pickup_address,
            delivery_address=delivery_address,
            package_description=package_description,
            delivery_instructions=delivery_instructions,
            requested_delivery=requested_delivery,
        )
        order = self.orders.create_order(order)
        self.events.append_tracking_event(
            order.order_id,
            OrderStatus.PENDING.value,
            get_status_description(OrderStatus.PENDING),
            "System",
            coord=order.pickup_loc,
            timestamp=now,
        )
        logger.info(f"Order {order.tracking_code} created: {distance:.2f} km, "
                    f"fee {order.delivery_fee:.2f}, {urgency.value}")
        return order

    def submit_order(self, customer_id: str, pickup, delivery, package_weight: float,
                     urgency: Union[Urgency, str] = Urgency.STANDARD, **details) -> Tuple[Order, Optional[Assignment]]:
        """
        Create an order and try to assign it immediately.

        Returns:
            (order, assignment). ``assignment`` is None when no vehicle could
            take the order; the order then stays PENDING.
        """
        order = self.create_order(customer_id, pickup, delivery, package_weight, urgency, **details)
        assignment = self.try_assign(order.order_id)
        if assignment is not None:
            return assignment.order, assignment
        return order, None

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    def select_vehicle(self, order: Order) -> Tuple[float, Vehicle]:
        """
        Pick the best vehicle for an order from a fresh fleet snapshot.

        Raises:
            NoCapacity: No vehicle passes the eligibility filter
        """
        candidates = self.fleet.list_candidate_vehicles(
            min_capacity=order.package_weight,
            min_battery=config.MIN_ASSIGNMENT_BATTERY,
        )
        ranked = scoring.rank_candidates(candidates, order)
        if not ranked:
            raise NoCapacity(order.order_id, order.package_weight)
        return ranked[0]

    def assign(self, order_id: str) -> Assignment:
        """
        Assign the best vehicle to a PENDING order and create its mission.

        Raises:
            NotFound: Unknown order id
            InvalidTransition: The order is not PENDING or already has a mission
            NoCapacity: No eligible vehicle (retryable)
            ReservationConflict: The chosen vehicle was lost to a concurrent
                update between snapshot and claim (retryable)
        """
        with self._assignment_lock:
            order = self.orders.get_order(order_id)
            if order.status != OrderStatus.PENDING or order_id in self._in_flight:
                raise InvalidTransition(
                    f"Order {order.tracking_code} is {order.status.value}, not PENDING"
                )
            if self.missions.find_active_for_order(order_id) is not None:
                raise InvalidTransition(f"Order {order.tracking_code} already has an active mission")

            score, vehicle = self.select_vehicle(order)
            if not self.fleet.reserve_vehicle(vehicle.vehicle_id):
                raise ReservationConflict(vehicle.vehicle_id)
            self._in_flight.add(order_id)

        try:
            return self._commit_assignment(order, vehicle, score)
        finally:
            with self._assignment_lock:
                self._in_flight.discard(order_id)

    def _commit_assignment(self, order: Order, vehicle: Vehicle, score: float) -> Assignment:
        """Build the route and persist the order/mission once the vehicle is claimed."""
        now = self.clock.now()
        route = routing.build_route(vehicle.position, order.pickup_loc, order.delivery_loc)
        mission = Mission(
            mission_id=uuid.uuid4().hex,
            order_id=order.order_id,
            vehicle_id=vehicle.vehicle_id,
            waypoints=route.waypoints,
            estimated_duration=route.duration_min,
            created_at=now,
        )

        try:
            order = self.orders.update_order_status(
                order.order_id, OrderStatus.ASSIGNED,
                expected=OrderStatus.PENDING, vehicle_id=vehicle.vehicle_id,
            )
        except (InvalidTransition, NotFound):
            # Order was cancelled between claim and commit: hand the vehicle back.
            self.fleet.release_vehicle(vehicle.vehicle_id)
            raise

        mission = self.missions.create_mission(mission)
        vehicle = self.fleet.get_vehicle(vehicle.vehicle_id)
        description = get_status_description(OrderStatus.ASSIGNED, vehicle.name)

        self.events.append_tracking_event(
            order.order_id,
            OrderStatus.ASSIGNED.value,
            description,
            vehicle.name,
            coord=vehicle.position,
            timestamp=now,
        )
        fan_out(self.events, EventKind.ORDER_STATUS, StatusChange(
            entity="order",
            entity_id=order.order_id,
            status=OrderStatus.ASSIGNED.value,
            previous=OrderStatus.PENDING.value,
            timestamp=now,
            order_id=order.order_id,
            mission_id=mission.mission_id,
            vehicle_id=vehicle.vehicle_id,
            message=description,
        ))
        fan_out(self.events, EventKind.VEHICLE_STATUS, StatusChange(
            entity="vehicle",
            entity_id=vehicle.vehicle_id,
            status=VehicleStatus.DELIVERING.value,
            previous=VehicleStatus.AVAILABLE.value,
            timestamp=now,
            mission_id=mission.mission_id,
            vehicle_id=vehicle.vehicle_id,
        ))

        logger.info(f"Order {order.tracking_code} -> {vehicle.name} "
                    f"(score {score:.2f}, {route.distance_km:.2f} km, "
                    f"~{utils.format_time_duration(route.duration_min)})")
        return Assignment(order=order, vehicle=vehicle, mission=mission, score=score)

    def try_assign(self, order_id: str) -> Optional[Assignment]:
        """
        Assign with retries on reservation conflicts.

        Returns:
            The assignment, or None if no vehicle can take the order now
        """
        for attempt in range(1, config.MAX_ASSIGNMENT_ATTEMPTS + 1):
            try:
                return self.assign(order_id)
            except NoCapacity as e:
                logger.warning(str(e))
                return None
            except ReservationConflict as e:
                logger.warning(f"{e} (attempt {attempt}/{config.MAX_ASSIGNMENT_ATTEMPTS})")
        return None

    def dispatch_pending(self) -> List[Assignment]:
        """
        Retry assignment for every PENDING order, oldest first.

        An order that finds no capacity does not hold up the ones behind it.
        Orders at least as heavy as one that already found no capacity are
        skipped for this pass.
        """
        assignments: List[Assignment] = []
        failed_weight: Optional[float] = None
        for order in self.orders.list_orders(status=OrderStatus.PENDING):
            if failed_weight is not None and order.package_weight >= failed_weight:
                continue
            try:
                assignment = self.assign(order.order_id)
            except NoCapacity:
                failed_weight = order.package_weight
                continue
            except ReservationConflict as e:
                logger.warning(str(e))
                continue
            except InvalidTransition:
                # Picked up by a concurrent caller since the listing.
                continue
            assignments.append(assignment)
        if assignments:
            logger.info(f"Dispatched {len(assignments)} pending order(s)")
        return assignments

    # =========================================================================
    # FLEET REGISTRY
    # =========================================================================

    def decommission_vehicle(self, vehicle_id: str) -> Vehicle:
        """
        Soft-delete a vehicle. History keeps referring to it.

        Raises:
            NotFound: Unknown vehicle id
            InvalidTransition: The vehicle still holds a mission, or has been
                claimed by an assignment that is still being committed
        """
        with self._assignment_lock:
            mission = self.missions.find_active_for_vehicle(vehicle_id)
            if mission is not None:
                raise InvalidTransition(
                    f"Vehicle {vehicle_id} has active mission {mission.mission_id}"
                )
            # Refuses DELIVERING/RESERVED, which covers a claim without a mission yet.
            vehicle = self.fleet.deactivate_vehicle(vehicle_id)
        logger.info(f"Vehicle {vehicle.name} decommissioned")
        return vehicle

    # =========================================================================
    # OPERATOR ORDER CONTROL
    # =========================================================================

    def update_order_status(
        self,
        order_id: str,
        status: Union[OrderStatus, str],
        reason: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> Order:
        """
        Operator override of an order's status.

        Only CANCELLED and FAILED can be set by hand; every other status is
        driven by assignment and mission progress. A PENDING order moves
        directly. An order with an active mission is cancelled by
        aborting the mission, which also frees its vehicle.

        Args:
            order_id: Order id or tracking code
            status: CANCELLED or FAILED
            reason: Tracking description; defaults to "Order status updated to ..."
            acting_user_id: Operator recorded on an aborted mission

        Returns:
            The updated order

        Raises:
            ValueError: Unknown status, or one that cannot be set by hand
            NotFound: Unknown order
            InvalidTransition: The order is terminal or mid-assignment, or has
                an active mission and the status is not CANCELLED
        """
        status = status if isinstance(status, OrderStatus) else OrderStatus(str(status).upper())
        if status not in (OrderStatus.CANCELLED, OrderStatus.FAILED):
            raise ValueError(f"Order status {status.value} cannot be set by an operator")

        order = self.lookup_order(order_id)
        description = reason or f"Order status updated to {status.value}"

        with self._assignment_lock:
            mission = self.missions.find_active_for_order(order.order_id)
            if mission is None:
                # Only PENDING orders have no mission. A concurrent assignment
                # commit also requires PENDING, so the first write wins.
                updated = self.orders.update_order_status(
                    order.order_id, status, expected=OrderStatus.PENDING
                )

        if mission is not None:
            return self._abort_for_order(order, mission, status, description, acting_user_id)

        now = self.clock.now()
        self.events.append_tracking_event(
            updated.order_id,
            status.value,
            description,
            "System",
            coord=updated.pickup_loc,
            timestamp=now,
        )
        fan_out(self.events, EventKind.ORDER_STATUS, StatusChange(
            entity="order",
            entity_id=updated.order_id,
            status=status.value,
            previous=OrderStatus.PENDING.value,
            timestamp=now,
            order_id=updated.order_id,
            message=description,
        ))
        logger.info(f"Order {updated.tracking_code} set to {status.value} "
                    f"by {acting_user_id or 'system'}: {description}")
        return updated

    def _abort_for_order(self, order: Order, mission: Mission, status: OrderStatus,
                         description: str, acting_user_id: Optional[str]) -> Order:
        if status != OrderStatus.CANCELLED or self.controller is None:
            raise InvalidTransition(
                f"Order {order.tracking_code} is flying mission {mission.mission_id}; "
                f"abort the mission instead"
            )
        self.controller.control(mission.mission_id, "abort", reason=description,
                                acting_user_id=acting_user_id)
        return self.orders.get_order(order.order_id)

    def cancel_order(self, order_id: str, reason: Optional[str] = None,
                     acting_user_id: Optional[str] = None) -> Order:
        """Cancel an order, aborting its mission if it has one."""
        return self.update_order_status(order_id, OrderStatus.CANCELLED, reason, acting_user_id)

    def lookup_order(self, identifier: str) -> Order:
        """Find an order by tracking code or id."""
        if identifier.startswith(config.TRACKING_CODE_PREFIX):
            try:
                return self.orders.get_by_tracking_code(identifier)
            except NotFound:
                pass
        return self.orders.get_order(identifier)
