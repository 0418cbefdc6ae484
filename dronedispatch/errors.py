# drone-dispatch/dronedispatch/errors.py
"""
Exception taxonomy for the dispatch core.

Every error carries a ``retryable`` flag so callers can tell a transient
outcome (try again later with a fresh fleet snapshot) from a caller error.
HTTP status mapping and user-facing messages are the caller's business.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch core errors."""

    retryable: bool = False


class NoCapacity(DispatchError):
    """No active, available vehicle can carry the order right now."""

    retryable = True

    def __init__(self, order_id: str, weight: float) -> None:
        super().__init__(f"No eligible vehicle for order {order_id} ({weight:.2f} kg)")
        self.order_id = order_id
        self.weight = weight


class ReservationConflict(DispatchError):
    """The selected vehicle was claimed or changed state before it could be reserved."""

    retryable = True

    def __init__(self, vehicle_id: str) -> None:
        super().__init__(f"Vehicle {vehicle_id} could not be reserved")
        self.vehicle_id = vehicle_id


class InvalidTransition(DispatchError):
    """A state machine rule was violated (e.g. resuming a completed mission)."""


class InvalidAction(DispatchError):
    """Unrecognized mission control action."""

    def __init__(self, action: object) -> None:
        super().__init__(f"Invalid action: {action!r}")
        self.action = action


class InvalidProgress(DispatchError):
    """Waypoint index moved backwards or past the end of the route."""

    def __init__(self, mission_id: str, current: int, requested: int, total: int) -> None:
        super().__init__(
            f"Mission {mission_id}: cannot move from step {current} to {requested} "
            f"(total {total})"
        )
        self.mission_id = mission_id
        self.current = current
        self.requested = requested
        self.total = total


class NotFound(DispatchError):
    """Unknown order, vehicle or mission id."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvariantViolation(DispatchError):
    """
    Internal state is inconsistent, e.g. a mission referencing a vehicle that
    does not exist. Never retried; always logged before being raised.
    """
