# drone-dispatch/dronedispatch/simulation.py
"""
Fleet simulation tick.

Stands in for real telemetry. Every tick (SIMULATION_TICK_SECONDS of real time
when run in the background) each active vehicle:

1. drifts by a small bounded random walk, clamped to OPERATING_BOUNDS
2. drains battery while DELIVERING, recharges while CHARGING
3. is forced to CHARGING with a LOW_BATTERY alert when it drops below
   LOW_BATTERY_THRESHOLD; a mission it was flying is aborted. An idle
   AVAILABLE vehicle below MIN_ASSIGNMENT_BATTERY goes to charge quietly.
4. has its position/battery persisted, a telemetry reading recorded and a
   position update published

The write in step 4 only lands if the vehicle is still as it was at the
start of the tick, so the tick never undoes an assignment or a completion.

After the vehicle pass the tick retries pending orders, since charged
vehicles may have become available.

The tick does not advance mission waypoints. Progress comes from outside via
``MissionController.advance_progress``.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import config, utils
from .dispatch import Assignment, DispatchEngine
from .errors import DispatchError
from .events import EventSink, fan_out
from .missions import MissionController
from .models import (
    Alert,
    EventKind,
    PositionUpdate,
    StatusChange,
    Telemetry,
    Vehicle,
    VehicleStatus,
)
from .stores import FleetStore

logger = logging.getLogger(__name__)

SIMULATED_STATUSES = frozenset({
    VehicleStatus.DELIVERING,
    VehicleStatus.AVAILABLE,
    VehicleStatus.CHARGING,
})

MOVING_STATUSES = frozenset({VehicleStatus.DELIVERING, VehicleStatus.AVAILABLE})

LOW_BATTERY_ALERT = "LOW_BATTERY"


@dataclass
class TickReport:
    """What happened during one tick."""
    tick: int
    updated: List[str] = field(default_factory=list)
    low_battery: List[str] = field(default_factory=list)
    recharged: List[str] = field(default_factory=list)
    sent_to_charge: List[str] = field(default_factory=list)
    aborted_missions: List[str] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)


class FleetSimulator:
    """
    Periodic process advancing vehicle position and battery.

    Attributes:
        fleet: Fleet store handle
        events: Event sink for alerts and position updates
        missions: Mission state machine, used to abort missions of vehicles
            forced to charge
        dispatcher: Optional dispatch engine; when given, pending orders are
            retried after every tick
        rng: Injectable random source (seed it for deterministic runs)
        clock: Time source
    """

    def __init__(
        self,
        fleet: FleetStore,
        events: EventSink,
        missions: Optional[MissionController] = None,
        dispatcher: Optional[DispatchEngine] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[utils.Clock] = None,
    ) -> None:
        self.fleet = fleet
        self.events = events
        self.missions = missions
        self.dispatcher = dispatcher
        self.rng = rng or random.Random()
        self.clock = clock or utils.SystemClock()

        self.tick_count: int = 0
        self.running: bool = False
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._tick_lock = threading.Lock()

    # =========================================================================
    # TICK
    # =========================================================================

    def tick(self) -> TickReport:
        """Execute a single simulation tick."""
        with self._tick_lock:
            self.tick_count += 1
            report = TickReport(tick=self.tick_count)

            for vehicle in self.fleet.list_vehicles():
                if vehicle.status not in SIMULATED_STATUSES:
                    continue
                self._update_vehicle(vehicle, report)

            if self.dispatcher is not None and config.RETRY_PENDING_ON_TICK:
                report.assignments = self.dispatcher.dispatch_pending()

            logger.debug(f"Tick {report.tick}: {len(report.updated)} vehicles updated, "
                         f"{len(report.low_battery)} low battery, "
                         f"{len(report.assignments)} assignments")
            return report

    def _next_position(self, vehicle: Vehicle) -> utils.LatLng:
        lat, lng = vehicle.position
        if vehicle.status in MOVING_STATUSES:
            lat += (self.rng.random() - 0.5) * config.POSITION_JITTER_DEG
            lng += (self.rng.random() - 0.5) * config.POSITION_JITTER_DEG
            lat, lng = utils.clamp_to_bounds(lat, lng)
        return lat, lng

    def _next_battery(self, vehicle: Vehicle) -> float:
        battery = vehicle.battery
        if vehicle.status == VehicleStatus.DELIVERING:
            battery -= self.rng.uniform(0, config.MAX_BATTERY_DRAIN_PER_TICK)
        elif vehicle.status == VehicleStatus.CHARGING:
            battery += self.rng.uniform(0, config.MAX_BATTERY_CHARGE_PER_TICK)
        return round(max(0.0, min(100.0, battery)), 2)

    def _next_status(self, vehicle: Vehicle, battery: float) -> Tuple[VehicleStatus, Optional[str]]:
        """New status for the vehicle and the report bucket it lands in."""
        if vehicle.status == VehicleStatus.CHARGING:
            if battery >= config.CHARGED_THRESHOLD:
                return VehicleStatus.AVAILABLE, "recharged"
        elif battery < config.LOW_BATTERY_THRESHOLD:
            return VehicleStatus.CHARGING, "low_battery"
        elif vehicle.status == VehicleStatus.AVAILABLE and battery < config.MIN_ASSIGNMENT_BATTERY:
            return VehicleStatus.CHARGING, "sent_to_charge"
        return vehicle.status, None

    def _update_vehicle(self, vehicle: Vehicle, report: TickReport) -> None:
        now = self.clock.now()
        lat, lng = self._next_position(vehicle)
        battery = self._next_battery(vehicle)
        status, bucket = self._next_status(vehicle, battery)

        fields = {"current_lat": lat, "current_lng": lng, "battery": battery}
        if status != vehicle.status:
            fields["status"] = status
        # Compare-and-set against the snapshot. If another flow touched the
        # vehicle since, its write stands and the vehicle waits for the next tick.
        updated = self.fleet.update_vehicle_if_unchanged(vehicle.vehicle_id, vehicle, **fields)
        if updated is None:
            logger.debug(f"{vehicle.name} changed during tick {report.tick}; skipped")
            return

        self.fleet.record_telemetry(Telemetry(vehicle.vehicle_id, lat, lng, battery, now))
        report.updated.append(vehicle.vehicle_id)
        if bucket is not None:
            getattr(report, bucket).append(vehicle.vehicle_id)

        if status != vehicle.status:
            fan_out(self.events, EventKind.VEHICLE_STATUS, StatusChange(
                entity="vehicle",
                entity_id=vehicle.vehicle_id,
                status=status.value,
                previous=vehicle.status.value,
                timestamp=now,
                vehicle_id=vehicle.vehicle_id,
            ))
        if bucket == "low_battery":
            self._raise_low_battery(updated, report, now)
        elif bucket == "sent_to_charge":
            logger.info(f"{vehicle.name} idle at {battery:.0f}%, sent to charge")

        fan_out(self.events, EventKind.POSITION_UPDATE, PositionUpdate(
            vehicle_id=vehicle.vehicle_id,
            lat=lat,
            lng=lng,
            battery=battery,
            status=updated.status,
            timestamp=now,
        ))

    def _raise_low_battery(self, vehicle: Vehicle, report: TickReport, now) -> None:
        message = f"Drone {vehicle.name} has low battery ({vehicle.battery:.0f}%)"
        logger.warning(message)

        mission_id = None
        if self.missions is not None:
            mission = self.missions.active_mission_for_vehicle(vehicle.vehicle_id)
            if mission is not None:
                mission_id = mission.mission_id
                try:
                    self.missions.control(
                        mission.mission_id, "abort",
                        reason=f"Low battery: {vehicle.name} returned to charge",
                    )
                    report.aborted_missions.append(mission.mission_id)
                except DispatchError as e:
                    # Finished or aborted concurrently.
                    logger.warning(f"Could not abort mission {mission.mission_id}: {e}")

        fan_out(self.events, EventKind.ALERT, Alert(
            vehicle_id=vehicle.vehicle_id,
            alert_type=LOW_BATTERY_ALERT,
            message=message,
            timestamp=now,
            details={"battery": vehicle.battery, "mission_id": mission_id},
        ))

    # =========================================================================
    # BACKGROUND RUNNER
    # =========================================================================

    def start(self, interval: Optional[float] = None) -> None:
        """Start ticking in a background thread every ``interval`` seconds."""
        if self.running:
            return
        period = interval if interval is not None else config.SIMULATION_TICK_SECONDS
        self.running = True
        self._stop.clear()
        self._thread = threading.Thread(target=self._update_loop, args=(period,), daemon=True)
        self._thread.start()
        logger.info(f"Fleet simulation started (every {period}s)")

    def stop(self) -> None:
        self.running = False
        self._stop.set()
        if self._thread:
            self._thread.join()
            self._thread = None
        logger.info("Fleet simulation stopped")

    def _update_loop(self, period: float) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Simulation tick failed")
            self._stop.wait(period)
