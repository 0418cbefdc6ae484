#!/usr/bin/env python3
# drone-dispatch/main.py
"""
Command-Line Interface for the Drone Delivery Dispatch Core.

Runs a self-contained demo: seeds the fleet, submits a batch of orders, then
ticks the fleet simulation while flying every active mission one waypoint per
tick. Prints fleet, delivery and per-drone KPIs at the end.

Usage:
    python main.py                          # Run with defaults
    python main.py --orders 6 --ticks 80    # Bigger scenario
    python main.py --seed 7                 # Different random walk
    python main.py --verbose                # Show dispatch log

Exit Codes:
    0: Success
    1: Invalid arguments
    2: Simulation error
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from typing import Any, Dict, List, Optional

from dronedispatch import config
from dronedispatch.analytics import delivery_kpis, fleet_status, vehicle_utilization
from dronedispatch.dispatch import DispatchEngine
from dronedispatch.errors import DispatchError
from dronedispatch.events import InMemoryEventBus, WebhookPublisher
from dronedispatch.missions import MissionController
from dronedispatch.models import EventKind, Vehicle, VehicleStatus
from dronedispatch.simulation import FleetSimulator
from dronedispatch.stores import InMemoryFleetStore, InMemoryMissionStore, InMemoryOrderStore
from dronedispatch.utils import ManualClock

logger = logging.getLogger("dronedispatch.cli")

HOME_BASE = (40.7128, -74.006)

# Demo fleet. AeroMax Beta starts out in midtown, away from its home base.
DEMO_FLEET: List[Dict[str, Any]] = [
    {"name": "SkyWing Alpha", "model": "DX-1000", "capacity_kg": 5.0, "battery": 85,
     "status": VehicleStatus.AVAILABLE},
    {"name": "AeroMax Beta", "model": "DX-2000", "capacity_kg": 8.0, "battery": 60,
     "status": VehicleStatus.AVAILABLE, "current_lat": 40.7589, "current_lng": -73.9851},
    {"name": "CloudRider Gamma", "model": "DX-1500", "capacity_kg": 3.0, "battery": 20,
     "status": VehicleStatus.CHARGING},
    {"name": "StormChaser Delta", "model": "DX-3000", "capacity_kg": 10.0, "battery": 95,
     "status": VehicleStatus.AVAILABLE},
    {"name": "WindRider Echo", "model": "DX-1200", "capacity_kg": 6.0, "battery": 5,
     "status": VehicleStatus.MAINTENANCE},
]

# Demo orders, cycled when more are requested.
DEMO_ORDERS: List[Dict[str, Any]] = [
    {"pickup": (40.7128, -74.006), "delivery": (40.7589, -73.9851), "package_weight": 2.5,
     "urgency": "STANDARD", "pickup_address": "123 Main St, New York, NY",
     "delivery_address": "456 Oak Ave, New York, NY", "package_description": "Electronics package"},
    {"pickup": (40.7505, -73.9934), "delivery": (40.7614, -73.9776), "package_weight": 1.8,
     "urgency": "PRIORITY", "pickup_address": "789 Pine Rd, New York, NY",
     "delivery_address": "321 Elm St, New York, NY", "package_description": "Documents"},
    {"pickup": (40.7282, -74.0776), "delivery": (40.7614, -73.9776), "package_weight": 0.8,
     "urgency": "URGENT", "pickup_address": "555 Broadway, New York, NY",
     "delivery_address": "777 5th Ave, New York, NY", "package_description": "Medical supplies"},
    {"pickup": (40.7061, -74.0087), "delivery": (40.7306, -73.9866), "package_weight": 7.5,
     "urgency": "STANDARD", "pickup_address": "1 Wall St, New York, NY",
     "delivery_address": "200 E 14th St, New York, NY", "package_description": "Office supplies"},
]


def print_header() -> None:
    """Print the CLI header."""
    print("\n" + "=" * 60)
    print("  DRONE DISPATCH - Delivery Simulation")
    print("  Score-Based Assignment with Mission Control")
    print("=" * 60 + "\n")


def build_fleet() -> List[Vehicle]:
    fleet = []
    for i, fields in enumerate(DEMO_FLEET, start=1):
        fleet.append(Vehicle(
            vehicle_id=f"drone-{i}",
            home_lat=HOME_BASE[0],
            home_lng=HOME_BASE[1],
            **fields,
        ))
    return fleet


def print_results_table(summary: Dict[str, Any]) -> None:
    """
    Print fleet and delivery KPIs followed by the per-drone table.

    Args:
        summary: Output of ``run_demo``
    """
    fleet = summary["fleet"]
    kpis = summary["deliveries"]

    print("\n" + "=" * 60)
    print("  FINAL RESULTS")
    print("=" * 60 + "\n")

    rows = [
        ("Orders Submitted", kpis["total_orders"]),
        ("Delivered", kpis["delivered"]),
        ("Cancelled", kpis["cancelled"]),
        ("In Flight", kpis["in_flight"]),
        ("Pending", kpis["pending"]),
        ("On-Time Rate", f"{kpis['on_time_rate_pct']:.2f}%"),
        ("Avg Delivery Time", f"{kpis['avg_delivery_time_min']:.2f} min"),
        ("Revenue", f"{kpis['total_revenue']:.2f}"),
        ("Active Drones", f"{fleet['active']}/{fleet['total']}"),
        ("Avg Battery", f"{fleet['avg_battery']:.1f}%"),
        ("Low Battery Alerts", summary["alerts"]),
    ]
    print("| Metric                    | Value           |")
    print("|" + "-" * 27 + "|" + "-" * 17 + "|")
    for metric, value in rows:
        print(f"| {metric:<25} | {str(value):^15} |")

    print("\n  Fleet by status: " + ", ".join(
        f"{status}={count}" for status, count in fleet["by_status"].items() if count
    ))
    print("\n" + summary["utilization"].to_string() + "\n")
    print("=" * 60 + "\n")


def run_demo(num_orders: int, ticks: int, seed: int, webhook_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Run the demo scenario.

    Args:
        num_orders: Orders to submit up front
        ticks: Simulation ticks to run
        seed: Seed for the simulation random walk and tracking codes
        webhook_url: Optional endpoint receiving every live update

    Returns:
        Dictionary with fleet status, delivery KPIs, utilization frame and
        alert count
    """
    clock = ManualClock()
    rng = random.Random(seed)

    fleet = InMemoryFleetStore(build_fleet())
    orders = InMemoryOrderStore()
    missions = InMemoryMissionStore()
    bus = InMemoryEventBus(clock=clock)
    events = WebhookPublisher(bus, url=webhook_url) if webhook_url else bus

    alerts: List[Any] = []
    bus.subscribe(EventKind.ALERT.value, lambda _, alert: alerts.append(alert))

    controller = MissionController(fleet, orders, missions, events, clock=clock)
    engine = DispatchEngine(fleet, orders, missions, events, clock=clock, rng=rng,
                            controller=controller)
    simulator = FleetSimulator(fleet, events, missions=controller, dispatcher=engine,
                               rng=rng, clock=clock)

    for i in range(num_orders):
        details = dict(DEMO_ORDERS[i % len(DEMO_ORDERS)])
        pickup = details.pop("pickup")
        delivery = details.pop("delivery")
        weight = details.pop("package_weight")
        urgency = details.pop("urgency")
        order, assignment = engine.submit_order(f"customer-{i % 2 + 1}", pickup, delivery, weight,
                                                urgency, **details)
        target = assignment.vehicle.name if assignment else "queued"
        print(f"  Order {order.tracking_code} ({urgency}, {weight} kg) -> {target}")

    print(f"\nRunning {ticks} ticks...")
    for _ in range(ticks):
        clock.advance(seconds=config.SIMULATION_TICK_SECONDS)
        report = simulator.tick()
        for assignment in report.assignments:
            print(f"  [tick {report.tick}] Order {assignment.order.tracking_code} "
                  f"-> {assignment.vehicle.name}")
        for mission in controller.list_missions():
            if mission.status.is_active:
                controller.advance_progress(mission.mission_id, mission.current_index + 1)

    return {
        "fleet": fleet_status(fleet.list_vehicles(include_inactive=True)),
        "deliveries": delivery_kpis(orders.list_orders()),
        "utilization": vehicle_utilization(fleet.list_vehicles(include_inactive=True),
                                           missions.list_missions()),
        "alerts": len(alerts),
    }


def main() -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Drone Delivery Dispatch demo CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          # 3 orders, 40 ticks
  python main.py --orders 8 --ticks 120   # Queue orders beyond fleet capacity
  python main.py --webhook-url http://localhost:8000/events
        """
    )

    parser.add_argument(
        "--orders", "-o",
        type=int,
        default=3,
        help="Number of demo orders to submit (default: 3)"
    )

    parser.add_argument(
        "--ticks", "-t",
        type=int,
        default=40,
        help="Number of simulation ticks to run (default: 40)"
    )

    parser.add_argument(
        "--seed", "-s",
        type=int,
        default=42,
        help="Random seed (default: 42)"
    )

    parser.add_argument(
        "--webhook-url",
        type=str,
        default=None,
        help="Forward live updates to this URL"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show the dispatch log"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    if args.orders < 1:
        print(f"ERROR: --orders must be at least 1, got {args.orders}")
        return 1
    if args.ticks < 0:
        print(f"ERROR: --ticks must not be negative, got {args.ticks}")
        return 1

    print_header()

    try:
        summary = run_demo(args.orders, args.ticks, args.seed, webhook_url=args.webhook_url)
    except DispatchError as e:
        logger.exception(f"Simulation failed: {e}")
        return 2

    print_results_table(summary)

    return 0


if __name__ == "__main__":
    sys.exit(main())
