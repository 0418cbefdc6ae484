import random

import pytest

from dronedispatch.dispatch import DispatchEngine
from dronedispatch.events import InMemoryEventBus
from dronedispatch.missions import MissionController
from dronedispatch.models import Vehicle, VehicleStatus
from dronedispatch.simulation import FleetSimulator
from dronedispatch.stores import InMemoryFleetStore, InMemoryMissionStore, InMemoryOrderStore
from dronedispatch.utils import ManualClock

HOME = (40.7128, -74.006)
PICKUP = (40.7128, -74.006)
DELIVERY = (40.7589, -73.9851)


def make_vehicle(vehicle_id, battery=100.0, capacity_kg=5.0, status=VehicleStatus.AVAILABLE,
                 position=None, name=None):
    lat, lng = position if position is not None else (None, None)
    return Vehicle(
        vehicle_id=vehicle_id,
        name=name or f"Drone {vehicle_id}",
        home_lat=HOME[0],
        home_lng=HOME[1],
        capacity_kg=capacity_kg,
        battery=battery,
        status=status,
        current_lat=lat,
        current_lng=lng,
    )


@pytest.fixture
def clock():
    """A manual clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def fleet():
    return InMemoryFleetStore()


@pytest.fixture
def orders():
    return InMemoryOrderStore()


@pytest.fixture
def missions():
    return InMemoryMissionStore()


@pytest.fixture
def bus(clock):
    return InMemoryEventBus(clock=clock)


@pytest.fixture
def published(bus):
    """Every (topic, payload) pair published on the bus, in order."""
    received = []
    bus.subscribe("*", lambda topic, payload: received.append((topic, payload)))
    return received


@pytest.fixture
def controller(fleet, orders, missions, bus, clock):
    return MissionController(fleet, orders, missions, bus, clock=clock)


@pytest.fixture
def engine(fleet, orders, missions, bus, clock, controller):
    return DispatchEngine(fleet, orders, missions, bus, clock=clock, rng=random.Random(1),
                          controller=controller)


@pytest.fixture
def simulator(fleet, bus, controller, engine, clock):
    return FleetSimulator(fleet, bus, missions=controller, dispatcher=engine,
                          rng=random.Random(7), clock=clock)


@pytest.fixture
def assigned(engine, fleet):
    """One available drone and one order assigned to it."""
    fleet.add_vehicle(make_vehicle("v1", battery=90.0, name="SkyWing Alpha"))
    order, assignment = engine.submit_order("c1", PICKUP, DELIVERY, 2.5, "STANDARD")
    assert assignment is not None
    return assignment
