from datetime import datetime, timedelta

import pandas as pd
import pytest

from conftest import make_vehicle
from dronedispatch.analytics import delivery_kpis, fleet_status, vehicle_utilization
from dronedispatch.models import (
    Mission,
    MissionStatus,
    Order,
    OrderStatus,
    Urgency,
    VehicleStatus,
)

T0 = datetime(2025, 1, 15, 17, 0, 0)


def make_order(order_id, status, fee=10.0, delivered_after=None, promised_after=30):
    return Order(
        order_id=order_id,
        tracking_code=f"DD{order_id}",
        customer_id="c1",
        pickup_lat=40.71,
        pickup_lng=-74.0,
        delivery_lat=40.75,
        delivery_lng=-73.98,
        package_weight=1.0,
        urgency=Urgency.STANDARD,
        distance_km=5.0,
        delivery_fee=fee,
        created_at=T0,
        estimated_delivery=T0 + timedelta(minutes=promised_after),
        actual_delivery=T0 + timedelta(minutes=delivered_after) if delivered_after is not None else None,
        status=status,
    )


def make_mission(mission_id, vehicle_id, status, duration=None):
    return Mission(
        mission_id=mission_id,
        order_id=f"o-{mission_id}",
        vehicle_id=vehicle_id,
        waypoints=(),
        estimated_duration=10,
        created_at=T0,
        status=status,
        actual_duration=duration,
    )


def test_fleet_status_counts_active_vehicles():
    retired = make_vehicle("r", status=VehicleStatus.OFFLINE)
    retired.is_active = False
    vehicles = [
        make_vehicle("a", battery=80.0),
        make_vehicle("b", battery=40.0, status=VehicleStatus.DELIVERING),
        make_vehicle("c", battery=30.0, status=VehicleStatus.CHARGING),
        retired,
    ]

    status = fleet_status(vehicles)

    assert status["total"] == 4
    assert status["active"] == 3
    assert status["avg_battery"] == 50.0
    assert status["by_status"]["AVAILABLE"] == 1
    assert status["by_status"]["DELIVERING"] == 1
    assert status["by_status"]["CHARGING"] == 1
    assert status["by_status"]["OFFLINE"] == 0


def test_fleet_status_empty():
    status = fleet_status([])
    assert status["total"] == 0
    assert status["avg_battery"] == 0.0
    assert set(status["by_status"]) == {s.value for s in VehicleStatus}


def test_delivery_kpis():
    orders = [
        make_order("1", OrderStatus.DELIVERED, fee=12.5, delivered_after=20),
        make_order("2", OrderStatus.DELIVERED, fee=7.5, delivered_after=40),
        make_order("3", OrderStatus.CANCELLED),
        make_order("4", OrderStatus.PENDING),
        make_order("5", OrderStatus.IN_TRANSIT),
    ]

    kpis = delivery_kpis(orders)

    assert kpis["total_orders"] == 5
    assert kpis["delivered"] == 2
    assert kpis["cancelled"] == 1
    assert kpis["pending"] == 1
    assert kpis["in_flight"] == 1
    assert kpis["on_time_deliveries"] == 1
    assert kpis["on_time_rate_pct"] == 50.0
    assert kpis["avg_delivery_time_min"] == 30.0
    assert kpis["total_revenue"] == 20.0


def test_delivery_kpis_without_deliveries():
    kpis = delivery_kpis([make_order("1", OrderStatus.PENDING)])
    assert kpis["delivered"] == 0
    assert kpis["on_time_rate_pct"] == 0.0
    assert kpis["total_revenue"] == 0.0


def test_delivery_kpis_empty():
    assert delivery_kpis([])["total_orders"] == 0


def test_vehicle_utilization():
    vehicles = [make_vehicle("a"), make_vehicle("b"), make_vehicle("idle")]
    missions = [
        make_mission("m1", "a", MissionStatus.COMPLETED, duration=10),
        make_mission("m2", "a", MissionStatus.COMPLETED, duration=15),
        make_mission("m3", "a", MissionStatus.ABORTED),
        make_mission("m4", "b", MissionStatus.IN_PROGRESS),
    ]

    df = vehicle_utilization(vehicles, missions)

    assert isinstance(df, pd.DataFrame)
    assert list(df.index) == ["a", "b", "idle"]
    assert df.loc["a", "total_missions"] == 3
    assert df.loc["a", "completed_missions"] == 2
    assert df.loc["a", "aborted_missions"] == 1
    assert df.loc["a", "avg_duration_min"] == pytest.approx(12.5)
    assert df.loc["b", "total_missions"] == 1
    assert pd.isna(df.loc["b", "avg_duration_min"])
    assert df.loc["idle", "total_missions"] == 0


def test_vehicle_utilization_without_missions():
    df = vehicle_utilization([make_vehicle("a")], [])
    assert df.loc["a", "total_missions"] == 0
    assert df.loc["a", "completed_missions"] == 0
