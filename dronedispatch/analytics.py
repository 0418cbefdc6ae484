# drone-dispatch/dronedispatch/analytics.py
"""
Fleet and delivery KPIs.

Read-only reporting over store snapshots. Every function takes plain lists of
models (e.g. ``fleet.list_vehicles()``) so it works against any store
implementation. Frames are built with pandas; results come back as plain
dicts with rounded numbers, except ``vehicle_utilization`` which returns the
DataFrame itself.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

from .models import Mission, MissionStatus, Order, OrderStatus, Vehicle, VehicleStatus


def _vehicle_frame(vehicles: List[Vehicle]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "vehicle_id": v.vehicle_id,
                "name": v.name,
                "status": v.status.value,
                "battery": v.battery,
                "capacity_kg": v.capacity_kg,
                "is_active": v.is_active,
            }
            for v in vehicles
        ],
        columns=["vehicle_id", "name", "status", "battery", "capacity_kg", "is_active"],
    )


def _order_frame(orders: List[Order]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "order_id": o.order_id,
                "status": o.status.value,
                "urgency": o.urgency.value,
                "delivery_fee": o.delivery_fee,
                "created_at": o.created_at,
                "estimated_delivery": o.estimated_delivery,
                "actual_delivery": o.actual_delivery,
            }
            for o in orders
        ],
        columns=[
            "order_id", "status", "urgency", "delivery_fee",
            "created_at", "estimated_delivery", "actual_delivery",
        ],
    )


def fleet_status(vehicles: List[Vehicle]) -> Dict[str, Any]:
    """
    Snapshot of the fleet.

    Args:
        vehicles: Vehicles to summarize (inactive ones count toward ``total``
            only)

    Returns:
        Dictionary with total/active counts, a count per status and the
        average battery of active vehicles
    """
    df = _vehicle_frame(vehicles)
    active = df[df["is_active"].astype(bool)]
    counts = active["status"].value_counts()

    return {
        "total": int(len(df)),
        "active": int(len(active)),
        "by_status": {status.value: int(counts.get(status.value, 0)) for status in VehicleStatus},
        "avg_battery": round(float(active["battery"].mean()), 2) if len(active) else 0.0,
    }


def delivery_kpis(orders: List[Order]) -> Dict[str, Any]:
    """
    Delivery performance across a set of orders.

    An order is on time when it was delivered no later than its estimated
    delivery. Delivery time is measured from order creation.

    Returns:
        Dictionary of counts, ``on_time_rate_pct``, ``avg_delivery_time_min``
        and ``total_revenue`` (fees of delivered orders)
    """
    df = _order_frame(orders)
    counts = df["status"].value_counts()
    delivered = df[(df["status"] == OrderStatus.DELIVERED.value) & df["actual_delivery"].notna()]

    if len(delivered):
        actual = pd.to_datetime(delivered["actual_delivery"])
        minutes = (actual - pd.to_datetime(delivered["created_at"])).dt.total_seconds() / 60
        on_time = int((actual <= pd.to_datetime(delivered["estimated_delivery"])).sum())
        avg_minutes = round(float(minutes.mean()), 2)
        on_time_rate = round(on_time / len(delivered) * 100, 2)
        revenue = round(float(delivered["delivery_fee"].sum()), 2)
    else:
        on_time, avg_minutes, on_time_rate, revenue = 0, 0.0, 0.0, 0.0

    return {
        "total_orders": int(len(df)),
        "delivered": int(counts.get(OrderStatus.DELIVERED.value, 0)),
        "cancelled": int(counts.get(OrderStatus.CANCELLED.value, 0)),
        "pending": int(counts.get(OrderStatus.PENDING.value, 0)),
        "in_flight": int(df["status"].isin([
            OrderStatus.ASSIGNED.value,
            OrderStatus.PICKED_UP.value,
            OrderStatus.IN_TRANSIT.value,
        ]).sum()),
        "on_time_deliveries": on_time,
        "on_time_rate_pct": on_time_rate,
        "avg_delivery_time_min": avg_minutes,
        "total_revenue": revenue,
    }


def vehicle_utilization(vehicles: List[Vehicle], missions: List[Mission]) -> pd.DataFrame:
    """
    Per-vehicle mission counts.

    Returns:
        DataFrame indexed by vehicle_id with columns name, status,
        total_missions, completed_missions, aborted_missions and
        avg_duration_min (NaN for vehicles with no completed mission),
        busiest first
    """
    fleet = _vehicle_frame(vehicles).set_index("vehicle_id")[["name", "status"]]
    columns = ["total_missions", "completed_missions", "aborted_missions", "avg_duration_min"]
    if not missions:
        df = fleet.copy()
        for column in columns[:3]:
            df[column] = 0
        df["avg_duration_min"] = float("nan")
        return df

    history = pd.DataFrame(
        [
            {
                "vehicle_id": m.vehicle_id,
                "completed": m.status == MissionStatus.COMPLETED,
                "aborted": m.status == MissionStatus.ABORTED,
                "duration": m.actual_duration if m.status == MissionStatus.COMPLETED else None,
            }
            for m in missions
        ],
        columns=["vehicle_id", "completed", "aborted", "duration"],
    )
    history["duration"] = pd.to_numeric(history["duration"], errors="coerce").astype(float)

    per_vehicle = history.groupby("vehicle_id").agg(
        total_missions=("completed", "size"),
        completed_missions=("completed", "sum"),
        aborted_missions=("aborted", "sum"),
        avg_duration_min=("duration", "mean"),
    )

    df = fleet.join(per_vehicle, how="left")
    for column in columns[:3]:
        df[column] = df[column].fillna(0).astype(int)
    df["avg_duration_min"] = df["avg_duration_min"].round(2)
    return df.sort_values(["total_missions", "completed_missions"], ascending=False, kind="stable")
