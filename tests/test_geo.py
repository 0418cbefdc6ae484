import math
from datetime import datetime, timedelta

import pytest

from dronedispatch import config, pricing, routing, utils
from dronedispatch.models import Urgency, WaypointRole


# =============================================================================
# GEO UTILITIES
# =============================================================================

def test_haversine_one_degree_of_latitude():
    """One degree of latitude is about 111.2 km."""
    assert utils.haversine_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)


def test_haversine_identical_points_is_zero():
    assert utils.haversine_distance(40.7128, -74.006, 40.7128, -74.006) == 0.0


def test_haversine_is_symmetric():
    a = utils.distance_km((40.7128, -74.006), (40.7589, -73.9851))
    b = utils.distance_km((40.7589, -73.9851), (40.7128, -74.006))
    assert a == pytest.approx(b)
    assert 5.0 < a < 5.8


def test_haversine_antipodal_points_do_not_produce_nan():
    d = utils.haversine_distance(0.0, 0.0, 0.0, 180.0)
    assert not math.isnan(d)
    assert d == pytest.approx(math.pi * config.EARTH_RADIUS_KM)


def test_interpolate_points_excludes_endpoints():
    points = utils.interpolate_points((0.0, 0.0), (3.0, 3.0), 2)
    assert points == [pytest.approx((1.0, 1.0)), pytest.approx((2.0, 2.0))]


def test_interpolate_zero_steps():
    assert utils.interpolate_points((0.0, 0.0), (1.0, 1.0), 0) == []


def test_clamp_to_bounds():
    bounds = config.OPERATING_BOUNDS
    lat, lng = utils.clamp_to_bounds(50.0, -80.0)
    assert lat == bounds["max_lat"]
    assert lng == bounds["min_lng"]
    assert utils.clamp_to_bounds(40.7, -74.0) == (40.7, -74.0)


def test_travel_time_at_average_speed():
    assert utils.calculate_travel_time_minutes(config.AVG_SPEED_KMH) == pytest.approx(60.0)


def test_travel_time_with_zero_speed_is_infinite(monkeypatch):
    monkeypatch.setattr(config, "AVG_SPEED_KMH", 0)
    assert utils.calculate_travel_time_minutes(5.0) == float("inf")


def test_minutes_between_rounds_up_and_never_negative():
    start = datetime(2025, 1, 15, 17, 0, 0)
    assert utils.minutes_between(start, start + timedelta(seconds=61)) == 2
    assert utils.minutes_between(start, start) == 0
    assert utils.minutes_between(start, start - timedelta(minutes=5)) == 0


def test_format_time_duration():
    assert utils.format_time_duration(45) == "45m"
    assert utils.format_time_duration(83) == "1h 23m"


def test_manual_clock_only_moves_when_told():
    clock = utils.ManualClock(datetime(2025, 1, 1, 12, 0))
    assert clock.now() == datetime(2025, 1, 1, 12, 0)
    clock.advance(minutes=2, seconds=30)
    assert clock.now() == datetime(2025, 1, 1, 12, 2, 30)
    clock.set(datetime(2025, 1, 2))
    assert clock.now() == datetime(2025, 1, 2)


# =============================================================================
# FEE & ETA
# =============================================================================

def test_estimate_fee_formula():
    """(5 + 10 * 0.5 + 2 * 0.2) * 1.5 = 15.6"""
    assert pricing.estimate_fee(10.0, "PRIORITY", 2.0) == 15.6


@pytest.mark.parametrize("urgency,expected", [
    (Urgency.STANDARD, 5.0),
    (Urgency.PRIORITY, 7.5),
    (Urgency.URGENT, 10.0),
])
def test_estimate_fee_zero_distance_and_weight(urgency, expected):
    assert pricing.estimate_fee(0.0, urgency, 0.0) == expected


def test_estimate_fee_accepts_lowercase_urgency():
    assert pricing.estimate_fee(4.0, "urgent", 1.0) == pricing.estimate_fee(4.0, Urgency.URGENT, 1.0)


def test_estimate_fee_rejects_unknown_urgency():
    with pytest.raises(ValueError):
        pricing.estimate_fee(1.0, "WHENEVER", 1.0)


def test_estimate_fee_is_rounded_to_cents():
    fee = pricing.estimate_fee(5.4213, "STANDARD", 2.5)
    assert fee == round(fee, 2)
    assert fee == pytest.approx(5.0 + 5.4213 * 0.5 + 2.5 * 0.2, abs=0.005)


@pytest.mark.parametrize("urgency,minutes", [("STANDARD", 35), ("PRIORITY", 20), ("URGENT", 12)])
def test_delivery_deadline_by_urgency(urgency, minutes):
    now = datetime(2025, 1, 15, 17, 0, 0)
    assert pricing.estimate_delivery_deadline(now, urgency) == now + timedelta(minutes=minutes)


# =============================================================================
# ROUTES
# =============================================================================

START = (40.7128, -74.006)
PICKUP = (40.7505, -73.9934)
DELIVERY = (40.7614, -73.9776)


def test_route_shape_with_default_steps():
    route = routing.generate_route(START, PICKUP, DELIVERY)
    assert len(route) == 22

    roles = [w.role for w in route]
    assert roles[0] == WaypointRole.START
    assert roles[6] == WaypointRole.PICKUP
    assert roles[15] == WaypointRole.DELIVERY
    assert roles[-1] == WaypointRole.END
    assert roles.count(WaypointRole.WAYPOINT) == 18

    assert route[0].loc == START
    assert route[6].loc == PICKUP
    assert route[15].loc == DELIVERY
    assert route[-1].loc == START


def test_route_with_custom_steps():
    route = routing.generate_route(START, PICKUP, DELIVERY, 0, 0, 0)
    assert [w.role for w in route] == [
        WaypointRole.START, WaypointRole.PICKUP, WaypointRole.DELIVERY, WaypointRole.END,
    ]


def test_route_distance_matches_leg_sum():
    route = routing.generate_route(START, PICKUP, DELIVERY)
    expected = (utils.distance_km(START, PICKUP)
                + utils.distance_km(PICKUP, DELIVERY)
                + utils.distance_km(DELIVERY, START))
    assert routing.route_distance(route) == pytest.approx(expected, rel=1e-6)


def test_estimated_duration_is_ceiled_minutes():
    route = routing.generate_route(START, PICKUP, DELIVERY)
    minutes = routing.route_distance(route) / config.AVG_SPEED_KMH * 60
    assert routing.estimated_duration(route) == math.ceil(minutes)


def test_degenerate_route_has_minimum_duration():
    route = routing.generate_route(START, START, START)
    assert routing.route_distance(route) == 0.0
    assert routing.estimated_duration(route) == 1


def test_build_route_precomputes_totals():
    route = routing.build_route(START, PICKUP, DELIVERY)
    assert route.num_waypoints == 22
    assert route.distance_km == pytest.approx(routing.route_distance(route.waypoints))
    assert route.duration_min == routing.estimated_duration(route.waypoints)


def test_estimate_fee_is_monotonic_in_distance_weight_and_urgency():
    distances = [0.0, 1.0, 2.5, 10.0, 40.0]
    weights = [0.1, 1.0, 5.0, 10.0]
    for urgency in Urgency:
        fees = [pricing.estimate_fee(d, urgency, 2.0) for d in distances]
        assert fees == sorted(fees)
        fees = [pricing.estimate_fee(5.0, urgency, w) for w in weights]
        assert fees == sorted(fees)
    for d in distances:
        standard, priority, urgent = (pricing.estimate_fee(d, u, 2.0) for u in Urgency)
        assert standard <= priority <= urgent
