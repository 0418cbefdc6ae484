import logging
from datetime import datetime

import pytest
import requests

from dronedispatch.events import (
    WILDCARD_TOPIC,
    InMemoryEventBus,
    WebhookPublisher,
    entity_topic,
    fan_out,
)
from dronedispatch.models import Alert, EventKind, StatusChange

NOW = datetime(2025, 1, 15, 17, 0, 0)


def status_change(**overrides):
    fields = dict(
        entity="order",
        entity_id="o1",
        status="ASSIGNED",
        previous="PENDING",
        timestamp=NOW,
        order_id="o1",
        vehicle_id="v1",
    )
    fields.update(overrides)
    return StatusChange(**fields)


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


# =============================================================================
# BUS
# =============================================================================

def test_tracking_log_is_append_only_per_order(clock):
    bus = InMemoryEventBus(clock=clock)
    bus.append_tracking_event("o1", "PENDING", "Order received", "System")
    bus.append_tracking_event("o2", "PENDING", "Order received", "System")
    bus.append_tracking_event("o1", "ASSIGNED", "Assigned to drone X", "X", coord=(1.0, 2.0))

    events = bus.tracking_events("o1")
    assert [e.kind for e in events] == ["PENDING", "ASSIGNED"]
    assert events[0].timestamp == clock.now()
    assert events[1].coord == (1.0, 2.0)
    assert bus.tracking_events("unknown") == []

    events.clear()
    assert len(bus.tracking_events("o1")) == 2


def test_subscribers_receive_their_topic_and_wildcard():
    bus = InMemoryEventBus()
    topic_hits, wildcard_hits = [], []
    bus.subscribe("order.status", lambda t, p: topic_hits.append(t))
    bus.subscribe(WILDCARD_TOPIC, lambda t, p: wildcard_hits.append(t))

    bus.publish("order.status", "payload")
    bus.publish("vehicle.alert", "payload")

    assert topic_hits == ["order.status"]
    assert wildcard_hits == ["order.status", "vehicle.alert"]


def test_unsubscribe():
    bus = InMemoryEventBus()
    hits = []
    unsubscribe = bus.subscribe("t", lambda t, p: hits.append(p))
    bus.publish("t", 1)
    unsubscribe()
    unsubscribe()
    bus.publish("t", 2)
    assert hits == [1]


def test_failing_subscriber_does_not_break_publish(caplog):
    bus = InMemoryEventBus()
    hits = []

    def broken(topic, payload):
        raise RuntimeError("boom")

    bus.subscribe("t", broken)
    bus.subscribe("t", lambda t, p: hits.append(p))

    with caplog.at_level(logging.ERROR, logger="dronedispatch.events"):
        bus.publish("t", "x")

    assert hits == ["x"]
    assert "Subscriber failed" in caplog.text


def test_fan_out_reaches_kind_and_entity_topics():
    bus = InMemoryEventBus()
    received = []
    bus.subscribe(WILDCARD_TOPIC, lambda t, p: received.append(t))

    fan_out(bus, EventKind.ORDER_STATUS, status_change(mission_id="m1"))

    assert received == ["order.status", "order-o1", "vehicle-v1", "mission-m1"]
    assert entity_topic("vehicle", "v9") == "vehicle-v9"


def test_fan_out_skips_missing_entities():
    bus = InMemoryEventBus()
    received = []
    bus.subscribe(WILDCARD_TOPIC, lambda t, p: received.append(t))

    alert = Alert(vehicle_id="v1", alert_type="LOW_BATTERY", message="low", timestamp=NOW)
    fan_out(bus, EventKind.ALERT, alert)

    assert received == ["vehicle.alert", "vehicle-v1"]


# =============================================================================
# WEBHOOK
# =============================================================================

def test_webhook_forwards_each_payload_once():
    session = FakeSession()
    publisher = WebhookPublisher(InMemoryEventBus(), url="http://hooks.test/events",
                                 timeout=1.5, session=session)
    local = []
    publisher.subscribe("order-o1", lambda t, p: local.append(p))

    fan_out(publisher, EventKind.ORDER_STATUS, status_change())

    assert len(local) == 1
    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == "http://hooks.test/events"
    assert call["timeout"] == 1.5
    assert call["json"]["event"] == "order.status"
    assert call["json"]["payload"]["status"] == "ASSIGNED"
    assert call["json"]["payload"]["timestamp"] == NOW.isoformat()


def test_webhook_without_url_stays_local(monkeypatch):
    monkeypatch.setattr("dronedispatch.config.WEBHOOK_URL", "")
    session = FakeSession()
    publisher = WebhookPublisher(InMemoryEventBus(), session=session)
    publisher.publish("order.status", status_change())
    assert session.calls == []


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout("slow"),
    requests.exceptions.ConnectionError("refused"),
])
def test_webhook_failures_are_logged_and_swallowed(caplog, error):
    session = FakeSession(error=error)
    publisher = WebhookPublisher(InMemoryEventBus(), url="http://hooks.test", session=session)

    with caplog.at_level(logging.WARNING, logger="dronedispatch.events"):
        publisher.publish("vehicle.alert",
                          Alert(vehicle_id="v1", alert_type="LOW_BATTERY", message="low", timestamp=NOW))

    assert len(session.calls) == 1
    assert "Webhook" in caplog.text


def test_webhook_http_error_is_swallowed(caplog):
    session = FakeSession(response=FakeResponse(503))
    publisher = WebhookPublisher(InMemoryEventBus(), url="http://hooks.test", session=session)

    with caplog.at_level(logging.WARNING, logger="dronedispatch.events"):
        assert publisher._forward("order.status", status_change()) is False

    assert "503" in caplog.text


def test_webhook_keeps_tracking_log_on_inner_sink(clock):
    inner = InMemoryEventBus(clock=clock)
    publisher = WebhookPublisher(inner, url="", session=FakeSession())
    publisher.append_tracking_event("o1", "PENDING", "Order received", "System")
    assert [e.kind for e in inner.tracking_events("o1")] == ["PENDING"]
    assert publisher.tracking_events("o1") == inner.tracking_events("o1")


def test_engine_runs_against_webhook_publisher(fleet, orders, missions, clock):
    from conftest import DELIVERY, PICKUP, make_vehicle
    from dronedispatch.dispatch import DispatchEngine

    session = FakeSession()
    publisher = WebhookPublisher(InMemoryEventBus(clock=clock), url="http://hooks.test", session=session)
    engine = DispatchEngine(fleet, orders, missions, publisher, clock=clock)
    fleet.add_vehicle(make_vehicle("v1"))

    engine.submit_order("c1", PICKUP, DELIVERY, 1.0)

    assert [c["json"]["event"] for c in session.calls] == ["order.status", "vehicle.status"]
