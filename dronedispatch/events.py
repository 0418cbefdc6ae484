# drone-dispatch/dronedispatch/events.py
"""
Event sink: the append-only tracking log and live-update fan-out.

Two kinds of output leave the core:

1. Tracking events - durable, append-only history attached to an order.
2. Published payloads - best-effort, at-most-once notifications on a topic
   (vehicle positions, alerts, status changes) for any number of subscribers.

Topics are plain strings. The core publishes every payload on its kind's
topic (e.g. ``vehicle.position``) and on an entity topic
(``order-<id>``, ``vehicle-<id>``, ``mission-<id>``) so observers can follow a
single order or vehicle without the core knowing who is listening.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import requests

from . import config
from .models import EventKind, TrackingEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Any], None]

WILDCARD_TOPIC = "*"
"""Subscribing to this topic receives every published payload."""

FORWARDED_TOPICS = frozenset(kind.value for kind in EventKind)


class EventSink(Protocol):
    def append_tracking_event(
        self,
        order_id: str,
        kind: str,
        description: str,
        location: str,
        coord: Optional[Tuple[float, float]] = None,
        timestamp: Optional[datetime] = None,
    ) -> TrackingEvent: ...

    def tracking_events(self, order_id: str) -> List[TrackingEvent]: ...

    def publish(self, event_name: str, payload: Any) -> None: ...


class InMemoryEventBus:
    """
    Tracking log plus a topic-based publish/subscribe bus.

    Subscriber callbacks run synchronously on the publishing thread. A failing
    subscriber is logged and skipped; it never breaks the operation that
    published.
    """

    def __init__(self, clock=None) -> None:
        self._lock = threading.RLock()
        self._events: Dict[str, List[TrackingEvent]] = defaultdict(list)
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock.now() if self._clock is not None else datetime.now()

    # -- tracking log ---------------------------------------------------------

    def append_tracking_event(
        self,
        order_id: str,
        kind: str,
        description: str,
        location: str,
        coord: Optional[Tuple[float, float]] = None,
        timestamp: Optional[datetime] = None,
    ) -> TrackingEvent:
        event = TrackingEvent(
            order_id=order_id,
            kind=kind,
            description=description,
            location=location,
            timestamp=timestamp or self._now(),
            coord=coord,
        )
        with self._lock:
            self._events[order_id].append(event)
        return event

    def tracking_events(self, order_id: str) -> List[TrackingEvent]:
        """History of an order, oldest first."""
        with self._lock:
            return list(self._events.get(order_id, []))

    # -- pub/sub --------------------------------------------------------------

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for a topic.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers.get(topic, []):
                    self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, event_name: str, payload: Any) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event_name, []))
            if event_name != WILDCARD_TOPIC:
                callbacks += self._subscribers.get(WILDCARD_TOPIC, [])
        for callback in callbacks:
            try:
                callback(event_name, payload)
            except Exception:
                logger.exception(f"Subscriber failed on topic '{event_name}'")


def entity_topic(entity: str, entity_id: str) -> str:
    """Topic for a single order, vehicle or mission, e.g. ``order-42``."""
    return f"{entity}-{entity_id}"


def fan_out(sink: EventSink, kind: EventKind, payload: Any) -> None:
    """
    Publish a payload on its kind topic and on the topic of every entity it
    references (order, vehicle, mission).
    """
    sink.publish(kind.value, payload)
    for entity in ("order", "vehicle", "mission"):
        entity_id = getattr(payload, f"{entity}_id", None)
        if entity_id:
            sink.publish(entity_topic(entity, entity_id), payload)


class WebhookPublisher:
    """
    Event sink decorator that also forwards published payloads to an HTTP
    endpoint as JSON.

    Tracking events and local subscribers are handled by the wrapped sink.
    Forwarding is at-most-once: a failed POST is logged and dropped.
    """

    def __init__(
        self,
        inner: EventSink,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.inner = inner
        self.url = url if url is not None else config.WEBHOOK_URL
        self.timeout = timeout if timeout is not None else config.WEBHOOK_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def append_tracking_event(self, order_id, kind, description, location, coord=None, timestamp=None):
        return self.inner.append_tracking_event(
            order_id, kind, description, location, coord=coord, timestamp=timestamp
        )

    def tracking_events(self, order_id: str) -> List[TrackingEvent]:
        return self.inner.tracking_events(order_id)

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        return self.inner.subscribe(topic, callback)

    def publish(self, event_name: str, payload: Any) -> None:
        self.inner.publish(event_name, payload)
        # Entity topics repeat the kind topic payload; forward each payload once.
        if self.url and event_name in FORWARDED_TOPICS:
            self._forward(event_name, payload)

    def _forward(self, event_name: str, payload: Any) -> bool:
        body = {
            "event": event_name,
            "payload": payload.to_dict() if hasattr(payload, "to_dict") else payload,
        }
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.exceptions.Timeout:
            logger.warning(f"Webhook timed out for '{event_name}'")
            return False
        except requests.exceptions.RequestException as e:
            logger.warning(f"Webhook delivery failed for '{event_name}': {e}")
            return False
