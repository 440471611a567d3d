"""
Worker activity feed: ticket_classified, classification_retry_queued,
classification_failed, job_dropped, ticket_routed, routing_failed.

Workers publish to a Redis channel; the ops API process subscribes and keeps
a bounded in-memory window that /activity reads from.
"""

import json
import logging
import threading
import time
from collections import deque
from typing import Any, Optional

from redis.exceptions import RedisError

from ticketai.broker import get_redis

logger = logging.getLogger(__name__)

ACTIVITY_CHANNEL = "ticket_activity"
MAX_EVENTS = 200
RESUBSCRIBE_DELAY_SECONDS = 5.0


class ActivityLog:
    """Thread-safe ring buffer of events, oldest first."""

    def __init__(self, maxlen: int = MAX_EVENTS):
        self._events: deque[dict[str, Any]] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def append(self, event_type: str, data: dict[str, Any], ts: Optional[float] = None) -> None:
        event = {"ts": ts if ts is not None else time.time(), "type": event_type, "data": data}
        with self._lock:
            self._events.append(event)

    def recent(
        self,
        limit: int = 100,
        event_type: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        if event_type:
            events = [e for e in events if e["type"] == event_type]
        if tenant_id:
            events = [e for e in events if e["data"].get("tenant_id") == tenant_id]
        return events[-limit:] if limit > 0 else []

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


_log = ActivityLog()
_subscriber: Optional[threading.Thread] = None


def emit(event_type: str, data: Optional[dict[str, Any]] = None, ts: Optional[float] = None) -> None:
    _log.append(event_type, data or {}, ts)


def get_recent(limit: int = 100, event_type: Optional[str] = None, tenant_id: Optional[str] = None) -> list[dict]:
    """Most recent events, newest last, optionally filtered by type and tenant."""
    return _log.recent(limit, event_type=event_type, tenant_id=tenant_id)


def clear() -> None:
    _log.clear()


def handle_message(raw: str) -> None:
    """Append one published message to the local log; bad payloads are logged and skipped."""
    try:
        payload = json.loads(raw)
        emit(payload["type"], payload.get("data") or {}, payload.get("ts"))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning("Ignoring malformed activity message: %s", e)


def _subscribe_forever() -> None:
    while True:
        try:
            pubsub = get_redis().pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(ACTIVITY_CHANNEL)
            logger.info("Activity subscriber listening on channel %s", ACTIVITY_CHANNEL)
            for message in pubsub.listen():
                handle_message(message["data"])
        except RedisError as e:
            logger.warning("Activity subscriber lost Redis (%s); retrying in %.0fs.", e, RESUBSCRIBE_DELAY_SECONDS)
        time.sleep(RESUBSCRIBE_DELAY_SECONDS)


def start_redis_subscriber() -> None:
    """Start the background subscriber once per process."""
    global _subscriber
    if _subscriber is not None and _subscriber.is_alive():
        return
    _subscriber = threading.Thread(target=_subscribe_forever, name="activity-subscriber", daemon=True)
    _subscriber.start()


def publish_event(event_type: str, data: dict[str, Any]) -> None:
    """Publish a worker event. Best effort: a Redis failure is logged, never raised."""
    message = json.dumps({"type": event_type, "ts": time.time(), "data": data})
    try:
        get_redis().publish(ACTIVITY_CHANNEL, message)
    except RedisError as e:
        logger.warning("Activity publish failed (%s): %s", event_type, e)
