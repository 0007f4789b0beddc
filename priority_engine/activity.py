"""
Engine activity log (config replaced, ordering published, stale data).

Events are kept in a bounded in-memory deque for GET /activity. A standalone
recompute worker also publishes its events on ACTIVITY_CHANNEL; the API process
subscribes so its log shows both.
"""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import redis

from priority_engine import channels
from priority_engine.config import (
    ACTIVITY_CHANNEL,
    FETCH_TIMEOUT_SECONDS,
    MAX_ACTIVITY_EVENTS,
    ORDERING_CHANNEL,
    REDIS_CONN_TIMEOUT,
    REDIS_URL,
)
from priority_engine.models import OrderingSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)


_events: deque[ActivityEvent] = deque(maxlen=MAX_ACTIVITY_EVENTS)
_lock = threading.Lock()
_redis_client = None


def _redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=FETCH_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_CONN_TIMEOUT,
        )
    return _redis_client


def emit(event_type: str, data: Optional[dict[str, Any]] = None) -> None:
    """Record an event locally; the oldest one is dropped past MAX_ACTIVITY_EVENTS."""
    with _lock:
        _events.append(ActivityEvent(type=event_type, data=data or {}))


def get_recent(limit: int = 100) -> list[dict]:
    """Newest ``limit`` events, oldest first, as ``{"type", "data", "ts"}`` dicts."""
    with _lock:
        recent = list(_events)[-limit:]
    return [asdict(event) for event in recent]


def clear() -> None:
    with _lock:
        _events.clear()


def record_worker_message(data: str) -> None:
    """Append an event received on ACTIVITY_CHANNEL (``{"type": ..., "data": {...}}``)."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning("Activity message parse error: %s", e)
        return
    if not isinstance(payload, dict) or "type" not in payload:
        logger.warning("Activity message without a type: %r", data[:200])
        return
    emit(str(payload["type"]), payload.get("data") or {})


def start_redis_subscriber(stop: Optional[threading.Event] = None) -> threading.Event:
    """Mirror worker events into the local log. Set the returned event to stop."""
    return channels.start_listener(ACTIVITY_CHANNEL, record_worker_message, name="activity-subscriber", stop=stop)


def publish_event(event_type: str, data: dict[str, Any]) -> None:
    """Record locally and publish on ACTIVITY_CHANNEL (worker side)."""
    emit(event_type, data)
    try:
        _redis().publish(ACTIVITY_CHANNEL, json.dumps({"type": event_type, "data": data}))
    except (redis.RedisError, OSError) as e:
        logger.warning("Activity publish failed (%s): %s", event_type, e)


def publish_ordering(snapshot: OrderingSnapshot) -> None:
    """Broadcast a published ordering to dashboards listening on ORDERING_CHANNEL."""
    try:
        _redis().publish(ORDERING_CHANNEL, snapshot.model_dump_json(by_alias=True))
    except (redis.RedisError, OSError) as e:
        logger.warning("Ordering publish failed (sequence %d): %s", snapshot.sequence, e)
