"""
Redis-backed view of the external ticket store.

The repair-order service keeps one JSON document per pending work item in a hash
(WORK_ITEMS_KEY, field = item id) and announces changes on CHANGES_CHANNEL.
The engine only reads items; upsert/remove exist for the store's own writers and tests.
"""

import json
import logging
import threading
from typing import Any, Callable, Optional

import pydantic
import redis

from priority_engine import channels
from priority_engine.config import (
    CHANGES_CHANNEL,
    FETCH_TIMEOUT_SECONDS,
    REDIS_CONN_TIMEOUT,
    REDIS_URL,
    WORK_ITEMS_KEY,
)
from priority_engine.errors import StaleDataWarning
from priority_engine.models import ChangeEvent, ChangeKind, Stage, WorkItem

logger = logging.getLogger(__name__)

# Finished tickets are not part of the work queue.
TERMINAL_STAGES = frozenset({Stage.DELIVERED, Stage.CANCELLED})

# Status names used by the repair board, mapped to engine stages.
REPAIR_STATUS_STAGES = {
    "pending": Stage.RECEIVED,
    "recibido": Stage.RECEIVED,
    "diagnostico": Stage.DIAGNOSING,
    "reparacion": Stage.REPAIRING,
    "reparando": Stage.REPAIRING,
    "in_progress": Stage.REPAIRING,
    "pausado": Stage.PAUSED,
    "waiting_parts": Stage.PAUSED,
    "on_hold": Stage.PAUSED,
    "listo": Stage.READY,
    "completed": Stage.READY,
    "entregado": Stage.DELIVERED,
    "cancelado": Stage.CANCELLED,
}

# Repair priority label -> urgency ordinal.
REPAIR_PRIORITY_URGENCY = {"high": 5, "medium": 3, "low": 1}
DEFAULT_REPAIR_COMPLEXITY = 3

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


def _parse_stage(status: Optional[str]) -> Stage:
    if not status:
        return Stage.RECEIVED
    key = status.strip().lower()
    if key in REPAIR_STATUS_STAGES:
        return REPAIR_STATUS_STAGES[key]
    try:
        return Stage(key)
    except ValueError:
        logger.warning("Unknown repair status %r; treating it as %s.", status, Stage.RECEIVED.value)
        return Stage.RECEIVED


def from_repair_record(record: dict[str, Any]) -> WorkItem:
    """
    Build a WorkItem from a repair record as stored by the repair board.

    priority high/medium/low -> urgency 5/3/1; finalCost, else estimatedCost, is the
    customer value; complexity defaults to 3 when the record does not carry one.
    """
    device = record.get("device") or " ".join(
        part for part in (record.get("brand"), record.get("model")) if part
    )
    issue_parts = [record.get("issue"), record.get("description")]
    priority = (record.get("priority") or "").lower()
    value = record.get("finalCost")
    if value is None:
        value = record.get("estimatedCost")
    return WorkItem(
        id=str(record["id"]),
        device_descriptor=device or record.get("deviceType") or "",
        issue_description=". ".join(p for p in issue_parts if p),
        created_at=record.get("createdAt"),
        urgency_level=REPAIR_PRIORITY_URGENCY.get(priority, record.get("urgencyLevel")),
        technical_complexity=record.get("technicalComplexity", DEFAULT_REPAIR_COMPLEXITY),
        historical_customer_value=value or 0.0,
        current_stage=_parse_stage(record.get("dbStatus") or record.get("status")),
    )


def _is_repair_record(document: dict[str, Any]) -> bool:
    return "currentStage" not in document and ("status" in document or "dbStatus" in document)


def parse_document(doc: str) -> WorkItem:
    """
    Parse one stored document: a WorkItem, or a repair record written by the repair board.

    Raises ValueError (pydantic.ValidationError included) if it is neither.
    """
    document = json.loads(doc)
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")
    if _is_repair_record(document):
        if "id" not in document:
            raise ValueError("repair record has no id")
        return from_repair_record(document)
    return WorkItem.model_validate(document)


def fetch_snapshot() -> list[WorkItem]:
    """
    All pending work items, sorted by id so identical store contents give identical input.

    Raises StaleDataWarning if the store cannot be read. Malformed documents are
    logged and skipped.
    """
    try:
        raw = _redis().hgetall(WORK_ITEMS_KEY)
    except (redis.RedisError, OSError) as e:
        raise StaleDataWarning(f"work item fetch failed: {e}") from e
    items = []
    for item_id, doc in raw.items():
        try:
            item = parse_document(doc)
        except ValueError as e:
            logger.warning("Skipping malformed work item %s: %s", item_id, e)
            continue
        if item.current_stage in TERMINAL_STAGES:
            continue
        items.append(item)
    items.sort(key=lambda item: item.id)
    return items


def publish_change(event: ChangeEvent) -> None:
    """Announce a change to every engine listening on CHANGES_CHANNEL."""
    try:
        _redis().publish(CHANGES_CHANNEL, event.model_dump_json(by_alias=True))
    except (redis.RedisError, OSError) as e:
        logger.warning("Change publish failed (%s): %s", event.kind.value, e)


def upsert_item(item: WorkItem) -> None:
    """Write an item and announce it (ticket store side)."""
    r = _redis()
    created = r.hset(WORK_ITEMS_KEY, item.id, item.model_dump_json(by_alias=True))
    kind = ChangeKind.ITEM_ADDED if created else ChangeKind.ITEM_UPDATED
    publish_change(ChangeEvent(kind=kind, item_id=item.id))


def remove_item(item_id: str) -> bool:
    """Delete an item and announce it. Returns False if it was not stored."""
    removed = _redis().hdel(WORK_ITEMS_KEY, item_id)
    if removed:
        publish_change(ChangeEvent(kind=ChangeKind.ITEM_REMOVED, item_id=item_id))
    return bool(removed)


def change_message_handler(on_event: Callable[[ChangeEvent], None]) -> Callable[[str], None]:
    """Wrap ``on_event`` to take raw CHANGES_CHANNEL payloads; unparseable ones are logged and dropped."""

    def handle(data: str) -> None:
        try:
            event = ChangeEvent.model_validate_json(data)
        except pydantic.ValidationError as e:
            logger.warning("Change message parse error: %s", e.errors()[:3])
            return
        on_event(event)

    return handle


def start_change_listener(
    on_event: Callable[[ChangeEvent], None], stop: Optional[threading.Event] = None,
) -> threading.Event:
    """Forward store change notifications to ``on_event`` from a background thread. Set the returned event to stop."""
    return channels.start_listener(
        CHANGES_CHANNEL, change_message_handler(on_event), name="change-listener", stop=stop,
    )
