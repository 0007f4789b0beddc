"""REST API for the repair priority engine: published ordering, config replace, ad-hoc scoring."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from priority_engine import activity, ticket_store
from priority_engine.config import INSTANCE_ID
from priority_engine.config_store import ConfigStore, RedisConfigBackend
from priority_engine.errors import ComputationError, ConfigValidationError
from priority_engine.models import (
    ChangeEvent,
    ChangeKind,
    OrderingSnapshot,
    PriorityConfig,
    ScoredItem,
    ScoreResult,
    WorkItem,
)
from priority_engine.ordering import peek, position_of
from priority_engine.recompute import RecomputeTrigger, make_change_handler, summarize
from priority_engine.scoring import evaluate, score

logger = logging.getLogger(__name__)

config_store = ConfigStore(backend=RedisConfigBackend())
trigger = RecomputeTrigger(ticket_store.fetch_snapshot, config_store)


def _on_config_replaced(config: PriorityConfig) -> None:
    activity.emit("config_replaced", {"version": config.version, "rules": len(config.rules)})
    trigger.notify(ChangeEvent(kind=ChangeKind.CONFIG_REPLACED))
    # Other engine processes reload the stored document when they see this.
    ticket_store.publish_change(ChangeEvent(kind=ChangeKind.CONFIG_REPLACED, origin=INSTANCE_ID))


config_store.add_listener(_on_config_replaced)
trigger.subscribe(lambda snapshot: activity.emit("ordering_published", summarize(snapshot)))


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_store.load()
    listeners = [
        activity.start_redis_subscriber(),
        ticket_store.start_change_listener(make_change_handler(config_store, trigger)),
    ]
    trigger.start()
    trigger.notify(ChangeEvent(kind=ChangeKind.MANUAL))
    try:
        yield
    finally:
        for stop in listeners:
            stop.set()
        trigger.stop(timeout=5)


app = FastAPI(
    title="Repair Priority Engine",
    description="Weighted, rule-adjusted priority ordering of pending repair tickets.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization"],
)


class QueuePosition(BaseModel):
    """Where a ticket currently sits in the published ordering."""

    position: int = Field(..., description="Zero-based; 0 = work on this next")
    sequence: int
    scored: ScoredItem


@app.get("/health")
def health() -> dict:
    """Health check (includes recompute state and published sequence)."""
    snapshot = trigger.current()
    return {
        "status": "ok",
        "recompute": trigger.state.value,
        "sequence": snapshot.sequence,
        "config_version": config_store.get().version,
    }


@app.get("/queue", response_model=OrderingSnapshot)
def get_queue() -> OrderingSnapshot:
    """Current published ordering (read-only snapshot)."""
    return trigger.current()


@app.get("/queue/next", response_model=ScoredItem)
def get_next() -> ScoredItem:
    """Highest-priority ticket. 404 if the ordering is empty."""
    top = peek(trigger.current())
    if top is None:
        raise HTTPException(status_code=404, detail="No tickets in queue")
    return top


@app.get("/queue/{item_id}", response_model=QueuePosition)
def get_position(item_id: str) -> QueuePosition:
    """Queue position and score breakdown of one ticket."""
    snapshot = trigger.current()
    index = position_of(snapshot, item_id)
    if index is None:
        raise HTTPException(status_code=404, detail="Ticket not in queue")
    return QueuePosition(position=index, sequence=snapshot.sequence, scored=snapshot.items[index])


@app.post("/recompute", status_code=202)
def request_recompute() -> dict:
    """Queue a manual recompute; the new ordering is published asynchronously."""
    trigger.notify(ChangeEvent(kind=ChangeKind.MANUAL))
    return {"status": "queued", "sequence": trigger.current().sequence}


@app.get("/config", response_model=PriorityConfig)
def get_config() -> PriorityConfig:
    """Active priority config (built-in default until an operator sets one)."""
    return config_store.get()


@app.put("/config", response_model=PriorityConfig)
def replace_config(document: dict[str, Any]) -> Any:
    """Validate and activate a config document. 422 with field-level errors if rejected."""
    try:
        return config_store.replace(document)
    except ConfigValidationError as e:
        logger.info("Rejected config replace: %s", e)
        return JSONResponse(status_code=422, content=e.to_dict())


@app.post("/score", response_model=ScoreResult)
def score_item(item: WorkItem) -> ScoreResult:
    """Score one ticket with the active config; does not touch the published ordering."""
    config = config_store.get()
    try:
        return score(item, config)
    except ComputationError as e:
        logger.error("Scoring failed with config v%d: %s", config.version, e)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/evaluate", response_model=list[ScoredItem])
def evaluate_items(items: list[WorkItem]) -> list[ScoredItem]:
    """Order an ad-hoc list of tickets with the active config."""
    config = config_store.get()
    try:
        return evaluate(items, config)
    except ComputationError as e:
        logger.error("Evaluation failed with config v%d: %s", config.version, e)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/activity")
def get_activity(limit: int = 100) -> dict:
    """Return recent engine events (config replaced, ordering published, stale data)."""
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity.get_recent(limit=limit)}
