"""
Recompute trigger: re-run scoring/sorting when tickets or the config change, and
publish the new ordering as an atomic snapshot swap.

Change events go onto a queue; a single consumer thread drains it so a burst of
events yields one recompute that reads the latest items and config at start.
Item fetches are bounded by a timeout; on failure the previous ordering stays
published and the next event retries.

Run standalone (Redis change channel in, ordering channel out):
  python -m priority_engine.recompute
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FetchTimeout
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from priority_engine import activity, ticket_store
from priority_engine.config import FETCH_TIMEOUT_SECONDS, INSTANCE_ID, REDIS_URL
from priority_engine.config_store import ConfigStore, RedisConfigBackend
from priority_engine.errors import ComputationError, StaleDataWarning
from priority_engine.models import ChangeEvent, ChangeKind, OrderingSnapshot, WorkItem
from priority_engine.scoring import evaluate, utc_now

logger = logging.getLogger(__name__)

Subscriber = Callable[[OrderingSnapshot], None]

_STOP = object()


class TriggerState(str, Enum):
    IDLE = "idle"
    RECOMPUTING = "recomputing"


def summarize(snapshot: OrderingSnapshot) -> dict:
    """Small activity payload for a published ordering."""
    return {
        "sequence": snapshot.sequence,
        "config_version": snapshot.config_version,
        "size": len(snapshot.items),
        "top_item_id": snapshot.items[0].item.id if snapshot.items else None,
    }


class RecomputeTrigger:
    """Serialized recompute path plus the current published ordering."""

    def __init__(
        self,
        fetch_items: Callable[[], Iterable[WorkItem]],
        config_store: ConfigStore,
        *,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._fetch_items = fetch_items
        self._config_store = config_store
        self._fetch_timeout = fetch_timeout
        self._clock = clock
        self._events: queue.Queue = queue.Queue()
        self._recompute_lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._snapshot = OrderingSnapshot()
        self._state = TriggerState.IDLE
        self._thread: threading.Thread | None = None
        self._fetch_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="item-fetch")

    @property
    def state(self) -> TriggerState:
        return self._state

    def current(self) -> OrderingSnapshot:
        """The last fully-formed ordering (empty until the first successful recompute)."""
        return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(snapshot)`` after every publish. Returns an unsubscribe function."""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, event: ChangeEvent) -> None:
        """Queue a change event for the consumer thread."""
        self._events.put(event)

    def _fetch_with_timeout(self) -> list[WorkItem]:
        future = self._fetch_pool.submit(self._fetch_items)
        try:
            return list(future.result(timeout=self._fetch_timeout))
        except FetchTimeout as e:
            raise StaleDataWarning(f"item snapshot fetch timed out after {self._fetch_timeout}s") from e
        except StaleDataWarning:
            raise
        except Exception as e:
            raise StaleDataWarning(f"item snapshot fetch failed: {e}") from e

    def _publish(self, snapshot: OrderingSnapshot) -> None:
        self._snapshot = snapshot
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Ordering subscriber failed for sequence %d", snapshot.sequence)

    def recompute_now(self) -> bool:
        """
        Run one pass: fetch items, read config, evaluate, publish.

        Returns False (and keeps the previous ordering) if the item fetch failed.
        """
        with self._recompute_lock:
            self._state = TriggerState.RECOMPUTING
            try:
                previous = self._snapshot
                try:
                    items = self._fetch_with_timeout()
                except StaleDataWarning as e:
                    logger.warning("%s; keeping ordering #%d.", e, previous.sequence)
                    activity.emit("stale_data", {"reason": str(e), "sequence": previous.sequence})
                    return False
                config = self._config_store.get()
                now = self._clock()
                try:
                    ordered = evaluate(items, config, now)
                except ComputationError:
                    logger.exception("Scoring failed with config v%d; keeping ordering #%d.",
                                     config.version, previous.sequence)
                    return False
                snapshot = OrderingSnapshot(
                    items=tuple(ordered),
                    sequence=previous.sequence + 1,
                    config_version=config.version,
                    computed_at=now,
                )
                self._publish(snapshot)
                logger.info("Published ordering #%d (%d items, config v%d).",
                            snapshot.sequence, len(snapshot.items), config.version)
                return True
            finally:
                self._state = TriggerState.IDLE

    def _run(self) -> None:
        while True:
            event = self._events.get()
            stop = event is _STOP
            pending = 0 if stop else 1
            # Coalesce everything that queued up while we were busy.
            while True:
                try:
                    extra = self._events.get_nowait()
                except queue.Empty:
                    break
                if extra is _STOP:
                    stop = True
                else:
                    pending += 1
            if pending:
                logger.debug("Recomputing for %d change event(s).", pending)
                self.recompute_now()
            if stop:
                return

    def start(self) -> None:
        """Start the consumer thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="recompute-trigger", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Process queued events, then stop the consumer thread."""
        if self._thread is None:
            return
        self._events.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def join(self) -> None:
        if self._thread is not None:
            self._thread.join()


def make_change_handler(
    store: ConfigStore, trigger: RecomputeTrigger, origin: str = INSTANCE_ID,
) -> Callable[[ChangeEvent], None]:
    """
    Handler for store notifications: reload the config when another process replaced it.

    Config events published by this process (same ``origin``) are dropped; the local
    replace already queued a recompute.
    """

    def handle(event: ChangeEvent) -> None:
        if event.kind == ChangeKind.CONFIG_REPLACED:
            if event.origin == origin:
                return
            store.load()
        trigger.notify(event)

    return handle


def main() -> None:
    store = ConfigStore(backend=RedisConfigBackend())
    store.load()
    trigger = RecomputeTrigger(ticket_store.fetch_snapshot, store)
    trigger.subscribe(activity.publish_ordering)
    trigger.subscribe(lambda snapshot: activity.publish_event("ordering_published", summarize(snapshot)))
    listener = ticket_store.start_change_listener(make_change_handler(store, trigger))
    trigger.start()
    trigger.notify(ChangeEvent(kind=ChangeKind.MANUAL))
    try:
        trigger.join()
    except KeyboardInterrupt:
        logger.info("Worker stopping.")
        listener.set()
        trigger.stop(timeout=5)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Recompute worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    main()
