"""Queue sorter: deterministic priority ordering of scored items (heapq)."""

import heapq
from typing import Iterable, Optional

from priority_engine.models import OrderingSnapshot, ScoredItem


def _created_key(scored: ScoredItem) -> tuple[int, float]:
    """Older tickets first; tickets without a creation time go after timestamped ones."""
    created = scored.item.created_at
    if created is None:
        return (1, 0.0)
    return (0, created.timestamp())


def sort_scored(scored_items: Iterable[ScoredItem]) -> list[ScoredItem]:
    """
    Order by score descending, then createdAt ascending.

    Heap entries: (negated_score, created_key, insertion_order, ScoredItem).
    heapq is a min-heap, so the score is negated; insertion order keeps items with
    identical score and createdAt in their input order.
    """
    heap: list[tuple] = []
    for order, scored in enumerate(scored_items):
        heapq.heappush(heap, (-scored.score, _created_key(scored), order, scored))
    return [heapq.heappop(heap)[-1] for _ in range(len(heap))]


def peek(snapshot: OrderingSnapshot) -> Optional[ScoredItem]:
    """Highest-priority item of a published ordering. None if empty."""
    if not snapshot.items:
        return None
    return snapshot.items[0]


def position_of(snapshot: OrderingSnapshot, item_id: str) -> Optional[int]:
    """Zero-based queue position of ``item_id``, or None if it is not queued."""
    for index, scored in enumerate(snapshot.items):
        if scored.item.id == item_id:
            return index
    return None
