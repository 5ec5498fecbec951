"""Candidate filtering and batch aggregation.

Rules:
1. Candidates below the global minimum confidence are dropped
2. Survivors are ordered by event date (stable, ties keep detector order)
3. An empty result means "no evidence": nothing is persisted for the pair
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from memory_graph.domain.detection_constants import DEFAULT_MIN_CONFIDENCE
from memory_graph.domain.models import (
    Connection,
    ConnectionType,
    SharedEventCandidate,
    UserPair,
    utc_now,
)


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Aggregate facts about a filtered candidate batch."""

    connection_types: frozenset[ConnectionType]
    first_event: datetime
    last_event: datetime
    size: int


def filter_candidates(
    candidates: Sequence[SharedEventCandidate],
    *,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> list[SharedEventCandidate]:
    """Drop weak candidates and sort the rest by event date ascending.

    Example:
        >>> filter_candidates([weak_0_2, strong_0_9])
        [strong_0_9]
    """
    kept = [c for c in candidates if c.confidence >= min_confidence]
    return sorted(kept, key=lambda c: c.event_date)


def summarize_batch(candidates: Sequence[SharedEventCandidate]) -> BatchSummary:
    """Summarize a non-empty candidate batch.

    Raises:
        ValueError: If the batch is empty
    """
    if not candidates:
        raise ValueError("Cannot summarize an empty candidate batch")

    dates = [c.event_date for c in candidates]
    return BatchSummary(
        connection_types=frozenset(c.event_type for c in candidates),
        first_event=min(dates),
        last_event=max(dates),
        size=len(candidates),
    )


def new_connection_from_batch(
    pair: UserPair, summary: BatchSummary, *, now: datetime | None = None
) -> Connection:
    """Connection for a pair seen for the first time.

    Strength starts at 0 and is recomputed right after the batch is stored.
    """
    timestamp = now or utc_now()
    return Connection(
        user_a_id=pair.user_a_id,
        user_b_id=pair.user_b_id,
        connection_types=set(summary.connection_types),
        shared_event_count=summary.size,
        first_shared_event=summary.first_event,
        last_shared_event=summary.last_event,
        strength=0.0,
        created_at=timestamp,
        updated_at=timestamp,
    )


def merge_batch_into_connection(
    connection: Connection, summary: BatchSummary, *, now: datetime | None = None
) -> Connection:
    """Fold a new batch into an existing connection.

    Types are unioned, the count grows by the batch size and the first/last
    shared event dates only ever widen.
    """
    first = connection.first_shared_event
    last = connection.last_shared_event
    return connection.model_copy(
        update={
            "connection_types": connection.connection_types
            | set(summary.connection_types),
            "shared_event_count": connection.shared_event_count + summary.size,
            "first_shared_event": min(first, summary.first_event)
            if first
            else summary.first_event,
            "last_shared_event": max(last, summary.last_event)
            if last
            else summary.last_event,
            "updated_at": now or utc_now(),
        }
    )
