"""Connection strength scoring.

The score is a pure function of a connection and its full shared-event set.
It is recomputed from scratch every time evidence is added, so the stored
value can always be reproduced by replaying the shared_events table.

Sub-scores:
- Frequency: min(event_count × 4, 40)
- Recency: max(30 - days_since_last_event / 10, 0)
- Diversity: unique_event_types × 6.67
- Confidence: average_confidence × 10
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from math import fsum

from memory_graph.domain.models import Connection, SharedEvent, ensure_utc, utc_now
from memory_graph.domain.scoring_constants import (
    CONFIDENCE_SCORE_WEIGHT,
    DIVERSITY_POINTS_PER_TYPE,
    FREQUENCY_POINTS_PER_EVENT,
    MAX_FREQUENCY_SCORE,
    MAX_RECENCY_SCORE,
    RECENCY_DAYS_PER_POINT,
    SECONDS_PER_DAY,
    STRENGTH_DECIMALS,
)


@dataclass(frozen=True, slots=True)
class StrengthBreakdown:
    """Individual sub-scores, kept for logging and audit."""

    frequency: float
    recency: float
    diversity: float
    confidence: float

    @property
    def total(self) -> float:
        return round(
            self.frequency + self.recency + self.diversity + self.confidence,
            STRENGTH_DECIMALS,
        )


def calculate_breakdown(
    connection: Connection,
    events: Sequence[SharedEvent],
    *,
    now: datetime | None = None,
) -> StrengthBreakdown:
    """Compute the four sub-scores for a connection.

    The last-event date comes from the connection and falls back to the
    latest event. Event dates in the future count as "today".
    """
    if not events:
        return StrengthBreakdown(
            frequency=0.0, recency=0.0, diversity=0.0, confidence=0.0
        )

    reference = ensure_utc(now) if now else utc_now()

    frequency = min(len(events) * FREQUENCY_POINTS_PER_EVENT, MAX_FREQUENCY_SCORE)

    last_event = connection.last_shared_event or max(e.event_date for e in events)
    days_since_last = max(
        (reference - ensure_utc(last_event)).total_seconds() / SECONDS_PER_DAY, 0.0
    )
    recency = max(MAX_RECENCY_SCORE - days_since_last / RECENCY_DAYS_PER_POINT, 0.0)

    unique_types = len({e.event_type for e in events})
    diversity = unique_types * DIVERSITY_POINTS_PER_TYPE

    avg_confidence = fsum(e.confidence for e in events) / len(events)
    confidence = avg_confidence * CONFIDENCE_SCORE_WEIGHT

    return StrengthBreakdown(
        frequency=float(frequency),
        recency=recency,
        diversity=diversity,
        confidence=confidence,
    )


def calculate_connection_strength(
    connection: Connection,
    events: Sequence[SharedEvent],
    *,
    now: datetime | None = None,
) -> float:
    """Return the 0-100 strength of a connection, rounded to 2 decimals.

    Example:
        >>> # 2 events dated now, 2 types, avg confidence 0.743
        >>> calculate_connection_strength(connection, events)
        58.77
    """
    return calculate_breakdown(connection, events, now=now).total
