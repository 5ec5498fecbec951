"""Tests for connection strength scoring."""

import random
from datetime import datetime, timedelta

import pytest

from memory_graph.domain.models import (
    Connection,
    ConnectionType,
    SharedEvent,
    TemporalMetadata,
)
from memory_graph.services.strength_scorer import (
    calculate_breakdown,
    calculate_connection_strength,
)
from tests.conftest import BASE_TIME


def _connection(last_event: datetime | None = BASE_TIME) -> Connection:
    return Connection(
        user_a_id="alice",
        user_b_id="bob",
        last_shared_event=last_event,
        first_shared_event=last_event,
    )


def _event(
    connection: Connection,
    confidence: float,
    event_type: ConnectionType = ConnectionType.TEMPORAL_OVERLAP,
    event_date: datetime = BASE_TIME,
) -> SharedEvent:
    return SharedEvent(
        connection_id=connection.connection_id,
        event_type=event_type,
        event_date=event_date,
        confidence=confidence,
        metadata=TemporalMetadata(),
    )


def test_concert_example() -> None:
    connection = _connection()
    events = [
        _event(connection, 0.625),
        _event(connection, 0.8605, ConnectionType.SPATIAL_OVERLAP),
    ]

    strength = calculate_connection_strength(connection, events, now=BASE_TIME)

    # 8 + 30 + 13.34 + 7.4275
    assert strength == pytest.approx(58.77, abs=0.01)


def test_empty_event_set_scores_zero() -> None:
    assert calculate_connection_strength(_connection(), [], now=BASE_TIME) == 0.0


def test_frequency_is_capped() -> None:
    connection = _connection()
    events = [_event(connection, 0.5) for _ in range(15)]

    breakdown = calculate_breakdown(connection, events, now=BASE_TIME)

    assert breakdown.frequency == 40.0


@pytest.mark.parametrize(
    ("days_ago", "expected"),
    [(0, 30.0), (100, 20.0), (300, 0.0), (400, 0.0), (-5, 30.0)],
)
def test_recency_decays_with_days(days_ago: int, expected: float) -> None:
    last_event = BASE_TIME - timedelta(days=days_ago)
    connection = _connection(last_event)
    events = [_event(connection, 0.5, event_date=last_event)]

    breakdown = calculate_breakdown(connection, events, now=BASE_TIME)

    assert breakdown.recency == pytest.approx(expected)


def test_recency_falls_back_to_latest_event() -> None:
    connection = _connection(last_event=None)
    events = [
        _event(connection, 0.5, event_date=BASE_TIME - timedelta(days=50)),
        _event(connection, 0.5, event_date=BASE_TIME - timedelta(days=20)),
    ]

    breakdown = calculate_breakdown(connection, events, now=BASE_TIME)

    assert breakdown.recency == pytest.approx(28.0)


def test_diversity_counts_unique_types() -> None:
    connection = _connection()
    events = [
        _event(connection, 0.5, ConnectionType.TEMPORAL_OVERLAP),
        _event(connection, 0.5, ConnectionType.TEMPORAL_OVERLAP),
        _event(connection, 0.5, ConnectionType.SPATIAL_OVERLAP),
        _event(connection, 0.5, ConnectionType.MUTUAL_MENTION),
    ]

    breakdown = calculate_breakdown(connection, events, now=BASE_TIME)

    assert breakdown.diversity == pytest.approx(20.01)


def test_maximum_score() -> None:
    connection = _connection()
    types = list(ConnectionType)
    events = [_event(connection, 1.0, types[i % 3]) for i in range(12)]

    assert calculate_connection_strength(connection, events, now=BASE_TIME) == 100.01


def test_score_is_order_independent() -> None:
    rng = random.Random(7)
    connection = _connection()
    events = [
        _event(connection, rng.uniform(0.3, 1.0), rng.choice(list(ConnectionType)))
        for _ in range(25)
    ]
    baseline = calculate_connection_strength(connection, events, now=BASE_TIME)

    for _ in range(5):
        shuffled = events[:]
        rng.shuffle(shuffled)
        assert (
            calculate_connection_strength(connection, shuffled, now=BASE_TIME)
            == baseline
        )
