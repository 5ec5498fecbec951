"""Tests for candidate filtering and batch aggregation."""

from datetime import timedelta

import pytest

from memory_graph.domain.models import (
    ConnectionType,
    SharedEventCandidate,
    TemporalMetadata,
    canonical_pair,
)
from memory_graph.services.candidate_filter import (
    filter_candidates,
    merge_batch_into_connection,
    new_connection_from_batch,
    summarize_batch,
)
from tests.conftest import BASE_TIME


def _candidate(
    confidence: float,
    *,
    hours: float = 0,
    event_type: ConnectionType = ConnectionType.TEMPORAL_OVERLAP,
) -> SharedEventCandidate:
    return SharedEventCandidate(
        event_type=event_type,
        event_date=BASE_TIME + timedelta(hours=hours),
        confidence=confidence,
        metadata=TemporalMetadata(),
    )


def test_filter_drops_weak_candidates() -> None:
    weak = _candidate(0.29)
    strong = _candidate(0.9)

    assert filter_candidates([weak, strong]) == [strong]


def test_filter_keeps_threshold_value() -> None:
    at_threshold = _candidate(0.3)

    assert filter_candidates([at_threshold]) == [at_threshold]


def test_filter_orders_by_event_date_stably() -> None:
    late = _candidate(0.9, hours=5)
    early_first = _candidate(0.5, hours=1)
    early_second = _candidate(0.6, hours=1)

    result = filter_candidates([late, early_first, early_second])

    assert result == [early_first, early_second, late]


def test_filter_custom_threshold() -> None:
    assert filter_candidates([_candidate(0.5)], min_confidence=0.6) == []


def test_filter_empty_means_no_evidence() -> None:
    assert filter_candidates([_candidate(0.1), _candidate(0.0)]) == []


def test_summarize_batch() -> None:
    batch = [
        _candidate(0.5, hours=3),
        _candidate(0.9, hours=-2, event_type=ConnectionType.SPATIAL_OVERLAP),
        _candidate(0.7, hours=1),
    ]

    summary = summarize_batch(batch)

    assert summary.connection_types == {
        ConnectionType.TEMPORAL_OVERLAP,
        ConnectionType.SPATIAL_OVERLAP,
    }
    assert summary.first_event == BASE_TIME - timedelta(hours=2)
    assert summary.last_event == BASE_TIME + timedelta(hours=3)
    assert summary.size == 3


def test_summarize_empty_batch_raises() -> None:
    with pytest.raises(ValueError):
        summarize_batch([])


def test_new_connection_and_merge() -> None:
    pair = canonical_pair("bob", "alice")
    first = summarize_batch([_candidate(0.9, hours=0)])

    connection = new_connection_from_batch(pair, first, now=BASE_TIME)

    assert connection.user_a_id == "alice"
    assert connection.user_b_id == "bob"
    assert connection.shared_event_count == 1
    assert connection.strength == 0.0

    older = summarize_batch(
        [
            _candidate(0.8, hours=-10, event_type=ConnectionType.MUTUAL_MENTION),
            _candidate(0.8, hours=-9, event_type=ConnectionType.MUTUAL_MENTION),
        ]
    )
    merged = merge_batch_into_connection(
        connection, older, now=BASE_TIME + timedelta(days=1)
    )

    assert merged.connection_id == connection.connection_id
    assert merged.shared_event_count == 3
    assert merged.connection_types == {
        ConnectionType.TEMPORAL_OVERLAP,
        ConnectionType.MUTUAL_MENTION,
    }
    assert merged.first_shared_event == BASE_TIME - timedelta(hours=10)
    assert merged.last_shared_event == BASE_TIME
    assert merged.updated_at == BASE_TIME + timedelta(days=1)
