"""Tests for the collision notifier."""

from memory_graph.adapters.sqlite_repository import SQLiteRepository
from memory_graph.domain.models import (
    Connection,
    ConnectionType,
    SharedEventCandidate,
    TemporalMetadata,
    canonical_pair,
)
from memory_graph.use_cases.notify_collision import CollisionNotifier
from tests.conftest import BASE_TIME


def _stored_connection(repo: SQLiteRepository) -> Connection:
    candidate = SharedEventCandidate(
        event_type=ConnectionType.TEMPORAL_OVERLAP,
        event_date=BASE_TIME,
        confidence=0.9,
        metadata=TemporalMetadata(),
    )
    return repo.record_shared_events(canonical_pair("alice", "bob"), [candidate]).connection


def test_notifier_creates_both_directions_once(repo: SQLiteRepository) -> None:
    connection = _stored_connection(repo)
    notifier = CollisionNotifier(repo)

    assert notifier.notify_new_connection(connection) == 2
    assert notifier.notify_new_connection(connection) == 0

    assert repo.collision_exists("alice", "bob", connection.connection_id)
    assert repo.collision_exists("bob", "alice", connection.connection_id)


def test_notifier_fills_missing_direction(repo: SQLiteRepository, mocker) -> None:
    connection = _stored_connection(repo)
    store = mocker.Mock()
    store.collision_exists.side_effect = [True, False]
    store.save_collision.return_value = True

    created = CollisionNotifier(store).notify_new_connection(connection)

    assert created == 1
    saved = store.save_collision.call_args.args[0]
    assert saved.initiator_id == "bob"
    assert saved.target_id == "alice"
    assert saved.connection_id == connection.connection_id
