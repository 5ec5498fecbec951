"""Tests for the connection writer."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from memory_graph.adapters.sqlite_repository import SQLiteRepository
from memory_graph.domain.exceptions import RepositoryError
from memory_graph.domain.models import CollisionStatus, canonical_pair
from memory_graph.services.candidate_filter import filter_candidates
from memory_graph.services.signal_detectors import run_all_detectors
from memory_graph.use_cases.record_connection import (
    ConnectionWriter,
    PairLockRegistry,
)
from tests.conftest import BASE_TIME, seed_concert_pair


def _concert_candidates(repo: SQLiteRepository):
    seed_concert_pair(repo)
    data_a = repo.get_user_event_data("alice")
    data_b = repo.get_user_event_data("bob")
    return filter_candidates(run_all_detectors(data_a, data_b))


def test_first_record_creates_scores_and_notifies(
    repo: SQLiteRepository, writer: ConnectionWriter
) -> None:
    candidates = _concert_candidates(repo)
    pair = canonical_pair("alice", "bob")

    result = writer.record(pair, candidates, now=BASE_TIME)

    assert result.created is True
    assert result.events_added == 2
    assert result.collisions_created == 2
    assert result.connection.strength == pytest.approx(58.77, abs=0.01)

    stored = repo.get_connection(pair)
    assert stored.strength == result.connection.strength

    to_alice = repo.get_collisions_for_target("alice", status=CollisionStatus.PENDING)
    to_bob = repo.get_collisions_for_target("bob", status=CollisionStatus.PENDING)
    assert [c.initiator_id for c in to_alice] == ["bob"]
    assert [c.initiator_id for c in to_bob] == ["alice"]
    assert to_bob[0].event_summary == "New shared experiences detected"


def test_rerun_appends_duplicates_without_renotifying(
    repo: SQLiteRepository, writer: ConnectionWriter
) -> None:
    candidates = _concert_candidates(repo)
    pair = canonical_pair("alice", "bob")
    writer.record(pair, candidates, now=BASE_TIME)

    second = writer.record(pair, candidates, now=BASE_TIME)

    assert second.created is False
    assert second.collisions_created == 0
    assert second.connection.shared_event_count == 4
    assert len(repo.get_shared_events(second.connection.connection_id)) == 4
    assert len(repo.get_collisions_for_target("bob")) == 1


def test_record_rejects_empty_batch(writer: ConnectionWriter) -> None:
    with pytest.raises(ValueError):
        writer.record(canonical_pair("alice", "bob"), [])


def test_concurrent_records_do_not_lose_updates(
    repo: SQLiteRepository, writer: ConnectionWriter
) -> None:
    candidates = _concert_candidates(repo)
    pair = canonical_pair("alice", "bob")

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(
            executor.map(lambda _: writer.record(pair, candidates), range(4))
        )

    assert sum(1 for r in results if r.created) == 1
    stored = repo.get_connection(pair)
    assert stored.shared_event_count == 8
    assert len(repo.get_shared_events(stored.connection_id)) == 8
    assert len(repo.get_collisions_for_target("alice")) == 1
    assert len(repo.get_collisions_for_target("bob")) == 1


def test_failed_scoring_is_repaired_on_next_record(
    repo: SQLiteRepository, writer: ConnectionWriter, mocker
) -> None:
    candidates = _concert_candidates(repo)
    pair = canonical_pair("alice", "bob")
    mocker.patch.object(
        repo,
        "update_connection_strength",
        side_effect=[RepositoryError("connection reset"), None],
    )

    with pytest.raises(RepositoryError):
        writer.record(pair, candidates, now=BASE_TIME)
    assert repo.get_collisions_for_target("alice") == []

    second = writer.record(pair, candidates, now=BASE_TIME)

    assert second.created is False
    assert second.collisions_created == 2
    assert [c.initiator_id for c in repo.get_collisions_for_target("alice")] == ["bob"]
    assert [c.initiator_id for c in repo.get_collisions_for_target("bob")] == ["alice"]


def test_pair_lock_registry_releases_entries() -> None:
    registry = PairLockRegistry()

    for i in range(100):
        with registry.hold(canonical_pair("u0", f"v{i}")):
            assert len(registry) == 1

    assert len(registry) == 0


def test_pair_lock_registry_serializes_same_pair() -> None:
    registry = PairLockRegistry()
    pair = canonical_pair("alice", "bob")
    inside = threading.Event()
    release = threading.Event()
    order: list[str] = []

    def first() -> None:
        with registry.hold(pair):
            inside.set()
            release.wait(timeout=5)
            order.append("first")

    def second() -> None:
        inside.wait(timeout=5)
        with registry.hold(canonical_pair("bob", "alice")):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    inside.wait(timeout=5)
    release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert order == ["first", "second"]
    assert len(registry) == 0
