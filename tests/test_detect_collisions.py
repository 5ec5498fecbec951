"""Tests for single-pair detection."""

from datetime import timedelta

import pytest

from memory_graph.adapters.sqlite_repository import SQLiteRepository
from memory_graph.config.settings import Settings
from memory_graph.domain.exceptions import ValidationError
from memory_graph.domain.models import PairOutcome, canonical_pair
from memory_graph.use_cases.detect_collisions import detect_pair
from memory_graph.use_cases.record_connection import ConnectionWriter
from tests.conftest import BASE_TIME, make_post, make_profile, seed_concert_pair


def test_detect_pair_records_connection(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    seed_concert_pair(repo)

    result = detect_pair(repo, writer, settings, "alice", "bob")

    assert result.outcome is PairOutcome.RECORDED
    assert result.candidates_found == 2
    assert result.candidates_persisted == 2
    assert result.connection_created is True
    connection = repo.get_connection(canonical_pair("alice", "bob"))
    assert connection.connection_id == result.connection_id
    assert connection.shared_event_count == 2


def test_detect_pair_is_commutative(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    seed_concert_pair(repo)

    forward = detect_pair(repo, writer, settings, "alice", "bob")
    backward = detect_pair(repo, writer, settings, "bob", "alice")

    assert forward.pair == backward.pair
    assert backward.connection_id == forward.connection_id
    assert backward.connection_created is False
    assert len(repo.get_connections_for_user("alice", include_hidden=True)) == 1


def test_opted_out_user_is_ineligible(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    seed_concert_pair(repo)
    repo.save_users([make_profile("bob", display_name="bobby", enabled=False)])

    result = detect_pair(repo, writer, settings, "alice", "bob")

    assert result.outcome is PairOutcome.INELIGIBLE
    assert repo.get_connection(canonical_pair("alice", "bob")) is None


def test_unknown_user_is_ineligible(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    repo.save_users([make_profile("alice")])

    result = detect_pair(repo, writer, settings, "alice", "ghost")

    assert result.outcome is PairOutcome.INELIGIBLE


def test_weak_evidence_only_creates_nothing(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    repo.save_users([make_profile("alice"), make_profile("bob")])
    repo.save_posts(
        [
            make_post("a1", "alice", BASE_TIME),
            make_post("b1", "bob", BASE_TIME + timedelta(hours=3, minutes=54)),
        ]
    )

    result = detect_pair(repo, writer, settings, "alice", "bob")

    assert result.outcome is PairOutcome.NO_EVIDENCE
    assert result.candidates_found == 1
    assert repo.get_connection(canonical_pair("alice", "bob")) is None


def test_same_user_is_rejected(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    with pytest.raises(ValidationError):
        detect_pair(repo, writer, settings, "alice", "alice")


def test_thresholds_come_from_settings(
    repo: SQLiteRepository, writer: ConnectionWriter, settings: Settings
) -> None:
    seed_concert_pair(repo)
    strict = settings.model_copy(update={"detection_min_confidence": 0.9})

    result = detect_pair(repo, writer, strict, "alice", "bob")

    assert result.outcome is PairOutcome.NO_EVIDENCE
