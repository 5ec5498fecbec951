"""Tests for the PostgreSQL repository.

These tests are skipped unless:
- POSTGRES_PASSWORD environment variable is set
- TEST_POSTGRES=1 environment variable is set
- PostgreSQL is running on POSTGRES_HOST:POSTGRES_PORT (default localhost:5432)

The schema is created with the Alembic migrations.

Run with: TEST_POSTGRES=1 POSTGRES_PASSWORD=password pytest tests/test_postgres_repository.py
"""

import argparse
import os
import threading
from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.engine import URL

from alembic import command
from alembic.config import Config
from memory_graph.adapters.postgres_repository import PostgresRepository
from memory_graph.domain.models import (
    CollisionStatus,
    ConnectionType,
    canonical_pair,
)
from memory_graph.services.candidate_filter import filter_candidates
from memory_graph.services.signal_detectors import run_all_detectors
from memory_graph.use_cases.record_connection import ConnectionWriter
from tests.conftest import BASE_TIME, make_profile, seed_concert_pair

ALEMBIC_DIR = Path(__file__).resolve().parents[1] / "alembic"
TABLES = (
    "memory_collisions",
    "shared_events",
    "connections",
    "media_items",
    "social_posts",
    "users",
    "alembic_version",
)


def _upgrade_schema(url: str) -> None:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.cmd_opts = argparse.Namespace(x=[f"db_url={url}"])
    command.upgrade(config, "head")


@pytest.fixture
def postgres_repo() -> Generator[PostgresRepository, None, None]:
    """PostgresRepository on a freshly migrated test database."""
    if not os.environ.get("POSTGRES_PASSWORD"):
        pytest.skip("POSTGRES_PASSWORD not set - skipping PostgreSQL tests")
    if os.environ.get("TEST_POSTGRES", "0") != "1":
        pytest.skip("TEST_POSTGRES=1 not set - skipping PostgreSQL tests")

    password = os.environ["POSTGRES_PASSWORD"]
    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = int(os.environ.get("POSTGRES_PORT", "5432"))
    database = os.environ.get("POSTGRES_TEST_DATABASE", "memory_graph_test")
    user = os.environ.get("POSTGRES_USER", "postgres")

    repo = PostgresRepository(
        host=host, port=port, database=database, user=user, password=password
    )

    with repo._get_connection() as conn:
        with conn.cursor() as cur:
            for table in TABLES:
                cur.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
        conn.commit()

    _upgrade_schema(
        URL.create(
            "postgresql+psycopg2",
            username=user,
            password=password,
            host=host,
            port=port,
            database=database,
        ).render_as_string(hide_password=False)
    )

    try:
        yield repo
    finally:
        repo.close()


def _record_concert(repo: PostgresRepository, writer: ConnectionWriter) -> None:
    pair = canonical_pair("alice", "bob")
    candidates = filter_candidates(
        run_all_detectors(
            repo.get_user_event_data(pair.user_a_id),
            repo.get_user_event_data(pair.user_b_id),
        )
    )
    writer.record(pair, candidates, now=BASE_TIME)


def test_postgres_seed_and_read(postgres_repo: PostgresRepository) -> None:
    seed_concert_pair(postgres_repo)

    data = postgres_repo.get_user_event_data("alice")

    assert data is not None
    assert [p.post_id for p in data.posts] == ["p-a1"]
    assert data.media[0].location == "Madison Square"
    assert postgres_repo.get_opted_in_users() == ["alice", "bob"]
    assert postgres_repo.get_user_event_data("nobody") is None


def test_postgres_opted_in_users_use_code_point_order(
    postgres_repo: PostgresRepository,
) -> None:
    postgres_repo.save_users([make_profile("b"), make_profile("B"), make_profile("a")])

    assert postgres_repo.get_opted_in_users() == ["B", "a", "b"]


def test_postgres_record_connection(postgres_repo: PostgresRepository) -> None:
    seed_concert_pair(postgres_repo)
    writer = ConnectionWriter(postgres_repo)

    _record_concert(postgres_repo, writer)

    connection = postgres_repo.get_connection(canonical_pair("alice", "bob"))
    assert connection is not None
    assert connection.shared_event_count == 2
    assert connection.connection_types == {
        ConnectionType.TEMPORAL_OVERLAP,
        ConnectionType.SPATIAL_OVERLAP,
    }
    assert connection.strength == pytest.approx(58.77, abs=0.01)

    events = postgres_repo.get_shared_events(connection.connection_id)
    assert len(events) == 2
    assert events[0].event_date <= events[1].event_date

    pending = postgres_repo.get_collisions_for_target(
        "bob", status=CollisionStatus.PENDING
    )
    assert len(pending) == 1
    assert pending[0].initiator_id == "alice"


def test_postgres_rerun_accumulates_events(postgres_repo: PostgresRepository) -> None:
    seed_concert_pair(postgres_repo)
    writer = ConnectionWriter(postgres_repo)

    _record_concert(postgres_repo, writer)
    _record_concert(postgres_repo, writer)

    connection = postgres_repo.get_connection(canonical_pair("alice", "bob"))
    assert connection.shared_event_count == 4
    assert len(postgres_repo.get_collisions_for_target("alice")) == 1


def test_postgres_concurrent_writers_share_one_connection(
    postgres_repo: PostgresRepository,
) -> None:
    seed_concert_pair(postgres_repo)
    errors: list[BaseException] = []

    def run() -> None:
        try:
            _record_concert(postgres_repo, ConnectionWriter(postgres_repo))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=run) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    connection = postgres_repo.get_connection(canonical_pair("alice", "bob"))
    assert connection.shared_event_count == 6
    assert len(postgres_repo.get_collisions_for_target("bob")) == 1


def test_postgres_collision_status_update(postgres_repo: PostgresRepository) -> None:
    seed_concert_pair(postgres_repo)
    _record_concert(postgres_repo, ConnectionWriter(postgres_repo))
    collision = postgres_repo.get_collisions_for_target("bob")[0]

    postgres_repo.update_collision_status(
        collision.collision_id,
        CollisionStatus.DECLINED,
        BASE_TIME + timedelta(days=1),
    )

    stored = postgres_repo.get_collision(collision.collision_id)
    assert stored.status is CollisionStatus.DECLINED
    assert stored.responded_at == BASE_TIME + timedelta(days=1)


def test_postgres_same_date_events_have_stable_order(
    postgres_repo: PostgresRepository,
) -> None:
    seed_concert_pair(postgres_repo)
    writer = ConnectionWriter(postgres_repo)
    _record_concert(postgres_repo, writer)
    _record_concert(postgres_repo, writer)
    connection = postgres_repo.get_connection(canonical_pair("alice", "bob"))

    events = postgres_repo.get_shared_events(connection.connection_id)

    keys = [(e.event_date, e.created_at, str(e.shared_event_id)) for e in events]
    assert keys == sorted(keys)
    assert [e.shared_event_id for e in events] == [
        e.shared_event_id
        for e in postgres_repo.get_shared_events(connection.connection_id)
    ]
