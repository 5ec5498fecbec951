"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Generator, Sequence
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytz

from memory_graph.adapters.repository_factory import create_repository
from memory_graph.adapters.sqlite_repository import SQLiteRepository
from memory_graph.config.settings import Settings
from memory_graph.domain.models import (
    MediaItem,
    SocialPost,
    UserEventData,
    UserProfile,
)
from memory_graph.use_cases.record_connection import ConnectionWriter

BASE_TIME = datetime(2025, 10, 10, 20, 0, tzinfo=pytz.UTC)


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings()

    backend = "sqlite"
    if hasattr(request.node, "callspec"):
        backend = request.node.callspec.params.get("repo", backend)

    if request.node.get_closest_marker("postgres"):
        backend = "postgres"

    if backend == "postgres":
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("POSTGRES_PASSWORD"):
            pytest.skip("POSTGRES_PASSWORD not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={"database_type": "sqlite", "db_path": str(db_path)}
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[SQLiteRepository, None, None]:
    """Provide a repository instance for the configured backend."""

    repository = create_repository(settings)

    try:
        yield repository  # type: ignore[misc]
    finally:
        repository.close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            if db_path.exists():
                db_path.unlink()


@pytest.fixture
def writer(repo: SQLiteRepository) -> ConnectionWriter:
    return ConnectionWriter(repo)


def make_profile(
    user_id: str,
    *,
    email: str | None = None,
    display_name: str | None = None,
    enabled: bool = True,
    updated_at: datetime | None = None,
) -> UserProfile:
    return UserProfile(
        user_id=user_id,
        email=email if email is not None else f"{user_id}@example.com",
        display_name=display_name,
        collision_detection_enabled=enabled,
        updated_at=updated_at or BASE_TIME,
    )


def make_post(
    post_id: str,
    user_id: str,
    created_at: datetime,
    content: str = "",
    provider: str = "instagram",
) -> SocialPost:
    return SocialPost(
        post_id=post_id,
        user_id=user_id,
        created_at=created_at,
        content=content,
        provider=provider,
    )


def make_media(
    media_id: str,
    user_id: str,
    created_at: datetime,
    latitude: float | None,
    longitude: float | None,
    location: str | None = None,
) -> MediaItem:
    return MediaItem(
        media_id=media_id,
        user_id=user_id,
        created_at=created_at,
        latitude=latitude,
        longitude=longitude,
        location=location,
        url=f"https://media.example.com/{media_id}.jpg",
    )


def make_event_data(
    profile: UserProfile,
    posts: Sequence[SocialPost] = (),
    media: Sequence[MediaItem] = (),
) -> UserEventData:
    return UserEventData(profile=profile, posts=list(posts), media=list(media))


def seed_concert_pair(repository: SQLiteRepository) -> None:
    """Two users at the same concert: 90 minutes apart, ~14 m apart."""
    repository.save_users(
        [
            make_profile("alice", display_name="alice_w"),
            make_profile("bob", display_name="bobby"),
        ]
    )
    repository.save_posts(
        [
            make_post("p-a1", "alice", BASE_TIME, "At the concert!"),
            make_post(
                "p-b1", "bob", BASE_TIME + timedelta(minutes=90), "Great show tonight"
            ),
        ]
    )
    repository.save_media(
        [
            make_media("m-a1", "alice", BASE_TIME, 40.7128, -74.0060, "Madison Square"),
            make_media(
                "m-b1", "bob", BASE_TIME + timedelta(minutes=30), 40.7129, -74.0061
            ),
        ]
    )
