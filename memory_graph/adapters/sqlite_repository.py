"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with a SQLite backend: the read side over the
users/social_posts/media_items tables populated by ingestion connectors, and
the engine's own connections/shared_events/memory_collisions tables.
"""

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from uuid import UUID

from memory_graph.adapters.row_mapping import (
    SHARED_EVENT_COLUMNS,
    collision_from_row,
    connection_from_row,
    connection_types_to_json,
    media_from_row,
    post_from_row,
    profile_from_row,
    shared_event_from_row,
    shared_event_params,
    to_db_timestamp,
)
from memory_graph.config.logging_config import get_logger
from memory_graph.domain.exceptions import DataAccessError, RepositoryError
from memory_graph.domain.models import (
    CollisionStatus,
    Connection,
    ConnectionWriteResult,
    MediaItem,
    MemoryCollision,
    SharedEvent,
    SharedEventCandidate,
    SocialPost,
    UserEventData,
    UserPair,
    UserProfile,
    utc_now,
)
from memory_graph.services.candidate_filter import (
    merge_batch_into_connection,
    new_connection_from_batch,
    summarize_batch,
)

logger = get_logger(__name__)

_BUSY_TIMEOUT_SECONDS = 30.0


class SQLiteRepository:
    """SQLite-based repository for local runs and tests."""

    def __init__(self, db_path: str) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection in autocommit mode with row access by name."""
        conn = sqlite3.connect(
            self.db_path, timeout=_BUSY_TIMEOUT_SECONDS, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that holds the database write lock."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        with self._reader() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT,
                    display_name TEXT,
                    collision_detection_enabled INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS social_posts (
                    post_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    content TEXT,
                    provider TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_social_posts_user
                    ON social_posts(user_id, created_at);

                CREATE TABLE IF NOT EXISTS media_items (
                    media_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    location TEXT,
                    url TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_media_items_user
                    ON media_items(user_id, created_at);

                CREATE TABLE IF NOT EXISTS connections (
                    connection_id TEXT PRIMARY KEY,
                    user_a_id TEXT NOT NULL,
                    user_b_id TEXT NOT NULL,
                    connection_types TEXT NOT NULL,
                    shared_event_count INTEGER NOT NULL DEFAULT 0,
                    first_shared_event TEXT,
                    last_shared_event TEXT,
                    strength REAL NOT NULL DEFAULT 0,
                    hidden INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_a_id, user_b_id),
                    CHECK (user_a_id < user_b_id)
                );
                CREATE INDEX IF NOT EXISTS idx_connections_user_b
                    ON connections(user_b_id);

                CREATE TABLE IF NOT EXISTS shared_events (
                    shared_event_id TEXT PRIMARY KEY,
                    connection_id TEXT NOT NULL REFERENCES connections(connection_id),
                    event_type TEXT NOT NULL,
                    event_date TEXT NOT NULL,
                    duration_hours INTEGER,
                    location TEXT,
                    latitude REAL,
                    longitude REAL,
                    user_a_source_type TEXT,
                    user_a_source_id TEXT,
                    user_b_source_type TEXT,
                    user_b_source_id TEXT,
                    confidence REAL NOT NULL,
                    metadata TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_shared_events_connection
                    ON shared_events(connection_id, event_date);

                CREATE TABLE IF NOT EXISTS memory_collisions (
                    collision_id TEXT PRIMARY KEY,
                    initiator_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    connection_id TEXT NOT NULL REFERENCES connections(connection_id),
                    event_summary TEXT NOT NULL,
                    status TEXT NOT NULL
                        CHECK (status IN ('pending', 'confirmed', 'declined')),
                    created_at TEXT NOT NULL,
                    responded_at TEXT,
                    UNIQUE (initiator_id, target_id, connection_id)
                );
                CREATE INDEX IF NOT EXISTS idx_memory_collisions_target
                    ON memory_collisions(target_id, status);
                """
            )
        logger.info("sqlite_schema_ready", db_path=str(self.db_path))

    def close(self) -> None:
        """Connections are opened per call; nothing to release."""

    # === Seeding (used by ingestion connectors and tests) ===

    def save_users(self, profiles: Sequence[UserProfile]) -> int:
        """Save user profiles (idempotent upsert).

        Raises:
            RepositoryError: On storage errors
        """
        if not profiles:
            return 0
        try:
            with self._transaction() as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO users (
                        user_id, email, display_name,
                        collision_detection_enabled, updated_at
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            p.user_id,
                            p.email,
                            p.display_name,
                            1 if p.collision_detection_enabled else 0,
                            to_db_timestamp(p.updated_at),
                        )
                        for p in profiles
                    ],
                )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save users: {e}") from e
        return len(profiles)

    def save_posts(self, posts: Sequence[SocialPost]) -> int:
        """Save social posts (idempotent upsert)."""
        if not posts:
            return 0
        try:
            with self._transaction() as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO social_posts (
                        post_id, user_id, created_at, content, provider
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            p.post_id,
                            p.user_id,
                            to_db_timestamp(p.created_at),
                            p.content,
                            p.provider,
                        )
                        for p in posts
                    ],
                )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save posts: {e}") from e
        return len(posts)

    def save_media(self, media: Sequence[MediaItem]) -> int:
        """Save media items (idempotent upsert)."""
        if not media:
            return 0
        try:
            with self._transaction() as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO media_items (
                        media_id, user_id, created_at, latitude, longitude,
                        location, url
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            m.media_id,
                            m.user_id,
                            to_db_timestamp(m.created_at),
                            m.latitude,
                            m.longitude,
                            m.location,
                            m.url,
                        )
                        for m in media
                    ],
                )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save media: {e}") from e
        return len(media)

    # === UserDataSourceProtocol ===

    def get_user_event_data(self, user_id: str) -> UserEventData | None:
        try:
            with self._reader() as conn:
                user_row = conn.execute(
                    "SELECT * FROM users WHERE user_id = ?", (user_id,)
                ).fetchone()
                if user_row is None:
                    return None
                post_rows = conn.execute(
                    """
                    SELECT * FROM social_posts WHERE user_id = ?
                    ORDER BY created_at, post_id
                    """,
                    (user_id,),
                ).fetchall()
                media_rows = conn.execute(
                    """
                    SELECT * FROM media_items WHERE user_id = ?
                    ORDER BY created_at, media_id
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise DataAccessError(f"Failed to load event data for {user_id}: {e}") from e

        return UserEventData(
            profile=profile_from_row(user_row),
            posts=[post_from_row(row) for row in post_rows],
            media=[media_from_row(row) for row in media_rows],
        )

    def get_user_profiles(self, user_ids: Sequence[str]) -> dict[str, UserProfile]:
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        try:
            with self._reader() as conn:
                rows = conn.execute(
                    f"SELECT * FROM users WHERE user_id IN ({placeholders})",
                    tuple(user_ids),
                ).fetchall()
        except sqlite3.Error as e:
            raise DataAccessError(f"Failed to load user profiles: {e}") from e
        return {row["user_id"]: profile_from_row(row) for row in rows}

    def get_opted_in_users(self) -> list[str]:
        try:
            with self._reader() as conn:
                rows = conn.execute(
                    """
                    SELECT user_id FROM users
                    WHERE collision_detection_enabled = 1
                    ORDER BY user_id
                    """
                ).fetchall()
        except sqlite3.Error as e:
            raise DataAccessError(f"Failed to list opted-in users: {e}") from e
        return [row["user_id"] for row in rows]

    def get_recently_active_users(self, since: datetime) -> list[str]:
        try:
            with self._reader() as conn:
                rows = conn.execute(
                    """
                    SELECT user_id FROM users
                    WHERE collision_detection_enabled = 1 AND updated_at >= ?
                    ORDER BY user_id
                    """,
                    (to_db_timestamp(since),),
                ).fetchall()
        except sqlite3.Error as e:
            raise DataAccessError(f"Failed to list active users: {e}") from e
        return [row["user_id"] for row in rows]

    # === ConnectionStoreProtocol ===

    def record_shared_events(
        self, pair: UserPair, candidates: Sequence[SharedEventCandidate]
    ) -> ConnectionWriteResult:
        """Create or update the pair's connection and append shared events.

        The lookup, the connection write and the event inserts happen inside
        one ``BEGIN IMMEDIATE`` transaction, so concurrent writers for the
        same pair are serialized by SQLite's write lock.

        Raises:
            RepositoryError: On storage errors
        """
        summary = summarize_batch(candidates)
        now = utc_now()

        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM connections WHERE user_a_id = ? AND user_b_id = ?",
                    (pair.user_a_id, pair.user_b_id),
                ).fetchone()

                if row is None:
                    connection = new_connection_from_batch(pair, summary, now=now)
                    conn.execute(
                        """
                        INSERT INTO connections (
                            connection_id, user_a_id, user_b_id, connection_types,
                            shared_event_count, first_shared_event, last_shared_event,
                            strength, hidden, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            str(connection.connection_id),
                            connection.user_a_id,
                            connection.user_b_id,
                            connection_types_to_json(connection.connection_types),
                            connection.shared_event_count,
                            to_db_timestamp(connection.first_shared_event),
                            to_db_timestamp(connection.last_shared_event),
                            connection.strength,
                            0,
                            to_db_timestamp(connection.created_at),
                            to_db_timestamp(connection.updated_at),
                        ),
                    )
                    created = True
                else:
                    connection = merge_batch_into_connection(
                        connection_from_row(row), summary, now=now
                    )
                    conn.execute(
                        """
                        UPDATE connections SET
                            connection_types = ?,
                            shared_event_count = ?,
                            first_shared_event = ?,
                            last_shared_event = ?,
                            updated_at = ?
                        WHERE connection_id = ?
                        """,
                        (
                            connection_types_to_json(connection.connection_types),
                            connection.shared_event_count,
                            to_db_timestamp(connection.first_shared_event),
                            to_db_timestamp(connection.last_shared_event),
                            to_db_timestamp(connection.updated_at),
                            str(connection.connection_id),
                        ),
                    )
                    created = False

                events = [
                    SharedEvent.from_candidate(connection.connection_id, candidate)
                    for candidate in candidates
                ]
                conn.executemany(
                    f"INSERT INTO shared_events ({SHARED_EVENT_COLUMNS}) "
                    f"VALUES ({', '.join('?' for _ in range(15))})",
                    [
                        shared_event_params(event, format_timestamp=to_db_timestamp)
                        for event in events
                    ],
                )
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to record shared events for {pair.key}: {e}"
            ) from e

        return ConnectionWriteResult(
            connection=connection, created=created, events_added=len(events)
        )

    def get_connection(self, pair: UserPair) -> Connection | None:
        try:
            with self._reader() as conn:
                row = conn.execute(
                    "SELECT * FROM connections WHERE user_a_id = ? AND user_b_id = ?",
                    (pair.user_a_id, pair.user_b_id),
                ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to load connection {pair.key}: {e}") from e
        return connection_from_row(row) if row else None

    def get_connection_by_id(self, connection_id: UUID) -> Connection | None:
        try:
            with self._reader() as conn:
                row = conn.execute(
                    "SELECT * FROM connections WHERE connection_id = ?",
                    (str(connection_id),),
                ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to load connection {connection_id}: {e}"
            ) from e
        return connection_from_row(row) if row else None

    def get_connections_for_user(
        self, user_id: str, *, include_hidden: bool = False
    ) -> list[Connection]:
        query = """
            SELECT * FROM connections
            WHERE (user_a_id = ? OR user_b_id = ?)
        """
        if not include_hidden:
            query += " AND hidden = 0"
        query += " ORDER BY strength DESC, created_at ASC"

        try:
            with self._reader() as conn:
                rows = conn.execute(query, (user_id, user_id)).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to load connections for {user_id}: {e}"
            ) from e
        return [connection_from_row(row) for row in rows]

    def get_shared_events(
        self, connection_id: UUID, *, newest_first: bool = False
    ) -> list[SharedEvent]:
        direction = "DESC" if newest_first else "ASC"
        try:
            with self._reader() as conn:
                rows = conn.execute(
                    f"""
                    SELECT * FROM shared_events WHERE connection_id = ?
                    ORDER BY event_date {direction}, rowid {direction}
                    """,
                    (str(connection_id),),
                ).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to load shared events for {connection_id}: {e}"
            ) from e
        return [shared_event_from_row(row) for row in rows]

    def update_connection_strength(self, connection_id: UUID, strength: float) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE connections SET strength = ? WHERE connection_id = ?",
                    (strength, str(connection_id)),
                )
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to update strength for {connection_id}: {e}"
            ) from e

    def set_connection_hidden(self, connection_id: UUID, hidden: bool) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE connections SET hidden = ?, updated_at = ?
                    WHERE connection_id = ?
                    """,
                    (1 if hidden else 0, to_db_timestamp(utc_now()), str(connection_id)),
                )
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to update visibility for {connection_id}: {e}"
            ) from e

    def collision_exists(
        self, initiator_id: str, target_id: str, connection_id: UUID
    ) -> bool:
        try:
            with self._reader() as conn:
                row = conn.execute(
                    """
                    SELECT 1 FROM memory_collisions
                    WHERE initiator_id = ? AND target_id = ? AND connection_id = ?
                    """,
                    (initiator_id, target_id, str(connection_id)),
                ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to check collision: {e}") from e
        return row is not None

    def save_collision(self, collision: MemoryCollision) -> bool:
        """Insert a collision; returns False if the direction already exists."""
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO memory_collisions (
                        collision_id, initiator_id, target_id, connection_id,
                        event_summary, status, created_at, responded_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(collision.collision_id),
                        collision.initiator_id,
                        collision.target_id,
                        str(collision.connection_id),
                        collision.event_summary,
                        collision.status.value,
                        to_db_timestamp(collision.created_at),
                        to_db_timestamp(collision.responded_at),
                    ),
                )
                inserted = cursor.rowcount == 1
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save collision: {e}") from e
        return inserted

    def get_collision(self, collision_id: UUID) -> MemoryCollision | None:
        try:
            with self._reader() as conn:
                row = conn.execute(
                    "SELECT * FROM memory_collisions WHERE collision_id = ?",
                    (str(collision_id),),
                ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to load collision {collision_id}: {e}") from e
        return collision_from_row(row) if row else None

    def get_collisions_for_target(
        self, target_id: str, *, status: CollisionStatus | None = None
    ) -> list[MemoryCollision]:
        query = "SELECT * FROM memory_collisions WHERE target_id = ?"
        params: list[str] = [target_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, rowid DESC"

        try:
            with self._reader() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to load collisions for {target_id}: {e}"
            ) from e
        return [collision_from_row(row) for row in rows]

    def update_collision_status(
        self, collision_id: UUID, status: CollisionStatus, responded_at: datetime
    ) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE memory_collisions SET status = ?, responded_at = ?
                    WHERE collision_id = ?
                    """,
                    (status.value, to_db_timestamp(responded_at), str(collision_id)),
                )
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to update collision {collision_id}: {e}"
            ) from e
