"""PostgreSQL repository implementation using psycopg2 with connection pooling.

The schema is owned by the Alembic migrations under ``alembic/versions``.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from time import sleep
from typing import TYPE_CHECKING, Any, Final
from uuid import UUID

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor, execute_values, register_uuid

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

if TYPE_CHECKING:
    from memory_graph.config.settings import Settings


DEFAULT_POOL_MIN_CONNECTIONS: Final[int] = 1
DEFAULT_POOL_MAX_CONNECTIONS: Final[int] = 10
POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0

logger = get_logger(__name__)

_UUID_ADAPTER_REGISTERED: bool = False
_UUID_ADAPTER_LOCK: Lock = Lock()


def _ensure_uuid_adapter_registered() -> None:
    """Register psycopg2 adapters required by the repository."""

    global _UUID_ADAPTER_REGISTERED
    if _UUID_ADAPTER_REGISTERED:
        return

    with _UUID_ADAPTER_LOCK:
        if _UUID_ADAPTER_REGISTERED:
            return
        register_uuid()
        _UUID_ADAPTER_REGISTERED = True


class PostgresRepository:
    """PostgreSQL repository backed by a connection pool."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        settings: "Settings | None" = None,
    ):
        """Initialize PostgreSQL repository with pooled connections."""
        self._host = host
        self._port = port
        self._database = database
        self._user = user
        self._password = password

        self._statement_timeout_ms = (
            settings.postgres_statement_timeout_ms if settings else 10_000
        )
        self._connect_timeout_seconds = (
            settings.postgres_connect_timeout_seconds if settings else 10
        )
        self._application_name = (
            settings.postgres_application_name if settings else "memory_graph"
        )
        self._pool_min_connections = (
            settings.postgres_min_connections
            if settings
            else DEFAULT_POOL_MIN_CONNECTIONS
        )
        self._pool_max_connections = (
            settings.postgres_max_connections
            if settings
            else DEFAULT_POOL_MAX_CONNECTIONS
        )
        self._ssl_mode = settings.postgres_ssl_mode if settings else None

        self._pool_in_use_count = 0
        self._pool_lock = Lock()

        if self._pool_min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if self._pool_max_connections < self._pool_min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to postgres_min_connections"
            )

        _ensure_uuid_adapter_registered()
        self._pool = self._create_pool()

    def _create_pool(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Create a PostgreSQL connection pool with validation."""
        options = " ".join(
            [
                f"-c statement_timeout={self._statement_timeout_ms}",
                f"-c application_name={self._application_name}",
            ]
        )

        conn_kwargs: dict[str, Any] = {
            "host": self._host,
            "port": self._port,
            "database": self._database,
            "user": self._user,
            "password": self._password,
            "connect_timeout": self._connect_timeout_seconds,
            "options": options,
        }
        if self._ssl_mode:
            conn_kwargs["sslmode"] = self._ssl_mode

        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                self._pool_min_connections,
                self._pool_max_connections,
                **conn_kwargs,
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        try:
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            finally:
                pool.putconn(conn)
        except PsycopgError as exc:
            pool.closeall()
            raise RepositoryError(f"PostgreSQL validation query failed: {exc}") from exc

        logger.info(
            "postgres_pool_initialized",
            host=self._host,
            port=self._port,
            database=self._database,
            min_connections=self._pool_min_connections,
            max_connections=self._pool_max_connections,
            statement_timeout_ms=self._statement_timeout_ms,
        )
        return pool

    def _acquire_connection_with_retry(self) -> extensions.connection:
        """Acquire a connection from the pool with exponential backoff."""
        attempt = 0
        delay = POOL_ACQUIRE_BASE_DELAY_SECONDS
        while True:
            attempt += 1
            try:
                conn = self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT:
                    logger.error(
                        "postgres_pool_acquire_failed",
                        attempts=attempt,
                        max_connections=self._pool_max_connections,
                        in_use=self._pool_in_use_count,
                    )
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc

                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                    in_use=self._pool_in_use_count,
                )
                sleep(delay)
                delay = min(delay * 2, POOL_ACQUIRE_MAX_DELAY_SECONDS)
                continue

            with self._pool_lock:
                self._pool_in_use_count += 1
            return conn

    def _release_connection(
        self,
        conn: extensions.connection,
        *,
        close: bool,
        reason: str | None,
    ) -> None:
        """Return a connection to the pool and update usage counters."""
        try:
            self._pool.putconn(conn, close=close)
        except PsycopgError:
            logger.warning(
                "postgres_putconn_failed",
                database=self._database,
                close=close,
                reason=reason,
                exc_info=True,
            )
        finally:
            with self._pool_lock:
                if self._pool_in_use_count > 0:
                    self._pool_in_use_count -= 1
            if close and reason:
                logger.warning("postgres_connection_closed", reason=reason)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        with self._pool_lock:
            self._pool_in_use_count = 0
        logger.info("postgres_pool_closed", database=self._database)

    @contextmanager
    def _get_connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection from the pool and ensure cleanup."""
        conn: extensions.connection | None = None
        try:
            conn = self._acquire_connection_with_retry()
            conn.autocommit = False
            yield conn
        except PsycopgError as exc:
            if conn is not None:
                try:
                    conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_rollback_failed",
                        database=self._database,
                        exc_info=True,
                    )
                finally:
                    self._release_connection(conn, close=True, reason="rollback_error")
                    conn = None
            raise RepositoryError(f"PostgreSQL connection error: {exc}") from exc
        finally:
            if conn is not None:
                try:
                    status = conn.get_transaction_status()
                    if status in (
                        extensions.TRANSACTION_STATUS_INTRANS,
                        extensions.TRANSACTION_STATUS_INERROR,
                    ):
                        conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_cleanup_failed",
                        database=self._database,
                        exc_info=True,
                    )
                    self._release_connection(conn, close=True, reason="cleanup_error")
                else:
                    self._release_connection(conn, close=False, reason=None)

    def _fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, tuple(params))
                return list(cur.fetchall())

    def _fetch_one(self, query: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, tuple(params))
                return cur.fetchone()

    def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, tuple(params))
                rowcount = cur.rowcount
            conn.commit()
        return rowcount

    # === Seeding (owned by ingestion in production) ===

    def save_users(self, profiles: Sequence[UserProfile]) -> int:
        """Upsert user profiles.

        Raises:
            RepositoryError: On storage errors
        """
        if not profiles:
            return 0
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                execute_values(
                    cur,
                    """
                    INSERT INTO users (
                        user_id, email, display_name,
                        collision_detection_enabled, updated_at
                    ) VALUES %s
                    ON CONFLICT (user_id) DO UPDATE SET
                        email = EXCLUDED.email,
                        display_name = EXCLUDED.display_name,
                        collision_detection_enabled = EXCLUDED.collision_detection_enabled,
                        updated_at = EXCLUDED.updated_at
                    """,
                    [
                        (
                            p.user_id,
                            p.email,
                            p.display_name,
                            p.collision_detection_enabled,
                            p.updated_at,
                        )
                        for p in profiles
                    ],
                )
            conn.commit()
        return len(profiles)

    def save_posts(self, posts: Sequence[SocialPost]) -> int:
        """Upsert social posts."""
        if not posts:
            return 0
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                execute_values(
                    cur,
                    """
                    INSERT INTO social_posts (
                        post_id, user_id, created_at, content, provider
                    ) VALUES %s
                    ON CONFLICT (post_id) DO UPDATE SET
                        user_id = EXCLUDED.user_id,
                        created_at = EXCLUDED.created_at,
                        content = EXCLUDED.content,
                        provider = EXCLUDED.provider
                    """,
                    [
                        (p.post_id, p.user_id, p.created_at, p.content, p.provider)
                        for p in posts
                    ],
                )
            conn.commit()
        return len(posts)

    def save_media(self, media: Sequence[MediaItem]) -> int:
        """Upsert media items."""
        if not media:
            return 0
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                execute_values(
                    cur,
                    """
                    INSERT INTO media_items (
                        media_id, user_id, created_at, latitude, longitude,
                        location, url
                    ) VALUES %s
                    ON CONFLICT (media_id) DO UPDATE SET
                        user_id = EXCLUDED.user_id,
                        created_at = EXCLUDED.created_at,
                        latitude = EXCLUDED.latitude,
                        longitude = EXCLUDED.longitude,
                        location = EXCLUDED.location,
                        url = EXCLUDED.url
                    """,
                    [
                        (
                            m.media_id,
                            m.user_id,
                            m.created_at,
                            m.latitude,
                            m.longitude,
                            m.location,
                            m.url,
                        )
                        for m in media
                    ],
                )
            conn.commit()
        return len(media)

    # === UserDataSourceProtocol ===

    def get_user_event_data(self, user_id: str) -> UserEventData | None:
        try:
            with self._get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute("SELECT * FROM users WHERE user_id = %s", (user_id,))
                    user_row = cur.fetchone()
                    if user_row is None:
                        return None
                    cur.execute(
                        """
                        SELECT * FROM social_posts WHERE user_id = %s
                        ORDER BY created_at, post_id
                        """,
                        (user_id,),
                    )
                    post_rows = cur.fetchall()
                    cur.execute(
                        """
                        SELECT * FROM media_items WHERE user_id = %s
                        ORDER BY created_at, media_id
                        """,
                        (user_id,),
                    )
                    media_rows = cur.fetchall()
        except RepositoryError as e:
            raise DataAccessError(f"Failed to load event data for {user_id}: {e}") from e

        return UserEventData(
            profile=profile_from_row(user_row),
            posts=[post_from_row(row) for row in post_rows],
            media=[media_from_row(row) for row in media_rows],
        )

    def get_user_profiles(self, user_ids: Sequence[str]) -> dict[str, UserProfile]:
        if not user_ids:
            return {}
        try:
            rows = self._fetch_all(
                "SELECT * FROM users WHERE user_id = ANY(%s)", (list(user_ids),)
            )
        except RepositoryError as e:
            raise DataAccessError(f"Failed to load user profiles: {e}") from e
        return {row["user_id"]: profile_from_row(row) for row in rows}

    def get_opted_in_users(self) -> list[str]:
        try:
            rows = self._fetch_all(
                """
                SELECT user_id FROM users
                WHERE collision_detection_enabled
                ORDER BY user_id COLLATE "C"
                """
            )
        except RepositoryError as e:
            raise DataAccessError(f"Failed to list opted-in users: {e}") from e
        return [row["user_id"] for row in rows]

    def get_recently_active_users(self, since: datetime) -> list[str]:
        try:
            rows = self._fetch_all(
                """
                SELECT user_id FROM users
                WHERE collision_detection_enabled AND updated_at >= %s
                ORDER BY user_id COLLATE "C"
                """,
                (since,),
            )
        except RepositoryError as e:
            raise DataAccessError(f"Failed to list active users: {e}") from e
        return [row["user_id"] for row in rows]

    # === ConnectionStoreProtocol ===

    def record_shared_events(
        self, pair: UserPair, candidates: Sequence[SharedEventCandidate]
    ) -> ConnectionWriteResult:
        """Create or update the pair's connection and append shared events.

        ``INSERT ... ON CONFLICT DO NOTHING`` decides which writer creates
        the row; everyone else locks the existing row with ``FOR UPDATE``
        before merging, all in one transaction.

        Raises:
            RepositoryError: On storage errors
        """
        summary = summarize_batch(candidates)
        now = utc_now()
        fresh = new_connection_from_batch(pair, summary, now=now)

        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    INSERT INTO connections (
                        connection_id, user_a_id, user_b_id, connection_types,
                        shared_event_count, first_shared_event, last_shared_event,
                        strength, hidden, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, FALSE, %s, %s)
                    ON CONFLICT (user_a_id, user_b_id) DO NOTHING
                    RETURNING connection_id
                    """,
                    (
                        fresh.connection_id,
                        fresh.user_a_id,
                        fresh.user_b_id,
                        connection_types_to_json(fresh.connection_types),
                        fresh.shared_event_count,
                        fresh.first_shared_event,
                        fresh.last_shared_event,
                        fresh.strength,
                        fresh.created_at,
                        fresh.updated_at,
                    ),
                )
                created = cur.fetchone() is not None

                if created:
                    connection = fresh
                else:
                    cur.execute(
                        """
                        SELECT * FROM connections
                        WHERE user_a_id = %s AND user_b_id = %s
                        FOR UPDATE
                        """,
                        (pair.user_a_id, pair.user_b_id),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise RepositoryError(
                            f"Connection for {pair.key} vanished during update"
                        )
                    connection = merge_batch_into_connection(
                        connection_from_row(row), summary, now=now
                    )
                    cur.execute(
                        """
                        UPDATE connections SET
                            connection_types = %s,
                            shared_event_count = %s,
                            first_shared_event = %s,
                            last_shared_event = %s,
                            updated_at = %s
                        WHERE connection_id = %s
                        """,
                        (
                            connection_types_to_json(connection.connection_types),
                            connection.shared_event_count,
                            connection.first_shared_event,
                            connection.last_shared_event,
                            connection.updated_at,
                            connection.connection_id,
                        ),
                    )

                events = [
                    SharedEvent.from_candidate(connection.connection_id, candidate)
                    for candidate in candidates
                ]
                execute_values(
                    cur,
                    f"INSERT INTO shared_events ({SHARED_EVENT_COLUMNS}) VALUES %s",
                    [shared_event_params(event) for event in events],
                )
            conn.commit()

        return ConnectionWriteResult(
            connection=connection, created=created, events_added=len(events)
        )

    def get_connection(self, pair: UserPair) -> Connection | None:
        row = self._fetch_one(
            "SELECT * FROM connections WHERE user_a_id = %s AND user_b_id = %s",
            (pair.user_a_id, pair.user_b_id),
        )
        return connection_from_row(row) if row else None

    def get_connection_by_id(self, connection_id: UUID) -> Connection | None:
        row = self._fetch_one(
            "SELECT * FROM connections WHERE connection_id = %s", (connection_id,)
        )
        return connection_from_row(row) if row else None

    def get_connections_for_user(
        self, user_id: str, *, include_hidden: bool = False
    ) -> list[Connection]:
        query = "SELECT * FROM connections WHERE (user_a_id = %s OR user_b_id = %s)"
        if not include_hidden:
            query += " AND NOT hidden"
        query += " ORDER BY strength DESC, created_at ASC"
        rows = self._fetch_all(query, (user_id, user_id))
        return [connection_from_row(row) for row in rows]

    def get_shared_events(
        self, connection_id: UUID, *, newest_first: bool = False
    ) -> list[SharedEvent]:
        direction = "DESC" if newest_first else "ASC"
        rows = self._fetch_all(
            f"""
            SELECT * FROM shared_events WHERE connection_id = %s
            ORDER BY event_date {direction}, created_at {direction},
                shared_event_id {direction}
            """,
            (connection_id,),
        )
        return [shared_event_from_row(row) for row in rows]

    def update_connection_strength(self, connection_id: UUID, strength: float) -> None:
        self._execute(
            "UPDATE connections SET strength = %s WHERE connection_id = %s",
            (strength, connection_id),
        )

    def set_connection_hidden(self, connection_id: UUID, hidden: bool) -> None:
        self._execute(
            "UPDATE connections SET hidden = %s, updated_at = %s WHERE connection_id = %s",
            (hidden, utc_now(), connection_id),
        )

    def collision_exists(
        self, initiator_id: str, target_id: str, connection_id: UUID
    ) -> bool:
        row = self._fetch_one(
            """
            SELECT 1 AS found FROM memory_collisions
            WHERE initiator_id = %s AND target_id = %s AND connection_id = %s
            """,
            (initiator_id, target_id, connection_id),
        )
        return row is not None

    def save_collision(self, collision: MemoryCollision) -> bool:
        """Insert a collision; returns False if the direction already exists."""
        inserted = self._execute(
            """
            INSERT INTO memory_collisions (
                collision_id, initiator_id, target_id, connection_id,
                event_summary, status, created_at, responded_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (initiator_id, target_id, connection_id) DO NOTHING
            """,
            (
                collision.collision_id,
                collision.initiator_id,
                collision.target_id,
                collision.connection_id,
                collision.event_summary,
                collision.status.value,
                collision.created_at,
                collision.responded_at,
            ),
        )
        return inserted == 1

    def get_collision(self, collision_id: UUID) -> MemoryCollision | None:
        row = self._fetch_one(
            "SELECT * FROM memory_collisions WHERE collision_id = %s", (collision_id,)
        )
        return collision_from_row(row) if row else None

    def get_collisions_for_target(
        self, target_id: str, *, status: CollisionStatus | None = None
    ) -> list[MemoryCollision]:
        query = "SELECT * FROM memory_collisions WHERE target_id = %s"
        params: list[Any] = [target_id]
        if status is not None:
            query += " AND status = %s"
            params.append(status.value)
        query += " ORDER BY created_at DESC"
        rows = self._fetch_all(query, params)
        return [collision_from_row(row) for row in rows]

    def update_collision_status(
        self, collision_id: UUID, status: CollisionStatus, responded_at: datetime
    ) -> None:
        self._execute(
            """
            UPDATE memory_collisions SET status = %s, responded_at = %s
            WHERE collision_id = %s
            """,
            (status.value, responded_at, collision_id),
        )
