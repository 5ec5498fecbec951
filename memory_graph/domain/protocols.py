"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
``UserDataSourceProtocol`` is the read side owned by the data-access and
account collaborators; ``ConnectionStoreProtocol`` is the engine's own
persistence.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol
from uuid import UUID

from memory_graph.domain.models import (
    CollisionStatus,
    Connection,
    ConnectionWriteResult,
    MemoryCollision,
    SharedEvent,
    SharedEventCandidate,
    UserEventData,
    UserPair,
    UserProfile,
)


class UserDataSourceProtocol(Protocol):
    """Read-only access to users and their synced event records."""

    def get_user_event_data(self, user_id: str) -> UserEventData | None:
        """Fetch profile, posts and media for one user.

        Args:
            user_id: User identifier

        Returns:
            User event data or None if the user is unknown

        Raises:
            DataAccessError: On storage errors
        """
        ...

    def get_user_profiles(self, user_ids: Sequence[str]) -> dict[str, UserProfile]:
        """Fetch profiles keyed by user id; unknown ids are absent."""
        ...

    def get_opted_in_users(self) -> list[str]:
        """Return ids of users with collision detection enabled."""
        ...

    def get_recently_active_users(self, since: datetime) -> list[str]:
        """Return ids of opted-in users updated at or after ``since``."""
        ...


class ConnectionStoreProtocol(Protocol):
    """Persistence for connections, shared events and collisions."""

    def record_shared_events(
        self, pair: UserPair, candidates: Sequence[SharedEventCandidate]
    ) -> ConnectionWriteResult:
        """Create or update the pair's Connection and append SharedEvents.

        Runs in a single transaction. ``candidates`` must be non-empty and
        sorted by event date.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def get_connection(self, pair: UserPair) -> Connection | None:
        """Look up a connection by canonical pair."""
        ...

    def get_connection_by_id(self, connection_id: UUID) -> Connection | None:
        """Look up a connection by id."""
        ...

    def get_connections_for_user(
        self, user_id: str, *, include_hidden: bool = False
    ) -> list[Connection]:
        """Return connections the user belongs to, strongest first."""
        ...

    def get_shared_events(
        self, connection_id: UUID, *, newest_first: bool = False
    ) -> list[SharedEvent]:
        """Return all shared events of a connection ordered by event date."""
        ...

    def update_connection_strength(self, connection_id: UUID, strength: float) -> None:
        """Persist a recomputed strength score."""
        ...

    def set_connection_hidden(self, connection_id: UUID, hidden: bool) -> None:
        """Hide or unhide a connection."""
        ...

    def collision_exists(
        self, initiator_id: str, target_id: str, connection_id: UUID
    ) -> bool:
        """Check whether a collision already exists for the direction."""
        ...

    def save_collision(self, collision: MemoryCollision) -> bool:
        """Insert a memory collision record.

        Returns:
            True if inserted, False if this direction already existed
        """
        ...

    def get_collision(self, collision_id: UUID) -> MemoryCollision | None:
        """Look up a memory collision by id."""
        ...

    def get_collisions_for_target(
        self, target_id: str, *, status: CollisionStatus | None = None
    ) -> list[MemoryCollision]:
        """Return collisions addressed to a user, newest first."""
        ...

    def update_collision_status(
        self, collision_id: UUID, status: CollisionStatus, responded_at: datetime
    ) -> None:
        """Record a user's response to a collision."""
        ...


class RepositoryProtocol(UserDataSourceProtocol, ConnectionStoreProtocol, Protocol):
    """Combined protocol implemented by the bundled database adapters."""

    def close(self) -> None:
        """Release database resources."""
        ...
