"""Collision notifier use case.

Emits one MemoryCollision per direction when two users are connected for the
first time. Delivery (push, email, in-app) is owned by the notification
collaborator that reads the memory_collisions table.
"""

from memory_graph.config.logging_config import get_logger
from memory_graph.domain.models import Connection, MemoryCollision
from memory_graph.domain.protocols import ConnectionStoreProtocol
from memory_graph.observability.metrics import COLLISIONS_CREATED_TOTAL

logger = get_logger(__name__)


class CollisionNotifier:
    """Creates A→B and B→A collision records for a new connection."""

    def __init__(self, store: ConnectionStoreProtocol) -> None:
        self._store = store

    def notify_new_connection(self, connection: Connection) -> int:
        """Ensure both directional collisions exist for ``connection``.

        Each direction is guarded by an existence check, so calling this
        twice for the same connection creates nothing the second time.

        Returns:
            Number of collision records created (0-2)
        """
        created = 0
        directions = (
            (connection.user_a_id, connection.user_b_id),
            (connection.user_b_id, connection.user_a_id),
        )

        for initiator_id, target_id in directions:
            if self._store.collision_exists(
                initiator_id, target_id, connection.connection_id
            ):
                logger.debug(
                    "collision_already_exists",
                    initiator_id=initiator_id,
                    target_id=target_id,
                    connection_id=str(connection.connection_id),
                )
                continue

            collision = MemoryCollision(
                initiator_id=initiator_id,
                target_id=target_id,
                connection_id=connection.connection_id,
            )
            if self._store.save_collision(collision):
                created += 1

        if created:
            COLLISIONS_CREATED_TOTAL.inc(created)
            logger.info(
                "collisions_created",
                connection_id=str(connection.connection_id),
                user_a_id=connection.user_a_id,
                user_b_id=connection.user_b_id,
                count=created,
            )
        return created


__all__ = ["CollisionNotifier"]
