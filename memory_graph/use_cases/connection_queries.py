"""Read-side queries over the connection graph.

Used by the presentation layer to render a user's network, shared-event
timelines and pending collision prompts.
"""

from collections import Counter
from uuid import UUID

from memory_graph.config.logging_config import get_logger
from memory_graph.domain.exceptions import CollisionNotFoundError, ValidationError
from memory_graph.domain.models import (
    CollisionAction,
    CollisionStatus,
    ConnectionGraph,
    ConnectionStats,
    ConnectionType,
    GraphEdge,
    GraphNode,
    MemoryCollision,
    SharedEvent,
    UserConnection,
    canonical_pair,
    utc_now,
)
from memory_graph.domain.protocols import RepositoryProtocol

logger = get_logger(__name__)

_ACTION_TO_STATUS = {
    CollisionAction.CONFIRM: CollisionStatus.CONFIRMED,
    CollisionAction.DECLINE: CollisionStatus.DECLINED,
}


def get_connection_graph(repository: RepositoryProtocol, user_id: str) -> ConnectionGraph:
    """Return the user-centered graph of visible connections.

    Nodes are the central user followed by connected users, strongest first;
    each edge carries strength and shared-event count.

    Example:
        >>> graph = get_connection_graph(repo, "alice")
        >>> [node.user_id for node in graph.nodes]
        ['alice', 'bob']
    """
    connections = repository.get_connections_for_user(user_id)
    other_ids = [connection.other_user(user_id) for connection in connections]
    profiles = repository.get_user_profiles([user_id, *other_ids])

    central = profiles.get(user_id)
    nodes = [
        GraphNode(
            user_id=user_id,
            display_name=central.display_name if central else None,
            node_type="central",
        )
    ]
    edges: list[GraphEdge] = []

    for connection, other_id in zip(connections, other_ids, strict=True):
        profile = profiles.get(other_id)
        nodes.append(
            GraphNode(
                user_id=other_id,
                display_name=profile.display_name if profile else None,
                node_type="connection",
            )
        )
        edges.append(
            GraphEdge(
                source=user_id,
                target=other_id,
                strength=connection.strength,
                shared_event_count=connection.shared_event_count,
                connection_types=sorted(
                    connection.connection_types, key=lambda t: t.value
                ),
            )
        )

    return ConnectionGraph(nodes=nodes, edges=edges)


def get_shared_events(
    repository: RepositoryProtocol, user_id: str, other_user_id: str
) -> list[SharedEvent]:
    """Shared events between two users, newest first.

    Argument order does not matter; an unconnected pair yields an empty list.
    """
    connection = repository.get_connection(canonical_pair(user_id, other_user_id))
    if connection is None:
        return []
    return repository.get_shared_events(connection.connection_id, newest_first=True)


def get_user_connections(
    repository: RepositoryProtocol, user_id: str
) -> list[UserConnection]:
    """Visible connections of a user, strongest first."""
    return [
        UserConnection(connection=connection, other_user_id=connection.other_user(user_id))
        for connection in repository.get_connections_for_user(user_id)
    ]


def get_pending_collisions(
    repository: RepositoryProtocol, user_id: str
) -> list[MemoryCollision]:
    """Collisions addressed to ``user_id`` that still await a response."""
    return repository.get_collisions_for_target(
        user_id, status=CollisionStatus.PENDING
    )


def respond_to_collision(
    repository: RepositoryProtocol,
    user_id: str,
    collision_id: UUID,
    action: CollisionAction | str,
) -> MemoryCollision:
    """Confirm or decline a collision on behalf of its target.

    Raises:
        CollisionNotFoundError: If the collision does not exist
        ValidationError: If the action is unknown or ``user_id`` is not the target
    """
    try:
        parsed_action = CollisionAction(action)
    except ValueError as e:
        raise ValidationError(f"Unknown collision action: {action!r}") from e

    collision = repository.get_collision(collision_id)
    if collision is None:
        raise CollisionNotFoundError(str(collision_id))
    if collision.target_id != user_id:
        raise ValidationError(
            f"User {user_id} cannot respond to collision {collision_id}"
        )

    status = _ACTION_TO_STATUS[parsed_action]
    responded_at = utc_now()
    repository.update_collision_status(collision_id, status, responded_at)

    logger.info(
        "collision_responded",
        collision_id=str(collision_id),
        user_id=user_id,
        status=status.value,
    )
    return collision.model_copy(update={"status": status, "responded_at": responded_at})


def get_connection_stats(repository: RepositoryProtocol, user_id: str) -> ConnectionStats:
    """Aggregate statistics over the user's visible connections."""
    connections = repository.get_connections_for_user(user_id)
    pending = len(get_pending_collisions(repository, user_id))

    if not connections:
        return ConnectionStats(pending_collisions=pending)

    strongest = max(connections, key=lambda c: c.strength)
    by_type: Counter[ConnectionType] = Counter()
    for connection in connections:
        by_type.update(connection.connection_types)

    return ConnectionStats(
        total_connections=len(connections),
        total_shared_events=sum(c.shared_event_count for c in connections),
        average_strength=round(
            sum(c.strength for c in connections) / len(connections), 2
        ),
        strongest_connection_user_id=strongest.other_user(user_id),
        strongest_connection_strength=strongest.strength,
        pending_collisions=pending,
        connections_by_type=dict(by_type),
    )


def set_connection_hidden(
    repository: RepositoryProtocol, user_id: str, other_user_id: str, hidden: bool
) -> bool:
    """Hide or unhide the connection between two users.

    Returns:
        False if the pair has no connection

    Raises:
        ValidationError: If both ids are equal
    """
    connection = repository.get_connection(canonical_pair(user_id, other_user_id))
    if connection is None:
        return False
    repository.set_connection_hidden(connection.connection_id, hidden)
    logger.info(
        "connection_visibility_changed",
        connection_id=str(connection.connection_id),
        user_id=user_id,
        hidden=hidden,
    )
    return True


__all__ = [
    "get_connection_graph",
    "get_connection_stats",
    "get_pending_collisions",
    "get_shared_events",
    "get_user_connections",
    "respond_to_collision",
    "set_connection_hidden",
]
