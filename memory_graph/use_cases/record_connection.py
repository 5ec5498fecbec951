"""Connection store writer use case.

Persists a filtered candidate batch for one pair, recomputes the pair's
strength from the full shared-event set and hands new connections to the
collision notifier.
"""

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from memory_graph.config.logging_config import get_logger
from memory_graph.domain.models import (
    ConnectionWriteResult,
    SharedEventCandidate,
    UserPair,
)
from memory_graph.domain.protocols import ConnectionStoreProtocol
from memory_graph.observability.metrics import CANDIDATES_PERSISTED_TOTAL
from memory_graph.services.strength_scorer import calculate_breakdown
from memory_graph.use_cases.notify_collision import CollisionNotifier

logger = get_logger(__name__)


@dataclass
class _PairLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class PairLockRegistry:
    """Per-pair locks serializing read-modify-write cycles in one process.

    An entry lives only while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _PairLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, pair: UserPair) -> Iterator[None]:
        key = pair.key
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _PairLock()
            entry.holders += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


class ConnectionWriter:
    """Writes candidate batches and keeps the strength score current."""

    def __init__(
        self,
        store: ConnectionStoreProtocol,
        notifier: CollisionNotifier | None = None,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or CollisionNotifier(store)
        self._locks = locks if locks is not None else PairLockRegistry()

    def record(
        self,
        pair: UserPair,
        candidates: Sequence[SharedEventCandidate],
        *,
        now: datetime | None = None,
    ) -> ConnectionWriteResult:
        """Persist ``candidates`` for ``pair``.

        Args:
            pair: Canonical user pair
            candidates: Filtered, date-ordered, non-empty candidate batch
            now: Reference time for the recency sub-score

        Returns:
            ConnectionWriteResult with the connection as stored after scoring

        Raises:
            ValueError: If ``candidates`` is empty
            RepositoryError: On storage errors
        """
        if not candidates:
            raise ValueError("Cannot record an empty candidate batch")

        with self._locks.hold(pair):
            result = self._store.record_shared_events(pair, candidates)
            connection = result.connection

            events = self._store.get_shared_events(connection.connection_id)
            breakdown = calculate_breakdown(connection, events, now=now)
            strength = breakdown.total
            self._store.update_connection_strength(connection.connection_id, strength)
            connection = connection.model_copy(update={"strength": strength})

            logger.info(
                "connection_recorded",
                pair=pair.key,
                connection_id=str(connection.connection_id),
                created=result.created,
                events_added=result.events_added,
                shared_event_count=connection.shared_event_count,
                strength=strength,
                frequency=breakdown.frequency,
                recency=round(breakdown.recency, 2),
                diversity=round(breakdown.diversity, 2),
                confidence=round(breakdown.confidence, 2),
            )

            # Idempotent; also fills directions missed by an earlier failed write
            collisions_created = self._notifier.notify_new_connection(connection)

        for candidate in candidates:
            CANDIDATES_PERSISTED_TOTAL.labels(
                event_type=candidate.event_type.value
            ).inc()

        return result.model_copy(
            update={
                "connection": connection,
                "collisions_created": collisions_created,
            }
        )


__all__ = ["ConnectionWriter", "PairLockRegistry"]
