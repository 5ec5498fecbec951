"""Collision sweep scheduling policy.

Decides which user pairs to (re)evaluate and when:

- Full sweep: every pair of opted-in users, daily at ``full_sweep_hour_utc``
- Incremental sweep: pairs where at least one user was active within the
  trailing window, every ``incremental_sweep_interval_hours``
- Manual: one user against every other opted-in user, on demand

Only one sweep runs per scheduler instance at a time. A trigger that arrives
while a sweep is running is logged and dropped.
"""

import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from itertools import combinations
from time import perf_counter

from memory_graph.config.logging_config import get_logger
from memory_graph.config.settings import Settings
from memory_graph.domain.models import (
    PairDetectionResult,
    PairOutcome,
    ScheduleDescription,
    SchedulerState,
    SchedulerStatus,
    SweepKind,
    SweepResult,
    UserPair,
    canonical_pair,
    ensure_utc,
    utc_now,
)
from memory_graph.domain.protocols import UserDataSourceProtocol
from memory_graph.observability.metrics import (
    PAIRS_PROCESSED_TOTAL,
    SWEEP_DURATION_SECONDS,
    SWEEPS_TOTAL,
)
from memory_graph.observability.tracing import correlation_scope
from memory_graph.use_cases.detect_collisions import detect_pair
from memory_graph.use_cases.record_connection import ConnectionWriter

logger = get_logger(__name__)


def next_full_sweep_at(after: datetime, hour_utc: int) -> datetime:
    """First daily full-sweep time strictly after ``after``."""
    after = ensure_utc(after)
    candidate = after.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if candidate <= after:
        candidate += timedelta(days=1)
    return candidate


def next_incremental_sweep_at(after: datetime, interval_hours: int) -> datetime:
    """First top-of-hour strictly after ``after`` whose hour is a multiple of the interval.

    Same firing times as the cron expression ``0 */N * * *``.
    """
    after = ensure_utc(after)
    candidate = after.replace(minute=0, second=0, microsecond=0)
    if candidate <= after:
        candidate += timedelta(hours=1)
    while candidate.hour % interval_hours:
        candidate += timedelta(hours=1)
    return candidate


def _unique_pairs(pairs: Iterable[UserPair]) -> list[UserPair]:
    seen: dict[str, UserPair] = {}
    for pair in pairs:
        seen.setdefault(pair.key, pair)
    return list(seen.values())


class CollisionSweepScheduler:
    """Runs full, incremental and manual collision sweeps."""

    def __init__(
        self,
        source: UserDataSourceProtocol,
        writer: ConnectionWriter,
        settings: Settings,
    ) -> None:
        self._source = source
        self._writer = writer
        self._settings = settings
        self._state_lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._last_sweep: SweepResult | None = None

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    def schedules(self) -> list[ScheduleDescription]:
        """Human-readable descriptions of the configured triggers."""
        return [
            ScheduleDescription(
                kind=SweepKind.FULL,
                description=(
                    f"Daily full sweep at {self._settings.full_sweep_hour_utc:02d}:00 UTC"
                ),
            ),
            ScheduleDescription(
                kind=SweepKind.INCREMENTAL,
                description=(
                    "Incremental sweep every "
                    f"{self._settings.incremental_sweep_interval_hours} hours"
                ),
            ),
        ]

    def status(self) -> SchedulerStatus:
        with self._state_lock:
            state = self._state
            last_sweep = self._last_sweep
        return SchedulerStatus(
            state=state,
            is_running=state is SchedulerState.RUNNING,
            schedules=self.schedules(),
            last_sweep=last_sweep,
        )

    # === Triggers ===

    def run_full_sweep(self, *, correlation_id: str | None = None) -> SweepResult:
        """Evaluate every pair of opted-in users."""
        return self._run(SweepKind.FULL, self._full_sweep_pairs, correlation_id)

    def run_incremental_sweep(
        self,
        now: datetime | None = None,
        *,
        correlation_id: str | None = None,
    ) -> SweepResult:
        """Evaluate pairs touching a user active within the trailing window."""
        reference = ensure_utc(now) if now else utc_now()
        since = reference - timedelta(hours=self._settings.active_user_window_hours)
        return self._run(
            SweepKind.INCREMENTAL,
            lambda: self._incremental_sweep_pairs(since),
            correlation_id,
        )

    def detect_for_user(self, user_id: str) -> int:
        """Evaluate one user against every other opted-in user.

        Runs synchronously outside the single-flight guard and lets errors
        propagate to the caller.

        Returns:
            Number of shared-event candidates persisted
        """
        with correlation_scope(sweep="manual", user_id=user_id) as correlation_id:
            others = [
                other for other in self._source.get_opted_in_users() if other != user_id
            ]
            logger.info(
                "manual_detection_started",
                correlation_id=correlation_id,
                user_id=user_id,
                candidate_users=len(others),
            )

            persisted = 0
            for other in others:
                result = detect_pair(
                    self._source, self._writer, self._settings, user_id, other
                )
                PAIRS_PROCESSED_TOTAL.labels(outcome=result.outcome.value).inc()
                persisted += result.candidates_persisted

            logger.info(
                "manual_detection_completed",
                correlation_id=correlation_id,
                user_id=user_id,
                candidates_persisted=persisted,
            )
            return persisted

    # === Pair selection ===

    def _full_sweep_pairs(self) -> tuple[int, list[UserPair]]:
        users = self._source.get_opted_in_users()
        pairs = _unique_pairs(
            canonical_pair(first, second)
            for first, second in combinations(dict.fromkeys(users), 2)
        )
        return len(users), pairs

    def _incremental_sweep_pairs(self, since: datetime) -> tuple[int, list[UserPair]]:
        active = self._source.get_recently_active_users(since)
        if not active:
            return 0, []
        opted_in = self._source.get_opted_in_users()
        pairs = _unique_pairs(
            canonical_pair(active_user, other)
            for active_user in active
            for other in opted_in
            if other != active_user
        )
        return len(active), pairs

    # === Execution ===

    def _try_begin(self) -> bool:
        with self._state_lock:
            if self._state is SchedulerState.RUNNING:
                return False
            self._state = SchedulerState.RUNNING
            return True

    def _finish(self, result: SweepResult | None) -> None:
        with self._state_lock:
            self._state = SchedulerState.IDLE
            if result is not None:
                self._last_sweep = result

    def _run(
        self,
        kind: SweepKind,
        select_pairs: Callable[[], tuple[int, list[UserPair]]],
        correlation_id: str | None,
    ) -> SweepResult:
        with correlation_scope(
            correlation_id, sweep=kind.value
        ) as bound_correlation_id:
            if not self._try_begin():
                logger.warning(
                    "sweep_already_running",
                    correlation_id=bound_correlation_id,
                    kind=kind.value,
                )
                SWEEPS_TOTAL.labels(kind=kind.value, outcome="skipped").inc()
                return SweepResult(
                    kind=kind,
                    correlation_id=bound_correlation_id,
                    skipped=True,
                    finished_at=utc_now(),
                )

            result: SweepResult | None = None
            started = perf_counter()
            started_at = utc_now()
            try:
                users_considered, pairs = select_pairs()
                logger.info(
                    "sweep_started",
                    correlation_id=bound_correlation_id,
                    kind=kind.value,
                    users=users_considered,
                    pairs=len(pairs),
                )

                outcomes = self._evaluate_pairs(pairs)
                result = self._summarize(
                    kind, bound_correlation_id, users_considered, outcomes, started_at
                )
                SWEEPS_TOTAL.labels(kind=kind.value, outcome="completed").inc()
                logger.info(
                    "sweep_completed",
                    correlation_id=bound_correlation_id,
                    kind=kind.value,
                    pairs_evaluated=result.pairs_evaluated,
                    pairs_recorded=result.pairs_recorded,
                    pairs_ineligible=result.pairs_ineligible,
                    pairs_failed=result.pairs_failed,
                    candidates_persisted=result.candidates_persisted,
                    duration_seconds=round(perf_counter() - started, 3),
                )
                return result
            except Exception:
                SWEEPS_TOTAL.labels(kind=kind.value, outcome="failed").inc()
                logger.exception(
                    "sweep_failed",
                    correlation_id=bound_correlation_id,
                    kind=kind.value,
                )
                raise
            finally:
                SWEEP_DURATION_SECONDS.labels(kind=kind.value).observe(
                    perf_counter() - started
                )
                self._finish(result)

    def _evaluate_pairs(self, pairs: Sequence[UserPair]) -> list[PairDetectionResult]:
        workers = self._settings.sweep_max_workers
        if workers <= 1 or len(pairs) <= 1:
            return [self._evaluate_pair(pair) for pair in pairs]

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="collision-sweep"
        ) as executor:
            return list(executor.map(self._evaluate_pair, pairs))

    def _evaluate_pair(self, pair: UserPair) -> PairDetectionResult:
        try:
            result = detect_pair(
                self._source,
                self._writer,
                self._settings,
                pair.user_a_id,
                pair.user_b_id,
            )
        except Exception as exc:
            logger.error(
                "pair_detection_failed",
                user_a_id=pair.user_a_id,
                user_b_id=pair.user_b_id,
                error=str(exc),
                exc_info=True,
            )
            result = PairDetectionResult(pair=pair, outcome=PairOutcome.FAILED)

        PAIRS_PROCESSED_TOTAL.labels(outcome=result.outcome.value).inc()
        return result

    @staticmethod
    def _summarize(
        kind: SweepKind,
        correlation_id: str,
        users_considered: int,
        outcomes: Sequence[PairDetectionResult],
        started_at: datetime,
    ) -> SweepResult:
        def count(outcome: PairOutcome) -> int:
            return sum(1 for item in outcomes if item.outcome is outcome)

        return SweepResult(
            kind=kind,
            correlation_id=correlation_id,
            users_considered=users_considered,
            pairs_evaluated=len(outcomes),
            pairs_recorded=count(PairOutcome.RECORDED),
            pairs_ineligible=count(PairOutcome.INELIGIBLE),
            pairs_failed=count(PairOutcome.FAILED),
            candidates_persisted=sum(item.candidates_persisted for item in outcomes),
            started_at=started_at,
            finished_at=utc_now(),
        )


__all__ = [
    "CollisionSweepScheduler",
    "next_full_sweep_at",
    "next_incremental_sweep_at",
]
