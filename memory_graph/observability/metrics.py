"""Prometheus metrics for collision detection sweeps.

Metrics are registered on import; the HTTP exporter is only started on demand
by long-running entry points (see ``scripts/run_collision_scheduler.py``).
"""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from memory_graph.config.logging_config import get_logger

logger = get_logger(__name__)

SWEEPS_TOTAL: Final[Counter] = Counter(
    "memory_graph_sweeps_total",
    "Total number of sweep triggers by kind and outcome",
    labelnames=("kind", "outcome"),
)

SWEEP_DURATION_SECONDS: Final[Histogram] = Histogram(
    "memory_graph_sweep_duration_seconds",
    "Duration of collision detection sweeps in seconds",
    labelnames=("kind",),
)

PAIRS_PROCESSED_TOTAL: Final[Counter] = Counter(
    "memory_graph_pairs_processed_total",
    "Total number of user pairs evaluated by outcome",
    labelnames=("outcome",),
)

CANDIDATES_PERSISTED_TOTAL: Final[Counter] = Counter(
    "memory_graph_candidates_persisted_total",
    "Shared-event candidates persisted by event type",
    labelnames=("event_type",),
)

COLLISIONS_CREATED_TOTAL: Final[Counter] = Counter(
    "memory_graph_collisions_created_total",
    "Memory collision notification records created",
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False


def ensure_metrics_exporter(port: int) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "CANDIDATES_PERSISTED_TOTAL",
    "COLLISIONS_CREATED_TOTAL",
    "PAIRS_PROCESSED_TOTAL",
    "SWEEPS_TOTAL",
    "SWEEP_DURATION_SECONDS",
    "ensure_metrics_exporter",
]
