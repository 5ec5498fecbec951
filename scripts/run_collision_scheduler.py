"""Collision detection scheduler.

Runs a daily full sweep and periodic incremental sweeps until SIGTERM/SIGINT,
or a single sweep with ``--run-once``.
"""

from __future__ import annotations

import argparse
import sys
from functools import partial
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from memory_graph.adapters.repository_factory import create_repository
from memory_graph.config.logging_config import get_logger
from memory_graph.config.settings import Settings, get_settings
from memory_graph.domain.protocols import RepositoryProtocol
from memory_graph.observability.metrics import ensure_metrics_exporter
from memory_graph.use_cases.collision_sweep import (
    CollisionSweepScheduler,
    next_full_sweep_at,
    next_incremental_sweep_at,
)
from memory_graph.use_cases.record_connection import ConnectionWriter

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the collision detection scheduler")
    parser.add_argument(
        "--run-once",
        choices=("full", "incremental"),
        default=None,
        help="Run a single sweep of the given kind and exit",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def build_scheduler(
    repository: RepositoryProtocol, settings: Settings
) -> CollisionSweepScheduler:
    writer = ConnectionWriter(repository)
    return CollisionSweepScheduler(repository, writer, settings)


def build_jobs(
    scheduler: CollisionSweepScheduler, settings: Settings
) -> list[pipeline_runtime.ScheduledJob]:
    return [
        pipeline_runtime.ScheduledJob(
            name="full_sweep",
            next_due=partial(next_full_sweep_at, hour_utc=settings.full_sweep_hour_utc),
            action=scheduler.run_full_sweep,
        ),
        pipeline_runtime.ScheduledJob(
            name="incremental_sweep",
            next_due=partial(
                next_incremental_sweep_at,
                interval_hours=settings.incremental_sweep_interval_hours,
            ),
            action=scheduler.run_incremental_sweep,
        ),
    ]


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    repository = create_repository(settings)
    try:
        scheduler = build_scheduler(repository, settings)

        if args.run_once == "full":
            result = scheduler.run_full_sweep()
            return 1 if result.pairs_failed else 0
        if args.run_once == "incremental":
            result = scheduler.run_incremental_sweep()
            return 1 if result.pairs_failed else 0

        if settings.metrics_enabled:
            ensure_metrics_exporter(settings.metrics_port)

        controller = pipeline_runtime.create_shutdown_controller()
        pipeline_runtime.install_signal_handlers(controller)

        for schedule in scheduler.status().schedules:
            logger.info(
                "schedule_registered",
                kind=schedule.kind.value,
                description=schedule.description,
            )

        pipeline_runtime.run_scheduled_jobs(build_jobs(scheduler, settings), controller)
        return 0
    finally:
        repository.close()


if __name__ == "__main__":
    raise SystemExit(main())
