"""Run collision detection for one user against every other opted-in user."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from memory_graph.adapters.repository_factory import create_repository
from memory_graph.config.logging_config import get_logger
from memory_graph.config.settings import get_settings
from memory_graph.domain.exceptions import MemoryGraphError
from memory_graph.use_cases.collision_sweep import CollisionSweepScheduler
from memory_graph.use_cases.record_connection import ConnectionWriter

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Detect collisions for a single user")
    parser.add_argument("user_id", help="User to evaluate")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    repository = create_repository(settings)
    try:
        scheduler = CollisionSweepScheduler(
            repository, ConnectionWriter(repository), settings
        )
        try:
            persisted = scheduler.detect_for_user(args.user_id)
        except MemoryGraphError as exc:
            logger.error("manual_detection_failed", user_id=args.user_id, error=str(exc))
            return 1
    finally:
        repository.close()

    logger.info(
        "manual_detection_summary",
        user_id=args.user_id,
        collision_count=persisted,
        message=f"Found {persisted} potential collisions",
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
