"""Common runtime helpers for long-running scripts."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from types import FrameType
from typing import Protocol

from memory_graph.config.logging_config import get_logger, setup_logging
from memory_graph.config.settings import Settings
from memory_graph.domain.models import utc_now

logger = get_logger(__name__)

MAX_WAIT_SECONDS = 60.0


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float) -> bool: ...


@dataclass
class _ShutdownController:
    """Mutable shutdown state shared across signal handlers and loops."""

    _event: threading.Event

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def request(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("shutdown_signal_received", signal=sig_name)
        self._event.set()


def create_shutdown_controller() -> _ShutdownController:
    return _ShutdownController(threading.Event())


def install_signal_handlers(controller: _ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers for graceful shutdown."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        controller.request(signum, frame)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    setup_logging(log_level=settings.log_level, json_logs=json_logs)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)


@dataclass
class ScheduledJob:
    """A named action with a function computing its next due time."""

    name: str
    next_due: Callable[[datetime], datetime]
    action: Callable[[], object]


def run_scheduled_jobs(
    jobs: Sequence[ScheduledJob],
    controller: ShutdownSignal,
    *,
    clock: Callable[[], datetime] = utc_now,
    max_wait_seconds: float = MAX_WAIT_SECONDS,
) -> int:
    """Fire each job at its due times until shutdown is requested.

    Waits in slices of at most ``max_wait_seconds`` so shutdown signals are
    honoured promptly. A failing job is logged and rescheduled.

    Returns:
        Number of job executions
    """
    start = clock()
    due = {job.name: job.next_due(start) for job in jobs}
    for job in jobs:
        logger.info("job_scheduled", job=job.name, next_run=due[job.name].isoformat())

    executions = 0
    while not controller.is_set():
        now = clock()
        for job in jobs:
            if due[job.name] > now:
                continue
            executions += 1
            try:
                job.action()
            except Exception:  # noqa: BLE001
                logger.exception("scheduled_job_failed", job=job.name)
            due[job.name] = job.next_due(clock())
            logger.info(
                "job_scheduled", job=job.name, next_run=due[job.name].isoformat()
            )

        wait_seconds = (min(due.values()) - clock()).total_seconds()
        controller.wait(min(max(wait_seconds, 0.0), max_wait_seconds))

    logger.info("scheduler_loop_stopped", executions=executions)
    return executions


__all__ = [
    "ScheduledJob",
    "ShutdownSignal",
    "create_shutdown_controller",
    "initialize_logging",
    "install_signal_handlers",
    "run_scheduled_jobs",
]
