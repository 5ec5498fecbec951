"""Correlation scopes for sweep and detection logs."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

from memory_graph.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"


@contextmanager
def correlation_scope(
    existing_id: str | None = None, **context: Any
) -> Iterator[str]:
    """Bind a correlation id plus sweep context for the lifetime of the block.

    Log entries emitted by the calling thread inside the block carry the
    bound keys.

    Example:
        >>> with correlation_scope(sweep="full") as correlation_id:
        ...     logger.info("sweep_started")  # includes correlation_id, sweep
    """
    correlation_id = existing_id or str(uuid4())
    bound = {CORRELATION_ID_KEY: correlation_id, **context}
    bind_context(**bound)
    try:
        yield correlation_id
    finally:
        unbind_context(*bound)


__all__ = ["CORRELATION_ID_KEY", "correlation_scope"]
