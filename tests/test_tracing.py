"""Tests for correlation scopes."""

import structlog

from memory_graph.observability.tracing import correlation_scope


def test_scope_binds_and_unbinds_context() -> None:
    with correlation_scope("abc123", sweep="full") as correlation_id:
        bound = structlog.contextvars.get_contextvars()
        assert correlation_id == "abc123"
        assert bound["correlation_id"] == "abc123"
        assert bound["sweep"] == "full"

    remaining = structlog.contextvars.get_contextvars()
    assert "correlation_id" not in remaining
    assert "sweep" not in remaining


def test_scope_generates_id_when_missing() -> None:
    with correlation_scope() as correlation_id:
        bound = structlog.contextvars.get_contextvars()
        assert bound["correlation_id"] == correlation_id

    assert correlation_id
