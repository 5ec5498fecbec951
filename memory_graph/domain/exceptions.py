"""Custom exception hierarchy for the memory graph engine.

Following error taxonomy: retryable, non-retryable, validation, not-found.
Nothing in the engine retries on its own; the split tells callers what is
worth re-triggering.
"""


class MemoryGraphError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(MemoryGraphError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(MemoryGraphError):
    """Errors that should not be retried (validation, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class CollisionNotFoundError(NonRetryableError):
    """Requested memory collision does not exist."""

    def __init__(self, collision_id: str) -> None:
        self.collision_id = collision_id
        super().__init__(f"Memory collision not found: {collision_id}")


class DataAccessError(RetryableError):
    """Reading user event data from the data-access collaborator failed."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
