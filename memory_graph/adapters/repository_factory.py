"""Factory for creating database repository instances."""

from typing import cast

from memory_graph.adapters.postgres_repository import PostgresRepository
from memory_graph.adapters.sqlite_repository import SQLiteRepository
from memory_graph.config.logging_config import get_logger
from memory_graph.config.settings import Settings
from memory_graph.domain.protocols import RepositoryProtocol

logger = get_logger(__name__)


def create_repository(settings: Settings) -> RepositoryProtocol:
    """Create appropriate repository based on settings.

    Args:
        settings: Application settings

    Returns:
        Repository instance (SQLite or PostgreSQL)

    Raises:
        ValueError: If database_type is not supported or the password is missing
        RepositoryError: On connection errors
    """
    if settings.database_type == "sqlite":
        logger.info("repository_sqlite_selected", path=settings.db_path)
        return cast(RepositoryProtocol, SQLiteRepository(db_path=settings.db_path))

    elif settings.database_type == "postgres":
        if not settings.postgres_password:
            raise ValueError(
                "POSTGRES_PASSWORD environment variable must be set when using PostgreSQL"
            )

        logger.info(
            "repository_postgres_selected",
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_database,
            user=settings.postgres_user,
        )
        return cast(
            RepositoryProtocol,
            PostgresRepository(
                host=settings.postgres_host,
                port=settings.postgres_port,
                database=settings.postgres_database,
                user=settings.postgres_user,
                password=settings.postgres_password.get_secret_value(),
                settings=settings,
            ),
        )

    else:
        raise ValueError(
            f"Unsupported database type: {settings.database_type}. "
            f"Must be 'sqlite' or 'postgres'"
        )
