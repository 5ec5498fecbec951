"""Application settings with Pydantic Settings validation.

Secrets (database password) are loaded from the environment or a .env file.
Non-sensitive configuration is loaded from config/main.yaml and any other
config/*.yaml files, validated against JSON schemas when available, and
applied underneath environment-provided values.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from memory_graph.config.logging_config import get_logger
from memory_graph.domain.detection_constants import (
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_SPATIAL_RADIUS_METERS,
    DEFAULT_TEMPORAL_WINDOW_HOURS,
)

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 10
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "memory_graph"

FULL_SWEEP_HOUR_UTC_DEFAULT: Final[int] = 4
INCREMENTAL_SWEEP_INTERVAL_HOURS_DEFAULT: Final[int] = 6
ACTIVE_USER_WINDOW_HOURS_DEFAULT: Final[int] = 24

CONFIG_DIR: Final[Path] = Path("config")

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. config/main.yaml
    2. All other config/*.yaml files (sorted alphabetically)

    Returns:
        Merged configuration dictionary

    Raises:
        ValueError: If a file fails schema validation
    """
    merged_config: dict[str, Any] = {}
    if not config_dir.is_dir():
        return merged_config

    yaml_files = sorted(
        config_dir.glob("*.yaml"), key=lambda p: (p.name != "main.yaml", p.name)
    )

    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(file_config, schema_name, str(yaml_file), config_dir)
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.debug("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the environment / .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from environment) ===

    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (optional)"
    )

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        detection_config = config.get("detection") or {}
        _assign(
            "detection_temporal_window_hours",
            detection_config.get("temporal_window_hours"),
        )
        _assign(
            "detection_spatial_radius_meters",
            detection_config.get("spatial_radius_meters"),
        )
        _assign("detection_min_confidence", detection_config.get("min_confidence"))

        scheduler_config = config.get("scheduler") or {}
        _assign("full_sweep_hour_utc", scheduler_config.get("full_sweep_hour_utc"))
        _assign(
            "incremental_sweep_interval_hours",
            scheduler_config.get("incremental_interval_hours"),
        )
        _assign(
            "active_user_window_hours", scheduler_config.get("active_window_hours")
        )
        _assign("sweep_max_workers", scheduler_config.get("max_workers"))

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        postgres_config = database_config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))
        _assign("postgres_min_connections", postgres_config.get("min_connections"))
        _assign("postgres_max_connections", postgres_config.get("max_connections"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_enabled", metrics_config.get("enabled"))
        _assign("metrics_port", metrics_config.get("port"))

    # Detection configuration
    detection_temporal_window_hours: float = Field(
        default=DEFAULT_TEMPORAL_WINDOW_HOURS,
        gt=0,
        description="Inclusive window for temporal overlaps (hours)",
    )
    detection_spatial_radius_meters: float = Field(
        default=DEFAULT_SPATIAL_RADIUS_METERS,
        gt=0,
        description="Inclusive radius for spatial overlaps (meters)",
    )
    detection_min_confidence: float = Field(
        default=DEFAULT_MIN_CONFIDENCE,
        ge=0.0,
        le=1.0,
        description="Minimum candidate confidence to persist",
    )

    # Scheduler configuration
    full_sweep_hour_utc: int = Field(
        default=FULL_SWEEP_HOUR_UTC_DEFAULT,
        ge=0,
        le=23,
        description="Hour of day (UTC) of the daily full sweep",
    )
    incremental_sweep_interval_hours: int = Field(
        default=INCREMENTAL_SWEEP_INTERVAL_HOURS_DEFAULT,
        ge=1,
        description="Interval between incremental sweeps (hours)",
    )
    active_user_window_hours: int = Field(
        default=ACTIVE_USER_WINDOW_HOURS_DEFAULT,
        ge=1,
        description="Trailing window defining recently active users (hours)",
    )
    sweep_max_workers: int = Field(
        default=1,
        ge=1,
        description="Worker threads evaluating pairs within a sweep (1 = sequential)",
    )

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(
        default="data/memory_graph.db", description="SQLite database path"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_database: str = Field(
        default="memory_graph", description="PostgreSQL database name"
    )
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum number of connections in PostgreSQL pool",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum number of connections in PostgreSQL pool",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="PostgreSQL statement timeout in milliseconds",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="PostgreSQL connection timeout in seconds",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="Application name for PostgreSQL connections",
    )
    postgres_ssl_mode: str | None = Field(
        default=None,
        description="Optional SSL mode for PostgreSQL connections (e.g., require)",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    metrics_enabled: bool = Field(
        default=False, description="Start the Prometheus exporter in long-running scripts"
    )
    metrics_port: int = Field(default=9000, description="Prometheus exporter port")


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
