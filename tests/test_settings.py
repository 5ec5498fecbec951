"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from memory_graph.config.settings import Settings, deep_merge, load_all_configs


def test_defaults_match_reference_values() -> None:
    settings = Settings()

    assert settings.detection_temporal_window_hours == 4
    assert settings.detection_spatial_radius_meters == 100
    assert settings.detection_min_confidence == 0.3
    assert settings.full_sweep_hour_utc == 4
    assert settings.incremental_sweep_interval_hours == 6
    assert settings.active_user_window_hours == 24


def test_environment_overrides_yaml(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DETECTION_MIN_CONFIDENCE", "0.5")
    monkeypatch.setenv("DATABASE_TYPE", "postgres")

    settings = Settings()

    assert settings.detection_min_confidence == 0.5
    assert settings.database_type == "postgres"


def test_postgres_password_is_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTGRES_PASSWORD", "hunter2")

    settings = Settings()

    assert settings.postgres_password.get_secret_value() == "hunter2"
    assert "hunter2" not in repr(settings)


def test_deep_merge_nested() -> None:
    base = {"detection": {"temporal_window_hours": 4, "min_confidence": 0.3}}
    override = {"detection": {"min_confidence": 0.5}, "logging": {"level": "DEBUG"}}

    merged = deep_merge(base, override)

    assert merged == {
        "detection": {"temporal_window_hours": 4, "min_confidence": 0.5},
        "logging": {"level": "DEBUG"},
    }


def _write_config_dir(tmp_path: Path, main: dict, extra: dict | None = None) -> Path:
    config_dir = tmp_path / "config"
    schema_dir = config_dir / "schemas"
    schema_dir.mkdir(parents=True)
    repo_schema = Path("config/schemas/main.schema.json")
    (schema_dir / "main.schema.json").write_text(
        repo_schema.read_text(encoding="utf-8"), encoding="utf-8"
    )
    (config_dir / "main.yaml").write_text(yaml.safe_dump(main), encoding="utf-8")
    if extra is not None:
        (config_dir / "local.yaml").write_text(yaml.safe_dump(extra), encoding="utf-8")
    return config_dir


def test_load_all_configs_layers_files(tmp_path: Path) -> None:
    config_dir = _write_config_dir(
        tmp_path,
        {"detection": {"min_confidence": 0.3}},
        {"detection": {"min_confidence": 0.4}},
    )

    merged = load_all_configs(config_dir)

    assert merged["detection"]["min_confidence"] == 0.4


def test_load_all_configs_rejects_invalid_main(tmp_path: Path) -> None:
    config_dir = _write_config_dir(tmp_path, {"detection": {"min_confidence": 1.5}})

    with pytest.raises(ValueError, match="Config validation failed for main"):
        load_all_configs(config_dir)


def test_missing_config_dir_yields_empty(tmp_path: Path) -> None:
    assert load_all_configs(tmp_path / "missing") == {}
