from __future__ import annotations

from pathlib import Path

import pytest

from bulk_import.config.loader import (
    SCHEMA_PATH,
    ConfigError,
    ImportConfig,
    config_from_dict,
    load_config,
    resolve_dsn,
)
from bulk_import.models import DuplicateStrategy


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.batch_size == 5
    assert cfg.delay_between_rows_ms == 0
    assert cfg.duplicate_strategy is DuplicateStrategy.SKIP
    assert cfg.sample_size == 20
    assert cfg.database.host == "localhost"
    assert cfg.database.port == 5432
    assert cfg.database.table == "business_profiles"


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg == ImportConfig()
    assert cfg.batch_size == 10
    assert cfg.delay_between_rows_ms == 100
    assert cfg.enable_registry_enrichment is False
    assert cfg.skip_enrichment_on_error is True
    assert cfg.database.to_dsn() is None


def test_empty_file_gives_defaults(temp_workdir: Path):
    p = temp_workdir / "config" / "empty.yml"
    p.write_text("", encoding="utf-8")
    assert load_config(p) == ImportConfig()


def test_load_config_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(temp_workdir / "config" / "not_exists.yml")


def test_load_config_invalid_yaml(temp_workdir: Path):
    p = temp_workdir / "config" / "bad.yml"
    p.write_text("batch_size: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(p)


def test_load_config_root_must_be_mapping(temp_workdir: Path):
    p = temp_workdir / "config" / "list.yml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(p)


@pytest.mark.parametrize(
    "data",
    [
        {"batch_size": 0},
        {"delay_between_rows_ms": -1},
        {"duplicate_strategy": "ask"},
        {"extra_field": "not_allowed"},
        {"database": {"table": "drop table;"}},
    ],
)
def test_schema_violations(data: dict):
    with pytest.raises(ConfigError, match="config validation failed"):
        config_from_dict(data)


def test_column_overrides_validated():
    cfg = config_from_dict({"column_overrides": {"Dénomination": "company_name", "Notes": "_skip"}})
    assert cfg.column_overrides == {"Dénomination": "company_name", "Notes": "_skip"}
    with pytest.raises(ConfigError, match="column_overrides"):
        config_from_dict({"column_overrides": {"Notes": "not_a_field"}})


def test_to_options_converts_delay_to_seconds():
    cfg = config_from_dict({"delay_between_rows_ms": 250, "duplicate_strategy": "create", "batch_size": 3})
    options = cfg.to_options("u1")
    assert options.user_id == "u1"
    assert options.delay_between_rows == pytest.approx(0.25)
    assert options.duplicate_strategy is DuplicateStrategy.CREATE
    assert options.batch_size == 3


def test_dsn_from_database_section(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.database.to_dsn() == "host=localhost port=5432 user=appuser password=secret dbname=appdb"


def test_database_url_env_overrides(write_config: Path):
    cfg = load_config(write_config)
    assert resolve_dsn(cfg, {"DATABASE_URL": "postgresql://x@db/prod"}) == "postgresql://x@db/prod"
    assert resolve_dsn(cfg, {"DATABASE_URL": ""}).startswith("host=localhost")
    assert resolve_dsn(ImportConfig(), {}) is None


def test_schema_file_is_shipped():
    assert SCHEMA_PATH.exists()
