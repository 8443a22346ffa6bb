from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.fields import parse_target
from ..models.import_models import DuplicateStrategy, ImportBatchStatus, ImportOptions
from ..store.profile_store import PROFILE_TABLE

"""Configuration loading.

- YAML file (optional; every key has a default)
- validated against config_schema.json (shipped next to this module)
- DATABASE_URL in the environment overrides the configured DSN
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "SCHEMA_PATH",
    "config_from_dict",
    "load_config",
    "resolve_dsn",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DSN_ENV_VAR = "DATABASE_URL"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    table: str = PROFILE_TABLE

    def to_dsn(self) -> str | None:
        """Explicit dsn, else a libpq keyword string built from the set fields."""
        if self.dsn:
            return self.dsn
        parts = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.database,
        }
        pairs = [f"{k}={v}" for k, v in parts.items() if v not in (None, "")]
        return " ".join(pairs) if pairs else None


@dataclass(frozen=True)
class ImportConfig:
    batch_size: int = 10
    delay_between_rows_ms: int = 100
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    enable_registry_enrichment: bool = False
    skip_enrichment_on_error: bool = True
    sample_size: int = 50
    error_log_dir: str = "logs"
    column_overrides: dict[str, str] = field(default_factory=dict)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def to_options(
        self,
        user_id: str,
        on_progress: Callable[[ImportBatchStatus], None] | None = None,
    ) -> ImportOptions:
        return ImportOptions(
            user_id=user_id,
            duplicate_strategy=self.duplicate_strategy,
            enable_registry_enrichment=self.enable_registry_enrichment,
            skip_enrichment_on_error=self.skip_enrichment_on_error,
            batch_size=self.batch_size,
            delay_between_rows=self.delay_between_rows_ms / 1000,
            on_progress=on_progress,
        )


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or invalid, or data fails validation
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"config validation failed at {where}: {e.message}") from e


def _validate_overrides(overrides: Mapping[str, str]) -> None:
    for column, target in overrides.items():
        try:
            parse_target(target)
        except ValueError as e:
            raise ConfigError(f"column_overrides['{column}']: {e}") from e


def config_from_dict(data: Mapping[str, Any]) -> ImportConfig:
    """Build an ImportConfig from already parsed data (validated here)."""
    _validate_config_schema(dict(data))
    overrides = dict(data.get("column_overrides", {}))
    _validate_overrides(overrides)
    db_raw = data.get("database", {})
    defaults = ImportConfig()
    return ImportConfig(
        batch_size=data.get("batch_size", defaults.batch_size),
        delay_between_rows_ms=data.get("delay_between_rows_ms", defaults.delay_between_rows_ms),
        duplicate_strategy=DuplicateStrategy(data.get("duplicate_strategy", defaults.duplicate_strategy.value)),
        enable_registry_enrichment=data.get("enable_registry_enrichment", defaults.enable_registry_enrichment),
        skip_enrichment_on_error=data.get("skip_enrichment_on_error", defaults.skip_enrichment_on_error),
        sample_size=data.get("sample_size", defaults.sample_size),
        error_log_dir=data.get("error_log_dir", defaults.error_log_dir),
        column_overrides=overrides,
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
            table=db_raw.get("table", PROFILE_TABLE),
        ),
    )


def load_config(path: Path | None) -> ImportConfig:
    """Load ``path`` (YAML); None returns the defaults.

    Raises:
        ConfigError
    """
    if path is None:
        return ImportConfig()
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    return config_from_dict(data)


def resolve_dsn(config: ImportConfig, environ: Mapping[str, str] | None = None) -> str | None:
    """DATABASE_URL (if set and non-empty) wins over the configured database."""
    env = os.environ if environ is None else environ
    return env.get(DSN_ENV_VAR) or config.database.to_dsn()
