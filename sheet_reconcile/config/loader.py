from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import ReconcileConfig, StoreConfig

"""Config loader.

Responsibilities:
- Load the YAML config (default config/reconcile.yml)
- Validate it against config_schema.json (shipped next to this module)
- Apply defaults and build ReconcileConfig

Connection values for the postgres backend may be overridden by environment
variables at connect time (see sheet_reconcile.store.postgres.resolve_dsn).
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "ConfigError",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/reconcile.yml")
SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or invalid, or the data does
            not satisfy it.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {where})" if where else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ReconcileConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    store_raw = data["store"]
    store = StoreConfig(
        backend=store_raw["backend"],
        path=store_raw.get("path"),
        host=store_raw.get("host"),
        port=store_raw.get("port"),
        user=store_raw.get("user"),
        password=store_raw.get("password"),
        database=store_raw.get("database"),
        dsn=store_raw.get("dsn"),
        schema=store_raw.get("schema", "public"),
    )
    return ReconcileConfig(
        target_table=data["target_table"],
        store=store,
        rules_table=data.get("rules_table", "RULES_CONFIG"),
        log_table=data.get("log_table", "IMPORT_LOG"),
        batch_size=data.get("batch_size", 100),
        rules=data.get("rules"),
        key_columns=data.get("key_columns"),
        key_mode=data.get("key_mode"),
    )
