from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""Config dataclasses for the reconciliation tool.

Built by sheet_reconcile.config.loader from the validated YAML document.
"""


@dataclass(frozen=True)
class StoreConfig:
    """Host store connection settings.

    backend "json" keeps the tables in a JSON snapshot file (``path``).
    backend "postgres" connects with psycopg2; environment variables take
    precedence over the connection values below.
    """
    backend: str
    path: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    schema: str = "public"


@dataclass(frozen=True)
class ReconcileConfig:
    """Root configuration object for an import run."""
    target_table: str  # table receiving the spreadsheet rows
    store: StoreConfig
    rules_table: str = "RULES_CONFIG"
    log_table: str = "IMPORT_LOG"
    batch_size: int = 100
    # Optional rules given inline instead of the rules table (flat or enriched shape)
    rules: dict[str, Any] | None = None
    key_columns: list[str] | None = None
    key_mode: str | None = None
