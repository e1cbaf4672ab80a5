from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.extras import execute_values

from ..models.config_models import StoreConfig
from ..models.mutation import Mutation, MutationKind
from ..models.schema import ColumnMeta
from ..services.coercion import is_empty
from .base import HIDDEN_COLUMNS, ROW_ID, StoreError, TableData

"""PostgreSQL table store (psycopg2).

Tables are expected to carry a serial ``id`` primary key. Column metadata is
read from information_schema: generated columns are reported as formula
columns (generation expression as the body) and single-column foreign keys as
``Ref:<table>`` references.

One apply_mutations call is one transaction: consecutive insertions sharing
the same column set are sent with execute_values (``RETURNING id``), updates
and deletions one statement each. Any psycopg2 error rolls the batch back and
is raised as StoreError.
"""

__all__ = [
    "PostgresStore",
    "resolve_dsn",
    "pg_type_to_declared",
]

logger = logging.getLogger(__name__)

_PG_TYPES = {
    "smallint": "Int",
    "integer": "Int",
    "bigint": "Int",
    "numeric": "Numeric",
    "real": "Numeric",
    "double precision": "Numeric",
    "date": "Date",
    "timestamp without time zone": "DateTime",
    "timestamp with time zone": "DateTime",
    "boolean": "Bool",
}

_DECLARED_TO_PG = {
    "Int": "integer",
    "Numeric": "double precision",
    "Date": "date",
    "DateTime": "timestamp",
    "Bool": "boolean",
    "Text": "text",
    "Any": "text",
}

_COLUMNS_SQL = """
SELECT column_name, data_type, is_generated, generation_expression
FROM information_schema.columns
WHERE table_schema = %s AND table_name = %s
ORDER BY ordinal_position
"""

_FOREIGN_KEYS_SQL = """
SELECT kcu.column_name, ccu.table_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON tc.constraint_name = ccu.constraint_name AND tc.table_schema = ccu.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = %s AND tc.table_name = %s
"""


def pg_type_to_declared(data_type: str) -> str:
    return _PG_TYPES.get(data_type.lower(), "Text")


def _declared_to_pg(declared: str) -> sql.Composable:
    for prefix in ("Ref:", "RefList:"):
        if declared.startswith(prefix):
            return sql.SQL("integer")
    return sql.SQL(_DECLARED_TO_PG.get(declared, "text"))


def resolve_dsn(cfg: StoreConfig) -> str:
    """Resolve the connection string.

    Environment first (DATABASE_URL / PGDSN for a full DSN, then the individual
    PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE values), config values
    as fallback.
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", cfg.host or "localhost")
    port = os.getenv("PGPORT", str(cfg.port) if cfg.port else "5432")
    user = os.getenv("PGUSER", cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", cfg.password or "")
    database = os.getenv("PGDATABASE", cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


class PostgresStore:
    def __init__(self, conn: Any, schema: str = "public") -> None:
        self._conn = conn
        self._schema = schema
        self._ref_columns: dict[str, set[str]] = {}
        self._typed_columns: dict[str, set[str]] = {}  # non-text columns

    @classmethod
    def connect(cls, cfg: StoreConfig) -> PostgresStore:
        try:
            conn = psycopg2.connect(resolve_dsn(cfg))
        except psycopg2.Error as e:
            raise StoreError(f"connection failed: {e}") from e
        conn.autocommit = False
        return cls(conn, schema=cfg.schema)

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()

    def _table(self, table_id: str) -> sql.Composable:
        return sql.Identifier(self._schema, table_id)

    def _query(self, query: Any, params: Sequence[Any] = ()) -> tuple[list[str], list[tuple]]:
        try:
            with self._conn, self._conn.cursor() as cur:
                cur.execute(query, params)
                names = [d[0] for d in cur.description or []]
                return names, cur.fetchall()
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    # ------------------------------------------------------ TableStore
    def list_tables(self) -> list[str]:
        _, rows = self._query(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = %s AND table_type = 'BASE TABLE' ORDER BY table_name",
            (self._schema,),
        )
        return [r[0] for r in rows]

    def fetch_table(self, table_id: str) -> TableData:
        query = sql.SQL("SELECT * FROM {} ORDER BY {}").format(
            self._table(table_id), sql.Identifier(ROW_ID)
        )
        names, rows = self._query(query)
        if ROW_ID not in names:
            raise StoreError(f"table {table_id} has no {ROW_ID} column")
        columns = {name: [_plain(r[i]) for r in rows] for i, name in enumerate(names)}
        return TableData(table_id=table_id, columns=columns)

    def fetch_column_metadata(self, table_id: str) -> dict[str, ColumnMeta] | None:
        _, cols = self._query(_COLUMNS_SQL, (self._schema, table_id))
        if not cols:
            return None
        _, fks = self._query(_FOREIGN_KEYS_SQL, (self._schema, table_id))
        refs = {column: target for column, target in fks}
        self._ref_columns[table_id] = set(refs)
        self._typed_columns[table_id] = {
            name for name, data_type, _, _ in cols if pg_type_to_declared(data_type) != "Text"
        }

        meta: dict[str, ColumnMeta] = {}
        for name, data_type, is_generated, expression in cols:
            if name in HIDDEN_COLUMNS:
                continue
            declared = f"Ref:{refs[name]}" if name in refs else pg_type_to_declared(data_type)
            generated = is_generated == "ALWAYS"
            meta[name] = ColumnMeta(
                declared_type=declared,
                is_formula=generated,
                formula=(expression or "") if generated else "",
            )
        return meta

    def apply_mutations(self, mutations: Sequence[Mutation]) -> list[Any]:
        results: list[Any] = []
        try:
            with self._conn, self._conn.cursor() as cur:
                i = 0
                while i < len(mutations):
                    m = mutations[i]
                    if m.kind is MutationKind.ADD:
                        j = i
                        keys = sorted(m.fields)
                        while (
                            j < len(mutations)
                            and mutations[j].kind is MutationKind.ADD
                            and mutations[j].table_id == m.table_id
                            and sorted(mutations[j].fields) == keys
                        ):
                            j += 1
                        results.extend(self._insert(cur, m.table_id, keys, mutations[i:j]))
                        i = j
                        continue
                    if m.kind is MutationKind.UPDATE:
                        self._update(cur, m)
                    else:
                        self._delete(cur, m)
                    results.append(None)
                    i += 1
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
        return results

    def create_table(self, table_id: str, columns: Sequence[tuple[str, str]]) -> None:
        defs = [sql.SQL("{} SERIAL PRIMARY KEY").format(sql.Identifier(ROW_ID))]
        defs += [
            sql.SQL("{} {}").format(sql.Identifier(name), _declared_to_pg(col_type))
            for name, col_type in columns
        ]
        query = sql.SQL("CREATE TABLE {} ({})").format(self._table(table_id), sql.SQL(", ").join(defs))
        self._execute(query)
        logger.info(f"created table {table_id}")

    def add_column(self, table_id: str, column_id: str, column_type: str) -> None:
        query = sql.SQL("ALTER TABLE {} ADD COLUMN {} {}").format(
            self._table(table_id), sql.Identifier(column_id), _declared_to_pg(column_type)
        )
        self._execute(query)

    # --------------------------------------------------------- helpers
    def _execute(self, query: Any) -> None:
        try:
            with self._conn, self._conn.cursor() as cur:
                cur.execute(query)
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def _value(self, table_id: str, column: str, value: Any) -> Any:
        # Empty reference (0) is stored as NULL so foreign keys stay valid
        if value == 0 and column in self._ref_columns.get(table_id, ()):
            return None
        # Blank cells go to date and numeric columns as NULL
        if is_empty(value) and column in self._typed_columns.get(table_id, ()):
            return None
        return value

    def _insert(self, cur: Any, table_id: str, keys: list[str], batch: Sequence[Mutation]) -> list[Any]:
        if not keys:
            query = sql.SQL("INSERT INTO {} DEFAULT VALUES RETURNING {}").format(
                self._table(table_id), sql.Identifier(ROW_ID)
            )
            ids = []
            for _ in batch:
                cur.execute(query)
                ids.append(cur.fetchone()[0])
            return ids
        query = sql.SQL("INSERT INTO {} ({}) VALUES %s RETURNING {}").format(
            self._table(table_id),
            sql.SQL(", ").join(sql.Identifier(k) for k in keys),
            sql.Identifier(ROW_ID),
        )
        rows = [tuple(self._value(table_id, k, m.fields[k]) for k in keys) for m in batch]
        returned = execute_values(cur, query, rows, page_size=len(rows), fetch=True)
        return [r[0] for r in returned]

    def _update(self, cur: Any, m: Mutation) -> None:
        if not m.fields:
            return
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(k)) for k in m.fields
        )
        query = sql.SQL("UPDATE {} SET {} WHERE {} = %s").format(
            self._table(m.table_id), assignments, sql.Identifier(ROW_ID)
        )
        params = [self._value(m.table_id, k, v) for k, v in m.fields.items()] + [m.row_id]
        cur.execute(query, params)
        if cur.rowcount == 0:
            raise StoreError(f"invalid row id {m.row_id} in {m.table_id}")

    def _delete(self, cur: Any, m: Mutation) -> None:
        query = sql.SQL("DELETE FROM {} WHERE {} = %s").format(
            self._table(m.table_id), sql.Identifier(ROW_ID)
        )
        cur.execute(query, (m.row_id,))
        if cur.rowcount == 0:
            raise StoreError(f"invalid row id {m.row_id} in {m.table_id}")
