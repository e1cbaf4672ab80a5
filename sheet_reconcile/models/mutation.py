from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Mutation and rollback models.

A Mutation is one record-level change submitted to the store. The engine never
edits existing rows in place; proposed changes only exist as Mutations until
the BatchApplier submits them.

A RollbackRecord holds what is needed to invert one import: identifiers of
inserted rows (known only after the store assigned them) and, per updated row,
the values of every changed field as they were before the import.
"""

__all__ = [
    "MutationKind",
    "Mutation",
    "RowPreImage",
    "RollbackRecord",
]


class MutationKind(Enum):
    ADD = "AddRecord"
    UPDATE = "UpdateRecord"
    REMOVE = "RemoveRecord"


@dataclass(frozen=True)
class Mutation:
    kind: MutationKind
    table_id: str
    row_id: int | None = None  # None for ADD
    fields: dict[str, Any] = field(default_factory=dict)
    previous: dict[str, Any] | None = None  # pre-image of changed fields (UPDATE only)
    row_number: int | None = None  # source row that produced the mutation

    @classmethod
    def add(cls, table_id: str, fields: dict[str, Any], *, row_number: int | None = None) -> Mutation:
        return cls(MutationKind.ADD, table_id, None, dict(fields), row_number=row_number)

    @classmethod
    def update(
        cls,
        table_id: str,
        row_id: int,
        fields: dict[str, Any],
        *,
        previous: dict[str, Any] | None = None,
        row_number: int | None = None,
    ) -> Mutation:
        return cls(
            MutationKind.UPDATE,
            table_id,
            row_id,
            dict(fields),
            previous=dict(previous) if previous is not None else None,
            row_number=row_number,
        )

    @classmethod
    def remove(cls, table_id: str, row_id: int) -> Mutation:
        return cls(MutationKind.REMOVE, table_id, row_id)


@dataclass(frozen=True)
class RowPreImage:
    row_id: int
    previous_values: dict[str, Any]


@dataclass(frozen=True)
class RollbackRecord:
    table_id: str
    added: list[int] = field(default_factory=list)
    updated: list[RowPreImage] = field(default_factory=list)
    log_row_id: int | None = None  # IMPORT_LOG row carrying this record

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.updated

    @classmethod
    def from_applied(
        cls, table_id: str, applied: Iterable[Mutation], added_ids: Iterable[int]
    ) -> RollbackRecord:
        """Build the record from mutations the store accepted.

        Updates from failed batches never reach ``applied`` so they are not
        restored on rollback.
        """
        updated = [
            RowPreImage(m.row_id, dict(m.previous or {}))
            for m in applied
            if m.kind is MutationKind.UPDATE and m.row_id is not None
        ]
        return cls(table_id=table_id, added=list(added_ids), updated=updated)

    def merge(self, other: RollbackRecord) -> RollbackRecord:
        return RollbackRecord(
            table_id=self.table_id,
            added=self.added + other.added,
            updated=self.updated + other.updated,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "table_id": self.table_id,
            "added": list(self.added),
            "updated": [
                {"id": item.row_id, "previous_values": item.previous_values}
                for item in self.updated
            ],
        }

    def to_json(self) -> str:
        # Stored values may be dates or decimals coming back from the store
        return json.dumps(self.to_payload(), ensure_ascii=False, default=str)

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], *, table_id: str | None = None, log_row_id: int | None = None
    ) -> RollbackRecord:
        """Rebuild a record from its serialized form.

        Raises ValueError when the payload does not have the expected shape.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"rollback payload must be an object, got {type(payload).__name__}")
        try:
            added = [int(i) for i in payload.get("added") or []]
            updated = []
            for item in payload.get("updated") or []:
                # "previousValues" is the key written by earlier versions of the widget
                previous = item.get("previous_values", item.get("previousValues")) or {}
                updated.append(RowPreImage(int(item["id"]), dict(previous)))
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"malformed rollback payload: {e}") from e
        return cls(
            table_id=payload.get("table_id") or table_id or "",
            added=added,
            updated=updated,
            log_row_id=log_row_id,
        )

    @classmethod
    def from_json(
        cls, raw: str, *, table_id: str | None = None, log_row_id: int | None = None
    ) -> RollbackRecord:
        # json.JSONDecodeError is a ValueError subclass
        return cls.from_payload(json.loads(raw), table_id=table_id, log_row_id=log_row_id)
