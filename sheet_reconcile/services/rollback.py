from __future__ import annotations

import logging
from dataclasses import replace

from ..db.batch_apply import BatchApplier
from ..models.import_result import ImportResult, RollbackResult
from ..models.mutation import Mutation, MutationKind, RollbackRecord
from .import_log import ImportLog
from .session import ImportSession

"""Undo of the last import of a session.

The record to undo is looked up in memory first (last import of this session)
and then in IMPORT_LOG. Undo is best-effort: rows deleted since the import
are reported as warnings, and restoring re-applies the captured values even
if someone changed the row in between.
"""

__all__ = [
    "RollbackManager",
]

logger = logging.getLogger(__name__)


class RollbackManager:
    def __init__(self, session: ImportSession, import_log: ImportLog | None, applier: BatchApplier) -> None:
        self._session = session
        self._log = import_log
        self._applier = applier

    def record_rollback(self, result: ImportResult, log_row_id: int | None = None) -> None:
        """Remember the inverse of ``result`` as the session's last import.

        A later import replaces it even when that import changed nothing.
        """
        if result.dry_run or result.rollback is None:
            return
        self._session.last_rollback = replace(result.rollback, log_row_id=log_row_id)

    def get_last_rollback(self, session_id: str | None = None) -> RollbackRecord | None:
        session_id = session_id or self._session.session_id
        if session_id == self._session.session_id and self._session.last_rollback is not None:
            return self._session.last_rollback
        if self._log is None:
            return None
        return self._log.find_latest_rollback(session_id)

    def rollback_last(self, session_id: str | None = None) -> RollbackResult:
        record = self.get_last_rollback(session_id)
        if record is None:
            return RollbackResult.nothing_to_undo()
        return self.rollback(record)

    def rollback(self, record: RollbackRecord) -> RollbackResult:
        in_memory = record is self._session.last_rollback
        if record.is_empty:
            if in_memory:
                self._session.last_rollback = None
            return RollbackResult.nothing_to_undo()

        table_id = record.table_id or self._session.table_id
        existing_ids = set(self._session.store.fetch_table(table_id).ids)
        mutations: list[Mutation] = []
        warnings: list[str] = []

        for row_id in record.added:
            if row_id in existing_ids:
                mutations.append(Mutation.remove(table_id, row_id))
            else:
                warnings.append(f"Row #{row_id} already deleted, skipped.")
        for item in record.updated:
            if not item.previous_values:
                continue
            if item.row_id in existing_ids:
                mutations.append(Mutation.update(table_id, item.row_id, item.previous_values))
            else:
                warnings.append(f"Row #{item.row_id} deleted, cannot restore.")

        if not mutations and not warnings:
            if in_memory:
                self._session.last_rollback = None
            return RollbackResult.nothing_to_undo()

        applied = self._applier.apply(mutations)
        deleted = sum(1 for m in applied.applied if m.kind is MutationKind.REMOVE)
        restored = sum(1 for m in applied.applied if m.kind is MutationKind.UPDATE)
        for w in warnings:
            logger.warning(w)

        if applied.error_count:
            warnings.append(f"{applied.error_count} rollback action(s) failed; the import is still marked undoable.")
        else:
            if record.log_row_id is not None and self._log is not None:
                self._log.mark_rolled_back(record.log_row_id)
            if in_memory:
                self._session.last_rollback = None

        message = f"Rollback done: {deleted} deletion(s), {restored} restoration(s)."
        logger.info(message)
        return RollbackResult(
            message=message,
            deleted_count=deleted,
            restored_count=restored,
            errors=applied.error_count,
            warnings=warnings,
        )
