from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from ..models.mutation import RollbackRecord
from ..store.base import TableStore
from .coercion import ValueCoercer

"""Import session context.

Holds what lives across imports of one operator session: the session id used
to scope rollbacks, the reference lookup cache and the last rollback record.
Independent sessions never share state.
"""

__all__ = [
    "ImportSession",
    "new_session_id",
]


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ImportSession:
    store: TableStore
    table_id: str
    session_id: str = field(default_factory=new_session_id)
    coercer: ValueCoercer | None = None
    last_rollback: RollbackRecord | None = None
    import_in_progress: bool = False

    def __post_init__(self) -> None:
        if self.coercer is None:
            self.coercer = ValueCoercer(self.store)
