"""Domain models for the spreadsheet -> table reconciliation tool."""

from .config_models import ReconcileConfig, StoreConfig
from .error_record import ErrorRecord
from .import_log import ImportLogEntry
from .import_result import (
    BatchStatsAccumulator,
    ImportResult,
    ImportStats,
    RollbackResult,
    ValidationReport,
    WorkbookResult,
)
from .mutation import Mutation, MutationKind, RollbackRecord, RowPreImage
from .row_data import RowData
from .rules import ColumnRule, KeyMode, Policy, RuleSet
from .schema import ColumnKind, ColumnMeta, ColumnType

__all__ = [
    # Configuration models
    "ReconcileConfig",
    "StoreConfig",
    # Rules and schema
    "Policy",
    "KeyMode",
    "ColumnRule",
    "RuleSet",
    "ColumnKind",
    "ColumnMeta",
    "ColumnType",
    # Processing models
    "RowData",
    "Mutation",
    "MutationKind",
    "RowPreImage",
    "RollbackRecord",
    # Results
    "ImportStats",
    "ImportResult",
    "RollbackResult",
    "ValidationReport",
    "BatchStatsAccumulator",
    "WorkbookResult",
    "ImportLogEntry",
    "ErrorRecord",
]
