"""
Batch review module.

Provides:
- Row/cell review state machine (BatchGrid)
- Undo/redo history ledger
- Import (raw rows -> initial cell states) and export (flat records)
"""

from .export import ExportRecord, change_log, export_records, render
from .grid import (
    BatchGrid,
    GridError,
    GridSummary,
    InvalidTransitionError,
    IssueFilter,
    UnknownColumnError,
    UnknownRowError,
)
from .history import HistoryLedger
from .importer import BatchImporter

__all__ = [
    "BatchGrid",
    "BatchImporter",
    "GridError",
    "GridSummary",
    "HistoryLedger",
    "InvalidTransitionError",
    "IssueFilter",
    "UnknownColumnError",
    "UnknownRowError",
    "ExportRecord",
    "export_records",
    "change_log",
    "render",
]
