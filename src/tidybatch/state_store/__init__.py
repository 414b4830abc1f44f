"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Review batches (rows, cell statuses, history, redo stack)
- Outbound reconciliation requests
- Committed transactions for duplicate detection
"""

from .sqlite_store import StateStore, StoredBatch

__all__ = [
    "StateStore",
    "StoredBatch",
]
