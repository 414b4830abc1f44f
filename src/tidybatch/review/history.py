"""
History ledger (undo/redo).

A forward ledger of HistoryEntry plus a redo stack. Entries are immutable;
the ledger only moves them between the two lists.

- record():  append a forward entry and clear the redo stack
- take_latest(row, col): remove the most recent forward entry for that cell
  and push it onto the redo stack (undo)
- pop_redo(): pop the most recent redo entry (redo)

Applying values and statuses is the grid's job; the ledger is bookkeeping.
"""

from collections import OrderedDict
from typing import Iterable, Optional

from ..schemas.batch import HistoryAction, HistoryEntry


class HistoryLedger:
    """Forward ledger plus redo stack for one batch."""

    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []
        self._redo: list[HistoryEntry] = []

    def record(self, entry: HistoryEntry) -> HistoryEntry:
        """Append a forward entry; a new forward action invalidates pending redos."""
        self._entries.append(entry)
        self._redo.clear()
        return entry

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        """Append a forward entry without touching the redo stack (used by redo)."""
        self._entries.append(entry)
        return entry

    def latest_for(self, row_id: str, column_key: str) -> Optional[HistoryEntry]:
        for entry in reversed(self._entries):
            if entry.row_id == row_id and entry.column_key == column_key:
                return entry
        return None

    def take_latest(self, row_id: str, column_key: str) -> Optional[HistoryEntry]:
        """
        Move the most recent entry for (row_id, column_key) to the redo stack.

        Returns:
            The moved entry, or None if the cell has no history
        """
        for index in range(len(self._entries) - 1, -1, -1):
            entry = self._entries[index]
            if entry.row_id == row_id and entry.column_key == column_key:
                del self._entries[index]
                self._redo.append(entry)
                return entry
        return None

    def pop_redo(self) -> Optional[HistoryEntry]:
        if not self._redo:
            return None
        return self._redo.pop()

    def push_redo(self, entry: HistoryEntry) -> None:
        """Put an entry back on the redo stack (used to roll back a failed redo)."""
        self._redo.append(entry)

    def clear_redo(self) -> None:
        self._redo.clear()

    @property
    def entries(self) -> list[HistoryEntry]:
        """Forward entries, oldest first."""
        return list(self._entries)

    @property
    def redo_stack(self) -> list[HistoryEntry]:
        """Redo entries, the next one to redo last."""
        return list(self._redo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def entries_for(self, row_id: str, column_key: Optional[str] = None) -> list[HistoryEntry]:
        return [
            entry
            for entry in self._entries
            if entry.row_id == row_id and (column_key is None or entry.column_key == column_key)
        ]

    def grouped(self) -> "OrderedDict[HistoryAction, list[HistoryEntry]]":
        """Forward entries grouped by action (display only; order kept within a group)."""
        groups: OrderedDict[HistoryAction, list[HistoryEntry]] = OrderedDict()
        for entry in self._entries:
            groups.setdefault(entry.action, []).append(entry)
        return groups

    def load(self, entries: Iterable[HistoryEntry], redo: Iterable[HistoryEntry] = ()) -> None:
        """Replace the ledger contents (restoring a persisted batch)."""
        self._entries = list(entries)
        self._redo = list(redo)

    def clear(self) -> None:
        self._entries.clear()
        self._redo.clear()

    def __len__(self) -> int:
        return len(self._entries)
