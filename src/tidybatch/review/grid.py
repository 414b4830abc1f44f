"""
Row/cell review state machine for one imported batch.

BatchGrid owns the rows of a batch and is the only way their values and
statuses change. Every transition updates a cell's value and status
together, under one lock, and records a HistoryEntry where the transition
is user-visible.

Transitions:

    ai-suggestion --accept-->   validated   (value <- suggestion, ai-fix)
    ai-suggestion --reject-->   clean       (value unchanged, no entry)
    duplicate     --proceed-->  validated   (duplicate-resolved)
    duplicate     --skip-->     skipped     (skip-row)
    critical      --override--> validated   (non-empty reason, critical-override)
    any           --edit-->     validated   (normalized value, manual)
    any           --undo-->     ai-suggestion shaped status
    live-update   --settle-->   validated

Unknown rows/columns and transitions from the wrong state raise GridError
subclasses: they indicate a caller out of sync with the batch. Undo/redo
with nothing to undo/redo return None.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping, Optional

from ..rules.engine import normalize_value
from ..rules.types import RuleSet
from ..schemas.batch import CellRef, HistoryAction, HistoryEntry, Row
from ..schemas.cell_status import (
    CLEAN,
    REVIEW_STATES,
    AISuggestion,
    CellSource,
    CellState,
    CellStatus,
    Critical,
    Duplicate,
    LiveUpdate,
    Skipped,
    Validated,
    needs_review,
)
from .history import HistoryLedger

logger = logging.getLogger(__name__)

RESTORED_MESSAGE = "Previous suggestion restored"
DUPLICATE_PROCEED_MESSAGE = "Marked as intentional duplicate"
DUPLICATE_SKIP_MESSAGE = "Skipped - duplicate transaction"


class GridError(Exception):
    """Base exception for invalid grid operations."""

    pass


class UnknownRowError(GridError, KeyError):
    """Operation addressed a row id that is not in the batch."""

    def __init__(self, row_id: str):
        self.row_id = row_id
        super().__init__(f"Unknown row: {row_id}")

    def __str__(self) -> str:
        return f"Unknown row: {self.row_id}"


class UnknownColumnError(GridError, KeyError):
    """Operation addressed a column key that is not in the batch."""

    def __init__(self, column_key: str):
        self.column_key = column_key
        super().__init__(f"Unknown column: {column_key}")

    def __str__(self) -> str:
        return f"Unknown column: {self.column_key}"


class InvalidTransitionError(GridError):
    """Transition not allowed from the cell's current state."""

    def __init__(self, ref: CellRef, state: CellState, message: str):
        self.ref = ref
        self.state = state
        super().__init__(f"{message} (cell {ref.row_id}/{ref.column_key} is {state.value})")


class IssueFilter(str, Enum):
    """Issue list views."""

    ALL = "all"
    AI_SUGGESTION = "ai-suggestion"
    DUPLICATE = "duplicate"
    CRITICAL = "critical"

    @property
    def states(self) -> frozenset[CellState]:
        if self == IssueFilter.ALL:
            return REVIEW_STATES
        return frozenset({CellState(self.value)})


@dataclass(frozen=True)
class GridSummary:
    """Review progress of a batch."""

    total_rows: int
    total_cells: int
    counts: dict[CellState, int] = field(default_factory=dict)
    needs_review: int = 0

    @property
    def completion(self) -> float:
        """Share of cells not needing review (1.0 for an empty batch)."""
        if self.total_cells == 0:
            return 1.0
        return (self.total_cells - self.needs_review) / self.total_cells

    def count(self, state: CellState) -> int:
        return self.counts.get(state, 0)

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "total_cells": self.total_cells,
            "counts": {state.value: n for state, n in self.counts.items()},
            "needs_review": self.needs_review,
            "completion": round(self.completion, 4),
        }


class BatchGrid:
    """
    Authoritative in-memory model of one batch.

    All mutators are serialized by a re-entrant lock; getters return copies,
    so callers never hold references into the live rows.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        columns: Optional[Iterable[str]] = None,
        name: str = "import",
        ledger: Optional[HistoryLedger] = None,
    ):
        """
        Args:
            rule_set: Rules used to normalize manual and reconciled values
            columns: Column keys in display order (defaults to the rule keys)
            name: Batch name (usually the imported file name)
            ledger: History ledger (a fresh one by default)
        """
        self.rule_set = rule_set
        self.name = name
        self.ledger = ledger or HistoryLedger()
        self._columns: list[str] = list(columns) if columns is not None else rule_set.keys
        self._rows: list[Row] = []
        self._positions: dict[str, int] = {}
        self._prior_status: dict[str, CellStatus] = {}
        self._cursor: Optional[CellRef] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Batch lifecycle
    # ------------------------------------------------------------------

    def load_rows(self, rows: Iterable[Row]) -> None:
        """Replace the batch (full replace; history and cursor are reset)."""
        with self._lock:
            self._rows = [row.copy() for row in rows]
            self._positions = {row.id: i for i, row in enumerate(self._rows)}
            self._prior_status.clear()
            self._cursor = None
            self.ledger.clear()
        logger.info("Loaded %d rows into batch '%s'", len(self._rows), self.name)

    def load_history(
        self,
        entries: Iterable[HistoryEntry],
        redo: Iterable[HistoryEntry] = (),
        prior_statuses: Optional[Mapping[str, CellStatus]] = None,
    ) -> None:
        """
        Restore a saved ledger.

        Args:
            entries: Forward history, oldest first
            redo: Redo stack, bottom first
            prior_statuses: entry id -> cell status the entry replaced
        """
        with self._lock:
            self.ledger.load(entries, redo)
            known = {entry.id for entry in self.ledger.entries}
            self._prior_status = {
                entry_id: status
                for entry_id, status in (prior_statuses or {}).items()
                if entry_id in known
            }

    def prior_statuses(self) -> dict[str, CellStatus]:
        """Cell status each undoable history entry replaced, by entry id."""
        with self._lock:
            return dict(self._prior_status)

    def reset(self) -> None:
        """Drop all rows and history."""
        self.load_rows([])

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def rows(self) -> list[Row]:
        with self._lock:
            return [row.copy() for row in self._rows]

    @property
    def row_ids(self) -> list[str]:
        with self._lock:
            return [row.id for row in self._rows]

    def __len__(self) -> int:
        return len(self._rows)

    def get_row(self, row_id: str) -> Row:
        with self._lock:
            return self._require_row(row_id).copy()

    def get_value(self, row_id: str, column_key: str) -> str:
        with self._lock:
            row = self._require_cell(row_id, column_key)
            return row.data.get(column_key, "")

    def get_status(self, row_id: str, column_key: str) -> CellStatus:
        with self._lock:
            row = self._require_cell(row_id, column_key)
            return row.get_status(column_key)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_row(self, row_id: str) -> Row:
        position = self._positions.get(row_id)
        if position is None:
            raise UnknownRowError(row_id)
        return self._rows[position]

    def _require_column(self, column_key: str) -> None:
        if column_key not in self._columns:
            raise UnknownColumnError(column_key)

    def _require_cell(self, row_id: str, column_key: str) -> Row:
        row = self._require_row(row_id)
        self._require_column(column_key)
        return row

    def _set_cell(
        self,
        row: Row,
        column_key: str,
        status: CellStatus,
        value: Optional[str] = None,
    ) -> None:
        if value is not None:
            row.data[column_key] = value
        row.status[column_key] = status
        logger.debug("Cell %s/%s -> %s", row.id, column_key, status.state.value)

    def _record(
        self,
        row: Row,
        column_key: str,
        previous_status: CellStatus,
        previous_value: str,
        new_value: str,
        action: HistoryAction,
        reason: Optional[str] = None,
        clear_redo: bool = True,
    ) -> HistoryEntry:
        entry = HistoryEntry.create(
            row_id=row.id,
            column_key=column_key,
            previous_value=previous_value,
            new_value=new_value,
            action=action,
            reason=reason,
        )
        if clear_redo:
            self.ledger.record(entry)
        else:
            self.ledger.append(entry)
        self._prior_status[entry.id] = previous_status
        return entry

    def _expect(self, row: Row, column_key: str, state: CellState, action: str) -> CellStatus:
        status = row.get_status(column_key)
        if status.state != state:
            raise InvalidTransitionError(
                CellRef(row.id, column_key),
                status.state,
                f"Cannot {action}: expected {state.value}",
            )
        return status

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def propose(
        self,
        row_id: str,
        column_key: str,
        suggestion: str,
        confidence: Optional[float] = None,
        message: Optional[str] = None,
        source: CellSource = CellSource.AI,
    ) -> AISuggestion:
        """Attach an externally proposed value to a cell (same shape as a rule Change)."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = AISuggestion(
                original_value=row.data.get(column_key, ""),
                suggestion=suggestion,
                confidence=confidence,
                message=message,
                source=source,
            )
            self._set_cell(row, column_key, status)
            return status

    def accept_suggestion(self, row_id: str, column_key: str) -> HistoryEntry:
        """ai-suggestion -> validated, value <- suggestion."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            return self._accept(row, column_key)

    def _accept(self, row: Row, column_key: str) -> HistoryEntry:
        status = self._expect(row, column_key, CellState.AI_SUGGESTION, "accept suggestion")
        if status.suggestion is None:
            raise InvalidTransitionError(
                CellRef(row.id, column_key), status.state, "Suggestion has no proposed value"
            )
        previous_value = row.data.get(column_key, "")
        self._set_cell(row, column_key, Validated(source=status.source), status.suggestion)
        return self._record(
            row, column_key, status, previous_value, status.suggestion, HistoryAction.AI_FIX
        )

    def reject_suggestion(self, row_id: str, column_key: str) -> None:
        """ai-suggestion -> clean, value unchanged."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            self._expect(row, column_key, CellState.AI_SUGGESTION, "reject suggestion")
            self._set_cell(row, column_key, CLEAN)
            self.ledger.clear_redo()

    def apply_column_fix(self, column_key: str) -> list[HistoryEntry]:
        """
        Accept every suggestion in a column.

        Cells without a proposed value are skipped; a failure on one cell
        does not stop the others.

        Returns:
            One HistoryEntry per accepted cell
        """
        entries: list[HistoryEntry] = []
        with self._lock:
            self._require_column(column_key)
            for row in self._rows:
                status = row.get_status(column_key)
                if not isinstance(status, AISuggestion) or status.suggestion is None:
                    continue
                try:
                    entries.append(self._accept(row, column_key))
                except GridError as e:
                    logger.warning("Column fix skipped %s/%s: %s", row.id, column_key, e)
        logger.info("Column fix on %s accepted %d suggestions", column_key, len(entries))
        return entries

    # ------------------------------------------------------------------
    # Duplicates and critical cells
    # ------------------------------------------------------------------

    def proceed_duplicate(self, row_id: str, column_key: str) -> HistoryEntry:
        """duplicate -> validated (intentional repeat payment)."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = self._expect(row, column_key, CellState.DUPLICATE, "proceed with duplicate")
            value = row.data.get(column_key, "")
            self._set_cell(
                row,
                column_key,
                Validated(source=CellSource.DUPLICATE, message=DUPLICATE_PROCEED_MESSAGE),
            )
            return self._record(
                row, column_key, status, value, value, HistoryAction.DUPLICATE_RESOLVED
            )

    def skip_duplicate(self, row_id: str, column_key: str) -> HistoryEntry:
        """duplicate -> skipped (kept visible, excluded from review and payment)."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = self._expect(row, column_key, CellState.DUPLICATE, "skip duplicate")
            value = row.data.get(column_key, "")
            self._set_cell(
                row,
                column_key,
                Skipped(message=DUPLICATE_SKIP_MESSAGE, source=CellSource.DUPLICATE),
            )
            return self._record(row, column_key, status, value, value, HistoryAction.SKIP_ROW)

    def override_critical(self, row_id: str, column_key: str, reason: str) -> HistoryEntry:
        """critical -> validated; requires a non-empty reason."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = self._expect(row, column_key, CellState.CRITICAL, "override")
            if not reason or not reason.strip():
                raise InvalidTransitionError(
                    CellRef(row_id, column_key), status.state, "Override requires a reason"
                )
            reason = reason.strip()
            value = row.data.get(column_key, "")
            self._set_cell(
                row,
                column_key,
                Validated(source=status.source, message=f"Override approved: {reason}"),
            )
            return self._record(
                row,
                column_key,
                status,
                value,
                value,
                HistoryAction.CRITICAL_OVERRIDE,
                reason=reason,
            )

    # ------------------------------------------------------------------
    # Manual values
    # ------------------------------------------------------------------

    def edit_cell(self, row_id: str, column_key: str, value: str) -> HistoryEntry:
        """Manual edit: always allowed, normalized like imported values."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = row.get_status(column_key)
            previous_value = row.data.get(column_key, "")
            normalized = normalize_value(self.rule_set, column_key, value)
            self._set_cell(row, column_key, Validated(source=CellSource.MANUAL), normalized)
            return self._record(
                row, column_key, status, previous_value, normalized, HistoryAction.MANUAL
            )

    def submit_form_value(self, row_id: str, column_key: str, value: str) -> HistoryEntry:
        """A missing value supplied through the resolution form; unlocks the row."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = row.get_status(column_key)
            previous_value = row.data.get(column_key, "")
            normalized = normalize_value(self.rule_set, column_key, value)
            self._set_cell(
                row,
                column_key,
                Validated(source=CellSource.MISSING, message=f"Provided via form ({self.name})"),
                normalized,
            )
            row.locked = False
            row.outbound_thread_id = None
            return self._record(
                row,
                column_key,
                status,
                previous_value,
                normalized,
                HistoryAction.MANUAL_FORM,
                reason="User provided missing value",
            )

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def undo(self, row_id: str, column_key: str) -> Optional[HistoryEntry]:
        """
        Undo the most recent change to one cell.

        The value goes back to the entry's previous value and the cell gets an
        ai-suggestion status proposing the undone value again.

        Returns:
            The undone entry, or None if the cell has no history
        """
        with self._lock:
            row = self._require_cell(row_id, column_key)
            entry = self.ledger.take_latest(row_id, column_key)
            if entry is None:
                return None

            current = row.get_status(column_key)
            prior = self._prior_status.pop(entry.id, None)
            if isinstance(prior, AISuggestion):
                restored = replace(
                    prior, original_value=entry.previous_value, suggestion=entry.new_value
                )
            else:
                source = getattr(current, "source", None)
                restored = AISuggestion(
                    original_value=entry.previous_value,
                    suggestion=entry.new_value,
                    confidence=getattr(current, "confidence", None),
                    message=getattr(current, "message", None) or RESTORED_MESSAGE,
                    source=source if isinstance(source, CellSource) else CellSource.AI,
                )
            self._set_cell(row, column_key, restored, entry.previous_value)
            logger.debug("Undid %s on %s/%s", entry.action.value, row_id, column_key)
            return entry

    def redo(self) -> Optional[HistoryEntry]:
        """
        Re-apply the most recently undone entry.

        Returns:
            The new forward entry (action redo), or None if nothing to redo
        """
        with self._lock:
            entry = self.ledger.pop_redo()
            if entry is None:
                return None

            position = self._positions.get(entry.row_id)
            if position is None or entry.column_key not in self._columns:
                self.ledger.push_redo(entry)
                if position is None:
                    raise UnknownRowError(entry.row_id)
                raise UnknownColumnError(entry.column_key)

            row = self._rows[position]
            status = row.get_status(entry.column_key)
            previous_value = row.data.get(entry.column_key, "")
            source = getattr(status, "source", None) or CellSource.AI
            self._set_cell(row, entry.column_key, Validated(source=source), entry.new_value)
            return self._record(
                row,
                entry.column_key,
                status,
                previous_value,
                entry.new_value,
                HistoryAction.REDO,
                reason=entry.reason,
                clear_redo=False,
            )

    # ------------------------------------------------------------------
    # Reconciliation hooks
    # ------------------------------------------------------------------

    def lock_row(self, row_id: str, thread_id: str) -> tuple[bool, Optional[str]]:
        """
        Mark a row as waiting for an outbound request.

        Returns:
            The previous (locked, outbound_thread_id), for rollback
        """
        with self._lock:
            row = self._require_row(row_id)
            previous = (row.locked, row.outbound_thread_id)
            row.locked = True
            row.outbound_thread_id = thread_id
            return previous

    def restore_lock(self, row_id: str, locked: bool, thread_id: Optional[str]) -> None:
        with self._lock:
            row = self._require_row(row_id)
            row.locked = locked
            row.outbound_thread_id = thread_id

    def unlock_row(self, row_id: str) -> None:
        self.restore_lock(row_id, False, None)

    def apply_reconciled(
        self,
        row_id: str,
        values: Mapping[str, str],
        message: Optional[str] = None,
    ) -> list[HistoryEntry]:
        """
        Write reconciled values into a row.

        Each value is normalized, its cell moves to live-update and one
        reconciled entry is recorded per field, with the cell's current value
        as the previous value. The row is unlocked once every field is written.
        All keys are checked before anything is written.
        """
        with self._lock:
            row = self._require_row(row_id)
            for column_key in values:
                self._require_column(column_key)

            entries = []
            for column_key, value in values.items():
                status = row.get_status(column_key)
                previous_value = row.data.get(column_key, "")
                normalized = normalize_value(self.rule_set, column_key, value)
                self._set_cell(
                    row,
                    column_key,
                    LiveUpdate(source=CellSource.CHANNEL, message=message),
                    normalized,
                )
                entries.append(
                    self._record(
                        row,
                        column_key,
                        status,
                        previous_value,
                        normalized,
                        HistoryAction.RECONCILED,
                    )
                )

            row.locked = False
            row.outbound_thread_id = None
            return entries

    def confirm_live_update(self, row_id: str, column_key: str) -> bool:
        """live-update -> validated; False if the cell moved on meanwhile."""
        with self._lock:
            row = self._require_cell(row_id, column_key)
            status = row.get_status(column_key)
            if not isinstance(status, LiveUpdate):
                return False
            self._set_cell(
                row, column_key, Validated(source=status.source, message=status.message)
            )
            return True

    def mark_missing(self, row_id: str, column_keys: Iterable[str], message: str) -> list[str]:
        """
        Put unresolved cells back into critical(missing) (expired requests).

        Cells already resolved (validated, live-update, skipped) are left alone.

        Returns:
            Column keys that changed
        """
        resolved = {CellState.VALIDATED, CellState.LIVE_UPDATE, CellState.SKIPPED}
        changed = []
        with self._lock:
            row = self._require_row(row_id)
            for column_key in column_keys:
                self._require_column(column_key)
                if row.get_status(column_key).state in resolved:
                    continue
                self._set_cell(row, column_key, Critical(message=message, source=CellSource.MISSING))
                changed.append(column_key)
        return changed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def rows_with_state(self, issue_filter: IssueFilter = IssueFilter.ALL) -> list[Row]:
        """Rows having at least one cell in the filter's states."""
        states = issue_filter.states
        with self._lock:
            return [
                row.copy()
                for row in self._rows
                if any(row.get_status(key).state in states for key in self._columns)
            ]

    def issues(self, issue_filter: IssueFilter = IssueFilter.ALL) -> list[tuple[CellRef, CellStatus]]:
        """Cells in the filter's states, row-major."""
        states = issue_filter.states
        with self._lock:
            return [
                (CellRef(row.id, key), row.get_status(key))
                for row in self._rows
                for key in self._columns
                if row.get_status(key).state in states
            ]

    def summary(self) -> GridSummary:
        counts: dict[CellState, int] = {}
        review = 0
        with self._lock:
            for row in self._rows:
                for key in self._columns:
                    status = row.get_status(key)
                    counts[status.state] = counts.get(status.state, 0) + 1
                    if needs_review(status):
                        review += 1
            return GridSummary(
                total_rows=len(self._rows),
                total_cells=len(self._rows) * len(self._columns),
                counts=counts,
                needs_review=review,
            )

    def next_issue(self, after: Optional[CellRef] = None) -> Optional[CellRef]:
        """
        Next cell needing review in row-major order, wrapping around.

        Scanning starts just after `after` (or at the first cell) and visits
        every cell at most once; `after` itself is checked last.
        """
        with self._lock:
            width = len(self._columns)
            total = len(self._rows) * width
            if total == 0:
                return None

            start = 0
            if after is not None:
                row = self._require_cell(after.row_id, after.column_key)
                start = self._positions[row.id] * width + self._columns.index(after.column_key) + 1

            for offset in range(total):
                index = (start + offset) % total
                row = self._rows[index // width]
                key = self._columns[index % width]
                if needs_review(row.get_status(key)):
                    return CellRef(row.id, key)
            return None

    @property
    def cursor(self) -> Optional[CellRef]:
        return self._cursor

    def set_cursor(self, ref: Optional[CellRef]) -> None:
        with self._lock:
            if ref is not None:
                self._require_cell(ref.row_id, ref.column_key)
            self._cursor = ref

    def jump_to_next_issue(self) -> Optional[CellRef]:
        """Move the cursor to the next issue (None clears it)."""
        with self._lock:
            self._cursor = self.next_issue(self._cursor)
            return self._cursor
