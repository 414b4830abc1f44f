"""
Import boundary: raw rows -> initial Row/Cell population.

Raw rows arrive as string maps keyed by *source* column names together with
a source -> target column mapping (from a mapping collaborator, or identity).
Each row is run through the rule engine and checked for duplicates, and the
outcome becomes the cells' initial review states:

- Change              -> ai-suggestion (original + suggestion + confidence)
- red FieldError      -> critical (source missing if empty, else ai);
                         overrides an ai-suggestion from a Change
- yellow FieldError   -> ai-suggestion, only if the cell has no status yet
- duplicate match     -> duplicate on the check column, unless that cell
                         is already critical

Cell values keep the raw imported text until a suggestion is accepted.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from ..matching.duplicates import DuplicateDetector, DuplicateMatch, TransactionRecord
from ..rules.engine import process_row
from ..rules.payroll import ACCOUNT_FIELD, AMOUNT_FIELD, NAME_FIELD, PHONE_FIELD
from ..rules.types import RowResult, RuleSet, Severity
from ..schemas.batch import Row, new_id
from ..schemas.cell_status import (
    AISuggestion,
    CellSource,
    CellState,
    CellStatus,
    Critical,
    Duplicate,
    DuplicateInfo,
)
from .grid import BatchGrid

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_CONFIDENCE = 0.95


def format_match_date(value: datetime) -> str:
    """Day without padding, e.g. '5 Nov 2024'."""
    return f"{value.day} {value:%b %Y}"


def duplicate_message(match: DuplicateMatch) -> str:
    return f"Potential duplicate: Same payee+amount paid on {format_match_date(match.matched_at)}"


def map_row(raw: Mapping[str, Any], mapping: Optional[Mapping[str, str]], keys: Iterable[str]) -> dict[str, str]:
    """
    Project a raw row onto target keys.

    Args:
        raw: Values keyed by source column
        mapping: source column -> target key (None means identity)
        keys: Target keys to populate; unmapped keys become ""

    Returns:
        Values keyed by target key
    """
    if mapping is None:
        inverse = {key: key for key in keys}
    else:
        inverse = {target: source for source, target in mapping.items() if target}

    data: dict[str, str] = {}
    for key in keys:
        source = inverse.get(key)
        value = raw.get(source) if source is not None else None
        data[key] = "" if value is None else str(value)
    return data


class BatchImporter:
    """Builds the initial state of a batch from raw rows."""

    def __init__(
        self,
        rule_set: RuleSet,
        detector: Optional[DuplicateDetector] = None,
        suggestion_confidence: float = DEFAULT_SUGGESTION_CONFIDENCE,
        check_column: str = AMOUNT_FIELD,
        name_key: str = NAME_FIELD,
        amount_key: str = AMOUNT_FIELD,
        account_key: str = ACCOUNT_FIELD,
        phone_key: str = PHONE_FIELD,
    ):
        self.rule_set = rule_set
        self.detector = detector
        self.suggestion_confidence = suggestion_confidence
        self.check_column = check_column
        self.name_key = name_key
        self.amount_key = amount_key
        self.account_key = account_key
        self.phone_key = phone_key

    def initial_statuses(self, data: Mapping[str, str], result: RowResult) -> dict[str, CellStatus]:
        """Cell statuses implied by one rule-engine result."""
        status: dict[str, CellStatus] = {}

        for change in result.changes:
            status[change.column] = AISuggestion(
                original_value=change.original,
                suggestion=change.cleaned,
                confidence=self.suggestion_confidence,
                message=change.reason,
                source=CellSource.AI,
            )

        for error in result.errors:
            if error.severity == Severity.RED:
                empty = not data.get(error.column, "").strip()
                status[error.column] = Critical(
                    message=error.message,
                    source=CellSource.MISSING if empty else CellSource.AI,
                )
            elif error.column not in status:
                status[error.column] = AISuggestion(
                    original_value=data.get(error.column, ""),
                    suggestion=error.suggestion,
                    confidence=error.confidence,
                    message=error.message,
                    source=CellSource.AI,
                )

        return status

    def _check_duplicate(
        self,
        row: Row,
        cleaned: Mapping[str, str],
        register_history: bool,
    ) -> None:
        if self.detector is None:
            return

        name = cleaned.get(self.name_key, "")
        amount = cleaned.get(self.amount_key, "")
        account = cleaned.get(self.account_key, "")

        check = self.detector.check_for_duplicate(name, amount, account, exclude_id=row.id)
        if check.match is not None:
            current = row.get_status(self.check_column)
            if current.state in (CellState.CLEAN, CellState.AI_SUGGESTION):
                match = check.match
                row.status[self.check_column] = Duplicate(
                    message=duplicate_message(match),
                    duplicate_info=DuplicateInfo(
                        matched_row_id=match.matched_row_id,
                        matched_at=match.matched_at,
                        matched_data=match.matched_data,
                        similarity=match.similarity,
                    ),
                )

        if register_history and check.checked:
            self.detector.add_to_history(
                TransactionRecord(id=row.id, name=name, amount=amount, account_number=account)
            )

    def import_rows(
        self,
        raw_rows: Iterable[Mapping[str, Any]],
        mapping: Optional[Mapping[str, str]] = None,
        register_history: bool = False,
    ) -> list[Row]:
        """
        Build Rows from raw source records.

        Args:
            raw_rows: Source records (values as decoded from the file)
            mapping: source column -> target key; None means the raw keys
                already are target keys
            register_history: Add each row to the duplicate history after
                checking it (intra-batch duplicate detection)

        Returns:
            Rows with 1-based row_index and uuid ids
        """
        keys = self.rule_set.keys
        if mapping:
            keys = keys + [t for t in mapping.values() if t and t not in keys]

        rows: list[Row] = []
        for index, raw in enumerate(raw_rows, start=1):
            data = map_row(raw, mapping, keys)
            result = process_row(data, self.rule_set)

            row = Row(
                id=new_id(),
                row_index=index,
                data=data,
                status=self.initial_statuses(data, result),
            )

            phone = result.cleaned.get(self.phone_key, "").strip()
            if phone:
                row.phone_number = phone

            self._check_duplicate(row, result.cleaned, register_history)
            rows.append(row)

        review = sum(
            1 for row in rows for status in row.status.values() if status.state != CellState.CLEAN
        )
        logger.info("Imported %d rows (%d cells flagged for review)", len(rows), review)
        return rows

    def build_grid(
        self,
        raw_rows: Iterable[Mapping[str, Any]],
        mapping: Optional[Mapping[str, str]] = None,
        name: str = "import",
        register_history: bool = False,
    ) -> BatchGrid:
        """Import rows into a fresh BatchGrid."""
        rows = self.import_rows(raw_rows, mapping=mapping, register_history=register_history)
        columns = list(rows[0].data) if rows else self.rule_set.keys
        grid = BatchGrid(self.rule_set, columns=columns, name=name)
        grid.load_rows(rows)
        return grid
