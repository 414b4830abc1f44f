"""
Export boundary: flat records per row plus CSV/JSON/bank bulk layouts.

`export_records` defines the data shape (one flat string map per row, in
column order). The renderers are thin serializers over that shape.

Payable exports leave out rows holding a skipped cell (e.g. a skipped
duplicate payment).
"""

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from ..rules.payroll import ACCOUNT_FIELD, AMOUNT_FIELD, BANK_FIELD, NAME_FIELD
from ..schemas.batch import HistoryAction, utcnow
from ..schemas.cell_status import CellState
from .grid import BatchGrid

MAYBANK_HEADER = (
    "RecordType|PaymentDate|ValueDate|CurrencyCode|Amount|PaymentRef|"
    "BeneficiaryName|BeneficiaryAccountNo|BeneficiaryBankCode"
)
CIMB_HEADER = "SEQ,BENEFICIARY_NAME,BENEFICIARY_ACCOUNT,BANK_CODE,AMOUNT,PAYMENT_REF,PARTICULARS"


@dataclass(frozen=True)
class ExportRecord:
    """One row as a flat record."""

    row_id: str
    row_index: int
    data: dict[str, str]

    def get(self, key: str, default: str = "") -> str:
        return self.data.get(key) or default


@dataclass(frozen=True)
class ExportChange:
    """A value change shown in the export preview."""

    row_index: int
    column: str
    original: str
    cleaned: str
    source: str


def export_records(grid: BatchGrid, payable_only: bool = False) -> list[ExportRecord]:
    """
    Flatten the batch into records.

    Args:
        grid: Batch to export
        payable_only: Leave out rows with a skipped cell

    Returns:
        Records in row order with values for every column
    """
    columns = grid.columns
    records = []
    for row in grid.rows:
        if payable_only and any(
            row.get_status(key).state == CellState.SKIPPED for key in columns
        ):
            continue
        records.append(
            ExportRecord(
                row_id=row.id,
                row_index=row.row_index,
                data={key: row.data.get(key, "") for key in columns},
            )
        )
    return records


def _change_source(action: HistoryAction) -> str:
    if action == HistoryAction.RECONCILED:
        return "channel"
    if action in (HistoryAction.MANUAL, HistoryAction.MANUAL_FORM):
        return "manual"
    if action in (HistoryAction.DUPLICATE_RESOLVED, HistoryAction.SKIP_ROW):
        return "duplicate"
    return "ai"


def change_log(grid: BatchGrid) -> list[ExportChange]:
    """Value changes from the history, for the export preview."""
    index_by_id = {row.id: row.row_index for row in grid.rows}
    columns = set(grid.columns)
    changes = []
    for entry in grid.ledger.entries:
        if entry.row_id not in index_by_id or entry.column_key not in columns:
            continue
        if entry.previous_value == entry.new_value:
            continue
        changes.append(
            ExportChange(
                row_index=index_by_id[entry.row_id],
                column=entry.column_key,
                original=entry.previous_value or "(empty)",
                cleaned=entry.new_value or "(empty)",
                source=_change_source(entry.action),
            )
        )
    return changes


def render_csv(
    records: list[ExportRecord],
    columns: list[str],
    headers: Optional[list[str]] = None,
) -> str:
    """Standard CSV with one header line."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers or columns)
    for record in records:
        writer.writerow([record.get(key) for key in columns])
    return buffer.getvalue()


def render_json(
    records: list[ExportRecord],
    columns: list[str],
    exported_at: Optional[datetime] = None,
) -> str:
    """`{rows, exportedAt, totalRows}` document."""
    exported_at = exported_at or utcnow()
    document = {
        "rows": [{key: record.get(key) for key in columns} for record in records],
        "exportedAt": exported_at.isoformat(),
        "totalRows": len(records),
    }
    return json.dumps(document, indent=2)


def render_maybank_bulk(
    records: list[ExportRecord],
    payment_date: Optional[date] = None,
) -> str:
    """Maybank pipe-delimited bulk payment file."""
    stamp = (payment_date or utcnow().date()).strftime("%Y%m%d")
    lines = [MAYBANK_HEADER]
    for record in records:
        lines.append(
            "|".join(
                [
                    "D",
                    stamp,
                    stamp,
                    "MYR",
                    record.get(AMOUNT_FIELD, "0.00"),
                    f"REF{record.row_index:06d}",
                    record.get(NAME_FIELD),
                    record.get(ACCOUNT_FIELD),
                    record.get(BANK_FIELD, "MBB"),
                ]
            )
        )
    return "\n".join(lines)


def render_cimb_bulk(records: list[ExportRecord], particulars: str = "Salary Payment") -> str:
    """CIMB BizChannel bulk payment file."""
    buffer = io.StringIO()
    buffer.write(CIMB_HEADER + "\n")
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    for seq, record in enumerate(records, start=1):
        writer.writerow(
            [
                seq,
                record.get(NAME_FIELD),
                record.get(ACCOUNT_FIELD),
                record.get(BANK_FIELD, "CIMB"),
                record.get(AMOUNT_FIELD, "0.00"),
                f"PAY{seq}",
                particulars,
            ]
        )
    return buffer.getvalue().rstrip("\n")


def _csv(grid: BatchGrid, records: list[ExportRecord]) -> str:
    headers = []
    for key in grid.columns:
        rule = grid.rule_set.get(key)
        headers.append(rule.label if rule else key)
    return render_csv(records, grid.columns, headers)


# Export format name -> renderer(grid, records)
RENDERERS: dict[str, Callable[[BatchGrid, list[ExportRecord]], str]] = {
    "csv": _csv,
    "json": lambda grid, records: render_json(records, grid.columns),
    "maybank": lambda grid, records: render_maybank_bulk(records),
    "cimb": lambda grid, records: render_cimb_bulk(records),
}


def render(grid: BatchGrid, export_format: str, payable_only: bool = False) -> str:
    """Render a batch in one of RENDERERS' formats."""
    if export_format not in RENDERERS:
        raise ValueError(f"Unknown export format: {export_format}")
    return RENDERERS[export_format](grid, export_records(grid, payable_only))
