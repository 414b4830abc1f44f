"""Tests for export records and layouts."""

import json
from datetime import date, datetime, timezone

import pytest

from tidybatch.review import change_log, export_records, render
from tidybatch.review.export import (
    CIMB_HEADER,
    MAYBANK_HEADER,
    render_cimb_bulk,
    render_csv,
    render_json,
    render_maybank_bulk,
)


@pytest.fixture
def fixed_grid(grid):
    """Fixture batch with every suggestion accepted and the missing account filled."""
    for key in grid.columns:
        grid.apply_column_fix(key)
    grid.edit_cell(grid.row_ids[1], "accountNumber", "5566778899")
    return grid


class TestExportRecords:
    """Tests for export_records."""

    def test_flat_records_in_order(self, fixed_grid):
        records = export_records(fixed_grid)
        assert [r.row_index for r in records] == [1, 2, 3]
        assert records[0].data == {
            "name": "Ali Ahmad",
            "amount": "5000.00",
            "accountNumber": "112233445566",
            "bank": "MBB",
            "phone": "+60123456789",
            "date": "2024-10-15",
        }

    def test_payable_only_leaves_out_skipped(self, fixed_grid):
        fixed_grid.skip_duplicate(fixed_grid.row_ids[2], "amount")
        assert len(export_records(fixed_grid)) == 3
        assert [r.row_index for r in export_records(fixed_grid, payable_only=True)] == [1, 2]

    def test_change_log(self, fixed_grid):
        changes = change_log(fixed_grid)
        manual = [c for c in changes if c.source == "manual"]
        assert len(manual) == 1
        assert manual[0].original == "(empty)"
        assert manual[0].cleaned == "5566778899"
        assert {c.source for c in changes} == {"ai", "manual"}


class TestRenderers:
    """Tests for the export layouts."""

    def test_csv_uses_labels(self, fixed_grid):
        content = render(fixed_grid, "csv")
        lines = content.splitlines()
        assert lines[0] == "Payee Name,Amount (RM),Account Number,Bank Code,Phone Number,Date"
        assert lines[1] == "Ali Ahmad,5000.00,112233445566,MBB,+60123456789,2024-10-15"
        assert len(lines) == 4

    def test_csv_quotes_commas(self, fixed_grid):
        records = export_records(fixed_grid)[:1]
        records[0].data["name"] = "Ahmad, Ali"
        assert '"Ahmad, Ali"' in render_csv(records, ["name"])

    def test_json(self, fixed_grid):
        exported_at = datetime(2024, 11, 1, 9, 0, tzinfo=timezone.utc)
        document = json.loads(render_json(export_records(fixed_grid), fixed_grid.columns, exported_at))
        assert document["totalRows"] == 3
        assert document["exportedAt"] == "2024-11-01T09:00:00+00:00"
        assert document["rows"][1]["accountNumber"] == "5566778899"

    def test_maybank(self, fixed_grid):
        content = render_maybank_bulk(export_records(fixed_grid), payment_date=date(2024, 11, 1))
        lines = content.split("\n")
        assert lines[0] == MAYBANK_HEADER
        assert lines[1] == "D|20241101|20241101|MYR|5000.00|REF000001|Ali Ahmad|112233445566|MBB"
        assert lines[3].startswith("D|20241101|20241101|MYR|5000.00|REF000003|Tenaga Nasional")

    def test_cimb(self, fixed_grid):
        content = render_cimb_bulk(export_records(fixed_grid))
        lines = content.split("\n")
        assert lines[0] == CIMB_HEADER
        assert lines[1] == "1,Ali Ahmad,112233445566,MBB,5000.00,PAY1,Salary Payment"
        assert lines[2] == "2,Siti Nurhaliza,5566778899,CIMB,3200.00,PAY2,Salary Payment"
        assert not content.endswith("\n")

    def test_unknown_format(self, fixed_grid):
        with pytest.raises(ValueError):
            render(fixed_grid, "xlsx")
