"""Tests for the import boundary (raw rows -> initial cell states)."""

from datetime import datetime, timezone

from tidybatch.matching import DuplicateDetector
from tidybatch.review import BatchImporter
from tidybatch.review.importer import format_match_date, map_row
from tidybatch.rules import PAYROLL_RULES
from tidybatch.schemas import AISuggestion, CellSource, CellState, Critical, Duplicate

from fixtures import SAMPLE_CSV_MAPPING


class TestMapRow:
    """Tests for source -> target projection."""

    def test_identity(self):
        assert map_row({"name": "Ali", "x": "1"}, None, ["name", "amount"]) == {
            "name": "Ali",
            "amount": "",
        }

    def test_mapping(self):
        raw = {"Employee": "Ali", "Salary": 100, "Ignored": "z"}
        mapped = map_row(raw, {"Employee": "name", "Salary": "amount", "Ignored": ""}, ["name", "amount"])
        assert mapped == {"name": "Ali", "amount": "100"}


class TestImportRows:
    """Tests for BatchImporter.import_rows."""

    def test_payroll_scenario(self):
        importer = BatchImporter(PAYROLL_RULES)
        [row] = importer.import_rows(
            [{"name": "mr. ali ahmad", "amount": "rm 5,000", "bank": "maybank"}]
        )

        name = row.get_status("name")
        assert isinstance(name, AISuggestion)
        assert name.suggestion == "Ali Ahmad"
        assert name.confidence == 0.95
        assert name.original_value == "mr. ali ahmad"
        assert row.get_status("amount").suggestion == "5000.00"
        assert row.get_status("bank").suggestion == "MBB"
        assert row.get_status("accountNumber") == Critical(
            message="Missing required field: Account Number", source=CellSource.MISSING
        )
        assert row.data["name"] == "mr. ali ahmad"

    def test_row_ids_and_indexes(self, importer, sample_rows):
        rows = importer.import_rows(sample_rows)
        assert [r.row_index for r in rows] == [1, 2, 3]
        assert len({r.id for r in rows}) == 3

    def test_phone_number_is_normalized(self, importer, sample_rows):
        rows = importer.import_rows(sample_rows)
        assert rows[0].phone_number == "+60123456789"
        assert rows[2].phone_number is None

    def test_red_error_overrides_change(self):
        importer = BatchImporter(PAYROLL_RULES)
        [row] = importer.import_rows([{"name": "Ali", "amount": "-5", "accountNumber": "1234567890"}])
        assert row.get_status("amount") == Critical(
            message="Amount must be positive", source=CellSource.AI
        )

    def test_yellow_error_does_not_override_change(self):
        importer = BatchImporter(PAYROLL_RULES)
        [row] = importer.import_rows(
            [{"name": "Ali", "amount": "RM 60,000", "accountNumber": "1234567890"}]
        )
        status = row.get_status("amount")
        assert status.suggestion == "60000.00"
        assert status.message == "Removed currency symbol, standardized decimal places"

    def test_yellow_error_without_change(self):
        importer = BatchImporter(PAYROLL_RULES)
        [row] = importer.import_rows(
            [{"name": "Ali", "amount": "60000.00", "accountNumber": "1234567890"}]
        )
        status = row.get_status("amount")
        assert status.suggestion is None
        assert status.message == "High value transaction >RM50,000 - requires BNM approval"

    def test_unrepresentable_values_do_not_abort_import(self, importer):
        """Oversized amounts and year-zero dates become review cells."""
        grid = importer.build_grid(
            [
                {"name": "Ali", "amount": "RM " + "9" * 27, "accountNumber": "1234567890"},
                {"name": "Siti", "amount": "100", "date": "01/01/0000"},
            ],
            register_history=True,
        )

        first, second = grid.rows
        assert first.get_status("amount") == Critical(
            message="Invalid amount format", source=CellSource.AI
        )
        assert second.data["date"] == "01/01/0000"
        assert second.get_status("date").state != CellState.CLEAN

    def test_duplicate_against_history(self, importer, sample_rows):
        rows = importer.import_rows(sample_rows)
        status = rows[2].get_status("amount")

        assert isinstance(status, Duplicate)
        assert status.message == "Potential duplicate: Same payee+amount paid on 15 Oct 2024"
        assert status.duplicate_info.matched_row_id == "hist-001"
        assert status.duplicate_info.similarity == 1.0

    def test_duplicate_uses_cleaned_values(self, importer):
        [row] = importer.import_rows(
            [{"name": "tenaga nasional", "amount": "RM 5,000", "accountNumber": "1234-567-890"}]
        )
        assert row.get_status("amount").state == CellState.DUPLICATE

    def test_duplicate_does_not_replace_critical(self, detector):
        importer = BatchImporter(PAYROLL_RULES, detector=detector, check_column="accountNumber")
        [row] = importer.import_rows([{"name": "Tenaga Nasional", "amount": "5000.00"}])
        assert row.get_status("accountNumber").state == CellState.CRITICAL

    def test_intra_batch_duplicates(self):
        detector = DuplicateDetector()
        importer = BatchImporter(PAYROLL_RULES, detector=detector)
        payment = {"name": "Ali Ahmad", "amount": "100.00", "accountNumber": "1234567890"}

        first, second = importer.import_rows([payment, dict(payment)], register_history=True)

        assert first.get_status("amount").state == CellState.CLEAN
        assert second.get_status("amount").duplicate_info.matched_row_id == first.id
        assert detector.stats()["count"] == 2

    def test_history_not_registered_by_default(self, detector, sample_rows):
        importer = BatchImporter(PAYROLL_RULES, detector=detector)
        importer.import_rows(sample_rows)
        assert detector.stats()["count"] == 4

    def test_mapping_and_extra_columns(self):
        importer = BatchImporter(PAYROLL_RULES)
        mapping = dict(SAMPLE_CSV_MAPPING, Department="department")
        [row] = importer.import_rows(
            [{"Employee": "Ali", "Salary": "100", "Account": "1234567890", "Department": "Ops"}],
            mapping=mapping,
        )
        assert row.data["name"] == "Ali"
        assert row.data["department"] == "Ops"
        assert "department" not in row.status


class TestBuildGrid:
    """Tests for BatchImporter.build_grid."""

    def test_columns_and_name(self, importer, sample_rows):
        grid = importer.build_grid(sample_rows, name="october")
        assert grid.name == "october"
        assert grid.columns == PAYROLL_RULES.keys
        assert len(grid) == 3

    def test_empty_import(self, importer):
        grid = importer.build_grid([])
        assert grid.columns == PAYROLL_RULES.keys
        assert grid.summary().total_rows == 0

    def test_match_date_format(self):
        assert format_match_date(datetime(2024, 11, 5, tzinfo=timezone.utc)) == "5 Nov 2024"
