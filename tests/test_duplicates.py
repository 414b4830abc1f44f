"""Tests for fingerprints and the duplicate detector."""

from datetime import timedelta

import pytest

from tidybatch.matching import DuplicateDetector, TransactionRecord, demo_history
from tidybatch.schemas import (
    FINGERPRINT_LENGTH,
    Row,
    compute_fingerprint,
    compute_fingerprints,
    normalize_for_fingerprint,
    utcnow,
)


class TestFingerprints:
    """Tests for fingerprint computation."""

    def test_normalization(self):
        assert normalize_for_fingerprint("Tenaga Nasional Bhd.") == "tenaganasionalbhd"
        assert normalize_for_fingerprint(None) == ""

    def test_stable_and_case_insensitive(self):
        a = compute_fingerprint("Tenaga Nasional", "500.00", "800111222")
        b = compute_fingerprint("TENAGA  NASIONAL", "500.00", "800-111-222")
        assert a == b
        assert len(a) == FINGERPRINT_LENGTH

    def test_kinds_do_not_collide(self):
        fps = compute_fingerprints("Ali", "500.00", "800111222")
        assert len(set(fps.all())) == 3

    def test_partials_need_both_components(self):
        fps = compute_fingerprints("Ali", "500.00", "")
        assert fps.amount_account is None
        assert fps.partials() == [fps.name_amount]


class TestDuplicateDetector:
    """Tests for DuplicateDetector."""

    @pytest.fixture
    def detector(self):
        return DuplicateDetector()

    @pytest.fixture
    def yesterday(self):
        return utcnow() - timedelta(days=1)

    @pytest.fixture
    def tenaga(self, yesterday):
        return TransactionRecord(
            id="tx-1",
            name="Tenaga Nasional",
            amount="500.00",
            account_number="800111222",
            created_at=yesterday,
        )

    def test_exact_match(self, detector, tenaga, yesterday):
        """Identical triple matches with similarity 1.0 and the original date."""
        detector.add_to_history(tenaga)

        check = detector.check_for_duplicate("Tenaga Nasional", "500.00", "800111222")

        assert check.checked
        assert check.is_duplicate
        assert check.match.similarity == 1.0
        assert check.match.is_exact
        assert check.match.matched_at == yesterday
        assert check.match.matched_row_id == "tx-1"
        assert check.match.matched_data == {
            "name": "Tenaga Nasional",
            "amount": "500.00",
            "accountNumber": "800111222",
        }

    def test_changed_account_is_partial(self, detector, tenaga):
        detector.add_to_history(tenaga)
        check = detector.check_for_duplicate("Tenaga Nasional", "500.00", "999999999")
        assert check.match.similarity == 0.8
        assert check.match.kind == "name+amount"

    def test_changed_name_is_partial(self, detector, tenaga):
        detector.add_to_history(tenaga)
        check = detector.check_for_duplicate("TNB", "500.00", "800111222")
        assert check.match.similarity == 0.8
        assert check.match.kind == "amount+account"

    def test_changed_amount_is_no_match(self, detector, tenaga):
        detector.add_to_history(tenaga)
        check = detector.check_for_duplicate("Tenaga Nasional", "501.00", "800111222")
        assert check.checked
        assert check.match is None

    def test_single_field_change_never_exact(self, detector, tenaga):
        detector.add_to_history(tenaga)
        for triple in [
            ("Other Payee", "500.00", "800111222"),
            ("Tenaga Nasional", "1.00", "800111222"),
            ("Tenaga Nasional", "500.00", "1"),
        ]:
            check = detector.check_for_duplicate(*triple)
            assert check.match is None or check.match.similarity == 0.8

    def test_missing_name_or_amount_not_checked(self, detector, tenaga):
        detector.add_to_history(tenaga)
        assert detector.check_for_duplicate("", "500.00", "800111222").checked is False
        assert detector.check_for_duplicate("Tenaga Nasional", None, "800111222").checked is False

    def test_exclude_id(self, detector, tenaga):
        detector.add_to_history(tenaga)
        check = detector.check_for_duplicate(
            "Tenaga Nasional", "500.00", "800111222", exclude_id="tx-1"
        )
        assert check.match is None

    def test_buckets_are_append_only(self, detector, tenaga):
        """A later record with the same triple does not hide the earlier one."""
        detector.add_to_history(tenaga)
        detector.add_to_history(
            TransactionRecord("tx-2", "Tenaga Nasional", "500.00", "800111222")
        )
        check = detector.check_for_duplicate("Tenaga Nasional", "500.00", "800111222")
        assert check.match.matched_row_id == "tx-1"

        check = detector.check_for_duplicate(
            "Tenaga Nasional", "500.00", "800111222", exclude_id="tx-1"
        )
        assert check.match.matched_row_id == "tx-2"

    def test_check_does_not_mutate(self, detector):
        detector.check_for_duplicate("Ali", "1.00", "1234567890")
        assert detector.stats() == {"count": 0, "fingerprints": 0}

    def test_seed_stats_clear(self, detector):
        assert detector.seed(demo_history()) == 4
        assert detector.stats() == {"count": 4, "fingerprints": 12}
        detector.clear()
        assert detector.stats()["count"] == 0
        assert detector.records == []

    def test_custom_partial_similarity(self, tenaga):
        detector = DuplicateDetector(partial_similarity=0.6)
        detector.add_to_history(tenaga)
        check = detector.check_for_duplicate("Tenaga Nasional", "500.00", "")
        assert check.match.similarity == 0.6

    def test_record_from_row(self):
        row = Row(
            id="row-1",
            row_index=1,
            data={"name": "Ali Ahmad", "amount": "5000.00", "accountNumber": "1234567890"},
        )
        record = TransactionRecord.from_row(row)
        assert record.id == "row-1"
        assert record.account_number == "1234567890"
