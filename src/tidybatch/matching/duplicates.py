"""
Duplicate detection against a rolling transaction history.

The detector keeps one in-memory index from fingerprint to the list of
transactions that produced it. Every transaction is indexed under its exact
fingerprint and each of its partial fingerprints (see schemas.fingerprint),
so a lookup is a dictionary access per fingerprint kind.

Lookup order:
1. exact (name|amount|account)    -> similarity 1.0
2. name|amount, then amount|account -> partial similarity (0.8 by default)

Buckets are append-only: adding a transaction never replaces an earlier one
with the same fingerprint, so older matches stay discoverable. Checking never
mutates the index; registering a batch against itself is an explicit call to
`add_to_history`.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from ..schemas.batch import utcnow
from ..schemas.fingerprint import compute_fingerprints, normalize_for_fingerprint

if TYPE_CHECKING:
    from ..schemas.batch import Row

logger = logging.getLogger(__name__)

EXACT_SIMILARITY = 1.0
DEFAULT_PARTIAL_SIMILARITY = 0.8


@dataclass(frozen=True)
class TransactionRecord:
    """A committed transaction in the duplicate history."""

    id: str
    name: str
    amount: str
    account_number: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(
        cls,
        row: Row,
        name_key: str = "name",
        amount_key: str = "amount",
        account_key: str = "accountNumber",
        created_at: Optional[datetime] = None,
    ) -> TransactionRecord:
        """Build a record from a (cleaned) batch row."""
        return cls(
            id=row.id,
            name=row.data.get(name_key, ""),
            amount=row.data.get(amount_key, ""),
            account_number=row.data.get(account_key, ""),
            created_at=created_at or utcnow(),
        )

    def matched_data(self) -> dict[str, str]:
        return {
            "name": self.name,
            "amount": self.amount,
            "accountNumber": self.account_number,
        }


@dataclass(frozen=True)
class DuplicateMatch:
    """A prior transaction matching the checked one."""

    fingerprint: str
    record: TransactionRecord
    similarity: float
    kind: str

    @property
    def matched_row_id(self) -> str:
        return self.record.id

    @property
    def matched_at(self) -> datetime:
        return self.record.created_at

    @property
    def matched_data(self) -> dict[str, str]:
        return self.record.matched_data()

    @property
    def is_exact(self) -> bool:
        return self.kind == "exact"


@dataclass(frozen=True)
class DuplicateCheck:
    """
    Outcome of a duplicate check.

    `checked=False` means the check was not performed (name or amount was
    empty), which is different from `checked=True, match=None` ("no duplicate").
    """

    checked: bool
    match: Optional[DuplicateMatch] = None

    @property
    def is_duplicate(self) -> bool:
        return self.match is not None


NOT_CHECKED = DuplicateCheck(checked=False)


class DuplicateDetector:
    """
    Fingerprint index over the transaction history.

    Shared by every duplicate check of a process; inserts and lookups are
    serialized by an internal lock.
    """

    def __init__(self, partial_similarity: float = DEFAULT_PARTIAL_SIMILARITY) -> None:
        self.partial_similarity = partial_similarity
        self._index: dict[str, list[TransactionRecord]] = defaultdict(list)
        self._records: list[TransactionRecord] = []
        self._lock = threading.Lock()

    def add_to_history(self, record: TransactionRecord) -> None:
        """Index a transaction under all of its fingerprints (append-only)."""
        fingerprints = compute_fingerprints(record.name, record.amount, record.account_number)
        with self._lock:
            for fp in fingerprints.all():
                self._index[fp].append(record)
            self._records.append(record)
        logger.debug("Added %s to transaction history (%s)", record.id, fingerprints.exact)

    def check_for_duplicate(
        self,
        name: Optional[str],
        amount: Optional[str],
        account_number: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> DuplicateCheck:
        """
        Look for a prior transaction matching (name, amount, account).

        Args:
            name: Payee name
            amount: Amount (normalized the same way as the history)
            account_number: Account number
            exclude_id: Record id to ignore (a row re-checked against itself)

        Returns:
            DuplicateCheck; not checked when name or amount is empty
        """
        if not normalize_for_fingerprint(name) or not normalize_for_fingerprint(amount):
            return NOT_CHECKED

        fingerprints = compute_fingerprints(name, amount, account_number)
        candidates = [("exact", fingerprints.exact, EXACT_SIMILARITY)]
        if fingerprints.name_amount:
            candidates.append(("name+amount", fingerprints.name_amount, self.partial_similarity))
        if fingerprints.amount_account:
            candidates.append(
                ("amount+account", fingerprints.amount_account, self.partial_similarity)
            )

        with self._lock:
            for kind, fp, similarity in candidates:
                for record in self._index.get(fp, ()):
                    if exclude_id and record.id == exclude_id:
                        continue
                    logger.info(
                        "%s duplicate found: %s matches %s",
                        "Exact" if kind == "exact" else "Partial",
                        fp,
                        record.id,
                    )
                    return DuplicateCheck(
                        checked=True,
                        match=DuplicateMatch(
                            fingerprint=fp,
                            record=record,
                            similarity=similarity,
                            kind=kind,
                        ),
                    )

        return DuplicateCheck(checked=True)

    def seed(self, records: Iterable[TransactionRecord]) -> int:
        """Add several records; returns how many were added."""
        count = 0
        for record in records:
            self.add_to_history(record)
            count += 1
        logger.info("Seeded transaction history with %d records", count)
        return count

    def clear(self) -> None:
        with self._lock:
            self._index.clear()
            self._records.clear()
        logger.info("Transaction history cleared")

    def stats(self) -> dict[str, int]:
        """Number of records and of distinct fingerprints in the index."""
        with self._lock:
            return {"count": len(self._records), "fingerprints": len(self._index)}

    @property
    def records(self) -> list[TransactionRecord]:
        with self._lock:
            return list(self._records)


def demo_history() -> list[TransactionRecord]:
    """Sample payment history used by the demo flows."""

    def at(year: int, month: int, day: int) -> datetime:
        return datetime(year, month, day, tzinfo=timezone.utc)

    return [
        TransactionRecord("hist-001", "Tenaga Nasional", "5000.00", "1234567890", at(2024, 10, 15)),
        TransactionRecord("hist-002", "Ahmad Bin Abdullah", "3500.00", "9876543210", at(2024, 10, 20)),
        TransactionRecord("hist-003", "Syarikat ABC Sdn Bhd", "12500.00", "5555666677", at(2024, 11, 1)),
        TransactionRecord("hist-004", "Telekom Malaysia", "850.00", "1122334455", at(2024, 11, 5)),
    ]
