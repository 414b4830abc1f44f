"""Duplicate detection against prior transaction history."""

from tidybatch.matching.duplicates import (
    DuplicateCheck,
    DuplicateDetector,
    DuplicateMatch,
    TransactionRecord,
    demo_history,
)

__all__ = [
    "DuplicateCheck",
    "DuplicateDetector",
    "DuplicateMatch",
    "TransactionRecord",
    "demo_history",
]
