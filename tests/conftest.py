"""Test fixtures and utilities."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tidybatch.matching import DuplicateDetector, demo_history
from tidybatch.review import BatchGrid, BatchImporter
from tidybatch.rules import PAYROLL_RULES
from tidybatch.services.reconciliation import SendResult

from fixtures import SAMPLE_ROWS


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 11, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def sample_rows() -> list[dict]:
    """Raw rows keyed by field key."""
    return [dict(row) for row in SAMPLE_ROWS]


@pytest.fixture
def detector() -> DuplicateDetector:
    """Detector seeded with the demo payment history."""
    detector = DuplicateDetector()
    detector.seed(demo_history())
    return detector


@pytest.fixture
def importer(detector) -> BatchImporter:
    return BatchImporter(PAYROLL_RULES, detector=detector)


@pytest.fixture
def grid(importer, sample_rows) -> BatchGrid:
    """Batch built from SAMPLE_ROWS.

    Row 1: ai-suggestions on every column
    Row 2: critical (missing) account number
    Row 3: duplicate amount (matches hist-001)
    """
    return importer.build_grid(sample_rows, name="october-payroll")


@pytest.fixture
def row_ids(grid) -> list[str]:
    return grid.row_ids


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel() -> MagicMock:
    """Messaging channel that accepts every send and has no replies."""
    channel = MagicMock()
    channel.send.return_value = SendResult(success=True, message_sid="SM0001")
    channel.poll.return_value = []
    return channel


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"
