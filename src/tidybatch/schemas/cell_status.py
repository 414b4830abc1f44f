"""
Cell review status (tagged union).

Every cell of an imported batch carries exactly one of these variants.
Each variant holds only the payload that is valid for its state, so there is
no "which optional fields are set" guesswork when reading a status back.

States:
- clean: nothing to review
- ai-suggestion: a proposed value is waiting to be accepted or rejected
- duplicate: the row matches a prior transaction
- critical: the value is missing or invalid and blocks payment
- live-update: a reconciliation reply just landed (transient display phase)
- validated: resolved (accepted, edited, overridden or reconciled)
- skipped: kept in the batch but excluded from review counts and payment
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union


class CellState(str, Enum):
    """Review state of a single cell."""

    CLEAN = "clean"
    AI_SUGGESTION = "ai-suggestion"
    DUPLICATE = "duplicate"
    CRITICAL = "critical"
    LIVE_UPDATE = "live-update"
    VALIDATED = "validated"
    SKIPPED = "skipped"


# States counted as "needs review"
REVIEW_STATES = frozenset(
    {CellState.AI_SUGGESTION, CellState.DUPLICATE, CellState.CRITICAL}
)


class CellSource(str, Enum):
    """Where the current status originated."""

    AI = "ai"
    DUPLICATE = "duplicate"
    MISSING = "missing"
    PDF = "pdf"
    CHANNEL = "channel"
    MANUAL = "manual"


CRITICAL_SOURCES = frozenset({CellSource.MISSING, CellSource.AI, CellSource.PDF})


@dataclass(frozen=True)
class DuplicateInfo:
    """Details of the prior transaction a row was matched against."""

    matched_row_id: str
    matched_at: datetime
    matched_data: dict[str, str] = field(default_factory=dict)
    similarity: float = 1.0

    def to_dict(self) -> dict:
        return {
            "matched_row_id": self.matched_row_id,
            "matched_at": self.matched_at.isoformat(),
            "matched_data": dict(self.matched_data),
            "similarity": self.similarity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DuplicateInfo":
        return cls(
            matched_row_id=data["matched_row_id"],
            matched_at=datetime.fromisoformat(data["matched_at"]),
            matched_data=dict(data.get("matched_data") or {}),
            similarity=float(data.get("similarity", 1.0)),
        )


@dataclass(frozen=True)
class Clean:
    state: ClassVar[CellState] = CellState.CLEAN


@dataclass(frozen=True)
class AISuggestion:
    """A proposed replacement value; `suggestion` is None for warnings without a fix."""

    state: ClassVar[CellState] = CellState.AI_SUGGESTION

    original_value: str
    suggestion: Optional[str] = None
    confidence: Optional[float] = None
    message: Optional[str] = None
    source: CellSource = CellSource.AI


@dataclass(frozen=True)
class Duplicate:
    state: ClassVar[CellState] = CellState.DUPLICATE

    message: str
    duplicate_info: DuplicateInfo


@dataclass(frozen=True)
class Critical:
    state: ClassVar[CellState] = CellState.CRITICAL

    message: str
    source: CellSource = CellSource.MISSING

    def __post_init__(self) -> None:
        if self.source not in CRITICAL_SOURCES:
            raise ValueError(f"critical source must be missing, ai or pdf, got: {self.source}")


@dataclass(frozen=True)
class LiveUpdate:
    state: ClassVar[CellState] = CellState.LIVE_UPDATE

    source: CellSource = CellSource.CHANNEL
    message: Optional[str] = None


@dataclass(frozen=True)
class Validated:
    state: ClassVar[CellState] = CellState.VALIDATED

    source: Optional[CellSource] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Skipped:
    state: ClassVar[CellState] = CellState.SKIPPED

    message: Optional[str] = None
    source: Optional[CellSource] = None


CellStatus = Union[Clean, AISuggestion, Duplicate, Critical, LiveUpdate, Validated, Skipped]

CLEAN = Clean()


def needs_review(status: CellStatus) -> bool:
    """True if the cell still counts towards the "needs review" total."""
    return status.state in REVIEW_STATES


def status_to_dict(status: CellStatus) -> dict[str, Any]:
    """Serialize a status for JSON storage."""
    data: dict[str, Any] = {"state": status.state.value}

    if isinstance(status, AISuggestion):
        data.update(
            original_value=status.original_value,
            suggestion=status.suggestion,
            confidence=status.confidence,
            message=status.message,
            source=status.source.value,
        )
    elif isinstance(status, Duplicate):
        data.update(message=status.message, duplicate_info=status.duplicate_info.to_dict())
    elif isinstance(status, Critical):
        data.update(message=status.message, source=status.source.value)
    elif isinstance(status, (LiveUpdate, Validated, Skipped)):
        data.update(
            message=status.message,
            source=status.source.value if status.source else None,
        )

    return data


def status_from_dict(data: dict[str, Any]) -> CellStatus:
    """Rebuild a status from `status_to_dict` output."""
    state = CellState(data["state"])
    source = CellSource(data["source"]) if data.get("source") else None

    if state == CellState.CLEAN:
        return CLEAN
    if state == CellState.AI_SUGGESTION:
        return AISuggestion(
            original_value=data.get("original_value") or "",
            suggestion=data.get("suggestion"),
            confidence=data.get("confidence"),
            message=data.get("message"),
            source=source or CellSource.AI,
        )
    if state == CellState.DUPLICATE:
        return Duplicate(
            message=data.get("message") or "",
            duplicate_info=DuplicateInfo.from_dict(data["duplicate_info"]),
        )
    if state == CellState.CRITICAL:
        return Critical(message=data.get("message") or "", source=source or CellSource.MISSING)
    if state == CellState.LIVE_UPDATE:
        return LiveUpdate(source=source or CellSource.CHANNEL, message=data.get("message"))
    if state == CellState.VALIDATED:
        return Validated(source=source, message=data.get("message"))
    return Skipped(message=data.get("message"), source=source)
