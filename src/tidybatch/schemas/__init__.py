"""
Canonical schemas shared by every module.

Cell statuses, batch entities and fingerprints live here; the rule engine,
grid, coordinator and state store all map into and out of these types.
"""

from .batch import (
    CellRef,
    HistoryAction,
    HistoryEntry,
    OutboundRequest,
    ReplySubmission,
    RequestKind,
    RequestStatus,
    Row,
    new_id,
    utcnow,
)
from .cell_status import (
    CLEAN,
    REVIEW_STATES,
    AISuggestion,
    CellSource,
    CellState,
    CellStatus,
    Clean,
    Critical,
    Duplicate,
    DuplicateInfo,
    LiveUpdate,
    Skipped,
    Validated,
    needs_review,
    status_from_dict,
    status_to_dict,
)
from .fingerprint import (
    FINGERPRINT_LENGTH,
    FingerprintSet,
    compute_fingerprint,
    compute_fingerprints,
    normalize_for_fingerprint,
)

__all__ = [
    # Cell status (tagged union)
    "CellState",
    "CellSource",
    "CellStatus",
    "Clean",
    "AISuggestion",
    "Duplicate",
    "DuplicateInfo",
    "Critical",
    "LiveUpdate",
    "Validated",
    "Skipped",
    "CLEAN",
    "REVIEW_STATES",
    "needs_review",
    "status_to_dict",
    "status_from_dict",
    # Batch entities
    "Row",
    "CellRef",
    "HistoryAction",
    "HistoryEntry",
    "OutboundRequest",
    "RequestKind",
    "RequestStatus",
    "ReplySubmission",
    "new_id",
    "utcnow",
    # Fingerprints
    "FINGERPRINT_LENGTH",
    "FingerprintSet",
    "compute_fingerprint",
    "compute_fingerprints",
    "normalize_for_fingerprint",
]
