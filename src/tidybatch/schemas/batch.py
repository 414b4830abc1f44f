"""
Batch entities: rows, history entries and outbound requests.

These three entities are what a storage collaborator must round-trip without
loss. Each carries `to_dict()` / `from_dict()` for that purpose.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .cell_status import CLEAN, CellStatus, status_from_dict, status_to_dict


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class CellRef:
    """Address of one cell: (row id, column key)."""

    row_id: str
    column_key: str


@dataclass
class Row:
    """
    One imported source record.

    `locked` means an outbound reconciliation request is in flight for the
    row. Manual edits are still allowed while locked.
    """

    id: str
    row_index: int
    data: dict[str, str]
    status: dict[str, CellStatus] = field(default_factory=dict)
    locked: bool = False
    phone_number: Optional[str] = None
    outbound_thread_id: Optional[str] = None

    def get_status(self, column_key: str) -> CellStatus:
        """Status of a cell; cells without an explicit status are clean."""
        return self.status.get(column_key, CLEAN)

    def copy(self) -> "Row":
        """Detached copy (statuses are immutable, so a shallow dict copy suffices)."""
        return replace(self, data=dict(self.data), status=dict(self.status))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "row_index": self.row_index,
            "data": dict(self.data),
            "status": {key: status_to_dict(s) for key, s in self.status.items()},
            "locked": self.locked,
            "phone_number": self.phone_number,
            "outbound_thread_id": self.outbound_thread_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Row":
        return cls(
            id=data["id"],
            row_index=int(data["row_index"]),
            data=dict(data.get("data") or {}),
            status={key: status_from_dict(s) for key, s in (data.get("status") or {}).items()},
            locked=bool(data.get("locked", False)),
            phone_number=data.get("phone_number"),
            outbound_thread_id=data.get("outbound_thread_id"),
        )


class HistoryAction(str, Enum):
    """Kind of state-changing operation recorded in the ledger."""

    AI_FIX = "ai-fix"
    MANUAL = "manual"
    MANUAL_FORM = "manual-form"
    RECONCILED = "reconciled"
    UNDO = "undo"
    REDO = "redo"
    DUPLICATE_RESOLVED = "duplicate-resolved"
    CRITICAL_OVERRIDE = "critical-override"
    SKIP_ROW = "skip-row"


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one state-changing operation (the unit of undo/redo)."""

    id: str
    row_id: str
    column_key: str
    previous_value: str
    new_value: str
    action: HistoryAction
    timestamp: datetime
    reason: Optional[str] = None

    @classmethod
    def create(
        cls,
        row_id: str,
        column_key: str,
        previous_value: str,
        new_value: str,
        action: HistoryAction,
        reason: Optional[str] = None,
    ) -> "HistoryEntry":
        """Build a new entry with a fresh id and the current timestamp."""
        return cls(
            id=new_id(),
            row_id=row_id,
            column_key=column_key,
            previous_value=previous_value,
            new_value=new_value,
            action=action,
            timestamp=utcnow(),
            reason=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "row_id": self.row_id,
            "column_key": self.column_key,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=data["id"],
            row_id=data["row_id"],
            column_key=data["column_key"],
            previous_value=data.get("previous_value") or "",
            new_value=data.get("new_value") or "",
            action=HistoryAction(data["action"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason"),
        )


class RequestStatus(str, Enum):
    """Lifecycle of an outbound reconciliation request."""

    PENDING = "pending"
    REPLIED = "replied"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class RequestKind(str, Enum):
    """Which message template the request was sent with."""

    MISSING_FIELDS = "missing-fields"
    PAYMENT_CONFIRMATION = "payment-confirmation"


@dataclass
class OutboundRequest:
    """A request for data sent to a recipient over the messaging channel."""

    id: str
    row_id: str
    target_fields: tuple[str, ...]
    sent_at: datetime
    recipient_phone: str
    recipient_name: str = ""
    status: RequestStatus = RequestStatus.PENDING
    kind: RequestKind = RequestKind.MISSING_FIELDS
    form_link: Optional[str] = None
    message_sid: Optional[str] = None
    replied_at: Optional[datetime] = None
    replied_data: dict[str, str] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "row_id": self.row_id,
            "target_fields": list(self.target_fields),
            "sent_at": self.sent_at.isoformat(),
            "recipient_phone": self.recipient_phone,
            "recipient_name": self.recipient_name,
            "status": self.status.value,
            "kind": self.kind.value,
            "form_link": self.form_link,
            "message_sid": self.message_sid,
            "replied_at": self.replied_at.isoformat() if self.replied_at else None,
            "replied_data": dict(self.replied_data),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutboundRequest":
        return cls(
            id=data["id"],
            row_id=data["row_id"],
            target_fields=tuple(data.get("target_fields") or ()),
            sent_at=datetime.fromisoformat(data["sent_at"]),
            recipient_phone=data.get("recipient_phone") or "",
            recipient_name=data.get("recipient_name") or "",
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            kind=RequestKind(data.get("kind", RequestKind.MISSING_FIELDS.value)),
            form_link=data.get("form_link"),
            message_sid=data.get("message_sid"),
            replied_at=_parse_datetime(data.get("replied_at")),
            replied_data=dict(data.get("replied_data") or {}),
        )


@dataclass(frozen=True)
class ReplySubmission:
    """One inbound reply delivered by the channel's poll endpoint."""

    row_id: str
    request_id: str
    data: dict[str, str]
    submitted_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ReplySubmission":
        """Create from the poll endpoint's camelCase JSON."""
        return cls(
            row_id=data["rowId"],
            request_id=data["requestId"],
            data={str(k): "" if v is None else str(v) for k, v in (data.get("data") or {}).items()},
            submitted_at=_parse_datetime(data.get("submittedAt")),
        )
