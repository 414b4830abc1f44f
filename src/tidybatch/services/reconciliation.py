"""Reconciliation coordinator.

Turns missing or disputed cells into outbound requests over a messaging
channel, and turns the replies into grid transitions:

- request_missing_data() locks the row, records a pending request and sends
  the "missing fields" message; a failed send rolls all of that back
- apply_reply() writes the replied values (cell -> live-update), records one
  reconciled history entry per field and unlocks the row
- submit_form() writes values entered on the resolution form (cell ->
  validated) and answers the request the same way a reply does
- poll() pulls submitted replies from the channel and applies each request
  at most once, however often the channel redelivers it
- settle_live_updates() promotes live-update cells to validated once the
  display delay has elapsed (run at the start of every poll)
- expire_stale() gives up on requests older than the TTL

The channel is the only I/O collaborator. Manual edits and replies race with
last-write-wins semantics: a reply always reads the cell's current value as
its undo baseline.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from ..review.grid import GridError
from ..rules.behaviors import DEFAULT_COUNTRY, normalize_phone_number
from ..rules.payroll import ACCOUNT_FIELD, AMOUNT_FIELD, BANK_FIELD, DATE_FIELD, NAME_FIELD, PHONE_FIELD
from ..schemas.batch import (
    CellRef,
    HistoryEntry,
    OutboundRequest,
    ReplySubmission,
    RequestKind,
    RequestStatus,
    new_id,
    utcnow,
)
from .messages import (
    ALREADY_PROCESSED_REPLY,
    DEFAULT_SENDER,
    HELP_REPLY,
    NO_PENDING_REPLY,
    build_form_link,
    build_missing_fields_message,
    build_payment_details_message,
    build_thank_you_reply,
    mask_phone,
)

if TYPE_CHECKING:
    from ..config import Config
    from ..review.grid import BatchGrid

logger = logging.getLogger(__name__)

CONFIRMATION_REPLIES = frozenset({"ok", "okay", "yes", "y", "ya"})
CONFIRMED_REPLY = "Thank you! Your payment details are confirmed."
EXPIRED_MESSAGE = "Request expired - no reply received"
PAYMENT_DETAIL_FIELDS = (AMOUNT_FIELD, BANK_FIELD, ACCOUNT_FIELD, DATE_FIELD)


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    pass


class TransportError(ReconciliationError):
    """Send or poll failed; optimistic state has been rolled back. Safe to retry."""

    retryable = True

    def __init__(self, message: str, request_id: str | None = None):
        self.request_id = request_id
        super().__init__(message)


class UnknownRequestError(ReconciliationError, KeyError):
    """A reply referenced a request this coordinator never issued."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Unknown request: {request_id}")

    def __str__(self) -> str:
        return f"Unknown request: {self.request_id}"


class MissingRecipientError(ReconciliationError):
    """The row has no usable phone number to send a request to."""

    pass


@dataclass(frozen=True)
class SendResult:
    """Outcome of a channel send."""

    success: bool
    message_sid: str | None = None
    error: str | None = None


class MessageChannel(Protocol):
    """Transport used by the coordinator (see channel_client.WhatsAppChannel)."""

    def send(self, to: str, body: str) -> SendResult: ...

    def poll(self) -> list[ReplySubmission]: ...


class ReconciliationCoordinator:
    """Coordinates outbound requests and inbound replies for one batch.

    Usage:
        coordinator = ReconciliationCoordinator(grid, channel)
        request = coordinator.request_missing_data(row_id, ["bank"])
        ...
        applied = coordinator.poll()
    """

    def __init__(
        self,
        grid: BatchGrid,
        channel: MessageChannel,
        form_base_url: str = "http://localhost:3000",
        sender_name: str = DEFAULT_SENDER,
        live_update_delay: timedelta = timedelta(seconds=2),
        request_ttl: timedelta = timedelta(hours=24),
        default_country: str = DEFAULT_COUNTRY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the coordinator.

        Args:
            grid: Batch whose cells receive the replies.
            channel: Messaging transport.
            form_base_url: Base URL of the resolution form.
            sender_name: Signature at the end of outbound messages.
            live_update_delay: Time a reconciled cell stays in live-update.
            request_ttl: Age after which a pending request expires.
            default_country: Country used to normalize local phone numbers.
            clock: Time source (UTC).
        """
        self.grid = grid
        self.channel = channel
        self.form_base_url = form_base_url
        self.sender_name = sender_name
        self.live_update_delay = live_update_delay
        self.request_ttl = request_ttl
        self.default_country = default_country
        self.clock = clock

        self._requests: dict[str, OutboundRequest] = {}
        self._applied: set[str] = set()
        self._live: dict[CellRef, datetime] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        grid: BatchGrid,
        channel: MessageChannel,
        config: Config,
    ) -> ReconciliationCoordinator:
        """Build a coordinator from application config."""
        return cls(
            grid,
            channel,
            form_base_url=config.channel.form_base_url,
            sender_name=config.channel.sender_name,
            live_update_delay=timedelta(seconds=config.reconciliation.live_update_delay_seconds),
            request_ttl=timedelta(hours=config.reconciliation.request_ttl_hours),
            default_country=config.channel.default_country,
        )

    # ------------------------------------------------------------------
    # Request bookkeeping
    # ------------------------------------------------------------------

    @property
    def requests(self) -> list[OutboundRequest]:
        with self._lock:
            return list(self._requests.values())

    def get_request(self, request_id: str) -> OutboundRequest:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise UnknownRequestError(request_id)
            return request

    def pending_requests(self, row_id: str | None = None) -> list[OutboundRequest]:
        with self._lock:
            return [
                r
                for r in self._requests.values()
                if r.is_pending and (row_id is None or r.row_id == row_id)
            ]

    def load_requests(self, requests: Iterable[OutboundRequest]) -> None:
        """Restore persisted requests; replied ones count as already applied."""
        with self._lock:
            self._requests = {r.id: r for r in requests}
            self._applied = {
                r.id for r in self._requests.values() if r.status == RequestStatus.REPLIED
            }
            self._live.clear()

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._applied.clear()
            self._live.clear()

    def _latest_pending(self, row_id: str) -> OutboundRequest | None:
        pending = self.pending_requests(row_id)
        return max(pending, key=lambda r: r.sent_at) if pending else None

    def _sync_row_lock(self, row_id: str) -> None:
        """Lock the row to its newest pending request, or unlock it."""
        latest = self._latest_pending(row_id)
        if latest is None:
            self.grid.unlock_row(row_id)
        else:
            self.grid.lock_row(row_id, latest.id)

    def _resolve_recipient(self, row_id: str, channel_target: str | None) -> str:
        row = self.grid.get_row(row_id)
        target = channel_target or row.phone_number or row.data.get(PHONE_FIELD, "")
        phone = normalize_phone_number(target, self.default_country) if target else None
        if not phone:
            raise MissingRecipientError(f"No usable phone number for row {row_id}")
        return phone

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def request_missing_data(
        self,
        row_id: str,
        field_keys: Sequence[str],
        channel_target: str | None = None,
        recipient_name: str | None = None,
    ) -> OutboundRequest:
        """Ask the row's recipient for missing field values.

        A pending request already covering the fields is reused. One for
        other fields is superseded by one covering both sets.

        Raises:
            TransportError: Send failed (row lock and request rolled back)
            MissingRecipientError: No phone number available
        """
        return self._send_request(
            row_id,
            field_keys,
            RequestKind.MISSING_FIELDS,
            channel_target,
            recipient_name,
        )

    def send_payment_confirmation(
        self,
        row_id: str,
        channel_target: str | None = None,
        recipient_name: str | None = None,
    ) -> OutboundRequest:
        """Send the "confirm payment details" message for a row."""
        fields = [key for key in PAYMENT_DETAIL_FIELDS if key in self.grid.columns]
        return self._send_request(
            row_id,
            fields,
            RequestKind.PAYMENT_CONFIRMATION,
            channel_target,
            recipient_name,
        )

    def _render(self, request: OutboundRequest, data: Mapping[str, str]) -> str:
        if request.kind == RequestKind.PAYMENT_CONFIRMATION:
            return build_payment_details_message(
                request.recipient_name,
                {key: data.get(key, "") for key in PAYMENT_DETAIL_FIELDS},
                request.form_link or "",
                sender=self.sender_name,
                ttl_hours=int(self.request_ttl.total_seconds() // 3600),
            )
        return build_missing_fields_message(
            request.recipient_name,
            list(request.target_fields),
            request.form_link or "",
            sender=self.sender_name,
            ttl_hours=int(self.request_ttl.total_seconds() // 3600),
        )

    def _send_request(
        self,
        row_id: str,
        field_keys: Sequence[str],
        kind: RequestKind,
        channel_target: str | None,
        recipient_name: str | None,
    ) -> OutboundRequest:
        fields = tuple(dict.fromkeys(field_keys))
        if not fields:
            raise ValueError("At least one field is required")

        # Reserve the row and register the request; the send runs unlocked
        with self._lock:
            for key in fields:
                self.grid.get_status(row_id, key)

            existing = self._latest_pending(row_id)
            if existing is not None and existing.kind == kind:
                if set(fields) <= set(existing.target_fields):
                    logger.info("Reusing pending request %s for row %s", existing.id, row_id)
                    return existing
                fields = tuple(dict.fromkeys(existing.target_fields + fields))

            phone = self._resolve_recipient(row_id, channel_target)
            row = self.grid.get_row(row_id)
            request = OutboundRequest(
                id=new_id(),
                row_id=row_id,
                target_fields=fields,
                sent_at=self.clock(),
                recipient_phone=phone,
                recipient_name=recipient_name or row.data.get(NAME_FIELD) or "there",
                kind=kind,
            )
            request.form_link = build_form_link(self.form_base_url, request.id)
            body = self._render(request, row.data)

            previous_lock = self.grid.lock_row(row_id, request.id)
            self._requests[request.id] = request

        try:
            result = self.channel.send(phone, body)
        except Exception as e:
            with self._lock:
                self._rollback(request, previous_lock)
            logger.exception("Send failed for row %s (%s)", row_id, mask_phone(phone))
            raise TransportError(f"Failed to send request: {e}", request.id) from e

        with self._lock:
            if not result.success:
                self._rollback(request, previous_lock)
                logger.error(
                    "Send rejected for row %s (%s): %s", row_id, mask_phone(phone), result.error
                )
                raise TransportError(result.error or "Failed to send request", request.id)

            request.message_sid = result.message_sid
            if existing is not None and existing.is_pending:
                existing.status = RequestStatus.SUPERSEDED
                logger.info("Request %s superseded by %s", existing.id, request.id)

            logger.info(
                "Sent %s request %s for row %s to %s (fields: %s)",
                kind.value,
                request.id,
                row_id,
                mask_phone(phone),
                ", ".join(fields),
            )
            return request

    def _rollback(self, request: OutboundRequest, previous_lock: tuple[bool, str | None]) -> None:
        self._requests.pop(request.id, None)
        if self.grid.get_row(request.row_id).outbound_thread_id != request.id:
            return
        if self._latest_pending(request.row_id) is not None:
            self._sync_row_lock(request.row_id)
        else:
            locked, thread_id = previous_lock
            self.grid.restore_lock(request.row_id, locked, thread_id)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def apply_reply(self, request_id: str, fields: Mapping[str, str]) -> list[HistoryEntry]:
        """Apply a reply to its request's row.

        Returns:
            History entries written (empty if the reply was already applied)

        Raises:
            UnknownRequestError: The coordinator never issued this request
        """
        with self._lock:
            request = self.get_request(request_id)
            if request_id in self._applied:
                logger.warning("Reply for request %s already applied, ignoring", request_id)
                return []

            values = self._known_values(request_id, fields)
            if request.status != RequestStatus.PENDING:
                logger.warning(
                    "Applying late reply for %s request %s", request.status.value, request_id
                )

            now = self.clock()
            entries = self.grid.apply_reconciled(
                request.row_id,
                values,
                message=f"Provided by {request.recipient_name}" if request.recipient_name else None,
            )
            for entry in entries:
                self._live[CellRef(entry.row_id, entry.column_key)] = now

            request.status = RequestStatus.REPLIED
            request.replied_at = now
            request.replied_data = dict(values)
            self._applied.add(request_id)
            self._sync_row_lock(request.row_id)

            logger.info(
                "Applied reply %s to row %s (%d fields)", request_id, request.row_id, len(entries)
            )
            return entries

    def submit_form(self, request_id: str, fields: Mapping[str, str]) -> list[HistoryEntry]:
        """Apply values entered on the request's resolution form.

        The cells go straight to validated (manual-form entries) and the
        request counts as replied, so a redelivery of the same submission by
        poll() is skipped and expiry leaves the row alone.

        Returns:
            History entries written (empty if the request was already answered)

        Raises:
            UnknownRequestError: The coordinator never issued this request
        """
        with self._lock:
            request = self.get_request(request_id)
            if request_id in self._applied:
                logger.warning("Form for request %s already applied, ignoring", request_id)
                return []

            values = self._known_values(request_id, fields)
            entries = [
                self.grid.submit_form_value(request.row_id, key, value)
                for key, value in values.items()
            ]

            request.status = RequestStatus.REPLIED
            request.replied_at = self.clock()
            request.replied_data = dict(values)
            self._applied.add(request_id)
            self._sync_row_lock(request.row_id)

            logger.info(
                "Form for request %s filled %d fields on row %s",
                request_id,
                len(entries),
                request.row_id,
            )
            return entries

    def _known_values(self, request_id: str, fields: Mapping[str, str]) -> dict[str, str]:
        columns = set(self.grid.columns)
        values = {}
        for key, value in fields.items():
            if key in columns:
                values[key] = "" if value is None else str(value)
            else:
                logger.warning("Reply for %s has unknown field %s, ignoring", request_id, key)
        return values

    def receive_text_reply(self, request_id: str, text: str) -> list[HistoryEntry]:
        """Apply a free-text reply to the request's first target field."""
        request = self.get_request(request_id)
        return self.apply_reply(request_id, {request.target_fields[0]: text.strip()})

    def confirm_request(self, request_id: str) -> OutboundRequest:
        """Mark a payment confirmation as confirmed without changing values."""
        with self._lock:
            request = self.get_request(request_id)
            if request_id in self._applied:
                return request
            request.status = RequestStatus.REPLIED
            request.replied_at = self.clock()
            self._applied.add(request_id)
            self._sync_row_lock(request.row_id)
            logger.info("Payment details confirmed for row %s", request.row_id)
            return request

    def handle_inbound_message(self, phone: str, body: str) -> str:
        """Handle a free-text message from a recipient (webhook path).

        The newest pending request for the sender's number receives the text.

        Returns:
            Reply text to send back to the sender
        """
        text = (body or "").strip()
        if not text:
            return HELP_REPLY

        normalized = normalize_phone_number(phone, self.default_country)
        with self._lock:
            candidates = [r for r in self.pending_requests() if r.recipient_phone == normalized]
            if not candidates:
                logger.info("No pending request for %s", mask_phone(normalized))
                return NO_PENDING_REPLY

            request = max(candidates, key=lambda r: r.sent_at)
            if not request.target_fields:
                return ALREADY_PROCESSED_REPLY

            if (
                request.kind == RequestKind.PAYMENT_CONFIRMATION
                and text.lower() in CONFIRMATION_REPLIES
            ):
                self.confirm_request(request.id)
                return CONFIRMED_REPLY

            field_key = request.target_fields[0]
            self.receive_text_reply(request.id, text)
            return build_thank_you_reply(field_key, text)

    def poll(self) -> list[str]:
        """Apply newly submitted replies from the channel.

        Returns:
            IDs of the requests applied by this call

        Raises:
            TransportError: The channel poll failed (nothing was applied)
        """
        self.settle_live_updates()

        if not self.pending_requests():
            return []

        try:
            submissions = self.channel.poll()
        except Exception as e:
            logger.exception("Poll failed")
            raise TransportError(f"Failed to poll for replies: {e}") from e

        applied = []
        for submission in submissions:
            if submission.request_id in self._applied:
                logger.warning("Skipping redelivered reply %s", submission.request_id)
                continue
            if submission.request_id not in self._requests:
                logger.warning(
                    "Skipping reply %s for row %s: unknown request",
                    submission.request_id,
                    submission.row_id,
                )
                continue
            request = self._requests[submission.request_id]
            if request.row_id != submission.row_id:
                logger.warning(
                    "Skipping reply %s: row %s does not match request row %s",
                    submission.request_id,
                    submission.row_id,
                    request.row_id,
                )
                continue
            try:
                self.apply_reply(submission.request_id, submission.data)
            except GridError as e:
                logger.warning("Skipping reply %s: %s", submission.request_id, e)
                continue
            applied.append(submission.request_id)

        if applied:
            logger.info("Poll applied %d replies", len(applied))
        return applied

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def settle_live_updates(self, now: datetime | None = None) -> list[CellRef]:
        """Promote live-update cells whose display delay has elapsed."""
        now = now or self.clock()
        promoted = []
        with self._lock:
            for ref, landed_at in list(self._live.items()):
                if now - landed_at < self.live_update_delay:
                    continue
                del self._live[ref]
                try:
                    if self.grid.confirm_live_update(ref.row_id, ref.column_key):
                        promoted.append(ref)
                except GridError as e:
                    logger.debug("Live update for %s/%s dropped: %s", ref.row_id, ref.column_key, e)
        return promoted

    def expire_request(self, request_id: str) -> OutboundRequest:
        """Give up on a pending request: unlock the row, cells back to critical."""
        with self._lock:
            request = self.get_request(request_id)
            if not request.is_pending:
                return request

            request.status = RequestStatus.EXPIRED
            self._sync_row_lock(request.row_id)
            changed = []
            if request.kind == RequestKind.MISSING_FIELDS:
                changed = self.grid.mark_missing(
                    request.row_id, request.target_fields, EXPIRED_MESSAGE
                )
            logger.info(
                "Request %s expired; %d cells back to critical", request_id, len(changed)
            )
            return request

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Expire pending requests older than the TTL."""
        now = now or self.clock()
        expired = []
        with self._lock:
            for request in self.pending_requests():
                if now - request.sent_at >= self.request_ttl:
                    self.expire_request(request.id)
                    expired.append(request.id)
        return expired
