"""Services layer: message rendering and reconciliation orchestration."""

from tidybatch.services.messages import (
    build_form_link,
    build_missing_fields_message,
    build_payment_details_message,
)
from tidybatch.services.reconciliation import (
    MessageChannel,
    MissingRecipientError,
    ReconciliationCoordinator,
    ReconciliationError,
    SendResult,
    TransportError,
    UnknownRequestError,
)

__all__ = [
    "ReconciliationCoordinator",
    "ReconciliationError",
    "TransportError",
    "UnknownRequestError",
    "MissingRecipientError",
    "MessageChannel",
    "SendResult",
    "build_form_link",
    "build_missing_fields_message",
    "build_payment_details_message",
]
