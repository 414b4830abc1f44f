"""
Outbound message rendering.

Pure functions of (recipient name, fields or details, resolution link).
Transport lives in channel_client; nothing here performs I/O.
"""

import re
from typing import Mapping, Optional, Sequence

from ..rules.behaviors import normalize_phone_number

DEFAULT_SENDER = "RytFlow"
DEFAULT_LINK_TTL_HOURS = 24

HELP_REPLY = (
    "Hi! Please click the link in our previous message to fill out the form, "
    "or reply with the requested information."
)
NO_PENDING_REPLY = (
    "Thanks for your message! We don't have a pending request for your number. "
    "If you received a form link, please use that instead."
)
ALREADY_PROCESSED_REPLY = "Your request has already been processed. Thank you!"

_CAMEL_BOUNDARY = re.compile(r"([A-Z])")

__all__ = [
    "DEFAULT_SENDER",
    "DEFAULT_LINK_TTL_HOURS",
    "HELP_REPLY",
    "NO_PENDING_REPLY",
    "ALREADY_PROCESSED_REPLY",
    "build_form_link",
    "build_missing_fields_message",
    "build_payment_details_message",
    "build_thank_you_reply",
    "field_label",
    "mask_phone",
    "normalize_phone_number",
]


def build_form_link(base_url: str, request_id: str) -> str:
    """Resolution link for a request: `{base}/verify/{id}`."""
    return f"{base_url.rstrip('/')}/verify/{request_id}"


def field_label(key: str) -> str:
    """Readable label for a camelCase field key ("accountNumber" -> "account number")."""
    return _CAMEL_BOUNDARY.sub(r" \1", key).strip().lower()


def mask_phone(phone: Optional[str]) -> str:
    """Phone number reduced to its last 4 digits, for logs."""
    if not phone:
        return "<none>"
    return "***" + phone[-4:]


def _footer(sender: str, ttl_hours: int) -> str:
    return f"This link expires in {ttl_hours} hours.\n\n- {sender}"


def build_missing_fields_message(
    recipient_name: str,
    missing_fields: Sequence[str],
    form_link: str,
    sender: str = DEFAULT_SENDER,
    ttl_hours: int = DEFAULT_LINK_TTL_HOURS,
) -> str:
    """Message asking the recipient to fill in missing fields."""
    return (
        f"Hi {recipient_name},\n\n"
        "We need some additional information to process your payment.\n\n"
        f"Missing: {', '.join(missing_fields)}\n\n"
        "Please fill out this secure form:\n"
        f"{form_link}\n\n"
        f"{_footer(sender, ttl_hours)}"
    )


def build_payment_details_message(
    recipient_name: str,
    details: Mapping[str, Optional[str]],
    form_link: str,
    sender: str = DEFAULT_SENDER,
    ttl_hours: int = DEFAULT_LINK_TTL_HOURS,
) -> str:
    """
    Message asking the recipient to confirm their payment details.

    Args:
        recipient_name: Name used in the greeting
        details: amount, bank, accountNumber and date (missing ones show N/A)
        form_link: Link for corrections
    """

    def show(key: str) -> str:
        return details.get(key) or "N/A"

    return (
        f"Hi {recipient_name},\n\n"
        "Here are your payment details for confirmation:\n"
        f"- Amount: {show('amount')}\n"
        f"- Bank: {show('bank')}\n"
        f"- Account: {show('accountNumber')}\n"
        f"- Date: {show('date')}\n\n"
        "If this looks correct, reply OK.\n"
        "If anything is wrong, update it here:\n"
        f"{form_link}\n\n"
        f"{_footer(sender, ttl_hours)}"
    )


def build_thank_you_reply(field_key: str, value: str) -> str:
    """Reply sent after a free-text answer was applied."""
    return (
        f'Thank you! We\'ve received your {field_label(field_key)}: "{value}". '
        "Your payment will be processed shortly."
    )
