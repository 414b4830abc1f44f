"""
WhatsApp channel client.

Provides:
- Send messages through the Twilio REST API
- Poll the form service for submitted replies
- Webhook signature validation
- Retry/backoff for transient network failures
"""

from .client import (
    ChannelAPIError,
    ChannelConnectionError,
    ChannelError,
    ChannelNotConfiguredError,
    WhatsAppChannel,
    friendly_error,
    validate_signature,
)

__all__ = [
    "WhatsAppChannel",
    "ChannelError",
    "ChannelAPIError",
    "ChannelConnectionError",
    "ChannelNotConfiguredError",
    "friendly_error",
    "validate_signature",
]
