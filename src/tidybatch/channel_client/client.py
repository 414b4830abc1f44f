"""
WhatsApp messaging channel (Twilio REST API + form poll endpoint).
"""

import base64
import hashlib
import hmac
import logging
from typing import TYPE_CHECKING, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.batch import ReplySubmission
from ..services.messages import mask_phone
from ..services.reconciliation import SendResult

if TYPE_CHECKING:
    from ..config import ChannelConfig

logger = logging.getLogger(__name__)

DEFAULT_FROM_NUMBER = "whatsapp:+14155238886"
DEFAULT_API_BASE_URL = "https://api.twilio.com"
WHATSAPP_PREFIX = "whatsapp:"

# Substring of the provider's error message -> message shown to the operator
FRIENDLY_ERRORS = (
    (
        "not a valid phone number",
        "Invalid phone number format. Must be E.164 format (e.g. +60123456789)",
    ),
    (
        "not registered",
        "Recipient must first join the WhatsApp sandbox before messages can be delivered.",
    ),
    (
        "sandbox",
        "Recipient must first join the WhatsApp sandbox before messages can be delivered.",
    ),
    (
        "authenticate",
        "Authentication failed. Check TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.",
    ),
    (
        "rate limit exceeded",
        "Message rate limit exceeded. Please try again later.",
    ),
)


class ChannelError(Exception):
    """Base exception for channel client errors."""
    pass


class ChannelAPIError(ChannelError):
    """API returned an error response."""
    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Channel API error {status_code}: {message}")


class ChannelConnectionError(ChannelError):
    """Failed to connect to the channel."""
    pass


class ChannelNotConfiguredError(ChannelError):
    """Credentials or endpoints are missing."""
    pass


def friendly_error(message: str) -> str:
    """Map a provider error message to an operator-facing one."""
    lowered = message.lower()
    for needle, friendly in FRIENDLY_ERRORS:
        if needle in lowered:
            return friendly
    return message


def to_whatsapp_address(phone: str) -> str:
    return phone if phone.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{phone}"


def compute_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Webhook signature: base64(HMAC-SHA1(token, url + sorted key/value pairs))."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(
    auth_token: str,
    signature: Optional[str],
    url: str,
    params: Mapping[str, str],
) -> bool:
    """Check an inbound webhook's X-Twilio-Signature header."""
    if not signature:
        logger.warning("Webhook request without signature")
        return False
    expected = compute_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


class WhatsAppChannel:
    """
    Messaging channel over WhatsApp.

    Features:
    - Send messages through the Twilio REST API (basic auth)
    - Poll the form service for submitted replies
    - Automatic retry with backoff for polls (sends are posted once)
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str = DEFAULT_FROM_NUMBER,
        api_base_url: str = DEFAULT_API_BASE_URL,
        poll_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the channel.

        Args:
            account_sid: Twilio account SID (starts with "AC")
            auth_token: Twilio auth token
            from_number: Sender address (with or without "whatsapp:")
            api_base_url: Twilio API base URL
            poll_url: Form service endpoint returning submitted replies
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = to_whatsapp_address(from_number)
        self.api_base_url = api_base_url.rstrip("/")
        self.poll_url = poll_url
        self.timeout = timeout

        self.session = requests.Session()
        self.session.auth = (account_sid, auth_token)
        self.session.headers.update({"Accept": "application/json"})

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config: "ChannelConfig") -> "WhatsAppChannel":
        return cls(
            account_sid=config.account_sid,
            auth_token=config.auth_token,
            from_number=config.from_number,
            api_base_url=config.api_base_url,
            poll_url=config.poll_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.account_sid.startswith("AC"))

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> requests.Response:
        """Make an HTTP request with error handling."""
        try:
            response = self.session.request(
                method=method,
                url=url,
                data=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise ChannelConnectionError(f"Failed to connect to {url}: {e}")
        except requests.exceptions.Timeout as e:
            raise ChannelConnectionError(f"Request to {url} timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise ChannelError(f"Request failed: {e}")

        if not response.ok:
            message = response.reason
            try:
                message = response.json().get("message") or message
            except ValueError:
                pass
            raise ChannelAPIError(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
            )

        return response

    def _messages_url(self) -> str:
        return f"{self.api_base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    def send_message(self, to: str, body: str) -> str:
        """
        Send a WhatsApp message.

        Returns:
            Message SID

        Raises:
            ChannelNotConfiguredError: Credentials missing or malformed
            ChannelError: Send failed
        """
        if not self.is_configured():
            raise ChannelNotConfiguredError(
                "Channel not configured. Set TWILIO_ACCOUNT_SID (starting with 'AC') "
                "and TWILIO_AUTH_TOKEN."
            )

        address = to_whatsapp_address(to)
        logger.info("Sending WhatsApp message to %s (%d chars)", mask_phone(address), len(body))
        response = self._request(
            "POST",
            self._messages_url(),
            data={"From": self.from_number, "To": address, "Body": body},
        )
        result = response.json()
        logger.info("WhatsApp message sent: %s (%s)", result.get("sid"), result.get("status"))
        return result.get("sid", "")

    def send(self, to: str, body: str) -> SendResult:
        """
        Send a message, reporting provider failures as an unsuccessful result.

        Raises:
            ChannelNotConfiguredError: Credentials missing or malformed
        """
        try:
            sid = self.send_message(to, body)
        except ChannelNotConfiguredError:
            raise
        except ChannelAPIError as e:
            logger.error("WhatsApp send failed (%s): %s", e.status_code, e.message)
            return SendResult(success=False, error=friendly_error(e.message))
        except ChannelError as e:
            logger.error("WhatsApp send failed: %s", e)
            return SendResult(success=False, error=friendly_error(str(e)))
        return SendResult(success=True, message_sid=sid)

    def poll(self) -> list[ReplySubmission]:
        """
        Fetch submitted replies from the form service.

        Raises:
            ChannelNotConfiguredError: No poll URL configured
            ChannelError: Request failed
        """
        if not self.poll_url:
            raise ChannelNotConfiguredError("No poll URL configured (TIDYBATCH_POLL_URL)")

        response = self._request("GET", self.poll_url)
        payload = response.json()
        if not payload.get("hasUpdates"):
            return []

        submissions = []
        for item in payload.get("submissions") or []:
            try:
                submissions.append(ReplySubmission.from_api_response(item))
            except KeyError as e:
                logger.warning("Ignoring malformed submission (missing %s)", e)
        logger.debug("Poll returned %d submissions", len(submissions))
        return submissions

    def test_connection(self) -> bool:
        """Check that the credentials are accepted."""
        try:
            self._request("GET", f"{self.api_base_url}/2010-04-01/Accounts/{self.account_sid}.json")
            return True
        except ChannelError:
            return False
