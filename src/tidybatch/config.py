"""
Configuration management (SSOT).

This module defines ALL configuration for the tidybatch application.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Channel credentials come from the environment when set
- form_base_url is the human-facing URL put into outbound messages
- Rule settings in `rules` apply to every field unless a field overrides them
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .rules.loader import build_rule_set
from .rules.payroll import PAYROLL_RULES
from .rules.types import RuleSet


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ChannelConfig:
    """Messaging channel configuration (Twilio WhatsApp + form service).

    - api_base_url: Twilio REST API
    - form_base_url: Browser-accessible base of the resolution link
    - poll_url: Form service endpoint returning submitted replies
    """

    account_sid: str = ""
    auth_token: str = ""
    from_number: str = "whatsapp:+14155238886"
    api_base_url: str = "https://api.twilio.com"
    form_base_url: str = "http://localhost:3000"
    poll_url: str | None = None
    timeout_seconds: int = 30
    max_retries: int = 3
    # Country used when a phone number has no international prefix
    default_country: str = "MY"
    # Signature at the bottom of outbound messages
    sender_name: str = "RytFlow"

    def is_configured(self) -> bool:
        """Check that credentials look usable."""
        return bool(self.account_sid and self.auth_token and self.account_sid.startswith("AC"))


@dataclass
class RulesConfig:
    """Field rule settings."""

    rule_set: str = "payroll"
    # Per-field overrides (key/label/type/required/enabled/format/options/behavior)
    fields: list[dict[str, Any]] = field(default_factory=list)
    # Confidence attached to import-time suggestions
    suggestion_confidence: float = 0.95
    # Amounts above this are flagged for review
    high_value_threshold: float = 50000
    # Read ambiguous dates as DD/MM/YYYY
    day_first: bool = True
    phone_country: str = "MY"

    def settings(self) -> dict[str, Any]:
        """Behavior settings shared by all fields."""
        return {
            "high_value_threshold": self.high_value_threshold,
            "day_first": self.day_first,
            "phone_country": self.phone_country,
        }


@dataclass
class DuplicateConfig:
    """Duplicate detection settings."""

    enabled: bool = True
    # Similarity reported for name+amount / amount+account matches
    partial_similarity: float = 0.8
    # Cell that receives the duplicate state
    check_column: str = "amount"


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # How long a replied value stays marked as a live update (seconds)
    live_update_delay_seconds: float = 2.0
    # Pending requests older than this expire (hours)
    request_ttl_hours: float = 24


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    channel: ChannelConfig = field(default_factory=ChannelConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.channel.form_base_url:
            errors.append("channel.form_base_url is required")
        if self.channel.timeout_seconds <= 0:
            errors.append("channel.timeout_seconds must be positive")

        if not 0 <= self.rules.suggestion_confidence <= 1:
            errors.append("rules.suggestion_confidence must be between 0 and 1")
        if self.rules.high_value_threshold <= 0:
            errors.append("rules.high_value_threshold must be positive")

        if not 0 <= self.duplicates.partial_similarity <= 1:
            errors.append("duplicates.partial_similarity must be between 0 and 1")

        if self.reconciliation.live_update_delay_seconds < 0:
            errors.append("reconciliation.live_update_delay_seconds must not be negative")
        if self.reconciliation.request_ttl_hours <= 0:
            errors.append("reconciliation.request_ttl_hours must be positive")

        try:
            self.build_rule_set()
        except ValueError as e:
            errors.append(f"rules.fields: {e}")

        return errors

    def build_rule_set(self) -> RuleSet:
        """Rule set for this configuration (payroll fields plus overrides).

        Raises:
            ValueError: A field override is malformed
        """
        return build_rule_set(
            self.rules.fields,
            base=PAYROLL_RULES,
            name=self.rules.rule_set,
            settings=self.rules.settings(),
        )


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - TWILIO_ACCOUNT_SID
    - TWILIO_AUTH_TOKEN
    - TWILIO_WHATSAPP_NUMBER
    - TIDYBATCH_APP_URL (resolution link base)
    - TIDYBATCH_POLL_URL
    - TIDYBATCH_STATE_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Channel config
    channel_data = data.get("channel", {})
    channel = ChannelConfig(
        account_sid=os.environ.get("TWILIO_ACCOUNT_SID", channel_data.get("account_sid", "")),
        auth_token=os.environ.get("TWILIO_AUTH_TOKEN", channel_data.get("auth_token", "")),
        from_number=os.environ.get(
            "TWILIO_WHATSAPP_NUMBER",
            channel_data.get("from_number", "whatsapp:+14155238886"),
        ),
        api_base_url=channel_data.get("api_base_url", "https://api.twilio.com"),
        form_base_url=os.environ.get(
            "TIDYBATCH_APP_URL", channel_data.get("form_base_url", "http://localhost:3000")
        ),
        poll_url=os.environ.get("TIDYBATCH_POLL_URL", channel_data.get("poll_url")),
        timeout_seconds=int(channel_data.get("timeout_seconds", 30)),
        max_retries=int(channel_data.get("max_retries", 3)),
        default_country=channel_data.get("default_country", "MY"),
        sender_name=channel_data.get("sender_name", "RytFlow"),
    )

    # Rules config
    rules_data = data.get("rules", {})
    rules = RulesConfig(
        rule_set=rules_data.get("rule_set", "payroll"),
        fields=list(rules_data.get("fields") or []),
        suggestion_confidence=float(rules_data.get("suggestion_confidence", 0.95)),
        high_value_threshold=rules_data.get("high_value_threshold", 50000),
        day_first=bool(rules_data.get("day_first", True)),
        phone_country=rules_data.get("phone_country", channel.default_country),
    )

    # Duplicate detection
    dup_data = data.get("duplicates", {})
    duplicates = DuplicateConfig(
        enabled=bool(dup_data.get("enabled", True)),
        partial_similarity=float(dup_data.get("partial_similarity", 0.8)),
        check_column=dup_data.get("check_column", "amount"),
    )

    # Reconciliation config
    recon_data = data.get("reconciliation", {})
    reconciliation = ReconciliationConfig(
        live_update_delay_seconds=float(recon_data.get("live_update_delay_seconds", 2.0)),
        request_ttl_hours=float(recon_data.get("request_ttl_hours", 24)),
    )

    # State DB
    state_db = os.environ.get("TIDYBATCH_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        channel=channel,
        rules=rules,
        duplicates=duplicates,
        reconciliation=reconciliation,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# tidybatch configuration
#
# Credentials may instead be supplied through the environment:
# TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_WHATSAPP_NUMBER,
# TIDYBATCH_APP_URL, TIDYBATCH_POLL_URL

channel:
  account_sid: ""                          # Twilio account SID (starts with AC)
  auth_token: ""
  from_number: "whatsapp:+14155238886"     # Sandbox sender by default
  api_base_url: "https://api.twilio.com"
  form_base_url: "http://localhost:3000"   # Base of the /verify/<id> link in messages
  poll_url: null                           # Form service endpoint for submitted replies
  timeout_seconds: 30
  max_retries: 3
  default_country: "MY"                    # Country code for local phone numbers
  sender_name: "RytFlow"

# Field rules
rules:
  rule_set: "payroll"
  suggestion_confidence: 0.95
  high_value_threshold: 50000              # Amounts above this need review
  day_first: true                          # 03/04/2024 is 3 April
  phone_country: "MY"
  fields: []
  # Example overrides:
  # fields:
  #   - key: phone
  #     enabled: false
  #   - key: bank
  #     label: "Bank Code"
  #   - key: department
  #     label: "Department"
  #     type: string

# Duplicate detection
duplicates:
  enabled: true
  partial_similarity: 0.8                  # Reported for partial matches
  check_column: "amount"                   # Cell that is flagged as duplicate

# Reconciliation settings
reconciliation:
  live_update_delay_seconds: 2.0           # Live update badge duration
  request_ttl_hours: 24                    # Pending requests expire after this

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
