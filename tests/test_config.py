"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from tidybatch.config import Config, create_default_config, load_config

ENV_VARS = (
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_WHATSAPP_NUMBER",
    "TIDYBATCH_APP_URL",
    "TIDYBATCH_POLL_URL",
    "TIDYBATCH_STATE_DB",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.channel.form_base_url == "http://localhost:3000"
        assert config.channel.from_number == "whatsapp:+14155238886"
        assert config.rules.high_value_threshold == 50000
        assert config.duplicates.partial_similarity == 0.8
        assert config.reconciliation.request_ttl_hours == 24
        assert config.state_db_path == Path("data/state.db")
        assert config.validate() == []

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
channel:
  account_sid: "AC999"
  auth_token: "tok"
  default_country: "SG"
  sender_name: "Payroll Team"
rules:
  high_value_threshold: 10000
  fields:
    - key: phone
      enabled: false
duplicates:
  enabled: false
reconciliation:
  live_update_delay_seconds: 0
state_db_path: "/tmp/tb.db"
"""
        )

        config = load_config(path)

        assert config.channel.is_configured() is True
        assert config.channel.sender_name == "Payroll Team"
        assert config.rules.phone_country == "SG"
        assert config.rules.high_value_threshold == 10000
        assert config.duplicates.enabled is False
        assert config.reconciliation.live_update_delay_seconds == 0.0
        assert config.state_db_path == Path("/tmp/tb.db")

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text('channel:\n  account_sid: "ACfile"\n  form_base_url: "http://file"\n')
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "ACenv")
        monkeypatch.setenv("TIDYBATCH_APP_URL", "https://app.example.com")
        monkeypatch.setenv("TIDYBATCH_POLL_URL", "https://app.example.com/api/replies")
        monkeypatch.setenv("TIDYBATCH_STATE_DB", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.channel.account_sid == "ACenv"
        assert config.channel.form_base_url == "https://app.example.com"
        assert config.channel.poll_url == "https://app.example.com/api/replies"
        assert config.state_db_path == tmp_path / "env.db"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).rules.rule_set == "payroll"


class TestDefaultConfig:
    """Tests for the generated default config."""

    def test_default_config_loads(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert path.exists()
        assert config.validate() == []
        assert config.rules.fields == []
        assert config.channel.poll_url is None
        assert config.build_rule_set().keys == [
            "name",
            "amount",
            "accountNumber",
            "bank",
            "phone",
            "date",
        ]


class TestValidate:
    """Tests for Config.validate."""

    def test_bad_values(self):
        config = Config()
        config.channel.form_base_url = ""
        config.channel.timeout_seconds = 0
        config.rules.suggestion_confidence = 1.5
        config.duplicates.partial_similarity = -0.1
        config.reconciliation.request_ttl_hours = 0

        errors = config.validate()

        assert "channel.form_base_url is required" in errors
        assert "channel.timeout_seconds must be positive" in errors
        assert "rules.suggestion_confidence must be between 0 and 1" in errors
        assert "duplicates.partial_similarity must be between 0 and 1" in errors
        assert "reconciliation.request_ttl_hours must be positive" in errors

    def test_unknown_behavior_reported(self):
        config = Config()
        config.rules.fields = [{"key": "bank", "behavior": "telepathy"}]

        [error] = config.validate()

        assert error.startswith("rules.fields: Unknown behavior 'telepathy'")

    def test_build_rule_set_applies_overrides(self):
        config = Config()
        config.rules.fields = [
            {"key": "phone", "enabled": False},
            {"key": "department", "label": "Department", "type": "string"},
        ]
        config.rules.high_value_threshold = 1000

        rule_set = config.build_rule_set()

        assert "phone" not in rule_set.keys
        assert rule_set.keys[-1] == "department"
        assert rule_set.get("amount").settings["high_value_threshold"] == 1000
