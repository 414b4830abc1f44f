"""Tests for the field rule engine, behaviors and rule configuration."""

import pytest

from tidybatch.rules import (
    PAYROLL_RULES,
    FieldType,
    RuleConfig,
    Severity,
    build_rule_set,
    get_behavior,
    normalize_phone_number,
    normalize_value,
    process_row,
    target_schema,
    transform_field,
    validate_field,
)


def rule(key: str):
    return PAYROLL_RULES.get(key)


class TestPhoneNormalization:
    """Tests for normalize_phone_number."""

    @pytest.mark.parametrize(
        "raw,country,expected",
        [
            ("012-345 6789", "MY", "+60123456789"),
            ("whatsapp:+6591234567", "MY", "+6591234567"),
            ("0065 9123 4567", "MY", "+6591234567"),
            ("123456789", "MY", "+60123456789"),
            ("0812345678", "ID", "+62812345678"),
            ("(03) 2222-3333", "MY", "+60322223333"),
        ],
    )
    def test_normalizes(self, raw, country, expected):
        """Local, prefixed and international numbers are normalized."""
        assert normalize_phone_number(raw, country) == expected

    def test_unparseable_returns_none(self):
        assert normalize_phone_number("call me") is None
        assert normalize_phone_number("") is None


class TestBehaviors:
    """Tests for individual field behaviors."""

    def test_name_strips_honorific_and_title_cases(self):
        result = transform_field(rule("name"), "DR.  jane   doe")
        assert result.value == "Jane Doe"
        assert result.changed is True
        assert result.message == "Capitalized and removed titles"

    def test_name_too_short(self):
        result = validate_field(rule("name"), "A")
        assert not result.valid
        assert result.message == "Name is too short"

    def test_amount_strips_currency_and_separators(self):
        result = transform_field(rule("amount"), "RM 1,234.5")
        assert result.value == "1234.50"
        assert result.message == "Removed currency symbol, standardized decimal places"

    def test_amount_unparseable_left_as_is(self):
        result = transform_field(rule("amount"), "five thousand")
        assert result.changed is False
        assert result.value == "five thousand"
        validation = validate_field(rule("amount"), "five thousand")
        assert validation.severity == Severity.RED
        assert validation.message == "Invalid amount format"

    def test_amount_must_be_positive(self):
        result = validate_field(rule("amount"), "0.00")
        assert result.severity == Severity.RED
        assert result.message == "Amount must be positive"

    def test_amount_high_value_is_yellow(self):
        result = validate_field(rule("amount"), "60000.00")
        assert result.severity == Severity.YELLOW
        assert result.message == "High value transaction >RM50,000 - requires BNM approval"

    def test_amount_at_threshold_is_valid(self):
        assert validate_field(rule("amount"), "50000.00").valid

    def test_account_number_digits_only(self):
        result = transform_field(rule("accountNumber"), "1234-5678 90")
        assert result.value == "1234567890"
        assert result.message == "Removed dashes/spaces - digits only"

    def test_account_number_with_letters_is_red(self):
        result = validate_field(rule("accountNumber"), "12AB34")
        assert result.severity == Severity.RED
        assert result.message == "Account number must contain only digits"

    def test_account_number_length_is_yellow(self):
        result = validate_field(rule("accountNumber"), "12345")
        assert result.severity == Severity.YELLOW
        assert result.message == "Account number must be 10-16 digits"

    def test_enum_matches_alias(self):
        result = transform_field(rule("bank"), "public bank")
        assert result.value == "PBB"
        assert result.message == "Normalized bank code: public bank → PBB"

    def test_enum_matches_label_case_insensitive(self):
        assert transform_field(rule("bank"), "  HONG   leong bank ").value == "HLB"

    def test_enum_unknown_is_yellow(self):
        result = validate_field(rule("bank"), "Bank XYZ")
        assert result.severity == Severity.YELLOW
        assert result.message == "Unknown bank code"

    def test_date_iso_padding(self):
        result = transform_field(rule("date"), "2024-1-5")
        assert result.value == "2024-01-05"
        assert result.message == "Standardized date format"

    def test_date_day_first(self):
        result = transform_field(rule("date"), "05/01/2024")
        assert result.value == "2024-01-05"
        assert result.message == "Converted DD/MM/YYYY to YYYY-MM-DD"

    def test_date_month_first_setting(self):
        month_first = build_rule_set(settings={"day_first": False}).get("date")
        result = transform_field(month_first, "05/01/2024")
        assert result.value == "2024-05-01"
        assert result.message == "Converted MM/DD/YYYY to YYYY-MM-DD"

    def test_date_only_valid_reading_wins(self):
        """12/31/2024 can only be month-first."""
        assert transform_field(rule("date"), "12/31/2024").value == "2024-12-31"

    def test_date_generic_parse(self):
        result = transform_field(rule("date"), "15 Oct 2024")
        assert result.value == "2024-10-15"
        assert result.message == "Parsed and formatted date"

    def test_date_invalid_left_for_validation(self):
        result = transform_field(rule("date"), "13/25/2024")
        assert result.changed is False
        validation = validate_field(rule("date"), "13/25/2024")
        assert validation.severity == Severity.YELLOW
        assert validation.message == "Date must be in YYYY-MM-DD format"

    def test_phone_formats_to_country(self):
        result = transform_field(rule("phone"), "012-345 6789")
        assert result.value == "+60123456789"
        assert result.message == "Formatted to MY phone number"

    def test_phone_invalid_is_yellow(self):
        result = validate_field(rule("phone"), "12")
        assert result.severity == Severity.YELLOW
        assert result.message == "Invalid phone number format"

    def test_boolean(self):
        flag = build_rule_set([{"key": "active", "type": "boolean"}]).get("active")
        assert transform_field(flag, "Yes").value == "true"
        assert transform_field(flag, "n").value == "false"
        assert not validate_field(flag, "maybe").valid

    def test_unknown_behavior_raises(self):
        with pytest.raises(ValueError):
            get_behavior("nope")

    @pytest.mark.parametrize(
        "key,value",
        [
            ("name", "mr. ali ahmad"),
            ("amount", "rm 5,000"),
            ("accountNumber", "1122-3344-5566"),
            ("bank", "maybank"),
            ("phone", "012-345 6789"),
            ("date", "15/10/2024"),
            ("date", "15 Oct 2024"),
        ],
    )
    def test_transform_is_idempotent(self, key, value):
        """Transforming a transformed value reports no change."""
        once = transform_field(rule(key), value)
        twice = transform_field(rule(key), once.value)
        assert twice.changed is False
        assert twice.value == once.value


class TestProcessRow:
    """Tests for process_row."""

    def test_payroll_scenario(self):
        """Names, amounts and bank names are cleaned in one pass."""
        result = process_row(
            {"name": "mr. ali ahmad", "amount": "rm 5,000", "bank": "maybank"},
            PAYROLL_RULES,
        )

        assert result.cleaned["name"] == "Ali Ahmad"
        assert result.cleaned["amount"] == "5000.00"
        assert result.cleaned["bank"] == "MBB"
        assert {c.column for c in result.changes} == {"name", "amount", "bank"}
        assert result.change_for("amount").original == "rm 5,000"

    def test_required_empty_is_red(self):
        result = process_row({"name": "Ali", "amount": "10"}, PAYROLL_RULES)
        error = result.error_for("accountNumber")
        assert error.severity == Severity.RED
        assert error.message == "Missing required field: Account Number"

    def test_optional_empty_is_not_validated(self):
        result = process_row(
            {"name": "Ali", "amount": "10", "accountNumber": "1234567890"}, PAYROLL_RULES
        )
        assert result.errors == ()

    def test_unknown_columns_copied(self):
        result = process_row({"name": "Ali", "notes": "  keep me "}, PAYROLL_RULES)
        assert result.cleaned["notes"] == "  keep me "

    def test_none_values_treated_as_empty(self):
        result = process_row({"name": None}, PAYROLL_RULES)
        assert result.cleaned["name"] == ""
        assert result.error_for("name").severity == Severity.RED

    def test_deterministic(self, sample_rows):
        for row in sample_rows:
            assert process_row(row, PAYROLL_RULES) == process_row(row, PAYROLL_RULES)

    def test_input_not_mutated(self):
        row = {"name": "mr. ali ahmad"}
        process_row(row, PAYROLL_RULES)
        assert row == {"name": "mr. ali ahmad"}

    def test_normalize_value(self):
        assert normalize_value(PAYROLL_RULES, "bank", "cimb bank") == "CIMB"
        assert normalize_value(PAYROLL_RULES, "remarks", " x ") == " x "


class TestEdgeInputs:
    """Values outside what the parsers can represent are left for review."""

    HUGE = "1" * 27

    def test_huge_amount_left_as_is(self):
        result = process_row(
            {"name": "Ali", "amount": self.HUGE, "accountNumber": "1234567890"}, PAYROLL_RULES
        )
        assert result.cleaned["amount"] == self.HUGE
        assert result.change_for("amount") is None
        assert result.error_for("amount").severity == Severity.YELLOW

    def test_huge_amount_with_currency_is_invalid(self):
        value = f"RM {self.HUGE}"
        result = process_row({"name": "Ali", "amount": value}, PAYROLL_RULES)
        assert result.cleaned["amount"] == value
        error = result.error_for("amount")
        assert error.severity == Severity.RED
        assert error.message == "Invalid amount format"

    @pytest.mark.parametrize("value", ["0000-01-01", "01/01/0000", "99/99/9999", "31-02-0000"])
    def test_out_of_range_date_left_as_is(self, value):
        result = process_row({"name": "Ali", "date": value}, PAYROLL_RULES)
        assert result.cleaned["date"] == value
        error = result.error_for("date")
        assert error.severity == Severity.YELLOW
        assert error.message == "Date must be in YYYY-MM-DD format"

    def test_validate_year_zero(self):
        result = validate_field(rule("date"), "0000-01-01")
        assert result.valid is False


class TestRuleConfiguration:
    """Tests for build_rule_set and target_schema."""

    def test_disable_field(self):
        rules = build_rule_set([{"key": "phone", "enabled": False}])
        assert "phone" not in rules.keys
        assert rules.keys[:3] == ["name", "amount", "accountNumber"]

    def test_relabel_and_require(self):
        rules = build_rule_set([RuleConfig(key="bank", label="Bank", required=True)])
        bank = rules.get("bank")
        assert bank.label == "Bank"
        assert bank.required is True
        assert bank.options == PAYROLL_RULES.get("bank").options

    def test_new_field_uses_type_behavior(self):
        rules = build_rule_set([{"key": "department", "label": "Department"}])
        department = rules.get("department")
        assert department.type == FieldType.STRING
        assert department.behavior_name == "string"
        assert rules.keys[-1] == "department"

    def test_replace_enum_options(self):
        rules = build_rule_set(
            [{"key": "bank", "options": [{"value": "DBS", "label": "DBS Bank", "aliases": ["dbs"]}]}]
        )
        assert transform_field(rules.get("bank"), "dbs").value == "DBS"
        assert not validate_field(rules.get("bank"), "MBB").valid

    def test_shared_settings(self):
        rules = build_rule_set(settings={"high_value_threshold": 1000})
        result = validate_field(rules.get("amount"), "1500.00")
        assert result.message == "High value transaction >RM1,000 - requires BNM approval"

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            build_rule_set([{"label": "No key"}])
        with pytest.raises(ValueError):
            build_rule_set([{"key": "x", "behavior": "teleport"}])

    def test_target_schema(self):
        schema = target_schema(PAYROLL_RULES)
        assert schema[0] == {
            "key": "name",
            "label": "Payee Name",
            "type": "string",
            "required": True,
            "rules": "Title Case",
        }
        assert [field["key"] for field in schema] == PAYROLL_RULES.keys
