"""
Typed field behaviors (transform + validate).

Each behavior implements the normalization and validation for one kind of
field. Behaviors are stateless; everything rule-specific (enum options, phone
country, date order) is read from the FieldRule passed in.

Transforms must be idempotent: transforming an already-transformed value
reports `changed=False`. Values a transform cannot parse are returned
unchanged so that validation reports them instead of silently defaulting.
"""

import calendar
import re
from abc import ABC, abstractmethod
from datetime import MAXYEAR, MINYEAR, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping, Optional

from .types import VALID, EnumOption, FieldRule, Severity, TransformResult, ValidationResult

# Country calling codes for phone normalization
COUNTRY_CODES = {
    "MY": "+60",
    "SG": "+65",
    "ID": "+62",
    "TH": "+66",
    "PH": "+63",
    "VN": "+84",
    "US": "+1",
    "UK": "+44",
    "AU": "+61",
    "IN": "+91",
    "CN": "+86",
    "JP": "+81",
    "KR": "+82",
}
DEFAULT_COUNTRY = "MY"

_WHITESPACE = re.compile(r"\s+")
_HONORIFIC = re.compile(r"^(mr|mrs|ms|dr|prof)\.?\s+", re.IGNORECASE)
_CURRENCY_MARKERS = re.compile(r"rm|myr|usd|sgd|eur|gbp|idr|[$€£¥]", re.IGNORECASE)
_DECIMAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_ACCOUNT_SEPARATORS = re.compile(r"[\s\-.]")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_ISO_DATE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})$")
_STRICT_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_E164 = re.compile(r"^\+\d{10,15}$")

# Fallback formats for the best-effort date parse
_GENERIC_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d %b, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y%m%d",
)

TRUE_VALUES = frozenset({"true", "yes", "y", "1", "ya"})
FALSE_VALUES = frozenset({"false", "no", "n", "0", "tidak"})

DEFAULT_HIGH_VALUE_MESSAGE = "High value transaction >{threshold} - requires approval"


def _unchanged(value: str) -> TransformResult:
    return TransformResult(value=value, changed=False)


def _result(original: str, transformed: str, message: str) -> TransformResult:
    changed = transformed != original
    return TransformResult(
        value=transformed,
        changed=changed,
        message=message if changed else None,
    )


def normalize_enum_text(value: str) -> str:
    return _WHITESPACE.sub(" ", value.strip().lower())


def match_enum(value: str, options: tuple[EnumOption, ...]) -> Optional[EnumOption]:
    """Case/whitespace-insensitive match against value, label or aliases."""
    normalized = normalize_enum_text(value)
    for option in options:
        if normalize_enum_text(option.value) == normalized:
            return option
        if normalize_enum_text(option.label) == normalized:
            return option
        if any(normalize_enum_text(alias) == normalized for alias in option.aliases):
            return option
    return None


def normalize_phone_number(phone: str, country: str = DEFAULT_COUNTRY) -> Optional[str]:
    """
    Normalize a phone number to E.164-like form.

    Returns None when the number cannot be normalized.

    Examples:
        >>> normalize_phone_number("012-345 6789")
        '+60123456789'
        >>> normalize_phone_number("whatsapp:+6591234567")
        '+6591234567'
    """
    if not phone:
        return None

    cleaned = _PHONE_SEPARATORS.sub("", phone.strip())
    if cleaned.startswith("whatsapp:"):
        cleaned = cleaned[len("whatsapp:"):]

    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]

    code = COUNTRY_CODES.get(country.upper(), COUNTRY_CODES[DEFAULT_COUNTRY])
    if cleaned.startswith("0") and cleaned[1:].isdigit():
        return code + cleaned[1:]
    if re.fullmatch(r"\d{9,15}", cleaned):
        return code + cleaned
    return None


def parse_amount(value: str) -> Optional[Decimal]:
    """Parse a plain decimal string; None if it is not one."""
    if not _DECIMAL.match(value.strip()):
        return None
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return None


def _calendar_date(year: int, month: int, day: int) -> Optional[date]:
    if not MINYEAR <= year <= MAXYEAR:
        return None
    if not 1 <= month <= 12:
        return None
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


class FieldBehavior(ABC):
    """
    Base class for field behaviors.

    Subclasses implement the normalization (`transform`) and the checks
    (`validate`) for one kind of field.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key."""
        pass

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        """Normalize a value. Default: no change."""
        return _unchanged(value)

    def validate(
        self,
        value: str,
        rule: FieldRule,
        row: Optional[Mapping[str, str]] = None,
    ) -> ValidationResult:
        """
        Check a non-empty, already-transformed value.

        Args:
            value: Transformed value of this field
            rule: The field's rule
            row: Original (untransformed) row snapshot for cross-field checks
        """
        return VALID


class StringBehavior(FieldBehavior):
    """Trim and collapse whitespace."""

    name = "string"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        return _result(value, _WHITESPACE.sub(" ", value.strip()), "Trimmed whitespace")

    def validate(self, value, rule, row=None):
        min_length = rule.setting("min_length")
        if min_length and len(value) < min_length:
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message=f"{rule.label} is too short",
            )
        return VALID


class NameBehavior(StringBehavior):
    """Payee names: drop honorifics, title-case each word."""

    name = "name"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        stripped = _HONORIFIC.sub("", value.strip())
        transformed = " ".join(word.capitalize() for word in stripped.split())
        return _result(value, transformed, "Capitalized and removed titles")

    def validate(self, value, rule, row=None):
        if len(value) < rule.setting("min_length", 2):
            return ValidationResult(valid=False, severity=Severity.YELLOW, message="Name is too short")
        return VALID


class AmountBehavior(FieldBehavior):
    """
    Amounts: strip currency markers and thousands separators, render with
    exactly two fraction digits. Unparseable values are left as-is.
    """

    name = "amount"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")

        cleaned = _CURRENCY_MARKERS.sub("", value)
        cleaned = cleaned.replace(",", "")
        cleaned = _WHITESPACE.sub("", cleaned)

        amount = parse_amount(cleaned)
        if amount is None:
            return _unchanged(value)

        places = rule.setting("decimal_places", 2)
        quantum = Decimal(1).scaleb(-places)
        try:
            transformed = f"{amount.quantize(quantum, rounding=ROUND_HALF_UP):f}"
        except InvalidOperation:
            # More digits than the decimal context can hold
            return _unchanged(value)
        return _result(value, transformed, "Removed currency symbol, standardized decimal places")

    def validate(self, value, rule, row=None):
        amount = parse_amount(value)
        if amount is None:
            return ValidationResult(valid=False, severity=Severity.RED, message="Invalid amount format")
        if amount <= 0:
            return ValidationResult(valid=False, severity=Severity.RED, message="Amount must be positive")

        threshold = rule.setting("high_value_threshold")
        if threshold is not None and amount > Decimal(str(threshold)):
            template = rule.setting("high_value_message", DEFAULT_HIGH_VALUE_MESSAGE)
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message=template.format(threshold=f"{Decimal(str(threshold)):,.0f}"),
            )
        return VALID


class AccountNumberBehavior(FieldBehavior):
    """Bank account numbers: digits only."""

    name = "account_number"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        digits = _ACCOUNT_SEPARATORS.sub("", value)
        if not digits.isdigit():
            return _unchanged(value)
        return _result(value, digits, "Removed dashes/spaces - digits only")

    def validate(self, value, rule, row=None):
        digits = _ACCOUNT_SEPARATORS.sub("", value)
        if not digits.isdigit():
            return ValidationResult(
                valid=False,
                severity=Severity.RED,
                message="Account number must contain only digits",
            )

        min_length = rule.setting("min_length", 10)
        max_length = rule.setting("max_length", 16)
        if not min_length <= len(digits) <= max_length:
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message=f"Account number must be {min_length}-{max_length} digits",
            )
        return VALID


class EnumBehavior(FieldBehavior):
    """Map values, labels and aliases onto the canonical option value."""

    name = "enum"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        match = match_enum(value, rule.options)
        if match is None:
            return _unchanged(value)
        return _result(value, match.value, f"Normalized {rule.label.lower()}: {value} → {match.value}")

    def validate(self, value, rule, row=None):
        if match_enum(value, rule.options) is None:
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message=f"Unknown {rule.label.lower()}",
            )
        return VALID


class DateBehavior(FieldBehavior):
    """
    Dates normalized to YYYY-MM-DD.

    Accepts YYYY-MM-DD, DD-MM-YYYY / DD/MM/YYYY and a best-effort generic
    parse. For day/month ambiguity the calendar-valid reading wins; when both
    readings are valid the `day_first` setting (default True) decides.
    """

    name = "date"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")

        text = value.strip()

        iso = _ISO_DATE.match(text)
        if iso:
            parsed = _calendar_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
            if parsed is None:
                return _unchanged(value)
            return _result(value, parsed.isoformat(), "Standardized date format")

        dmy = _DAY_MONTH_YEAR.match(text)
        if dmy:
            first, second, year = int(dmy.group(1)), int(dmy.group(2)), int(dmy.group(3))
            day_first = _calendar_date(year, second, first)
            month_first = _calendar_date(year, first, second)
            if rule.setting("day_first", True):
                parsed = day_first or month_first
                assumed = "DD/MM/YYYY" if day_first else "MM/DD/YYYY"
            else:
                parsed = month_first or day_first
                assumed = "MM/DD/YYYY" if month_first else "DD/MM/YYYY"
            if parsed is None:
                return _unchanged(value)
            return _result(value, parsed.isoformat(), f"Converted {assumed} to YYYY-MM-DD")

        parsed = self._generic_parse(text)
        if parsed is None:
            return _unchanged(value)
        return _result(value, parsed.isoformat(), "Parsed and formatted date")

    @staticmethod
    def _generic_parse(text: str) -> Optional[date]:
        for fmt in _GENERIC_DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None

    def validate(self, value, rule, row=None):
        if _STRICT_ISO_DATE.match(value):
            year, month, day = (int(part) for part in value.split("-"))
            if _calendar_date(year, month, day) is not None:
                return VALID
        return ValidationResult(
            valid=False,
            severity=Severity.YELLOW,
            message="Date must be in YYYY-MM-DD format",
        )


class PhoneBehavior(FieldBehavior):
    """Phone numbers in international format for the rule's country."""

    name = "phone"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        country = rule.setting("phone_country", DEFAULT_COUNTRY)
        normalized = normalize_phone_number(value, country)
        if normalized is None:
            return _unchanged(value)
        return _result(value, normalized, f"Formatted to {country} phone number")

    def validate(self, value, rule, row=None):
        if not _E164.match(_PHONE_SEPARATORS.sub("", value)):
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message="Invalid phone number format",
            )
        return VALID


class BooleanBehavior(FieldBehavior):
    """Yes/no style values normalized to "true"/"false"."""

    name = "boolean"

    def transform(self, value: str, rule: FieldRule) -> TransformResult:
        if not value:
            return _unchanged("")
        normalized = normalize_enum_text(value)
        if normalized in TRUE_VALUES:
            return _result(value, "true", "Normalized boolean")
        if normalized in FALSE_VALUES:
            return _result(value, "false", "Normalized boolean")
        return _unchanged(value)

    def validate(self, value, rule, row=None):
        if value not in ("true", "false"):
            return ValidationResult(
                valid=False,
                severity=Severity.YELLOW,
                message=f"{rule.label} must be yes or no",
            )
        return VALID


# Registry of behaviors, keyed by FieldRule.behavior_name
BEHAVIORS: dict[str, FieldBehavior] = {}


def register_behavior(behavior: FieldBehavior) -> None:
    """Register (or replace) a behavior under its name."""
    BEHAVIORS[behavior.name] = behavior


def get_behavior(name: str) -> FieldBehavior:
    """Look up a behavior; raises ValueError for unknown names."""
    if name not in BEHAVIORS:
        raise ValueError(f"Unknown field behavior: {name}")
    return BEHAVIORS[name]


for _behavior in (
    StringBehavior(),
    NameBehavior(),
    AmountBehavior(),
    AccountNumberBehavior(),
    EnumBehavior(),
    DateBehavior(),
    PhoneBehavior(),
    BooleanBehavior(),
):
    register_behavior(_behavior)
