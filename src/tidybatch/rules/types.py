"""
Rule engine data types.

A RuleSet is pure data: an ordered tuple of FieldRule. Behavior (transform and
validate) is looked up from the behavior registry by name, so rule sets can be
loaded from YAML without carrying functions around.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class FieldType(str, Enum):
    """Logical column type."""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    PHONE = "phone"
    ENUM = "enum"
    BOOLEAN = "boolean"


class Severity(str, Enum):
    """Field error severity. Red blocks payment, yellow asks for review."""

    YELLOW = "yellow"
    RED = "red"


@dataclass(frozen=True)
class EnumOption:
    """One canonical enum value with its display label and accepted aliases."""

    value: str
    label: str
    aliases: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"value": self.value, "label": self.label, "aliases": list(self.aliases)}

    @classmethod
    def from_dict(cls, data: dict) -> "EnumOption":
        return cls(
            value=str(data["value"]),
            label=str(data.get("label", data["value"])),
            aliases=tuple(str(a) for a in data.get("aliases") or ()),
        )


@dataclass(frozen=True)
class FieldRule:
    """
    Declarative rule for one logical column.

    Attributes:
        key: Stable field identifier (e.g. "accountNumber")
        label: Human-readable name used in messages
        type: Logical type; also picks the default behavior
        required: Empty values produce a red error
        behavior: Behavior registry key (defaults to the type's behavior)
        format: Human-readable target format, shown to mapping collaborators
        options: Enum options (enum fields only)
        constraints: Human-readable constraint messages
        settings: Behavior-specific settings (e.g. phone_country, day_first)
    """

    key: str
    label: str
    type: FieldType = FieldType.STRING
    required: bool = False
    behavior: Optional[str] = None
    format: Optional[str] = None
    options: tuple[EnumOption, ...] = ()
    constraints: tuple[str, ...] = ()
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def behavior_name(self) -> str:
        return self.behavior or DEFAULT_BEHAVIORS[self.type]

    def setting(self, name: str, default: Any = None) -> Any:
        return self.settings.get(name, default)


# Behavior used when a rule does not name one explicitly
DEFAULT_BEHAVIORS = {
    FieldType.STRING: "string",
    FieldType.NUMBER: "amount",
    FieldType.DATE: "date",
    FieldType.PHONE: "phone",
    FieldType.ENUM: "enum",
    FieldType.BOOLEAN: "boolean",
}


@dataclass(frozen=True)
class RuleSet:
    """Ordered rules; order is evaluation order only and has no semantic effect."""

    name: str
    fields: tuple[FieldRule, ...]

    def get(self, key: str) -> Optional[FieldRule]:
        for rule in self.fields:
            if rule.key == key:
                return rule
        return None

    @property
    def keys(self) -> list[str]:
        return [rule.key for rule in self.fields]


@dataclass(frozen=True)
class TransformResult:
    value: str
    changed: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    severity: Optional[Severity] = None
    message: Optional[str] = None
    suggestion: Optional[str] = None
    confidence: Optional[float] = None


VALID = ValidationResult(valid=True)


@dataclass(frozen=True)
class Change:
    """A transform that altered a field value."""

    column: str
    original: str
    cleaned: str
    reason: str


@dataclass(frozen=True)
class FieldError:
    """A field that failed the required check or validation."""

    column: str
    message: str
    severity: Severity
    suggestion: Optional[str] = None
    confidence: Optional[float] = None


@dataclass(frozen=True)
class RowResult:
    """Output of running a RuleSet over one row."""

    cleaned: dict[str, str]
    changes: tuple[Change, ...] = ()
    errors: tuple[FieldError, ...] = ()

    def change_for(self, column: str) -> Optional[Change]:
        for change in self.changes:
            if change.column == column:
                return change
        return None

    def error_for(self, column: str) -> Optional[FieldError]:
        for error in self.errors:
            if error.column == column:
                return error
        return None
