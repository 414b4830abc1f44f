"""
Field rule engine.

Declarative per-field transform + validate. Rule sets are pure data; the
transform/validate behavior of each field is looked up from a registry of
typed behaviors.
"""

from .behaviors import (
    BEHAVIORS,
    COUNTRY_CODES,
    FieldBehavior,
    get_behavior,
    match_enum,
    normalize_phone_number,
    register_behavior,
)
from .engine import normalize_value, process_row, target_schema, transform_field, validate_field
from .loader import DEFAULT_RULE_CONFIG, RuleConfig, build_rule_set
from .payroll import MALAYSIAN_BANK_CODES, PAYROLL_RULES
from .types import (
    VALID,
    Change,
    EnumOption,
    FieldError,
    FieldRule,
    FieldType,
    RowResult,
    RuleSet,
    Severity,
    TransformResult,
    ValidationResult,
)

__all__ = [
    # Types
    "FieldType",
    "Severity",
    "EnumOption",
    "FieldRule",
    "RuleSet",
    "TransformResult",
    "ValidationResult",
    "VALID",
    "Change",
    "FieldError",
    "RowResult",
    # Behaviors
    "FieldBehavior",
    "BEHAVIORS",
    "COUNTRY_CODES",
    "register_behavior",
    "get_behavior",
    "match_enum",
    "normalize_phone_number",
    # Engine
    "process_row",
    "normalize_value",
    "transform_field",
    "validate_field",
    "target_schema",
    # Rule content and configuration
    "PAYROLL_RULES",
    "MALAYSIAN_BANK_CODES",
    "RuleConfig",
    "DEFAULT_RULE_CONFIG",
    "build_rule_set",
]
