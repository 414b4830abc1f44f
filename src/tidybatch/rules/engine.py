"""
Field rule engine.

Runs a RuleSet over one row of raw string values and reports the cleaned
values, the changes the transforms made and the field errors.

Evaluation rules:
- Every field is evaluated independently; no transform sees another
  field's output. Cross-field validation reads the original row snapshot.
- Transform first; a changed value is recorded as a Change and used for the
  remaining steps of that field only.
- Required + empty (after transform) is a red error and skips validation.
- Validation runs only on non-empty values.
- Rule errors are data, never exceptions.
"""

import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .behaviors import get_behavior
from .types import (
    Change,
    FieldError,
    FieldRule,
    RowResult,
    RuleSet,
    Severity,
    TransformResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def transform_field(rule: FieldRule, value: str) -> TransformResult:
    """Apply the rule's transform to one value."""
    return get_behavior(rule.behavior_name).transform(_as_text(value), rule)


def validate_field(
    rule: FieldRule,
    value: str,
    row: Optional[Mapping[str, str]] = None,
) -> ValidationResult:
    """Apply the rule's validation to one (already transformed) value."""
    return get_behavior(rule.behavior_name).validate(value, rule, row)


def process_row(row_data: Mapping[str, Any], rule_set: RuleSet) -> RowResult:
    """
    Run every rule of a RuleSet over one row.

    Columns without a rule are copied to `cleaned` unchanged.

    Args:
        row_data: Raw values keyed by field key
        rule_set: Rules to apply

    Returns:
        RowResult with cleaned values, changes and errors (in rule order)
    """
    snapshot = MappingProxyType({key: _as_text(value) for key, value in row_data.items()})
    cleaned = dict(snapshot)
    changes: list[Change] = []
    errors: list[FieldError] = []

    for rule in rule_set.fields:
        original = snapshot.get(rule.key, "")
        result = transform_field(rule, original)
        value = original

        if result.changed:
            value = result.value
            cleaned[rule.key] = value
            changes.append(
                Change(
                    column=rule.key,
                    original=original,
                    cleaned=value,
                    reason=result.message or "Normalized value",
                )
            )

        if not value.strip():
            if rule.required:
                errors.append(
                    FieldError(
                        column=rule.key,
                        message=f"Missing required field: {rule.label}",
                        severity=Severity.RED,
                    )
                )
            continue

        validation = validate_field(rule, value, snapshot)
        if not validation.valid:
            errors.append(
                FieldError(
                    column=rule.key,
                    message=validation.message or "Validation failed",
                    severity=validation.severity or Severity.YELLOW,
                    suggestion=validation.suggestion,
                    confidence=validation.confidence,
                )
            )

    logger.debug(
        "Processed row against %s: %d changes, %d errors",
        rule_set.name,
        len(changes),
        len(errors),
    )
    return RowResult(cleaned=cleaned, changes=tuple(changes), errors=tuple(errors))


def normalize_value(rule_set: RuleSet, key: str, value: Any) -> str:
    """
    Normalize a single value with the transform of its field.

    Used for manual edits and reconciliation replies, so that values entered
    after import go through the same normalization as imported ones.
    Unknown keys are returned as-is.
    """
    rule = rule_set.get(key)
    text = _as_text(value)
    if rule is None:
        return text
    return transform_field(rule, text).value


def describe_rule(rule: FieldRule) -> str:
    """Human-readable format/constraint summary for one rule."""
    if rule.format:
        return rule.format
    if rule.constraints:
        return "; ".join(rule.constraints)
    return ""


def target_schema(rule_set: RuleSet) -> list[dict[str, Any]]:
    """
    Describe a RuleSet for column-mapping and form collaborators.

    Returns:
        One dict per field: key, label, type, required, rules
    """
    return [
        {
            "key": rule.key,
            "label": rule.label,
            "type": rule.type.value,
            "required": rule.required,
            "rules": describe_rule(rule),
        }
        for rule in rule_set.fields
    ]
