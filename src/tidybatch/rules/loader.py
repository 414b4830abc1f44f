"""
Build RuleSets from rule configuration.

Rule configs come from the `rules.fields` list of the YAML config. Each entry
refers to a field by key and may disable it, relabel it, toggle `required`,
replace enum options or add behavior settings. Keys not present in the base
rule set create new fields whose behavior is chosen by `type`.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional, Union

from .behaviors import BEHAVIORS
from .payroll import PAYROLL_RULES
from .types import EnumOption, FieldRule, FieldType, RuleSet

logger = logging.getLogger(__name__)


@dataclass
class RuleConfig:
    """Configuration overrides for one field.

    None means "keep the base rule's value".
    """

    key: str
    label: Optional[str] = None
    type: Optional[FieldType] = None
    required: Optional[bool] = None
    enabled: bool = True
    behavior: Optional[str] = None
    format: Optional[str] = None
    options: Optional[tuple[EnumOption, ...]] = None
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleConfig":
        """Create from a YAML mapping.

        Raises:
            ValueError: Missing key, unknown type or unknown behavior
        """
        if not data.get("key"):
            raise ValueError("Rule config requires a 'key'")

        field_type = FieldType(data["type"]) if data.get("type") else None
        behavior = data.get("behavior")
        if behavior and behavior not in BEHAVIORS:
            raise ValueError(f"Unknown behavior '{behavior}' for field '{data['key']}'")

        options = None
        if data.get("options") is not None:
            options = tuple(EnumOption.from_dict(o) for o in data["options"])

        return cls(
            key=str(data["key"]),
            label=data.get("label"),
            type=field_type,
            required=data.get("required"),
            enabled=bool(data.get("enabled", True)),
            behavior=behavior,
            format=data.get("format"),
            options=options,
            settings=dict(data.get("settings") or {}),
        )


# One enabled config per payroll field
DEFAULT_RULE_CONFIG: tuple[RuleConfig, ...] = tuple(
    RuleConfig(key=rule.key, label=rule.label, type=rule.type, required=rule.required)
    for rule in PAYROLL_RULES.fields
)


def _apply(rule: FieldRule, config: RuleConfig, settings: dict[str, Any]) -> FieldRule:
    return replace(
        rule,
        label=config.label or rule.label,
        type=config.type or rule.type,
        required=rule.required if config.required is None else config.required,
        behavior=config.behavior or rule.behavior,
        format=config.format or rule.format,
        options=rule.options if config.options is None else config.options,
        settings={**rule.settings, **settings, **config.settings},
    )


def _new_rule(config: RuleConfig, settings: dict[str, Any]) -> FieldRule:
    return FieldRule(
        key=config.key,
        label=config.label or config.key,
        type=config.type or FieldType.STRING,
        required=bool(config.required),
        behavior=config.behavior,
        format=config.format,
        options=config.options or (),
        settings={**settings, **config.settings},
    )


def build_rule_set(
    configs: Iterable[Union[RuleConfig, dict[str, Any]]] = (),
    base: RuleSet = PAYROLL_RULES,
    name: Optional[str] = None,
    settings: Optional[dict[str, Any]] = None,
) -> RuleSet:
    """
    Build a RuleSet by applying configs to a base rule set.

    Args:
        configs: RuleConfig objects or YAML mappings
        base: Rule set providing the built-in fields
        name: Name of the resulting rule set (defaults to the base name)
        settings: Behavior settings applied to every field (per-field
            settings take precedence)

    Returns:
        RuleSet with disabled fields removed, base fields first
    """
    shared = dict(settings or {})
    parsed = [c if isinstance(c, RuleConfig) else RuleConfig.from_dict(c) for c in configs]
    by_key = {c.key: c for c in parsed}

    fields: list[FieldRule] = []
    for rule in base.fields:
        config = by_key.pop(rule.key, None)
        if config is None:
            fields.append(replace(rule, settings={**rule.settings, **shared}))
        elif config.enabled:
            fields.append(_apply(rule, config, shared))
        else:
            logger.debug("Field %s disabled by configuration", rule.key)

    for config in parsed:
        if config.key in by_key and config.enabled:
            fields.append(_new_rule(config, shared))

    return RuleSet(name=name or base.name, fields=tuple(fields))
