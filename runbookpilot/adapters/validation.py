"""Declarative parameter validation.

Each adapter declares a rule table mapping action names to an ordered list of
``ParameterRule``. Validation is pure: it never touches adapter state or I/O.

Example:
    RULES = {
        "enrich_ioc": [
            ParameterRule("ioc", required=True),
            ParameterRule("ioc_type", required=True, allowed_values=("hash", "ip")),
        ],
    }
    result = validate_parameters("enrich_ioc", {"ioc": "abc"}, RULES)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from runbookpilot.adapters.models import ValidationResult


@dataclass(frozen=True)
class ParameterRule:
    """One field constraint for an action."""

    field: str
    required: bool = False
    allowed_values: tuple[str, ...] | None = None

    @classmethod
    def choice(cls, field: str, enum_cls: type[Enum], required: bool = False) -> ParameterRule:
        """Build an enum-constrained rule from an Enum's values."""
        return cls(field, required=required, allowed_values=tuple(str(m.value) for m in enum_cls))


RuleTable = Mapping[str, Sequence[ParameterRule]]


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_rule(action: str, rule: ParameterRule, params: Mapping[str, Any]) -> str | None:
    """Return the error message for a single rule, or None if it holds."""
    value = params.get(rule.field)
    if isinstance(value, Enum):
        value = value.value
    if _is_missing(value):
        if rule.required:
            return f"Parameter '{rule.field}' is required for {action}"
        return None
    if rule.allowed_values is not None and str(value) not in rule.allowed_values:
        allowed = ", ".join(rule.allowed_values)
        return f"Invalid {rule.field} '{value}'. Must be one of: {allowed}"
    return None


def validate_parameters(
    action: str,
    params: Mapping[str, Any] | None,
    rules: RuleTable,
) -> ValidationResult:
    """Validate ``params`` for ``action`` against a rule table.

    Args:
        action: Action identifier
        params: Parameters supplied by the caller
        rules: Rule table keyed by action

    Returns:
        ValidationResult whose errors follow rule declaration order
    """
    if action not in rules:
        return ValidationResult.from_errors([f"Unsupported action: {action}"])

    params = params or {}
    errors = []
    for rule in rules[action]:
        message = check_rule(action, rule, params)
        if message:
            errors.append(message)
    return ValidationResult.from_errors(errors)
