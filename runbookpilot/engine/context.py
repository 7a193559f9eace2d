"""Run context, template resolution and step guard conditions.

Step parameters may reference run data with ``{{ path }}`` templates:

    {{ alert.source.ip }}              field of the triggering alert
    {{ steps.enrich.output.score }}    output of an earlier step
    {{ context.run_id }}               run variables
    {{ alert.user.name | default: 'unknown' }}

A parameter that is exactly one template keeps the referenced value's type;
templates embedded in longer strings are interpolated as text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}|]+?)(?:\s*\|\s*default:\s*(.+?))?\s*\}\}")

_COMPARISON_PATTERN = re.compile(r"^(-?\d+(?:\.\d+)?)\s*(>=|<=|==|!=|>|<)\s*(-?\d+(?:\.\d+)?)$")

_MISSING = object()


@dataclass
class RunContext:
    """Data visible to templates during a run."""

    alert: dict[str, Any] = field(default_factory=dict)
    steps: dict[str, dict[str, Any]] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)

    def get(self, path: str, default: Any = None) -> Any:
        """Get a value by dotted path.

        Paths start with ``alert``, ``steps`` or ``context``; bare paths are
        looked up in the alert, then in the run variables.
        """
        path = path.strip()
        root, _, rest = path.partition(".")
        if root in ("alert", "steps", "context") and rest:
            value = _dig(getattr(self, root), rest)
        else:
            value = _dig(self.alert, path)
            if value is _MISSING:
                value = _dig(self.context, path)
        return default if value is _MISSING or value is None else value

    def set_step_output(self, step_id: str, output: Any) -> None:
        self.steps[step_id] = {"output": output}


def _dig(data: Any, path: str) -> Any:
    value = data
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def _parse_default(raw: str) -> Any:
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text in ("true", "false"):
        return text == "true"
    if text == "null":
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def resolve_templates(data: Any, context: RunContext) -> Any:
    """Resolve ``{{ path }}`` templates in strings, dicts and lists."""
    if isinstance(data, str):
        full_match = TEMPLATE_PATTERN.fullmatch(data.strip())
        if full_match:
            value = context.get(full_match.group(1))
            if value is None and full_match.group(2) is not None:
                return _parse_default(full_match.group(2))
            if value is None:
                logger.debug("template_unresolved", path=full_match.group(1).strip())
                return data
            return value

        def replace_match(match: re.Match) -> str:
            value = context.get(match.group(1))
            if value is None and match.group(2) is not None:
                value = _parse_default(match.group(2))
            if value is None:
                return match.group(0)
            return str(value)

        return TEMPLATE_PATTERN.sub(replace_match, data)

    if isinstance(data, dict):
        return {key: resolve_templates(value, context) for key, value in data.items()}

    if isinstance(data, list):
        return [resolve_templates(item, context) for item in data]

    return data


def evaluate_condition(condition: str | None, context: RunContext) -> bool:
    """Evaluate a step guard.

    Supports:
    - "true" / "false" (after template resolution)
    - numeric comparisons like "{{ steps.s1.output.detections }} > 5"
    - "<path> is null", "<path> is not null", "<path> is empty", "<path> is not empty"

    Unrecognized expressions evaluate to False.
    """
    if condition is None or not condition.strip():
        return True

    expr = condition.strip()
    for suffix, check in (
        ("is not null", lambda v: v is not None),
        ("is null", lambda v: v is None),
        ("is not empty", lambda v: v is not None and len(v) > 0),
        ("is empty", lambda v: v is None or len(v) == 0),
    ):
        if expr.endswith(suffix):
            path = expr[: -len(suffix)].strip()
            match = TEMPLATE_PATTERN.fullmatch(path)
            value = context.get(match.group(1) if match else path)
            try:
                return bool(check(value))
            except TypeError:
                return False

    resolved = str(resolve_templates(expr, context)).strip()
    if resolved in ("true", "True"):
        return True
    if resolved in ("false", "False"):
        return False

    comparison = _COMPARISON_PATTERN.match(resolved)
    if comparison:
        left, op, right = comparison.groups()
        left, right = float(left), float(right)
        return {
            ">": left > right,
            "<": left < right,
            ">=": left >= right,
            "<=": left <= right,
            "==": left == right,
            "!=": left != right,
        }[op]

    logger.warning("unknown_condition_format", condition=condition)
    return False
