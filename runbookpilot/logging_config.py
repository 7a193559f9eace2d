"""structlog configuration for the command line and embedding applications."""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog

SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "x-apikey",
        "password",
        "token",
        "secret",
        "authorization",
        "credentials",
    }
)

REDACTED = "***"


def _redact_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else _redact_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Processor that masks credential-like keys, including nested ones."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact_value(event_dict[key])
    return event_dict


def configure_logging(
    verbose: bool = False,
    json_output: bool = False,
    level: str | None = None,
) -> None:
    """Configure structlog processors and the minimum level.

    Args:
        verbose: Log at DEBUG regardless of ``level``
        json_output: Render one JSON object per line instead of console output
        level: Level name such as "INFO" or "WARNING" (defaults to INFO)
    """
    if verbose:
        min_level = logging.DEBUG
    else:
        min_level = logging.getLevelName((level or "INFO").upper())
        if not isinstance(min_level, int):
            min_level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
