"""Adapter configuration loading.

Adapter blocks live under ``adapters.<name>`` in config.yml:

    adapters:
      virustotal:
        type: enrichment
        config:
          base_url: https://www.virustotal.com/api/v3
        credentials:
          type: api_key
          api_key: ${VT_API_KEY}
        timeout: 15
        retry:
          max_attempts: 3
          backoff_ms: 1000

Environment variables ``ADAPTER_<NAME>_<KEY>`` override file values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from runbookpilot.adapters.errors import AdapterConfigError
from runbookpilot.adapters.models import (
    AdapterConfig,
    AdapterCredentials,
    CredentialKind,
    RetryPolicy,
)

logger = structlog.get_logger()

VALID_ADAPTER_TYPES = (
    "edr",
    "siem",
    "firewall",
    "iam",
    "ticketing",
    "notification",
    "enrichment",
    "mock",
    "generic",
)

ENV_PREFIX = "ADAPTER_"

SECRET_KEYS = frozenset(
    {
        "api_key",
        "api_secret",
        "password",
        "token",
        "secret",
        "client_secret",
        "private_key",
    }
)

REDACTED = "***"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _collect_errors(name: str, raw: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []

    adapter_type = raw.get("type")
    if not adapter_type or not isinstance(adapter_type, str):
        errors.append(f"Adapter '{name}': missing or invalid 'type'")
    elif adapter_type not in VALID_ADAPTER_TYPES:
        errors.append(
            f"Adapter '{name}': invalid type '{adapter_type}'. "
            f"Valid: {', '.join(VALID_ADAPTER_TYPES)}"
        )

    timeout = raw.get("timeout")
    if timeout is not None and (not _is_number(timeout) or timeout <= 0):
        errors.append(f"Adapter '{name}': timeout must be a positive number")

    retry = raw.get("retry")
    if retry is not None and not isinstance(retry, Mapping):
        errors.append(f"Adapter '{name}': retry must be a mapping")
    elif retry:
        attempts = retry.get("max_attempts")
        if attempts is not None and (not _is_number(attempts) or attempts < 1):
            errors.append(f"Adapter '{name}': retry.max_attempts must be >= 1")
        backoff = retry.get("backoff_ms")
        if backoff is not None and (not _is_number(backoff) or backoff < 0):
            errors.append(f"Adapter '{name}': retry.backoff_ms must be >= 0")

    credentials = raw.get("credentials")
    if credentials is not None and not isinstance(credentials, Mapping):
        errors.append(f"Adapter '{name}': credentials must be a mapping")
    elif credentials and credentials.get("type") is not None:
        kinds = [k.value for k in CredentialKind]
        if credentials["type"] not in kinds:
            errors.append(
                f"Adapter '{name}': invalid credentials type '{credentials['type']}'. "
                f"Valid: {', '.join(kinds)}"
            )

    return errors


def parse_adapter_config(name: str, raw: Mapping[str, Any]) -> AdapterConfig:
    """Parse and validate a raw ``adapters.<name>`` block.

    Args:
        name: Adapter name (the key under ``adapters``)
        raw: Raw mapping as loaded from YAML

    Returns:
        Validated AdapterConfig with defaults applied

    Raises:
        AdapterConfigError: If any field is invalid; all problems are reported
    """
    if not isinstance(raw, Mapping):
        raise AdapterConfigError(name, [f"Adapter '{name}': block must be a mapping"])

    errors = _collect_errors(name, raw)
    if errors:
        raise AdapterConfigError(name, errors)

    credentials = None
    raw_credentials = raw.get("credentials")
    if raw_credentials:
        values = {k: str(v) for k, v in raw_credentials.items() if k != "type" and v is not None}
        credentials = AdapterCredentials(
            kind=raw_credentials.get("type") or CredentialKind.API_KEY,
            values=values,
        )

    try:
        return AdapterConfig(
            name=name,
            type=raw["type"],
            enabled=raw.get("enabled", True),
            config=dict(raw.get("config") or {}),
            credentials=credentials,
            timeout=raw.get("timeout", 30.0),
            retry=RetryPolicy(**(raw.get("retry") or {})),
        )
    except ValidationError as e:
        raise AdapterConfigError(
            name, [f"Adapter '{name}': {err['msg']}" for err in e.errors()]
        ) from e


def _env_key(name: str) -> str:
    return f"{ENV_PREFIX}{name.upper().replace('-', '_')}_"


def apply_env_overrides(
    config: AdapterConfig, env: Mapping[str, str] | None = None
) -> AdapterConfig:
    """Apply ``ADAPTER_<NAME>_<KEY>`` environment overrides.

    Recognized keys:
        ENABLED  -> enabled ("true" enables, anything else disables)
        TIMEOUT  -> timeout in seconds (ignored if not a positive number)
        API_KEY  -> credentials api_key
        API_URL  -> config base_url
        <OTHER>  -> config.<lowercase key>
    """
    env = os.environ if env is None else env
    prefix = _env_key(config.name)
    updates: dict[str, Any] = {}
    settings = dict(config.config)
    credentials = config.credentials

    for key, value in env.items():
        if not key.startswith(prefix) or not value:
            continue
        suffix = key[len(prefix):]
        if suffix == "ENABLED":
            updates["enabled"] = value.strip().lower() == "true"
        elif suffix == "TIMEOUT":
            try:
                timeout = float(value)
            except ValueError:
                logger.warning("adapter_env_timeout_invalid", adapter=config.name, value=value)
                continue
            if timeout > 0:
                updates["timeout"] = timeout
        elif suffix == "API_KEY":
            kind = credentials.kind if credentials else CredentialKind.API_KEY
            values = dict(credentials.values) if credentials else {}
            values["api_key"] = value
            credentials = AdapterCredentials(kind=kind, values=values)
        elif suffix == "API_URL":
            settings["base_url"] = value
        else:
            settings[suffix.lower()] = value

    if credentials is not config.credentials:
        updates["credentials"] = credentials
    if settings != config.config:
        updates["config"] = settings
    if not updates:
        return config

    logger.debug("adapter_env_overrides_applied", adapter=config.name, keys=sorted(updates))
    return config.model_copy(update=updates)


def load_adapter_configs(
    section: Mapping[str, Any] | None,
    env: Mapping[str, str] | None = None,
) -> dict[str, AdapterConfig]:
    """Parse every block of an ``adapters`` section and apply env overrides."""
    configs: dict[str, AdapterConfig] = {}
    for name, raw in (section or {}).items():
        configs[name] = apply_env_overrides(parse_adapter_config(name, raw), env)
    return configs


def _redact(obj: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in obj.items():
        if key.lower() in SECRET_KEYS:
            result[key] = REDACTED
        elif isinstance(value, Mapping):
            result[key] = _redact(value)
        else:
            result[key] = value
    return result


def redact_adapter_config(config: AdapterConfig) -> dict[str, Any]:
    """Serialize a config for logging with secret values masked."""
    redacted: dict[str, Any] = {
        "name": config.name,
        "type": config.type,
        "enabled": config.enabled,
        "timeout": config.timeout,
        "retry": config.retry.model_dump(),
        "config": _redact(config.config),
    }
    if config.credentials:
        redacted["credentials"] = {
            "type": config.credentials.kind.value,
            "values": _redact(config.credentials.values),
        }
    return redacted
