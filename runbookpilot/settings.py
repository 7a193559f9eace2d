"""Application settings.

Settings come from three layers, highest precedence first:

1. Environment variables (``RUNBOOKPILOT_*``)
2. A YAML config file (``--config`` or ``RUNBOOKPILOT_CONFIG``)
3. Built-in defaults

String values in the YAML file may reference environment variables as
``${NAME}``; unset variables expand to an empty string.

Example config.yml:

    log_level: INFO
    automation_level: L1
    playbook_dirs: [playbooks]
    adapters:
      virustotal:
        type: enrichment
        credentials:
          type: api_key
          api_key: ${VT_API_KEY}
      mock:
        type: mock
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from runbookpilot.adapters.config import load_adapter_configs
from runbookpilot.adapters.models import AdapterConfig
from runbookpilot.engine.playbook import AutomationLevel

logger = structlog.get_logger()

ENV_PREFIX = "RUNBOOKPILOT_"
CONFIG_ENV = f"{ENV_PREFIX}CONFIG"

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SettingsError(Exception):
    """Raised when the config file cannot be read or holds invalid values."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class Settings(BaseModel):
    """Resolved runtime settings."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    log_level: str = Field(default="INFO")
    automation_level: AutomationLevel | None = Field(
        default=None, description="Overrides each playbook's own level when set"
    )
    playbook_dirs: list[str] = Field(default_factory=lambda: ["playbooks"])
    adapters: dict[str, Any] = Field(
        default_factory=dict, description="Raw adapters.<name> blocks"
    )
    max_execution_time: float | None = Field(
        default=None, gt=0, description="Caps every run, in seconds"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if v is None:
            return "INFO"
        level = str(v).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("automation_level", mode="before")
    @classmethod
    def normalize_automation_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper() or None
        return v

    @field_validator("playbook_dirs", mode="before")
    @classmethod
    def parse_playbook_dirs(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [part for part in v.split(os.pathsep) if part]
        return v

    @field_validator("adapters", mode="before")
    @classmethod
    def parse_adapters(cls, v: Any) -> Any:
        return {} if v is None else v

    def adapter_configs(self, env: Mapping[str, str] | None = None) -> dict[str, AdapterConfig]:
        """Parse the adapter blocks and apply ``ADAPTER_*`` overrides.

        Raises:
            AdapterConfigError: If a block is invalid
        """
        return load_adapter_configs(self.adapters, env)


def expand_env(value: Any, env: Mapping[str, str]) -> Any:
    """Replace ``${NAME}`` references in strings, recursively."""
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(lambda m: env.get(m.group(1), ""), value)
    if isinstance(value, Mapping):
        return {key: expand_env(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item, env) for item in value]
    return value


def _read_config_file(path: Path, env: Mapping[str, str]) -> dict[str, Any]:
    if not path.exists():
        raise SettingsError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Config file {path} must contain a mapping")
    return expand_env(data, env)


def load_settings(
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: YAML file; falls back to ``RUNBOOKPILOT_CONFIG``
        env: Environment mapping (defaults to ``os.environ``)

    Raises:
        SettingsError: If the file is missing, malformed or holds invalid values
    """
    env = os.environ if env is None else env
    config_path = config_path or env.get(CONFIG_ENV)

    values: dict[str, Any] = {}
    if config_path:
        values = _read_config_file(Path(config_path), env)
        logger.debug("config_file_loaded", path=str(config_path))

    for key in ("log_level", "automation_level", "playbook_dirs", "max_execution_time"):
        override = env.get(f"{ENV_PREFIX}{key.upper()}")
        if override:
            values[key] = override

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise SettingsError(f"Invalid settings: {'; '.join(errors)}", errors) from e
