"""Playbook models and loader.

This module provides:
- Pydantic v2 models for playbooks, steps and rollback definitions
- YAML (and JSON) parsing with schema validation
- Structural validation: unique step ids, known dependencies, timeouts
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from runbookpilot.engine.classifier import is_write_action

logger = structlog.get_logger()

PLAYBOOK_EXTENSIONS = (".yml", ".yaml", ".json")


# =============================================================================
# Exceptions
# =============================================================================


class PlaybookValidationError(Exception):
    """Raised when a playbook cannot be parsed or fails validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


# =============================================================================
# Playbook Models
# =============================================================================


class AutomationLevel(str, Enum):
    """How much of a run may proceed without an analyst.

    L0: plan only, every step is manual
    L1: read actions run automatically, write actions need approval
    L2: full automation, gated behind an explicit enable flag
    """

    L0 = "L0"
    L1 = "L1"
    L2 = "L2"


class OnError(str, Enum):
    """What to do when a step fails."""

    HALT = "halt"
    CONTINUE = "continue"
    SKIP = "skip"


class RollbackDefinition(BaseModel):
    """Compensating action for a step."""

    model_config = ConfigDict(extra="allow")

    action: str = Field(description="Action that undoes the step")
    executor: str | None = Field(default=None, description="Defaults to the step's executor")
    parameters: dict[str, Any] = Field(default_factory=dict)
    timeout: float = Field(default=300.0, gt=0, description="Seconds")


class PlaybookStep(BaseModel):
    """A single step: one action on one adapter."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Unique within the playbook, e.g. step-01")
    name: str = Field(default="", description="Human-readable step name")
    description: str = Field(default="")
    action: str = Field(description="Action identifier")
    executor: str = Field(description="Name of the adapter that runs the action")
    parameters: dict[str, Any] = Field(default_factory=dict)
    approval_required: bool | None = Field(
        default=None, description="Overrides the playbook-level approval setting"
    )
    rollback: RollbackDefinition | None = None
    on_error: OnError = Field(default=OnError.HALT)
    timeout: float = Field(default=300.0, gt=0, description="Seconds")
    depends_on: list[str] = Field(default_factory=list)
    condition: str | None = Field(
        default=None, description="Guard expression like 'steps.s1.output.count is not empty'"
    )

    @field_validator("id", "action", "executor")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("parameters", mode="before")
    @classmethod
    def parse_parameters(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("depends_on", mode="before")
    @classmethod
    def parse_depends_on(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id


class PlaybookMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(description="Playbook name")
    description: str = Field(default="")
    author: str | None = None
    tags: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


class PlaybookConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    automation_level: AutomationLevel = Field(default=AutomationLevel.L0)
    max_execution_time: float = Field(default=3600.0, gt=0, description="Seconds")
    requires_approval: bool = Field(default=True)
    rollback_on_failure: bool = Field(default=True)
    parallel_execution: bool = Field(default=False)


class Playbook(BaseModel):
    """A complete playbook definition."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Playbook identifier")
    version: str = Field(default="1.0")
    metadata: PlaybookMetadata
    triggers: dict[str, Any] = Field(default_factory=dict)
    config: PlaybookConfig = Field(default_factory=PlaybookConfig)
    steps: list[PlaybookStep] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_string(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v

    @property
    def name(self) -> str:
        return self.metadata.name

    def get_step(self, step_id: str) -> PlaybookStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def executors(self) -> list[str]:
        """Adapter names referenced by steps and rollbacks, first-seen order."""
        names: list[str] = []
        for step in self.steps:
            for name in (step.executor, step.rollback.executor if step.rollback else None):
                if name and name not in names:
                    names.append(name)
        return names


# =============================================================================
# Validation Result
# =============================================================================


class PlaybookValidation(BaseModel):
    """Result of playbook validation."""

    model_config = ConfigDict(extra="allow")

    valid: bool = Field(description="Whether the playbook is valid")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Playbook Loader
# =============================================================================


class PlaybookLoader:
    """Loader for YAML/JSON playbook definitions.

    Documents may wrap the playbook in a top-level ``runbook:`` key.

    Example:
        loader = PlaybookLoader()
        playbook = loader.load_from_file("playbooks/phishing.yml")
        result = loader.validate(playbook)
        if not result.valid:
            print(result.errors)
    """

    def __init__(self) -> None:
        self._logger = logger.bind(component="playbook_loader")

    def load_from_string(self, content: str) -> Playbook:
        """Parse a playbook from YAML or JSON text.

        Raises:
            PlaybookValidationError: If the document is malformed or fails the schema
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise PlaybookValidationError(f"Invalid YAML: {e}") from e
        return self._build(data)

    def load_from_file(self, path: str | Path) -> Playbook:
        """Load a playbook file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            PlaybookValidationError: If the file is malformed or fails the schema
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Playbook file not found: {path}")

        self._logger.info("loading_playbook", path=str(path))
        playbook = self.load_from_string(path.read_text(encoding="utf-8"))
        self._logger.info(
            "playbook_loaded",
            id=playbook.id,
            name=playbook.name,
            steps=len(playbook.steps),
        )
        return playbook

    def load_directory(self, directory: str | Path) -> dict[Path, Playbook]:
        """Load every playbook file in ``directory``; unparsable files are logged and skipped."""
        directory = Path(directory)
        playbooks: dict[Path, Playbook] = {}
        if not directory.is_dir():
            return playbooks

        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in PLAYBOOK_EXTENSIONS:
                continue
            try:
                playbooks[path] = self.load_from_file(path)
            except PlaybookValidationError as e:
                self._logger.warning("playbook_load_failed", path=str(path), error=str(e))
        return playbooks

    def _build(self, data: Any) -> Playbook:
        if isinstance(data, dict) and isinstance(data.get("runbook"), dict):
            data = data["runbook"]
        if not isinstance(data, dict):
            raise PlaybookValidationError("Playbook must be a mapping")

        try:
            return Playbook.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise PlaybookValidationError(
                f"Failed to parse playbook: {'; '.join(errors)}", errors
            ) from e

    def validate(self, playbook: Playbook) -> PlaybookValidation:
        """Check references and structure that the schema alone cannot express.

        Checks:
        - At least one step
        - Step ids are unique
        - depends_on references an earlier step
        - Write steps without a rollback and timeouts beyond the run budget
          produce warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        self._logger.debug("validating_playbook", id=playbook.id)

        if not playbook.steps:
            errors.append("Playbook must have at least one step")

        seen: set[str] = set()
        for step in playbook.steps:
            if step.id in seen:
                errors.append(f"Duplicate step id: '{step.id}'")
            for dep in step.depends_on:
                if dep == step.id:
                    errors.append(f"Step '{step.id}' depends on itself")
                elif dep not in seen:
                    errors.append(
                        f"Step '{step.id}' depends on '{dep}', which is not an earlier step"
                    )
            if step.rollback is None and is_write_action(step.action):
                warnings.append(f"Write step '{step.id}' ({step.action}) has no rollback")
            seen.add(step.id)

        total_timeout = sum(step.timeout for step in playbook.steps)
        if total_timeout > playbook.config.max_execution_time:
            warnings.append(
                f"Sum of step timeouts ({total_timeout:g}s) exceeds "
                f"max_execution_time ({playbook.config.max_execution_time:g}s)"
            )

        return PlaybookValidation(valid=not errors, errors=errors, warnings=warnings)
