"""Playbook engine for runbookpilot.

This package provides:
- YAML playbook parsing and validation
- Read/write action classification
- Template resolution and step conditions
- The orchestrator with automation-level gating and rollback
"""

from runbookpilot.engine.classifier import classify_action, is_read_only, is_write_action
from runbookpilot.engine.context import RunContext, evaluate_condition, resolve_templates
from runbookpilot.engine.orchestrator import (
    ApprovalCallback,
    ApprovalRequest,
    Orchestrator,
    RollbackOutcome,
    RunOptions,
    RunResult,
    RunState,
    StepOutcome,
)
from runbookpilot.engine.playbook import (
    AutomationLevel,
    OnError,
    Playbook,
    PlaybookConfig,
    PlaybookLoader,
    PlaybookMetadata,
    PlaybookStep,
    PlaybookValidation,
    PlaybookValidationError,
    RollbackDefinition,
)

__all__ = [
    # Loader
    "PlaybookLoader",
    "Playbook",
    "PlaybookMetadata",
    "PlaybookConfig",
    "PlaybookStep",
    "RollbackDefinition",
    "AutomationLevel",
    "OnError",
    "PlaybookValidation",
    "PlaybookValidationError",
    # Classification
    "classify_action",
    "is_read_only",
    "is_write_action",
    # Templates
    "RunContext",
    "resolve_templates",
    "evaluate_condition",
    # Orchestrator
    "Orchestrator",
    "RunOptions",
    "RunResult",
    "RunState",
    "StepOutcome",
    "RollbackOutcome",
    "ApprovalRequest",
    "ApprovalCallback",
]
