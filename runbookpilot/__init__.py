"""
runbookpilot - security-operations playbook runner

Runs response playbooks against vendor integrations under three execution
modes, so the same playbook can be rehearsed, checked and then run for real:

Execution Modes:
    - simulation: deterministic synthetic output, no external I/O
    - dry-run: parameter validation only, no external I/O
    - production: live calls with rate limiting, retry and timeouts

Submodules:
    - runbookpilot.adapters: adapter contract, validation, resilience,
      VirusTotal threat-intel adapter, mock adapter, registry
    - runbookpilot.engine: playbook models and loader, action classification,
      templates, orchestrator
    - runbookpilot.settings: YAML + environment configuration
    - runbookpilot.cli: command line entry point

Example:
    Run a playbook in simulation::

        from runbookpilot import Orchestrator, PlaybookLoader, RunOptions
        from runbookpilot.adapters import build_registry, load_adapter_configs

        registry = build_registry(load_adapter_configs({"mock": {"type": "mock"}}))
        playbook = PlaybookLoader().load_from_file("playbooks/ioc-triage.yml")
        result = await Orchestrator(registry, RunOptions()).run(playbook, alert)
"""

__version__ = "0.1.0"

from runbookpilot.adapters.models import (
    ActionResult,
    AdapterConfig,
    Capabilities,
    ErrorDetail,
    ExecutionMode,
    HealthStatus,
)
from runbookpilot.engine.orchestrator import (
    Orchestrator,
    RunOptions,
    RunResult,
    RunState,
)
from runbookpilot.engine.playbook import (
    AutomationLevel,
    Playbook,
    PlaybookLoader,
    PlaybookValidationError,
)

__all__ = [
    "__version__",
    # Adapter models
    "ActionResult",
    "AdapterConfig",
    "Capabilities",
    "ErrorDetail",
    "ExecutionMode",
    "HealthStatus",
    # Playbooks
    "AutomationLevel",
    "Playbook",
    "PlaybookLoader",
    "PlaybookValidationError",
    # Orchestration
    "Orchestrator",
    "RunOptions",
    "RunResult",
    "RunState",
]
