"""Playbook orchestrator.

This module provides:
- Sequential step execution against registered adapters
- Automation-level gating (L0 plan/confirm, L1 approve writes, L2 full auto)
- Global dry-run override and per-step timeouts
- Per-adapter admission control bounded by ``max_concurrency``
- Reverse-order rollback of completed steps when a run halts
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.errors import (
    ADAPTER_DISABLED,
    ADAPTER_NOT_FOUND,
    SIMULATION_NOT_SUPPORTED,
    UNSUPPORTED_ACTION,
    AdapterUsageError,
)
from runbookpilot.adapters.models import ActionResult, ErrorDetail, ExecutionMode
from runbookpilot.adapters.registry import AdapterRegistry
from runbookpilot.engine.classifier import classify_action, is_write_action
from runbookpilot.engine.context import RunContext, evaluate_condition, resolve_templates
from runbookpilot.engine.playbook import AutomationLevel, OnError, Playbook, PlaybookStep

logger = structlog.get_logger()

APPROVAL_DENIED = "APPROVAL_DENIED"
L2_NOT_ENABLED = "L2_NOT_ENABLED"
STEP_TIMEOUT = "STEP_TIMEOUT"
STEP_EXECUTION_ERROR = "STEP_EXECUTION_ERROR"
RUN_TIMEOUT = "RUN_TIMEOUT"

SKIP_DEPENDENCIES = "Dependencies not met"
SKIP_CONDITION = "Condition not met"
SKIP_MANUAL = "Manual execution required (L0)"
SKIP_AWAITING_APPROVAL = "Awaiting approval"


# =============================================================================
# Approval
# =============================================================================


@dataclass
class ApprovalRequest:
    """Everything an analyst needs to approve or deny one step."""

    step_id: str
    step_name: str
    action: str
    executor: str
    parameters: dict[str, Any]
    classification: str
    automation_level: AutomationLevel
    mode: ExecutionMode


ApprovalCallback = Callable[[ApprovalRequest], Awaitable[bool]]


@dataclass
class RunOptions:
    """Global run flags, usually parsed from the command line."""

    mode: ExecutionMode = ExecutionMode.SIMULATION
    automation_level: AutomationLevel | None = None
    dry_run: bool = False
    verbose: bool = False
    enable_l2: bool = False
    max_execution_time: float | None = None
    approval_callback: ApprovalCallback | None = None
    variables: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_mode(self) -> ExecutionMode:
        return ExecutionMode.DRY_RUN if self.dry_run else ExecutionMode(self.mode)


# =============================================================================
# Run Results
# =============================================================================


class RunState(str, Enum):
    """Terminal state of a run."""

    PLANNED = "planned"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class StepOutcome:
    """Result of one playbook step."""

    step_id: str
    step_name: str
    action: str
    executor: str
    success: bool
    output: dict[str, Any] | None = None
    error: ErrorDetail | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0
    skipped: bool = False
    skip_reason: str | None = None
    approved: bool | None = None

    @property
    def failed(self) -> bool:
        return not self.success and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "step_id": self.step_id,
            "step_name": self.step_name,
            "action": self.action,
            "executor": self.executor,
            "success": self.success,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "approved": self.approved,
        }


@dataclass
class RollbackOutcome:
    """Result of undoing one completed step."""

    step_id: str
    action: str
    executor: str
    success: bool
    error: ErrorDetail | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "step_id": self.step_id,
            "action": self.action,
            "executor": self.executor,
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
        }


@dataclass
class RunResult:
    """Result of running a complete playbook."""

    run_id: str
    playbook_id: str
    success: bool
    state: RunState
    mode: ExecutionMode
    automation_level: AutomationLevel
    steps: list[StepOutcome] = field(default_factory=list)
    rollbacks: list[RollbackOutcome] = field(default_factory=list)
    error: ErrorDetail | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0

    @property
    def metrics(self) -> dict[str, int]:
        return {
            "total_steps": len(self.steps),
            "successful_steps": sum(1 for s in self.steps if s.success and not s.skipped),
            "failed_steps": sum(1 for s in self.steps if s.failed),
            "skipped_steps": sum(1 for s in self.steps if s.skipped),
            "rollbacks_attempted": len(self.rollbacks),
            "rollbacks_failed": sum(1 for r in self.rollbacks if not r.success),
        }

    def get_step(self, step_id: str) -> StepOutcome | None:
        for outcome in self.steps:
            if outcome.step_id == step_id:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "playbook_id": self.playbook_id,
            "success": self.success,
            "state": self.state.value,
            "mode": self.mode.value,
            "automation_level": self.automation_level.value,
            "steps": [s.to_dict() for s in self.steps],
            "rollbacks": [r.to_dict() for r in self.rollbacks],
            "error": self.error.to_dict() if self.error else None,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "metrics": self.metrics,
        }


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """Run playbooks against an adapter registry.

    Example:
        orchestrator = Orchestrator(registry, RunOptions(automation_level=AutomationLevel.L1))
        result = await orchestrator.run(playbook, alert={"source": {"ip": "203.0.113.7"}})
        for step in result.steps:
            print(step.step_id, step.success, step.error)
    """

    def __init__(self, registry: AdapterRegistry, options: RunOptions | None = None) -> None:
        self._registry = registry
        self._options = options or RunOptions()
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._logger = logger.bind(component="orchestrator")

    @property
    def options(self) -> RunOptions:
        return self._options

    def _semaphore(self, adapter_name: str, adapter: BaseAdapter) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(adapter_name)
        if semaphore is None:
            semaphore = asyncio.Semaphore(adapter.get_capabilities().max_concurrency)
            self._semaphores[adapter_name] = semaphore
        return semaphore

    # =========================================================================
    # Runs
    # =========================================================================

    async def run(self, playbook: Playbook, alert: dict[str, Any] | None = None) -> RunResult:
        """Run every step of ``playbook`` in declared order."""
        start = time.perf_counter()
        level = self._options.automation_level or playbook.config.automation_level
        mode = self._options.effective_mode

        result = RunResult(
            run_id=str(uuid.uuid4()),
            playbook_id=playbook.id,
            success=False,
            state=RunState.FAILED,
            mode=mode,
            automation_level=level,
        )

        self._logger.info(
            "playbook_run_start",
            run_id=result.run_id,
            playbook=playbook.id,
            mode=mode.value,
            automation_level=level.value,
            steps=len(playbook.steps),
        )

        if level == AutomationLevel.L2 and not self._options.enable_l2:
            result.error = ErrorDetail(
                code=L2_NOT_ENABLED,
                message="Automation level L2 requires the --enable-l2 flag",
            )
            self._logger.warning(
                "playbook_run_rejected", run_id=result.run_id, reason=L2_NOT_ENABLED
            )
            return self._finish(result, start)

        context = RunContext(
            alert=dict(alert or {}),
            context={
                **self._options.variables,
                "run_id": result.run_id,
                "playbook_id": playbook.id,
                "mode": mode.value,
            },
        )
        completed: list[tuple[PlaybookStep, StepOutcome]] = []
        budget = self._options.max_execution_time or playbook.config.max_execution_time

        try:
            halted = await asyncio.wait_for(
                self._run_steps(playbook, level, mode, context, result, completed),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            halted = True
            result.error = ErrorDetail(
                code=RUN_TIMEOUT,
                message=(
                    f"Playbook '{playbook.id}' exceeded max_execution_time "
                    f"of {budget:g}s"
                ),
                retryable=True,
            )

        failed = [s for s in result.steps if s.failed]
        if halted and result.error is None and failed:
            result.error = failed[-1].error

        if halted and completed and self._should_roll_back(playbook, level, mode):
            result.rollbacks = await self._roll_back(completed, mode, context)

        result.success = not failed and not halted
        if result.rollbacks:
            all_ok = all(r.success for r in result.rollbacks)
            result.state = RunState.ROLLED_BACK if all_ok else RunState.ROLLBACK_FAILED
        elif halted:
            result.state = RunState.FAILED
        elif level == AutomationLevel.L0 and all(s.skipped for s in result.steps):
            result.state = RunState.PLANNED
        else:
            result.state = RunState.COMPLETED

        return self._finish(result, start)

    def _finish(self, result: RunResult, start: float) -> RunResult:
        result.duration_ms = int((time.perf_counter() - start) * 1000)
        self._logger.info(
            "playbook_run_complete",
            run_id=result.run_id,
            playbook=result.playbook_id,
            success=result.success,
            state=result.state.value,
            duration_ms=result.duration_ms,
            **result.metrics,
        )
        return result

    async def _run_steps(
        self,
        playbook: Playbook,
        level: AutomationLevel,
        mode: ExecutionMode,
        context: RunContext,
        result: RunResult,
        completed: list[tuple[PlaybookStep, StepOutcome]],
    ) -> bool:
        """Execute steps in order, appending outcomes to ``result``. Returns True if halted."""
        finished: set[str] = set()

        for step in playbook.steps:
            if any(dep not in finished for dep in step.depends_on):
                result.steps.append(self._skipped(step, SKIP_DEPENDENCIES))
                continue

            if not evaluate_condition(step.condition, context):
                self._logger.info("step_skipped_condition", step=step.id)
                result.steps.append(self._skipped(step, SKIP_CONDITION))
                finished.add(step.id)
                continue

            approved: bool | None = None
            if self._needs_approval(step, playbook, level, mode):
                if self._options.approval_callback is None:
                    reason = SKIP_MANUAL if level == AutomationLevel.L0 else SKIP_AWAITING_APPROVAL
                    self._logger.info("step_pending_approval", step=step.id, reason=reason)
                    result.steps.append(self._skipped(step, reason))
                    continue

                approved = await self._request_approval(step, level, mode, context)
                if not approved:
                    self._logger.info("step_approval_denied", step=step.id, action=step.action)
                    result.steps.append(
                        StepOutcome(
                            step_id=step.id,
                            step_name=step.display_name,
                            action=step.action,
                            executor=step.executor,
                            success=False,
                            approved=False,
                            error=ErrorDetail(
                                code=APPROVAL_DENIED,
                                message=f"Action '{step.action}' denied by analyst",
                            ),
                        )
                    )
                    if step.on_error == OnError.HALT:
                        return True
                    continue

            outcome = await self.execute_step(step, mode, context)
            outcome.approved = approved
            result.steps.append(outcome)

            if outcome.success:
                finished.add(step.id)
                completed.append((step, outcome))
                context.set_step_output(step.id, outcome.output)
            elif step.on_error == OnError.HALT:
                self._logger.error(
                    "step_failed_halting",
                    step=step.id,
                    error_code=outcome.error.code if outcome.error else None,
                )
                return True
            else:
                self._logger.warning(
                    "step_failed_continuing",
                    step=step.id,
                    on_error=step.on_error.value,
                    error_code=outcome.error.code if outcome.error else None,
                )

        return False

    async def run_many(
        self,
        steps: Sequence[PlaybookStep],
        context: RunContext | None = None,
    ) -> list[StepOutcome]:
        """Execute independent steps concurrently.

        Concurrent calls to the same adapter are bounded by its ``max_concurrency``.
        """
        context = context or RunContext()
        mode = self._options.effective_mode
        return list(
            await asyncio.gather(*(self.execute_step(step, mode, context) for step in steps))
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def _needs_approval(
        self,
        step: PlaybookStep,
        playbook: Playbook,
        level: AutomationLevel,
        mode: ExecutionMode,
    ) -> bool:
        if level == AutomationLevel.L0:
            return True
        if step.approval_required is not None and not is_write_action(step.action):
            return step.approval_required
        if level == AutomationLevel.L1:
            return is_write_action(step.action) and step.approval_required is not False
        # L2: only production writes can still ask, and only if the playbook says so
        if step.approval_required is not None:
            return step.approval_required
        return (
            mode == ExecutionMode.PRODUCTION
            and is_write_action(step.action)
            and playbook.config.requires_approval
        )

    async def _request_approval(
        self,
        step: PlaybookStep,
        level: AutomationLevel,
        mode: ExecutionMode,
        context: RunContext,
    ) -> bool:
        assert self._options.approval_callback is not None
        request = ApprovalRequest(
            step_id=step.id,
            step_name=step.display_name,
            action=step.action,
            executor=step.executor,
            parameters=resolve_templates(step.parameters, context),
            classification=classify_action(step.action),
            automation_level=level,
            mode=mode,
        )
        return bool(await self._options.approval_callback(request))

    def _skipped(self, step: PlaybookStep, reason: str) -> StepOutcome:
        return StepOutcome(
            step_id=step.id,
            step_name=step.display_name,
            action=step.action,
            executor=step.executor,
            success=True,
            skipped=True,
            skip_reason=reason,
        )

    def _step_failure(
        self,
        step: PlaybookStep,
        code: str,
        message: str,
        retryable: bool = False,
        duration_ms: int = 0,
    ) -> StepOutcome:
        return StepOutcome(
            step_id=step.id,
            step_name=step.display_name,
            action=step.action,
            executor=step.executor,
            success=False,
            error=ErrorDetail(code=code, message=message, retryable=retryable),
            duration_ms=duration_ms,
        )

    async def execute_step(
        self,
        step: PlaybookStep,
        mode: ExecutionMode,
        context: RunContext,
    ) -> StepOutcome:
        """Resolve the step's adapter, check capabilities and execute the action."""
        adapter = self._registry.get(step.executor)
        if adapter is None:
            return self._step_failure(
                step, ADAPTER_NOT_FOUND, f"Adapter '{step.executor}' not found"
            )

        config = self._registry.get_config(step.executor)
        if config is not None and not config.enabled:
            return self._step_failure(
                step, ADAPTER_DISABLED, f"Adapter '{step.executor}' is disabled"
            )

        capabilities = adapter.get_capabilities()
        if not capabilities.supports(step.action):
            return self._step_failure(
                step,
                UNSUPPORTED_ACTION,
                f"Adapter '{step.executor}' does not support action '{step.action}'",
            )
        if mode == ExecutionMode.SIMULATION and not capabilities.supports_simulation:
            return self._step_failure(
                step,
                SIMULATION_NOT_SUPPORTED,
                f"Adapter '{step.executor}' does not support simulation",
            )

        params = resolve_templates(step.parameters, context)
        self._logger.debug(
            "step_execution_start",
            step=step.id,
            action=step.action,
            executor=step.executor,
            mode=mode.value,
        )

        start = time.perf_counter()
        async with self._semaphore(step.executor, adapter):
            try:
                action_result = await asyncio.wait_for(
                    adapter.execute(step.action, params, mode),
                    timeout=step.timeout,
                )
            except asyncio.TimeoutError:
                return self._step_failure(
                    step,
                    STEP_TIMEOUT,
                    f"Step '{step.id}' timed out after {step.timeout:g}s",
                    retryable=True,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )
            except AdapterUsageError as e:
                return self._step_failure(step, e.code, str(e))
            except Exception as e:
                self._logger.error(
                    "step_execution_error",
                    step=step.id,
                    action=step.action,
                    error=str(e),
                    exc_info=True,
                )
                return self._step_failure(
                    step,
                    STEP_EXECUTION_ERROR,
                    str(e) or type(e).__name__,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )

        return self._to_outcome(step, action_result)

    def _to_outcome(self, step: PlaybookStep, action_result: ActionResult) -> StepOutcome:
        self._logger.info(
            "step_execution_complete",
            step=step.id,
            action=step.action,
            success=action_result.success,
            error_code=action_result.error.code if action_result.error else None,
            retryable=action_result.retryable,
            duration_ms=action_result.duration_ms,
        )
        return StepOutcome(
            step_id=step.id,
            step_name=step.display_name,
            action=step.action,
            executor=step.executor,
            success=action_result.success,
            output=action_result.output,
            error=action_result.error,
            metadata=dict(action_result.metadata),
            duration_ms=action_result.duration_ms,
        )

    # =========================================================================
    # Rollback
    # =========================================================================

    def _should_roll_back(
        self, playbook: Playbook, level: AutomationLevel, mode: ExecutionMode
    ) -> bool:
        return (
            playbook.config.rollback_on_failure
            and level != AutomationLevel.L0
            and mode != ExecutionMode.DRY_RUN
        )

    async def _roll_back(
        self,
        completed: list[tuple[PlaybookStep, StepOutcome]],
        mode: ExecutionMode,
        context: RunContext,
    ) -> list[RollbackOutcome]:
        """Undo completed steps, most recent first. Failures do not stop the rest."""
        outcomes: list[RollbackOutcome] = []
        for step, _ in reversed(completed):
            outcome = await self._roll_back_step(step, mode, context)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def _roll_back_step(
        self,
        step: PlaybookStep,
        mode: ExecutionMode,
        context: RunContext,
    ) -> RollbackOutcome | None:
        if step.rollback is None and not is_write_action(step.action):
            return None

        if step.rollback is not None:
            executor = step.rollback.executor or step.executor
            action = step.rollback.action
            timeout = step.rollback.timeout
        else:
            executor = step.executor
            action = step.action
            timeout = step.timeout

        adapter = self._registry.get(executor)
        if adapter is None:
            return RollbackOutcome(
                step_id=step.id,
                action=action,
                executor=executor,
                success=False,
                error=ErrorDetail(
                    code=ADAPTER_NOT_FOUND,
                    message=f"Adapter '{executor}' not found for rollback",
                ),
            )

        if step.rollback is None and not adapter.get_capabilities().supports_rollback:
            return None

        # rollback() has no mode, so only production runs reach it
        if step.rollback is None and mode != ExecutionMode.PRODUCTION:
            self._logger.info(
                "step_rollback_simulated", step=step.id, action=action, mode=mode.value
            )
            return RollbackOutcome(
                step_id=step.id,
                action=action,
                executor=executor,
                success=True,
                metadata={"mode": mode.value, "simulated": True},
            )

        self._logger.info("step_rollback_start", step=step.id, action=action, executor=executor)
        start = time.perf_counter()
        try:
            if step.rollback is not None:
                params = resolve_templates(step.rollback.parameters, context)
                call = adapter.execute(action, params, mode)
            else:
                call = adapter.rollback(action, resolve_templates(step.parameters, context))
            action_result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            error = ErrorDetail(
                code=STEP_TIMEOUT,
                message=f"Rollback of step '{step.id}' timed out after {timeout:g}s",
                retryable=True,
            )
            action_result = None
        except Exception as e:
            self._logger.error("step_rollback_error", step=step.id, error=str(e), exc_info=True)
            error = ErrorDetail(code=STEP_EXECUTION_ERROR, message=str(e) or type(e).__name__)
            action_result = None
        else:
            error = action_result.error

        outcome = RollbackOutcome(
            step_id=step.id,
            action=action,
            executor=executor,
            success=action_result is not None and action_result.success,
            error=error,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        if not outcome.success:
            self._logger.error(
                "step_rollback_failed",
                step=step.id,
                error_code=error.code if error else None,
            )
        return outcome
