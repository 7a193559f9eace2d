"""Configurable in-memory adapter for playbook testing.

Stands in for response integrations (firewall, EDR, ticketing, IAM) so that
playbooks can be exercised end to end without any external system. Every
call is recorded, and per-action behaviors control success, latency and the
error returned.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.errors import AdapterOperationError
from runbookpilot.adapters.models import (
    ActionResult,
    Capabilities,
    ExecutionMode,
    HealthState,
    HealthStatus,
)
from runbookpilot.adapters.resilience import Sleep
from runbookpilot.adapters.validation import ParameterRule


class MockAction(str, Enum):
    """Actions the mock adapter accepts."""

    BLOCK_IP = "block_ip"
    UNBLOCK_IP = "unblock_ip"
    ISOLATE_HOST = "isolate_host"
    RESTORE_CONNECTIVITY = "restore_connectivity"
    DISABLE_ACCOUNT = "disable_account"
    ENABLE_ACCOUNT = "enable_account"
    QUARANTINE_FILE = "quarantine_file"
    RESTORE_FILE = "restore_file"
    CREATE_TICKET = "create_ticket"
    NOTIFY_ANALYST = "notify_analyst"
    COLLECT_LOGS = "collect_logs"
    QUERY_SIEM = "query_siem"
    ENRICH_IOC = "enrich_ioc"
    CHECK_REPUTATION = "check_reputation"
    WAIT = "wait"


# Inverse action used when rolling back
ROLLBACK_ACTIONS: dict[str, str] = {
    MockAction.BLOCK_IP.value: MockAction.UNBLOCK_IP.value,
    MockAction.ISOLATE_HOST.value: MockAction.RESTORE_CONNECTIVITY.value,
    MockAction.DISABLE_ACCOUNT.value: MockAction.ENABLE_ACCOUNT.value,
    MockAction.QUARANTINE_FILE.value: MockAction.RESTORE_FILE.value,
}


@dataclass
class MockBehavior:
    """How the mock responds to one action."""

    success: bool = True
    output: dict[str, Any] | None = None
    error_code: str = "MOCK_ERROR"
    error_message: str = "Mock action failed"
    retryable: bool = False
    latency: float = 0.0
    raise_error: bool = False


@dataclass
class MockCall:
    """A recorded call against the mock adapter."""

    action: str
    params: dict[str, Any] = field(default_factory=dict)
    # None for rollback() calls, which carry no mode
    mode: str | None = ExecutionMode.SIMULATION.value
    rollback: bool = False


class MockAdapter(BaseAdapter):
    """Adapter that records calls and returns configured results."""

    default_name = "mock"
    vendor = "Mock"
    error_prefix = "MOCK"
    actions = MockAction

    parameter_rules = {
        MockAction.BLOCK_IP.value: [ParameterRule("ip", required=True)],
        MockAction.UNBLOCK_IP.value: [ParameterRule("ip", required=True)],
        MockAction.ISOLATE_HOST.value: [ParameterRule("host_id", required=True)],
        MockAction.RESTORE_CONNECTIVITY.value: [ParameterRule("host_id", required=True)],
        MockAction.DISABLE_ACCOUNT.value: [ParameterRule("user", required=True)],
        MockAction.ENABLE_ACCOUNT.value: [ParameterRule("user", required=True)],
        MockAction.QUARANTINE_FILE.value: [ParameterRule("file_hash", required=True)],
        MockAction.RESTORE_FILE.value: [ParameterRule("file_hash", required=True)],
        MockAction.CREATE_TICKET.value: [
            ParameterRule("title", required=True),
            ParameterRule("priority", allowed_values=("low", "medium", "high", "critical")),
        ],
        MockAction.NOTIFY_ANALYST.value: [ParameterRule("message", required=True)],
        MockAction.COLLECT_LOGS.value: [],
        MockAction.QUERY_SIEM.value: [ParameterRule("query", required=True)],
        MockAction.ENRICH_IOC.value: [ParameterRule("ioc", required=True)],
        MockAction.CHECK_REPUTATION.value: [ParameterRule("ioc", required=True)],
        MockAction.WAIT.value: [],
    }

    capabilities = Capabilities(
        supports_simulation=True,
        supports_rollback=True,
        supports_validation=True,
        max_concurrency=10,
        supported_actions=frozenset(a.value for a in MockAction),
    )

    def __init__(
        self,
        behaviors: Mapping[str, MockBehavior] | None = None,
        healthy: bool = True,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(sleep=sleep)
        self._behaviors: dict[str, MockBehavior] = dict(behaviors or {})
        self._rollback_behaviors: dict[str, MockBehavior] = {}
        self.healthy = healthy
        self.calls: list[MockCall] = []

    # =========================================================================
    # Behavior configuration and call inspection
    # =========================================================================

    def set_behavior(self, action: str, behavior: MockBehavior) -> None:
        self._behaviors[action] = behavior

    def set_rollback_behavior(self, action: str, behavior: MockBehavior) -> None:
        self._rollback_behaviors[action] = behavior

    def calls_for(self, action: str, rollback: bool = False) -> list[MockCall]:
        return [c for c in self.calls if c.action == action and c.rollback == rollback]

    def was_called(self, action: str) -> bool:
        return bool(self.calls_for(action))

    def clear_calls(self) -> None:
        self.calls.clear()

    # =========================================================================
    # Contract
    # =========================================================================

    async def execute(
        self,
        action: str,
        params: Mapping[str, Any] | None = None,
        mode: ExecutionMode | str = ExecutionMode.SIMULATION,
    ) -> ActionResult:
        self._require_initialized()
        self.calls.append(
            MockCall(
                action=action.value if isinstance(action, Enum) else action,
                params=dict(params or {}),
                mode=ExecutionMode(mode).value,
            )
        )
        return await super().execute(action, params, mode)

    async def rollback(
        self, action: str, params: Mapping[str, Any] | None = None
    ) -> ActionResult:
        self._require_initialized()
        params = dict(params or {})
        self.calls.append(MockCall(action=action, params=params, mode=None, rollback=True))

        behavior = self._rollback_behaviors.get(action, MockBehavior())
        if behavior.latency:
            await self._sleep(behavior.latency)
        if not behavior.success:
            return ActionResult.fail(
                action=action,
                executor=self.name,
                code=behavior.error_code,
                message=behavior.error_message,
                retryable=behavior.retryable,
                metadata={"rollback": True},
            )
        output = behavior.output or {
            "rolled_back": action,
            "rollback_action": ROLLBACK_ACTIONS.get(action),
            "params": params,
        }
        return ActionResult.ok(action, self.name, output, metadata={"rollback": True})

    async def health_check(self) -> HealthStatus:
        if self._config is None:
            return HealthStatus(status=HealthState.UNKNOWN, message="Adapter not initialized")
        if not self.healthy:
            return HealthStatus(
                status=HealthState.UNHEALTHY,
                message="Mock adapter marked unhealthy",
                latency_ms=0.0,
            )
        return HealthStatus(
            status=HealthState.HEALTHY, message="Mock adapter healthy", latency_ms=0.0
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def _perform(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        behavior = self._behaviors.get(action, MockBehavior())
        if behavior.latency:
            await self._sleep(behavior.latency)
        if behavior.raise_error:
            raise RuntimeError(behavior.error_message)
        if not behavior.success:
            raise AdapterOperationError(
                code=behavior.error_code,
                message=behavior.error_message,
                retryable=behavior.retryable,
            )
        if behavior.output is not None:
            return dict(behavior.output)
        return {"action": action, "status": "completed", "params": params}

    async def _simulate(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._perform(action, params)

    async def _execute_production(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._perform(action, params)
