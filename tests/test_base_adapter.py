"""Tests for the adapter contract and the execution mode dispatcher."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import pytest

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.errors import (
    CIRCUIT_OPEN,
    SIMULATION_NOT_SUPPORTED,
    UNKNOWN_ERROR,
    VALIDATION_ERROR,
    AdapterNotInitializedError,
    UnsupportedActionError,
)
from runbookpilot.adapters.mock import MockAdapter, MockBehavior
from runbookpilot.adapters.models import (
    AdapterConfig,
    Capabilities,
    ExecutionMode,
    HealthState,
    HealthStatus,
    RetryPolicy,
)
from runbookpilot.adapters.validation import ParameterRule


class EchoAction(str, Enum):
    ECHO = "echo"


class LiveOnlyAdapter(BaseAdapter):
    """Adapter without simulation support."""

    default_name = "live-only"
    actions = EchoAction
    parameter_rules = {EchoAction.ECHO.value: [ParameterRule("text", required=True)]}
    capabilities = Capabilities(
        supports_simulation=False,
        supports_rollback=False,
        supports_validation=True,
        max_concurrency=1,
        supported_actions=frozenset({"echo"}),
    )

    async def health_check(self) -> HealthStatus:
        return HealthStatus(status=HealthState.HEALTHY, message="ok")

    async def _simulate(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        raise AssertionError("simulation must not be reached")

    async def _execute_production(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        return {"echo": params["text"]}


class LocalFaultAdapter(LiveOnlyAdapter):
    """Adapter whose local action raises an unexpected error."""

    local_actions = frozenset({EchoAction.ECHO.value})

    async def _execute_production(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        raise ValueError(f"cannot echo {params['text']!r}")


# =============================================================================
# Contract tests
# =============================================================================


class TestAdapterContract:
    """Tests for lifecycle and contract enforcement."""

    @pytest.mark.asyncio
    async def test_execute_before_initialize_raises(self):
        """Test calls before initialize are programmer errors."""
        adapter = MockAdapter()
        with pytest.raises(AdapterNotInitializedError, match="not initialized"):
            await adapter.execute("block_ip", {"ip": "10.0.0.1"})

    def test_capabilities_require_initialize(self):
        """Test get_capabilities requires initialize."""
        with pytest.raises(AdapterNotInitializedError):
            MockAdapter().get_capabilities()

    @pytest.mark.asyncio
    async def test_unknown_action_raises(self, mock_adapter):
        """Test actions outside the closed set raise instead of returning a result."""
        with pytest.raises(UnsupportedActionError) as exc_info:
            await mock_adapter.execute("format_disk", {})
        assert exc_info.value.action == "format_disk"
        assert exc_info.value.code == "UNSUPPORTED_ACTION"

    @pytest.mark.asyncio
    async def test_unknown_mode_raises(self, mock_adapter):
        """Test an unknown mode string is rejected."""
        with pytest.raises(ValueError):
            await mock_adapter.execute("wait", {}, "live")

    def test_name_follows_config(self):
        """Test the adapter takes its name from the bound config."""
        adapter = MockAdapter()
        assert adapter.name == "mock"
        adapter.initialize(AdapterConfig(name="edr-lab", type="mock"))
        assert adapter.name == "edr-lab"
        assert adapter.initialized

    def test_incomplete_rule_table_rejected(self):
        """Test subclasses must declare rules for every action."""
        with pytest.raises(TypeError, match="parameter rules"):

            class Broken(LiveOnlyAdapter):
                actions = EchoAction
                parameter_rules = {}

    @pytest.mark.asyncio
    async def test_default_rollback_not_supported(self):
        """Test the default rollback reports ROLLBACK_NOT_SUPPORTED."""
        adapter = LiveOnlyAdapter()
        adapter.initialize(AdapterConfig(name="live-only"))
        result = await adapter.rollback("echo", {"text": "x"})
        assert not result.success
        assert result.error.code == "ROLLBACK_NOT_SUPPORTED"
        assert result.error.message == "Adapter 'live-only' does not support rollback for 'echo'"


# =============================================================================
# Mode dispatch tests
# =============================================================================


class TestModeDispatch:
    """Tests for simulation, dry-run and production routing."""

    @pytest.mark.asyncio
    async def test_simulation_skips_validation(self, mock_adapter):
        """Test simulation produces output even with missing parameters."""
        result = await mock_adapter.execute("block_ip", {}, ExecutionMode.SIMULATION)
        assert result.success
        assert result.metadata["mode"] == "simulation"
        assert isinstance(result.duration_ms, int)

    @pytest.mark.asyncio
    async def test_simulation_not_supported(self):
        """Test adapters without simulation refuse simulation mode."""
        adapter = LiveOnlyAdapter()
        adapter.initialize(AdapterConfig(name="live-only"))
        result = await adapter.execute("echo", {"text": "hi"}, "simulation")
        assert not result.success
        assert result.error.code == SIMULATION_NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_simulation_unexpected_exception(self, mock_adapter):
        """Test unexpected simulation exceptions become UNKNOWN_ERROR results."""
        mock_adapter.set_behavior("block_ip", MockBehavior(raise_error=True, error_message="bug"))
        result = await mock_adapter.execute("block_ip", {"ip": "10.0.0.1"}, "simulation")
        assert not result.success
        assert result.error.code == UNKNOWN_ERROR
        assert result.error.message == "bug"

    @pytest.mark.asyncio
    async def test_dry_run_valid(self, mock_adapter):
        """Test dry-run echoes intent without executing."""
        mock_adapter.set_behavior("block_ip", MockBehavior(raise_error=True))
        result = await mock_adapter.execute("block_ip", {"ip": "10.0.0.1"}, "dry-run")
        assert result.success
        assert result.output == {
            "dry_run": True,
            "action": "block_ip",
            "params_valid": True,
            "message": "Parameters validated for 'block_ip'. No execution performed.",
        }
        assert result.metadata["mode"] == "dry-run"

    @pytest.mark.asyncio
    async def test_dry_run_invalid(self, mock_adapter):
        """Test dry-run reports validation failures."""
        result = await mock_adapter.execute("block_ip", {}, ExecutionMode.DRY_RUN)
        assert not result.success
        assert result.error.code == VALIDATION_ERROR
        assert not result.error.retryable
        assert result.error.message == (
            "Dry-run validation failed: Parameter 'ip' is required for block_ip"
        )
        assert result.error.details == {"errors": ["Parameter 'ip' is required for block_ip"]}

    @pytest.mark.asyncio
    async def test_production_validation_failure(self, mock_adapter):
        """Test production validates before any attempt."""
        result = await mock_adapter.execute(
            "create_ticket", {"title": "t", "priority": "urgent"}, "production"
        )
        assert result.error.code == VALIDATION_ERROR
        assert result.error.message.startswith("Parameter validation failed: Invalid priority")

    @pytest.mark.asyncio
    async def test_production_success(self, mock_adapter):
        """Test production runs the action once and reports attempts."""
        result = await mock_adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert result.success
        assert result.output["status"] == "completed"
        assert result.metadata == {"attempts": 1, "mode": "production"}

    @pytest.mark.asyncio
    async def test_production_operational_failure(self, mock_adapter):
        """Test operational errors become failed results."""
        mock_adapter.set_behavior(
            "block_ip", MockBehavior(success=False, error_code="FW_DENIED", error_message="denied")
        )
        result = await mock_adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert not result.success
        assert result.error.code == "FW_DENIED"
        assert result.error.message == "denied"

    @pytest.mark.asyncio
    async def test_production_retries_retryable_failures(self, sleep):
        """Test retryable failures are re-attempted under the configured policy."""
        adapter = MockAdapter(sleep=sleep)
        adapter.initialize(
            AdapterConfig(name="mock", type="mock", retry=RetryPolicy(max_attempts=3))
        )
        adapter.set_behavior("block_ip", MockBehavior(success=False, retryable=True))
        result = await adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert not result.success
        assert result.metadata["attempts"] == 3
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_production_unexpected_exception(self, mock_adapter):
        """Test unexpected exceptions in production become transport failures."""
        mock_adapter.set_behavior("block_ip", MockBehavior(raise_error=True, error_message="reset"))
        result = await mock_adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert not result.success
        assert result.error.code == "MOCK_ERROR"
        assert result.error.message == "Mock request failed: reset"
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_local_action_unexpected_exception(self, sleep):
        """Test unexpected errors in local actions come back as results."""
        adapter = LocalFaultAdapter(sleep=sleep)
        adapter.initialize(AdapterConfig(name="live-only"))

        result = await adapter.execute("echo", {"text": "hi"}, "production")

        assert not result.success
        assert result.error.code == UNKNOWN_ERROR
        assert result.error.message == "cannot echo 'hi'"
        assert not result.error.retryable
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_production_timeout(self):
        """Test calls exceeding the adapter timeout fail as retryable."""
        adapter = MockAdapter(sleep=asyncio.sleep)
        adapter.initialize(
            AdapterConfig(
                name="mock", type="mock", timeout=0.05, retry=RetryPolicy(max_attempts=1)
            )
        )
        adapter.set_behavior("block_ip", MockBehavior(latency=2.0))
        result = await adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert not result.success
        assert result.error.code == "MOCK_ERROR"
        assert result.error.message == "Mock request failed: timed out after 0.05s"
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_circuit_breaker_from_config(self):
        """Test a configured circuit breaker stops calls after repeated failures."""
        adapter = MockAdapter()
        adapter.initialize(
            AdapterConfig(
                name="mock",
                type="mock",
                config={"circuit_breaker": {"failure_threshold": 2, "reset_timeout": 60}},
                retry=RetryPolicy(max_attempts=1),
            )
        )
        adapter.set_behavior("block_ip", MockBehavior(success=False, retryable=True))
        for _ in range(2):
            await adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")

        adapter.clear_calls()
        adapter.set_behavior("block_ip", MockBehavior())
        result = await adapter.execute("block_ip", {"ip": "10.0.0.1"}, "production")
        assert not result.success
        assert result.error.code == CIRCUIT_OPEN
        assert result.error.retryable
