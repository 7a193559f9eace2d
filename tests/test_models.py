"""Tests for the adapter result and configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from runbookpilot.adapters.models import (
    ActionResult,
    AdapterConfig,
    AdapterCredentials,
    Capabilities,
    ErrorDetail,
    ExecutionMode,
    HealthState,
    HealthStatus,
    RetryPolicy,
    ValidationResult,
)

# =============================================================================
# ActionResult tests
# =============================================================================


class TestActionResult:
    """Tests for ActionResult."""

    def test_ok_result(self):
        """Test a successful result carries output and no error."""
        result = ActionResult.ok("enrich_ioc", "virustotal", {"detections": 3})
        assert result.success
        assert result.output == {"detections": 3}
        assert result.error is None
        assert not result.retryable

    def test_fail_result(self):
        """Test a failed result carries an error and no output."""
        result = ActionResult.fail(
            "enrich_ioc", "virustotal", "VT_API_ERROR", "VirusTotal returned HTTP 429: slow down",
            retryable=True,
        )
        assert not result.success
        assert result.output is None
        assert result.error.code == "VT_API_ERROR"
        assert result.retryable

    def test_success_without_output_rejected(self):
        """Test the one-of invariant is enforced at construction."""
        with pytest.raises(ValueError):
            ActionResult(success=True, action="a", executor="x")

    def test_failure_with_output_rejected(self):
        """Test a failure cannot also carry output."""
        with pytest.raises(ValueError):
            ActionResult(
                success=False,
                action="a",
                executor="x",
                output={},
                error=ErrorDetail(code="X", message="y"),
            )

    def test_to_dict(self):
        """Test serialization of a failed result."""
        result = ActionResult.fail(
            "block_ip", "mock", "MOCK_ERROR", "boom", details={"ip": "10.0.0.1"}
        )
        data = result.to_dict()
        assert data["success"] is False
        assert data["output"] is None
        assert data["error"] == {
            "code": "MOCK_ERROR",
            "message": "boom",
            "retryable": False,
            "details": {"ip": "10.0.0.1"},
        }


# =============================================================================
# Capabilities tests
# =============================================================================


class TestCapabilities:
    """Tests for Capabilities."""

    def test_supports(self):
        """Test action membership checks."""
        caps = Capabilities(
            supports_simulation=True,
            supports_rollback=False,
            supports_validation=True,
            max_concurrency=4,
            supported_actions={"enrich_ioc", "check_reputation"},
        )
        assert caps.supports("enrich_ioc")
        assert not caps.supports("block_ip")
        assert isinstance(caps.supported_actions, frozenset)

    def test_max_concurrency_must_be_positive(self):
        """Test max_concurrency below one is rejected."""
        with pytest.raises(ValueError, match="max_concurrency"):
            Capabilities(
                supports_simulation=True,
                supports_rollback=False,
                supports_validation=True,
                max_concurrency=0,
            )

    def test_to_dict_sorts_actions(self):
        """Test serialized actions are sorted."""
        caps = Capabilities(True, False, True, 2, frozenset({"b", "a"}))
        assert caps.to_dict()["supported_actions"] == ["a", "b"]


# =============================================================================
# Configuration model tests
# =============================================================================


class TestAdapterConfig:
    """Tests for AdapterConfig and its parts."""

    def test_defaults(self):
        """Test default timeout and retry policy."""
        config = AdapterConfig(name="virustotal")
        assert config.timeout == 30.0
        assert config.retry == RetryPolicy()
        assert config.retry.max_attempts == 3
        assert config.retry.backoff_ms == 1000
        assert config.enabled

    def test_empty_name_rejected(self):
        """Test an empty adapter name is rejected."""
        with pytest.raises(ValidationError):
            AdapterConfig(name="  ")

    def test_non_positive_timeout_rejected(self):
        """Test timeout must be positive."""
        with pytest.raises(ValidationError):
            AdapterConfig(name="x", timeout=0)

    def test_retry_policy_bounds(self):
        """Test retry policy field bounds."""
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValidationError):
            RetryPolicy(backoff_ms=-1)

    def test_setting_default(self):
        """Test adapter-specific settings lookup."""
        config = AdapterConfig(name="x", config={"base_url": "https://vt.example"})
        assert config.setting("base_url") == "https://vt.example"
        assert config.setting("missing", "fallback") == "fallback"

    def test_credentials_hidden_from_repr(self):
        """Test credential values do not appear in repr."""
        credentials = AdapterCredentials(values={"api_key": "super-secret"})
        assert "super-secret" not in repr(credentials)
        assert credentials.get("api_key") == "super-secret"
        assert credentials.get("missing") is None


# =============================================================================
# Misc model tests
# =============================================================================


class TestMiscModels:
    """Tests for the small result records."""

    def test_execution_mode_values(self):
        """Test the wire values of the execution modes."""
        assert ExecutionMode("dry-run") is ExecutionMode.DRY_RUN
        assert [m.value for m in ExecutionMode] == ["simulation", "dry-run", "production"]

    def test_validation_result_message(self):
        """Test error messages are joined with '; '."""
        result = ValidationResult.from_errors(["a is required", "b is invalid"])
        assert not result.valid
        assert result.message == "a is required; b is invalid"
        assert ValidationResult.ok().valid

    def test_health_status(self):
        """Test health status helpers."""
        status = HealthStatus(status=HealthState.DEGRADED, message="rate limited", latency_ms=12.5)
        assert not status.healthy
        data = status.to_dict()
        assert data["status"] == "degraded"
        assert data["latency_ms"] == 12.5
        assert "checked_at" in data
