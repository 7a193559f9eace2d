"""Canonical value types shared by adapters and the orchestrator.

This module provides:
- Execution modes and health states
- Adapter configuration (retry policy, credentials bag)
- Capabilities reported by every adapter
- ActionResult / ErrorDetail / ValidationResult / HealthStatus
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enumerations
# =============================================================================


class ExecutionMode(str, Enum):
    """How an adapter call is allowed to touch the outside world."""

    SIMULATION = "simulation"
    DRY_RUN = "dry-run"
    PRODUCTION = "production"


class HealthState(str, Enum):
    """Outcome of an adapter health probe."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class CredentialKind(str, Enum):
    """Kinds of credential bags an adapter may receive."""

    API_KEY = "api_key"
    OAUTH2 = "oauth2"
    BASIC_AUTH = "basic_auth"
    CERTIFICATE = "certificate"


# =============================================================================
# Configuration
# =============================================================================


class RetryPolicy(BaseModel):
    """Bounded retry/backoff policy for outbound calls."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, description="Total tries, first one included")
    backoff_ms: int = Field(default=1000, ge=0, description="Base delay between tries")
    exponential: bool = Field(default=True, description="Double the delay after each try")
    max_backoff_ms: int = Field(
        default=30000, ge=0, description="Upper bound on a single exponential delay"
    )


class AdapterCredentials(BaseModel):
    """Opaque credentials bag tagged with its kind."""

    model_config = ConfigDict(frozen=True)

    kind: CredentialKind = Field(default=CredentialKind.API_KEY)
    values: dict[str, str] = Field(default_factory=dict, repr=False)

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self.values.get(key)
        return value if value else default


class AdapterConfig(BaseModel):
    """Configuration bound to an adapter instance by ``initialize``."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Unique adapter identifier")
    type: str = Field(default="generic", description="Category tag, e.g. enrichment")
    enabled: bool = Field(default=True)
    config: dict[str, Any] = Field(
        default_factory=dict, description="Adapter-specific settings such as base_url"
    )
    credentials: AdapterCredentials | None = Field(default=None)
    timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        """Ensure adapter name is not empty."""
        if not v or not v.strip():
            raise ValueError("Adapter name cannot be empty")
        return v.strip()

    def setting(self, key: str, default: Any = None) -> Any:
        """Get an adapter-specific setting."""
        value = self.config.get(key)
        return default if value is None else value


# =============================================================================
# Capabilities
# =============================================================================


@dataclass(frozen=True)
class Capabilities:
    """Static facts about what an adapter can safely do."""

    supports_simulation: bool
    supports_rollback: bool
    supports_validation: bool
    max_concurrency: int
    supported_actions: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {self.max_concurrency}")
        # Accept any iterable of action names at construction time
        object.__setattr__(self, "supported_actions", frozenset(self.supported_actions))

    def supports(self, action: str) -> bool:
        return action in self.supported_actions

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "supports_simulation": self.supports_simulation,
            "supports_rollback": self.supports_rollback,
            "supports_validation": self.supports_validation,
            "max_concurrency": self.max_concurrency,
            "supported_actions": sorted(self.supported_actions),
        }


# =============================================================================
# Results
# =============================================================================


@dataclass
class ErrorDetail:
    """Structured failure carried by an unsuccessful ActionResult."""

    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class ActionResult:
    """Outcome of a single adapter call.

    Exactly one of ``output`` (on success) or ``error`` (on failure) is set.
    """

    success: bool
    action: str
    executor: str
    output: dict[str, Any] | None = None
    error: ErrorDetail | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    def __post_init__(self) -> None:
        if self.success and (self.output is None or self.error is not None):
            raise ValueError("Successful results carry output and no error")
        if not self.success and (self.error is None or self.output is not None):
            raise ValueError("Failed results carry an error and no output")

    @classmethod
    def ok(
        cls,
        action: str,
        executor: str,
        output: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> ActionResult:
        """Create a successful result."""
        return cls(
            success=True,
            action=action,
            executor=executor,
            output=output,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def fail(
        cls,
        action: str,
        executor: str,
        code: str,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActionResult:
        """Create a failed result."""
        return cls(
            success=False,
            action=action,
            executor=executor,
            error=ErrorDetail(code=code, message=message, retryable=retryable, details=details),
            metadata=dict(metadata or {}),
        )

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "action": self.action,
            "executor": self.executor,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ValidationResult:
    """Result of parameter validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> ValidationResult:
        """Create a successful validation result."""
        return cls(valid=True)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        """Create a result that is valid only when ``errors`` is empty."""
        return cls(valid=not errors, errors=list(errors))

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


@dataclass
class HealthStatus:
    """Result of an adapter health probe."""

    status: HealthState
    message: str
    latency_ms: float | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def healthy(self) -> bool:
        return self.status == HealthState.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "message": self.message,
            "latency_ms": self.latency_ms,
            "checked_at": self.checked_at.isoformat(),
        }
