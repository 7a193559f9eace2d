"""Adapters for runbookpilot.

This package provides:
- The adapter contract and the simulation/dry-run/production dispatcher
- Parameter validation rule tables
- Rate limiting, retry with backoff and a circuit breaker
- The VirusTotal threat-intelligence adapter and an in-memory mock adapter
- Adapter configuration parsing and the adapter registry
"""

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.config import (
    apply_env_overrides,
    load_adapter_configs,
    parse_adapter_config,
    redact_adapter_config,
)
from runbookpilot.adapters.errors import (
    AdapterConfigError,
    AdapterNotInitializedError,
    AdapterOperationError,
    AdapterUsageError,
    CircuitOpenError,
    TransportError,
    UnsupportedActionError,
    UpstreamAPIError,
)
from runbookpilot.adapters.mock import MockAction, MockAdapter, MockBehavior
from runbookpilot.adapters.models import (
    ActionResult,
    AdapterConfig,
    AdapterCredentials,
    Capabilities,
    CredentialKind,
    ErrorDetail,
    ExecutionMode,
    HealthState,
    HealthStatus,
    RetryPolicy,
    ValidationResult,
)
from runbookpilot.adapters.registry import (
    AdapterRegistry,
    build_registry,
    create_adapter,
)
from runbookpilot.adapters.resilience import (
    CircuitBreaker,
    CircuitState,
    RateLimiter,
    RetryExecutor,
)
from runbookpilot.adapters.threat_intel import (
    HashAlgorithm,
    IocType,
    ThreatIntelAction,
    VirusTotalAdapter,
)
from runbookpilot.adapters.validation import ParameterRule, validate_parameters

__all__ = [
    # Contract
    "BaseAdapter",
    "ExecutionMode",
    "ActionResult",
    "ErrorDetail",
    "Capabilities",
    "HealthState",
    "HealthStatus",
    "ValidationResult",
    # Configuration
    "AdapterConfig",
    "AdapterCredentials",
    "CredentialKind",
    "RetryPolicy",
    "parse_adapter_config",
    "apply_env_overrides",
    "load_adapter_configs",
    "redact_adapter_config",
    # Errors
    "AdapterUsageError",
    "AdapterNotInitializedError",
    "UnsupportedActionError",
    "AdapterOperationError",
    "UpstreamAPIError",
    "TransportError",
    "CircuitOpenError",
    "AdapterConfigError",
    # Validation
    "ParameterRule",
    "validate_parameters",
    # Resilience
    "RateLimiter",
    "RetryExecutor",
    "CircuitBreaker",
    "CircuitState",
    # Adapters
    "VirusTotalAdapter",
    "ThreatIntelAction",
    "IocType",
    "HashAlgorithm",
    "MockAdapter",
    "MockAction",
    "MockBehavior",
    # Registry
    "AdapterRegistry",
    "create_adapter",
    "build_registry",
]
