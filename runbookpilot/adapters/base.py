"""Abstract adapter contract and the execution-mode dispatcher.

Every integration subclasses ``BaseAdapter`` and supplies:
- ``actions``: a str Enum naming its closed action set
- ``parameter_rules``: a validation rule table covering every action
- ``capabilities``: the static capability record
- ``_simulate`` / ``_execute_production``: per-action output builders
- ``health_check``: one lightweight authenticated probe

The dispatcher in ``execute`` routes each call by mode:

    simulation  -> synthetic output, no external I/O, no validation
    dry-run     -> validate, echo intent, no external I/O
    production  -> validate, circuit check, rate limit, retry(timeout(call))
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar

import structlog

from runbookpilot.adapters.errors import (
    ROLLBACK_NOT_SUPPORTED,
    SIMULATION_NOT_SUPPORTED,
    UNKNOWN_ERROR,
    VALIDATION_ERROR,
    AdapterNotInitializedError,
    AdapterOperationError,
    CircuitOpenError,
    TransportError,
    UnsupportedActionError,
)
from runbookpilot.adapters.models import (
    ActionResult,
    AdapterConfig,
    Capabilities,
    ExecutionMode,
    HealthStatus,
    ValidationResult,
)
from runbookpilot.adapters.resilience import CircuitBreaker, RateLimiter, RetryExecutor, Sleep
from runbookpilot.adapters.validation import ParameterRule, validate_parameters

logger = structlog.get_logger()


class BaseAdapter(ABC):
    """Base class implementing the adapter contract once for all integrations."""

    default_name: ClassVar[str] = "adapter"
    version: ClassVar[str] = "1.0.0"
    vendor: ClassVar[str] = "Adapter"
    error_prefix: ClassVar[str] = "ADAPTER"
    actions: ClassVar[type[Enum] | None] = None
    parameter_rules: ClassVar[dict[str, list[ParameterRule]]] = {}
    local_actions: ClassVar[frozenset[str]] = frozenset()
    capabilities: ClassVar[Capabilities]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("actions") is None:
            return
        declared = {str(member.value) for member in cls.actions}
        missing = declared - set(cls.parameter_rules)
        if missing:
            raise TypeError(f"{cls.__name__} has no parameter rules for: {sorted(missing)}")
        unsupported = declared - set(cls.capabilities.supported_actions)
        if unsupported:
            raise TypeError(f"{cls.__name__} capabilities omit: {sorted(unsupported)}")

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config: AdapterConfig | None = None
        self._rate_limiter = rate_limiter
        self._circuit_breaker = circuit_breaker
        self._sleep = sleep
        self._logger = logger.bind(adapter=self.default_name)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def name(self) -> str:
        return self._config.name if self._config else self.default_name

    @property
    def initialized(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> AdapterConfig:
        return self._require_initialized()

    @property
    def rate_limiter(self) -> RateLimiter | None:
        return self._rate_limiter

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self._circuit_breaker

    def _require_initialized(self) -> AdapterConfig:
        if self._config is None:
            raise AdapterNotInitializedError(self.name)
        return self._config

    def initialize(self, config: AdapterConfig) -> None:
        """Bind configuration. Performs no network I/O.

        Calling twice rebinds; the last configuration wins.
        """
        self._config = config
        self._logger = logger.bind(adapter=config.name)

        breaker_settings = config.setting("circuit_breaker")
        if self._circuit_breaker is None and isinstance(breaker_settings, Mapping):
            self._circuit_breaker = CircuitBreaker(
                name=config.name,
                **{
                    key: breaker_settings[key]
                    for key in ("failure_threshold", "reset_timeout", "success_threshold")
                    if key in breaker_settings
                },
            )

        self._logger.info(
            "adapter_initialized",
            type=config.type,
            version=self.version,
            enabled=config.enabled,
        )

    async def shutdown(self) -> None:
        """Release held resources."""
        self._logger.debug("adapter_shutdown")

    # =========================================================================
    # Contract
    # =========================================================================

    def get_capabilities(self) -> Capabilities:
        self._require_initialized()
        return self.capabilities

    def validate_parameters(
        self, action: str, params: Mapping[str, Any] | None = None
    ) -> ValidationResult:
        """Validate parameters against this adapter's rule table."""
        self._require_initialized()
        return validate_parameters(action, params, self.parameter_rules)

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        """Probe the upstream system once."""

    async def rollback(
        self, action: str, params: Mapping[str, Any] | None = None
    ) -> ActionResult:
        """Undo a previously executed action.

        Adapters that cannot roll back return ROLLBACK_NOT_SUPPORTED without I/O.
        """
        self._require_initialized()
        return ActionResult.fail(
            action=action,
            executor=self.name,
            code=ROLLBACK_NOT_SUPPORTED,
            message=f"Adapter '{self.name}' does not support rollback for '{action}'",
        )

    async def execute(
        self,
        action: str,
        params: Mapping[str, Any] | None = None,
        mode: ExecutionMode | str = ExecutionMode.SIMULATION,
    ) -> ActionResult:
        """Execute an action under the given mode.

        Args:
            action: Action identifier from this adapter's action set
            params: Action parameters
            mode: simulation, dry-run or production

        Returns:
            ActionResult; operational failures are reported in ``error``

        Raises:
            AdapterNotInitializedError: If called before ``initialize``
            UnsupportedActionError: If the action is outside the action set
        """
        self._require_initialized()
        action = self._resolve_action(action)
        mode = ExecutionMode(mode)
        params = dict(params or {})
        start = time.perf_counter()

        self._logger.debug("adapter_execute_start", action=action, mode=mode.value)

        if mode == ExecutionMode.SIMULATION:
            result = await self._run_simulation(action, params)
        elif mode == ExecutionMode.DRY_RUN:
            result = self._run_dry_run(action, params)
        else:
            result = await self._run_production(action, params)

        result.metadata.setdefault("mode", mode.value)
        result.duration_ms = int((time.perf_counter() - start) * 1000)

        self._logger.info(
            "adapter_execute_complete",
            action=action,
            mode=mode.value,
            success=result.success,
            error_code=result.error.code if result.error else None,
            duration_ms=result.duration_ms,
        )
        return result

    # =========================================================================
    # Mode dispatch
    # =========================================================================

    def _resolve_action(self, action: str) -> str:
        if isinstance(action, Enum):
            action = str(action.value)
        if self.actions is None:
            raise UnsupportedActionError(self.name, action)
        try:
            return str(self.actions(action).value)
        except ValueError:
            raise UnsupportedActionError(self.name, action) from None

    async def _run_simulation(self, action: str, params: dict[str, Any]) -> ActionResult:
        if not self.capabilities.supports_simulation:
            return ActionResult.fail(
                action=action,
                executor=self.name,
                code=SIMULATION_NOT_SUPPORTED,
                message=f"Adapter '{self.name}' does not support simulation",
            )
        try:
            output = await self._simulate(action, params)
        except AdapterOperationError as e:
            return self._failure(action, e)
        except Exception as e:
            self._logger.error(
                "adapter_simulation_exception",
                action=action,
                error=str(e),
                exc_info=True,
            )
            return ActionResult.fail(
                action=action,
                executor=self.name,
                code=UNKNOWN_ERROR,
                message=str(e) or type(e).__name__,
            )
        return ActionResult.ok(action, self.name, output)

    def _run_dry_run(self, action: str, params: dict[str, Any]) -> ActionResult:
        validation = self.validate_parameters(action, params)
        if not validation.valid:
            return self._validation_failure(action, validation, "Dry-run validation failed")
        return ActionResult.ok(
            action,
            self.name,
            {
                "dry_run": True,
                "action": action,
                "params_valid": True,
                "message": f"Parameters validated for '{action}'. No execution performed.",
            },
        )

    async def _run_production(self, action: str, params: dict[str, Any]) -> ActionResult:
        validation = self.validate_parameters(action, params)
        if not validation.valid:
            return self._validation_failure(action, validation, "Parameter validation failed")

        if action in self.local_actions:
            try:
                output = await self._execute_production(action, params)
            except AdapterOperationError as e:
                return self._failure(action, e)
            except Exception as e:
                self._logger.error(
                    "adapter_local_action_exception",
                    action=action,
                    error=str(e),
                    exc_info=True,
                )
                return ActionResult.fail(
                    action=action,
                    executor=self.name,
                    code=UNKNOWN_ERROR,
                    message=str(e) or type(e).__name__,
                )
            return ActionResult.ok(action, self.name, output)

        retry = RetryExecutor(self.config.retry, sleep=self._sleep)
        return await retry.run(lambda: self._attempt(action, params))

    async def _attempt(self, action: str, params: dict[str, Any]) -> ActionResult:
        """One production attempt: circuit check, rate limit, bounded call."""
        if self._circuit_breaker is not None and not self._circuit_breaker.allow_request():
            return self._failure(action, CircuitOpenError(self.name))

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        try:
            output = await asyncio.wait_for(
                self._execute_production(action, params),
                timeout=self.config.timeout,
            )
        except AdapterOperationError as e:
            result = self._failure(action, e)
        except asyncio.TimeoutError:
            result = self._failure(
                action,
                TransportError(
                    self.error_prefix,
                    self.vendor,
                    f"timed out after {self.config.timeout:g}s",
                ),
            )
        except Exception as e:
            self._logger.error(
                "adapter_request_exception",
                action=action,
                error=str(e),
                exc_info=True,
            )
            result = self._failure(action, TransportError(self.error_prefix, self.vendor, e))
        else:
            result = ActionResult.ok(action, self.name, output)

        self._record_circuit(result)
        return result

    def _record_circuit(self, result: ActionResult) -> None:
        if self._circuit_breaker is None:
            return
        if result.success:
            self._circuit_breaker.record_success()
        elif result.retryable:
            self._circuit_breaker.record_failure()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _failure(self, action: str, error: AdapterOperationError) -> ActionResult:
        detail = error.to_error_detail()
        return ActionResult.fail(
            action=action,
            executor=self.name,
            code=detail.code,
            message=detail.message,
            retryable=detail.retryable,
            details=detail.details,
        )

    def _validation_failure(
        self, action: str, validation: ValidationResult, prefix: str
    ) -> ActionResult:
        return ActionResult.fail(
            action=action,
            executor=self.name,
            code=VALIDATION_ERROR,
            message=f"{prefix}: {validation.message}",
            retryable=False,
            details={"errors": list(validation.errors)},
        )

    @abstractmethod
    async def _simulate(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        """Build deterministic synthetic output without external I/O."""

    @abstractmethod
    async def _execute_production(self, action: str, params: dict[str, Any]) -> dict[str, Any]:
        """Perform the real action and return its output.

        Raise ``AdapterOperationError`` for upstream failures.
        """
