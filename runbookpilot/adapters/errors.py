"""Error taxonomy for adapter execution.

Operational failures (bad parameters, upstream errors, network trouble) are
never raised across ``execute``; they are normalized into ``ErrorDetail``.
Exceptions in this module are either programmer errors (``AdapterUsageError``)
or internal signals converted to results before they reach a caller.
"""

from __future__ import annotations

from typing import Any

from runbookpilot.adapters.models import ErrorDetail

# =============================================================================
# Stable error codes
# =============================================================================

VALIDATION_ERROR = "VALIDATION_ERROR"
ROLLBACK_NOT_SUPPORTED = "ROLLBACK_NOT_SUPPORTED"
NOT_INITIALIZED = "NOT_INITIALIZED"
UNSUPPORTED_ACTION = "UNSUPPORTED_ACTION"
ADAPTER_NOT_FOUND = "ADAPTER_NOT_FOUND"
ADAPTER_DISABLED = "ADAPTER_DISABLED"
SIMULATION_NOT_SUPPORTED = "SIMULATION_NOT_SUPPORTED"
CIRCUIT_OPEN = "CIRCUIT_OPEN"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

# Upstream statuses worth re-issuing the same request for
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


def api_error_code(prefix: str) -> str:
    """Code for an upstream non-success response, e.g. ``VT_API_ERROR``."""
    return f"{prefix.upper()}_API_ERROR"


def transport_error_code(prefix: str) -> str:
    """Code for a transport-level failure, e.g. ``VT_ERROR``."""
    return f"{prefix.upper()}_ERROR"


def is_retryable_status(status_code: int) -> bool:
    """Whether an upstream HTTP status is classified transient."""
    return status_code in TRANSIENT_STATUSES


# =============================================================================
# Programmer errors
# =============================================================================


class AdapterUsageError(Exception):
    """Raised when an adapter is used in a way its contract forbids."""

    code = UNKNOWN_ERROR

    def __init__(self, message: str, adapter: str | None = None):
        super().__init__(message)
        self.adapter = adapter


class AdapterNotInitializedError(AdapterUsageError):
    """Raised when an adapter method is called before ``initialize``."""

    code = NOT_INITIALIZED

    def __init__(self, adapter: str):
        super().__init__(
            f"Adapter '{adapter}' is not initialized. Call initialize() first.",
            adapter=adapter,
        )


class UnsupportedActionError(AdapterUsageError):
    """Raised when an action outside the adapter's closed action set is requested."""

    code = UNSUPPORTED_ACTION

    def __init__(self, adapter: str, action: str):
        super().__init__(
            f"Adapter '{adapter}' does not support action '{action}'",
            adapter=adapter,
        )
        self.action = action


# =============================================================================
# Operational errors
# =============================================================================


class AdapterOperationError(Exception):
    """An operational failure raised inside a production path.

    Converted into an ``ErrorDetail`` by the execution dispatcher.
    """

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.details = details

    def to_error_detail(self) -> ErrorDetail:
        details = dict(self.details or {})
        if self.status_code is not None:
            details["status_code"] = self.status_code
        return ErrorDetail(
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            details=details or None,
        )


class UpstreamAPIError(AdapterOperationError):
    """Upstream answered with a non-success HTTP status."""

    def __init__(self, prefix: str, vendor: str, status_code: int, body: str = ""):
        super().__init__(
            code=api_error_code(prefix),
            message=f"{vendor} returned HTTP {status_code}: {body}",
            retryable=is_retryable_status(status_code),
            status_code=status_code,
        )


class TransportError(AdapterOperationError):
    """Request never produced a response (timeout, reset, DNS)."""

    def __init__(self, prefix: str, vendor: str, cause: BaseException | str):
        cause_text = str(cause) or type(cause).__name__
        super().__init__(
            code=transport_error_code(prefix),
            message=f"{vendor} request failed: {cause_text}",
            retryable=True,
        )


class CircuitOpenError(AdapterOperationError):
    """The adapter's circuit breaker is refusing calls."""

    def __init__(self, adapter: str):
        super().__init__(
            code=CIRCUIT_OPEN,
            message=f"Circuit breaker open for adapter '{adapter}'",
            retryable=True,
        )


# =============================================================================
# Configuration errors
# =============================================================================


class AdapterConfigError(Exception):
    """Raised when an adapter configuration block is invalid."""

    def __init__(self, adapter_name: str, errors: list[str] | None = None):
        self.adapter_name = adapter_name
        self.errors = errors or []
        super().__init__(
            f"Invalid configuration for adapter '{adapter_name}': {'; '.join(self.errors)}"
        )
