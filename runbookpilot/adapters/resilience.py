"""Rate limiting, retry/backoff and circuit breaking for outbound calls.

This module provides:
- RateLimiter: per-adapter-instance minimum spacing between calls
- RetryExecutor: tenacity-driven re-attempts of retryable ActionResults
- CircuitBreaker: closed/open/half-open gate in front of a flaky upstream

All timing goes through injectable ``clock``/``sleep`` callables so tests can
drive them without waiting in real time.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from runbookpilot.adapters.models import ActionResult, RetryPolicy

logger = structlog.get_logger()

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


# =============================================================================
# Rate Limiter
# =============================================================================


class RateLimiter:
    """Enforce a minimum interval between outbound calls of one adapter instance.

    The read-then-write of the last-call clock runs under a single lock per
    limiter, so concurrent callers queue instead of both seeing a free slot.

    Example:
        limiter = RateLimiter(15.0)
        await limiter.acquire()  # returns immediately the first time
        await limiter.acquire()  # waits until 15s after the first call
    """

    def __init__(
        self,
        min_interval: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        last_request_time: float | None = None,
    ) -> None:
        if min_interval < 0:
            raise ValueError(f"min_interval must be non-negative, got {min_interval}")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_time = last_request_time
        self._lock = asyncio.Lock()

    @property
    def last_request_time(self) -> float | None:
        return self._last_request_time

    def reset(self, last_request_time: float | None = None) -> None:
        """Clear the clock, or seed it with an explicit last-call time."""
        self._last_request_time = last_request_time

    async def acquire(self) -> float:
        """Wait for the next free slot and claim it.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            now = self._clock()
            waited = 0.0
            slot = now
            if self._last_request_time is not None:
                slot = self._last_request_time + self.min_interval
                waited = slot - now
                if waited > 0:
                    logger.debug("rate_limit_wait", wait_seconds=round(waited, 3))
                    await self._sleep(waited)
                else:
                    waited = 0.0
            self._last_request_time = max(self._clock(), slot)
            return waited


# =============================================================================
# Retry Executor
# =============================================================================


class RetryExecutor:
    """Re-issue a call while it keeps failing with a retryable error.

    The wrapped call returns an ``ActionResult``; only results whose error is
    flagged retryable are re-attempted. The returned result is the last
    attempt's, with ``metadata["attempts"]`` set.
    """

    def __init__(self, policy: RetryPolicy, sleep: Sleep = asyncio.sleep) -> None:
        self.policy = policy
        self._sleep = sleep

    def _wait_strategy(self) -> Any:
        backoff = self.policy.backoff_ms / 1000.0
        if self.policy.exponential:
            cap = max(self.policy.max_backoff_ms / 1000.0, backoff)
            return wait_exponential(multiplier=backoff, max=cap)
        return wait_fixed(backoff)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        result = outcome.result() if outcome is not None and not outcome.failed else None
        logger.warning(
            "action_retry_scheduled",
            action=getattr(result, "action", None),
            attempt=retry_state.attempt_number,
            error_code=result.error.code if result is not None and result.error else None,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def run(self, call: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        """Run ``call`` under the retry policy."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait_strategy(),
            retry=retry_if_result(lambda r: r.retryable),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0

        async def counted() -> ActionResult:
            nonlocal attempts
            attempts += 1
            return await call()

        result: ActionResult = await retrying(counted)
        result.metadata["attempts"] = attempts
        return result


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stop calling an upstream after repeated failures.

    - closed: calls flow; ``failure_threshold`` consecutive failures open it
    - open: calls are refused until ``reset_timeout`` seconds have passed
    - half_open: trial calls flow; ``success_threshold`` successes close it,
      any failure re-opens it
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        success_threshold: int = 2,
        clock: Clock = time.monotonic,
        name: str = "default",
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        else:
            self._failures = 0

    def record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return
        self._failures += 1
        if self._failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        self._transition(CircuitState.CLOSED)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.info(
                "circuit_state_change",
                circuit=self.name,
                from_state=self._state.value,
                to_state=new_state.value,
            )
        self._state = new_state
        self._successes = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        else:
            self._opened_at = None
            self._failures = 0
