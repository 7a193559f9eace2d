"""Pytest configuration and shared fixtures for runbookpilot tests."""

from __future__ import annotations

import pytest
import structlog

from runbookpilot.adapters.mock import MockAdapter
from runbookpilot.adapters.models import AdapterConfig, AdapterCredentials, RetryPolicy


def pytest_configure(config):
    """Configure custom markers for pytest."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow-running (deselect with '-m \"not slow\"')",
    )


@pytest.fixture(autouse=True)
def quiet_logging():
    """Discard log output; tests that call the CLI reconfigure it themselves."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
    )
    yield
    structlog.reset_defaults()


class FakeClock:
    """Monotonic clock that only moves when a test (or FakeSleep) advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Awaitable sleep that records requested delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def vt_config() -> AdapterConfig:
    return AdapterConfig(
        name="virustotal",
        type="enrichment",
        credentials=AdapterCredentials(values={"api_key": "test-key"}),
        timeout=30.0,
        retry=RetryPolicy(max_attempts=3, backoff_ms=1000),
    )


@pytest.fixture
def mock_config() -> AdapterConfig:
    return AdapterConfig(name="mock", type="mock", retry=RetryPolicy(max_attempts=1))


@pytest.fixture
def mock_adapter(mock_config: AdapterConfig, sleep: FakeSleep) -> MockAdapter:
    adapter = MockAdapter(sleep=sleep)
    adapter.initialize(mock_config)
    return adapter
