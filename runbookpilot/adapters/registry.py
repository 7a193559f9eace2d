"""Registry of initialized adapters, keyed by configured name."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from runbookpilot.adapters.base import BaseAdapter
from runbookpilot.adapters.errors import AdapterConfigError
from runbookpilot.adapters.mock import MockAdapter
from runbookpilot.adapters.models import AdapterConfig, HealthState, HealthStatus
from runbookpilot.adapters.threat_intel import VirusTotalAdapter

logger = structlog.get_logger()

# Built-in implementations selectable from config
ADAPTER_CLASSES: dict[str, type[BaseAdapter]] = {
    VirusTotalAdapter.default_name: VirusTotalAdapter,
    MockAdapter.default_name: MockAdapter,
}


@dataclass
class RegisteredAdapter:
    adapter: BaseAdapter
    config: AdapterConfig
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_health_check: HealthStatus | None = None


class AdapterRegistry:
    """Holds initialized adapters and indexes them by supported action.

    Example:
        registry = AdapterRegistry()
        registry.register(VirusTotalAdapter(), config)
        adapter = registry.get("virustotal")
        statuses = await registry.health_check_all()
    """

    def __init__(self) -> None:
        self._adapters: dict[str, RegisteredAdapter] = {}
        self._action_index: dict[str, set[str]] = {}
        self._logger = logger.bind(component="adapter_registry")

    def register(self, adapter: BaseAdapter, config: AdapterConfig) -> None:
        """Initialize ``adapter`` with ``config`` and register it under ``config.name``.

        Raises:
            ValueError: If an adapter with the same name is already registered
        """
        if config.name in self._adapters:
            raise ValueError(f"Adapter '{config.name}' is already registered")

        adapter.initialize(config)
        self._adapters[config.name] = RegisteredAdapter(adapter=adapter, config=config)
        for action in adapter.capabilities.supported_actions:
            self._action_index.setdefault(action, set()).add(config.name)

        self._logger.info(
            "adapter_registered",
            adapter=config.name,
            type=config.type,
            enabled=config.enabled,
            actions=len(adapter.capabilities.supported_actions),
        )

    async def unregister(self, name: str) -> bool:
        """Remove an adapter and shut it down. Returns False if unknown."""
        entry = self._adapters.pop(name, None)
        if entry is None:
            return False

        for action in entry.adapter.capabilities.supported_actions:
            names = self._action_index.get(action)
            if names is not None:
                names.discard(name)
                if not names:
                    del self._action_index[action]

        await entry.adapter.shutdown()
        self._logger.info("adapter_unregistered", adapter=name)
        return True

    def get(self, name: str) -> BaseAdapter | None:
        entry = self._adapters.get(name)
        return entry.adapter if entry else None

    def get_config(self, name: str) -> AdapterConfig | None:
        entry = self._adapters.get(name)
        return entry.config if entry else None

    def get_for_action(self, action: str) -> list[BaseAdapter]:
        """All registered adapters that support ``action``, in name order."""
        return [self._adapters[n].adapter for n in sorted(self._action_index.get(action, ()))]

    def has(self, name: str) -> bool:
        return name in self._adapters

    def names(self) -> list[str]:
        return list(self._adapters)

    def entries(self) -> list[RegisteredAdapter]:
        return list(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    # =========================================================================
    # Health
    # =========================================================================

    async def _probe(self, entry: RegisteredAdapter) -> HealthStatus:
        try:
            status = await entry.adapter.health_check()
        except Exception as e:
            self._logger.warning(
                "adapter_health_check_error",
                adapter=entry.config.name,
                error=str(e),
            )
            status = HealthStatus(status=HealthState.UNHEALTHY, message=str(e))
        entry.last_health_check = status
        return status

    async def health_check(self, name: str) -> HealthStatus:
        entry = self._adapters.get(name)
        if entry is None:
            return HealthStatus(
                status=HealthState.UNKNOWN, message=f"Adapter '{name}' not registered"
            )
        return await self._probe(entry)

    async def health_check_all(self) -> dict[str, HealthStatus]:
        names = list(self._adapters)
        statuses = await asyncio.gather(*(self._probe(self._adapters[n]) for n in names))
        return dict(zip(names, statuses))

    # =========================================================================
    # Stats and teardown
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        enabled = sum(1 for e in self._adapters.values() if e.config.enabled)
        return {
            "total_adapters": len(self._adapters),
            "enabled_adapters": enabled,
            "disabled_adapters": len(self._adapters) - enabled,
            "action_coverage": {
                action: sorted(names) for action, names in sorted(self._action_index.items())
            },
        }

    async def shutdown_all(self) -> None:
        """Shut down every adapter; failures are logged and do not stop the others."""
        for name, entry in list(self._adapters.items()):
            try:
                await entry.adapter.shutdown()
            except Exception as e:
                self._logger.error("adapter_shutdown_failed", adapter=name, error=str(e))
        self._adapters.clear()
        self._action_index.clear()


def create_adapter(config: AdapterConfig) -> BaseAdapter:
    """Instantiate the built-in adapter class a config refers to.

    The class is chosen by ``config.implementation``, then the adapter name,
    then ``type: mock``.

    Raises:
        AdapterConfigError: If no built-in implementation matches
    """
    key = config.setting("implementation") or config.name
    adapter_cls = ADAPTER_CLASSES.get(str(key))
    if adapter_cls is None and config.type == "mock":
        adapter_cls = MockAdapter
    if adapter_cls is None:
        raise AdapterConfigError(
            config.name,
            [
                f"Adapter '{config.name}': no implementation named '{key}'. "
                f"Available: {', '.join(sorted(ADAPTER_CLASSES))}"
            ],
        )
    return adapter_cls()


def build_registry(configs: Mapping[str, AdapterConfig]) -> AdapterRegistry:
    """Create and register adapters for every config."""
    registry = AdapterRegistry()
    for config in configs.values():
        registry.register(create_adapter(config), config)
    return registry
