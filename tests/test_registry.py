"""Tests for the adapter registry."""

from __future__ import annotations

import pytest

from runbookpilot.adapters.errors import AdapterConfigError
from runbookpilot.adapters.mock import MockAdapter
from runbookpilot.adapters.models import AdapterConfig, HealthState
from runbookpilot.adapters.registry import AdapterRegistry, build_registry, create_adapter
from runbookpilot.adapters.threat_intel import VirusTotalAdapter


class ExplodingHealthAdapter(MockAdapter):
    async def health_check(self):
        raise RuntimeError("probe crashed")


class TestAdapterRegistry:
    """Tests for AdapterRegistry."""

    def test_register_initializes_adapter(self):
        """Test registration binds the config."""
        registry = AdapterRegistry()
        adapter = MockAdapter()
        registry.register(adapter, AdapterConfig(name="edr", type="mock"))

        assert adapter.initialized
        assert registry.get("edr") is adapter
        assert registry.get_config("edr").type == "mock"
        assert "edr" in registry
        assert len(registry) == 1
        assert registry.get("missing") is None

    def test_duplicate_name_rejected(self):
        """Test names are unique."""
        registry = AdapterRegistry()
        registry.register(MockAdapter(), AdapterConfig(name="edr", type="mock"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(MockAdapter(), AdapterConfig(name="edr", type="mock"))

    def test_get_for_action(self):
        """Test lookups by supported action."""
        registry = AdapterRegistry()
        registry.register(MockAdapter(), AdapterConfig(name="mock-b", type="mock"))
        registry.register(MockAdapter(), AdapterConfig(name="mock-a", type="mock"))
        registry.register(VirusTotalAdapter(), AdapterConfig(name="virustotal"))

        assert [a.name for a in registry.get_for_action("enrich_ioc")] == [
            "mock-a",
            "mock-b",
            "virustotal",
        ]
        assert [a.name for a in registry.get_for_action("calculate_hash")] == ["virustotal"]
        assert registry.get_for_action("format_disk") == []

    @pytest.mark.asyncio
    async def test_unregister(self):
        """Test unregister removes the adapter and its action index entries."""
        registry = AdapterRegistry()
        registry.register(VirusTotalAdapter(), AdapterConfig(name="virustotal"))

        assert await registry.unregister("virustotal")
        assert registry.get_for_action("calculate_hash") == []
        assert not await registry.unregister("virustotal")

    @pytest.mark.asyncio
    async def test_health_check_all(self):
        """Test every adapter is probed and crashes become unhealthy."""
        registry = AdapterRegistry()
        registry.register(MockAdapter(), AdapterConfig(name="mock", type="mock"))
        registry.register(ExplodingHealthAdapter(), AdapterConfig(name="flaky", type="mock"))

        statuses = await registry.health_check_all()

        assert statuses["mock"].status == HealthState.HEALTHY
        assert statuses["flaky"].status == HealthState.UNHEALTHY
        assert statuses["flaky"].message == "probe crashed"
        assert registry.entries()[1].last_health_check is statuses["flaky"]

    @pytest.mark.asyncio
    async def test_health_check_unknown_adapter(self):
        """Test probing an unregistered name reports unknown."""
        status = await AdapterRegistry().health_check("ghost")
        assert status.status == HealthState.UNKNOWN
        assert status.message == "Adapter 'ghost' not registered"

    def test_stats(self):
        """Test registry statistics."""
        registry = AdapterRegistry()
        registry.register(MockAdapter(), AdapterConfig(name="mock", type="mock"))
        registry.register(
            VirusTotalAdapter(), AdapterConfig(name="virustotal", enabled=False)
        )
        stats = registry.stats()
        assert stats["total_adapters"] == 2
        assert stats["enabled_adapters"] == 1
        assert stats["disabled_adapters"] == 1
        assert stats["action_coverage"]["enrich_ioc"] == ["mock", "virustotal"]

    @pytest.mark.asyncio
    async def test_shutdown_all(self):
        """Test shutdown empties the registry."""
        registry = AdapterRegistry()
        registry.register(MockAdapter(), AdapterConfig(name="mock", type="mock"))
        await registry.shutdown_all()
        assert len(registry) == 0
        assert registry.names() == []


class TestCreateAdapter:
    """Tests for building adapters from configuration."""

    def test_by_name(self):
        """Test the adapter name selects the implementation."""
        assert isinstance(create_adapter(AdapterConfig(name="virustotal")), VirusTotalAdapter)

    def test_by_implementation_setting(self):
        """Test an explicit implementation setting wins over the name."""
        config = AdapterConfig(name="vt-backup", config={"implementation": "virustotal"})
        assert isinstance(create_adapter(config), VirusTotalAdapter)

    def test_mock_type(self):
        """Test any mock-typed adapter gets the mock implementation."""
        assert isinstance(create_adapter(AdapterConfig(name="edr", type="mock")), MockAdapter)

    def test_unknown_implementation(self):
        """Test unknown implementations are configuration errors."""
        with pytest.raises(AdapterConfigError, match="no implementation named 'crowdstrike'"):
            create_adapter(AdapterConfig(name="crowdstrike", type="edr"))

    def test_build_registry(self):
        """Test every config is registered under its name."""
        registry = build_registry(
            {
                "virustotal": AdapterConfig(name="virustotal", type="enrichment"),
                "edr": AdapterConfig(name="edr", type="mock"),
            }
        )
        assert registry.names() == ["virustotal", "edr"]
        assert registry.get("edr").initialized
