"""Tests for adapter configuration parsing and environment overrides."""

from __future__ import annotations

import pytest

from runbookpilot.adapters.config import (
    apply_env_overrides,
    load_adapter_configs,
    parse_adapter_config,
    redact_adapter_config,
)
from runbookpilot.adapters.errors import AdapterConfigError
from runbookpilot.adapters.models import CredentialKind

VT_BLOCK = {
    "type": "enrichment",
    "config": {"base_url": "https://www.virustotal.com/api/v3"},
    "credentials": {"type": "api_key", "api_key": "file-key"},
    "timeout": 15,
    "retry": {"max_attempts": 5, "backoff_ms": 250},
}


class TestParseAdapterConfig:
    """Tests for parse_adapter_config."""

    def test_full_block(self):
        """Test a complete block is parsed."""
        config = parse_adapter_config("virustotal", VT_BLOCK)
        assert config.name == "virustotal"
        assert config.type == "enrichment"
        assert config.timeout == 15
        assert config.retry.max_attempts == 5
        assert config.retry.backoff_ms == 250
        assert config.credentials.kind == CredentialKind.API_KEY
        assert config.credentials.get("api_key") == "file-key"

    def test_defaults(self):
        """Test omitted fields take their defaults."""
        config = parse_adapter_config("mock", {"type": "mock"})
        assert config.enabled
        assert config.timeout == 30.0
        assert config.retry.max_attempts == 3
        assert config.credentials is None

    def test_all_errors_reported(self):
        """Test every problem in a block is reported at once."""
        with pytest.raises(AdapterConfigError) as exc_info:
            parse_adapter_config(
                "bad",
                {
                    "type": "teleporter",
                    "timeout": -1,
                    "retry": {"max_attempts": 0},
                    "credentials": {"type": "magic"},
                },
            )
        errors = exc_info.value.errors
        assert len(errors) == 4
        assert errors[0].startswith("Adapter 'bad': invalid type 'teleporter'")
        assert "timeout must be a positive number" in errors[1]
        assert "retry.max_attempts must be >= 1" in errors[2]
        assert "invalid credentials type 'magic'" in errors[3]

    def test_missing_type(self):
        """Test type is required."""
        with pytest.raises(AdapterConfigError, match="missing or invalid 'type'"):
            parse_adapter_config("x", {})

    def test_block_must_be_mapping(self):
        """Test non-mapping blocks are rejected."""
        with pytest.raises(AdapterConfigError):
            parse_adapter_config("x", ["enrichment"])


class TestEnvOverrides:
    """Tests for ADAPTER_<NAME>_<KEY> overrides."""

    def test_overrides(self):
        """Test recognized keys update the config."""
        config = parse_adapter_config("virustotal", VT_BLOCK)
        env = {
            "ADAPTER_VIRUSTOTAL_API_KEY": "env-key",
            "ADAPTER_VIRUSTOTAL_API_URL": "https://proxy.example/vt",
            "ADAPTER_VIRUSTOTAL_TIMEOUT": "45",
            "ADAPTER_VIRUSTOTAL_ENABLED": "false",
            "ADAPTER_VIRUSTOTAL_REGION": "eu",
            "ADAPTER_OTHER_API_KEY": "ignored",
        }
        updated = apply_env_overrides(config, env)

        assert updated.credentials.get("api_key") == "env-key"
        assert updated.setting("base_url") == "https://proxy.example/vt"
        assert updated.setting("region") == "eu"
        assert updated.timeout == 45.0
        assert not updated.enabled
        # the original is frozen and untouched
        assert config.credentials.get("api_key") == "file-key"

    def test_invalid_timeout_ignored(self):
        """Test non-numeric and non-positive timeouts are ignored."""
        config = parse_adapter_config("virustotal", VT_BLOCK)
        assert apply_env_overrides(config, {"ADAPTER_VIRUSTOTAL_TIMEOUT": "soon"}).timeout == 15
        assert apply_env_overrides(config, {"ADAPTER_VIRUSTOTAL_TIMEOUT": "-3"}).timeout == 15

    def test_dashed_names(self):
        """Test dashes in adapter names map to underscores."""
        config = parse_adapter_config("vt-backup", {"type": "enrichment"})
        updated = apply_env_overrides(config, {"ADAPTER_VT_BACKUP_API_KEY": "k"})
        assert updated.credentials.get("api_key") == "k"

    def test_no_overrides_returns_same_object(self):
        """Test configs without matching variables are returned unchanged."""
        config = parse_adapter_config("mock", {"type": "mock"})
        assert apply_env_overrides(config, {}) is config

    def test_load_adapter_configs(self):
        """Test loading a whole adapters section."""
        configs = load_adapter_configs(
            {"virustotal": VT_BLOCK, "mock": {"type": "mock"}},
            {"ADAPTER_MOCK_ENABLED": "false"},
        )
        assert list(configs) == ["virustotal", "mock"]
        assert not configs["mock"].enabled


class TestRedaction:
    """Tests for redact_adapter_config."""

    def test_secrets_masked(self):
        """Test credential values and secret-like settings are masked."""
        config = parse_adapter_config(
            "virustotal",
            {**VT_BLOCK, "config": {"base_url": "https://vt.example", "token": "abc"}},
        )
        redacted = redact_adapter_config(config)
        assert redacted["credentials"] == {"type": "api_key", "values": {"api_key": "***"}}
        assert redacted["config"] == {"base_url": "https://vt.example", "token": "***"}
        assert "file-key" not in str(redacted)
