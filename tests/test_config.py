"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for relay configs.
"""

import os
import tempfile

import pytest
import yaml

from ai_relay.config.catalog import DEFAULT_BACKENDS
from ai_relay.config.loader import (
    BackendConfig,
    RelayConfig,
    default_relay_config,
    load_relay_config,
)
from ai_relay.config.settings import YamlSettingsStore
from ai_relay.core.capabilities import ALL_CAPABILITIES, Capability
from ai_relay.storage.db import DEFAULT_DB_PATH


def _backend(**overrides):
    data = {
        "name": "groq",
        "provider": "Groq",
        "model": "llama-3.3-70b-versatile",
        "api_key_env": "GROQ_API_KEY",
        "base_url": "https://api.groq.com/openai/v1",
        "max_context_tokens": 8192,
        "cost_per_1k_tokens": 0,
        "capabilities": ["general-chat", "bug-fixing"],
    }
    data.update(overrides)
    return data


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "routing": {
                "strategy": "balanced",
                "prefer_free_tier": False,
                "max_context_tokens": 4000
            },
            "ledger": {"path": "usage.db"},
            "backends": [
                _backend(
                    quality_scores={"general-chat": 8},
                    default_quality_score=6,
                    free_tier={"requests_per_minute": 30, "tokens_per_day": 100000}
                )
            ]
        }

        config = load_relay_config(self._write_config(config_data))

        assert config.ledger_path == "usage.db"
        backend = config.get_backend_config("groq")
        assert backend.capabilities == frozenset({Capability.GENERAL_CHAT, Capability.BUG_FIXING})
        assert backend.quality_scores == {Capability.GENERAL_CHAT: 8}
        assert backend.default_quality_score == 6
        assert backend.free_tier.requests_per_minute == 30
        assert backend.free_tier.tokens_per_day == 100000
        assert backend.free_tier.tokens_per_month is None
        assert config.get_backend_config("missing") is None

    def test_minimal_config_uses_defaults(self):
        config = load_relay_config(self._write_config({"backends": [_backend()]}))

        assert config.ledger_path == DEFAULT_DB_PATH
        backend = config.backends[0]
        assert backend.free_tier is None
        assert backend.default_quality_score == 7
        assert backend.cost_per_1k_tokens == 0.0

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Relay config file not found"):
            load_relay_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("backends: [unclosed\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_relay_config(path)

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_relay_config(path)

    def test_unknown_top_level_key(self):
        path = self._write_config({"backends": [_backend()], "budgets": {}})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_relay_config(path)

    def test_missing_backends(self):
        with pytest.raises(ValueError, match="Missing required 'backends' section"):
            load_relay_config(self._write_config({"routing": {"strategy": "balanced"}}))

    def test_empty_backends(self):
        with pytest.raises(ValueError, match="'backends' must be a non-empty list"):
            load_relay_config(self._write_config({"backends": []}))

    def test_missing_backend_key_names_path(self):
        data = _backend()
        del data["api_key_env"]
        with pytest.raises(ValueError, match=r"Missing required 'api_key_env' in backends\[0\]"):
            load_relay_config(self._write_config({"backends": [data]}))

    def test_unknown_backend_key_names_path(self):
        path = self._write_config({"backends": [_backend(), _backend(name="b", price=1)]})
        with pytest.raises(ValueError, match=r"Unknown keys in backends\[1\]"):
            load_relay_config(path)

    def test_unknown_capability(self):
        path = self._write_config({"backends": [_backend(capabilities=["telepathy"])]})
        with pytest.raises(ValueError, match="Unknown capability 'telepathy'"):
            load_relay_config(path)

    def test_unknown_strategy(self):
        path = self._write_config({"routing": {"strategy": "random"}, "backends": [_backend()]})
        with pytest.raises(ValueError, match="routing strategy must be one of"):
            load_relay_config(path)

    def test_unknown_routing_key(self):
        path = self._write_config({"routing": {"stratgy": "balanced"}, "backends": [_backend()]})
        with pytest.raises(ValueError, match="Unknown routing keys"):
            load_relay_config(path)

    def test_routing_section_read_through_settings_store(self):
        """Routing values are validated on load and served by the settings store."""
        path = self._write_config({
            "routing": {"strategy": "balanced", "max_context_tokens": 4000},
            "backends": [_backend()]
        })

        config = load_relay_config(path)
        store = YamlSettingsStore(path)

        assert not hasattr(config, "routing")
        assert store.get_routing_strategy() == "balanced"
        assert store.get_max_context_tokens() == 4000

    def test_invalid_routing_limit(self):
        path = self._write_config({"routing": {"max_context_tokens": 0}, "backends": [_backend()]})
        with pytest.raises(ValueError, match="'max_context_tokens' in routing must be > 0"):
            load_relay_config(path)

    def test_negative_cost_rejected(self):
        path = self._write_config({"backends": [_backend(cost_per_1k_tokens=-1)]})
        with pytest.raises(ValueError, match="'cost_per_1k_tokens' in backends\\[0\\] must be >= 0"):
            load_relay_config(path)

    def test_quality_score_out_of_range(self):
        path = self._write_config({"backends": [_backend(quality_scores={"general-chat": 11})]})
        with pytest.raises(ValueError, match="must be an integer 0-10"):
            load_relay_config(path)

    def test_invalid_free_tier(self):
        path = self._write_config({"backends": [_backend(free_tier={"requests_per_minute": 0})]})
        with pytest.raises(ValueError, match="must be a positive integer"):
            load_relay_config(path)

        path = self._write_config({"backends": [_backend(free_tier={"per_hour": 5})]}, "other.yaml")
        with pytest.raises(ValueError, match=r"Unknown keys in backends\[0\]\.free_tier"):
            load_relay_config(path)

    def test_duplicate_backend_names(self):
        path = self._write_config({"backends": [_backend(), _backend()]})
        with pytest.raises(ValueError, match="Duplicate backend name: groq"):
            load_relay_config(path)


class TestDefaultConfig:
    """Test the built-in catalog."""

    def test_default_config(self):
        config = default_relay_config()

        assert config.ledger_path == DEFAULT_DB_PATH
        assert config.backends == DEFAULT_BACKENDS

    def test_catalog_names_are_unique(self):
        names = [b.name for b in DEFAULT_BACKENDS]
        assert len(names) == len(set(names)) == 8

    def test_catalog_descriptors(self):
        deepseek = default_relay_config().get_backend_config("deepseek-coder").to_descriptor()

        assert Capability.GENERAL_CHAT not in deepseek.capabilities
        assert deepseek.quality_score(Capability.CODE_COMPLETION) == 9
        assert deepseek.free_tier is None

        gpt = default_relay_config().get_backend_config("gpt-3.5-turbo")
        assert gpt.base_url is None
        assert gpt.free_tier.tokens_per_month == 50000


class TestConfigDataclasses:
    """Test dataclass validation."""

    def test_backend_requires_capabilities(self):
        with pytest.raises(ValueError, match="must declare at least one capability"):
            BackendConfig(
                name="x", provider="X", model="m", api_key_env="X_KEY",
                max_context_tokens=100, cost_per_1k_tokens=0.0, capabilities=frozenset()
            )

    def test_descriptor_validation(self):
        config = BackendConfig(
            name="x", provider="X", model="m", api_key_env="X_KEY",
            max_context_tokens=0, cost_per_1k_tokens=0.0, capabilities=ALL_CAPABILITIES
        )
        with pytest.raises(ValueError, match="max_context_tokens must be > 0"):
            config.to_descriptor()

    def test_relay_config_rejects_duplicates(self):
        backend = BackendConfig(
            name="x", provider="X", model="m", api_key_env="X_KEY",
            max_context_tokens=100, cost_per_1k_tokens=0.0, capabilities=ALL_CAPABILITIES
        )
        with pytest.raises(ValueError, match="Duplicate backend name: x"):
            RelayConfig(ledger_path="a.db", backends=(backend, backend))
