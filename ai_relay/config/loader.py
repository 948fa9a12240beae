"""
Configuration management and loading.

Validates routing settings and loads the ledger location and backend catalog.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import yaml

from ai_relay.core.capabilities import Capability, parse_capability
from ai_relay.core.providers import FreeTierLimits, ProviderDescriptor
from ai_relay.storage.db import DEFAULT_DB_PATH

from .settings import (
    DEFAULT_MAX_CONTEXT_TOKENS,
    DEFAULT_PREFER_FREE_TIER,
    DEFAULT_ROUTING_STRATEGY,
    validate_routing_strategy,
)


@dataclass(frozen=True)
class BackendConfig:
    """Configuration for one OpenAI-compatible backend."""
    name: str
    provider: str
    model: str
    api_key_env: str
    max_context_tokens: int
    cost_per_1k_tokens: float
    capabilities: FrozenSet[Capability]
    base_url: Optional[str] = None
    quality_scores: Mapping[Capability, int] = field(default_factory=dict)
    default_quality_score: int = 7
    free_tier: Optional[FreeTierLimits] = None

    def __post_init__(self):
        """Validate backend fields not covered by the descriptor."""
        if not self.model or not self.model.strip():
            raise ValueError(f"model is required for backend '{self.name}'")
        if not self.api_key_env or not self.api_key_env.strip():
            raise ValueError(f"api_key_env is required for backend '{self.name}'")
        if not self.capabilities:
            raise ValueError(f"backend '{self.name}' must declare at least one capability")

    def to_descriptor(self) -> ProviderDescriptor:
        """Build the immutable descriptor the router and tracker use."""
        return ProviderDescriptor(
            name=self.name,
            provider=self.provider,
            max_context_tokens=self.max_context_tokens,
            cost_per_1k_tokens=self.cost_per_1k_tokens,
            capabilities=self.capabilities,
            free_tier=self.free_tier,
            quality_scores=dict(self.quality_scores),
            default_quality_score=self.default_quality_score
        )


@dataclass(frozen=True)
class RelayConfig:
    """Complete AI Relay configuration.

    The `routing` section is validated here but read through
    `YamlSettingsStore`, which also writes it.
    """
    ledger_path: str
    backends: Tuple[BackendConfig, ...]

    def __post_init__(self):
        """Validate backend names are unique."""
        seen = set()
        for backend in self.backends:
            if backend.name in seen:
                raise ValueError(f"Duplicate backend name: {backend.name}")
            seen.add(backend.name)

    def get_backend_config(self, name: str) -> Optional[BackendConfig]:
        """Get configuration for a backend by name."""
        for backend in self.backends:
            if backend.name == name:
                return backend
        return None


def default_relay_config() -> RelayConfig:
    """Configuration used when no config file is given."""
    from .catalog import DEFAULT_BACKENDS

    return RelayConfig(
        ledger_path=DEFAULT_DB_PATH,
        backends=DEFAULT_BACKENDS
    )


def load_relay_config(path: str) -> RelayConfig:
    """Load and validate relay configuration from a YAML file.

    Strict validation so a typo in a limit or capability name can't silently
    change routing or free-tier accounting.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RelayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Relay config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    allowed_top_keys = {'routing', 'ledger', 'backends'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    _validate_routing(raw_config.get('routing') or {})
    ledger_path = _parse_ledger(raw_config.get('ledger') or {})

    if 'backends' not in raw_config:
        raise ValueError("Missing required 'backends' section")

    backends_data = raw_config['backends']
    if not isinstance(backends_data, list) or not backends_data:
        raise ValueError("'backends' must be a non-empty list")

    backends = []
    for index, backend_data in enumerate(backends_data):
        if not isinstance(backend_data, dict):
            raise ValueError(f"backends[{index}] must be a dictionary")
        backends.append(_parse_backend(backend_data, f"backends[{index}]"))

    return RelayConfig(
        ledger_path=ledger_path,
        backends=tuple(backends)
    )


def _validate_routing(data: Any) -> None:
    if not isinstance(data, dict):
        raise ValueError("'routing' must be a dictionary")

    allowed_keys = {'strategy', 'prefer_free_tier', 'max_context_tokens'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown routing keys: {unknown_keys}")

    strategy = data.get('strategy', DEFAULT_ROUTING_STRATEGY)
    if not isinstance(strategy, str):
        raise ValueError("'strategy' in routing must be a string")

    prefer_free = data.get('prefer_free_tier', DEFAULT_PREFER_FREE_TIER)
    if not isinstance(prefer_free, bool):
        raise ValueError("'prefer_free_tier' in routing must be true or false")

    max_tokens = data.get('max_context_tokens', DEFAULT_MAX_CONTEXT_TOKENS)
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
        raise ValueError("'max_context_tokens' in routing must be > 0")

    validate_routing_strategy(strategy)


def _parse_ledger(data: Any) -> str:
    if not isinstance(data, dict):
        raise ValueError("'ledger' must be a dictionary")

    unknown_keys = set(data.keys()) - {'path'}
    if unknown_keys:
        raise ValueError(f"Unknown ledger keys: {unknown_keys}")

    ledger_path = data.get('path', DEFAULT_DB_PATH)
    if not isinstance(ledger_path, str) or not ledger_path.strip():
        raise ValueError("'path' in ledger must be a non-empty string")
    return ledger_path


def _parse_backend(data: Dict, path: str) -> BackendConfig:
    """Parse and validate one backend entry.

    Args:
        data: Backend configuration data
        path: Path for error messages

    Returns:
        Validated BackendConfig

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'name', 'provider', 'model', 'api_key_env', 'base_url',
        'max_context_tokens', 'cost_per_1k_tokens', 'capabilities',
        'quality_scores', 'default_quality_score', 'free_tier'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key in ('name', 'model', 'api_key_env', 'max_context_tokens', 'cost_per_1k_tokens', 'capabilities'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")

    for key in ('name', 'model', 'api_key_env'):
        if not isinstance(data[key], str) or not data[key].strip():
            raise ValueError(f"'{key}' in {path} must be a non-empty string")

    max_tokens = data['max_context_tokens']
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
        raise ValueError(f"'max_context_tokens' in {path} must be > 0")

    cost = data['cost_per_1k_tokens']
    if isinstance(cost, bool) or not isinstance(cost, (int, float)) or cost < 0:
        raise ValueError(f"'cost_per_1k_tokens' in {path} must be >= 0")

    capabilities_data = data['capabilities']
    if not isinstance(capabilities_data, list) or not capabilities_data:
        raise ValueError(f"'capabilities' in {path} must be a non-empty list")
    capabilities = frozenset(parse_capability(str(c)) for c in capabilities_data)

    quality_data = data.get('quality_scores') or {}
    if not isinstance(quality_data, dict):
        raise ValueError(f"'quality_scores' in {path} must be a dictionary")
    quality_scores = {}
    for capability_name, score in quality_data.items():
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 10:
            raise ValueError(f"quality score '{capability_name}' in {path} must be an integer 0-10")
        quality_scores[parse_capability(str(capability_name))] = score

    default_score = data.get('default_quality_score', 7)
    if isinstance(default_score, bool) or not isinstance(default_score, int) or not 0 <= default_score <= 10:
        raise ValueError(f"'default_quality_score' in {path} must be an integer 0-10")

    base_url = data.get('base_url')
    if base_url is not None and (not isinstance(base_url, str) or not base_url.strip()):
        raise ValueError(f"'base_url' in {path} must be a non-empty string")

    name = data['name']
    return BackendConfig(
        name=name,
        provider=str(data.get('provider', name)),
        model=data['model'],
        api_key_env=data['api_key_env'],
        base_url=base_url,
        max_context_tokens=max_tokens,
        cost_per_1k_tokens=float(cost),
        capabilities=capabilities,
        quality_scores=quality_scores,
        default_quality_score=default_score,
        free_tier=_parse_free_tier(data.get('free_tier'), f"{path}.free_tier")
    )


def _parse_free_tier(data: Any, path: str) -> Optional[FreeTierLimits]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed_keys = {'tokens_per_month', 'tokens_per_day', 'requests_per_minute'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"'{key}' in {path} must be a positive integer")

    return FreeTierLimits(**data)
