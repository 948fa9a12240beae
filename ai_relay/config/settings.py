"""
Persistent routing settings.

The router and quota tracker read these on every call, so a change made
between two requests takes effect on the next one.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import yaml

from ai_relay.core.capabilities import RoutingStrategy

DEFAULT_ROUTING_STRATEGY = RoutingStrategy.COST_OPTIMIZED.value
DEFAULT_MAX_CONTEXT_TOKENS = 8000
DEFAULT_PREFER_FREE_TIER = True


def validate_routing_strategy(value: str) -> str:
    """Return the canonical strategy value or raise ValueError."""
    try:
        return RoutingStrategy(value.lower()).value
    except (ValueError, AttributeError):
        valid = [s.value for s in RoutingStrategy]
        raise ValueError(f"routing strategy must be one of: {valid}")


def validate_max_context_tokens(value: Any) -> int:
    """Return the token limit as int or raise ValueError."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError("max_context_tokens must be a positive integer")
    return value


class SettingsStore(ABC):
    """Get/set access to the user-editable routing settings."""

    @abstractmethod
    def get_routing_strategy(self) -> str:
        """Stored strategy string. May be a value the router doesn't know."""

    @abstractmethod
    def set_routing_strategy(self, value: str) -> None:
        ...

    @abstractmethod
    def get_max_context_tokens(self) -> int:
        ...

    @abstractmethod
    def set_max_context_tokens(self, value: int) -> None:
        ...

    @abstractmethod
    def get_prefer_free_tier(self) -> bool:
        ...

    @abstractmethod
    def set_prefer_free_tier(self, value: bool) -> None:
        ...


class InMemorySettingsStore(SettingsStore):
    """Settings held in memory for one session."""

    def __init__(
        self,
        routing_strategy: str = DEFAULT_ROUTING_STRATEGY,
        max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
        prefer_free_tier: bool = DEFAULT_PREFER_FREE_TIER,
    ):
        self._routing_strategy = routing_strategy
        self._max_context_tokens = validate_max_context_tokens(max_context_tokens)
        self._prefer_free_tier = prefer_free_tier

    def get_routing_strategy(self) -> str:
        return self._routing_strategy

    def set_routing_strategy(self, value: str) -> None:
        self._routing_strategy = validate_routing_strategy(value)

    def get_max_context_tokens(self) -> int:
        return self._max_context_tokens

    def set_max_context_tokens(self, value: int) -> None:
        self._max_context_tokens = validate_max_context_tokens(value)

    def get_prefer_free_tier(self) -> bool:
        return self._prefer_free_tier

    def set_prefer_free_tier(self, value: bool) -> None:
        self._prefer_free_tier = bool(value)


class YamlSettingsStore(SettingsStore):
    """Settings kept in the `routing` section of a YAML file.

    The file is re-read on every get so edits made by other processes are
    picked up. Missing files or keys fall back to the defaults.
    """

    SECTION = "routing"

    def __init__(self, path: str):
        self.path = Path(path)

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ValueError(f"Settings file {self.path} must contain a mapping")
        return document

    def _read_section(self) -> Dict[str, Any]:
        section = self._read_document().get(self.SECTION) or {}
        if not isinstance(section, dict):
            raise ValueError(f"'{self.SECTION}' in {self.path} must be a dictionary")
        return section

    def _write_value(self, key: str, value: Any) -> None:
        document = self._read_document()
        section = document.get(self.SECTION) or {}
        section[key] = value
        document[self.SECTION] = section
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(document, f, sort_keys=False)

    def get_routing_strategy(self) -> str:
        return str(self._read_section().get("strategy", DEFAULT_ROUTING_STRATEGY))

    def set_routing_strategy(self, value: str) -> None:
        self._write_value("strategy", validate_routing_strategy(value))

    def get_max_context_tokens(self) -> int:
        value = self._read_section().get("max_context_tokens", DEFAULT_MAX_CONTEXT_TOKENS)
        return validate_max_context_tokens(value)

    def set_max_context_tokens(self, value: int) -> None:
        self._write_value("max_context_tokens", validate_max_context_tokens(value))

    def get_prefer_free_tier(self) -> bool:
        return bool(self._read_section().get("prefer_free_tier", DEFAULT_PREFER_FREE_TIER))

    def set_prefer_free_tier(self, value: bool) -> None:
        self._write_value("prefer_free_tier", bool(value))
