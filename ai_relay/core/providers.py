"""
Provider descriptors, the backend interface and the backend registry.

A backend is one externally invoked completion service. The core never
looks at a backend's wire format: it only uses the methods on ModelBackend
and the static facts in its ProviderDescriptor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import structlog

from .capabilities import Capability
from .token_counter import TokenUsage

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FreeTierLimits:
    """No-cost allowance of a backend. Absent limits impose no constraint."""
    tokens_per_month: Optional[int] = None
    tokens_per_day: Optional[int] = None
    requests_per_minute: Optional[int] = None

    def __post_init__(self):
        """Validate limits are positive when present."""
        for name in ("tokens_per_month", "tokens_per_day", "requests_per_minute"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be > 0")


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static facts about one completion backend.

    Immutable after construction. One instance per configured backend,
    rebuilt whenever the registry is refreshed.
    """
    name: str
    provider: str
    max_context_tokens: int
    cost_per_1k_tokens: float
    capabilities: FrozenSet[Capability]
    free_tier: Optional[FreeTierLimits] = None
    quality_scores: Mapping[Capability, int] = field(default_factory=dict)
    default_quality_score: int = 7

    def __post_init__(self):
        """Validate descriptor values."""
        if not self.name or not self.name.strip():
            raise ValueError("name is required and cannot be empty")
        if self.max_context_tokens <= 0:
            raise ValueError("max_context_tokens must be > 0")
        if self.cost_per_1k_tokens < 0:
            raise ValueError("cost_per_1k_tokens cannot be negative")
        if not 0 <= self.default_quality_score <= 10:
            raise ValueError("default_quality_score must be between 0 and 10")
        for capability, score in self.quality_scores.items():
            if not 0 <= score <= 10:
                raise ValueError(f"quality score for {capability.value} must be between 0 and 10")

    def quality_score(self, capability: Capability) -> int:
        """Quality score (0-10) for a capability, falling back to the default."""
        return self.quality_scores.get(capability, self.default_quality_score)


@dataclass(frozen=True)
class ChatMessage:
    """One message of a chat conversation."""
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ("system", "user", "assistant"):
            raise ValueError(f"Unknown message role: {self.role}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionOptions:
    """Per-request generation options."""
    max_tokens: int = 1000
    temperature: float = 0.7
    stop_sequences: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CompletionResponse:
    """Final result of a completion, streamed or not."""
    content: str
    tokens_used: TokenUsage
    model: str
    finish_reason: str
    cost: float


class ModelBackend(ABC):
    """Uniform capability interface over one completion backend."""

    @property
    def name(self) -> str:
        """Unique backend name, taken from the descriptor."""
        return self.get_config().name

    @abstractmethod
    def get_config(self) -> ProviderDescriptor:
        """Return the static descriptor of this backend."""

    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials for this backend are present."""

    @abstractmethod
    def is_available(self) -> bool:
        """True when the backend can be invoked. No network probe."""

    @abstractmethod
    def complete(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """Run a completion and return its content, token counts and cost."""

    def supports_capability(self, capability: Capability) -> bool:
        return capability in self.get_config().capabilities

    def get_quality_score(self, capability: Capability) -> int:
        return self.get_config().quality_score(capability)

    def complete_stream(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> CompletionResponse:
        """Stream a completion, calling `on_chunk` with incremental text.

        Backends without native streaming emit the whole content once.
        """
        response = self.complete(messages, options)
        if on_chunk is not None and response.content:
            on_chunk(response.content)
        return response


BackendFactory = Callable[[], Iterable[ModelBackend]]


class ProviderRegistry:
    """Holds the configured backends for one application session.

    The set of backends is an immutable tuple replaced wholesale on
    refresh(), so a caller holding a snapshot keeps a consistent view.
    """

    def __init__(self, factory: BackendFactory):
        """Initialize the registry and build the first snapshot.

        Args:
            factory: Callable producing all known backends, configured or not

        Raises:
            ValueError: If two configured backends share a name
        """
        self._factory = factory
        self._backends: Tuple[ModelBackend, ...] = ()
        self.refresh()

    def refresh(self) -> None:
        """Rebuild the configured backend set from the factory."""
        configured = []
        seen = set()
        for backend in self._factory():
            if not backend.is_configured():
                continue
            name = backend.name
            if name in seen:
                raise ValueError(f"Duplicate backend name: {name}")
            seen.add(name)
            configured.append(backend)

        self._backends = tuple(configured)
        log.info("registry.refreshed", backends=[b.name for b in self._backends])

    def snapshot(self) -> Tuple[ModelBackend, ...]:
        """Return the current configured backends."""
        return self._backends

    def get(self, name: str) -> Optional[ModelBackend]:
        """Look up a configured backend by name."""
        for backend in self._backends:
            if backend.name == name:
                return backend
        return None

    def descriptor(self, name: str) -> Optional[ProviderDescriptor]:
        """Look up a configured backend's descriptor by name."""
        backend = self.get(name)
        return backend.get_config() if backend is not None else None

    def __len__(self) -> int:
        return len(self._backends)
