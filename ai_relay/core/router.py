"""Provider router - picks one backend to serve a capability request.

Selection pipeline:
1. Capability filter - configured, available, declares the capability
2. Free-tier filter - soft preference, falls back to paid backends
3. Strategy ordering - cost-optimized, performance-optimized or balanced
4. Bookkeeping - bump the winner's selection counter for later tie-breaks
   (skipped for previews)

Selection counters are not usage: the ledger records completed token
consumption, the router only counts how often it picked each backend.
"""

import time
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from ai_relay.config.settings import SettingsStore
from ai_relay.storage.repository import SelectionRepository

from .capabilities import Capability, RoutingStrategy
from .pricing import estimate_cost
from .providers import ModelBackend, ProviderDescriptor, ProviderRegistry
from .quota import QuotaTracker

log = structlog.get_logger(__name__)

COST_EPSILON = 0.0001
BALANCED_COST_WEIGHT = 100

RECOMMENDED_MODELS: Dict[Capability, Tuple[str, ...]] = {
    Capability.CODE_COMPLETION: (
        "gemini-2.5-flash", "gemini-1.5-flash", "deepseek-coder", "gpt-3.5-turbo",
        "llama-3.3-70b", "claude-3-haiku", "gpt-4-turbo",
    ),
    Capability.CODE_EXPLANATION: (
        "claude-3-haiku", "claude-3-sonnet", "gemini-2.5-flash", "gpt-3.5-turbo",
        "gpt-4", "llama-3.3-70b", "gemini-pro",
    ),
    Capability.CODE_REFACTORING: (
        "claude-3-sonnet", "claude-3.5-sonnet", "gpt-4", "deepseek-coder",
        "gemini-2.5-pro", "gpt-4-turbo", "claude-3-opus",
    ),
    Capability.BUG_FIXING: (
        "claude-3-sonnet", "claude-3.5-sonnet", "gpt-4", "gemini-2.5-pro",
        "gemini-1.5-pro", "deepseek-coder", "gpt-4-turbo",
    ),
    Capability.DOCUMENTATION: (
        "gpt-3.5-turbo", "gemini-2.5-flash", "gemini-pro", "cohere-command-a",
        "claude-3-haiku", "command-r-plus", "llama-3.3-70b",
    ),
    Capability.GENERAL_CHAT: (
        "gemini-2.5-flash", "gemini-1.5-flash", "gpt-3.5-turbo", "claude-3-haiku",
        "llama-3.3-70b", "gpt-4", "cohere-command-a",
    ),
}


@dataclass
class RouterState:
    """Per-router selection bookkeeping."""
    usage_counts: Dict[str, int] = field(default_factory=dict)
    last_used: Optional[str] = None

    def count(self, backend_name: str) -> int:
        return self.usage_counts.get(backend_name, 0)

    def record_selection(self, backend_name: str) -> None:
        self.usage_counts[backend_name] = self.count(backend_name) + 1
        self.last_used = backend_name


class ProviderRouter:
    """Selects exactly one backend per request, or none.

    Construct one router per application session; it reads the routing
    strategy from settings on every selection.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        quota: QuotaTracker,
        settings: SettingsStore,
        state: Optional[RouterState] = None,
        selection_repository: Optional[SelectionRepository] = None,
    ):
        """Initialize the router.

        Args:
            registry: Configured backends
            quota: Quota tracker used for the free-tier filter
            settings: Settings store holding the routing strategy
            state: Initial selection state. Loaded from the repository if omitted.
            selection_repository: Optional store that persists selection counts
        """
        self._registry = registry
        self._quota = quota
        self._settings = settings
        self._selection_repository = selection_repository

        if state is None:
            state = RouterState()
            if selection_repository is not None:
                state.usage_counts = selection_repository.load_counts()
                state.last_used = selection_repository.load_last_used()
        self._state = state

        log.info(
            "router.initialized",
            backends=[b.name for b in registry.snapshot()],
            strategy=settings.get_routing_strategy(),
        )

    @property
    def last_used(self) -> Optional[str]:
        return self._state.last_used

    def select_backend(
        self,
        capability: Capability,
        context_token_size: int,
        prefer_free_tier: bool = True,
        record: bool = True,
    ) -> Optional[ProviderDescriptor]:
        """Select the best backend for a capability and context size.

        Args:
            capability: Task category the backend must declare
            context_token_size: Tokens of context that will be sent
            prefer_free_tier: Prefer backends with free-tier headroom
            record: Count the selection for later tie-breaks. Pass False to
                preview a decision without changing routing state.

        Returns:
            Descriptor of the chosen backend, or None if no backend qualifies
        """
        backend = self.choose_backend(capability, context_token_size, prefer_free_tier, record)
        return backend.get_config() if backend is not None else None

    def choose_backend(
        self,
        capability: Capability,
        context_token_size: int,
        prefer_free_tier: bool = True,
        record: bool = True,
    ) -> Optional[ModelBackend]:
        """Like `select_backend`, but returns the backend itself.

        The backend comes from the registry snapshot taken when scoring
        started, so a concurrent `refresh()` cannot lose the selection.
        """
        backends = self._registry.snapshot()
        available = [
            b for b in backends
            if b.is_available() and b.supports_capability(capability)
        ]

        if not available:
            log.warning(
                "router.no_candidates",
                capability=capability.value,
                configured=len(backends),
            )
            return None

        candidates = available
        if prefer_free_tier:
            free = [b for b in available if self._quota.can_use_free_tier(b.name)]
            if free:
                candidates = free
            else:
                log.debug("router.free_tier_exhausted", capability=capability.value)

        strategy_value = self._settings.get_routing_strategy()
        try:
            strategy = RoutingStrategy(strategy_value)
        except ValueError:
            strategy = None

        if strategy is RoutingStrategy.COST_OPTIMIZED:
            ordered = self._order_by_cost(candidates, context_token_size)
        elif strategy is RoutingStrategy.PERFORMANCE_OPTIMIZED:
            ordered = self._order_by_quality(candidates, capability)
        elif strategy is RoutingStrategy.BALANCED:
            ordered = self._order_balanced(candidates, capability, context_token_size)
        else:
            log.warning(
                "router.unknown_strategy",
                strategy=strategy_value,
                fallback=candidates[0].name,
            )
            ordered = list(candidates)

        selected = ordered[0]
        if record:
            self._record_selection(selected.name)

        log.info(
            "router.backend_selected",
            capability=capability.value,
            context_tokens=context_token_size,
            strategy=strategy_value,
            backend=selected.name,
            candidates=len(candidates),
            recorded=record,
        )
        return selected

    def _order_by_cost(
        self,
        backends: Sequence[ModelBackend],
        context_token_size: int,
    ) -> List[ModelBackend]:
        """Cheapest first; equal costs prefer the less-selected backend.

        Spreading traffic over equally free backends keeps any one of them
        away from its per-minute rate cap.
        """
        def compare(a: ModelBackend, b: ModelBackend) -> int:
            cost_a = estimate_cost(a.get_config().cost_per_1k_tokens, context_token_size)
            cost_b = estimate_cost(b.get_config().cost_per_1k_tokens, context_token_size)
            if abs(cost_a - cost_b) < COST_EPSILON:
                return self._state.count(a.name) - self._state.count(b.name)
            return -1 if cost_a < cost_b else 1

        return sorted(backends, key=cmp_to_key(compare))

    def _order_by_quality(
        self,
        backends: Sequence[ModelBackend],
        capability: Capability,
    ) -> List[ModelBackend]:
        return sorted(backends, key=lambda b: b.get_quality_score(capability), reverse=True)

    def _order_balanced(
        self,
        backends: Sequence[ModelBackend],
        capability: Capability,
        context_token_size: int,
    ) -> List[ModelBackend]:
        def score(backend: ModelBackend) -> float:
            cost = estimate_cost(backend.get_config().cost_per_1k_tokens, context_token_size)
            return backend.get_quality_score(capability) / 10 - cost * BALANCED_COST_WEIGHT

        return sorted(backends, key=score, reverse=True)

    def _record_selection(self, backend_name: str) -> None:
        self._state.record_selection(backend_name)
        if self._selection_repository is None:
            return
        try:
            self._selection_repository.record_selection(backend_name, int(time.time() * 1000))
        except Exception as e:
            # Counters only steer tie-breaks; the in-memory state is still updated
            log.warning("router.selection_persist_failed", backend=backend_name, error=str(e))

    def refresh(self) -> None:
        """Rebuild the backend set from current configuration."""
        self._registry.refresh()

    def get_backend(self, name: str) -> Optional[ModelBackend]:
        """Get a configured backend by name."""
        return self._registry.get(name)

    def backends(self) -> List[ModelBackend]:
        """All configured backends."""
        return list(self._registry.snapshot())

    def usage_counts(self) -> Dict[str, int]:
        """Copy of the per-backend selection counters."""
        return dict(self._state.usage_counts)

    def recommended_models(self, capability: Capability) -> str:
        """Human-readable list of models known to do well at a capability."""
        models = RECOMMENDED_MODELS.get(capability, ())
        lines = [f"{i}. {m}" for i, m in enumerate(models, start=1)]
        return f"Recommended models for {capability.value}:\n" + "\n".join(lines)
