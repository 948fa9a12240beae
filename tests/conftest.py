"""
Shared test fixtures: an in-process backend and a controllable clock.
"""

import os
import tempfile
from typing import List, Optional

import pytest

from ai_relay.core.capabilities import ALL_CAPABILITIES
from ai_relay.core.providers import (
    CompletionResponse,
    FreeTierLimits,
    ModelBackend,
    ProviderDescriptor,
)
from ai_relay.core.token_counter import TokenUsage


class FakeBackend(ModelBackend):
    """Backend that answers from memory and remembers what it was sent."""

    def __init__(
        self,
        name: str,
        cost_per_1k_tokens: float = 0.0,
        free_tier: Optional[FreeTierLimits] = None,
        capabilities=ALL_CAPABILITIES,
        quality_scores=None,
        max_context_tokens: int = 32000,
        configured: bool = True,
        available: bool = True,
        content: str = "ok",
        usage: TokenUsage = TokenUsage(input_tokens=100, output_tokens=50),
        error: Optional[Exception] = None,
    ):
        self._descriptor = ProviderDescriptor(
            name=name,
            provider="Fake",
            max_context_tokens=max_context_tokens,
            cost_per_1k_tokens=cost_per_1k_tokens,
            capabilities=frozenset(capabilities),
            free_tier=free_tier,
            quality_scores=quality_scores or {}
        )
        self._configured = configured
        self._available = available
        self.content = content
        self.usage = usage
        self.error = error
        self.calls: List[list] = []

    def get_config(self) -> ProviderDescriptor:
        return self._descriptor

    def is_configured(self) -> bool:
        return self._configured

    def is_available(self) -> bool:
        return self._available

    def complete(self, messages, options=None) -> CompletionResponse:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return CompletionResponse(
            content=self.content,
            tokens_used=self.usage,
            model=self.name,
            finish_reason="stop",
            cost=0.0
        )


class FakeClock:
    """Callable clock returning epoch milliseconds, advanced by hand."""

    def __init__(self, now_millis: int = 1_700_000_000_000):
        self.now = now_millis

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@pytest.fixture
def make_backend():
    """Factory for FakeBackend instances."""
    return FakeBackend


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path():
    """Path to a SQLite file in a temporary directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "test.db")
