"""
Built-in backend catalog.

Every entry is reached through the vendor's OpenAI-compatible endpoint.
Prices are blended dollars per 1K tokens.
"""

from ai_relay.core.capabilities import ALL_CAPABILITIES, Capability
from ai_relay.core.providers import FreeTierLimits

from .loader import BackendConfig

C = Capability

DEFAULT_BACKENDS = (
    BackendConfig(
        name="gemini-2.5-flash",
        provider="Google",
        model="gemini-2.5-flash",
        api_key_env="GEMINI_API_KEY",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        max_context_tokens=1048576,
        cost_per_1k_tokens=0.0,
        capabilities=ALL_CAPABILITIES,
        quality_scores={C.DOCUMENTATION: 9},
        default_quality_score=8,
        free_tier=FreeTierLimits(requests_per_minute=60)
    ),
    BackendConfig(
        name="llama-3.3-70b",
        provider="Groq",
        model="llama-3.3-70b-versatile",
        api_key_env="GROQ_API_KEY",
        base_url="https://api.groq.com/openai/v1",
        max_context_tokens=8192,
        cost_per_1k_tokens=0.0,
        capabilities=ALL_CAPABILITIES,
        quality_scores={C.GENERAL_CHAT: 8},
        default_quality_score=7,
        free_tier=FreeTierLimits(requests_per_minute=30)
    ),
    BackendConfig(
        name="mistral-large-latest",
        provider="Mistral",
        model="mistral-large-latest",
        api_key_env="MISTRAL_API_KEY",
        base_url="https://api.mistral.ai/v1",
        max_context_tokens=128000,
        cost_per_1k_tokens=0.0,
        capabilities=ALL_CAPABILITIES,
        quality_scores={C.DOCUMENTATION: 9},
        default_quality_score=8,
        free_tier=FreeTierLimits(requests_per_minute=30)
    ),
    BackendConfig(
        name="deepseek-coder",
        provider="DeepSeek",
        model="deepseek-coder",
        api_key_env="DEEPSEEK_API_KEY",
        base_url="https://api.deepseek.com/v1",
        max_context_tokens=16384,
        cost_per_1k_tokens=0.0001,
        capabilities=frozenset({
            C.CODE_COMPLETION, C.CODE_EXPLANATION, C.CODE_REFACTORING,
            C.BUG_FIXING, C.DOCUMENTATION
        }),
        quality_scores={
            C.CODE_COMPLETION: 9, C.CODE_EXPLANATION: 8, C.CODE_REFACTORING: 9,
            C.BUG_FIXING: 8, C.DOCUMENTATION: 7, C.GENERAL_CHAT: 6
        }
    ),
    BackendConfig(
        name="claude-3-haiku",
        provider="Anthropic",
        model="claude-3-haiku-20240307",
        api_key_env="ANTHROPIC_API_KEY",
        base_url="https://api.anthropic.com/v1/",
        max_context_tokens=200000,
        cost_per_1k_tokens=0.00025,
        capabilities=ALL_CAPABILITIES,
        quality_scores={
            C.CODE_COMPLETION: 7, C.CODE_EXPLANATION: 9, C.CODE_REFACTORING: 9,
            C.BUG_FIXING: 9, C.DOCUMENTATION: 8, C.GENERAL_CHAT: 8
        },
        default_quality_score=8
    ),
    BackendConfig(
        name="command-a-03-2025",
        provider="Cohere",
        model="command-a-03-2025",
        api_key_env="COHERE_API_KEY",
        base_url="https://api.cohere.ai/compatibility/v1",
        max_context_tokens=4096,
        cost_per_1k_tokens=0.0005,
        capabilities=frozenset({
            C.CODE_COMPLETION, C.CODE_EXPLANATION, C.DOCUMENTATION, C.GENERAL_CHAT
        }),
        quality_scores={
            C.CODE_COMPLETION: 5, C.CODE_EXPLANATION: 7, C.CODE_REFACTORING: 5,
            C.BUG_FIXING: 5, C.DOCUMENTATION: 8, C.GENERAL_CHAT: 7
        },
        default_quality_score=6,
        free_tier=FreeTierLimits(requests_per_minute=100)
    ),
    BackendConfig(
        name="gpt-3.5-turbo",
        provider="OpenAI",
        model="gpt-3.5-turbo",
        api_key_env="OPENAI_API_KEY",
        max_context_tokens=16385,
        cost_per_1k_tokens=0.002,
        capabilities=ALL_CAPABILITIES,
        quality_scores={
            C.CODE_COMPLETION: 8, C.CODE_EXPLANATION: 8, C.CODE_REFACTORING: 7,
            C.BUG_FIXING: 7, C.DOCUMENTATION: 8, C.GENERAL_CHAT: 8
        },
        free_tier=FreeTierLimits(tokens_per_month=50000)
    ),
    BackendConfig(
        name="grok-beta",
        provider="xAI",
        model="grok-beta",
        api_key_env="XAI_API_KEY",
        base_url="https://api.x.ai/v1",
        max_context_tokens=131072,
        cost_per_1k_tokens=0.005,
        capabilities=ALL_CAPABILITIES,
        quality_scores={C.GENERAL_CHAT: 8},
        default_quality_score=7,
        free_tier=FreeTierLimits(tokens_per_month=25000)
    ),
)
