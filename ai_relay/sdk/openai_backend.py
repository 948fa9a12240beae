"""
OpenAI-compatible completion backend.

One implementation serves every vendor in the catalog: each backend gets
its own client pointed at the vendor's OpenAI-compatible base URL.
"""

import os
from typing import Callable, List, Mapping, Optional

import structlog
from openai import OpenAI

from ..config.loader import BackendConfig, RelayConfig
from ..core.pricing import calculate_cost
from ..core.providers import (
    ChatMessage,
    CompletionOptions,
    CompletionResponse,
    ModelBackend,
    ProviderDescriptor,
)
from ..core.token_counter import TokenUsage, estimate_tokens

log = structlog.get_logger(__name__)


class OpenAIBackend(ModelBackend):
    """Completion backend reached through the `openai` SDK.

    Credentials are read once at construction; a backend without an API key
    is reported as not configured and never builds a client.
    """

    def __init__(self, config: BackendConfig, api_key: Optional[str] = None):
        """Initialize the backend.

        Args:
            config: Backend configuration (model, endpoint, limits)
            api_key: API key; an empty or missing key leaves the backend unconfigured
        """
        self.config = config
        self._descriptor = config.to_descriptor()
        self._api_key = api_key or ""
        self.client = None
        if self._api_key:
            self.client = OpenAI(api_key=self._api_key, base_url=config.base_url)

    def get_config(self) -> ProviderDescriptor:
        return self._descriptor

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def is_available(self) -> bool:
        return self.client is not None

    def _request_kwargs(self, messages: List[ChatMessage], options: Optional[CompletionOptions]) -> dict:
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        if self.client is None:
            raise RuntimeError(f"Backend '{self.name}' is not configured")

        options = options or CompletionOptions()
        kwargs = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.stop_sequences:
            kwargs["stop"] = list(options.stop_sequences)
        return kwargs

    def complete(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResponse:
        """Run a chat completion.

        Raises:
            ValueError: If messages is empty
            RuntimeError: If the backend has no credentials
            OpenAI API errors: Propagated without modification
        """
        kwargs = self._request_kwargs(messages, options)
        response = self.client.chat.completions.create(**kwargs)

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content if choice else None) or ""
        finish_reason = (choice.finish_reason if choice else None) or "stop"

        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens
            )
        else:
            log.warning("backend.usage_missing", backend=self.name)
            usage = _estimate_usage(messages, content)

        return self._response(content, usage, finish_reason)

    def complete_stream(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> CompletionResponse:
        """Stream a chat completion, passing each text delta to `on_chunk`.

        Usage comes from the final stream chunk when the server honours
        `include_usage`, otherwise it is estimated from the text.
        """
        kwargs = self._request_kwargs(messages, options)
        stream = self.client.chat.completions.create(
            stream=True,
            stream_options={"include_usage": True},
            **kwargs
        )

        parts = []
        finish_reason = "stop"
        usage = None
        for chunk in stream:
            if getattr(chunk, "usage", None) is not None:
                usage = TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens
                )
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            text = choice.delta.content if choice.delta is not None else None
            if text:
                parts.append(text)
                if on_chunk is not None:
                    on_chunk(text)
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        content = "".join(parts)
        if usage is None:
            log.debug("backend.stream_usage_estimated", backend=self.name)
            usage = _estimate_usage(messages, content)

        return self._response(content, usage, finish_reason)

    def _response(self, content: str, usage: TokenUsage, finish_reason: str) -> CompletionResponse:
        return CompletionResponse(
            content=content,
            tokens_used=usage,
            model=self.config.model,
            finish_reason=finish_reason,
            cost=calculate_cost(self._descriptor.cost_per_1k_tokens, usage)
        )


def _estimate_usage(messages: List[ChatMessage], content: str) -> TokenUsage:
    prompt_text = "".join(m.content for m in messages)
    return TokenUsage(
        input_tokens=estimate_tokens(prompt_text),
        output_tokens=estimate_tokens(content)
    )


def build_backends(config: RelayConfig, environ: Optional[Mapping[str, str]] = None) -> List[OpenAIBackend]:
    """Create one backend per configured entry, reading keys from the environment.

    Args:
        config: Relay configuration
        environ: Environment to read API keys from (defaults to os.environ)

    Returns:
        All backends, configured or not; the registry keeps the configured ones
    """
    env = os.environ if environ is None else environ
    return [
        OpenAIBackend(backend_config, env.get(backend_config.api_key_env, "").strip())
        for backend_config in config.backends
    ]
