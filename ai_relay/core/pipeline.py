"""
Chat pipeline - one request end to end.

build context -> select backend -> complete (or stream) -> record usage
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import structlog

from ai_relay.config.settings import SettingsStore

from .capabilities import Capability
from .context import BuiltContext, ContextAssembler
from .errors import BackendNotAvailableError, NoBackendAvailableError, UsageRecordError
from .providers import ChatMessage, CompletionOptions, CompletionResponse
from .quota import QuotaTracker
from .router import ProviderRouter

log = structlog.get_logger(__name__)

HISTORY_LIMIT = 5

SYSTEM_INSTRUCTIONS = (
    "You are an AI coding agent. Provide complete, working code when asked "
    "to make changes. Use inline code for explanations."
)


@dataclass(frozen=True)
class ChatResult:
    """Outcome of one chat request.

    `ledger_error` is set when the completion succeeded but its usage could
    not be recorded; the response is still valid.
    """
    response: CompletionResponse
    backend_name: str
    context: BuiltContext
    ledger_error: Optional[UsageRecordError] = None


def build_messages(
    context: str,
    query: str,
    history: Sequence[ChatMessage] = (),
) -> List[ChatMessage]:
    """Assemble system prompt, recent history and the user query."""
    system_prompt = SYSTEM_INSTRUCTIONS
    if context:
        system_prompt = f"{SYSTEM_INSTRUCTIONS}\n\n{context}"

    messages = [ChatMessage(role="system", content=system_prompt)]
    messages.extend(list(history)[-HISTORY_LIMIT:])
    messages.append(ChatMessage(role="user", content=query))
    return messages


class ChatPipeline:
    """Runs chat requests against the router, tracker and assembler of one session."""

    def __init__(
        self,
        assembler: ContextAssembler,
        router: ProviderRouter,
        quota: QuotaTracker,
        settings: SettingsStore,
        options: Optional[CompletionOptions] = None,
    ):
        self._assembler = assembler
        self._router = router
        self._quota = quota
        self._settings = settings
        self._options = options

    def run(
        self,
        query: str,
        capability: Capability = Capability.GENERAL_CHAT,
        prefer_free_tier: Optional[bool] = None,
        history: Sequence[ChatMessage] = (),
        on_chunk: Optional[Callable[[str], None]] = None,
        preferred_backend: Optional[str] = None,
    ) -> ChatResult:
        """Serve one chat request.

        Args:
            query: The user's message
            capability: Task category used for routing
            prefer_free_tier: Override the stored free-tier preference
            history: Earlier messages of the conversation, oldest first
            on_chunk: Receives streamed text; enables streaming when given
            preferred_backend: Name of a backend to use instead of routing

        Returns:
            ChatResult with the completion and the context that was sent

        Raises:
            ValueError: If the query is empty
            NoBackendAvailableError: If no backend can serve the capability
            BackendNotAvailableError: If the preferred backend is not available
            Backend errors: Propagated without modification, nothing recorded
        """
        if not query or not query.strip():
            raise ValueError("query is required and cannot be empty")

        if prefer_free_tier is None:
            prefer_free_tier = self._settings.get_prefer_free_tier()

        built = self._assembler.build_context(query, self._settings.get_max_context_tokens())

        if preferred_backend is not None:
            backend = self._router.get_backend(preferred_backend)
            if backend is None or not backend.is_available():
                raise BackendNotAvailableError(preferred_backend)
        else:
            backend = self._router.choose_backend(capability, built.tokens_used, prefer_free_tier)
            if backend is None:
                raise NoBackendAvailableError(capability.value)

        messages = build_messages(built.context, query, history)
        log.info(
            "pipeline.request_started",
            backend=backend.name,
            capability=capability.value,
            context_tokens=built.tokens_used,
            streaming=on_chunk is not None,
        )

        if on_chunk is not None:
            response = backend.complete_stream(messages, self._options, on_chunk)
        else:
            response = backend.complete(messages, self._options)

        ledger_error = None
        try:
            self._quota.record_usage(
                backend.name,
                response.tokens_used.input_tokens,
                response.tokens_used.output_tokens,
                response.cost
            )
        except UsageRecordError as e:
            log.error("pipeline.usage_not_recorded", backend=backend.name, error=str(e))
            ledger_error = e

        return ChatResult(
            response=response,
            backend_name=backend.name,
            context=built,
            ledger_error=ledger_error
        )
