"""
Context assembly for chat requests.

Gathers candidate evidence fragments, orders them by priority and packs
the best of them into a fixed token budget.

Sources and their static priorities:
- selection (10): the user's explicit selection
- diagnostic (8): up to 5 errors/warnings of the active file
- file (5): +/-20 lines around the selection or cursor
- symbol (4): up to 10 document symbols related to the query
- file (3): up to 3 other open files related to the query

Packing is greedy in priority order: an item that doesn't fit is skipped,
never truncated, and later items are still tried.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from .evidence import EvidenceSource, SelectionInfo
from .token_counter import estimate_tokens

log = structlog.get_logger(__name__)

SELECTION_PRIORITY = 10
DIAGNOSTIC_PRIORITY = 8
SURROUNDING_PRIORITY = 5
SYMBOL_PRIORITY = 4
WORKSPACE_FILE_PRIORITY = 3

SURROUNDING_LINES = 20
MAX_DIAGNOSTICS = 5
MAX_SYMBOLS = 10
MAX_WORKSPACE_FILES = 3
WORKSPACE_FILE_CHARS = 2000
MIN_RELEVANT_WORD_LENGTH = 3

ITEM_SEPARATOR = "\n\n---\n\n"


class ContextKind(str, Enum):
    """Kinds of context fragments."""
    FILE = "file"
    SELECTION = "selection"
    DIAGNOSTIC = "diagnostic"
    SYMBOL = "symbol"


@dataclass(frozen=True)
class ContextItem:
    """A candidate evidence fragment for one request."""
    kind: ContextKind
    content: str
    priority: int
    estimated_tokens: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuiltContext:
    """Result of build_context."""
    context: str
    tokens_used: int
    summary: str
    items: Tuple[ContextItem, ...] = ()


def is_relevant(text: str, query: str) -> bool:
    """Cheap word-overlap relevance test.

    Counts query words longer than three characters that occur in the text,
    case-insensitively. Relevant when at least min(2, number of query words)
    match, so a one-word query needs a single hit.
    """
    query_words = query.lower().split()
    text_lower = text.lower()
    matches = [
        word for word in query_words
        if len(word) > MIN_RELEVANT_WORD_LENGTH and word in text_lower
    ]
    return len(matches) >= min(2, len(query_words))


def format_code_block(code: str, language: str = "") -> str:
    """Wrap code in a fenced block."""
    return f"```{language}\n{code}\n```"


def pack_context(items: List[ContextItem], token_budget: int) -> Tuple[List[ContextItem], int]:
    """Greedily select items, in the given order, that fit the budget.

    Args:
        items: Candidates, already sorted by priority
        token_budget: Maximum total estimated tokens

    Returns:
        Selected items and their total estimated tokens
    """
    selected = []
    tokens_used = 0
    for item in items:
        if tokens_used + item.estimated_tokens <= token_budget:
            selected.append(item)
            tokens_used += item.estimated_tokens
    return selected, tokens_used


def summarize_context(items: List[ContextItem], tokens_used: int) -> str:
    """Human-readable count of gathered items per kind."""
    labels = (
        (ContextKind.SELECTION, "selection(s)"),
        (ContextKind.FILE, "file(s)"),
        (ContextKind.DIAGNOSTIC, "diagnostic(s)"),
        (ContextKind.SYMBOL, "symbol(s)"),
    )
    parts = []
    for kind, label in labels:
        count = sum(1 for item in items if item.kind == kind)
        if count:
            parts.append(f"{count} {label}")
    described = ", ".join(parts) if parts else "no items"
    return f"Context: {described} (~{tokens_used} tokens)"


class ContextAssembler:
    """Builds a token-budgeted context string from an evidence source."""

    def __init__(self, source: EvidenceSource):
        self._source = source

    def build_context(self, query: str, token_budget: int) -> BuiltContext:
        """Build the context payload for a query.

        Args:
            query: The user's chat message
            token_budget: Maximum estimated tokens for the context

        Returns:
            BuiltContext with the packed text, its token count and a summary
        """
        active = self._safe("active_selection", self._source.active_selection)

        items: List[ContextItem] = []
        if active is not None:
            items.extend(self._selection_items(active))
            items.extend(self._safe("surrounding", lambda: self._surrounding_items(active), []))
            items.extend(self._safe("diagnostics", lambda: self._diagnostic_items(active), []))
            items.extend(self._safe("symbols", lambda: self._symbol_items(active, query), []))
        items.extend(self._safe("workspace", lambda: self._workspace_items(active, query), []))

        # sorted() is stable: equal priorities keep gathering order
        ordered = sorted(items, key=lambda item: item.priority, reverse=True)
        selected, tokens_used = pack_context(ordered, token_budget)

        context = ITEM_SEPARATOR.join(item.content for item in selected)
        summary = summarize_context(items, tokens_used)

        log.debug(
            "context.built",
            gathered=len(items),
            included=len(selected),
            tokens_used=tokens_used,
            token_budget=token_budget,
        )
        return BuiltContext(
            context=context,
            tokens_used=tokens_used,
            summary=summary,
            items=tuple(selected)
        )

    def _safe(self, source_name: str, gather: Callable[[], Any], default: Any = None) -> Any:
        try:
            return gather()
        except Exception as e:
            log.warning("context.source_failed", source=source_name, error=str(e))
            return default

    def _selection_items(self, active: SelectionInfo) -> List[ContextItem]:
        if active.is_empty:
            return []
        return [ContextItem(
            kind=ContextKind.SELECTION,
            content=format_code_block(active.text, active.language_id),
            priority=SELECTION_PRIORITY,
            estimated_tokens=estimate_tokens(active.text),
            metadata={
                "file_name": active.file_name,
                "line_start": active.start_line,
                "line_end": active.end_line,
            }
        )]

    def _surrounding_items(self, active: SelectionInfo) -> List[ContextItem]:
        start = max(0, active.start_line - SURROUNDING_LINES)
        end = min(active.line_count - 1, active.end_line + SURROUNDING_LINES)
        text = self._source.text_in_range(active.file_name, start, end)
        if not text:
            return []
        return [ContextItem(
            kind=ContextKind.FILE,
            content=format_code_block(text, active.language_id),
            priority=SURROUNDING_PRIORITY,
            estimated_tokens=estimate_tokens(text),
            metadata={"file_name": active.file_name, "line_start": start, "line_end": end}
        )]

    def _diagnostic_items(self, active: SelectionInfo) -> List[ContextItem]:
        diagnostics = self._source.diagnostics(active.file_name)
        if not diagnostics:
            return []
        text = "\n".join(
            f"Line {d.line + 1}: {d.message}" for d in diagnostics[:MAX_DIAGNOSTICS]
        )
        return [ContextItem(
            kind=ContextKind.DIAGNOSTIC,
            content=f"Current issues:\n{text}",
            priority=DIAGNOSTIC_PRIORITY,
            estimated_tokens=estimate_tokens(text),
            metadata={"count": len(diagnostics)}
        )]

    def _symbol_items(self, active: SelectionInfo, query: str) -> List[ContextItem]:
        items = []
        for symbol in self._source.document_symbols(active.file_name)[:MAX_SYMBOLS]:
            symbol_text = f"{symbol.kind}: {symbol.name}"
            if not is_relevant(symbol_text, query):
                continue
            items.append(ContextItem(
                kind=ContextKind.SYMBOL,
                content=f"Symbol: {symbol.name} ({symbol.kind})",
                priority=SYMBOL_PRIORITY,
                estimated_tokens=estimate_tokens(symbol_text),
                metadata={"name": symbol.name, "kind": symbol.kind, "line": symbol.line}
            ))
        return items

    def _workspace_items(self, active: Optional[SelectionInfo], query: str) -> List[ContextItem]:
        active_file = active.file_name if active is not None else None
        others = [f for f in self._source.open_files() if f != active_file]

        items = []
        for path in others[:MAX_WORKSPACE_FILES]:
            try:
                text = self._source.read_file(path)
            except Exception as e:
                log.warning("context.file_unreadable", path=path, error=str(e))
                continue
            if not is_relevant(text, query):
                continue
            excerpt = text[:WORKSPACE_FILE_CHARS]
            items.append(ContextItem(
                kind=ContextKind.FILE,
                content=format_code_block(excerpt),
                priority=WORKSPACE_FILE_PRIORITY,
                estimated_tokens=estimate_tokens(excerpt),
                metadata={"file_name": path}
            ))
        return items
