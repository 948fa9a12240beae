"""
Unit tests for context assembly.

Tests relevance filtering, greedy packing within the budget, priority
ordering and degradation when evidence sources fail.
"""

from typing import Dict, List, Optional

import pytest

from ai_relay.core.context import (
    ITEM_SEPARATOR,
    ContextAssembler,
    ContextItem,
    ContextKind,
    format_code_block,
    is_relevant,
    pack_context,
    summarize_context,
)
from ai_relay.core.evidence import Diagnostic, DocumentSymbol, EvidenceSource, SelectionInfo
from ai_relay.core.token_counter import estimate_tokens


class StubSource(EvidenceSource):
    """Evidence source backed by in-memory files."""

    def __init__(
        self,
        files: Dict[str, str],
        selection: Optional[SelectionInfo] = None,
        diagnostics: Optional[List[Diagnostic]] = None,
        symbols: Optional[List[DocumentSymbol]] = None,
        open_files: Optional[List[str]] = None,
        failing: tuple = (),
    ):
        self.files = files
        self.selection = selection
        self._diagnostics = diagnostics or []
        self._symbols = symbols or []
        self._open_files = open_files or []
        self.failing = failing

    def _check(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def active_selection(self):
        self._check("active_selection")
        return self.selection

    def text_in_range(self, file_name, start_line, end_line):
        self._check("text_in_range")
        return "\n".join(self.files[file_name].splitlines()[start_line:end_line + 1])

    def diagnostics(self, file_name):
        self._check("diagnostics")
        return self._diagnostics

    def document_symbols(self, file_name):
        self._check("document_symbols")
        return self._symbols

    def open_files(self):
        self._check("open_files")
        return self._open_files

    def read_file(self, path):
        self._check("read_file")
        return self.files[path]


def _lines(count: int, prefix: str = "line") -> str:
    return "\n".join(f"{prefix} {i}" for i in range(count))


def _item(priority: int, tokens: int, kind=ContextKind.FILE) -> ContextItem:
    return ContextItem(kind=kind, content=f"p{priority}-t{tokens}", priority=priority, estimated_tokens=tokens)


class TestRelevance:
    """Test the word-overlap relevance heuristic."""

    def test_two_matching_words_required(self):
        assert is_relevant("handle the null pointer here", "fix the null pointer bug") is True
        assert is_relevant("a null value", "fix the null pointer bug") is False

    def test_short_words_never_count(self):
        assert is_relevant("fix the bug", "fix the bug now") is False

    def test_single_word_query_needs_one_match(self):
        assert is_relevant("def parse_config(): ...", "parse") is True
        assert is_relevant("def load(): ...", "parse") is False

    def test_case_insensitive_substring(self):
        assert is_relevant("class TokenParser", "token parser") is True

    def test_empty_query_is_relevant(self):
        assert is_relevant("anything", "") is True


class TestPacking:
    """Test greedy packing."""

    def test_skip_and_continue(self):
        """An item that doesn't fit is skipped; later smaller items still go in."""
        items = [_item(10, 50), _item(8, 80), _item(5, 30)]
        selected, used = pack_context(items, 100)

        assert [i.priority for i in selected] == [10, 5]
        assert used == 80

    def test_exact_fit_is_included(self):
        selected, used = pack_context([_item(10, 100)], 100)
        assert len(selected) == 1
        assert used == 100

    def test_zero_budget(self):
        selected, used = pack_context([_item(10, 1)], 0)
        assert selected == []
        assert used == 0

    @pytest.mark.parametrize("budget", [0, 10, 45, 99, 150, 1000])
    def test_never_exceeds_budget(self, budget):
        items = [_item(10, 40), _item(8, 25), _item(5, 60), _item(4, 5), _item(3, 33)]
        _, used = pack_context(items, budget)
        assert used <= budget

    def test_summary_counts_kinds(self):
        items = [
            _item(10, 1, ContextKind.SELECTION),
            _item(5, 1, ContextKind.FILE),
            _item(3, 1, ContextKind.FILE),
            _item(8, 1, ContextKind.DIAGNOSTIC),
        ]
        assert summarize_context(items, 812) == (
            "Context: 1 selection(s), 2 file(s), 1 diagnostic(s) (~812 tokens)"
        )
        assert summarize_context([], 0) == "Context: no items (~0 tokens)"


class TestBuildContext:
    """Test end-to-end context assembly."""

    def setup_method(self):
        """Build a workspace with a selection, diagnostics, symbols and open files."""
        self.main = _lines(100)
        self.selection_text = "ptr = None\nptr.value  # null pointer"
        self.related = "null pointer checks live here\n" + "x" * 3000
        self.unrelated = "nothing to see"
        self.source = StubSource(
            files={
                "main.py": self.main,
                "related.py": self.related,
                "unrelated.py": self.unrelated,
            },
            selection=SelectionInfo(
                file_name="main.py",
                language_id="python",
                line_count=100,
                start_line=50,
                end_line=51,
                text=self.selection_text
            ),
            diagnostics=[Diagnostic(line=i, message=f"problem {i}") for i in range(7)],
            symbols=[
                DocumentSymbol(name="fix_null_pointer", kind="Function", line=3),
                DocumentSymbol(name="unrelated", kind="Class", line=9),
            ],
            open_files=["main.py", "related.py", "unrelated.py"]
        )
        self.assembler = ContextAssembler(self.source)
        self.query = "fix the null pointer bug"

    def test_gathers_every_source(self):
        built = self.assembler.build_context(self.query, 100000)
        kinds = [item.kind for item in built.items]

        assert kinds == [
            ContextKind.SELECTION,
            ContextKind.DIAGNOSTIC,
            ContextKind.FILE,
            ContextKind.SYMBOL,
            ContextKind.FILE,
        ]
        assert built.summary == (
            f"Context: 1 selection(s), 2 file(s), 1 diagnostic(s), 1 symbol(s) (~{built.tokens_used} tokens)"
        )
        assert built.context == ITEM_SEPARATOR.join(item.content for item in built.items)

    def test_selection_item(self):
        built = self.assembler.build_context(self.query, 100000)
        selection = built.items[0]

        assert selection.content == format_code_block(self.selection_text, "python")
        assert selection.priority == 10
        assert selection.estimated_tokens == estimate_tokens(self.selection_text)
        assert selection.metadata == {"file_name": "main.py", "line_start": 50, "line_end": 51}

    def test_diagnostics_item(self):
        built = self.assembler.build_context(self.query, 100000)
        diagnostic = built.items[1]

        assert diagnostic.content.startswith("Current issues:\nLine 1: problem 0\n")
        assert "Line 5: problem 4" in diagnostic.content
        assert "problem 5" not in diagnostic.content
        assert diagnostic.metadata == {"count": 7}

    def test_surrounding_window(self):
        built = self.assembler.build_context(self.query, 100000)
        surrounding = built.items[2]

        assert surrounding.metadata == {"file_name": "main.py", "line_start": 30, "line_end": 71}
        assert surrounding.content.startswith("```python\nline 30\n")
        assert surrounding.content.endswith("line 71\n```")

    def test_surrounding_window_clamped_to_file(self):
        self.source.selection = SelectionInfo("main.py", "python", 100, 2, 95)
        built = self.assembler.build_context(self.query, 100000)
        surrounding = [i for i in built.items if i.priority == 5][0]

        assert surrounding.metadata["line_start"] == 0
        assert surrounding.metadata["line_end"] == 99

    def test_symbols_filtered_by_relevance(self):
        built = self.assembler.build_context(self.query, 100000)
        symbols = [i for i in built.items if i.kind == ContextKind.SYMBOL]

        assert [s.content for s in symbols] == ["Symbol: fix_null_pointer (Function)"]

    def test_workspace_files_truncated_and_filtered(self):
        built = self.assembler.build_context(self.query, 100000)
        workspace = built.items[-1]

        assert workspace.priority == 3
        assert workspace.metadata == {"file_name": "related.py"}
        assert workspace.content == format_code_block(self.related[:2000])
        assert workspace.estimated_tokens == 500

    def test_budget_keeps_selection_drops_workspace_files(self):
        """A tight budget keeps high-priority items and drops workspace files first."""
        full = self.assembler.build_context(self.query, 100000)
        budget = full.tokens_used - 1

        built = self.assembler.build_context(self.query, budget)

        assert built.tokens_used <= budget
        assert built.items[0].kind == ContextKind.SELECTION
        assert all(item.priority != 3 for item in built.items)

    def test_budget_invariant(self):
        for budget in range(0, 1200, 7):
            built = self.assembler.build_context(self.query, budget)
            assert built.tokens_used <= budget

    def test_larger_budget_keeps_leading_items(self):
        """Once the first k items fit together, every larger budget keeps them."""
        ordered = self.assembler.build_context(self.query, 100000).items
        for k in range(1, len(ordered) + 1):
            needed = sum(item.estimated_tokens for item in ordered[:k])
            for budget in (needed, needed + 50, needed + 1000):
                built = self.assembler.build_context(self.query, budget)
                assert built.items[:k] == ordered[:k]

    def test_skipped_items_are_not_backfilled(self):
        """A small low-priority item can fit a budget that a larger one displaces."""
        # selection costs 9 tokens, the symbol 7
        only_symbol = self.assembler.build_context(self.query, 7)
        only_selection = self.assembler.build_context(self.query, 9)

        assert [i.kind for i in only_symbol.items] == [ContextKind.SYMBOL]
        assert [i.kind for i in only_selection.items] == [ContextKind.SELECTION]

    def test_no_active_document(self):
        self.source.selection = None
        built = self.assembler.build_context(self.query, 100000)

        assert [i.kind for i in built.items] == [ContextKind.FILE]
        assert built.items[0].metadata == {"file_name": "related.py"}

    def test_failing_sources_degrade_to_no_items(self):
        self.source.failing = ("diagnostics", "document_symbols", "open_files")
        built = self.assembler.build_context(self.query, 100000)

        assert [i.kind for i in built.items] == [ContextKind.SELECTION, ContextKind.FILE]

    def test_everything_failing_gives_empty_context(self):
        self.source.failing = ("active_selection", "open_files")
        built = self.assembler.build_context(self.query, 100000)

        assert built.context == ""
        assert built.tokens_used == 0
        assert built.summary == "Context: no items (~0 tokens)"
