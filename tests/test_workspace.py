"""
Unit tests for the filesystem evidence source.
"""

import os
import tempfile

import pytest

from ai_relay.core.context import ContextAssembler, ContextKind
from ai_relay.sdk.workspace import LocalWorkspace, language_id

PYTHON_SOURCE = '''import os


class TokenCache:
    """Caches tokens."""

    def get(self, key):
        return None


def refresh_token_cache(cache):
    return cache


async def fetch_remote():
    pass
'''


class TestLocalWorkspace:
    """Test LocalWorkspace."""

    def setup_method(self):
        """Write a small project to a temporary directory."""
        self.temp_dir = tempfile.mkdtemp()
        self._write("cache.py", PYTHON_SOURCE)
        self._write("broken.py", "def broken(:\n    pass\n")
        self._write("notes.md", "# Notes\nthe token cache expires hourly\n")

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, name, text):
        with open(os.path.join(self.temp_dir, name), 'w', encoding='utf-8') as f:
            f.write(text)

    def test_language_ids(self):
        assert language_id("a/b.py") == "python"
        assert language_id("README.MD") == "markdown"
        assert language_id("Makefile") == "plaintext"

    def test_no_active_file(self):
        assert LocalWorkspace(root=self.temp_dir).active_selection() is None

    def test_selection_lines_inclusive(self):
        workspace = LocalWorkspace("cache.py", start_line=3, end_line=4, root=self.temp_dir)
        selection = workspace.active_selection()

        assert selection.language_id == "python"
        assert selection.line_count == len(PYTHON_SOURCE.splitlines())
        assert selection.text == 'class TokenCache:\n    """Caches tokens."""'

    def test_cursor_only_has_empty_text(self):
        workspace = LocalWorkspace("cache.py", start_line=6, root=self.temp_dir)
        selection = workspace.active_selection()

        assert selection.is_empty
        assert selection.start_line == selection.end_line == 6

    def test_selection_clamped_to_file(self):
        workspace = LocalWorkspace("notes.md", start_line=0, end_line=50, root=self.temp_dir)
        selection = workspace.active_selection()

        assert selection.end_line == 1
        assert selection.text == "# Notes\nthe token cache expires hourly"

    def test_invalid_range_rejected(self):
        with pytest.raises(ValueError, match="end_line cannot be before start_line"):
            LocalWorkspace("cache.py", start_line=5, end_line=2)
        with pytest.raises(ValueError, match="start_line cannot be negative"):
            LocalWorkspace("cache.py", start_line=-1)

    def test_text_in_range(self):
        workspace = LocalWorkspace(root=self.temp_dir)
        assert workspace.text_in_range("notes.md", 1, 1) == "the token cache expires hourly"

    def test_python_symbols(self):
        symbols = LocalWorkspace(root=self.temp_dir).document_symbols("cache.py")

        assert [(s.name, s.kind, s.line) for s in symbols] == [
            ("TokenCache", "Class", 3),
            ("refresh_token_cache", "Function", 10),
            ("fetch_remote", "Function", 14),
        ]

    def test_non_python_files_have_no_symbols_or_diagnostics(self):
        workspace = LocalWorkspace(root=self.temp_dir)
        assert workspace.document_symbols("notes.md") == []
        assert workspace.diagnostics("notes.md") == []

    def test_syntax_error_diagnostic(self):
        workspace = LocalWorkspace(root=self.temp_dir)

        assert workspace.diagnostics("cache.py") == []
        diagnostics = workspace.diagnostics("broken.py")
        assert len(diagnostics) == 1
        assert diagnostics[0].line == 0

    def test_assembles_context_from_disk(self):
        workspace = LocalWorkspace(
            "cache.py",
            start_line=10,
            end_line=11,
            open_files=["cache.py", "notes.md", "missing.py"],
            root=self.temp_dir
        )
        built = ContextAssembler(workspace).build_context("refresh token cache", 8000)
        kinds = [item.kind for item in built.items]

        assert kinds[0] == ContextKind.SELECTION
        assert ContextKind.SYMBOL in kinds
        assert {"file_name": "notes.md"} in [item.metadata for item in built.items]

    def test_broken_file_degrades_symbols(self):
        workspace = LocalWorkspace("broken.py", start_line=0, end_line=0, root=self.temp_dir)
        built = ContextAssembler(workspace).build_context("broken function", 8000)
        kinds = [item.kind for item in built.items]

        assert ContextKind.SYMBOL not in kinds
        assert ContextKind.DIAGNOSTIC in kinds
