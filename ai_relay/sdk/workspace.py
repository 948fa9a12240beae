"""
Filesystem-backed evidence source.

Stands in for an editor: the "active selection" is a line range of a file
given on the command line, "open files" are the other files given.
"""

import ast
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..core.evidence import Diagnostic, DocumentSymbol, EvidenceSource, SelectionInfo

LANGUAGE_IDS: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".rb": "ruby",
    ".sh": "shellscript",
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}


def language_id(path: str) -> str:
    """Language identifier for a file, by extension."""
    return LANGUAGE_IDS.get(Path(path).suffix.lower(), "plaintext")


class LocalWorkspace(EvidenceSource):
    """Evidence from files on disk.

    Diagnostics are Python syntax errors; symbols are the top-level
    functions and classes of Python files. Other languages have neither.
    """

    def __init__(
        self,
        active_file: Optional[str] = None,
        start_line: int = 0,
        end_line: Optional[int] = None,
        open_files: Sequence[str] = (),
        root: str = ".",
    ):
        """Initialize the workspace.

        Args:
            active_file: File treated as the active document
            start_line: First selected line (0-based)
            end_line: Last selected line (0-based, inclusive); None means a
                cursor at start_line with nothing selected
            open_files: Other files treated as open in the editor
            root: Directory relative paths are resolved against
        """
        if start_line < 0:
            raise ValueError("start_line cannot be negative")
        if end_line is not None and end_line < start_line:
            raise ValueError("end_line cannot be before start_line")

        self.root = Path(root)
        self.active_file = active_file
        self.start_line = start_line
        self.end_line = end_line
        self._open_files = list(open_files)

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def _lines(self, path: str) -> List[str]:
        return self.read_file(path).splitlines()

    def active_selection(self) -> Optional[SelectionInfo]:
        if self.active_file is None:
            return None

        lines = self._lines(self.active_file)
        line_count = max(1, len(lines))
        start = min(self.start_line, line_count - 1)

        if self.end_line is None:
            return SelectionInfo(
                file_name=self.active_file,
                language_id=language_id(self.active_file),
                line_count=line_count,
                start_line=start,
                end_line=start
            )

        end = min(self.end_line, line_count - 1)
        return SelectionInfo(
            file_name=self.active_file,
            language_id=language_id(self.active_file),
            line_count=line_count,
            start_line=start,
            end_line=end,
            text="\n".join(lines[start:end + 1])
        )

    def text_in_range(self, file_name: str, start_line: int, end_line: int) -> str:
        lines = self._lines(file_name)
        return "\n".join(lines[start_line:end_line + 1])

    def diagnostics(self, file_name: str) -> List[Diagnostic]:
        if language_id(file_name) != "python":
            return []
        try:
            ast.parse(self.read_file(file_name), filename=file_name)
        except SyntaxError as e:
            line = (e.lineno or 1) - 1
            return [Diagnostic(line=line, message=e.msg or "invalid syntax")]
        return []

    def document_symbols(self, file_name: str) -> List[DocumentSymbol]:
        if language_id(file_name) != "python":
            return []

        tree = ast.parse(self.read_file(file_name), filename=file_name)
        symbols = []
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                kind = "Class"
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                kind = "Function"
            else:
                continue
            symbols.append(DocumentSymbol(name=node.name, kind=kind, line=node.lineno - 1))
        return symbols

    def open_files(self) -> List[str]:
        return list(self._open_files)

    def read_file(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8", errors="replace")
