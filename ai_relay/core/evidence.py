"""
Evidence source interface consumed by the context assembler.

An evidence source exposes the live editor or workspace state. Every method
may raise; the assembler treats a failing call as "no evidence".
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class SelectionInfo:
    """The active document and the user's selection in it.

    Line numbers are 0-based and inclusive. An empty `text` means the user
    has only a cursor, located at `start_line`.
    """
    file_name: str
    language_id: str
    line_count: int
    start_line: int
    end_line: int
    text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text


@dataclass(frozen=True)
class Diagnostic:
    """An error or warning reported for a document. `line` is 0-based."""
    line: int
    message: str
    severity: str = "error"


@dataclass(frozen=True)
class DocumentSymbol:
    """A named symbol (function, class, ...) declared in a document."""
    name: str
    kind: str
    line: int = 0


class EvidenceSource(ABC):
    """Live editor/workspace state."""

    @abstractmethod
    def active_selection(self) -> Optional[SelectionInfo]:
        """The active document and selection, or None when nothing is open."""

    @abstractmethod
    def text_in_range(self, file_name: str, start_line: int, end_line: int) -> str:
        """Text of lines start_line..end_line (0-based, inclusive)."""

    @abstractmethod
    def diagnostics(self, file_name: str) -> List[Diagnostic]:
        ...

    @abstractmethod
    def document_symbols(self, file_name: str) -> List[DocumentSymbol]:
        ...

    @abstractmethod
    def open_files(self) -> List[str]:
        ...

    @abstractmethod
    def read_file(self, path: str) -> str:
        ...
