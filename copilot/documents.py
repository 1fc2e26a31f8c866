# copilot/documents.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class Position:
    line: int
    character: int


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


class TextDocument:
    """
    Read-only snapshot of an open editor buffer.

    Lines are split on '\\n'; a trailing '\\r' stays part of the line text so
    offsets always index the original string.
    """

    def __init__(self, text: str, language_id: str, file_name: str, uri: Optional[str] = None):
        self._text = text or ""
        self.language_id = language_id or "plaintext"
        self.file_name = file_name or ""
        self.uri = uri or self.file_name
        self._line_starts = self._compute_line_starts(self._text)

    @staticmethod
    def _compute_line_starts(text: str) -> List[int]:
        starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                starts.append(i + 1)
        return starts

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def get_text(self) -> str:
        return self._text

    def _clamp(self, position: Position) -> Position:
        line = min(max(position.line, 0), self.line_count - 1)
        start = self._line_starts[line]
        end = self._line_starts[line + 1] - 1 if line + 1 < self.line_count else len(self._text)
        character = min(max(position.character, 0), end - start)
        return Position(line, character)

    def offset_at(self, position: Position) -> int:
        position = self._clamp(position)
        return self._line_starts[position.line] + position.character

    def position_at(self, offset: int) -> Position:
        offset = min(max(offset, 0), len(self._text))
        line = 0
        for i, start in enumerate(self._line_starts):
            if start > offset:
                break
            line = i
        return Position(line, offset - self._line_starts[line])

    def line_at(self, position: Position) -> str:
        line = self._clamp(position).line
        start = self._line_starts[line]
        end = self._line_starts[line + 1] - 1 if line + 1 < self.line_count else len(self._text)
        return self._text[start:end]


class WorkspaceFolders:
    """Workspace accessor: maps a document path to the root folder that contains it."""

    def __init__(self, roots: Sequence[str] = ()):
        self._roots = [os.path.abspath(r) for r in roots if r]

    def add(self, root: str) -> None:
        root = os.path.abspath(root)
        if root not in self._roots:
            self._roots.append(root)

    def get_workspace_root(self, file_name: str) -> Optional[str]:
        if not file_name:
            return None
        path = os.path.abspath(file_name)
        best: Optional[str] = None
        for root in self._roots:
            if path == root or path.startswith(root.rstrip(os.sep) + os.sep):
                # deepest root wins for nested workspaces
                if best is None or len(root) > len(best):
                    best = root
        return best
