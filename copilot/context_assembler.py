# copilot/context_assembler.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from copilot.base_utils import BaseUtils
from copilot.config_manager import CompletionConfig
from copilot.entities import CompletionContext, FileContext
from copilot.exclusion_filter import is_excluded
from copilot.import_resolver import ImportResolver, extract_references

logger = logging.getLogger("copilot_completion")

LANGUAGE_BY_EXTENSION = {
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".vue": "vue",
    ".py": "python",
    ".go": "go",
    ".json": "json",
    ".md": "markdown",
}

SKIPPED_DIRECTORIES = {"node_modules", ".git", "__pycache__", ".venv"}


def language_for_path(path: str) -> str:
    return LANGUAGE_BY_EXTENSION.get(os.path.splitext(path)[1].lower(), "plaintext")


class ContextAssembler(BaseUtils):
    """
    Builds the CompletionContext for one cursor position.

    Output is a pure function of (document text, cursor, config snapshot,
    workspace files), so equal inputs always give byte-identical contexts.
    """

    def __init__(self, resolver: Optional[ImportResolver] = None):
        self.resolver = resolver or ImportResolver()

    def assemble(
        self,
        document_text: str,
        cursor_offset: int,
        language: str,
        filename: str,
        config: CompletionConfig,
        document_path: Optional[str] = None,
        workspace_root: Optional[str] = None,
    ) -> CompletionContext:
        text = document_text or ""
        offset = min(max(int(cursor_offset), 0), len(text))
        prefix = text[:offset]
        suffix = text[offset:]

        related: List[FileContext] = []
        if config.include_imports and document_path:
            related = self.related_files(text, language, document_path, config, workspace_root)

        return CompletionContext(
            prefix=prefix,
            suffix=suffix,
            language=language,
            filename=os.path.basename(filename or document_path or ""),
            related_files=tuple(related),
        )

    # -----------------------
    # Related files
    # -----------------------

    def related_files(
        self,
        document_text: str,
        language: str,
        document_path: str,
        config: CompletionConfig,
        workspace_root: Optional[str] = None,
    ) -> List[FileContext]:
        references = extract_references(document_text, language)
        out: List[FileContext] = []

        for reference in references[: max(0, config.max_files)]:
            target = self._first_existing(reference, document_path, workspace_root)
            if target is None:
                continue

            relative = self._relative_path(target, document_path, workspace_root)
            if is_excluded(relative, config.exclude_patterns):
                logger.debug(f"[CONTEXT] Skipping excluded file {relative}")
                continue

            file_context = self._read_file(target, relative, config.max_file_chars)
            if file_context is not None:
                out.append(file_context)

        return out

    def _first_existing(self, reference: str, document_path: str, workspace_root: Optional[str]) -> Optional[str]:
        for candidate in self.resolver.candidates(reference, document_path, workspace_root):
            if os.path.isfile(candidate):
                return candidate
        return None

    def _relative_path(self, target: str, document_path: str, workspace_root: Optional[str]) -> str:
        base = workspace_root or os.path.dirname(os.path.abspath(document_path))
        try:
            relative = os.path.relpath(target, base)
        except ValueError:
            # different drive on Windows
            relative = target
        return relative.replace("\\", "/")

    def _read_file(self, target: str, relative: str, max_chars: int) -> Optional[FileContext]:
        try:
            content = Path(target).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"[CONTEXT] Failed to read file {target}: {e}")
            return None
        return FileContext(path=relative, content=content[: max(0, max_chars)], language=language_for_path(target))

    # -----------------------
    # Chat-side context helpers
    # -----------------------

    def selection_context(self, selected_text: str, language: str, filename: str) -> str:
        name = os.path.basename(filename or "")
        return f"File: {name}\nLanguage: {language}\n\n```{language}\n{selected_text}\n```"

    def workspace_context(self, query: str, workspace_root: str, config: CompletionConfig) -> List[FileContext]:
        """
        Files under workspace_root whose name contains one of the query words.
        Walk order is sorted so results are stable across runs.
        """
        words = [w.lower() for w in (query or "").split() if w.strip()]
        if not words or not workspace_root or not os.path.isdir(workspace_root):
            return []

        out: List[FileContext] = []
        for dirpath, dirnames, filenames in os.walk(workspace_root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
            for name in sorted(filenames):
                if not any(w in name.lower() for w in words):
                    continue
                full = os.path.join(dirpath, name)
                relative = self._relative_path(full, full, workspace_root)
                if is_excluded(relative, config.exclude_patterns):
                    continue
                file_context = self._read_file(full, relative, config.max_file_chars)
                if file_context is not None:
                    out.append(file_context)
                if len(out) >= config.max_files:
                    return out
        return out
