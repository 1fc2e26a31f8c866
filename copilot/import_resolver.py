# copilot/import_resolver.py
"""
Import-like reference extraction and path resolution.

Extraction is lexical: each language family gets an extractor exposing
extract_references(text) -> ordered list of specifiers. Resolution turns a
relative or '@/'-aliased specifier into candidate file paths. Nothing in this
module touches the filesystem.
"""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

RESOLVE_EXTENSIONS: Sequence[str] = ("", ".ts", ".tsx", ".js", ".jsx", ".vue", ".py", ".go")
INDEX_SUFFIXES: Sequence[str] = ("/index.ts", "/index.tsx", "/index.js", "/index.jsx", "/index.vue")

ALIAS_PREFIX = "@/"
ALIAS_SOURCE_DIR = "src"


class ReferenceExtractor(Protocol):
    def extract_references(self, text: str) -> List[str]:
        ...


def dedupe_preserving_order(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class CStyleImportExtractor:
    """JS/TS family: `import x from './a'`, `import './b'`, `export * from '../c'`."""

    _pattern = re.compile(r"""(?:import|from)\s+['"]([^'"\n]+)['"]""")

    def extract_references(self, text: str) -> List[str]:
        return dedupe_preserving_order(m.group(1) for m in self._pattern.finditer(text or ""))


class PythonImportExtractor:
    """
    `from .models import X`  -> './models'
    `from .. import utils`   -> '../utils'
    `import os.path`         -> 'os.path' (bare, rejected by the resolver)
    """

    _from_pattern = re.compile(r"^[ \t]*from[ \t]+(\.*[\w.]*)[ \t]+import[ \t]+\(?([^)\n#]*)", re.MULTILINE)
    _import_pattern = re.compile(r"^[ \t]*import[ \t]+([\w.]+(?:[ \t]*,[ \t]*[\w.]+)*)", re.MULTILINE)

    def _relative_to_path(self, module: str) -> str:
        dots = len(module) - len(module.lstrip("."))
        rest = module[dots:].replace(".", "/")
        head = "./" if dots == 1 else "../" * (dots - 1)
        return head + rest

    def extract_references(self, text: str) -> List[str]:
        found = []  # (offset, reference)
        for m in self._from_pattern.finditer(text or ""):
            module = m.group(1)
            if not module:
                continue
            if module.startswith("."):
                if module.strip("."):
                    found.append((m.start(), self._relative_to_path(module)))
                else:
                    # `from . import a, b` names sibling modules
                    for name in m.group(2).split(","):
                        name = name.strip().split(" as ")[0].strip()
                        if name and name != "*":
                            found.append((m.start(), self._relative_to_path(module + name)))
            else:
                found.append((m.start(), module))
        for m in self._import_pattern.finditer(text or ""):
            for name in m.group(1).split(","):
                found.append((m.start(), name.strip()))
        found.sort(key=lambda item: item[0])
        return dedupe_preserving_order(ref for _, ref in found)


class GoImportExtractor:
    """`import "fmt"`, `import alias "./pkg"` and parenthesized import blocks."""

    _single_pattern = re.compile(r"""^[ \t]*import[ \t]+(?:[\w.]+[ \t]+)?["'`]([^"'`\n]+)["'`]""", re.MULTILINE)
    _block_pattern = re.compile(r"^[ \t]*import[ \t]*\((.*?)\)", re.MULTILINE | re.DOTALL)
    _spec_pattern = re.compile(r"""["'`]([^"'`\n]+)["'`]""")

    def extract_references(self, text: str) -> List[str]:
        found = []
        for m in self._single_pattern.finditer(text or ""):
            found.append((m.start(), m.group(1)))
        for block in self._block_pattern.finditer(text or ""):
            for spec in self._spec_pattern.finditer(block.group(1)):
                found.append((block.start(1) + spec.start(), spec.group(1)))
        found.sort(key=lambda item: item[0])
        return dedupe_preserving_order(ref for _, ref in found)


class CompositeExtractor:
    """Runs several extractors in order; used for languages without a dedicated one."""

    def __init__(self, extractors: Sequence[ReferenceExtractor]):
        self._extractors = list(extractors)

    def extract_references(self, text: str) -> List[str]:
        refs: List[str] = []
        for extractor in self._extractors:
            refs.extend(extractor.extract_references(text))
        return dedupe_preserving_order(refs)


_C_STYLE = CStyleImportExtractor()
_PYTHON = PythonImportExtractor()
_GO = GoImportExtractor()

EXTRACTORS: Dict[str, ReferenceExtractor] = {
    "javascript": _C_STYLE,
    "javascriptreact": _C_STYLE,
    "typescript": _C_STYLE,
    "typescriptreact": _C_STYLE,
    "vue": _C_STYLE,
    "svelte": _C_STYLE,
    "python": _PYTHON,
    "go": _GO,
}

FALLBACK_EXTRACTOR = CompositeExtractor([_C_STYLE, _PYTHON, _GO])


def get_extractor(language: str) -> ReferenceExtractor:
    return EXTRACTORS.get((language or "").lower(), FALLBACK_EXTRACTOR)


def extract_references(text: str, language: str) -> List[str]:
    return get_extractor(language).extract_references(text)


def is_resolvable_specifier(reference: str) -> bool:
    """Only relative, absolute and '@/'-aliased specifiers are local; bare ones are packages."""
    return reference.startswith(".") or reference.startswith("/") or reference.startswith(ALIAS_PREFIX)


def _is_representable(candidate: str) -> bool:
    if not candidate or "\x00" in candidate:
        return False
    try:
        Path(candidate)
    except (TypeError, ValueError):
        return False
    return True


class ImportResolver:

    def __init__(
        self,
        extensions: Sequence[str] = RESOLVE_EXTENSIONS,
        index_suffixes: Sequence[str] = INDEX_SUFFIXES,
    ):
        self.extensions = tuple(extensions)
        self.index_suffixes = tuple(index_suffixes)

    def _base_path(self, reference: str, document_path: str, workspace_root: Optional[str]) -> Optional[str]:
        if not is_resolvable_specifier(reference):
            return None

        if reference.startswith(ALIAS_PREFIX):
            if not workspace_root:
                return None
            return os.path.normpath(os.path.join(workspace_root, ALIAS_SOURCE_DIR, reference[len(ALIAS_PREFIX):]))

        document_dir = os.path.dirname(os.path.abspath(document_path))
        return os.path.normpath(os.path.join(document_dir, reference))

    def candidates(self, reference: str, document_path: str, workspace_root: Optional[str] = None) -> List[str]:
        """
        All representable candidate paths in probe order: extensions first, then index files.
        """
        base = self._base_path(reference, document_path, workspace_root)
        if base is None:
            return []

        out = []
        for suffix in self.extensions + self.index_suffixes:
            candidate = base + suffix
            if _is_representable(candidate):
                out.append(candidate)
        return dedupe_preserving_order(out)

    def resolve(self, reference: str, document_path: str, workspace_root: Optional[str] = None) -> Optional[str]:
        """
        First candidate that can be represented as a file reference. Existence is not checked.
        """
        candidates = self.candidates(reference, document_path, workspace_root)
        return candidates[0] if candidates else None
