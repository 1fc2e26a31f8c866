# copilot/prompt_builder.py
from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Tuple

from copilot.base_utils import BaseUtils
from copilot.completion_prompts import (
    COMPLETION_SYSTEM_PROMPT,
    FIM_PROMPT,
    RELATED_FILE_ENTRY,
    RELATED_FILES_BLOCK,
    STRATEGY_HINTS,
)
from copilot.config_manager import CompletionConfig
from copilot.entities import BuiltPrompt, CompletionContext


class CompletionStrategy(str, Enum):
    IN_STRING = "in_string"
    MEMBER_ACCESS = "member_access"
    ARROW_FUNCTION = "arrow_function"
    ASSIGNMENT = "assignment"
    FUNCTION_ARGS = "function_args"
    NEW_STATEMENT = "new_statement"
    CONTINUE = "continue"


_INDENT_RE = re.compile(r"^[ \t]*")
_MEMBER_ACCESS_RE = re.compile(r"(?:\?\.|\.|::)\s*$")
_ARROW_RE = re.compile(r"(?:=>|->)\s*$|\blambda\b[^:]*:\s*$")
# '=', '+=', ':=' ... but not '==', '!=', '<=', '>='
_ASSIGNMENT_RE = re.compile(r"(?:^|[^=!<>])(?:[-+*/%&|^:]|\*\*|//|<<|>>)?=\s*$")

_QUOTES = "'\"`"


def _scan_line(line: str) -> Tuple[Optional[str], int]:
    """
    Walk the line once, honoring backslash escapes.
    Returns (open quote char or None, unclosed '(' depth outside strings).
    """
    quote: Optional[str] = None
    depth = 0
    escaped = False
    for ch in line:
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
    return quote, depth


def detect_indent(line: str) -> str:
    match = _INDENT_RE.match(line or "")
    return match.group(0) if match else ""


def describe_indent(indent: str) -> str:
    if not indent:
        return "no indentation"
    tabs = indent.count("\t")
    spaces = indent.count(" ")
    parts = []
    if tabs:
        parts.append(f"{tabs} tab" + ("s" if tabs != 1 else ""))
    if spaces:
        parts.append(f"{spaces} space" + ("s" if spaces != 1 else ""))
    return " + ".join(parts)


def visible_indent(indent: str) -> str:
    return indent.replace("\t", "→").replace(" ", "·")


def detect_strategy(line_before_cursor: str) -> CompletionStrategy:
    """
    Pick exactly one strategy for the text between line start and cursor.
    Checks run in precedence order; the first match wins.
    """
    line = line_before_cursor or ""
    if not line.strip():
        return CompletionStrategy.NEW_STATEMENT

    open_quote, paren_depth = _scan_line(line)
    if open_quote is not None:
        return CompletionStrategy.IN_STRING
    if _MEMBER_ACCESS_RE.search(line):
        return CompletionStrategy.MEMBER_ACCESS
    if _ARROW_RE.search(line):
        return CompletionStrategy.ARROW_FUNCTION
    if _ASSIGNMENT_RE.search(line):
        return CompletionStrategy.ASSIGNMENT
    if paren_depth > 0:
        return CompletionStrategy.FUNCTION_ARGS
    return CompletionStrategy.CONTINUE


class PromptBuilder(BaseUtils):

    def truncate_prefix(self, prefix: str, max_lines: int) -> str:
        lines = prefix.split("\n")
        return "\n".join(lines[-max_lines:]) if max_lines > 0 else ""

    def truncate_suffix(self, suffix: str, max_lines: int) -> str:
        lines = suffix.split("\n")
        return "\n".join(lines[:max_lines]) if max_lines > 0 else ""

    def _related_block(self, context: CompletionContext, config: CompletionConfig) -> str:
        files = list(context.related_files or ())[: max(0, config.max_related_files)]
        if not files:
            return ""
        entries = [
            self.unsafe_string_format(
                RELATED_FILE_ENTRY,
                path=f.path,
                language=f.language,
                content=f.content[: config.max_related_file_chars],
            )
            for f in files
        ]
        return self.unsafe_string_format(RELATED_FILES_BLOCK, related_files="\n\n".join(entries))

    def build(self, context: CompletionContext, config: CompletionConfig) -> BuiltPrompt:
        current_line = context.prefix.split("\n")[-1]
        indent = detect_indent(current_line)
        strategy = detect_strategy(current_line)

        system_prompt = self.unsafe_string_format(
            COMPLETION_SYSTEM_PROMPT,
            language=context.language or "plaintext",
            indent_markers=visible_indent(indent),
            indent_description=describe_indent(indent),
            strategy_hint=STRATEGY_HINTS[strategy.value],
        )

        prompt = self.unsafe_string_format(
            FIM_PROMPT,
            related_block=self._related_block(context, config),
            filename=context.filename,
            language=context.language or "plaintext",
            prefix=self.truncate_prefix(context.prefix, config.max_prefix_lines),
            suffix=self.truncate_suffix(context.suffix, config.max_suffix_lines),
        )

        return BuiltPrompt(prompt=prompt, system_prompt=system_prompt, strategy=strategy.value)
