# copilot/response_sanitizer.py
import re

from copilot.base_utils import BaseUtils

_FIM_MARKER_RE = re.compile(r"</?(?:PRE|MID|SUF|FILE|RELATED_FILES?)\b[^>]*>")
_CURSOR_MARKER_RE = re.compile(r"^\[CURSOR\]")
# prose lead-in only: capitalized word, and no code punctuation before a free-standing colon
_NARRATIVE_PREFIX_RE = re.compile(r"^(?:Here|The|Output|Complete)\b[^:\n=(){};,\[\]]*:(?=\s|$)")


def open_brace_depth(text: str) -> int:
    """Unmatched '{' count left open at the end of text (never negative)."""
    depth = 0
    for ch in text or "":
        if ch == "{":
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
    return depth


class ResponseSanitizer(BaseUtils):
    """
    Turns raw model output into text that can be inserted at the cursor.
    An empty string means "no suggestion".
    """

    def strip_code_fence(self, text: str) -> str:
        if not text.startswith("```"):
            return text
        lines = text.split("\n")
        lines.pop(0)
        if lines and lines[-1].strip().startswith("```"):
            lines.pop()
        return "\n".join(lines)

    def strip_markers(self, text: str) -> str:
        text = _FIM_MARKER_RE.sub("", text)
        text = _CURSOR_MARKER_RE.sub("", text)
        return _NARRATIVE_PREFIX_RE.sub("", text, count=1)

    def balance_braces(self, text: str, prefix: str = "") -> str:
        """
        Trim trailing '}' beyond what the completion itself opened plus what the
        prefix left open. Only curly braces are balanced.
        """
        budget = text.count("{") + open_brace_depth(prefix)
        excess = text.count("}") - budget
        while excess > 0:
            stripped = text.rstrip()
            if not stripped.endswith("}"):
                break
            text = stripped[:-1]
            excess -= 1
        return text.rstrip()

    def clean(self, raw_text: str, prefix: str = "") -> str:
        cleaned = (raw_text or "").strip()
        cleaned = self.strip_code_fence(cleaned)
        cleaned = self.strip_markers(cleaned).strip()
        cleaned = self.balance_braces(cleaned, prefix)
        if not cleaned.strip():
            return ""
        return cleaned
