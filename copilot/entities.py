# copilot/entities.py
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(frozen=True)
class CompletionTrigger:
    """
    One keystroke / trigger event.

    line_text is the text of the cursor line up to the cursor, not the whole line.
    """

    document_id: str
    cursor_offset: int
    line_text: str
    timestamp: float
    trigger_kind: str = "automatic"


@dataclass(frozen=True)
class FileContext:
    path: str
    content: str
    language: str


@dataclass(frozen=True)
class CompletionContext:
    prefix: str
    suffix: str
    language: str
    filename: str
    related_files: Tuple[FileContext, ...] = ()


@dataclass(frozen=True)
class CacheEntry:
    completion_text: str
    created_at: float
    source_key: str


@dataclass(frozen=True)
class TransportResponse:
    text: str
    stop_reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class CompletionResult:
    text: str
    stop_reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class BuiltPrompt:
    prompt: str
    system_prompt: str
    strategy: Optional[str] = None
