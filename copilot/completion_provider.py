# copilot/completion_provider.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from copilot.completion_engine import CompletionEngine
from copilot.documents import Position, Range, TextDocument, WorkspaceFolders
from copilot.entities import CompletionTrigger
from copilot.request_scheduler import CancellationSignal

logger = logging.getLogger("copilot_completion")


@dataclass(frozen=True)
class TriggerContext:
    """'automatic' for typing, 'invoke' for an explicit keybinding request."""

    kind: str = "automatic"


@dataclass(frozen=True)
class InlineSuggestion:
    text: str
    range: Range


class _NoSuggestion:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_SUGGESTION"


NO_SUGGESTION = _NoSuggestion()


class CompletionProvider:
    """Editor-facing adapter around CompletionEngine."""

    def __init__(self, engine: CompletionEngine, workspace: Optional[WorkspaceFolders] = None):
        self.engine = engine
        self.workspace = workspace or WorkspaceFolders()

    def build_trigger(self, document: TextDocument, position: Position, trigger_context: TriggerContext) -> CompletionTrigger:
        line_text = document.line_at(position)
        return CompletionTrigger(
            document_id=document.uri,
            cursor_offset=document.offset_at(position),
            line_text=line_text[: max(0, position.character)],
            timestamp=time.time(),
            trigger_kind=trigger_context.kind,
        )

    async def provide_completion(
        self,
        document: TextDocument,
        position: Position,
        trigger_context: Optional[TriggerContext],
        signal: CancellationSignal,
    ) -> Union[InlineSuggestion, _NoSuggestion]:
        trigger = self.build_trigger(document, position, trigger_context or TriggerContext())
        logger.debug(f"[PROVIDER] Triggered at {position.line}:{position.character}")

        result = await self.engine.request_completion(
            trigger,
            signal,
            document,
            workspace_root=self.workspace.get_workspace_root(document.file_name),
        )
        if result is None or not result.text:
            return NO_SUGGESTION

        cursor = document.position_at(trigger.cursor_offset)
        return InlineSuggestion(text=result.text, range=Range(cursor, cursor))
