# copilot/completion_engine.py
from __future__ import annotations

import asyncio
import logging
import threading
import time
import traceback
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol

from copilot.base_utils import BaseUtils
from copilot.completion_cache import CompletionCache, make_cache_key
from copilot.config_manager import CompletionConfig, ConfigurationError
from copilot.context_assembler import ContextAssembler
from copilot.documents import TextDocument
from copilot.entities import CacheEntry, CompletionResult, CompletionTrigger, TokenUsage, TransportResponse
from copilot.llm_client import TransportError
from copilot.prompt_builder import PromptBuilder
from copilot.request_scheduler import CancellationSignal, CompletionCancelled, RequestScheduler, RequestTicket
from copilot.response_sanitizer import ResponseSanitizer

logger = logging.getLogger("copilot_completion")


class EmptyResultError(Exception):
    """The model answered with nothing insertable."""


class CompletionTransport(Protocol):
    def is_configured(self, model_name: str) -> bool:
        ...

    def complete(self, prompt: str, system_prompt: str, model: str, max_tokens: int, temperature: float = 0.0) -> TransportResponse:
        ...


class EngineState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    ASSEMBLING_CONTEXT = "assembling_context"
    AWAITING_MODEL = "awaiting_model"
    SANITIZING = "sanitizing"
    DONE = "done"
    CANCELLED = "cancelled"


TERMINAL_STATES = {EngineState.DONE, EngineState.CANCELLED}

_TRANSITIONS = {
    EngineState.IDLE: {EngineState.DEBOUNCING, EngineState.DONE},
    EngineState.DEBOUNCING: {EngineState.ASSEMBLING_CONTEXT},
    # cache hit: ASSEMBLING_CONTEXT -> DONE
    EngineState.ASSEMBLING_CONTEXT: {EngineState.AWAITING_MODEL, EngineState.DONE},
    EngineState.AWAITING_MODEL: {EngineState.SANITIZING},
    EngineState.SANITIZING: {EngineState.DONE},
}


class CompletionRequest:
    """State machine of a single requestCompletion call."""

    def __init__(self, trigger: CompletionTrigger):
        self.trigger = trigger
        self.state = EngineState.IDLE
        self.history = [EngineState.IDLE]

    def transition(self, new_state: EngineState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Completion request already finished in state {self.state.value}")
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state != EngineState.CANCELLED and new_state not in allowed:
            raise RuntimeError(f"Illegal completion state transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def finish(self, new_state: EngineState) -> None:
        """Terminal move, allowed from any non-terminal state (early exit or failure)."""
        if new_state not in TERMINAL_STATES:
            raise ValueError(f"{new_state.value} is not a terminal state")
        if self.state not in TERMINAL_STATES:
            self.state = new_state
            self.history.append(new_state)


class UsageLedger:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = TokenUsage()

    def add(self, usage: TokenUsage) -> None:
        with self._lock:
            self._total = self._total + usage

    def total(self) -> TokenUsage:
        with self._lock:
            return self._total

    def reset(self) -> None:
        with self._lock:
            self._total = TokenUsage()


class CompletionEngine(BaseUtils):
    """
    Orchestrates one completion request:

        trigger -> scheduler gate -> context -> cache lookup
                -> (miss) prompt -> remote model -> sanitize -> cache store

    Cache and usage ledger are written only by a request that is still current
    after the remote call returned.
    """

    def __init__(
        self,
        transport: CompletionTransport,
        config_supplier: Callable[[], CompletionConfig],
        *,
        cache: Optional[CompletionCache] = None,
        assembler: Optional[ContextAssembler] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        sanitizer: Optional[ResponseSanitizer] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_tracked_documents: int = 256,
    ):
        self._transport = transport
        self._config_supplier = config_supplier
        config = config_supplier()
        self._cache = cache or CompletionCache(ttl_seconds=config.cache_ttl_seconds, max_entries=config.cache_max_entries, clock=clock)
        self._assembler = assembler or ContextAssembler()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._sanitizer = sanitizer or ResponseSanitizer()
        self._clock = clock
        self._sleep = sleep
        self.max_tracked_documents = max_tracked_documents
        self._schedulers: Dict[str, RequestScheduler] = {}
        self._usage = UsageLedger()
        self.last_request: Optional[CompletionRequest] = None

    @property
    def cache(self) -> CompletionCache:
        return self._cache

    def get_total_usage(self) -> TokenUsage:
        return self._usage.total()

    def reset_usage(self) -> None:
        self._usage.reset()

    def apply_config(self, config: CompletionConfig) -> None:
        """Config change listener: cache bounds follow the new snapshot."""
        self._cache.configure(config.cache_ttl_seconds, config.cache_max_entries)

    @property
    def tracked_documents(self) -> int:
        return len(self._schedulers)

    def scheduler_for(self, document_id: str, config: CompletionConfig) -> RequestScheduler:
        scheduler = self._schedulers.get(document_id)
        if scheduler is None:
            if len(self._schedulers) >= self.max_tracked_documents:
                self._prune_idle_schedulers()
            scheduler = RequestScheduler(config.delay_seconds, clock=self._clock, sleep=self._sleep)
            self._schedulers[document_id] = scheduler
        scheduler.delay_seconds = config.delay_seconds
        return scheduler

    def _prune_idle_schedulers(self) -> None:
        # an idle scheduler carries no state a fresh one would not rebuild
        idle = [doc_id for doc_id, s in self._schedulers.items() if s.is_idle()]
        for doc_id in idle:
            del self._schedulers[doc_id]
        if idle:
            logger.debug(f"[ENGINE] Pruned {len(idle)} idle document schedulers")

    def forget_document(self, document_id: str) -> bool:
        return self._schedulers.pop(document_id, None) is not None

    def dispose(self) -> None:
        self._schedulers.clear()
        self._cache.clear()

    async def request_completion(
        self,
        trigger: CompletionTrigger,
        signal: CancellationSignal,
        document: TextDocument,
        workspace_root: Optional[str] = None,
    ) -> Optional[CompletionResult]:
        config = self._config_supplier()
        request = CompletionRequest(trigger)
        self.last_request = request

        logger.debug(f"[ENGINE] Triggered {trigger.document_id}@{trigger.cursor_offset} ({trigger.trigger_kind})")

        if not config.enable:
            logger.debug("[ENGINE] Completion disabled")
            request.finish(EngineState.DONE)
            return None

        if not trigger.line_text.strip():
            logger.debug("[ENGINE] Empty line, skipping")
            request.finish(EngineState.DONE)
            return None

        if signal.is_cancelled():
            logger.debug("[ENGINE] Cancelled before start")
            request.finish(EngineState.DONE)
            return None

        try:
            if not self._transport.is_configured(config.model):
                raise ConfigurationError(f"No credentials configured for model '{config.model}'")

            request.transition(EngineState.DEBOUNCING)
            scheduler = self.scheduler_for(trigger.document_id, config)
            result = await scheduler.schedule(
                trigger,
                signal,
                lambda ticket: self._run_pipeline(request, ticket, document, config, workspace_root),
            )
            if result is None:
                request.finish(EngineState.CANCELLED)
            return result

        except CompletionCancelled:
            request.finish(EngineState.CANCELLED)
            return None
        except ConfigurationError as e:
            logger.info(f"[ENGINE] Not configured: {e}")
            request.finish(EngineState.DONE)
            return None
        except (TransportError, EmptyResultError) as e:
            logger.info(f"[ENGINE] No suggestion: {e}")
            request.finish(EngineState.DONE)
            return None
        except Exception as e:
            # completion is best effort; never surface to the editor
            logger.error(f"[ENGINE] Unexpected completion error: {e}\n{traceback.format_exc()}")
            request.finish(EngineState.DONE)
            return None

    async def _run_pipeline(
        self,
        request: CompletionRequest,
        ticket: RequestTicket,
        document: TextDocument,
        config: CompletionConfig,
        workspace_root: Optional[str],
    ) -> CompletionResult:
        trigger = request.trigger

        request.transition(EngineState.ASSEMBLING_CONTEXT)
        context = self._assembler.assemble(
            document.get_text(),
            trigger.cursor_offset,
            document.language_id,
            document.file_name,
            config,
            document_path=document.file_name,
            workspace_root=workspace_root,
        )
        ticket.raise_if_stale("context assembly")
        logger.debug(f"[ENGINE] Context prefix length: {len(context.prefix)}, related files: {len(context.related_files)}")

        key = make_cache_key(context)
        entry = self._cache.get(key)
        if entry is not None:
            logger.debug(f"[ENGINE] Cache hit {key[:12]}")
            request.transition(EngineState.DONE)
            return CompletionResult(text=entry.completion_text, stop_reason="cache", usage=TokenUsage())

        built = self._prompt_builder.build(context, config)
        logger.debug(f"[ENGINE] Requesting completion for \"{self.preview(trigger.line_text[-40:])}\" strategy={built.strategy}")

        request.transition(EngineState.AWAITING_MODEL)
        async with ticket.remote_slot:
            ticket.raise_if_stale("remote call")
            response = await asyncio.to_thread(
                self._transport.complete,
                built.prompt,
                built.system_prompt,
                config.model,
                config.max_tokens,
                0.0,
            )
        # the call may have outlived its request; drop the result
        ticket.raise_if_stale("after remote call")

        request.transition(EngineState.SANITIZING)
        self._usage.add(response.usage)
        text = self._sanitizer.clean(response.text, prefix=context.prefix)
        if not text:
            raise EmptyResultError("Empty result from model")

        self._cache.put(key, CacheEntry(completion_text=text, created_at=self._cache.now(), source_key=key))
        request.transition(EngineState.DONE)
        self.color_print(f"[ENGINE] Got completion ({len(text)} chars): \"{self.preview(text)}\"", "green")
        return CompletionResult(text=text, stop_reason=response.stop_reason, usage=response.usage)
