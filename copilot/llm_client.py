import asyncio
import logging
import random
import threading
import time
import traceback
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import HumanMessage, SystemMessage

from copilot.config_manager import CompletionConfig, ConfigurationError
from copilot.entities import TokenUsage, TransportResponse
from copilot.model_props import is_openai_model, parse_model_name

T = TypeVar("T")

logger = logging.getLogger("copilot_completion")


class MaxRetryErrorsException(Exception):
    pass


class TransportError(Exception):
    """Network or remote failure talking to the completion model."""


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def _is_timeout_error(e: Exception) -> bool:
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def _is_resource_exhausted_error(e: Exception) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
            or "rate limit" in msg.lower()
        )
    )


def _respect_global_backoff(sleep: Callable[[float], None]) -> None:
    while True:
        with _global_backoff_lock:
            wait = _global_wait_until - time.monotonic()
        if wait <= 0:
            return
        sleep(min(wait, 1.0))


def _register_429_and_get_delay() -> float:
    global _global_wait_until, _global_backoff_seconds

    with _global_backoff_lock:
        now = time.monotonic()
        base = _global_backoff_seconds
        delay = random.uniform(base * 0.95, base * 1.35)
        _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
        _global_wait_until = max(_global_wait_until, now + delay)
        return delay


def _reset_backoff_on_success() -> None:
    global _global_backoff_seconds
    with _global_backoff_lock:
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)


def reset_global_backoff() -> None:
    global _global_wait_until, _global_backoff_seconds
    with _global_backoff_lock:
        _global_wait_until = 0.0
        _global_backoff_seconds = 30.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 1,
    log: Callable[[str], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    """
    last_exception: Exception | None = None

    for attempt in range(max(1, retries)):
        _respect_global_backoff(sleep)
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_resource_exhausted_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {max(1, retries)} retry attempts failed.") from last_exception


class CompletionLlmClient:
    """
    Remote completion transport:

        response = client.complete(prompt, system_prompt, model, max_tokens)

    Under the hood, chosen per call from the model name:
    - OpenAI: Responses API (client.responses.create) with instructions=system_prompt
    - Vertex: ChatVertexAI.invoke([SystemMessage, HumanMessage])

    The client keeps no usage totals; callers decide which calls count.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        base_url: str = "",
        vertex_project: str = "",
        vertex_region: str = "us-central1",
        timeout: float | None = None,
        retries: int = 1,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._vertex_project = vertex_project
        self._vertex_region = vertex_region
        self._timeout = timeout
        self._retries = retries
        self._openai: Optional[OpenAI] = None
        self._vertex_models: Dict[Tuple[str, int, float], ChatVertexAI] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CompletionConfig) -> "CompletionLlmClient":
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            vertex_project=config.vertex_project,
            vertex_region=config.vertex_region,
            timeout=config.timeout,
            retries=config.retries,
        )

    def configure(self, config: CompletionConfig) -> None:
        """
        Apply a new config snapshot. SDK clients built with the old credentials
        are dropped and rebuilt lazily on the next call.
        """
        settings = (config.api_key, config.base_url, config.vertex_project, config.vertex_region, config.timeout)
        with self._lock:
            self._retries = config.retries
            current = (self._api_key, self._base_url, self._vertex_project, self._vertex_region, self._timeout)
            if settings == current:
                return
            self._api_key, self._base_url, self._vertex_project, self._vertex_region, self._timeout = settings
            self._openai = None
            self._vertex_models.clear()
        logger.info("[LLM] Transport reconfigured")

    def is_configured(self, model_name: str) -> bool:
        if is_openai_model(model_name):
            return bool(self._api_key)
        return bool(self._vertex_project)

    # -----------------------
    # Provider clients
    # -----------------------

    def _openai_client(self) -> OpenAI:
        with self._lock:
            if self._openai is None:
                client_kwargs: Dict[str, Any] = {"max_retries": 0, "api_key": self._api_key}
                if self._base_url:
                    client_kwargs["base_url"] = self._base_url
                if self._timeout is not None:
                    client_kwargs["timeout"] = self._timeout
                self._openai = OpenAI(**client_kwargs)
            return self._openai

    def _vertex_client(self, model_name: str, max_tokens: int, temperature: float) -> ChatVertexAI:
        key = (model_name, max_tokens, temperature)
        with self._lock:
            model = self._vertex_models.get(key)
            if model is None:
                model = ChatVertexAI(
                    project=self._vertex_project,
                    location=self._vertex_region,
                    model_name=model_name,
                    timeout=self._timeout,
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                )
                self._vertex_models[key] = model
            return model

    # -----------------------
    # Single calls
    # -----------------------

    def _complete_openai(self, prompt: str, system_prompt: str, model: str, max_tokens: int, temperature: float) -> TransportResponse:
        base_model, params = parse_model_name(model)
        request: Dict[str, Any] = {
            "model": base_model,
            "instructions": system_prompt,
            "input": prompt,
            "max_output_tokens": max_tokens,
            **params,
        }
        # reasoning models reject sampling parameters
        if "reasoning" not in params:
            request["temperature"] = temperature

        resp = self._openai_client().responses.create(**request)

        usage = getattr(resp, "usage", None)
        token_usage = TokenUsage(
            input_tokens=int(getattr(usage, "input_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "output_tokens", 0) or 0),
        )

        stop_reason = getattr(resp, "status", None) or "unknown"
        details = getattr(resp, "incomplete_details", None)
        if details is not None and getattr(details, "reason", None):
            stop_reason = details.reason

        text = getattr(resp, "output_text", "") or ""
        return TransportResponse(text=text, stop_reason=str(stop_reason), usage=token_usage)

    def _complete_vertex(self, prompt: str, system_prompt: str, model: str, max_tokens: int, temperature: float) -> TransportResponse:
        resp = self._vertex_client(model, max_tokens, temperature).invoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        )

        # Try to pull usage_metadata from the response if available
        usage_md = getattr(resp, "usage_metadata", None)
        rm = getattr(resp, "response_metadata", None) or {}
        if not usage_md and isinstance(rm, dict):
            usage_md = rm.get("usage_metadata")

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_md, dict) and usage_md.get(k) is not None:
                    return int(usage_md.get(k) or 0)
                if usage_md is not None and not isinstance(usage_md, dict) and getattr(usage_md, k, None) is not None:
                    return int(getattr(usage_md, k) or 0)
            return 0

        token_usage = TokenUsage(
            input_tokens=get("input_tokens", "prompt_token_count"),
            output_tokens=get("output_tokens", "candidates_token_count"),
        )

        stop_reason = rm.get("finish_reason") if isinstance(rm, dict) else None
        text = resp if isinstance(resp, str) else getattr(resp, "content", str(resp))
        if isinstance(text, list):
            text = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in text)
        return TransportResponse(text=str(text), stop_reason=str(stop_reason or "unknown"), usage=token_usage)

    def complete(
        self,
        prompt: str,
        system_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float = 0.0,
    ) -> TransportResponse:
        """
        Synchronous call with global 429/timeout backoff + retries.
        Raises ConfigurationError when no credential is set, TransportError on failure.
        """
        if not self.is_configured(model):
            raise ConfigurationError(f"No credentials configured for model '{model}'")

        if is_openai_model(model):
            fn = lambda: self._complete_openai(prompt, system_prompt, model, max_tokens, temperature)
        else:
            fn = lambda: self._complete_vertex(prompt, system_prompt, model, max_tokens, temperature)

        try:
            return call_with_retries_sync(
                fn,
                retries=self._retries,
                log=lambda msg: logger.warning(f"[LLM-RETRY] {msg}"),
            )
        except MaxRetryErrorsException as e:
            raise TransportError(f"Completion request to '{model}' failed: {e.__cause__ or e}") from e
