# copilot/model_props.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

DEFAULT_COMPLETION_MODEL = "gemini-2.5-flash-lite"

SUPPORTED_MODELS: Tuple[str, ...] = (
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gpt-4.1-mini",
    "gpt-4.1",
    "gpt-5.1_fast",
)


def is_openai_model(model_name) -> bool:
    # keep it simple; adjust if you start using exotic names
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5")
    return any(model_name.startswith(p) for p in prefixes)


def get_short_model_name(model_name: str) -> str:
    """Status-bar friendly label for a model name."""
    base, _ = parse_model_name(model_name)
    for marker, label in (("flash-lite", "Flash Lite"), ("flash", "Flash"), ("pro", "Pro"), ("mini", "Mini")):
        if marker in base:
            return label
    if is_openai_model(base):
        return base.upper()
    return base


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-4.1-mini'
        - 'gpt-5.1_fast'
        - 'gpt-5.1_low_none_priority'
    into (base_model, openai_params).

    Inline completion wants short answers, so only the latency-oriented presets are kept.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    wildcards: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "fast": ("low", "none", None),
        "fast-priority": ("low", "none", "priority"),
        "standard": ("low", "low", None),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue

        if t in wildcards:
            w_verb, w_reason, w_tier = wildcards[t]
            verbosity = verbosity or w_verb
            reasoning_effort = reasoning_effort or w_reason
            service_tier = service_tier or w_tier
            continue

        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue

        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue

        if service_tier is None and t in service_tier_tokens:
            service_tier = t
            continue

        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"

    return base, params
