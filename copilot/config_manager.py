# copilot/config_manager.py
from __future__ import annotations

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import commentjson
from dotenv import load_dotenv

from copilot.model_props import DEFAULT_COMPLETION_MODEL

load_dotenv()

logger = logging.getLogger("copilot_completion")


class ConfigurationError(Exception):
    pass


@dataclass(frozen=True)
class CompletionConfig:
    """
    Immutable configuration snapshot handed to every component at call time.
    """

    # model / credentials
    model: str = DEFAULT_COMPLETION_MODEL
    api_key: str = ""
    base_url: str = ""
    vertex_project: str = ""
    vertex_region: str = "us-central1"

    # completion
    enable: bool = True
    delay: int = 150  # ms
    max_tokens: int = 150

    # context
    max_files: int = 10
    include_imports: bool = True
    max_file_chars: int = 4000

    # privacy
    exclude_patterns: Tuple[str, ...] = ("**/.env*", "**/secrets/**")

    # prompt
    max_prefix_lines: int = 80
    max_suffix_lines: int = 20
    max_related_files: int = 2
    max_related_file_chars: int = 1000

    # cache
    cache_ttl_seconds: float = 30.0
    cache_max_entries: int = 50

    # transport
    retries: int = 1
    timeout: Optional[float] = 10.0

    @property
    def delay_seconds(self) -> float:
        return max(0, self.delay) / 1000.0


# config file section -> {file key: CompletionConfig field}
_SECTIONS: Dict[str, Dict[str, str]] = {
    "model": {
        "completion": "model",
        "api_key": "api_key",
        "base_url": "base_url",
        "vertex_project": "vertex_project",
        "vertex_region": "vertex_region",
    },
    "completion": {
        "enable": "enable",
        "delay": "delay",
        "max_tokens": "max_tokens",
    },
    "context": {
        "max_files": "max_files",
        "include_imports": "include_imports",
        "max_file_chars": "max_file_chars",
    },
    "privacy": {
        "exclude_patterns": "exclude_patterns",
    },
    "prompt": {
        "max_prefix_lines": "max_prefix_lines",
        "max_suffix_lines": "max_suffix_lines",
        "max_related_files": "max_related_files",
        "max_related_file_chars": "max_related_file_chars",
    },
    "cache": {
        "ttl_seconds": "cache_ttl_seconds",
        "max_entries": "cache_max_entries",
    },
    "transport": {
        "retries": "retries",
        "timeout": "timeout",
    },
}

_ENV_OVERRIDES = {
    "OPENAI_API_KEY": "api_key",
    "OPENAI_BASE_URL": "base_url",
    "GOOGLE_CLOUD_PROJECT": "vertex_project",
    "GOOGLE_CLOUD_REGION": "vertex_region",
    "COPILOT_COMPLETION_MODEL": "model",
}


def _load_config_file(cfg_path: Path) -> Dict[str, Any]:
    """
    Load a JSON-with-comments config file.
    Fails fast if the file is missing or a section is not an object.
    """
    if not cfg_path.exists():
        raise ConfigurationError(f"Completion config file not found at '{cfg_path}'.")

    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = commentjson.load(f)
    except Exception as e:
        # commentjson raises its own exception types for parse errors
        raise ConfigurationError(f"Completion config file '{cfg_path}' is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Completion config file '{cfg_path}' must contain an object")

    for key, value in data.items():
        if key not in _SECTIONS:
            logger.warning(f"[CONFIG] Ignoring unknown section '{key}' in {cfg_path}")
            continue
        if not isinstance(value, dict):
            raise ConfigurationError(f"Completion config section '{key}' must be an object")

    return data


def build_config(file_data: Optional[Dict[str, Any]] = None, env: Optional[Dict[str, str]] = None) -> CompletionConfig:
    """
    Merge defaults <- config file <- environment into a CompletionConfig snapshot.
    """
    values: Dict[str, Any] = {}

    for section, mapping in _SECTIONS.items():
        section_data = (file_data or {}).get(section) or {}
        for file_key, field_name in mapping.items():
            if file_key in section_data:
                values[field_name] = section_data[file_key]

    env = os.environ if env is None else env
    for env_key, field_name in _ENV_OVERRIDES.items():
        raw = env.get(env_key)
        if raw:
            values[field_name] = raw

    if "exclude_patterns" in values:
        patterns = values["exclude_patterns"]
        if not isinstance(patterns, (list, tuple)):
            raise ConfigurationError("privacy.exclude_patterns must be a list of glob strings")
        values["exclude_patterns"] = tuple(str(p) for p in patterns)

    try:
        return CompletionConfig(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid completion config: {e}") from e


class ConfigManager:
    """
    Passive config supplier: loads once, hands out immutable snapshots.

    The in-memory setters mirror what the editor settings UI would write; they
    replace the snapshot atomically and never mutate one already handed out.
    """

    def __init__(self, config_path: Optional[str] = None, env: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._config_path = config_path if config_path is not None else os.getenv("COPILOT_CONFIG_PATH")
        self._env = env
        self._listeners: List[Callable[[CompletionConfig], None]] = []
        self._config = self._load()

    def _load(self) -> CompletionConfig:
        file_data = None
        if self._config_path:
            file_data = _load_config_file(Path(self._config_path))
            logger.info(f"[CONFIG] Loaded completion config from {self._config_path}")
        return build_config(file_data, self._env)

    def on_change(self, listener: Callable[[CompletionConfig], None]) -> None:
        """Register a callback invoked with every new snapshot (reload or setter)."""
        with self._lock:
            self._listeners.append(listener)

    def _publish(self, config: CompletionConfig) -> CompletionConfig:
        with self._lock:
            self._config = config
            listeners = list(self._listeners)
        # called outside the lock so a listener may read get_config()
        for listener in listeners:
            listener(config)
        return config

    def reload(self) -> CompletionConfig:
        return self._publish(self._load())

    def get_config(self) -> CompletionConfig:
        with self._lock:
            return self._config

    def __call__(self) -> CompletionConfig:
        return self.get_config()

    def _replace(self, **changes: Any) -> CompletionConfig:
        with self._lock:
            config = dataclasses.replace(self._config, **changes)
        return self._publish(config)

    def set_api_key(self, api_key: str) -> CompletionConfig:
        return self._replace(api_key=api_key or "")

    def set_model(self, model: str) -> CompletionConfig:
        return self._replace(model=model)

    def set_completion_enabled(self, enabled: bool) -> CompletionConfig:
        return self._replace(enable=bool(enabled))

    def is_api_key_configured(self) -> bool:
        return len(self.get_config().api_key) > 0
