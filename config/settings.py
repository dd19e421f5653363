"""
Dequeuer settings.

One YAML file (DEQUEUER_CONFIG, else config/settings.yaml) maps onto the
dataclasses below. ${VAR} references are expanded from the environment.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class QueueConfig:
    timeout_ms: int = 10 * 60 * 1000    # default per-item deadline, 0 disables
    max_retries: int = 3                # retry ceiling for retryable failures
    poll_interval_ms: int = 100         # timeout / wake-up polling tick
    queue_dir: str = "queue"            # queue<N>.log files and saved.queue
    restore_on_start: bool = True       # load saved.queue when the consumer attaches
    save_on_shutdown: bool = True       # write saved.queue and queue logs on shutdown


@dataclass
class CallbackConfig:
    timeout_s: float = 30.0
    max_attempts: int = 3               # transport-level attempts per delivery
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Settings:
    app_name: str = "Dequeuer"
    version: str = "1.0.0"
    debug: bool = False
    consumer: str = ""                  # "package.module:ClassName" of the workflow consumer
    queue: QueueConfig = field(default_factory=QueueConfig)
    callback: CallbackConfig = field(default_factory=CallbackConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    info: dict[str, Any] = field(default_factory=dict)


_settings: Optional[Settings] = None

_ENV_VAR = re.compile(r"\$\{(\w+)\}")


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} in every string of a parsed YAML tree; unknown vars stay as written."""
    if isinstance(value, str):
        return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _section(cls, raw: Optional[dict]):
    """Build a config dataclass from a YAML section, coercing scalars to the field defaults' types."""
    section = cls()
    for f in fields(cls):
        if not raw or f.name not in raw or raw[f.name] is None:
            continue
        value = raw[f.name]
        default = getattr(section, f.name)
        if isinstance(default, bool):
            value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
        elif isinstance(default, (int, float, str)):
            value = type(default)(value)
        elif isinstance(default, dict):
            value = dict(value)
        setattr(section, f.name, value)
    return section


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML. Missing file or sections fall back to defaults."""
    global _settings

    path = Path(config_path or os.environ.get(
        "DEQUEUER_CONFIG", Path(__file__).parent / "settings.yaml",
    ))
    raw: dict[str, Any] = {}
    if path.exists():
        with open(path, encoding="utf-8") as f:
            raw = _expand_env(yaml.safe_load(f) or {})

    settings = _section(Settings, {
        k: v for k, v in raw.items() if k not in ("queue", "callback", "api")
    })
    settings.queue = _section(QueueConfig, raw.get("queue"))
    settings.callback = _section(CallbackConfig, raw.get("callback"))
    settings.api = _section(ApiConfig, raw.get("api"))

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Cached settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
