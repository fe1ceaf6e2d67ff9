"""Process-wide logging setup for promptlang.

Configuration is a ``logging.config.dictConfig`` document read from
``configs/logging.yaml`` (or the file named by ``PROMPTLANG_LOG_CONFIG``).
A broken or missing file falls back to :data:`BUILTIN_CONFIG`.
"""

from __future__ import annotations

import copy
import logging
import logging.config
import os
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from promptlang.utils import config

LOG_CONFIG_ENV_VAR = "PROMPTLANG_LOG_CONFIG"

_REPO_LOG_CONFIG = Path(__file__).resolve().parents[2] / "configs" / "logging.yaml"

_DICTCONFIG_KEYS = frozenset(
    {"version", "disable_existing_loggers", "formatters", "handlers", "root", "loggers"}
)

BUILTIN_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "standard",
        },
    },
    "root": {"level": "WARNING", "handlers": ["console"]},
    "loggers": {"promptlang": {"level": "INFO", "propagate": True}},
}

_lock = Lock()
_configured = False


def _config_path() -> Optional[Path]:
    override = os.environ.get(LOG_CONFIG_ENV_VAR)
    if override:
        return Path(override)
    if _REPO_LOG_CONFIG.exists():
        return _REPO_LOG_CONFIG
    return None


def build_config() -> tuple[dict[str, Any], Optional[str]]:
    """Return the dictConfig document to apply and an optional warning."""

    document = copy.deepcopy(BUILTIN_CONFIG)
    path = _config_path()
    if path is None:
        return document, None
    try:
        loaded = config.load_config(path)
    except (OSError, config.ConfigError) as exc:
        return document, f"ignoring logging config {path}: {exc}"
    document.update({key: value for key, value in loaded.items() if key in _DICTCONFIG_KEYS})
    return document, None


def configure(*, force: bool = False) -> None:
    """Apply logging configuration once per process (again when ``force``)."""

    global _configured
    with _lock:
        if _configured and not force:
            return
        document, warning = build_config()
        logging.config.dictConfig(document)
        _configured = True
    if warning:
        logging.getLogger("promptlang.telemetry").warning(warning)


def get_logger(name: str) -> logging.Logger:
    if not isinstance(name, str) or not name:
        raise ValueError("logger name must be a non-empty string")
    configure()
    return logging.getLogger(name)


__all__ = ["BUILTIN_CONFIG", "LOG_CONFIG_ENV_VAR", "build_config", "configure", "get_logger"]
