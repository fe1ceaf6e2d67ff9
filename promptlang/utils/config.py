"""Utility helpers for loading YAML configuration files."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Mapping, Optional

import yaml

__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "Limits",
    "default_limits",
    "load_config",
    "load_limits",
    "reset_default_limits",
]

CONFIG_ENV_VAR = "PROMPTLANG_CONFIG"

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "configs" / "promptlang.yaml"

_LIMITS_CACHE: Optional[Limits] = None
_LIMITS_LOCK = Lock()


class ConfigError(ValueError):
    """Raised when a configuration document is malformed."""


@dataclass(slots=True, frozen=True)
class Limits:
    """Recursion guards applied when processing untrusted input."""

    max_interpolation_depth: int = 16
    max_value_depth: int = 64
    max_nesting_depth: int = 64


def load_config(path: str | Path) -> Any:
    """Return the parsed YAML document located at ``path``.

    The document is parsed via :func:`yaml.safe_load`; an empty file yields an
    empty mapping and a non-mapping root raises :class:`ConfigError`.
    """

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"configuration file not found: {config_path}")
    raw_text = config_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse configuration: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")
    return data


def load_limits(path: str | Path | None = None) -> Limits:
    """Resolve :class:`Limits` from ``path``, the environment, or defaults.

    Lookup order: the explicit ``path``, the file named by
    ``PROMPTLANG_CONFIG``, then ``configs/promptlang.yaml`` at the repository
    root.  When none exists the dataclass defaults apply.
    """

    source = _resolve_path(path)
    if source is None:
        return Limits()
    section = load_config(source).get("limits", {})
    if section is None:
        return Limits()
    if not isinstance(section, Mapping):
        raise ConfigError("'limits' must be a mapping")
    defaults = Limits()
    return Limits(
        max_interpolation_depth=_positive_int(
            section, "max_interpolation_depth", defaults.max_interpolation_depth
        ),
        max_value_depth=_positive_int(section, "max_value_depth", defaults.max_value_depth),
        max_nesting_depth=_positive_int(
            section, "max_nesting_depth", defaults.max_nesting_depth
        ),
    )


def default_limits() -> Limits:
    """Process-wide limits, resolved once on first use.

    An unreadable or malformed file is logged and replaced by the dataclass
    defaults, so parsing never fails on configuration.
    """

    global _LIMITS_CACHE
    with _LIMITS_LOCK:
        if _LIMITS_CACHE is None:
            try:
                _LIMITS_CACHE = load_limits()
            except (OSError, ConfigError) as exc:
                logging.getLogger(__name__).warning("ignoring limits config: %s", exc)
                _LIMITS_CACHE = Limits()
        return _LIMITS_CACHE


def reset_default_limits() -> None:
    """Forget the cached limits; the next :func:`default_limits` call re-reads them."""

    global _LIMITS_CACHE
    with _LIMITS_LOCK:
        _LIMITS_CACHE = None


def _resolve_path(path: str | Path | None) -> Path | None:
    if path is not None:
        return Path(path)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    if _DEFAULT_CONFIG_PATH.exists():
        return _DEFAULT_CONFIG_PATH
    return None


def _positive_int(section: Mapping[str, Any], key: str, fallback: int) -> int:
    value = section.get(key, fallback)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"limits.{key} must be a positive integer, got {value!r}")
    return value
