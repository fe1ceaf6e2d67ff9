"""Observer hooks fired when the checker or the schema decoder finishes.

Observers subscribe by event name and receive a read-only :class:`HookEvent`.
Observer failures are logged and swallowed so telemetry can never change the
outcome of a type check or a decode.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import RLock
from types import MappingProxyType
from typing import Any, Callable, Mapping

from . import logger

HookFn = Callable[["HookEvent"], None]

TYPECHECK_COMPLETED = "typecheck.completed"
SCHEMA_PARSE_COMPLETED = "schema.parse.completed"

_LOGGER = logger.get_logger("promptlang.telemetry.hooks")


@dataclass(frozen=True)
class HookEvent:
    name: str
    payload: Mapping[str, Any]
    timestamp: float = field(default_factory=time.time)


class HookRegistry:
    """Thread-safe mapping of event names to ordered observer lists."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._observers: defaultdict[str, list[HookFn]] = defaultdict(list)

    def add(self, name: str, fn: HookFn) -> "HookHandle":
        if not isinstance(name, str) or not name:
            raise ValueError("hook name must be a non-empty string")
        if not callable(fn):
            raise TypeError("hook callback must be callable")
        with self._lock:
            self._observers[name].append(fn)
        return HookHandle(self, name, fn)

    def remove(self, name: str, fn: HookFn) -> bool:
        with self._lock:
            observers = self._observers.get(name, [])
            if fn not in observers:
                return False
            observers.remove(fn)
            if not observers:
                del self._observers[name]
            return True

    def fire(self, name: str, payload: Mapping[str, Any] | None = None) -> int:
        """Deliver an event to every observer of ``name``; return how many ran cleanly."""

        with self._lock:
            observers = tuple(self._observers.get(name, ()))
        if not observers:
            return 0
        event = HookEvent(name, MappingProxyType(dict(payload or {})))
        delivered = 0
        for fn in observers:
            try:
                fn(event)
            except Exception as exc:
                _LOGGER.exception("hook %s failed: %s", name, exc)
            else:
                delivered += 1
        return delivered

    def snapshot(self) -> dict[str, tuple[HookFn, ...]]:
        with self._lock:
            return {name: tuple(fns) for name, fns in self._observers.items() if fns}


@dataclass
class HookHandle:
    """Returned by :func:`register_hook`; closing it unsubscribes the observer."""

    registry: HookRegistry
    name: str
    fn: HookFn
    closed: bool = False

    def close(self) -> None:
        if not self.closed:
            self.registry.remove(self.name, self.fn)
            self.closed = True

    def __enter__(self) -> "HookHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


_REGISTRY = HookRegistry()


def register_hook(name: str, fn: HookFn) -> HookHandle:
    return _REGISTRY.add(name, fn)


def unregister_hook(name: str, fn: HookFn) -> None:
    _REGISTRY.remove(name, fn)


def dispatch(name: str, payload: Mapping[str, Any] | None = None) -> int:
    return _REGISTRY.fire(name, payload)


def registered_hooks() -> Mapping[str, tuple[HookFn, ...]]:
    return _REGISTRY.snapshot()


__all__ = [
    "HookEvent",
    "HookFn",
    "HookHandle",
    "HookRegistry",
    "SCHEMA_PARSE_COMPLETED",
    "TYPECHECK_COMPLETED",
    "dispatch",
    "register_hook",
    "registered_hooks",
    "unregister_hook",
]
