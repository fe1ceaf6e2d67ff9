"""Convenience exports for promptlang telemetry utilities."""

from . import hooks, logger

__all__ = ["hooks", "logger"]
