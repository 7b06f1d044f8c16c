"""Exception types raised by the loop runner."""

from __future__ import annotations


class CodexLoopError(RuntimeError):
    """Base class for errors that abort a run."""


class CheckpointError(CodexLoopError):
    """Raised when the run-scoped checkpoint root cannot be created or written."""


class ConfigError(CodexLoopError, ValueError):
    """Raised when run settings are invalid before the loop starts."""
