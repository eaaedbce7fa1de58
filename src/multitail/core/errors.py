"""Error taxonomy for the tailing engine.

Errors scoped to one file (open, read, signal) never escape that file's
watcher; only ``ConfigError`` is fatal to a run.
"""

from __future__ import annotations

from enum import Enum


class TailError(Exception):
    """Base class for every error raised by the tailing engine."""


class ConfigError(TailError, ValueError):
    """Invalid configuration, or nothing left to tail."""


class OpenFailure(str, Enum):
    """Why a file could not be opened."""

    NOT_FOUND = "not found"
    PERMISSION_DENIED = "permission denied"
    OTHER_IO = "i/o error"


class OpenError(TailError):
    """A single input file could not be opened; the run continues without it."""

    def __init__(self, path: str, reason: OpenFailure, detail: str | None = None) -> None:
        self.path = path
        self.reason = reason
        self.detail = detail
        msg = f"Cannot open file: {path} ({reason.value})"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ReadError(TailError):
    """Transient stat/read failure; the next signal retries from the same offset."""


class UnrecoverableFileError(TailError):
    """The file is gone or its handle is no longer usable."""


class SignalSourceError(TailError):
    """Change-notification failure for one path."""
