"""Core data models for the tailing engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True, slots=True)
class LogEvent:
    """One complete line read from a tracked file."""

    source_path: str
    text: str  # terminator stripped; "" is a real (empty) line
    timestamp: datetime  # capture time of the read, UTC


@dataclass(frozen=True, slots=True)
class ChangeSignal:
    """Notification that ``path`` may have new content."""

    path: str


@dataclass(frozen=True, slots=True)
class TrackedFileStatus:
    """Point-in-time view of a tracked file."""

    path: str
    offset: int
    is_open: bool
    truncations: int = 0
    rotations: int = 0


class WatcherState(str, Enum):
    """Lifecycle of a single watcher."""

    IDLE = "idle"
    READING = "reading"
    STOPPED = "stopped"
