"""Per-file watcher: signal in, LogEvents out."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from .errors import ReadError, SignalSourceError, UnrecoverableFileError
from .models import LogEvent, WatcherState
from .signals import SignalStream
from .tracked_file import TrackedFile

LOGGER = logging.getLogger(__name__)


class Watcher:
    """Drive one TrackedFile from one SignalStream into the shared queue.

    The watcher is the only writer of its TrackedFile. Its run loop ends when
    the stream closes or the file becomes unreadable; either way the file and
    the stream are released.
    """

    def __init__(
        self,
        tracked: TrackedFile,
        signals: SignalStream,
        output: asyncio.Queue[LogEvent],
    ) -> None:
        self.tracked = tracked
        self.signals = signals
        self.output = output
        self.state = WatcherState.IDLE
        self.events_emitted = 0

    @property
    def path(self) -> str:
        return self.tracked.path

    async def run(self) -> None:
        try:
            while True:
                try:
                    signal = await self.signals.get()
                except SignalSourceError as exc:
                    LOGGER.warning("Change notification failed for %s: %s", self.path, exc)
                    continue
                if signal is None:
                    LOGGER.debug("Signal stream for %s closed", self.path)
                    break
                if not await self._drain():
                    break
        finally:
            self.state = WatcherState.STOPPED
            self.signals.close()
            await self.tracked.close()

    async def _drain(self) -> bool:
        """Read and forward everything available. False means stop watching."""
        while True:
            self.state = WatcherState.READING
            try:
                lines = await self.tracked.read_new_lines()
            except UnrecoverableFileError as exc:
                LOGGER.error("Stopped tailing %s: %s", self.path, exc)
                return False
            except ReadError as exc:
                LOGGER.warning("Read failed for %s, will retry: %s", self.path, exc)
                return True
            finally:
                self.state = WatcherState.IDLE

            if lines:
                captured = datetime.now(UTC)
                for line in lines:
                    # Blocks while the queue is full.
                    await self.output.put(LogEvent(source_path=self.path, text=line, timestamp=captured))
                    self.events_emitted += 1

            # One chunk per read; keep going until the file is caught up.
            if not self.tracked.has_backlog:
                return True
