"""Fan-in of many watchers into one bounded event queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence

from .config import TailConfig, validate_tail_config
from .errors import ConfigError, OpenError
from .models import LogEvent, TrackedFileStatus
from .signals import SignalSource, make_signal_source
from .tracked_file import TrackedFile
from .watcher import Watcher

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Start one watcher per path and expose their events as one stream.

    Events from one file keep file order; events from different files
    interleave freely. A failure confined to one file is logged and only
    ends that file's watcher.
    """

    def __init__(
        self,
        paths: Sequence[str],
        *,
        config: TailConfig | None = None,
        signal_source: SignalSource | None = None,
    ) -> None:
        self.paths = list(paths)
        self.config = config or TailConfig()
        self.watchers: list[Watcher] = []
        self.failures: dict[str, OpenError] = {}

        self._source = signal_source
        self._queue: asyncio.Queue[LogEvent] = asyncio.Queue(maxsize=self.config.queue_maxsize)
        # Set once no watcher can put again; events() ends when the queue is empty.
        self._finished = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._closer: asyncio.Task[None] | None = None
        self._started = False
        self._stopped = False

    async def __aenter__(self) -> Dispatcher:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        """Open every path and start watching the ones that opened.

        Raises ConfigError when no paths were given or none could be opened.
        """
        if self._started:
            raise RuntimeError("Dispatcher already started")
        if not self.paths:
            raise ConfigError("No input files given")
        validate_tail_config(self.config)
        self._started = True

        opened: list[TrackedFile] = []
        seen: set[str] = set()
        for path in self.paths:
            if path in seen:
                LOGGER.warning("Ignoring duplicate path %s", path)
                continue
            seen.add(path)

            tracked = TrackedFile(
                path,
                from_start=self.config.from_start,
                encoding=self.config.encoding,
                decode_errors=self.config.decode_errors,
                read_chunk_size=self.config.read_chunk_size,
            )
            try:
                await tracked.open()
            except OpenError as exc:
                LOGGER.error("%s", exc)
                self.failures[path] = exc
                continue
            opened.append(tracked)

        if not opened:
            if self._source is not None:
                await self._source.aclose()
            self._finished.set()
            raise ConfigError(f"None of the {len(seen)} input file(s) could be opened")

        if self._source is None:
            self._source = make_signal_source(self.config)

        for tracked in opened:
            watcher = Watcher(tracked, self._source.subscribe(tracked.path), self._queue)
            self.watchers.append(watcher)
            self._tasks.append(asyncio.create_task(watcher.run(), name=f"watch:{tracked.path}"))

        self._closer = asyncio.create_task(self._close_when_done(), name="dispatcher-closer")
        LOGGER.info(
            "Tailing %d file(s)%s",
            len(opened),
            f", skipped {len(self.failures)}" if self.failures else "",
        )

    async def events(self) -> AsyncIterator[LogEvent]:
        """Yield events until every watcher has stopped and the queue is empty."""
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                if self._finished.is_set():
                    return
                item = await self._next_or_finished()
                if item is None:
                    continue
            yield item

    async def wait(self) -> None:
        """Return once every watcher has stopped."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self, timeout: float | None = None) -> None:
        """Ask every watcher to finish its current read and exit.

        Watchers still running after ``timeout`` seconds are cancelled.
        Handles and the signal source are always released.
        """
        if self._stopped:
            return
        self._stopped = True
        if timeout is None:
            timeout = self.config.shutdown_timeout

        for watcher in self.watchers:
            watcher.signals.close()

        try:
            if self._tasks:
                _, pending = await asyncio.wait(self._tasks, timeout=timeout)
                for task in pending:
                    LOGGER.debug("Cancelling %s after %.1fs", task.get_name(), timeout)
                    task.cancel()
                await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            if self._source is not None:
                await self._source.aclose()
            if self._closer is not None and not self._closer.done():
                self._closer.cancel()
                await asyncio.gather(self._closer, return_exceptions=True)
            self._finished.set()

    async def status(self) -> list[TrackedFileStatus]:
        return [await watcher.tracked.status() for watcher in self.watchers]

    async def _close_when_done(self) -> None:
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for watcher, result in zip(self.watchers, results):
            if isinstance(result, Exception):
                LOGGER.error("Watcher for %s crashed", watcher.path, exc_info=result)
        self._finished.set()

    async def _next_or_finished(self) -> LogEvent | None:
        """Wait for the next event; None if the run finished first."""
        getter = asyncio.create_task(self._queue.get())
        finished = asyncio.create_task(self._finished.wait())
        try:
            await asyncio.wait({getter, finished}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            finished.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None
