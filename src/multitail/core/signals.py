"""Change-signal sources.

A source hands out one SignalStream per path. A stream only says "this path
may have changed"; the reader decides what actually changed. Errors are
reported on the affected stream and never close it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import TailConfig
from .errors import ConfigError, SignalSourceError
from .models import ChangeSignal

LOGGER = logging.getLogger(__name__)


class SignalStream:
    """Per-path stream of coalesced change signals.

    Producers call ``notify``/``report_error``/``close``; the single
    consumer awaits ``get``. Several notifications before the consumer
    wakes collapse into one signal.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._wake = asyncio.Event()
        self._signalled = False
        self._closed = False
        self._errors: deque[SignalSourceError] = deque()
        self._on_close: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if self._closed:
            return
        self._signalled = True
        self._wake.set()

    def report_error(self, error: SignalSourceError | str) -> None:
        if self._closed:
            return
        if not isinstance(error, SignalSourceError):
            error = SignalSourceError(error)
        self._errors.append(error)
        self._wake.set()

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._on_close.append(callback)

    def close(self) -> None:
        """Stop the stream. A signal already pending is still delivered."""
        if self._closed:
            return
        self._closed = True
        self._wake.set()
        callbacks, self._on_close = self._on_close, []
        for callback in callbacks:
            callback()

    async def get(self) -> ChangeSignal | None:
        """Return the next signal, or None once the stream is closed.

        Raises SignalSourceError for a reported error; the stream stays usable.
        """
        while True:
            if self._errors:
                raise self._errors.popleft()
            if self._signalled:
                self._signalled = False
                return ChangeSignal(self.path)
            if self._closed:
                return None
            self._wake.clear()
            await self._wake.wait()


class SignalSource(ABC):
    """Capability: subscribe(path) -> SignalStream."""

    def __init__(self) -> None:
        self._streams: list[SignalStream] = []
        self._tasks: list[asyncio.Task[None]] = []

    @abstractmethod
    def subscribe(self, path: str) -> SignalStream:
        """Return a new stream for ``path``. Must be called on the event loop."""

    async def aclose(self) -> None:
        """Close every stream handed out by this source and reap its timers."""
        streams, self._streams = self._streams, []
        for stream in streams:
            stream.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _track(self, stream: SignalStream) -> SignalStream:
        self._streams.append(stream)
        return stream

    def _poll(self, stream: SignalStream, interval: float) -> None:
        """Signal ``stream`` every ``interval`` seconds until it closes."""
        task = asyncio.get_running_loop().create_task(
            _tick(stream, interval), name=f"poll:{stream.path}"
        )
        self._tasks.append(task)
        stream.add_close_callback(task.cancel)


async def _tick(stream: SignalStream, interval: float) -> None:
    while not stream.closed:
        stream.notify()
        await asyncio.sleep(interval)


class PollingSignalSource(SignalSource):
    """Signals every path at a fixed interval, changed or not."""

    def __init__(self, interval: float = 0.5) -> None:
        super().__init__()
        if interval <= 0:
            raise ConfigError("poll interval must be > 0")
        self.interval = interval

    def subscribe(self, path: str) -> SignalStream:
        stream = self._track(SignalStream(path))
        self._poll(stream, self.interval)
        return stream


class _PathEventHandler(FileSystemEventHandler):
    """Routes watchdog events for one directory to the matching streams."""

    def __init__(self, source: WatchdogSignalSource) -> None:
        super().__init__()
        self._source = source

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", None)
        if dest:
            paths.append(dest)
        for raw in paths:
            if isinstance(raw, bytes):
                raw = raw.decode(errors="replace")
            self._source._dispatch(Path(raw).resolve())


class WatchdogSignalSource(SignalSource):
    """OS-level change notification via a watchdog observer.

    One non-recursive watch per parent directory. Observer callbacks run on
    the observer thread and are handed to the event loop thread-safely.
    A path whose directory cannot be watched (e.g. the inotify watch limit)
    is polled every ``fallback_interval`` seconds instead.
    """

    def __init__(self, fallback_interval: float = 0.5) -> None:
        super().__init__()
        if fallback_interval <= 0:
            raise ConfigError("fallback poll interval must be > 0")
        self.fallback_interval = fallback_interval
        self._observer = Observer()
        self._started = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._by_path: dict[Path, list[SignalStream]] = {}
        self._watched_dirs: set[Path] = set()
        self._handler = _PathEventHandler(self)

    def subscribe(self, path: str) -> SignalStream:
        self._loop = asyncio.get_running_loop()
        stream = self._track(SignalStream(path))
        resolved = Path(path).resolve()
        self._by_path.setdefault(resolved, []).append(stream)
        stream.add_close_callback(lambda: self._forget(resolved, stream))

        directory = resolved.parent
        if not self._started:
            self._observer.start()
            self._started = True

        if directory not in self._watched_dirs:
            try:
                # Emitters start synchronously once the observer is running.
                self._observer.schedule(self._handler, str(directory), recursive=False)
            except OSError as exc:
                LOGGER.warning(
                    "Cannot watch %s: %s; polling %s every %.2fs",
                    directory,
                    exc,
                    path,
                    self.fallback_interval,
                )
                stream.report_error(f"Cannot watch {directory}: {exc}")
                self._poll(stream, self.fallback_interval)
                return stream
            self._watched_dirs.add(directory)

        # Pick up anything written before the watch was in place.
        stream.notify()
        return stream

    async def aclose(self) -> None:
        await super().aclose()
        if self._started:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._started = False

    def _dispatch(self, path: Path) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        for stream in tuple(self._by_path.get(path, ())):
            loop.call_soon_threadsafe(stream.notify)

    def _forget(self, path: Path, stream: SignalStream) -> None:
        streams = self._by_path.get(path)
        if streams and stream in streams:
            streams.remove(stream)


def make_signal_source(cfg: TailConfig) -> SignalSource:
    """Build the signal source selected by ``cfg.watch_mode``."""
    if cfg.watch_mode == "poll":
        return PollingSignalSource(cfg.poll_interval)
    if cfg.watch_mode == "notify":
        return WatchdogSignalSource(fallback_interval=cfg.poll_interval)
    raise ConfigError(f"Unknown watch mode: {cfg.watch_mode}")
