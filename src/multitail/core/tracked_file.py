"""Incremental, offset-tracked reads of a single growing file.

A TrackedFile hands out only complete lines, each exactly once. The offset
always points at the start of the first byte not yet delivered; an
unterminated trailing fragment stays unread until its newline arrives.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
from pathlib import Path

import aiofiles
import aiofiles.os

from .errors import OpenError, OpenFailure, ReadError, UnrecoverableFileError
from .models import TrackedFileStatus

LOGGER = logging.getLogger(__name__)

_NEWLINE = b"\n"
_GONE_ERRNOS = frozenset({errno.ENOENT, errno.EBADF, errno.ESTALE})
DEFAULT_READ_CHUNK_SIZE = 1 << 20


def _identity(st: os.stat_result) -> tuple[int, int] | None:
    """Return (device, inode), or None where the platform reports no inode."""
    if not st.st_ino:
        return None
    return st.st_dev, st.st_ino


class TrackedFile:
    """A file handle plus the byte offset delivered so far.

    Owned by exactly one watcher. ``status()`` may be called from elsewhere,
    so the stat-seek-read-update sequence runs under a per-file lock.
    """

    def __init__(
        self,
        path: str,
        *,
        from_start: bool = False,
        encoding: str = "utf-8",
        decode_errors: str = "replace",
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ) -> None:
        if read_chunk_size < 1:
            raise ValueError("read_chunk_size must be >= 1")
        self._path = path
        self._read_chunk_size = read_chunk_size
        self._backlog = False
        self._fs_path = Path(path)
        self._from_start = from_start
        self._encoding = encoding
        self._decode_errors = decode_errors

        self._handle = None
        self._identity: tuple[int, int] | None = None
        self._offset = 0
        self._truncations = 0
        self._rotations = 0
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def has_backlog(self) -> bool:
        """True when the last read stopped at the chunk limit, not at EOF."""
        return self._backlog

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def open(self) -> None:
        """Open the file and fix the starting offset.

        Raises OpenError; the caller decides whether to skip the file.
        """
        async with self._lock:
            if self._handle is not None:
                return
            handle, identity = await self._open_handle()
            if self._from_start:
                offset = 0
            else:
                try:
                    offset = await handle.seek(0, os.SEEK_END)
                except OSError as exc:
                    await handle.close()
                    raise OpenError(self._path, OpenFailure.OTHER_IO, str(exc)) from exc
            self._handle = handle
            self._identity = identity
            self._offset = offset
            LOGGER.debug("Opened %s at offset %d", self._path, offset)

    async def read_new_lines(self) -> list[str]:
        """Return complete lines appended since the last call, in file order.

        At most about one read chunk of new content is returned per call;
        ``has_backlog`` says whether another call would find more.

        Raises ReadError for transient failures (offset untouched) and
        UnrecoverableFileError when the file is gone.
        """
        async with self._lock:
            handle = self._handle
            if handle is None:
                raise UnrecoverableFileError(f"{self._path} is not open")

            st = await self._stat()
            lines: list[str] = []

            current = _identity(st)
            if self._identity is not None and current is not None and current != self._identity:
                # Rotated: finish the old file before switching to the new one.
                backlog = True
                while backlog:
                    more, self._offset, backlog = await self._read_complete(handle, self._offset)
                    lines.extend(more)
                try:
                    new_handle, new_identity = await self._open_handle()
                except OpenError as exc:
                    LOGGER.warning("%s was rotated but cannot be reopened yet: %s", self._path, exc)
                    return lines
                await self._close_handle(handle)
                handle = self._handle = new_handle
                self._identity = new_identity
                self._offset = 0
                self._rotations += 1
                LOGGER.info("%s was rotated; reading new file from start", self._path)
            elif st.st_size < self._offset:
                LOGGER.info(
                    "%s truncated (size %d < offset %d); reading from start",
                    self._path,
                    st.st_size,
                    self._offset,
                )
                self._offset = 0
                self._truncations += 1

            more, self._offset, self._backlog = await self._read_complete(handle, self._offset)
            lines.extend(more)
            return lines

    async def status(self) -> TrackedFileStatus:
        async with self._lock:
            return TrackedFileStatus(
                path=self._path,
                offset=self._offset,
                is_open=self._handle is not None,
                truncations=self._truncations,
                rotations=self._rotations,
            )

    async def close(self) -> None:
        """Release the handle. Safe to call more than once."""
        async with self._lock:
            handle, self._handle = self._handle, None
            if handle is not None:
                await self._close_handle(handle)

    async def _open_handle(self):
        try:
            handle = await aiofiles.open(self._fs_path, mode="rb")
        except FileNotFoundError as exc:
            raise OpenError(self._path, OpenFailure.NOT_FOUND) from exc
        except PermissionError as exc:
            raise OpenError(self._path, OpenFailure.PERMISSION_DENIED) from exc
        except OSError as exc:
            raise OpenError(self._path, OpenFailure.OTHER_IO, exc.strerror or str(exc)) from exc

        try:
            st = await asyncio.to_thread(os.fstat, handle.fileno())
        except OSError as exc:
            await handle.close()
            raise OpenError(self._path, OpenFailure.OTHER_IO, exc.strerror or str(exc)) from exc
        return handle, _identity(st)

    async def _stat(self) -> os.stat_result:
        try:
            return await aiofiles.os.stat(self._fs_path)
        except FileNotFoundError as exc:
            raise UnrecoverableFileError(f"{self._path} was removed") from exc
        except OSError as exc:
            raise ReadError(f"Cannot stat {self._path}: {exc}") from exc

    async def _read_complete(self, handle, offset: int) -> tuple[list[str], int, bool]:
        """Read whole lines from ``offset`` in bounded chunks.

        Stops after the first chunk that completes a line, or at EOF.
        Returns the lines, the new offset and whether more bytes may follow.
        """
        size = self._read_chunk_size
        carry = b""
        try:
            await handle.seek(offset)
            while True:
                chunk = await handle.read(size)
                if not chunk:
                    return [], offset, False
                data = carry + chunk
                end = data.rfind(_NEWLINE)
                if end >= 0:
                    break
                # A line longer than one chunk; keep reading until it ends.
                carry = data
        except ValueError as exc:  # closed underneath us
            raise UnrecoverableFileError(f"{self._path} handle is closed") from exc
        except OSError as exc:
            if exc.errno in _GONE_ERRNOS:
                raise UnrecoverableFileError(f"{self._path} is no longer readable: {exc}") from exc
            raise ReadError(f"Cannot read {self._path}: {exc}") from exc

        complete = data[: end + 1]
        lines = [self._decode(raw) for raw in complete.split(_NEWLINE)[:-1]]
        return lines, offset + len(complete), len(chunk) == size

    def _decode(self, raw: bytes) -> str:
        return raw.removesuffix(b"\r").decode(self._encoding, errors=self._decode_errors)

    async def _close_handle(self, handle) -> None:
        try:
            await handle.close()
        except OSError as exc:
            LOGGER.warning("Error closing %s: %s", self._path, exc)
