from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from multitail.core.models import LogEvent


@pytest.fixture
def append_bytes() -> Callable[[Path, bytes], None]:
    def _append(path: Path, data: bytes) -> None:
        with path.open("ab") as f:
            f.write(data)

    return _append


@pytest.fixture
def empty_log(tmp_path: Path) -> Path:
    path = tmp_path / "a.log"
    path.write_bytes(b"")
    return path


@pytest.fixture
def next_event() -> Callable[[asyncio.Queue[LogEvent]], object]:
    async def _next(queue: asyncio.Queue[LogEvent], timeout: float = 2.0) -> LogEvent:
        return await asyncio.wait_for(queue.get(), timeout=timeout)

    return _next
