"""Rendering of LogEvents for output streams.

Keep this layer thin: turn events into text and write them. Diagnostics go
through logging (stderr); only event data is written here.
"""

from __future__ import annotations

import sys
from collections.abc import AsyncIterable
from datetime import datetime
from typing import Literal, TextIO

from pydantic import BaseModel, Field

from multitail.core.models import LogEvent

OutputFormat = Literal["text", "json"]
OUTPUT_FORMATS: tuple[str, ...] = ("text", "json")


class LogEventRecord(BaseModel):
    """JSON shape of a LogEvent."""

    path: str = Field(description="File the line was read from.")
    text: str = Field(description="The line, without its terminator.")
    timestamp: datetime = Field(description="When the line was read (UTC).")

    @classmethod
    def from_event(cls, event: LogEvent) -> LogEventRecord:
        return cls(path=event.source_path, text=event.text, timestamp=event.timestamp)


def render_text(event: LogEvent) -> str:
    return f"[{event.source_path}] {event.text}"


def render_json(event: LogEvent) -> str:
    return LogEventRecord.from_event(event).model_dump_json()


def renderer_for(fmt: OutputFormat):
    if fmt == "text":
        return render_text
    if fmt == "json":
        return render_json
    raise ValueError(f"Unknown output format '{fmt}'. Valid values: {', '.join(OUTPUT_FORMATS)}")


async def write_events(
    events: AsyncIterable[LogEvent],
    *,
    fmt: OutputFormat = "text",
    out: TextIO | None = None,
) -> int:
    """Write every event as one line; return how many were written."""
    render = renderer_for(fmt)
    stream = out if out is not None else sys.stdout
    count = 0
    async for event in events:
        stream.write(render(event) + "\n")
        stream.flush()
        count += 1
    return count
