"""Tailing configuration and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Literal

from .errors import ConfigError

WatchMode = Literal["poll", "notify"]
WATCH_MODES: tuple[str, ...] = ("poll", "notify")

ENV_POLL_INTERVAL = "MULTITAIL_POLL_INTERVAL"
ENV_QUEUE_SIZE = "MULTITAIL_QUEUE_SIZE"
ENV_WATCH_MODE = "MULTITAIL_WATCH_MODE"


@dataclass(frozen=True, slots=True)
class TailConfig:
    # Start at offset 0 instead of end-of-file.
    from_start: bool = False

    # Seconds between polls when watch_mode == "poll".
    poll_interval: float = 0.5

    # Bounded fan-in queue; a full queue stalls watchers (backpressure).
    queue_maxsize: int = 1024

    watch_mode: WatchMode = "poll"

    # Grace period for watchers to finish their last read on stop.
    shutdown_timeout: float = 2.0

    encoding: str = "utf-8"
    decode_errors: str = "replace"

    # Upper bound on bytes pulled into memory by one read.
    read_chunk_size: int = 1 << 20


def validate_tail_config(cfg: TailConfig) -> TailConfig:
    """Raise ConfigError when a field is out of range."""
    if cfg.poll_interval <= 0:
        raise ConfigError("poll_interval must be > 0")
    if cfg.queue_maxsize < 1:
        raise ConfigError("queue_maxsize must be >= 1")
    if cfg.watch_mode not in WATCH_MODES:
        raise ConfigError(f"watch_mode must be one of: {', '.join(WATCH_MODES)}")
    if cfg.shutdown_timeout < 0:
        raise ConfigError("shutdown_timeout must be >= 0")
    if cfg.read_chunk_size < 1:
        raise ConfigError("read_chunk_size must be >= 1")
    return cfg


def resolve_tail_config(cfg: TailConfig | None = None) -> TailConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = TailConfig()

    overrides: dict[str, object] = {}

    env = os.getenv(ENV_POLL_INTERVAL)
    if env:
        try:
            interval = float(env)
        except ValueError as exc:
            raise ConfigError(f"{ENV_POLL_INTERVAL} must be a number") from exc
        if interval <= 0:
            raise ConfigError(f"{ENV_POLL_INTERVAL} must be > 0")
        overrides["poll_interval"] = interval

    env = os.getenv(ENV_QUEUE_SIZE)
    if env:
        try:
            size = int(env)
        except ValueError as exc:
            raise ConfigError(f"{ENV_QUEUE_SIZE} must be an integer") from exc
        if size < 1:
            raise ConfigError(f"{ENV_QUEUE_SIZE} must be >= 1")
        overrides["queue_maxsize"] = size

    env = os.getenv(ENV_WATCH_MODE)
    if env:
        mode = env.strip().lower()
        if mode not in WATCH_MODES:
            raise ConfigError(f"{ENV_WATCH_MODE} must be one of: {', '.join(WATCH_MODES)}")
        overrides["watch_mode"] = mode

    if overrides:
        cfg = replace(cfg, **overrides)
    return validate_tail_config(cfg)
