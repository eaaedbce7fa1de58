from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import replace

from multitail.core.config import WATCH_MODES, TailConfig, resolve_tail_config, validate_tail_config
from multitail.core.dispatcher import Dispatcher
from multitail.core.errors import ConfigError
from multitail.sink import OUTPUT_FORMATS, OutputFormat, write_events

LOGGER = logging.getLogger(__name__)

ENV_LOG_LEVEL = "MULTITAIL_LOG_LEVEL"


def _configure_logging(level_name: str | None) -> None:
    """Log to stderr so stdout carries only tailed lines."""
    level_name = (level_name or os.getenv(ENV_LOG_LEVEL, "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _positive_float(s: str) -> float:
    try:
        value = float(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError("must be a number") from e
    if value <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


def _positive_int(s: str) -> int:
    try:
        value = int(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError("must be an integer") from e
    if value < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="multitail",
        description="Follow several growing files and print new lines prefixed with their path.",
    )
    p.add_argument("paths", nargs="+", metavar="PATH", help="Files to follow (must exist)")
    p.add_argument(
        "--from-start",
        action="store_true",
        help="Print existing content first instead of only new lines",
    )
    p.add_argument(
        "--watch",
        choices=WATCH_MODES,
        default=None,
        help="poll: check every --interval seconds; notify: OS file notifications (default: poll)",
    )
    p.add_argument("--interval", type=_positive_float, default=None, help="Poll interval in seconds (default: 0.5)")
    p.add_argument("--queue-size", type=_positive_int, default=None, help="Max buffered lines before readers stall")
    p.add_argument("--format", dest="fmt", choices=OUTPUT_FORMATS, default="text", help="Output format")
    p.add_argument("--log-level", default=None, help=f"Diagnostics level (default: ${ENV_LOG_LEVEL} or INFO)")
    return p


def _resolve_config(args: argparse.Namespace) -> TailConfig:
    # Flags win over environment variables.
    cfg = resolve_tail_config(TailConfig(from_start=args.from_start))
    overrides: dict[str, object] = {}
    if args.watch is not None:
        overrides["watch_mode"] = args.watch
    if args.interval is not None:
        overrides["poll_interval"] = args.interval
    if args.queue_size is not None:
        overrides["queue_maxsize"] = args.queue_size
    if overrides:
        cfg = replace(cfg, **overrides)
    return validate_tail_config(cfg)


async def run(paths: Sequence[str], cfg: TailConfig, fmt: OutputFormat = "text") -> int:
    """Tail ``paths`` to stdout until every file is gone or the task is cancelled."""
    dispatcher = Dispatcher(paths, config=cfg)
    await dispatcher.start()
    try:
        return await write_events(dispatcher.events(), fmt=fmt)
    finally:
        await dispatcher.stop()


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        cfg = _resolve_config(args)
        asyncio.run(run(args.paths, cfg, args.fmt))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    except KeyboardInterrupt:
        LOGGER.debug("Interrupted; shut down cleanly")


if __name__ == "__main__":
    main()
