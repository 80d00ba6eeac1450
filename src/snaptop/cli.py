"""Command-line entry point for snaptop."""

import argparse
import logging
from pathlib import Path

from snaptop.display import ConsoleDisplay
from snaptop.formatting import DEFAULT_TOP_N
from snaptop.logging_config import setup_logging
from snaptop.monitor import RenderLoop
from snaptop.source import MetricSource

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="snaptop",
        description="Live system resource monitor.",
    )
    parser.add_argument(
        "-d",
        "--interval",
        type=float,
        default=1.0,
        help="seconds between refreshes (default: 1.0)",
    )
    parser.add_argument(
        "-n",
        "--top",
        type=int,
        default=DEFAULT_TOP_N,
        help=f"number of processes to list (default: {DEFAULT_TOP_N})",
    )
    parser.add_argument(
        "--plain",
        action="store_true",
        help="write frames to the terminal instead of starting the Textual UI",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="plain mode only: exit after this many frames",
    )
    parser.add_argument("--log-level", default="WARNING", help="logging level (default: WARNING)")
    parser.add_argument("--log-file", type=Path, default=None, help="also log to this file")
    return parser


def run_plain(interval: float, top_n: int, iterations: int | None) -> None:
    """Refresh the terminal in place until interrupted."""
    loop = RenderLoop(MetricSource(), ConsoleDisplay(), interval=interval, top_n=top_n)
    try:
        loop.run(max_ticks=iterations)
    except KeyboardInterrupt:
        logger.debug("interrupted")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the snaptop command."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file, textual=not args.plain)

    if args.plain:
        run_plain(args.interval, args.top, args.iterations)
        return

    from snaptop.app import SnaptopApp

    SnaptopApp(interval=args.interval, top_n=args.top).run()


if __name__ == "__main__":
    main()
