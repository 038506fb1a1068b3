#!/usr/bin/env python3
"""dirtail: follow every matching file in a directory, like tail -f."""

import os
import sys
import signal
import logging
import argparse
import threading

from dirtail.config import ConfigError, load_config, load_yaml_config
from dirtail.follower import DirectoryFollower
from dirtail.matcher import PathMatcher, PatternError
from dirtail.output import OutputMultiplexer
from dirtail.reader import TailReader
from dirtail.registry import ORDERS
from dirtail.watcher import subscribe

logger = logging.getLogger(__name__)

EX_OK = 0
EX_ERR = 1
EX_NOINPUT = 66


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirtail",
        description="Follow files in a directory, including files created later.",
    )
    parser.add_argument("REGEX", nargs="?", help="Regex to filter target files")
    parser.add_argument("PATH", nargs="?", help="Target directory to process (default: .)")
    parser.add_argument("-e", "--regex", help="Regex to filter target files")
    parser.add_argument("-p", "--path", help="Target directory to process")
    parser.add_argument(
        "-l", "--lines", type=int, default=None,
        help="Show only the last N lines of files that exist at startup",
    )
    parser.add_argument("--poll-interval", type=float, default=None,
                        help="Seconds between directory scans when polling (default: 0.3)")
    parser.add_argument("--rescan-interval", type=float, default=None,
                        help="Seconds between safety rescans with native notifications, 0 disables (default: 5)")
    parser.add_argument("--queue-size", type=int, default=None,
                        help="Bound of the watcher event queue (default: 1024)")
    parser.add_argument("--force-polling", action="store_true", default=None,
                        help="Do not use native file notifications")
    parser.add_argument("--order", choices=ORDERS, default=None,
                        help="Output order for files changed in the same cycle (default: path)")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--log-level", default=None,
                        help="Diagnostic log level on stderr (default: WARNING)")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_cli_parser()
    args = parser.parse_args(argv)
    if args.REGEX is not None and args.regex is not None:
        parser.error("REGEX conflicts with --regex")
    if args.PATH is not None and args.path is not None:
        parser.error("PATH conflicts with --path")
    args.pattern = args.regex if args.regex is not None else args.REGEX
    args.directory = args.path if args.path is not None else args.PATH
    return args


def check_directory(path: str) -> str | None:
    """Return a diagnostic if *path* cannot be followed, else None."""
    if not os.path.exists(path):
        return f"{path}: no such directory"
    if not os.path.isdir(path):
        return f"{path}: supplied path is not a directory"
    try:
        os.listdir(path)
    except OSError as e:
        return f"{path}: cannot read directory: {e.strerror}"
    return None


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [DIRTAIL] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigError as e:
        print(f"dirtail: {e}", file=sys.stderr)
        return EX_ERR
    logging.getLogger().setLevel(config.log_level)

    try:
        matcher = PathMatcher(config.pattern)
    except PatternError as e:
        print(f"dirtail: {e}", file=sys.stderr)
        return EX_ERR

    problem = check_directory(config.directory)
    if problem:
        print(f"dirtail: {problem}", file=sys.stderr)
        return EX_NOINPUT

    shutdown_event = threading.Event()

    def _signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("Config: directory=%s, pattern=%r, poll_interval=%.2f, order=%s",
                config.directory, config.pattern, config.poll_interval, config.order)

    watcher = subscribe(config.directory, config.queue_size, config.force_polling, shutdown_event)
    follower = DirectoryFollower(
        config.directory,
        matcher,
        watcher,
        TailReader(config.max_open_files),
        OutputMultiplexer(sys.stdout.buffer),
        order=config.order,
        poll_interval=config.poll_interval,
        rescan_interval=config.rescan_interval,
        lines=config.lines,
        shutdown_event=shutdown_event,
    )
    follower.run()
    return EX_OK


def main():
    try:
        sys.exit(run())
    except BrokenPipeError:
        # Reader of our stdout went away (e.g. piped into head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(EX_OK)


if __name__ == "__main__":
    main()
