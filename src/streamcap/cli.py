"""Command line entry point.

Usage:
    python -m streamcap [options] -- command [args...]

Runs the command, passing its output through (or capturing it) according to
the routing options, and exits with the child's exit status:

- 124 if --timeout expired and the child was killed
- 127 if the child could not be started
- 128+N if the child was killed by signal N
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from . import __version__
from .capturer import Capturer
from .config import Config, get_config
from .errors import LaunchError, ProcessTimeoutError
from .options import CaptureOptions, Channels, RoutingPolicy

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILED = 127


def _parse_channels(value: str) -> Channels:
    try:
        return Channels.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _parse_env(value: str) -> tuple[str, str]:
    name, sep, content = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name, content


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamcap",
        description="Run a command and capture or pass through its stdout/stderr.",
    )
    parser.add_argument(
        "--capture",
        type=_parse_channels,
        default=None,
        metavar="{out,err,all,none}",
        help="Channels to capture (default: none, or all with --json)",
    )
    parser.add_argument(
        "--passthrough",
        type=_parse_channels,
        default=None,
        metavar="{out,err,all,none}",
        help="Channels to pass through (default: all, or none with --json)",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Seconds before the child is killed")
    parser.add_argument("--json", action="store_true", help="Print a JSON summary of the run")
    parser.add_argument("--cwd", default=None, help="Working directory for the child")
    parser.add_argument(
        "--env",
        type=_parse_env,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Environment override (repeatable)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run, after --")
    return parser


def setup_logging(config: Config) -> None:
    """Configure handlers for the command line tool.

    The library itself never installs handlers.
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s %(threadName)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("streamcap").setLevel(log_level)


def _exit_status(code: int) -> int:
    return 128 - code if code < 0 else code


def _summary(response, policy: RoutingPolicy) -> dict:
    def text(data: bytes | None) -> str | None:
        return data.decode("utf-8", errors="replace") if data is not None else None

    return {
        "exit_code": response.exit_code,
        "policy": str(policy),
        "out": text(response.out),
        "err": text(response.err),
    }


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line tool and return its exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    config = get_config()
    setup_logging(config)

    capture = args.capture if args.capture is not None else (Channels.ALL if args.json else Channels.NONE)
    passthrough = args.passthrough
    if passthrough is None:
        passthrough = Channels.NONE if args.json else Channels.ALL
    policy = RoutingPolicy(capture=capture, passthrough=passthrough)

    options = CaptureOptions(
        environment=dict(args.env) if args.env else None,
        working_directory=args.cwd,
        policy=policy,
    )
    capturer = Capturer(config=config)

    try:
        response = capturer.wait_bytes(command, options, timeout=args.timeout)
    except LaunchError as e:
        print(f"streamcap: {e}", file=sys.stderr)
        return EXIT_LAUNCH_FAILED
    except ProcessTimeoutError as e:
        print(f"streamcap: {e}", file=sys.stderr)
        return EXIT_TIMEOUT

    if args.json:
        print(json.dumps(_summary(response, policy), ensure_ascii=False))
    return _exit_status(response.exit_code)
