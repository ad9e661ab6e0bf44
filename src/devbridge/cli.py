"""Command-line interface for the devbridge daemon.

Provides the main entry point for serving the gateway, plus two
offline helpers for inspecting the command allowlist.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="devbridge",
        description="Local daemon for remote command execution and coding-agent sessions",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/devbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the WebSocket gateway")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port")
    serve_parser.add_argument(
        "--root", type=Path, default=None,
        help="Project directory commands run in (default: current directory)",
    )

    check_parser = subparsers.add_parser(
        "check", help="Check a command line against the allowlist without running it",
    )
    check_parser.add_argument("command_line", type=str, help="Command line to check, quoted")

    subparsers.add_parser("commands", help="List allowlisted commands")

    return parser.parse_args(argv)


def _check(command_line: str) -> int:
    from devbridge.security.allowlist import validate

    result = validate(command_line)
    if result.allowed:
        print("allowed")
        return 0
    print(f"denied: {result.reason}")
    return 1


def _commands() -> int:
    from devbridge.security.allowlist import command_descriptions

    descriptions = command_descriptions()
    width = max(len(name) for name in descriptions)
    for name, description in descriptions.items():
        print(f"  {name:<{width}}  {description}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the devbridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 0

    if args.command == "check":
        return _check(args.command_line)

    if args.command == "commands":
        return _commands()

    from devbridge.config.settings import load_settings
    from devbridge.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        if args.host is not None:
            settings.server.host = args.host
        if args.port is not None:
            settings.server.port = args.port
        if args.root is not None:
            settings.server.root = args.root.resolve()
        logger.info(
            "Starting gateway on %s:%d for %s",
            settings.server.host, settings.server.port, settings.server.root,
        )
        from devbridge.endpoint.server import run

        run(settings)

    return 0


if __name__ == "__main__":
    sys.exit(main())
