"""CLI entry point for the RCON client."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from importlib.metadata import PackageNotFoundError, version

from srcrcon.client import DEFAULT_PORT, RconClient
from srcrcon.config import (
    AppConfig,
    ConfigError,
    ServerConfig,
    load_config,
)
from srcrcon.errors import RconError
from srcrcon.repl import run_repl

DEFAULT_HOST = "127.0.0.1"
DEFAULT_TIMEOUT = 10.0
_LOG_FORMAT = "%(asctime)s:%(levelname)s:%(name)s: %(message)s"


def _version() -> str:
    try:
        return version("source-rcon")
    except PackageNotFoundError:
        return "unknown"


def _positive_float(value: str) -> float:
    """Parse a strictly positive number of seconds."""
    try:
        seconds = float(value)
    except ValueError as e:
        msg = f"invalid number: {value!r}"
        raise argparse.ArgumentTypeError(msg) from e
    if seconds <= 0:
        msg = f"must be greater than 0, got {value}"
        raise argparse.ArgumentTypeError(msg)
    return seconds


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="srcrcon",
        description="Source RCON client for game servers",
    )
    parser.add_argument(
        "server",
        nargs="?",
        help="Server name (from config) or host:port (e.g., 10.0.0.5:27015)",
    )
    parser.add_argument(
        "-H",
        "--host",
        help="Host where the game server is running (overrides server)",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        help="Port the server listens on for RCON (overrides server)",
    )
    parser.add_argument(
        "-s",
        "--password",
        help="RCON password (overrides configured credentials)",
    )
    parser.add_argument(
        "-c",
        "--command",
        help="Execute a single command and exit (non-interactive mode)",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        help=f"Socket timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Log protocol activity to stderr",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_version()}",
    )
    return parser


def resolve_server(
    server_arg: str | None, config: AppConfig
) -> tuple[str, ServerConfig]:
    """Resolve the target server from CLI arg or config defaults.

    Returns (display_name, ServerConfig).
    """
    if server_arg is not None:
        # Check if it's a configured server name
        if server_arg in config.servers:
            return server_arg, config.servers[server_arg]

        # Try parsing as host:port
        if ":" in server_arg:
            host, port_str = server_arg.rsplit(":", 1)
            try:
                port = int(port_str)
                return server_arg, ServerConfig(name=server_arg, host=host, port=port)
            except ValueError:
                pass

        # Treat as hostname with default port
        return server_arg, ServerConfig(name=server_arg, host=server_arg)

    if config.default_server and config.default_server in config.servers:
        key = config.default_server
        return key, config.servers[key]

    address = f"{DEFAULT_HOST}:{DEFAULT_PORT}"
    return address, ServerConfig(name=address, host=DEFAULT_HOST)


def apply_overrides(server: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Apply -H/-p/-s/--timeout flags on top of the resolved server."""
    changes: dict[str, object] = {}
    if args.host is not None:
        changes["host"] = args.host
    if args.port is not None:
        changes["port"] = args.port
    if args.password is not None:
        changes["password"] = args.password
        changes["password_env"] = None
    if args.timeout is not None:
        changes["timeout"] = args.timeout
    return dataclasses.replace(server, **changes)


def setup_logging(*, verbose: bool) -> None:
    """Attach a stderr handler to the package logger."""
    log = logging.getLogger("srcrcon")
    log.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if log.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    log.addHandler(handler)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    display_name, server = resolve_server(args.server, config)
    server = apply_overrides(server, args)

    client = RconClient(
        server.host,
        server.port,
        password=server.resolve_password(),
        timeout=DEFAULT_TIMEOUT if server.timeout is None else server.timeout,
    )

    # Non-interactive mode: run single command and exit
    if args.command:
        try:
            with client:
                response = client.exec_command(args.command)
        except RconError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        if response:
            print(response.decode("utf-8", errors="replace"))
        return

    # Interactive mode
    print(f"Session for {display_name} ({server.host}:{server.port})")
    print("Type a server command, 'reconnect' to redial, Ctrl+D or 'exit' to quit.\n")
    try:
        run_repl(client)
    finally:
        try:
            client.close()
        except RconError as e:
            print(f"Error: {e}", file=sys.stderr)
