"""
=============================================================================
CHAT RELAY CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:4267, 8 clients, ./chat_history)
    python -m chatrelay

    # Custom port and capacity
    python -m chatrelay --port 5000 --max-clients 16

    # No history file, no console (running as a service)
    python -m chatrelay --no-history --no-console

No flag is required. Defaults come from ServerConfig.from_env(), so the
CHAT_* environment variables apply unless a flag overrides them.

Exit status:
    0   graceful shutdown
    1   startup failure (socket, bind or listen), or invalid configuration

=============================================================================
"""

import argparse
import sys

from . import __version__
from .server import ChatServer
from .config import ServerConfig, LOG_FORMATS
from .core import StartupError


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="Multi-client TCP chat relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m chatrelay                       # Run with defaults
  python -m chatrelay --port 5000           # Custom port
  python -m chatrelay --max-clients 16      # Larger room
  python -m chatrelay --no-console          # Stop with SIGINT/SIGTERM only
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    parser.add_argument(
        "--max-clients", "-m",
        type=int,
        default=defaults.max_clients,
        help=f"Maximum concurrent chat sessions (default: {defaults.max_clients})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # HISTORY ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    history = parser.add_mutually_exclusive_group()
    history.add_argument(
        "--history",
        default=defaults.history_path,
        help=f"Chat history file (default: {defaults.history_path})"
    )
    history.add_argument(
        "--no-history",
        action="store_true",
        help="Do not write a history file"
    )

    # ─────────────────────────────────────────────────────────────────────
    # OPERATOR / LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--no-console",
        action="store_true",
        help="Do not watch stdin; Enter or end of file on stdin shuts the server down"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level})"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help=f"Session activity log format (default: {defaults.log_format})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"chatrelay {__version__}"
    )

    return parser


def main(argv=None) -> int:
    """CLI entry point. Returns the process exit status."""
    try:
        defaults = ServerConfig.from_env()
    except ValueError as e:
        # e.g. CHAT_PORT=abc
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    args = build_parser(defaults).parse_args(argv)

    config = ServerConfig(
        host=args.host,
        port=args.port,
        max_clients=args.max_clients,
        backlog=args.max_clients,
        history_path=None if args.no_history else args.history,
        console=not args.no_console,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    try:
        server = ChatServer(config)
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except StartupError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
