"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the chat relay.

The relay has very few knobs. Everything has a working default, so the
server starts with no flags and no environment at all:

    python -m chatrelay          # 0.0.0.0:4267, 8 clients, ./chat_history

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m chatrelay --port 5000                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CHAT_PORT=5000 python -m chatrelay                        │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SIZES AND LIMITS
=============================================================================

Three sizes bound every line the server produces:

    buffer_size      How much one recv() may return. A single chat message
                     is one recv() chunk, so this is the largest payload
                     the server ever looks at.

    max_line_size    The largest relayed line, header included:

                         [alice] hello world\\n
                         └──────┘└─────────┘└┘
                          header   payload   newline

                     Payloads that do not fit are truncated, never rejected.

    max_name_length  The largest display name, in bytes.

=============================================================================
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional


LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the chat relay server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    SESSION SETTINGS
    - max_clients, max_line_size, max_name_length

    HISTORY
    - history_path, history_fsync

    OPERATOR
    - console, handle_signals

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to. All interfaces by default, since chat
    clients connect from other machines on the network.
    """

    port: int = 4267
    """
    The TCP port to listen on. 0 lets the OS pick a free port (tests).
    """

    backlog: int = 8
    """
    Maximum number of connections queued by the kernel before accept().
    """

    buffer_size: int = 1024
    """
    Bytes requested per recv(). One chunk becomes one relayed line.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SESSION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_clients: int = 8
    """
    Capacity of the session registry. Connection number max_clients + 1
    is told "Server full." and disconnected.
    """

    max_line_size: int = 1024 + 80
    """
    Largest relayed line in bytes, including "[name] " and the newline.
    """

    max_name_length: int = 63
    """
    Largest display name in bytes.
    """

    # ─────────────────────────────────────────────────────────────────────
    # HISTORY
    # ─────────────────────────────────────────────────────────────────────

    history_path: Optional[str] = "chat_history"
    """
    Append-only history file. None disables history entirely.
    """

    history_fsync: bool = True
    """
    fsync() after every line so each line is on disk before append()
    returns.
    """

    # ─────────────────────────────────────────────────────────────────────
    # OPERATOR
    # ─────────────────────────────────────────────────────────────────────

    console: bool = True
    """
    Watch stdin for an Enter keystroke (or end of file) that shuts the server
    down. Turn off for a detached service.
    """

    handle_signals: bool = True
    """
    Install SIGINT/SIGTERM handlers (only takes effect on the main thread).
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    log_format: str = "text"
    """
    Format of the session activity log: 'text' or 'json'.
    """

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHAT_HOST         Bind address (default: 0.0.0.0)
        CHAT_PORT         Port (default: 4267)
        CHAT_MAX_CLIENTS  Registry capacity (default: 8)
        CHAT_HISTORY      History file (default: chat_history, "" disables)
        CHAT_LOG_LEVEL    Logging level (default: INFO)
        CHAT_LOG_FORMAT   Activity log format (default: text)

        =====================================================================
        """
        max_clients = int(os.getenv("CHAT_MAX_CLIENTS", "8"))
        history = os.getenv("CHAT_HISTORY", "chat_history")

        return cls(
            host=os.getenv("CHAT_HOST", "0.0.0.0"),
            port=int(os.getenv("CHAT_PORT", "4267")),
            max_clients=max_clients,
            backlog=max_clients,
            history_path=history or None,
            log_level=os.getenv("CHAT_LOG_LEVEL", "INFO"),
            log_format=os.getenv("CHAT_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called when the server is constructed, so a bad value fails before
        any socket exists.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_clients < 1:
            raise ValueError("max_clients must be >= 1")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.max_name_length < 1:
            raise ValueError("max_name_length must be >= 1")

        # "[" + name + "] " + at least one payload byte + "\n"
        if self.max_line_size < self.max_name_length + 5:
            raise ValueError("max_line_size must be >= max_name_length + 5")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log_level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Type-safe configuration with a dataclass
# 2. Environment variable support (CHAT_*)
# 3. Validation at startup (fail-fast)
# 4. Defaults that match the classic relay: port 4267, 8 clients
# =============================================================================
