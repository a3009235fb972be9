"""
=============================================================================
CHATRELAY - A MULTI-CLIENT TCP CHAT RELAY
=============================================================================

Clients connect over plain TCP, send a display name as their first line,
then chat. Every line a client sends is relayed to every other client as
"[name] text", joins and leaves are announced, and everything is appended
to a history file.

=============================================================================
PROJECT STRUCTURE
=============================================================================

    chatrelay/
    ├── __init__.py          # Package exports (you are here)
    ├── __main__.py          # CLI entry point (python -m chatrelay)
    ├── config.py            # Server configuration
    ├── server.py            # Main server orchestrator
    ├── session.py           # Per-connection state machine
    ├── shutdown.py          # Graceful shutdown + operator console
    ├── protocol.py          # Wire protocol lines
    ├── history.py           # Append-only chat history
    ├── activity.py          # Per-session activity log
    └── core/                # Connection registry and broadcast engine
        ├── socket_server.py # Listening socket, accept loop
        ├── connection.py    # Client socket wrapper, ClientHandle
        ├── registry.py      # Bounded, thread-safe session registry
        └── broadcast.py     # Fan-out to all other sessions

=============================================================================
QUICK START
=============================================================================

    # Server
    python -m chatrelay

    # Clients (any line-oriented TCP client works)
    nc localhost 4267
    alice                 ← first line is your name
    hello everyone        ← everyone else sees "[alice] hello everyone"

    # Embedded
    from chatrelay import ChatServer, ServerConfig

    server = ChatServer(ServerConfig(port=5000, max_clients=16))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .server import ChatServer, create_server
from .config import ServerConfig
from .core import StartupError

__all__ = ["ChatServer", "create_server", "ServerConfig", "StartupError", "__version__"]
