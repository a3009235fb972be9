"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The connection registry and broadcast engine, plus the socket plumbing
underneath them.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Creates the listening socket (SO_REUSEADDR)                      │
    │  • Runs the accept() loop                                           │
    │  • Wraps each client socket in a Connection                         │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Buffered handshake read, chunked recv()                          │
    │  • Locked partial-write loop                                        │
    │  • Idempotent close that unblocks a pending recv()                  │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                       SESSION REGISTRY                               │
    │  • Bounded set of live ClientHandles                                │
    │  • Atomic check-and-insert admission                                │
    │  • Snapshots for lock-free fan-out, drain for shutdown              │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         BROADCASTER                                  │
    │  • Copies one line to every other session                           │
    │  • Failures are per recipient, never fatal to the broadcast         │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer, StartupError
from .connection import Connection, ConnectionState, ClientHandle
from .registry import SessionRegistry, Admission, ConnectionTracker
from .broadcast import Broadcaster

__all__ = [
    "SocketServer",     # Listening socket and accept loop
    "StartupError",     # Fatal socket/bind/listen failure
    "Connection",       # Wrapper for a client socket
    "ConnectionState",  # OPEN / CLOSED
    "ClientHandle",     # Connection + display name
    "SessionRegistry",  # Bounded, thread-safe set of live sessions
    "Admission",        # try_admit() outcome
    "ConnectionTracker",  # Every open connection, for shutdown
    "Broadcaster",      # Fan-out engine
]
