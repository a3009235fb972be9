"""
=============================================================================
MAIN CHAT SERVER
=============================================================================

The orchestrator that wires the components together and owns them.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CHAT SERVER ARCHITECTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   ChatServer    │                          │
    │                        │  (Orchestrator) │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │      ┌──────────────┬───────────┼───────────┬──────────────┐        │
    │      ▼              ▼           ▼           ▼              ▼        │
    │ ┌──────────┐ ┌────────────┐ ┌─────────┐ ┌─────────┐ ┌───────────┐  │
    │ │ Socket   │ │ Session    │ │Broadcast│ │ History │ │ Shutdown  │  │
    │ │ Server   │ │ Registry   │ │         │ │ Logger  │ │Controller │  │
    │ └────┬─────┘ └────────────┘ └─────────┘ └─────────┘ └───────────┘  │
    │      │ accept()                                                     │
    │      ▼                                                              │
    │ ┌──────────┐   one thread per connection                            │
    │ │ Session  │   ADMITTING → ACTIVE → LEAVING → CLOSED                │
    │ └──────────┘                                                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There is no global state: the registry, broadcaster and history logger are
created here and passed explicitly to every session and to the shutdown
controller.

=============================================================================
THREADS
=============================================================================

    main thread        run(): accept loop
    session-<id>       one per accepted connection (daemon)
    OperatorConsole    waits for Enter (daemon, optional)

Session threads are never joined. Each owns its connection and closes it on
every exit path; shutdown only closes sockets, it never stops a thread.

=============================================================================
"""

import logging
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, SessionRegistry, ConnectionTracker, Broadcaster
from .history import HistoryLogger
from .session import Session
from .shutdown import ShutdownController, OperatorConsole


logger = logging.getLogger(__name__)


class ChatServer:
    """
    Multi-client TCP chat relay.

    Usage:
        server = ChatServer(ServerConfig(port=4267))
        server.run()   # Blocks until Enter, SIGINT/SIGTERM or stop()
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        """
        Args:
            config: Server configuration. Defaults reproduce the classic
                    relay (port 4267, 8 clients, ./chat_history).

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.registry = SessionRegistry(capacity=self.config.max_clients)
        self.broadcaster = Broadcaster(self.registry)
        self.history = HistoryLogger(self.config.history_path, fsync=self.config.history_fsync)
        self.connections = ConnectionTracker()

        self._socket_server = SocketServer(self.config)
        self._shutdown = ShutdownController(
            registry=self.registry,
            broadcaster=self.broadcaster,
            history=self.history,
            listener=self._socket_server,
            connections=self.connections,
        )

        self._console: Optional[OperatorConsole] = None
        self._ready = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """The listening address; the real port once the server is ready."""
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._socket_server.is_running

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is accepting connections."""
        return self._ready.wait(timeout)

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start the server (blocking).

        Returns after a graceful shutdown.

        Raises:
            StartupError: If the listening socket cannot be set up.
        """
        self._setup_logging()

        # Fatal if this fails; nothing has started yet
        self._socket_server.listen()

        # Best effort; a failure only disables history
        self.history.open()

        host, port = self.address
        logger.info(f"Chat server on {host}:{port}, capacity {self.config.max_clients}")
        print(f"Chat server listening on {port}")

        if self.config.console:
            self._console = OperatorConsole(self._shutdown)
            self._console.start()

        self._ready.set()

        try:
            self._socket_server.serve(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            # No-op if the console already triggered; then wait for it
            self._shutdown.trigger()
            self._shutdown.wait()
            self._ready.clear()

        print("Server shut down gracefully.")

    def stop(self) -> bool:
        """
        Trigger graceful shutdown from any thread.

        Returns:
            True if this call performed the shutdown.
        """
        return self._shutdown.trigger()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the shutdown sequence has completed."""
        return self._shutdown.wait(timeout)

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("chatrelay").setLevel(level)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Start a session for a new connection (called by the accept loop).

        Fire-and-forget: the session thread owns the connection from here.
        The connection stays tracked until the session ends, so shutdown can
        close it even if it never finishes the handshake.
        """
        if not self.connections.add(conn):
            # Accepted while shutdown was already closing connections
            conn.close()
            return

        session = Session(
            connection=conn,
            registry=self.registry,
            broadcaster=self.broadcaster,
            history=self.history,
            config=self.config,
        )

        thread = threading.Thread(
            target=self._run_session,
            args=(session,),
            name=f"session-{conn.id}",
            daemon=True,
        )
        thread.start()

    def _run_session(self, session: Session):
        try:
            session.run()
        finally:
            self.connections.discard(session.connection)


def create_server(config: Optional[ServerConfig] = None) -> ChatServer:
    """Factory for ChatServer instances."""
    return ChatServer(config)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Component wiring: config, listener, registry, broadcaster, history
# 2. One daemon thread per connection, owned by its Session
# 3. Lifecycle: listen (fatal on failure), serve, shutdown exactly once
# =============================================================================
