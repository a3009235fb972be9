"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

The listener: owns the listening socket and the accept loop. Every
accepted socket is wrapped in a Connection and handed to a callback that
starts a session for it; the loop itself never waits on a session.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a TCP socket
    2. setsockopt  SO_REUSEADDR, so a restarted server can bind at once
                   instead of failing while the old socket sits in
                   TIME_WAIT
    3. bind()      Reserve host:port
    4. listen()    Start queueing incoming connections
    5. accept()    Loop: one new socket per client
    6. close()     On shutdown

    Steps 1-4 are STARTUP. Any failure there is fatal: StartupError is
    raised before a single session exists.

    Step 5 is the ACCEPT LOOP. Failures there are not fatal:

    ┌─────────────────────────┬───────────────────────────────────────────┐
    │ accept() outcome        │ action                                    │
    ├─────────────────────────┼───────────────────────────────────────────┤
    │ new socket              │ wrap in Connection, hand to callback      │
    │ socket.timeout          │ poll: check the running flag, loop again  │
    │ InterruptedError        │ retry                                     │
    │ other OSError, running  │ log it, keep accepting                    │
    │ any error, stopping     │ leave the loop                            │
    └─────────────────────────┴───────────────────────────────────────────┘

=============================================================================
SIGNAL HANDLING
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (kill, systemd, docker stop) stop the accept
loop. The caller's cleanup then runs the normal graceful shutdown.

Signal handlers can only be installed from the main thread. When the
server runs on any other thread (tests, embedding) they are skipped.

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class StartupError(Exception):
    """The listening socket could not be created, bound or put in listen mode."""


class SocketServer:
    """
    Low-level TCP socket server.

    Usage:
        def handle_connection(conn: Connection):
            threading.Thread(target=..., args=(conn,)).start()

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown()
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._socket_lock = threading.RLock()  # shutdown() may run in a signal handler

        # Set by shutdown(); also used as an interruptible sleep
        self._shutdown_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port once listen() has run."""
        with self._socket_lock:
            if self._socket is not None:
                return self._socket.getsockname()[:2]
        return (self.config.host, self.config.port)

    # =========================================================================
    # STARTUP
    # =========================================================================

    def listen(self):
        """
        Create, configure, bind and listen.

        Raises:
            StartupError: On any socket, bind or listen failure.
        """
        host, port = self.config.host, self.config.port

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise StartupError(f"socket: {e}") from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

            # Poll timeout so the loop notices shutdown within a second
            sock.settimeout(1.0)

            sock.bind((host, port))
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise StartupError(f"bind {host}:{port}: {e}") from e

        try:
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            raise StartupError(f"listen: {e}") from e

        with self._socket_lock:
            self._socket = sock
        self._running = True
        self._shutdown_event.clear()

        logger.info(f"Listening on {self.address[0]}:{self.address[1]}")

    def start(self, connection_handler: Callable[[Connection], None]):
        """listen() then serve(). Blocks until shutdown()."""
        self.listen()
        self.serve(connection_handler)

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def serve(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections until shutdown().

        Args:
            connection_handler: Called with each new Connection. Must not
                                block; it is expected to start a thread.
        """
        if self._socket is None:
            raise RuntimeError("listen() must be called before serve()")

        if self.config.handle_signals:
            self._setup_signals()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._restore_signals()
            self._close_socket()
            logger.info("Listener stopped")

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            sock = self._socket
            if sock is None:
                break

            try:
                client_socket, client_address = sock.accept()
            except socket.timeout:
                continue
            except InterruptedError:
                continue
            except OSError as e:
                if not self._running:
                    break
                logger.error(f"Accept error: {e}")
                # Keep a persistent failure (e.g. EMFILE) from spinning
                self._shutdown_event.wait(0.1)
                continue

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
            )

            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Failed to start session: {e}")
                conn.close()

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self):
        """
        Stop accepting and close the listening socket.

        Idempotent; callable from any thread or a signal handler.
        """
        if self._running:
            logger.info("Shutting down listener...")
        self._running = False
        self._shutdown_event.set()
        self._close_socket()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Wait until shutdown() has been called."""
        return self._shutdown_event.wait(timeout)

    def _close_socket(self):
        with self._socket_lock:
            sock, self._socket = self._socket, None

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
