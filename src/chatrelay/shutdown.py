"""
=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    SHUTDOWN SEQUENCE                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. broadcast_all("Server is shutting down.")                      │
    │   2. registry.drain_all()     empty AND closed to new admissions    │
    │   3. close every drained handle                                     │
    │         └── each session's blocked recv() returns, and the          │
    │             session tears itself down on its own thread             │
    │   4. close every tracked connection                                 │
    │         └── clients still in the handshake, never registered       │
    │   5. history.close()                                                │
    │   6. listener.shutdown()      accept loop exits, run() returns      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Step 2 is what makes shutdown safe next to in-flight sessions: a session
that finishes its handshake after the drain gets SHUTTING_DOWN from the
registry instead of a slot, so no session can end up registered against
a server that has already closed everything.

Triggers:
    - OperatorConsole: the operator presses Enter, or stdin closes
    - SIGINT / SIGTERM: the listener stops, the server's cleanup triggers
    - ChatServer.stop(): programmatic (tests, embedding)

All of them end up in ShutdownController.trigger(), which runs once.

=============================================================================
"""

import sys
import logging
import threading
from typing import Optional, TextIO

from .core.broadcast import Broadcaster
from .core.registry import SessionRegistry, ConnectionTracker
from .core.socket_server import SocketServer
from .history import HistoryLogger
from .protocol import SHUTDOWN_NOTICE


logger = logging.getLogger(__name__)


class ShutdownController:
    """Runs the shutdown sequence exactly once."""

    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        history: HistoryLogger,
        listener: SocketServer,
        connections: Optional[ConnectionTracker] = None,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.history = history
        self.listener = listener
        self.connections = connections

        self._lock = threading.Lock()
        self._triggered = False
        self._done = threading.Event()

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the shutdown sequence has completed."""
        return self._done.wait(timeout)

    def trigger(self) -> bool:
        """
        Shut the server down. Thread-safe and idempotent.

        Returns:
            True if this call ran the sequence, False if it had already run
            (or is running on another thread).
        """
        with self._lock:
            if self._triggered:
                return False
            self._triggered = True

        logger.info("Shutting down chat server...")

        try:
            notified = self.broadcaster.broadcast_all(SHUTDOWN_NOTICE)

            handles = self.registry.drain_all()
            for handle in handles:
                handle.close()
            logger.info(f"Closed {len(handles)} sessions ({notified} notified)")

            # Connections still in the handshake were never registered
            if self.connections is not None:
                pending = self.connections.close_all()
                logger.debug(f"Closed {pending} remaining connections")

            self.history.close()
        finally:
            self.listener.shutdown()
            self._done.set()

        return True


class OperatorConsole(threading.Thread):
    """
    Waits for the operator to press Enter, then triggers shutdown.

    End of file (or a read error) on the console also shuts the server
    down, the same as Enter. A server that must outlive its stdin (a
    detached service, stdin from /dev/null) runs with console=False.
    """

    PROMPT = "Press Enter to shut down the server gracefully..."

    def __init__(self, controller: ShutdownController, stream: Optional[TextIO] = None):
        super().__init__(name="OperatorConsole", daemon=True)
        self.controller = controller
        self.stream = stream

    def run(self):
        stream = self.stream or sys.stdin
        if stream is None:
            logger.warning("No operator console available, shutting down")
            self.controller.trigger()
            return

        print(self.PROMPT, flush=True)

        try:
            line = stream.readline()
        except (OSError, ValueError) as e:
            # ValueError: stream already closed
            logger.warning(f"Operator console unavailable: {e}")
            line = ""

        if not line:
            logger.info("Operator console closed, shutting down")

        self.controller.trigger()
