"""
=============================================================================
SESSION LIFECYCLE
=============================================================================

One Session runs on its own thread for every accepted connection and owns
that connection until it is closed.

=============================================================================
STATE MACHINE
=============================================================================

    ┌───────────┐  handshake line,        ┌──────────┐
    │ ADMITTING │ ──────────────────────► │  ACTIVE  │
    └─────┬─────┘  try_admit() admitted   └────┬─────┘
          │                                    │ recv() == b""
          │ no handshake line                  │ or read error
          │ registry full  ("Server full.")    ▼
          │ shutting down                 ┌──────────┐
          │                               │ LEAVING  │
          │                               └────┬─────┘
          │                                    │
          │         ┌──────────┐               │
          └───────► │  CLOSED  │ ◄─────────────┘
                    └──────────┘

    ADMITTING   Read the display name; ask the registry for a slot.
    ACTIVE      Announce "[name] joined", then relay every received chunk
                as "[name] <text>" to everyone else.
    LEAVING     Announce "[name] left", leave the registry.
    CLOSED      Close the socket. Reached on EVERY exit path, including
                exceptions, through try/finally.

A rejected connection goes straight from ADMITTING to CLOSED: it was never
registered, so it has nothing to announce and nothing to remove.

=============================================================================
FORCED SHUTDOWN
=============================================================================

Nothing ever kills a session thread. Shutdown closes the session's socket,
the blocked recv() returns, and the session walks its own LEAVING path
against an already-drained registry (the leave goes to nobody and the
removal is a no-op).

=============================================================================
"""

import time
import logging
import threading
from enum import Enum
from typing import Optional

from . import activity
from .config import ServerConfig
from .core.connection import Connection, ClientHandle
from .core.registry import SessionRegistry, Admission
from .core.broadcast import Broadcaster
from .history import HistoryLogger
from .protocol import (
    SERVER_FULL, SHUTDOWN_NOTICE,
    parse_display_name, join_line, leave_line, relay_line,
)


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""
    ADMITTING = "admitting"
    ACTIVE = "active"
    LEAVING = "leaving"
    CLOSED = "closed"


# Legal transitions; anything else is a bug
_TRANSITIONS = {
    SessionState.ADMITTING: {SessionState.ACTIVE, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.LEAVING},
    SessionState.LEAVING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class Session:
    """
    Control flow for one client connection.

    Usage:
        session = Session(conn, registry, broadcaster, history, config)
        threading.Thread(target=session.run, daemon=True).start()
    """

    def __init__(
        self,
        connection: Connection,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        history: HistoryLogger,
        config: Optional[ServerConfig] = None,
    ):
        self.connection = connection
        self.registry = registry
        self.broadcaster = broadcaster
        self.history = history
        self.config = config or ServerConfig()

        self.handle: Optional[ClientHandle] = None
        self.outcome = activity.NO_HANDSHAKE

        # Stats for the activity log
        self.messages = 0
        self.bytes_received = 0

        self._state = SessionState.ADMITTING
        self._closed = threading.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def name(self) -> Optional[str]:
        return self.handle.name if self.handle else None

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until the session reaches CLOSED."""
        return self._closed.wait(timeout)

    def _transition(self, new_state: SessionState):
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal session transition {self._state.name} -> {new_state.name}")
        self._state = new_state

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def run(self):
        """Run the whole lifecycle. Returns when the session is CLOSED."""
        try:
            handle = self._admit()
            if handle is None:
                return

            self._transition(SessionState.ACTIVE)
            try:
                self._relay(handle)
            finally:
                self._transition(SessionState.LEAVING)
                self._leave(handle)
        except Exception as e:
            logger.exception(f"[{self.connection.id}] Session error: {e}")
        finally:
            self.connection.close()
            self._transition(SessionState.CLOSED)
            self._closed.set()
            self._log_activity()

    # =========================================================================
    # ADMITTING
    # =========================================================================

    def _admit(self) -> Optional[ClientHandle]:
        """
        Handshake and registration.

        Returns:
            The registered handle, or None if the session must close now.
        """
        conn = self.connection

        line = conn.read_line(self.config.max_name_length)
        if line is None:
            logger.debug(f"[{conn.id}] {conn.peer} left before sending a name")
            return None

        name = parse_display_name(line, conn.peer, self.config.max_name_length)
        handle = ClientHandle(connection=conn, name=name)
        self.handle = handle

        result = self.registry.try_admit(handle)

        if result is Admission.AT_CAPACITY:
            logger.warning(f"[{conn.id}] Server full, rejecting {name!r} from {conn.peer}")
            self.outcome = activity.REJECTED
            conn.send_all(SERVER_FULL)
            return None

        if result is Admission.SHUTTING_DOWN:
            self.outcome = activity.SHUTTING_DOWN
            conn.send_all(SHUTDOWN_NOTICE)
            return None

        logger.info(f"[{conn.id}] {name} joined from {conn.peer} "
                    f"({len(self.registry)}/{self.registry.capacity})")
        return handle

    # =========================================================================
    # ACTIVE
    # =========================================================================

    def _relay(self, handle: ClientHandle):
        """Announce the join, then relay until the client goes away."""
        self._publish(handle, join_line(handle.name))

        while True:
            try:
                data = self.connection.recv()
            except OSError as e:
                logger.debug(f"[{handle.id}] Read failed: {e}")
                break

            if not data:
                break  # Orderly close (or closed by shutdown)

            self.messages += 1
            self.bytes_received += len(data)
            self._publish(handle, relay_line(handle.name, data, self.config.max_line_size))

    # =========================================================================
    # LEAVING
    # =========================================================================

    def _leave(self, handle: ClientHandle):
        self.outcome = activity.LEFT
        self._publish(handle, leave_line(handle.name))
        self.registry.remove(handle.id)
        logger.info(f"[{handle.id}] {handle.name} left")

    def _publish(self, handle: ClientHandle, line: bytes):
        """Broadcast to everyone but this session, then record in history."""
        self.broadcaster.broadcast_except(handle.id, line)
        self.history.append(line)

    def _log_activity(self):
        conn = self.connection
        record = activity.SessionRecord(
            session_id=conn.id,
            name=self.name or "",
            client=conn.peer,
            outcome=self.outcome,
            messages=self.messages,
            bytes_received=self.bytes_received,
            duration_ms=conn.age * 1000,
        )
        activity.log_session(record, self.config.log_format)
