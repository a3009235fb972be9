"""
=============================================================================
SESSION REGISTRY
=============================================================================

The registry is the set of live, admitted chat sessions. It is the only
piece of shared state in the server whose correctness depends on a lock.

=============================================================================
INVARIANTS
=============================================================================

    1. No identity appears twice.
    2. Membership changes only while holding the lock.
    3. len(registry) never exceeds capacity.

=============================================================================
THE CHECK-THEN-ACT RACE
=============================================================================

Two sessions admitting themselves at the same time with one slot left:

    WRONG (check and insert under separate lock acquisitions):

        Thread A                    Thread B
        ────────                    ────────
        len() == 7  ✓ room
                                    len() == 7  ✓ room
        insert → 8
                                    insert → 9   ✗ capacity violated

    RIGHT (try_admit): check and insert under ONE acquisition. Whoever
    takes the lock second sees 8 and is rejected without being inserted.

A rejected connection is never inserted, not even briefly, so a concurrent
broadcast can never deliver to it.

=============================================================================
SNAPSHOTS
=============================================================================

Broadcasting writes to sockets, and a socket write can block for as long
as the slowest client takes to drain its receive window. Holding the lock
for that long would stall every join and leave. snapshot() copies the
members under the lock and returns the copy; the caller does its I/O
after the lock is released.

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Dict, List, Set

from .connection import Connection, ClientHandle


logger = logging.getLogger(__name__)


class Admission(Enum):
    """Outcome of SessionRegistry.try_admit()."""
    ADMITTED = "admitted"
    AT_CAPACITY = "at_capacity"
    SHUTTING_DOWN = "shutting_down"

    @property
    def admitted(self) -> bool:
        return self is Admission.ADMITTED


class SessionRegistry:
    """
    Thread-safe, bounded registry of live sessions keyed by connection id.

    Usage:
        registry = SessionRegistry(capacity=8)

        if registry.try_admit(handle).admitted:
            ...
            registry.remove(handle.id)
    """

    def __init__(self, capacity: int = 8):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity

        # dict keeps insertion order, so snapshots list members by join order
        self._members: Dict[int, ClientHandle] = {}
        self._lock = threading.Lock()

        # Set by drain_all(); no admissions after that
        self._closed = False

    def try_admit(self, handle: ClientHandle) -> Admission:
        """
        Atomically check capacity and insert.

        Returns:
            Admission.ADMITTED if the handle is now registered,
            Admission.AT_CAPACITY if the registry is full,
            Admission.SHUTTING_DOWN if drain_all() has already run.
            Only ADMITTED mutates the registry.

        Raises:
            ValueError: If a handle with the same id is already registered.
        """
        with self._lock:
            if self._closed:
                return Admission.SHUTTING_DOWN

            if handle.id in self._members:
                raise ValueError(f"Session {handle.id} is already registered")

            if len(self._members) >= self.capacity:
                return Admission.AT_CAPACITY

            self._members[handle.id] = handle
            size = len(self._members)

        logger.debug(f"Admitted session {handle.id} ({size}/{self.capacity})")
        return Admission.ADMITTED

    def remove(self, identity: int) -> bool:
        """
        Remove a session. Idempotent.

        A session can be evicted by its own teardown and by a forced
        shutdown; whichever runs second finds nothing and does nothing.

        Returns:
            True if the session was present.
        """
        with self._lock:
            removed = self._members.pop(identity, None) is not None

        if removed:
            logger.debug(f"Removed session {identity}")
        return removed

    def snapshot(self) -> List[ClientHandle]:
        """Copy of the current members, in admission order."""
        with self._lock:
            return list(self._members.values())

    def drain_all(self) -> List[ClientHandle]:
        """
        Empty the registry and close it to further admissions.

        Used only by shutdown. Emptying and closing happen under the same
        lock acquisition, so nothing can be admitted between the drain and
        the close.

        Returns:
            Everything that was registered, in admission order.
        """
        with self._lock:
            self._closed = True
            drained = list(self._members.values())
            self._members.clear()

        logger.debug(f"Drained {len(drained)} sessions")
        return drained

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, identity: int) -> bool:
        with self._lock:
            return identity in self._members


class ConnectionTracker:
    """
    Every open client connection, admitted or not.

    The registry only knows sessions that finished their handshake. A client
    that connects and never sends its name sits in read_line() outside the
    registry, so shutdown closes it through this set instead.

    Once close_all() has run, add() refuses new connections: one accepted
    after shutdown began is closed by the caller instead of being tracked.
    """

    def __init__(self):
        self._connections: Set[Connection] = set()
        self._lock = threading.Lock()
        self._closed = False

    def add(self, conn: Connection) -> bool:
        """Track `conn`. Returns False if shutdown has already closed the set."""
        with self._lock:
            if self._closed:
                return False
            self._connections.add(conn)
            return True

    def discard(self, conn: Connection):
        with self._lock:
            self._connections.discard(conn)

    def close_all(self) -> int:
        """Close every tracked connection and refuse new ones."""
        with self._lock:
            self._closed = True
            connections = list(self._connections)
            self._connections.clear()

        # Outside the lock: close() does socket I/O
        for conn in connections:
            conn.close()

        if connections:
            logger.debug(f"Closed {len(connections)} open connections")
        return len(connections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
