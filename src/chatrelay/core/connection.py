"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps each accepted client socket with the small amount of
machinery a chat session needs on top of raw send()/recv().

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:
        send("alice\\n")
        send("hello\\n")

    Server might receive ANY of these:
        recv() → "alice\\nhello\\n"   (both combined)
        recv() → "ali"               (partial)
        recv() → "alice\\n"           (exactly one line)

The only place the relay cares about line boundaries is the handshake,
where the first line is the display name. read_line() buffers until it
sees a newline, and anything received past it is kept in the buffer so the
next recv() hands it back instead of losing it.

=============================================================================
TWO THREADS, ONE SOCKET
=============================================================================

A connection is touched by more than one thread:

    ┌──────────────────┐          ┌────────────────────┐
    │ session thread   │  recv()  │                    │
    │ (owner)          │ ───────► │                    │
    └──────────────────┘          │                    │
    ┌──────────────────┐ send_all │    Connection      │
    │ other sessions   │ ───────► │                    │
    │ (broadcasting)   │          │                    │
    └──────────────────┘          │                    │
    ┌──────────────────┐  close() │                    │
    │ shutdown         │ ───────► │                    │
    └──────────────────┘          └────────────────────┘

- Writes take a per-connection lock, so two broadcasts never interleave
  their bytes inside one recipient's stream.
- close() is idempotent and guarded by its own lock.
- close() calls shutdown(SHUT_RDWR) first. A bare close() does not wake a
  thread blocked in recv() on Linux; shutdown() does, and the blocked
  recv() returns b"" so the owner runs its normal teardown.

=============================================================================
"""

import socket
import time
import logging
import itertools
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)


# Process-wide connection ids. Unlike file descriptors they are never reused,
# so a stale id can never match a newer connection.
_ids = itertools.count(1)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    OPEN = "open"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """
    Represents one accepted client socket.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        buffer_size: Bytes requested per recv().
        id: Process-unique connection identifier.
        state: OPEN until close() runs.
        created_at: Timestamp when the connection was accepted.
    """

    socket: socket.socket
    address: tuple
    buffer_size: int = 1024

    id: int = field(default_factory=lambda: next(_ids))
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)

    # Bytes read past the handshake line, returned by the next recv()
    _buffer: bytes = field(default=b"", repr=False)
    _send_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        # No timeouts: a session blocks in recv() until data, EOF or close()
        self.socket.setblocking(True)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def peer(self) -> str:
        """The client address as "ip:port"."""
        if isinstance(self.address, tuple) and len(self.address) >= 2:
            return f"{self.address[0]}:{self.address[1]}"
        return str(self.address or f"conn-{self.id}")

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_line(self, limit: int) -> Optional[bytes]:
        """
        Read one line (the handshake).

        Buffers until a newline arrives or `limit` bytes have accumulated.
        Bytes past the returned line stay buffered for recv().

        Args:
            limit: Maximum length of the returned line, newline excluded.

        Returns:
            The line, including its newline if one arrived within `limit`
            bytes, or None if the peer closed or errored before a full line
            arrived.
        """
        while b"\n" not in self._buffer and len(self._buffer) < limit:
            try:
                chunk = self.socket.recv(self.buffer_size)
            except InterruptedError:
                continue
            except OSError as e:
                logger.debug(f"[{self.id}] Handshake read failed: {e}")
                return None

            if not chunk:
                return None
            self._buffer += chunk

        newline = self._buffer.find(b"\n")
        if 0 <= newline <= limit:
            end = newline + 1
        else:
            # Over-long name: cut it, the rest is ordinary chat text
            end = limit

        line, self._buffer = self._buffer[:end], self._buffer[end:]
        return line

    def recv(self) -> bytes:
        """
        Read the next chunk of at most buffer_size bytes.

        Returns buffered handshake leftovers first. InterruptedError is
        retried; a reset or broken connection reads as b"" (orderly close).

        Raises:
            OSError: Any other socket error.
        """
        if self._buffer:
            data, self._buffer = self._buffer, b""
            return data

        while True:
            try:
                return self.socket.recv(self.buffer_size)
            except InterruptedError:
                continue
            except (ConnectionResetError, BrokenPipeError):
                # Client disconnected abruptly
                return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_all(self, data: bytes) -> bool:
        """
        Write all of `data`, one partial send() at a time.

        Holds the write lock for the whole line, so concurrent writers to
        this connection never interleave.

        Returns:
            True if every byte was written, False if a write failed. A
            failure is not raised; the owning session notices the broken
            connection on its own next read.
        """
        view = memoryview(data)
        offset = 0

        with self._send_lock:
            while offset < len(view):
                try:
                    sent = self.socket.send(view[offset:])
                except InterruptedError:
                    continue
                except OSError as e:
                    logger.debug(f"[{self.id}] Send failed: {e}")
                    return False

                if sent <= 0:
                    return False
                offset += sent

        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection. Safe to call from any thread, any number of
        times.

        ┌──────────────────────────────────────────────────────────────────┐
        │   shutdown(SHUT_RDWR)  →  FIN to the client                      │
        │                        →  a recv() blocked in another thread     │
        │                           returns b""                            │
        │   close()              →  file descriptor released               │
        └──────────────────────────────────────────────────────────────────┘
        """
        with self._close_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(f"[{self.id}] Connection to {self.peer} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False


@dataclass(frozen=True)
class ClientHandle:
    """
    A registered chat participant: a connection plus its display name.

    Immutable. The only thing about a handle that changes over its life is
    whether the underlying socket is still open.
    """

    connection: Connection
    name: str

    @property
    def id(self) -> int:
        return self.connection.id

    def send(self, data: bytes) -> bool:
        return self.connection.send_all(data)

    def close(self):
        self.connection.close()


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# Connection:   one accepted socket; buffered handshake read, chunked recv,
#               locked partial-write loop, idempotent close that unblocks
#               a pending recv in another thread.
# ClientHandle: (connection, name) pair stored in the session registry.
# =============================================================================
