"""
=============================================================================
CHAT HISTORY
=============================================================================

An append-only record of every join, leave and relayed line, in the order
the server broadcast them.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  chat_history                                                       │
    │  ─────────────────────────────────────────────────────────────────  │
    │  [bob] joined                                                       │
    │  [alice] joined                                                     │
    │  [alice] hello                                                      │
    │  [bob] hi alice                                                     │
    │  [alice] left                                                       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
GUARANTEES
=============================================================================

1. ONE WRITER AT A TIME
   Every append() holds one lock across write, flush and fsync, so lines
   from different sessions never interleave and the file order is the
   single authoritative order of events.

2. DURABLE PER LINE
   flush() moves the line from Python's buffer to the OS; fsync() moves
   it from the OS to the disk. append() returns only after both.

3. BEST EFFORT
   History never blocks chat. If the file cannot be opened the logger
   warns once and every later append() is a silent no-op; a failed write
   is logged and dropped.

=============================================================================
"""

import os
import logging
import threading
from typing import BinaryIO, Optional, Union

from .protocol import ENCODING


logger = logging.getLogger(__name__)


class HistoryLogger:
    """
    Serialized, append-only line writer.

    Usage:
        history = HistoryLogger("chat_history")
        history.append(b"[alice] joined\\n")
        history.close()
    """

    def __init__(self, path: Optional[str], fsync: bool = True):
        """
        Args:
            path: File to append to. None gives a logger that never writes.
            fsync: fsync() after every line.
        """
        self.path = path
        self.fsync = fsync

        self._file: Optional[BinaryIO] = None
        self._lock = threading.Lock()

        # Open failed once: stay silent from now on
        self._failed = path is None
        self._closed = False

    @property
    def enabled(self) -> bool:
        """True while append() can still write."""
        with self._lock:
            return not (self._failed or self._closed)

    def open(self) -> bool:
        """
        Open the file now rather than on the first append().

        Returns:
            True if the file is open.
        """
        with self._lock:
            return self._ensure_open()

    def append(self, line: Union[bytes, str]) -> bool:
        """
        Append one line.

        The line is written followed by exactly one newline; a newline that
        `line` already ends with is not doubled.

        Returns:
            True if the line reached the file, False if history is disabled,
            closed, or the write failed.
        """
        if isinstance(line, str):
            line = line.encode(ENCODING)
        record = line.rstrip(b"\n") + b"\n"

        with self._lock:
            if not self._ensure_open():
                return False

            try:
                self._file.write(record)
                self._file.flush()
                if self.fsync:
                    os.fsync(self._file.fileno())
            except OSError as e:
                logger.warning(f"Failed to write chat history to {self.path}: {e}")
                return False

        return True

    def close(self):
        """Close the file. Later appends are no-ops."""
        with self._lock:
            self._closed = True
            if self._file is not None:
                try:
                    self._file.close()
                except OSError as e:
                    logger.warning(f"Failed to close chat history {self.path}: {e}")
                self._file = None

    def _ensure_open(self) -> bool:
        # Caller holds self._lock
        if self._failed or self._closed:
            return False

        if self._file is None:
            try:
                self._file = open(self.path, "ab")
            except OSError as e:
                self._failed = True
                logger.warning(f"Chat history disabled, cannot open {self.path}: {e}")
                return False
            logger.debug(f"Appending chat history to {self.path}")

        return True
