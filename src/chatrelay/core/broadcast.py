"""
=============================================================================
BROADCAST ENGINE
=============================================================================

Copies one line to many sessions.

    broadcast_except(origin, line)    chat lines, joins, leaves
                                      (the sender already sees its own
                                      input locally, so it is skipped)

    broadcast_all(line)               system notices with no sender,
                                      e.g. the shutdown notice

=============================================================================
DELIVERY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  1. registry.snapshot()       lock held only for the copy           │
    │  2. for each recipient:       lock NOT held                         │
    │        send_all(line)         partial writes until done or failed   │
    │        failed? skip it        never abort the others, never retry   │
    └─────────────────────────────────────────────────────────────────────┘

Recipients are served one after another. A slow recipient delays the ones
after it by its own write latency and no more. A dead recipient fails fast
and is skipped; its own session will see the broken socket and evict it.

=============================================================================
"""

import logging
from typing import Iterable, Optional

from .connection import ClientHandle
from .registry import SessionRegistry


logger = logging.getLogger(__name__)


class Broadcaster:
    """Fans lines out to the members of a SessionRegistry."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def broadcast_except(self, origin_id: Optional[int], data: bytes) -> int:
        """
        Deliver `data` to every registered session except `origin_id`.

        Returns:
            Number of recipients that received every byte.
        """
        recipients = [h for h in self.registry.snapshot() if h.id != origin_id]
        return self._deliver(recipients, data)

    def broadcast_all(self, data: bytes) -> int:
        """
        Deliver `data` to every registered session.

        Returns:
            Number of recipients that received every byte.
        """
        return self._deliver(self.registry.snapshot(), data)

    def _deliver(self, recipients: Iterable[ClientHandle], data: bytes) -> int:
        delivered = 0
        for handle in recipients:
            if handle.send(data):
                delivered += 1
            else:
                logger.debug(f"Delivery to {handle.name!r} ({handle.id}) failed, skipping")
        return delivered
