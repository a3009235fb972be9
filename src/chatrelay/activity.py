"""
=============================================================================
SESSION ACTIVITY LOG
=============================================================================

One structured log entry per finished session, emitted on its own logger
so operators can route it separately from the server's diagnostics:

    logging.getLogger("chatrelay.activity").addHandler(file_handler)

    TEXT FORMAT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 10.0.0.7:53122 alice left msgs=12 bytes=431 1532.40ms [session 3]   │
    └─────────────────────────────────────────────────────────────────────┘

    JSON FORMAT (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"session_id": 3, "name": "alice", "client": "10.0.0.7:53122",      │
    │  "outcome": "left", "messages": 12, "bytes_received": 431,          │
    │  "duration_ms": 1532.4}                                             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import json
import logging
from dataclasses import dataclass


logger = logging.getLogger("chatrelay.activity")


# Session outcomes
LEFT = "left"
REJECTED = "rejected"
NO_HANDSHAKE = "no-handshake"
SHUTTING_DOWN = "shutting-down"


@dataclass
class SessionRecord:
    """
    Structured summary of one session.

    session_id:     Connection id
    name:           Display name ("" if the handshake never completed)
    client:         Client "ip:port"
    outcome:        left, rejected, no-handshake or shutting-down
    messages:       Chat lines relayed from this client
    bytes_received: Payload bytes read after the handshake
    duration_ms:    Time from accept to close
    """

    session_id: int
    name: str
    client: str
    outcome: str
    messages: int
    bytes_received: int
    duration_ms: float

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "client": self.client,
            "outcome": self.outcome,
            "messages": self.messages,
            "bytes_received": self.bytes_received,
            "duration_ms": round(self.duration_ms, 2),
        }

    def to_text(self) -> str:
        return (
            f"{self.client} {self.name or '-'} {self.outcome} "
            f"msgs={self.messages} bytes={self.bytes_received} "
            f"{self.duration_ms:.2f}ms [session {self.session_id}]"
        )


def log_session(record: SessionRecord, log_format: str = "text", level: int = logging.INFO):
    """Emit `record` on the chatrelay.activity logger."""
    if log_format == "json":
        logger.log(level, json.dumps(record.to_dict()))
    else:
        logger.log(level, record.to_text())
