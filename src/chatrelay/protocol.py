"""
Wire protocol lines.

Everything the server writes to a client is one newline-terminated line:

    [alice] hello          relayed chat text
    [alice] joined         join announcement
    [alice] left           leave announcement
    Server full.           sent once to a connection over capacity
    Server is shutting down.

The same bytes are written to the history file, so a history line is
always byte-identical to something that went out on the wire.
"""

SERVER_FULL = b"Server full.\n"
SHUTDOWN_NOTICE = b"Server is shutting down.\n"

ENCODING = "utf-8"


def parse_display_name(line: bytes, fallback: str, max_length: int = 63) -> str:
    """
    Turn the handshake line into a display name.

    Surrounding whitespace (newline included) is stripped and the name is
    cut to max_length bytes. An empty name falls back to `fallback`,
    normally the client's "ip:port".
    """
    raw = line.strip()[:max_length]
    # A cut can land inside a multi-byte character
    name = raw.decode(ENCODING, errors="ignore").strip()
    return name or fallback


def join_line(name: str) -> bytes:
    return f"[{name}] joined\n".encode(ENCODING)


def leave_line(name: str) -> bytes:
    return f"[{name}] left\n".encode(ENCODING)


def relay_line(name: str, payload: bytes, max_line_size: int) -> bytes:
    """
    Build "[name] payload\\n" from one received chunk.

    The payload is truncated so the whole line fits in max_line_size
    bytes, and the result always ends in exactly one newline, however many
    (zero or more) the payload ended with.
    """
    header = f"[{name}] ".encode(ENCODING)
    room = max(max_line_size - len(header) - 1, 0)

    # Strip before and after the cut; a cut can expose an inner newline
    body = payload.rstrip(b"\r\n")[:room].rstrip(b"\r\n")
    return header + body + b"\n"
