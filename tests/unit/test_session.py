"""
Unit tests for the session lifecycle, over socketpairs.
"""

import socket
import threading

import pytest

from chatrelay import activity
from chatrelay.config import ServerConfig
from chatrelay.core.broadcast import Broadcaster
from chatrelay.core.connection import Connection
from chatrelay.core.registry import SessionRegistry
from chatrelay.history import HistoryLogger
from chatrelay.session import Session, SessionState

from conftest import wait_until


class Room:
    """A registry with one fake listener ("bob") plus the session plumbing."""

    def __init__(self, make_handle, tmp_path, capacity=8):
        self.registry = SessionRegistry(capacity=capacity)
        self.broadcaster = Broadcaster(self.registry)
        self.history_path = tmp_path / "chat_history"
        self.history = HistoryLogger(str(self.history_path), fsync=False)
        self.config = ServerConfig(max_clients=capacity, history_fsync=False)

        self.bob = make_handle("bob")
        self.registry.try_admit(self.bob)

    def start_session(self):
        server_sock, client_sock = socket.socketpair()
        client_sock.settimeout(5.0)
        conn = Connection(socket=server_sock, address=("10.0.0.5", 5555))
        session = Session(conn, self.registry, self.broadcaster, self.history, self.config)
        thread = threading.Thread(target=session.run, daemon=True)
        thread.start()
        return session, client_sock, thread

    def history_lines(self):
        self.history.close()
        return self.history_path.read_bytes().splitlines(keepends=True)


@pytest.fixture
def room(make_handle, tmp_path):
    return Room(make_handle, tmp_path)


class TestSessionLifecycle:
    """Tests for the join, relay, leave path."""

    def test_join_relay_leave(self, room):
        """Test the full lifecycle as seen by another client."""
        session, client, thread = room.start_session()

        client.sendall(b"alice\n")
        client.sendall(b"hello\n")
        client.shutdown(socket.SHUT_WR)

        assert session.wait_closed(5.0)
        thread.join(5.0)

        assert room.bob.connection.sent == [
            b"[alice] joined\n",
            b"[alice] hello\n",
            b"[alice] left\n",
        ]
        assert session.state is SessionState.CLOSED
        assert session.outcome == activity.LEFT
        assert len(room.registry) == 1  # only bob
        assert session.connection.is_closed
        client.close()

    def test_history_matches_broadcast(self, room):
        """Test that every broadcast line is logged byte for byte."""
        session, client, _ = room.start_session()

        client.sendall(b"alice\nhi there\n")
        client.shutdown(socket.SHUT_WR)
        assert session.wait_closed(5.0)

        assert room.history_lines() == room.bob.connection.sent
        client.close()

    def test_sender_gets_no_echo(self, room):
        """Test that the session never writes its own lines back."""
        session, client, _ = room.start_session()

        client.sendall(b"alice\nhello\n")
        client.shutdown(socket.SHUT_WR)
        assert session.wait_closed(5.0)

        assert client.recv(1024) == b""
        client.close()

    def test_payload_newline_normalized(self, room):
        """Test that a message without a trailing newline gets exactly one."""
        session, client, _ = room.start_session()

        client.sendall(b"alice\n")
        assert wait_until(lambda: len(room.bob.connection.sent) == 1)
        client.sendall(b"no newline")
        assert wait_until(lambda: len(room.bob.connection.sent) == 2)
        client.shutdown(socket.SHUT_WR)
        assert session.wait_closed(5.0)

        assert room.bob.connection.sent[1] == b"[alice] no newline\n"
        assert session.messages == 1
        assert session.bytes_received == len(b"no newline")
        client.close()

    def test_empty_name_uses_address(self, room):
        session, client, _ = room.start_session()

        client.sendall(b"\n")
        client.shutdown(socket.SHUT_WR)
        assert session.wait_closed(5.0)

        assert room.bob.connection.sent[0] == b"[10.0.0.5:5555] joined\n"
        client.close()

    def test_forced_close_runs_leave_path(self, room):
        """Test that closing the socket from outside ends the session cleanly."""
        session, client, _ = room.start_session()

        client.sendall(b"alice\n")
        assert wait_until(lambda: session.state is SessionState.ACTIVE)
        assert wait_until(lambda: len(room.registry) == 2)

        session.connection.close()

        assert session.wait_closed(5.0)
        assert room.bob.connection.sent[-1] == b"[alice] left\n"
        assert len(room.registry) == 1
        client.close()


class TestSessionAdmission:
    """Tests for sessions that never become active."""

    def test_no_handshake(self, room):
        """Test that a client leaving before its name closes silently."""
        session, client, _ = room.start_session()

        client.close()

        assert session.wait_closed(5.0)
        assert session.outcome == activity.NO_HANDSHAKE
        assert room.bob.connection.sent == []
        assert len(room.registry) == 1

    def test_rejected_when_full(self, make_handle, tmp_path):
        """Test that the client over capacity gets one line and is dropped."""
        room = Room(make_handle, tmp_path, capacity=1)
        session, client, _ = room.start_session()

        client.sendall(b"carol\n")

        assert client.recv(1024) == b"Server full.\n"
        assert client.recv(1024) == b""
        assert session.wait_closed(5.0)
        assert session.outcome == activity.REJECTED
        assert room.bob.connection.sent == []
        assert [h.name for h in room.registry.snapshot()] == ["bob"]
        client.close()

    def test_rejected_when_shutting_down(self, room):
        """Test that a handshake finishing after drain is turned away."""
        room.registry.drain_all()
        session, client, _ = room.start_session()

        client.sendall(b"late\n")

        assert client.recv(1024) == b"Server is shutting down.\n"
        assert session.wait_closed(5.0)
        assert session.outcome == activity.SHUTTING_DOWN
        assert len(room.registry) == 0
        client.close()
