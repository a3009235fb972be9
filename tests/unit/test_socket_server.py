"""
Unit tests for the listener's accept loop.
"""

import errno
import logging
import socket
import threading
import time

import pytest

from chatrelay.config import ServerConfig
from chatrelay.core.socket_server import SocketServer

from conftest import wait_until


class ScriptedListener:
    """Listening socket stand-in whose accept() follows a script."""

    def __init__(self, script):
        self.script = list(script)
        self.closed = False

    def accept(self):
        if not self.script:
            time.sleep(0.01)
            raise socket.timeout("timed out")
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step

    def close(self):
        self.closed = True


@pytest.fixture
def peers():
    """Real client sockets to hand out from accept(); closed afterwards."""
    pairs = []

    def factory():
        server_sock, client_sock = socket.socketpair()
        pairs.append((server_sock, client_sock))
        return server_sock, ("127.0.0.1", 5000 + len(pairs))

    yield factory

    for server_sock, client_sock in pairs:
        server_sock.close()
        client_sock.close()


def make_listener(script) -> SocketServer:
    listener = SocketServer(ServerConfig(host="127.0.0.1", port=0, handle_signals=False))
    listener._socket = ScriptedListener(script)
    listener._running = True
    return listener


def serve_in_thread(listener, handler) -> threading.Thread:
    thread = threading.Thread(target=listener.serve, args=(handler,), daemon=True)
    thread.start()
    return thread


class TestAcceptLoop:
    """Tests for accept-loop recovery."""

    def test_recovers_from_accept_errors(self, peers, caplog):
        """Test that EMFILE and EINTR do not stop the loop."""
        script = [
            OSError(errno.EMFILE, "Too many open files"),
            InterruptedError(),
            peers(),
        ]
        listener = make_listener(script)
        fake = listener._socket
        accepted = []

        def handler(conn):
            accepted.append(conn)
            listener.shutdown()

        with caplog.at_level(logging.ERROR, logger="chatrelay.core.socket_server"):
            thread = serve_in_thread(listener, handler)
            thread.join(5.0)

        assert not thread.is_alive()
        assert len(accepted) == 1
        assert accepted[0].peer == "127.0.0.1:5001"
        assert any("Accept error" in r.getMessage() for r in caplog.records)
        assert fake.closed
        assert listener.is_running is False
        accepted[0].close()

    def test_handler_failure_closes_connection(self, peers):
        """Test that a handler that raises loses that connection, not the loop."""
        listener = make_listener([peers(), peers()])
        accepted = []

        def handler(conn):
            accepted.append(conn)
            if len(accepted) == 1:
                raise RuntimeError("no thread available")
            listener.shutdown()

        thread = serve_in_thread(listener, handler)
        thread.join(5.0)

        assert not thread.is_alive()
        assert len(accepted) == 2
        assert accepted[0].is_closed
        assert not accepted[1].is_closed
        accepted[1].close()

    def test_serve_requires_listen(self):
        listener = SocketServer(ServerConfig(host="127.0.0.1", port=0, handle_signals=False))

        with pytest.raises(RuntimeError):
            listener.serve(lambda conn: None)


class TestStart:
    """Tests for SocketServer.start on a real port."""

    def test_start_accepts_connections(self):
        listener = SocketServer(ServerConfig(host="127.0.0.1", port=0, handle_signals=False))
        accepted = []

        def handler(conn):
            accepted.append(conn)
            listener.shutdown()

        thread = threading.Thread(target=listener.start, args=(handler,), daemon=True)
        thread.start()
        assert wait_until(lambda: listener.address[1] != 0)

        client = socket.create_connection(("127.0.0.1", listener.address[1]), timeout=5.0)
        thread.join(5.0)

        assert not thread.is_alive()
        assert len(accepted) == 1
        assert listener.wait_for_shutdown(0)

        accepted[0].close()
        client.close()
