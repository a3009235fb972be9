"""
pytest configuration and fixtures.
"""

import itertools
import socket
import threading
import time
from typing import Callable, Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatrelay import ChatServer, ServerConfig
from chatrelay.core import ClientHandle


class FakeConnection:
    """Stands in for a Connection: records what is sent, never touches a socket."""

    _ids = itertools.count(10_000)

    def __init__(self, fail: bool = False):
        self.id = next(FakeConnection._ids)
        self.fail = fail
        self.sent: List[bytes] = []
        self.closed = False
        self._lock = threading.Lock()

    def send_all(self, data: bytes) -> bool:
        if self.fail or self.closed:
            return False
        with self._lock:
            self.sent.append(data)
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def make_handle() -> Callable[..., ClientHandle]:
    """Factory for ClientHandles backed by FakeConnections."""
    def factory(name: str = "bob", fail: bool = False) -> ClientHandle:
        return ClientHandle(connection=FakeConnection(fail=fail), name=name)
    return factory


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll `predicate` until it is true or `timeout` expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class ChatClient:
    """Line-oriented test client."""

    def __init__(self, port: int, name: str = None):
        self.sock = socket.create_connection(("127.0.0.1", port), timeout=5.0)
        self.reader = self.sock.makefile("rb")
        if name is not None:
            self.send(name + "\n")

    def send(self, text: str):
        self.sock.sendall(text.encode())

    def readline(self) -> bytes:
        return self.reader.readline()

    def read_until(self, expected: bytes, max_lines: int = 50) -> bytes:
        """Read lines until `expected` shows up; fail if it never does."""
        for _ in range(max_lines):
            line = self.readline()
            if line == expected:
                return line
            if not line:
                break
        raise AssertionError(f"never received {expected!r}")

    def close(self):
        try:
            self.reader.close()
        finally:
            self.sock.close()


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # Not a test class

    def __init__(self, server: ChatServer):
        self.server = server
        self._thread: threading.Thread = None
        self.clients: List[ChatClient] = []

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def connect(self, name: str = None) -> ChatClient:
        client = ChatClient(self.port, name)
        self.clients.append(client)
        return client

    def join(self, name: str) -> ChatClient:
        """Connect and wait until the registry has admitted the client."""
        before = len(self.server.registry)
        client = self.connect(name)
        assert wait_until(lambda: len(self.server.registry) == before + 1)
        return client

    def stop(self):
        """Stop the server."""
        self.server.stop()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        for client in self.clients:
            client.close()


@pytest.fixture
def config(tmp_path) -> ServerConfig:
    """Test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        history_path=str(tmp_path / "chat_history"),
        history_fsync=False,
        console=False,
        handle_signals=False,
        log_level="WARNING",
    )


@pytest.fixture
def test_server(config: ServerConfig) -> Generator[TestServer, None, None]:
    """A running chat server."""
    test_srv = TestServer(ChatServer(config))
    test_srv.start()

    yield test_srv

    test_srv.stop()
