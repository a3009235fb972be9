"""
Unit tests for the broadcast engine.
"""

import threading

from chatrelay.core.broadcast import Broadcaster
from chatrelay.core.registry import SessionRegistry


def make_room(make_handle, *names, capacity=8):
    registry = SessionRegistry(capacity=capacity)
    handles = [make_handle(name) for name in names]
    for handle in handles:
        registry.try_admit(handle)
    return registry, handles


class TestBroadcastExcept:
    """Tests for Broadcaster.broadcast_except."""

    def test_excludes_origin(self, make_handle):
        """Test that the sender never receives its own line."""
        registry, (alice, bob, carol) = make_room(make_handle, "alice", "bob", "carol")
        broadcaster = Broadcaster(registry)

        delivered = broadcaster.broadcast_except(alice.id, b"[alice] hi\n")

        assert delivered == 2
        assert alice.connection.sent == []
        assert bob.connection.sent == [b"[alice] hi\n"]
        assert carol.connection.sent == [b"[alice] hi\n"]

    def test_unknown_origin_reaches_everyone(self, make_handle):
        """Test that an origin not in the registry excludes nobody."""
        registry, handles = make_room(make_handle, "a", "b")

        assert Broadcaster(registry).broadcast_except(-1, b"x\n") == 2
        assert all(h.connection.sent == [b"x\n"] for h in handles)

    def test_failed_recipient_does_not_stop_others(self, make_handle):
        """Test that one broken recipient is skipped, not fatal."""
        registry = SessionRegistry()
        sender = make_handle("alice")
        broken = make_handle("dead", fail=True)
        healthy = make_handle("bob")
        for handle in (sender, broken, healthy):
            registry.try_admit(handle)

        delivered = Broadcaster(registry).broadcast_except(sender.id, b"[alice] hi\n")

        assert delivered == 1
        assert healthy.connection.sent == [b"[alice] hi\n"]
        # Skipped, not evicted: eviction is the broken session's own job
        assert broken.id in registry

    def test_empty_registry(self):
        """Test broadcasting with nobody connected."""
        assert Broadcaster(SessionRegistry()).broadcast_except(1, b"x\n") == 0


class TestBroadcastAll:
    """Tests for Broadcaster.broadcast_all."""

    def test_reaches_everyone(self, make_handle):
        """Test that system notices go to every session."""
        registry, handles = make_room(make_handle, "a", "b", "c")

        assert Broadcaster(registry).broadcast_all(b"Server is shutting down.\n") == 3
        for handle in handles:
            assert handle.connection.sent == [b"Server is shutting down.\n"]


class TestBroadcastLocking:
    """Tests that fan-out does not hold the registry lock during I/O."""

    def test_registry_usable_during_slow_delivery(self, make_handle):
        """Test that joins proceed while a recipient's write is blocked."""
        registry = SessionRegistry()
        in_send = threading.Event()
        release = threading.Event()

        slow = make_handle("slow")
        original_send = slow.connection.send_all

        def blocking_send(data):
            in_send.set()
            release.wait(5.0)
            return original_send(data)

        slow.connection.send_all = blocking_send
        registry.try_admit(slow)

        broadcaster = Broadcaster(registry)
        worker = threading.Thread(target=broadcaster.broadcast_all, args=(b"x\n",))
        worker.start()
        try:
            assert in_send.wait(5.0)

            newcomer = make_handle("newcomer")
            assert registry.try_admit(newcomer).admitted
            assert registry.remove(newcomer.id)
        finally:
            release.set()
            worker.join(5.0)

        assert slow.connection.sent == [b"x\n"]
