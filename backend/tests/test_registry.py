import asyncio

from chatrooms.realtime.broadcaster import everyone, excluding, members
from chatrooms.realtime.connection import LiveConnection
from chatrooms.realtime.registry import ConnectionRegistry


class FakeSocket:
    def __init__(self, fail_after=None):
        self.sent = []
        self.closed_with = None
        self.fail_after = fail_after

    async def send_json(self, frame):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("socket gone")
        self.sent.append(frame)

    async def close(self, code=1000):
        self.closed_with = code


def _drain(connection):
    frames = []
    while not connection._queue.empty():
        frames.append(connection._queue.get_nowait())
    return frames


def test_register_announces_first_connection_only():
    registry = ConnectionRegistry()
    bob = LiveConnection(FakeSocket())
    registry.register(2, bob)

    alice_1 = LiveConnection(FakeSocket())
    alice_2 = LiveConnection(FakeSocket())
    assert registry.register(1, alice_1) is True
    assert registry.register(1, alice_2) is False

    assert _drain(bob) == [{"type": "presence", "userId": 1, "online": True}]
    # no one announces a user to themselves
    assert _drain(alice_1) == []
    assert registry.list_online() == {1, 2}
    assert len(registry) == 3


def test_unregister_announces_last_connection_only():
    registry = ConnectionRegistry()
    bob = LiveConnection(FakeSocket())
    alice_1 = LiveConnection(FakeSocket())
    alice_2 = LiveConnection(FakeSocket())
    registry.register(2, bob)
    registry.register(1, alice_1)
    registry.register(1, alice_2)
    _drain(bob)

    assert registry.unregister(alice_1) == 1
    assert _drain(bob) == []
    assert registry.list_online() == {1, 2}

    assert registry.unregister(alice_2) == 1
    assert _drain(bob) == [{"type": "presence", "userId": 1, "online": False}]
    assert registry.list_online() == {2}
    assert alice_2 not in registry

    assert registry.unregister(alice_2) is None


def test_broadcast_respects_predicate_and_skips_closed():
    registry = ConnectionRegistry()
    conns = {uid: LiveConnection(FakeSocket()) for uid in (1, 2, 3)}
    for uid, conn in conns.items():
        registry.register(uid, conn)
    for conn in conns.values():
        _drain(conn)

    conns[3].close()
    delivered = registry.broadcast(members([1, 3]), {"type": "system", "message": "x"})
    assert delivered == 1
    assert _drain(conns[1]) == [{"type": "system", "message": "x"}]
    assert _drain(conns[2]) == []

    delivered = registry.broadcast(excluding(everyone(), conns[1]), {"type": "system", "message": "y"})
    assert delivered == 1
    assert _drain(conns[2]) == [{"type": "system", "message": "y"}]


def test_independent_registries_do_not_share_state():
    first, second = ConnectionRegistry(), ConnectionRegistry()
    first.register(1, LiveConnection(FakeSocket()))
    assert second.list_online() == set()


def test_writer_delivers_in_order_then_stops():
    async def scenario():
        socket = FakeSocket()
        connection = LiveConnection(socket)
        writer = asyncio.create_task(connection.run_writer())
        for i in range(3):
            assert connection.push({"n": i})
        connection.close()
        await writer
        return socket, connection

    socket, connection = asyncio.run(scenario())
    assert socket.sent == [{"n": 0}, {"n": 1}, {"n": 2}]
    assert not connection.is_open
    assert connection.push({"n": 3}) is False


def test_overflow_drops_slow_connection():
    async def scenario():
        socket = FakeSocket()
        connection = LiveConnection(socket, max_queue=2)
        assert connection.push({"n": 0})
        assert connection.push({"n": 1})
        assert connection.push({"n": 2}) is False
        assert not connection.is_open
        await connection.run_writer()
        return socket

    socket = asyncio.run(scenario())
    assert socket.sent == []
    assert socket.closed_with == 1013


def test_failed_socket_marks_connection_closed():
    async def scenario():
        connection = LiveConnection(FakeSocket(fail_after=0))
        writer = asyncio.create_task(connection.run_writer())
        connection.push({"n": 0})
        await writer
        return connection

    connection = asyncio.run(scenario())
    assert not connection.is_open
