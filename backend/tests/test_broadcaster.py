import asyncio

import pytest

from sketchboard.broadcaster import BroadcastRegistry, Connection, ConnectionClosed, format_event


def test_format_event_single_line():
    assert format_event('{"id": "1"}') == 'data: {"id": "1"}\n\n'


def test_format_event_splits_multiline_messages():
    assert format_event("first\nsecond") == "data: first\ndata: second\n\n"


def test_format_event_empty_message():
    assert format_event("") == "data: \n\n"


def test_connect_returns_distinct_registered_handles():
    registry = BroadcastRegistry()
    first = registry.connect()
    second = registry.connect()

    assert first is not second
    assert first.id != second.id
    assert first in registry and second in registry
    assert len(registry) == 2


def test_register_twice_does_not_duplicate_delivery():
    registry = BroadcastRegistry()
    connection = Connection()
    registry.register(connection)
    registry.register(connection)

    assert len(registry) == 1
    assert registry.broadcast("hello") == 1
    assert connection.pending == 1


def test_register_closed_connection_is_ignored():
    registry = BroadcastRegistry()
    connection = Connection()
    connection.close()
    registry.register(connection)

    assert len(registry) == 0


def test_unregister_unknown_connection_is_noop():
    registry = BroadcastRegistry()
    assert registry.unregister(Connection()) is False
    assert len(registry) == 0


def test_unregister_removes_and_closes():
    registry = BroadcastRegistry()
    connection = registry.connect()

    assert registry.unregister(connection) is True
    assert connection not in registry
    assert connection.closed
    assert registry.unregister(connection) is False


def test_broadcast_without_connections():
    assert BroadcastRegistry().broadcast("nobody listening") == 0


def test_broadcast_reaches_every_connection():
    registry = BroadcastRegistry()
    connections = [registry.connect() for _ in range(3)]

    assert registry.broadcast("payload") == 3
    for connection in connections:
        assert connection.pending == 1


def test_broadcast_removes_closed_connection_and_keeps_going():
    registry = BroadcastRegistry()
    dead = registry.connect()
    alive = registry.connect()
    dead.close()

    assert registry.broadcast("payload") == 1
    assert dead not in registry
    assert alive in registry
    assert alive.pending == 1


@pytest.mark.asyncio
async def test_broadcast_drops_for_slow_connection_without_blocking():
    registry = BroadcastRegistry(queue_size=2)
    slow = registry.connect()
    fast = registry.connect()

    registry.broadcast("one")
    registry.broadcast("two")
    # Fast reader drains, slow reader does not
    await fast.receive(timeout=1)
    await fast.receive(timeout=1)

    assert registry.broadcast("three") == 1
    assert slow.pending == 2
    assert slow.dropped == 1
    assert slow in registry
    assert fast.pending == 1


def test_send_to_closed_connection_raises():
    connection = Connection()
    connection.close()
    with pytest.raises(ConnectionClosed):
        connection.send("data: x\n\n")


def test_close_all_empties_registry():
    registry = BroadcastRegistry()
    connections = [registry.connect() for _ in range(4)]

    assert registry.close_all() == 4
    assert len(registry) == 0
    assert all(connection.closed for connection in connections)


@pytest.mark.asyncio
async def test_receive_preserves_broadcast_order():
    registry = BroadcastRegistry()
    connection = registry.connect()

    for i in range(5):
        registry.broadcast(f"event-{i}")

    received = [await connection.receive(timeout=1) for _ in range(5)]
    assert received == [f"data: event-{i}\n\n" for i in range(5)]


@pytest.mark.asyncio
async def test_receive_times_out_with_none():
    connection = Connection()
    assert await connection.receive(timeout=0.01) is None


@pytest.mark.asyncio
async def test_receive_wakes_on_close():
    connection = Connection()
    waiter = asyncio.create_task(connection.receive(timeout=5))
    await asyncio.sleep(0.01)
    connection.close()

    with pytest.raises(ConnectionClosed):
        await waiter


@pytest.mark.asyncio
async def test_receive_wakes_on_broadcast():
    registry = BroadcastRegistry()
    connection = registry.connect()
    waiter = asyncio.create_task(connection.receive(timeout=5))
    await asyncio.sleep(0.01)
    registry.broadcast("late")

    assert await waiter == "data: late\n\n"


@pytest.mark.asyncio
async def test_concurrent_churn_does_not_corrupt_registry():
    registry = BroadcastRegistry(queue_size=1000)
    stable = [registry.connect() for _ in range(5)]
    messages = [f"m{i}" for i in range(200)]

    async def churn():
        for _ in range(50):
            connection = registry.connect()
            await asyncio.sleep(0)
            registry.unregister(connection)
            registry.unregister(connection)

    async def publish():
        for message in messages:
            registry.broadcast(message)
            await asyncio.sleep(0)

    await asyncio.gather(publish(), *(churn() for _ in range(10)))

    assert len(registry) == len(stable)
    expected = [format_event(message) for message in messages]
    for connection in stable:
        received = [await connection.receive(timeout=1) for _ in messages]
        assert received == expected
        assert connection.pending == 0


def test_format_event_keeps_unicode_line_separators_inside_data():
    message = "{\"embed\": \"a\u2028b\"}"
    assert format_event(message) == f"data: {message}\n\n"


def test_format_event_splits_on_carriage_returns():
    assert format_event("first\r\nsecond\rthird") == "data: first\ndata: second\ndata: third\n\n"


def test_registry_refuses_connections_after_close_all():
    registry = BroadcastRegistry()
    registry.close_all()

    connection = registry.connect()
    assert connection.closed
    assert len(registry) == 0
    assert registry.broadcast("too late") == 0
