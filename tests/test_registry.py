import json

import pytest

from doorstep.core.errors import ConnectionLimitExceeded, NotificationDeliveryFailure
from doorstep.realtime.registry import ConnectionRegistry, format_sse, invalidation_message


def test_per_user_cap_evicts_oldest_connection():
    registry = ConnectionRegistry(max_per_user=5, max_total=100)
    connections = [registry.register(42) for _ in range(5)]

    sixth = registry.register(42)

    assert connections[0].closed is True
    assert registry.connections_for(42) == connections[1:] + [sixth]
    assert registry.total == 5


def test_global_cap_refuses_new_connections():
    registry = ConnectionRegistry(max_per_user=5, max_total=3)
    for user_id in (1, 2, 3):
        registry.register(user_id)

    with pytest.raises(ConnectionLimitExceeded):
        registry.register(4)
    assert registry.total == 3


def test_eviction_frees_a_slot_before_the_global_check():
    registry = ConnectionRegistry(max_per_user=1, max_total=1)
    first = registry.register(9)

    second = registry.register(9)

    assert first.closed is True
    assert registry.connections_for(9) == [second]


def test_closing_a_connection_unregisters_it():
    registry = ConnectionRegistry()
    connection = registry.register(5)

    connection.close()
    connection.close()

    assert registry.total == 0
    assert registry.connections_for(5) == []


def test_deliver_reaches_every_connection_of_the_user():
    registry = ConnectionRegistry()
    a, b = registry.register(1), registry.register(1)
    other = registry.register(2)

    delivered = registry.deliver(1, invalidation_message(["/api/cart"]))

    assert delivered == 2
    assert a.pending() == b.pending() == [{"type": "invalidate", "keys": ["/api/cart"]}]
    assert other.pending() == []


def test_full_queue_drops_the_connection():
    registry = ConnectionRegistry(queue_size=1)
    connection = registry.register(1)
    registry.deliver(1, invalidation_message(["a"]))

    assert registry.deliver(1, invalidation_message(["b"])) == 0
    assert connection.closed is True
    assert registry.total == 0


def test_send_on_closed_connection_fails():
    connection = ConnectionRegistry().register(3)
    connection.close()
    with pytest.raises(NotificationDeliveryFailure):
        connection.send(invalidation_message(["x"]))


def test_format_sse_frame():
    assert format_sse("invalidate", {"keys": ["/api/cart"]}) == 'event: invalidate\ndata: {"keys": ["/api/cart"]}\n\n'


async def test_stream_yields_connected_heartbeat_and_messages():
    registry = ConnectionRegistry(heartbeat_seconds=0.01)
    connection = registry.register(8)
    stream = connection.stream()

    assert (await stream.__anext__()).startswith("event: connected\n")
    assert (await stream.__anext__()) == "event: heartbeat\ndata: {}\n\n"

    connection.send(invalidation_message(["/api/notifications"]))
    frame = await stream.__anext__()
    assert frame.startswith("event: invalidate\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload == {"type": "invalidate", "keys": ["/api/notifications"]}

    connection.close()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert registry.total == 0


def test_close_all_empties_the_registry():
    registry = ConnectionRegistry()
    connections = [registry.register(uid) for uid in (1, 1, 2)]

    registry.close_all()

    assert registry.total == 0
    assert all(c.closed for c in connections)


async def test_messages_queued_before_close_are_still_streamed():
    registry = ConnectionRegistry(heartbeat_seconds=5)
    connection = registry.register(8)
    connection.send(invalidation_message(["/api/cart"]))
    connection.close()

    frames = [frame async for frame in connection.stream()]

    assert len(frames) == 2
    assert frames[0].startswith("event: connected\n")
    assert frames[1].startswith("event: invalidate\n")
    assert connection.pending() == []
