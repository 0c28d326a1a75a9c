import pytest

from services.sync_channel import ChangeEvent, SyncChannel


@pytest.mark.asyncio
async def test_publish_reaches_matching_subscribers_only():
    channel = SyncChannel()
    received = []

    async def on_change(event):
        received.append(event.record["_id"])

    channel.subscribe("prizes", {"board_id": "b1"}, on_change)

    channel.publish(ChangeEvent("prizes", "update", {"_id": "p1", "board_id": "b1"}))
    channel.publish(ChangeEvent("prizes", "update", {"_id": "p2", "board_id": "b2"}))
    channel.publish(ChangeEvent("draw_events", "insert", {"_id": "e1", "board_id": "b1"}))
    await channel.drain()

    assert received == ["p1"]


@pytest.mark.asyncio
async def test_unsubscribed_callback_is_not_called():
    channel = SyncChannel()
    received = []

    async def on_change(event):
        received.append(event)

    handle = channel.subscribe("boards", {}, on_change)
    channel.publish(ChangeEvent("boards", "update", {"_id": "b1"}))
    # Pending delivery is dropped too
    channel.unsubscribe(handle)
    await channel.drain()

    assert received == []
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_affect_others():
    channel = SyncChannel()
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        received.append(event.operation)

    channel.subscribe("overlay_states", {"board_id": "b1"}, broken)
    channel.subscribe("overlay_states", {"board_id": "b1"}, healthy)

    channel.publish(ChangeEvent("overlay_states", "update", {"board_id": "b1"}))
    await channel.drain()

    assert received == ["update"]


def test_subscriber_count_by_table():
    channel = SyncChannel()

    async def noop(event):
        pass

    channel.subscribe("prizes", {}, noop)
    channel.subscribe("prizes", {"board_id": "b1"}, noop)
    channel.subscribe("boards", {}, noop)

    assert channel.subscriber_count("prizes") == 2
    assert channel.subscriber_count("boards") == 1
    assert channel.subscriber_count() == 3
