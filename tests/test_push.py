import asyncio
import json

import pytest

from channels.push import PushBroadcaster, PushChannel, format_frame
from config.constants import HealthState, PushActions
from monitoring.classifier import TransitionEvent, classify
from tests.factories import down, make_monitor


def decode(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


def test_format_frame():
    assert format_frame({"type": "connected"}) == 'data: {"type": "connected"}\n\n'


# ============================================================================
# BROADCASTER
# ============================================================================

@pytest.mark.asyncio
async def test_new_stream_starts_with_connected_frame():
    broadcaster = PushBroadcaster()

    stream = broadcaster.connect(1)

    assert decode(await stream.next_frame()) == {"type": "connected"}
    assert broadcaster.connection_count(1) == 1


@pytest.mark.asyncio
async def test_publish_reaches_every_stream_of_the_user():
    broadcaster = PushBroadcaster()
    laptop = broadcaster.connect(1)
    phone = broadcaster.connect(1)
    stranger = broadcaster.connect(2)
    for stream in (laptop, phone, stranger):
        await stream.next_frame()

    assert broadcaster.publish(1, {"type": "notification", "action": "created"}) == 2

    assert decode(await laptop.next_frame())["action"] == "created"
    assert decode(await phone.next_frame())["action"] == "created"
    assert stranger.queue.empty()


def test_publish_without_streams_is_a_no_op():
    assert PushBroadcaster().publish(42, {"type": "notification"}) == 0


@pytest.mark.asyncio
async def test_disconnect_removes_stream_and_ends_it():
    broadcaster = PushBroadcaster()
    stream = broadcaster.connect(1)
    await stream.next_frame()

    broadcaster.disconnect(stream)
    broadcaster.disconnect(stream)

    assert broadcaster.connection_count() == 0
    assert broadcaster.publish(1, {"type": "notification"}) == 0
    assert await stream.next_frame() is None


@pytest.mark.asyncio
async def test_close_wakes_a_waiting_reader():
    broadcaster = PushBroadcaster()
    stream = broadcaster.connect(1)
    await stream.next_frame()

    reader = asyncio.create_task(stream.next_frame())
    await asyncio.sleep(0)
    broadcaster.close_all()

    assert await asyncio.wait_for(reader, 1.0) is None
    assert broadcaster.connection_count() == 0


def test_full_stream_drops_frames_instead_of_blocking():
    broadcaster = PushBroadcaster(queue_size=2)
    slow = broadcaster.connect(1)

    assert broadcaster.publish(1, {"n": 1}) == 1
    assert broadcaster.publish(1, {"n": 2}) == 0

    assert slow.dropped == 1
    assert slow.queue.qsize() == 2


# ============================================================================
# CHANNEL
# ============================================================================

@pytest.mark.asyncio
async def test_channel_pushes_created_notification(notification):
    broadcaster = PushBroadcaster()
    stream = broadcaster.connect(notification.user_id)
    await stream.next_frame()
    channel = PushChannel(broadcaster)
    _, transition = classify(HealthState.UP, down())

    outcome = await channel.deliver(notification, TransitionEvent(make_monitor(), transition))

    assert outcome.success and not outcome.was_skipped
    assert outcome.metadata["streams"] == 1
    frame = decode(await stream.next_frame())
    assert frame["type"] == "notification"
    assert frame["action"] == PushActions.CREATED
    assert frame["data"]["id"] == notification.id
    assert frame["data"]["type"] == "error"


@pytest.mark.asyncio
async def test_channel_skips_offline_user(notification):
    channel = PushChannel(PushBroadcaster())
    _, transition = classify(HealthState.UP, down())

    outcome = await channel.deliver(notification, TransitionEvent(make_monitor(), transition))

    assert outcome.was_skipped
    assert channel.status() == {"channel": "push", "connections": 0}


@pytest.mark.asyncio
async def test_channel_mirrors_changes():
    broadcaster = PushBroadcaster()
    stream = broadcaster.connect(1)
    await stream.next_frame()

    await PushChannel(broadcaster).publish_change(1, PushActions.DELETED, {"ids": [3, 4]})

    assert decode(await stream.next_frame()) == {
        "type": "notification",
        "action": "deleted",
        "data": {"ids": [3, 4]},
    }
