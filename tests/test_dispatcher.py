import pytest

from config.constants import ChannelType, HealthState, PushActions, Severity
from exceptions import PersistenceFailure
from monitoring.classifier import TransitionEvent, classify
from monitoring.dispatcher import NotificationDispatcher, ThrottleState, render_notification
from tests.factories import RecordingChannel, down, make_monitor, up


def event_for(monitor, previous, outcome):
    _, transition = classify(previous, outcome)
    assert transition is not None
    return TransitionEvent(monitor=monitor, transition=transition, error=getattr(outcome, "error", None))


@pytest.fixture
def dispatcher(repository, push_channel, webhook_channel, notification_settings, clock):
    return NotificationDispatcher(
        repository,
        [push_channel, webhook_channel],
        notification_settings,
        clock=clock,
    )


# ============================================================================
# THROTTLE
# ============================================================================

def test_throttle_state_marks_and_expires(clock):
    throttle = ThrottleState(60.0, clock=clock)

    assert throttle.check_and_mark((1, "down")) is True
    assert throttle.check_and_mark((1, "down")) is False
    clock.advance(60.0)
    assert throttle.check_and_mark((1, "down")) is True


def test_throttle_clear_only_touches_one_monitor(clock):
    throttle = ThrottleState(60.0, clock=clock)
    throttle.check_and_mark((1, "down"))
    throttle.check_and_mark((1, "tls_expiring"))
    throttle.check_and_mark((2, "down"))

    assert throttle.clear(1) == 2
    assert len(throttle) == 1
    assert throttle.check_and_mark((1, "down")) is True


@pytest.mark.asyncio
async def test_same_state_within_window_yields_one_notification(dispatcher, repository, clock):
    monitor = make_monitor()

    first = await dispatcher.dispatch(event_for(monitor, HealthState.UP, down()))
    clock.advance(5 * 60)
    second = await dispatcher.dispatch(event_for(monitor, HealthState.UP, down()))
    clock.advance(11 * 60)
    third = await dispatcher.dispatch(event_for(monitor, HealthState.UP, down()))
    await dispatcher.drain()

    assert first is not None
    assert second is None
    assert third is not None
    assert len(repository.notifications) == 2
    assert dispatcher.get_stats()["suppressed"] == 1


@pytest.mark.asyncio
async def test_different_states_are_throttled_independently(dispatcher, repository):
    monitor = make_monitor()

    await dispatcher.dispatch(event_for(monitor, HealthState.UP, down()))
    await dispatcher.dispatch(event_for(monitor, HealthState.DOWN, up()))
    await dispatcher.drain()

    assert [n.type for n in repository.notifications.values()] == [Severity.ERROR, Severity.SUCCESS]


@pytest.mark.asyncio
async def test_tls_warning_sent_once_per_window(dispatcher, repository, clock):
    monitor = make_monitor()
    warning = event_for(monitor, HealthState.UP, up(tls_days=10))

    assert await dispatcher.dispatch(warning) is not None
    clock.advance(60)
    assert await dispatcher.dispatch(warning) is None
    # A state event for the same monitor has its own key
    assert await dispatcher.dispatch(event_for(monitor, HealthState.UP, down())) is not None
    clock.advance(15 * 60)
    assert await dispatcher.dispatch(warning) is not None
    await dispatcher.drain()

    warnings = [n for n in repository.notifications.values() if n.type == Severity.WARNING]
    assert len(warnings) == 2
    assert "10 day" in warnings[0].message


@pytest.mark.asyncio
async def test_persistence_failure_releases_mark_and_propagates(dispatcher, repository, push_channel):
    monitor = make_monitor()
    event = event_for(monitor, HealthState.UP, down())

    repository.fail_notifications = True
    with pytest.raises(PersistenceFailure):
        await dispatcher.dispatch(event)

    repository.fail_notifications = False
    assert await dispatcher.dispatch(event) is not None
    await dispatcher.drain()
    assert len(push_channel.delivered) == 1


# ============================================================================
# FAN-OUT
# ============================================================================

@pytest.mark.asyncio
async def test_fan_out_reaches_every_enabled_channel(dispatcher, push_channel, webhook_channel):
    notification = await dispatcher.dispatch(event_for(make_monitor(), HealthState.PENDING, up()))
    await dispatcher.drain()

    assert push_channel.delivered == [notification]
    assert webhook_channel.delivered == [notification]


@pytest.mark.asyncio
async def test_only_the_monitors_channels_are_used(dispatcher, push_channel, webhook_channel):
    monitor = make_monitor(channels=["webhook"])

    await dispatcher.dispatch(event_for(monitor, HealthState.PENDING, up()))
    await dispatcher.drain()

    assert push_channel.delivered == []
    assert len(webhook_channel.delivered) == 1


@pytest.mark.asyncio
async def test_failing_channel_does_not_affect_others(repository, notification_settings, clock):
    broken = RecordingChannel(ChannelType.PUSH, raises=RuntimeError("socket closed"))
    healthy = RecordingChannel(ChannelType.WEBHOOK)
    dispatcher = NotificationDispatcher(repository, [broken, healthy], notification_settings, clock=clock)

    notification = await dispatcher.dispatch(event_for(make_monitor(), HealthState.UP, down()))
    await dispatcher.drain()

    assert notification.id in repository.notifications
    assert healthy.delivered == [notification]
    assert dispatcher.get_stats()["delivery_failures"] == 1


@pytest.mark.asyncio
async def test_mark_read_and_delete_publish_changes(dispatcher, repository, push_channel, webhook_channel):
    first = await dispatcher.dispatch(event_for(make_monitor(1), HealthState.UP, down()))
    second = await dispatcher.dispatch(event_for(make_monitor(2), HealthState.UP, down()))
    await dispatcher.drain()

    assert await dispatcher.unread_count(1) == 2
    assert await dispatcher.mark_read(1, [first.id, 999]) == [first.id]
    assert await dispatcher.unread_count(1) == 1
    assert await dispatcher.delete(1, [second.id]) == [second.id]
    await dispatcher.drain()

    expected = [
        (1, PushActions.UPDATED, {"ids": [first.id], "read": True}),
        (1, PushActions.DELETED, {"ids": [second.id]}),
    ]
    assert push_channel.changes == expected
    assert webhook_channel.changes == expected


@pytest.mark.asyncio
async def test_nothing_published_when_no_rows_change(dispatcher, push_channel):
    assert await dispatcher.mark_read(1, [42]) == []
    await dispatcher.drain()

    assert push_channel.changes == []


# ============================================================================
# RENDERING
# ============================================================================

def test_render_down_includes_error_text():
    monitor = make_monitor(name="Shop")
    title, message = render_notification(event_for(monitor, HealthState.UP, down()))

    assert title == "Shop is down"
    assert "dns_resolution_failed" in message


def test_render_recovery_and_first_up():
    monitor = make_monitor(name="Shop")

    assert render_notification(event_for(monitor, HealthState.DOWN, up()))[0] == "Shop is back up"
    assert render_notification(event_for(monitor, HealthState.PENDING, up()))[0] == "Shop is up"
