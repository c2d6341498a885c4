from datetime import timedelta

import pytest
import pytest_asyncio

from config.constants import DeliveryStatus, HealthState, Severity
from config.settings import DatabaseSettings
from database.manager import DatabaseManager
from database.models import CheckResult, Monitor, Notification, User, WebhookConfig, WebhookDelivery
from database.repository import SqlRepository, event_matches
from exceptions import DatabaseConnectionError
from utils.helpers import TimeHelper


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = DatabaseManager(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/pingmaster.db"))
    await manager.initialize()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def repo(db):
    async with db.session() as session:
        session.add(User(id=1, email="owner@example.com"))
        session.add(User(id=2, email="other@example.com"))
    return SqlRepository(db)


async def add(db, *rows):
    async with db.session() as session:
        session.add_all(rows)
    return rows


# ============================================================================
# MONITORS & HISTORY
# ============================================================================

@pytest.mark.asyncio
async def test_list_monitors_returns_only_active(repo, db):
    await add(
        db,
        Monitor(id=1, user_id=1, name="Shop", url="https://shop.example.com"),
        Monitor(id=2, user_id=1, name="Paused", url="https://old.example.com", is_active=False),
    )

    monitors = await repo.list_monitors()

    assert [m.id for m in monitors] == [1]
    assert monitors[0].channels == ["push", "webhook"]
    assert HealthState(monitors[0].state) == HealthState.PENDING


@pytest.mark.asyncio
async def test_update_monitor_state(repo, db):
    await add(db, Monitor(id=1, user_id=1, name="Shop", url="https://shop.example.com"))
    checked = TimeHelper.utc_now()

    await repo.update_monitor_state(1, HealthState.DOWN, checked, None)

    monitor = await repo.get_monitor(1)
    assert HealthState(monitor.state) == HealthState.DOWN
    assert monitor.last_checked is not None
    assert monitor.response_time is None


@pytest.mark.asyncio
async def test_check_results_most_recent_first(repo, db):
    await add(db, Monitor(id=1, user_id=1, name="Shop", url="https://shop.example.com"))
    start = TimeHelper.utc_now()
    for offset, state in enumerate([HealthState.UP, HealthState.DOWN, HealthState.UP]):
        await repo.save_check_result(
            CheckResult(monitor_id=1, state=state, checked_at=start + timedelta(seconds=offset))
        )

    results = await repo.list_check_results(1)

    assert [HealthState(r.state) for r in results] == [HealthState.UP, HealthState.DOWN, HealthState.UP]
    assert results[0].id > results[1].id > results[2].id
    assert len(await repo.list_check_results(1, limit=2)) == 2


@pytest.mark.asyncio
async def test_delete_monitor_cascades_to_history_and_notifications(repo, db):
    await add(db, Monitor(id=1, user_id=1, name="Shop", url="https://shop.example.com"))
    await repo.save_check_result(CheckResult(monitor_id=1, state=HealthState.UP))
    await repo.create_notification(
        Notification(user_id=1, monitor_id=1, title="Shop is up", message="ok", type=Severity.SUCCESS)
    )

    assert await repo.delete_monitor(1) is True
    assert await repo.delete_monitor(1) is False

    assert await repo.get_monitor(1) is None
    assert await repo.list_check_results(1) == []
    assert await repo.count_unread(1) == 0


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@pytest.mark.asyncio
async def test_notifications_read_and_delete_are_scoped_to_owner(repo):
    mine = await repo.create_notification(Notification(user_id=1, title="a", message="a"))
    also_mine = await repo.create_notification(Notification(user_id=1, title="b", message="b"))
    theirs = await repo.create_notification(Notification(user_id=2, title="c", message="c"))

    assert mine.id is not None
    assert await repo.count_unread(1) == 2

    assert await repo.mark_notifications_read(1, [mine.id, theirs.id]) == [mine.id]
    assert await repo.count_unread(1) == 1
    assert await repo.count_unread(2) == 1

    assert await repo.delete_notifications(1, [also_mine.id, theirs.id]) == [also_mine.id]
    assert await repo.delete_notifications(1, []) == []
    assert await repo.count_unread(1) == 0
    assert await repo.count_unread(2) == 1


# ============================================================================
# WEBHOOKS
# ============================================================================

@pytest.mark.parametrize(
    "patterns, event_type, expected",
    [
        (["*"], "notification.created", True),
        (["notification.*"], "notification.deleted", True),
        (["monitor.*"], "notification.created", False),
        (["notification.created"], "notification.created", True),
        ([], "notification.created", False),
        (None, "notification.created", False),
    ],
)
def test_event_matches(patterns, event_type, expected):
    assert event_matches(patterns, event_type) is expected


@pytest.mark.asyncio
async def test_list_webhooks_filters_by_owner_activity_and_pattern(repo, db):
    await add(
        db,
        WebhookConfig(id=1, user_id=1, url="https://a.example.com", events=["notification.*"]),
        WebhookConfig(id=2, user_id=1, url="https://b.example.com", events=["monitor.deleted"]),
        WebhookConfig(id=3, user_id=1, url="https://c.example.com", is_active=False),
        WebhookConfig(id=4, user_id=2, url="https://d.example.com"),
    )

    hooks = await repo.list_webhooks(1, "notification.created")

    assert [h.id for h in hooks] == [1]
    assert (await repo.get_webhook(3)).is_active is False


@pytest.mark.asyncio
async def test_delivery_upsert_and_due_retries(repo, db):
    await add(db, WebhookConfig(id=1, user_id=1, url="https://a.example.com"))
    now = TimeHelper.utc_now()

    delivery = await repo.save_webhook_delivery(
        WebhookDelivery(webhook_id=1, event_type="notification.created", payload={"id": 1})
    )
    delivery.attempts = 1
    delivery.status = DeliveryStatus.FAILED
    delivery.next_retry = now - timedelta(seconds=1)
    await repo.save_webhook_delivery(delivery)

    exhausted = WebhookDelivery(
        webhook_id=1,
        event_type="notification.created",
        payload={"id": 2},
        attempts=5,
        status=DeliveryStatus.FAILED,
        next_retry=now - timedelta(seconds=1),
    )
    later = WebhookDelivery(
        webhook_id=1,
        event_type="notification.created",
        payload={"id": 3},
        attempts=1,
        status=DeliveryStatus.FAILED,
        next_retry=now + timedelta(hours=1),
    )
    await repo.save_webhook_delivery(exhausted)
    await repo.save_webhook_delivery(later)

    stored = await repo.get_webhook_delivery(delivery.id)
    assert stored.attempts == 1
    assert stored.payload == {"id": 1}

    due = await repo.due_retries(now, max_attempts=5)
    assert [d.id for d in due] == [delivery.id]


@pytest.mark.asyncio
async def test_session_requires_initialized_manager(tmp_path):
    manager = DatabaseManager(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/unused.db"))

    with pytest.raises(DatabaseConnectionError):
        await SqlRepository(manager).list_monitors()
