import pytest

from config.constants import ChannelType, Severity
from config.settings import (
    EmailSettings,
    MonitoringSettings,
    NotificationSettings,
    WebhookSettings,
)
from database.models import Notification, User
from tests.factories import InMemoryRepository, ManualClock, RecordingChannel


@pytest.fixture
def repository() -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.users[1] = User(id=1, email="owner@example.com", name="Owner")
    return repo


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def monitoring_settings() -> MonitoringSettings:
    return MonitoringSettings(confirm_retry_delay=0.0, shutdown_grace=1.0)


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(throttle_window=900.0)


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    return WebhookSettings(max_attempts=5, base_delay=5.0, max_delay=3600.0, jitter=1.0)


@pytest.fixture
def email_settings() -> EmailSettings:
    return EmailSettings(enabled=True, max_retries=2, retry_delay=0.0)


@pytest.fixture
def push_channel() -> RecordingChannel:
    return RecordingChannel(ChannelType.PUSH)


@pytest.fixture
def webhook_channel() -> RecordingChannel:
    return RecordingChannel(ChannelType.WEBHOOK)


@pytest.fixture
def notification() -> Notification:
    return Notification(
        id=7,
        user_id=1,
        monitor_id=1,
        title="Monitor 1 is down",
        message="https://example.com is not responding.",
        type=Severity.ERROR,
    )
