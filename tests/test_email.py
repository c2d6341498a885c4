import smtplib
import threading

import pytest

from channels.email import EmailChannel, EmailMessage, EmailQueue, SmtpSender
from config.constants import HealthState, Severity
from config.settings import EmailSettings
from exceptions import EmailDeliveryError
from monitoring.classifier import TransitionEvent, classify
from tests.factories import down, make_monitor, up


class FlakySender:
    """Blocking sender double that fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, message: EmailMessage) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append(message.subject)
            if len(self.calls) <= self.failures:
                raise EmailDeliveryError("421 try again later", recipient=message.to)
        finally:
            with self._lock:
                self.active -= 1


def message(subject: str = "Shop is down") -> EmailMessage:
    return EmailMessage(to="owner@example.com", subject=subject, html="<p>down</p>")


# ============================================================================
# QUEUE
# ============================================================================

@pytest.mark.asyncio
async def test_queue_sends_in_fifo_order_with_one_worker(email_settings):
    sender = FlakySender()
    queue = EmailQueue(email_settings, sender=sender)

    for subject in ("first", "second", "third"):
        queue.enqueue(message(subject))
    await queue.join()
    await queue.stop()

    assert sender.calls == ["first", "second", "third"]
    assert sender.max_active == 1
    assert queue.status()["sent"] == 3


@pytest.mark.asyncio
async def test_failed_send_is_retried(email_settings):
    sender = FlakySender(failures=2)
    queue = EmailQueue(email_settings, sender=sender)

    queue.enqueue(message())
    await queue.join()
    await queue.stop()

    assert len(sender.calls) == 3
    assert queue.status()["sent"] == 1
    assert queue.status()["dropped"] == 0


@pytest.mark.asyncio
async def test_message_dropped_after_max_retries_and_queue_moves_on(email_settings):
    sender = FlakySender(failures=3)
    queue = EmailQueue(email_settings, sender=sender)

    queue.enqueue(message("doomed"))
    queue.enqueue(message("next"))
    await queue.join()
    await queue.stop()

    assert sender.calls == ["doomed", "doomed", "doomed", "next"]
    status = queue.status()
    assert status["dropped"] == 1
    assert status["sent"] == 1
    assert status["queue_length"] == 0
    assert status["processing"] is False


# ============================================================================
# SMTP SENDER
# ============================================================================

class FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.actions = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.actions.append("quit")
        return False

    def starttls(self):
        self.actions.append("starttls")

    def login(self, username, password):
        self.actions.append(("login", username, password))

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.actions.append(("send", msg["To"], msg["Subject"]))


@pytest.fixture
def fake_smtp(monkeypatch):
    monkeypatch.setattr(FakeSMTP, "instances", [])
    monkeypatch.setattr(FakeSMTP, "fail_with", None)
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_smtp_sender_uses_starttls_and_login(fake_smtp):
    settings = EmailSettings(host="smtp.example.com", port=587, username="bot", password="pw")

    SmtpSender(settings)(message())

    server = fake_smtp.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.actions == [
        "starttls",
        ("login", "bot", "pw"),
        ("send", "owner@example.com", "Shop is down"),
        "quit",
    ]


def test_smtp_errors_become_email_delivery_errors(fake_smtp):
    fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({"owner@example.com": (550, b"no such user")})

    with pytest.raises(EmailDeliveryError) as info:
        SmtpSender(EmailSettings(use_tls=False))(message())

    assert info.value.details["recipient"] == "owner@example.com"
    assert "starttls" not in fake_smtp.instances[0].actions


# ============================================================================
# CHANNEL
# ============================================================================

def event_for(monitor, previous, outcome):
    _, transition = classify(previous, outcome)
    return TransitionEvent(monitor, transition, error=getattr(outcome, "error", None))


@pytest.fixture
def sender():
    return FlakySender()


@pytest.fixture
def channel(repository, email_settings, sender):
    return EmailChannel(repository, EmailQueue(email_settings, sender=sender), email_settings)


@pytest.mark.asyncio
async def test_error_notification_is_rendered_and_queued(channel, notification, sender):
    monitor = make_monitor(name="Shop")

    outcome = await channel.deliver(notification, event_for(monitor, HealthState.UP, down()))
    await channel.queue.join()
    await channel.stop()

    assert outcome.success and not outcome.was_skipped
    assert sender.calls == ["🚨 Monitor 1 is down"]


def test_templates_include_monitor_details(channel, notification):
    monitor = make_monitor(name="Shop")
    rendered = channel.render(notification, event_for(monitor, HealthState.UP, down()))

    assert "https://example.com" in rendered.html
    assert "dns_resolution_failed" in rendered.html
    assert "View in Dashboard" in rendered.html
    assert rendered.text == notification.message


def test_warning_template_mentions_days_left(channel, notification):
    notification.type = Severity.WARNING
    rendered = channel.render(notification, event_for(make_monitor(), HealthState.UP, up(tls_days=6)))

    assert rendered.subject.startswith("⚠️")
    assert "<strong>6</strong> day(s)" in rendered.html


@pytest.mark.asyncio
@pytest.mark.parametrize("severity", [Severity.SUCCESS, Severity.INFO])
async def test_only_error_and_warning_are_emailed(channel, notification, sender, severity):
    notification.type = severity

    outcome = await channel.deliver(notification, event_for(make_monitor(), HealthState.DOWN, up()))

    assert outcome.was_skipped
    assert sender.calls == []


@pytest.mark.asyncio
async def test_skipped_without_user_email(channel, repository, notification):
    repository.users[1].email = None

    outcome = await channel.deliver(notification, event_for(make_monitor(), HealthState.UP, down()))

    assert outcome.was_skipped


@pytest.mark.asyncio
async def test_disabled_channel_skips(repository, notification, sender):
    settings = EmailSettings(enabled=False)
    channel = EmailChannel(repository, EmailQueue(settings, sender=sender), settings)

    outcome = await channel.deliver(notification, event_for(make_monitor(), HealthState.UP, down()))

    assert outcome.was_skipped
    assert outcome.detail == "email disabled"
