"""
============================================================================
PINGMASTER - EMAIL DELIVERY
============================================================================
Queued SMTP delivery for important notifications.

EmailQueue
----------
A FIFO ``asyncio.Queue`` drained by exactly one worker task. Each
message is tried once and then up to ``max_retries`` more times with a
fixed ``retry_delay`` in between; after that it is dropped and the
failure is logged. The SMTP conversation itself is blocking
``smtplib`` code and runs in the default executor.

EmailChannel
------------
Only ``error`` and ``warning`` notifications are emailed, to the
address of the monitor's owner. The body is rendered from the
severity's jinja2 template under ``channels/templates/email``.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from channels.base import DeliveryChannel, DeliveryOutcome
from config.constants import ChannelType, Severity
from config.settings import EmailSettings, get_settings
from database.repository import Repository
from exceptions import EmailDeliveryError
from utils.helpers import TimeHelper
from utils.logger import get_logger

if TYPE_CHECKING:
    from database.models import Notification
    from monitoring.classifier import TransitionEvent


logger = get_logger("Email")

TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"

SUBJECT_PREFIX = {
    Severity.ERROR: "🚨",
    Severity.WARNING: "⚠️",
}


# ============================================================================
# MESSAGE & SENDER
# ============================================================================

@dataclass
class EmailMessage:
    """One outgoing email."""

    to: str
    subject: str
    html: str
    text: str = ""
    retries: int = 0
    added_at: datetime = field(default_factory=TimeHelper.utc_now)


class SmtpSender:
    """Blocking SMTP client; call it from a worker thread."""

    def __init__(self, settings: EmailSettings):
        self.settings = settings

    def build(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.settings.from_address
        msg["To"] = message.to
        if message.text:
            msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def __call__(self, message: EmailMessage) -> None:
        settings = self.settings
        try:
            with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as server:
                if settings.use_tls:
                    server.starttls()
                password = settings.password.get_secret_value()
                if settings.username and password:
                    server.login(settings.username, password)
                server.send_message(self.build(message))
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(
                f"SMTP send failed: {e}",
                recipient=message.to,
                cause=e,
            ) from e


# ============================================================================
# EMAIL QUEUE
# ============================================================================

class EmailQueue:
    """
    Single-worker outgoing mail queue.

    Parameters
    ----------
    settings : EmailSettings | None
        Retry count, retry delay and SMTP connection details.
    sender : callable | None
        Blocking ``sender(message)``; defaults to ``SmtpSender``.
    """

    def __init__(
        self,
        settings: Optional[EmailSettings] = None,
        sender: Optional[Callable[[EmailMessage], None]] = None,
    ):
        self.settings = settings or get_settings().email
        self.sender = sender or SmtpSender(self.settings)
        self._queue: "asyncio.Queue[EmailMessage]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._processing = False
        self._current: Optional[EmailMessage] = None

        self._sent = 0
        self._dropped = 0

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ensure_worker()

    async def stop(self) -> None:
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        pending = self._queue.qsize()
        if pending:
            logger.warning(f"[Email] Stopped with {pending} unsent message(s)")
        logger.info("[Email] ✓ Queue stopped")

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    def enqueue(self, message: EmailMessage) -> None:
        self._queue.put_nowait(message)
        self._ensure_worker()
        logger.debug(f"[Email] Queued '{message.subject}' for {message.to} ({self._queue.qsize()} pending)")

    async def join(self) -> None:
        """Wait until every queued message was sent or dropped."""
        await self._queue.join()

    def status(self) -> Dict[str, Any]:
        oldest = self._current.added_at if self._current else None
        return {
            "queue_length": self._queue.qsize() + (1 if self._current else 0),
            "processing": self._processing,
            "oldest_email": TimeHelper.to_iso(oldest) if oldest else None,
            "sent": self._sent,
            "dropped": self._dropped,
        }

    # ------------------------------------------------------------------
    # WORKER
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="email-queue-worker")

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            self._processing = True
            self._current = message
            try:
                await self._send_with_retries(message)
            finally:
                self._current = None
                self._processing = False
                self._queue.task_done()

    async def _send_with_retries(self, message: EmailMessage) -> bool:
        loop = asyncio.get_running_loop()
        while True:
            try:
                await loop.run_in_executor(None, self.sender, message)
            except Exception as e:
                if message.retries >= self.settings.max_retries:
                    self._dropped += 1
                    logger.error(
                        f"[Email] ✗ Giving up on '{message.subject}' for {message.to} "
                        f"after {message.retries + 1} attempts: {e}"
                    )
                    return False
                message.retries += 1
                logger.warning(
                    f"[Email] Send to {message.to} failed ({e}), retry "
                    f"{message.retries}/{self.settings.max_retries} in {self.settings.retry_delay}s"
                )
                await asyncio.sleep(self.settings.retry_delay)
            else:
                self._sent += 1
                logger.info(f"[Email] ✓ Sent '{message.subject}' to {message.to}")
                return True


# ============================================================================
# EMAIL CHANNEL
# ============================================================================

class EmailChannel(DeliveryChannel):
    """Renders and queues email for error and warning notifications."""

    channel_type = ChannelType.EMAIL

    EMAILED_SEVERITIES = frozenset({Severity.ERROR, Severity.WARNING})

    def __init__(
        self,
        repository: Repository,
        queue: EmailQueue,
        settings: Optional[EmailSettings] = None,
        app_name: str = "PingMaster",
        template_dir: Optional[Path] = None,
    ):
        self.repository = repository
        self.queue = queue
        self.settings = settings or queue.settings
        self.app_name = app_name
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, notification: "Notification", event: "TransitionEvent") -> EmailMessage:
        severity = Severity(notification.type)
        monitor = event.monitor
        template = self.jinja_env.get_template(f"{severity.value}.html")

        response_time = getattr(event.check_result, "latency_ms", None)
        html = template.render(
            app_name=self.app_name,
            title=notification.title,
            message=notification.message,
            monitor_name=monitor.display_name,
            monitor_url=monitor.url,
            response_time=response_time,
            timestamp=TimeHelper.to_iso(notification.created_at),
            error=event.error or getattr(event.check_result, "error", None),
            tls_days_remaining=event.transition.tls_days_remaining,
            dashboard_url=self.settings.dashboard_url,
        )
        return EmailMessage(
            to="",
            subject=f"{SUBJECT_PREFIX.get(severity, '')} {notification.title}".strip(),
            html=html,
            text=notification.message,
        )

    async def deliver(
        self,
        notification: "Notification",
        event: "TransitionEvent",
    ) -> DeliveryOutcome:
        if not self.settings.enabled:
            return DeliveryOutcome.skipped(self.channel_type, "email disabled")

        if Severity(notification.type) not in self.EMAILED_SEVERITIES:
            return DeliveryOutcome.skipped(
                self.channel_type, f"{Severity(notification.type).value} notifications are not emailed"
            )

        user = await self.repository.get_user(notification.user_id)
        if user is None or not user.email:
            return DeliveryOutcome.skipped(self.channel_type, "user has no email address")

        message = self.render(notification, event)
        message.to = user.email
        self.queue.enqueue(message)
        return DeliveryOutcome.ok(self.channel_type, f"queued for {user.email}")

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    def status(self) -> Dict[str, Any]:
        return {"channel": self.name, "enabled": self.settings.enabled, **self.queue.status()}
