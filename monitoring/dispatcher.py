"""
============================================================================
PINGMASTER - NOTIFICATION DISPATCHER
============================================================================
Receives transition events from the scheduler, decides whether each
one becomes a notification, persists it, and fans it out to the
monitor's enabled delivery channels.

Throttle
--------
Key ``(monitor_id, new_state)``; certificate expiry warnings use
``(monitor_id, "tls_expiring")``. A second event for a key inside the
window (15 minutes by default) is dropped silently. The dispatcher is
the only owner of this state; channels never see suppressed events.

Persistence
-----------
If the notification cannot be stored, the throttle mark is released
so the next occurrence can try again, and the ``PersistenceFailure``
propagates to the caller.

Fan-out
-------
Each enabled channel runs as its own background task. A failure in one
is logged as a ``DeliveryFailure`` and affects nothing else.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Set, Tuple

from channels.base import DeliveryChannel, DeliveryOutcome
from config.constants import ChannelType, EventKind, HealthState, PushActions
from config.settings import NotificationSettings, get_settings
from database.models import Notification
from database.repository import Repository
from exceptions import DeliveryFailure, PersistenceFailure
from monitoring.classifier import TransitionEvent
from utils.logger import get_logger


logger = get_logger("Dispatcher")


# ============================================================================
# THROTTLE STATE
# ============================================================================

class ThrottleState:
    """
    Last-notified timestamps per throttle key, kept only for the
    length of the window.

    Guarded by a ``threading.Lock`` so the check-and-mark is a single
    critical section regardless of which thread calls it.
    """

    def __init__(self, window: float, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._marks: Dict[Hashable, float] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def check_and_mark(self, key: Hashable) -> bool:
        """
        Return True and record the key if it is outside the window,
        False if it was notified too recently.
        """
        with self._lock:
            now = self._clock()
            self._prune_locked(now)

            last = self._marks.get(key)
            if last is not None and now - last < self.window:
                return False

            self._marks[key] = now
            return True

    def release(self, key: Hashable) -> None:
        with self._lock:
            self._marks.pop(key, None)

    def clear(self, monitor_id: int) -> int:
        """Forget every key belonging to a monitor."""
        with self._lock:
            keys = [
                k for k in self._marks
                if isinstance(k, tuple) and k and k[0] == monitor_id
            ]
            for key in keys:
                del self._marks[key]
            return len(keys)

    def _prune_locked(self, now: float) -> None:
        if now - self._last_prune < self.window:
            return
        self._marks = {
            k: ts for k, ts in self._marks.items() if now - ts < self.window
        }
        self._last_prune = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._marks)


# ============================================================================
# NOTIFICATION RENDERING
# ============================================================================

def render_notification(event: TransitionEvent) -> Tuple[str, str]:
    """Build the title and message shown to the user for an event."""
    monitor = event.monitor
    transition = event.transition
    name = monitor.name or monitor.url

    if transition.kind == EventKind.TLS_EXPIRING:
        days = transition.tls_days_remaining
        return (
            f"SSL certificate expiring: {name}",
            f"The TLS certificate for {monitor.url} expires in {days} day(s).",
        )

    current = transition.current
    if current == HealthState.UP:
        if transition.previous == HealthState.PENDING:
            return (
                f"{name} is up",
                f"{monitor.url} is reachable.",
            )
        return (
            f"{name} is back up",
            f"{monitor.url} has recovered and is responding again.",
        )

    error = event.error or getattr(event.check_result, "error", None)
    if current == HealthState.ERROR:
        title = f"{name} check failed"
        message = f"Monitoring {monitor.url} failed with an internal error."
    else:
        title = f"{name} is down"
        message = f"{monitor.url} is not responding."
    if error:
        message = f"{message} Error: {error}"
    return title, message


# ============================================================================
# NOTIFICATION DISPATCHER
# ============================================================================

class NotificationDispatcher:
    """
    Throttles, persists and fans out transition events.

    Parameters
    ----------
    repository : Repository
        Storage for notifications.
    channels : iterable of DeliveryChannel
        At most one channel per ``ChannelType``.
    settings : NotificationSettings | None
        Throttle window and default channel set.
    clock : callable | None
        Monotonic clock for the throttle; injectable for tests.
    """

    def __init__(
        self,
        repository: Repository,
        channels: Iterable[DeliveryChannel] = (),
        settings: Optional[NotificationSettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings or get_settings().notifications
        self.repository = repository
        self.channels: Dict[ChannelType, DeliveryChannel] = {
            channel.channel_type: channel for channel in channels
        }
        self.throttle = ThrottleState(
            self.settings.throttle_window,
            clock=clock or time.monotonic,
        )

        self._tasks: Set[asyncio.Task] = set()

        # --- counters for diagnostics ---
        self._accepted = 0
        self._suppressed = 0
        self._delivery_failures = 0

        logger.info(
            f"[Dispatcher] Created: throttle_window={self.settings.throttle_window}s, "
            f"channels={sorted(c.value for c in self.channels)}"
        )

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def dispatch(self, event: TransitionEvent) -> Optional[Notification]:
        """
        Handle one transition event.

        Returns:
            The persisted notification, or None when throttled

        Raises:
            PersistenceFailure: The notification could not be stored
        """
        key = event.throttle_key
        if not self.throttle.check_and_mark(key):
            self._suppressed += 1
            logger.debug(f"[Dispatcher] Throttled event {key}")
            return None

        title, message = render_notification(event)
        notification = Notification(
            user_id=event.monitor.user_id,
            monitor_id=event.monitor.id,
            title=title,
            message=message,
            type=event.severity,
        )

        try:
            notification = await self.repository.create_notification(notification)
        except PersistenceFailure:
            self.throttle.release(key)
            raise
        except Exception as e:
            self.throttle.release(key)
            raise PersistenceFailure(
                f"Failed to store notification: {e}", cause=e
            ) from e

        self._accepted += 1
        logger.info(
            f"[Dispatcher] ✓ Notification {notification.id} ({event.severity.value}) "
            f"for monitor {event.monitor.id}: {title}"
        )

        self._fan_out(notification, event)
        return notification

    async def mark_read(self, user_id: int, ids: List[int]) -> List[int]:
        """Mark notifications read and tell push/webhook subscribers."""
        updated = await self.repository.mark_notifications_read(user_id, ids)
        if updated:
            self._publish_change(
                user_id,
                PushActions.UPDATED,
                {"ids": updated, "read": True},
            )
        return updated

    async def delete(self, user_id: int, ids: List[int]) -> List[int]:
        """Delete notifications and tell push/webhook subscribers."""
        deleted = await self.repository.delete_notifications(user_id, ids)
        if deleted:
            self._publish_change(user_id, PushActions.DELETED, {"ids": deleted})
        return deleted

    async def unread_count(self, user_id: int) -> int:
        return await self.repository.count_unread(user_id)

    def clear_throttle(self, monitor_id: int) -> int:
        cleared = self.throttle.clear(monitor_id)
        if cleared:
            logger.debug(f"[Dispatcher] Cleared {cleared} throttle entries for monitor {monitor_id}")
        return cleared

    async def drain(self) -> None:
        """Wait for every outstanding channel task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # FAN-OUT
    # ------------------------------------------------------------------

    def _enabled_channels(self, monitor: Any) -> List[DeliveryChannel]:
        names = monitor.channels
        if names is None:
            names = self.settings.default_channels

        enabled = []
        for name in names:
            try:
                channel = self.channels.get(ChannelType(name))
            except ValueError:
                logger.warning(f"[Dispatcher] Monitor {monitor.id} lists unknown channel {name!r}")
                continue
            if channel is not None:
                enabled.append(channel)
        return enabled

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _fan_out(self, notification: Notification, event: TransitionEvent) -> None:
        for channel in self._enabled_channels(event.monitor):
            self._spawn(self._deliver(channel, notification, event))

    async def _deliver(
        self,
        channel: DeliveryChannel,
        notification: Notification,
        event: TransitionEvent,
    ) -> DeliveryOutcome:
        try:
            outcome = await channel.deliver(notification, event)
        except Exception as e:
            failure = e if isinstance(e, DeliveryFailure) else DeliveryFailure(
                f"{channel.name} delivery raised: {e}",
                notification_id=notification.id,
                cause=e,
            )
            logger.error(f"[Dispatcher] ✗ {failure.log_format()}")
            outcome = DeliveryOutcome.fail(channel.channel_type, failure.message)

        if not outcome.success:
            self._delivery_failures += 1
            logger.warning(
                f"[Dispatcher] {channel.name} delivery failed for notification "
                f"{notification.id}: {outcome.detail}"
            )
        elif outcome.was_skipped:
            logger.debug(
                f"[Dispatcher] {channel.name} skipped notification {notification.id}: {outcome.detail}"
            )
        return outcome

    def _publish_change(self, user_id: int, action: str, data: Dict[str, Any]) -> None:
        for channel in self.channels.values():
            self._spawn(self._publish_to(channel, user_id, action, data))

    async def _publish_to(
        self,
        channel: DeliveryChannel,
        user_id: int,
        action: str,
        data: Dict[str, Any],
    ) -> None:
        try:
            await channel.publish_change(user_id, action, data)
        except Exception as e:
            logger.error(
                f"[Dispatcher] ✗ {channel.name} failed to publish notification.{action} "
                f"for user {user_id}: {e}"
            )

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "accepted": self._accepted,
            "suppressed": self._suppressed,
            "delivery_failures": self._delivery_failures,
            "throttle_entries": len(self.throttle),
            "pending_deliveries": len(self._tasks),
            "channels": {c.value: ch.status() for c, ch in self.channels.items()},
        }
