"""
============================================================================
PINGMASTER - REPOSITORY
============================================================================
Storage interface consumed by the scheduler, the dispatcher and the
channels, plus its SQLAlchemy implementation.

The engine only ever talks to ``Repository``; anything that honours
the interface (the SQL store below, an in-memory store in tests) can
back it. Every SQL failure surfaces as a ``PersistenceFailure``.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update

from config.constants import DeliveryStatus, EventTypes, HealthState
from database.manager import DatabaseManager
from database.models import (
    CheckResult,
    Monitor,
    Notification,
    User,
    WebhookConfig,
    WebhookDelivery,
)
from utils.logger import get_logger


logger = get_logger("Repository")


def event_matches(patterns: Optional[Iterable[str]], event_type: str) -> bool:
    """
    Check whether a webhook's event patterns subscribe to ``event_type``.

    ``*`` matches everything; other entries are shell-style patterns
    such as ``notification.*``.
    """
    for pattern in patterns or ():
        if pattern == EventTypes.WILDCARD or fnmatchcase(event_type, pattern):
            return True
    return False


# ============================================================================
# REPOSITORY INTERFACE
# ============================================================================

class Repository(ABC):
    """
    Persistence operations the engine depends on.
    """

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_monitors(self) -> List[Monitor]:
        """Every active monitor."""

    @abstractmethod
    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        ...

    @abstractmethod
    async def update_monitor_state(
        self,
        monitor_id: int,
        state: HealthState,
        checked_at: datetime,
        response_time: Optional[float],
    ) -> None:
        ...

    @abstractmethod
    async def delete_monitor(self, monitor_id: int) -> bool:
        """Delete a monitor together with its history and notifications."""

    # ------------------------------------------------------------------
    # Check history
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_check_result(self, result: CheckResult) -> CheckResult:
        ...

    @abstractmethod
    async def list_check_results(self, monitor_id: int, limit: int = 100) -> List[CheckResult]:
        """Most recent first."""

    # ------------------------------------------------------------------
    # Users and notifications
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    async def create_notification(self, notification: Notification) -> Notification:
        """Persist and return the notification with its id assigned."""

    @abstractmethod
    async def mark_notifications_read(self, user_id: int, ids: Sequence[int]) -> List[int]:
        """Flip ``read`` on the user's notifications; returns the ids touched."""

    @abstractmethod
    async def delete_notifications(self, user_id: int, ids: Sequence[int]) -> List[int]:
        """Delete the user's notifications; returns the ids removed."""

    @abstractmethod
    async def count_unread(self, user_id: int) -> int:
        ...

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_webhooks(self, user_id: int, event_type: str) -> List[WebhookConfig]:
        """Active webhooks of the user subscribed to ``event_type``."""

    @abstractmethod
    async def get_webhook(self, webhook_id: int) -> Optional[WebhookConfig]:
        ...

    @abstractmethod
    async def save_webhook_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Insert or update a delivery record."""

    @abstractmethod
    async def get_webhook_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        ...

    @abstractmethod
    async def due_retries(self, now: datetime, max_attempts: int) -> List[WebhookDelivery]:
        """Failed deliveries whose ``next_retry`` has passed and attempts remain."""


# ============================================================================
# SQLALCHEMY IMPLEMENTATION
# ============================================================================

class SqlRepository(Repository):
    """
    ``Repository`` backed by the async SQLAlchemy session of a
    ``DatabaseManager``.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def list_monitors(self) -> List[Monitor]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Monitor)
                .where(Monitor.is_active.is_(True))
                .order_by(Monitor.id)
            )
            return list(result.scalars().all())

    async def get_monitor(self, monitor_id: int) -> Optional[Monitor]:
        async with self.db.session() as session:
            return await session.get(Monitor, monitor_id)

    async def update_monitor_state(
        self,
        monitor_id: int,
        state: HealthState,
        checked_at: datetime,
        response_time: Optional[float],
    ) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(Monitor)
                .where(Monitor.id == monitor_id)
                .values(
                    state=state,
                    last_checked=checked_at,
                    response_time=response_time,
                )
            )

    async def delete_monitor(self, monitor_id: int) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                delete(Monitor).where(Monitor.id == monitor_id)
            )
            deleted = (result.rowcount or 0) > 0

        if deleted:
            logger.info(f"[Repository] Monitor {monitor_id} deleted with its history")
        return deleted

    async def save_check_result(self, result: CheckResult) -> CheckResult:
        async with self.db.session() as session:
            session.add(result)
            await session.flush()
        return result

    async def list_check_results(self, monitor_id: int, limit: int = 100) -> List[CheckResult]:
        async with self.db.session() as session:
            result = await session.execute(
                select(CheckResult)
                .where(CheckResult.monitor_id == monitor_id)
                .order_by(CheckResult.checked_at.desc(), CheckResult.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.db.session() as session:
            return await session.get(User, user_id)

    async def create_notification(self, notification: Notification) -> Notification:
        async with self.db.session() as session:
            session.add(notification)
            await session.flush()
        return notification

    async def mark_notifications_read(self, user_id: int, ids: Sequence[int]) -> List[int]:
        if not ids:
            return []

        async with self.db.session() as session:
            owned = await session.execute(
                select(Notification.id).where(
                    Notification.user_id == user_id,
                    Notification.id.in_(list(ids)),
                )
            )
            owned_ids = list(owned.scalars().all())
            if owned_ids:
                await session.execute(
                    update(Notification)
                    .where(Notification.id.in_(owned_ids))
                    .values(read=True)
                )
            return owned_ids

    async def delete_notifications(self, user_id: int, ids: Sequence[int]) -> List[int]:
        if not ids:
            return []

        async with self.db.session() as session:
            owned = await session.execute(
                select(Notification.id).where(
                    Notification.user_id == user_id,
                    Notification.id.in_(list(ids)),
                )
            )
            owned_ids = list(owned.scalars().all())
            if owned_ids:
                await session.execute(
                    delete(Notification).where(Notification.id.in_(owned_ids))
                )
            return owned_ids

    async def count_unread(self, user_id: int) -> int:
        async with self.db.session() as session:
            count = await session.scalar(
                select(func.count(Notification.id)).where(
                    Notification.user_id == user_id,
                    Notification.read.is_(False),
                )
            )
            return int(count or 0)

    async def list_webhooks(self, user_id: int, event_type: str) -> List[WebhookConfig]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WebhookConfig).where(
                    WebhookConfig.user_id == user_id,
                    WebhookConfig.is_active.is_(True),
                )
            )
            webhooks = result.scalars().all()

        # Pattern matching on a JSON list is done here to stay portable
        return [w for w in webhooks if event_matches(w.events, event_type)]

    async def get_webhook(self, webhook_id: int) -> Optional[WebhookConfig]:
        async with self.db.session() as session:
            return await session.get(WebhookConfig, webhook_id)

    async def save_webhook_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self.db.session() as session:
            await session.merge(delivery)
        return delivery

    async def get_webhook_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async with self.db.session() as session:
            return await session.get(WebhookDelivery, delivery_id)

    async def due_retries(self, now: datetime, max_attempts: int) -> List[WebhookDelivery]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WebhookDelivery)
                .where(
                    WebhookDelivery.status == DeliveryStatus.FAILED,
                    WebhookDelivery.next_retry.is_not(None),
                    WebhookDelivery.next_retry <= now,
                    WebhookDelivery.attempts < max_attempts,
                )
                .order_by(WebhookDelivery.next_retry)
            )
            return list(result.scalars().all())
