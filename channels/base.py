"""
Delivery Channel Base

Defines the interface every delivery channel implements and the
outcome value it reports back to the dispatcher. The set of channels
is closed: push, webhook and email, selected by ``ChannelType``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from config.constants import ChannelType

if TYPE_CHECKING:
    from database.models import Notification
    from monitoring.classifier import TransitionEvent


@dataclass
class DeliveryOutcome:
    """
    Result of handing a notification to one channel.

    ``success`` means the channel accepted the notification (sent it,
    queued it, or had nothing to do); retries after that are the
    channel's own business.
    """

    channel: ChannelType
    success: bool
    detail: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, channel: ChannelType, detail: Optional[str] = None, **metadata: Any) -> "DeliveryOutcome":
        return cls(channel=channel, success=True, detail=detail, metadata=metadata)

    @classmethod
    def fail(cls, channel: ChannelType, detail: str, **metadata: Any) -> "DeliveryOutcome":
        return cls(channel=channel, success=False, detail=detail, metadata=metadata)

    @classmethod
    def skipped(cls, channel: ChannelType, reason: str) -> "DeliveryOutcome":
        return cls(channel=channel, success=True, detail=reason, metadata={"skipped": True})

    @property
    def was_skipped(self) -> bool:
        return bool(self.metadata.get("skipped"))


class DeliveryChannel(ABC):
    """
    Abstract delivery channel.

    Subclasses set ``channel_type`` and implement ``deliver``. Channels
    that also mirror notification updates and deletions to subscribers
    override ``publish_change``.
    """

    channel_type: ChannelType

    @property
    def name(self) -> str:
        return self.channel_type.value

    @abstractmethod
    async def deliver(
        self,
        notification: "Notification",
        event: "TransitionEvent",
    ) -> DeliveryOutcome:
        """Deliver a freshly created notification."""

    async def publish_change(
        self,
        user_id: int,
        action: str,
        data: Dict[str, Any],
    ) -> None:
        """Mirror a notification update or deletion; most channels ignore it."""
        return None

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    def status(self) -> Dict[str, Any]:
        return {"channel": self.name}
