"""
Delivery Exception Classes for PingMaster

One family per delivery channel. A channel failure is logged and
isolated; it never touches the notification record or the other
channels.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import PingMasterException


class DeliveryFailure(PingMasterException):
    """
    Base Delivery Exception
    """

    default_error_code = 5000
    channel: str = "unknown"

    def __init__(
        self,
        message: str,
        notification_id: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        self.details["channel"] = self.channel
        if notification_id is not None:
            self.details["notification_id"] = notification_id


class PushDeliveryError(DeliveryFailure):
    """Writing a frame to a user's push streams failed."""

    default_error_code = 5001
    channel = "push"


class WebhookDeliveryError(DeliveryFailure):
    """A webhook POST failed or returned a non-2xx status."""

    default_error_code = 5002
    channel = "webhook"

    def __init__(
        self,
        message: str = "Webhook delivery failed",
        delivery_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        self.status_code = status_code
        if delivery_id:
            self.details["delivery_id"] = delivery_id
        if status_code is not None:
            self.details["status_code"] = status_code


class EmailDeliveryError(DeliveryFailure):
    """An SMTP send failed."""

    default_error_code = 5003
    channel = "email"

    def __init__(
        self,
        message: str = "Email delivery failed",
        recipient: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if recipient:
            self.details["recipient"] = recipient
