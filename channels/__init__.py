"""
============================================================================
PINGMASTER - DELIVERY CHANNELS
============================================================================
Every notification the dispatcher accepts is handed to the monitor's
enabled channels:

channels/
├── __init__.py    ← this file
├── base.py        ← DeliveryChannel interface + DeliveryOutcome
├── push.py        ← PushBroadcaster (SSE registry) + PushChannel
├── webhook.py     ← WebhookService (signing, retries) + WebhookChannel
├── email.py       ← EmailQueue (SMTP worker) + EmailChannel
└── templates/     ← jinja2 email templates per severity

============================================================================
"""

from channels.base import DeliveryChannel, DeliveryOutcome
from channels.push import PushBroadcaster, PushChannel, PushStream, format_frame
from channels.webhook import (
    WebhookChannel,
    WebhookService,
    compute_backoff,
    encode_payload,
    sign_payload,
    verify_signature,
)
from channels.email import EmailChannel, EmailMessage, EmailQueue, SmtpSender

__all__ = [
    # Interface
    "DeliveryChannel",
    "DeliveryOutcome",

    # Push
    "PushBroadcaster",
    "PushChannel",
    "PushStream",
    "format_frame",

    # Webhook
    "WebhookService",
    "WebhookChannel",
    "compute_backoff",
    "encode_payload",
    "sign_payload",
    "verify_signature",

    # Email
    "EmailQueue",
    "EmailChannel",
    "EmailMessage",
    "SmtpSender",
]
