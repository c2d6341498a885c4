"""
============================================================================
PINGMASTER - WEBHOOK DELIVERY
============================================================================
Signs and POSTs notification events to user-configured webhooks and
retries failed deliveries with exponential backoff.

Contract
--------
Every delivery is a JSON POST carrying:

    Content-Type   application/json
    X-Event-Type   e.g. notification.created
    X-Delivery-Id  UUID, stable across retries (consumer dedup key)
    X-Timestamp    ISO-8601 UTC time of this attempt
    X-Signature    hex HMAC-SHA256 of the exact body bytes (when a
                   secret is configured)

Retry
-----
A non-2xx answer or transport error increments ``attempts``. Below the
ceiling (5 by default) the delivery is marked ``failed`` with
``next_retry = now + min(base * 2 ** (attempts - 1) + jitter, max)``;
at the ceiling it stays ``failed`` for good. A ``success`` delivery is
never retried.

Retries live in a heap keyed by ``next_retry`` and are drained by one
background loop, which also sweeps the repository every
``sweep_interval`` for due deliveries persisted before a restart.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import hashlib
import heapq
import hmac
import itertools
import json
import random
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set, Tuple

import httpx

from channels.base import DeliveryChannel, DeliveryOutcome
from config.constants import ChannelType, DeliveryStatus, EventTypes, Limits, WebhookHeaders
from config.settings import WebhookSettings, get_settings
from database.models import WebhookConfig, WebhookDelivery
from database.repository import Repository
from exceptions import PersistenceFailure, WebhookDeliveryError
from utils.helpers import StringHelper, TimeHelper
from utils.logger import get_logger

if TYPE_CHECKING:
    from database.models import Notification
    from monitoring.classifier import TransitionEvent


logger = get_logger("Webhooks")


# ============================================================================
# SIGNING & BACKOFF
# ============================================================================

def encode_payload(payload: Dict[str, Any]) -> bytes:
    """Serialize a payload to the exact bytes that are sent and signed."""
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of an ``X-Signature`` header, for consumers."""
    return hmac.compare_digest(sign_payload(body, secret), signature)


def compute_backoff(
    attempts: int,
    base_delay: float,
    max_delay: float,
    jitter: float = 0.0,
) -> float:
    """
    Seconds to wait before retrying after ``attempts`` failed attempts.
    """
    return min(base_delay * (2 ** (attempts - 1)) + jitter, max_delay)


# ============================================================================
# WEBHOOK SERVICE
# ============================================================================

class WebhookService:
    """
    Delivery engine for webhooks.

    Parameters
    ----------
    repository : Repository
        Source of webhook configs and store of delivery records.
    settings : WebhookSettings | None
        Attempt ceiling, backoff and sweep configuration.
    client : httpx.AsyncClient | None
        Shared HTTP client; one is created (and closed on stop) if omitted.
    rng : callable | None
        Returns a float in [0, 1) scaled by ``settings.jitter``.
    clock : callable | None
        Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        repository: Repository,
        settings: Optional[WebhookSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        rng: Optional[Callable[[], float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings().webhooks
        self.repository = repository
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.request_timeout,
        )
        self._rng = rng or random.random
        self._clock = clock or TimeHelper.utc_now

        # --- delayed work queue: (next_retry_ts, seq, delivery_id) ---
        self._heap: List[Tuple[float, int, str]] = []
        self._queued: Set[str] = set()
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

        # --- lifecycle ---
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_sweep: Optional[datetime] = None

        # --- stats ---
        self._sent = 0
        self._failed = 0
        self._exhausted = 0

        logger.info(
            f"[Webhooks] Created: max_attempts={self.settings.max_attempts}, "
            f"base_delay={self.settings.base_delay}s, max_delay={self.settings.max_delay}s"
        )

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("[Webhooks] Retry loop already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._retry_loop(), name="webhook-retry-loop")
        logger.info("[Webhooks] ✓ Retry loop started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._owns_client:
            await self.client.aclose()
        logger.info(f"[Webhooks] ✓ Stopped ({len(self._heap)} retries left queued)")

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    def retry_delay(self, attempts: int) -> float:
        """Backoff for the given number of failed attempts, jitter included."""
        jitter = self._rng() * self.settings.jitter
        return compute_backoff(
            attempts,
            self.settings.base_delay,
            self.settings.max_delay,
            jitter,
        )

    async def broadcast(
        self,
        user_id: int,
        event_type: str,
        payload: Dict[str, Any],
    ) -> List[WebhookDelivery]:
        """Enqueue ``payload`` for every active webhook of the user subscribed to ``event_type``."""
        webhooks = await self.repository.list_webhooks(user_id, event_type)
        if not webhooks:
            return []

        results = await asyncio.gather(
            *(self.enqueue(webhook, event_type, payload) for webhook in webhooks),
            return_exceptions=True,
        )

        deliveries: List[WebhookDelivery] = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                logger.error(f"[Webhooks] ✗ Could not enqueue for webhook {webhook.id}: {result!r}")
            elif result is not None:
                deliveries.append(result)
        return deliveries

    async def enqueue(
        self,
        webhook: WebhookConfig,
        event_type: str,
        payload: Dict[str, Any],
    ) -> Optional[WebhookDelivery]:
        """
        Persist a ``pending`` delivery and make the first attempt.

        Returns:
            The delivery record, or None when the webhook is inactive

        Raises:
            PersistenceFailure: The pending record could not be stored
        """
        if not webhook.is_active:
            logger.debug(f"[Webhooks] Webhook {webhook.id} inactive, skipping {event_type}")
            return None

        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.PENDING,
            created_at=self._clock(),
        )
        await self.repository.save_webhook_delivery(delivery)
        return await self.attempt(delivery, webhook)

    async def attempt(
        self,
        delivery: WebhookDelivery,
        webhook: Optional[WebhookConfig] = None,
    ) -> WebhookDelivery:
        """Make one delivery attempt and record the result."""
        if delivery.is_terminal:
            return delivery

        if delivery.attempts >= self.settings.max_attempts:
            logger.debug(f"[Webhooks] Delivery {delivery.id} already at the attempt ceiling")
            return delivery

        if webhook is None:
            webhook = await self.repository.get_webhook(delivery.webhook_id)

        if webhook is None or not webhook.is_active:
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry = None
            delivery.error = "webhook missing or inactive"
            logger.info(f"[Webhooks] Delivery {delivery.id} dropped: webhook {delivery.webhook_id} missing or inactive")
            await self._save(delivery)
            return delivery

        body = encode_payload(delivery.payload)
        now = self._clock()
        headers = {
            WebhookHeaders.CONTENT_TYPE: "application/json",
            WebhookHeaders.EVENT: delivery.event_type,
            WebhookHeaders.DELIVERY: delivery.id,
            WebhookHeaders.TIMESTAMP: TimeHelper.to_iso(now),
        }
        if webhook.secret:
            headers[WebhookHeaders.SIGNATURE] = sign_payload(body, webhook.secret)

        delivery.attempts += 1
        try:
            response = await self.client.post(
                webhook.url,
                content=body,
                headers=headers,
                timeout=self.settings.request_timeout,
            )
            delivery.response_status = response.status_code
            delivery.response_body = StringHelper.truncate(response.text, Limits.MAX_RESPONSE_BODY)
            if not response.is_success:
                raise WebhookDeliveryError(
                    f"HTTP {response.status_code}",
                    delivery_id=delivery.id,
                    status_code=response.status_code,
                )
        except (httpx.HTTPError, WebhookDeliveryError) as e:
            error = e.message if isinstance(e, WebhookDeliveryError) else (str(e) or e.__class__.__name__)
            self._record_failure(delivery, error, now)
        else:
            delivery.status = DeliveryStatus.SUCCESS
            delivery.error = None
            delivery.next_retry = None
            self._sent += 1
            logger.info(
                f"[Webhooks] ✓ Delivered {delivery.event_type} {delivery.id} to webhook "
                f"{webhook.id} (attempt {delivery.attempts})"
            )

        await self._save(delivery)
        if delivery.status == DeliveryStatus.FAILED and delivery.next_retry is not None:
            self._schedule(delivery)
        return delivery

    async def process_due(self, now: Optional[datetime] = None) -> int:
        """
        Attempt every queued retry whose time has come.

        Returns:
            Number of attempts made
        """
        now = now or self._clock()
        cutoff = now.timestamp()
        processed = 0

        while self._heap and self._heap[0][0] <= cutoff:
            _, _, delivery_id = heapq.heappop(self._heap)
            self._queued.discard(delivery_id)

            delivery = await self.repository.get_webhook_delivery(delivery_id)
            if delivery is None or delivery.status != DeliveryStatus.FAILED:
                continue

            await self.attempt(delivery)
            processed += 1

        return processed

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Queue due retries found in storage that are not queued yet.

        Returns:
            Number of deliveries newly queued
        """
        now = now or self._clock()
        self._last_sweep = now
        due = await self.repository.due_retries(now, self.settings.max_attempts)

        added = 0
        for delivery in due:
            if delivery.id not in self._queued:
                self._schedule(delivery)
                added += 1

        if added:
            logger.info(f"[Webhooks] Sweep queued {added} due retries")
        return added

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    def _record_failure(self, delivery: WebhookDelivery, error: str, now: datetime) -> None:
        delivery.status = DeliveryStatus.FAILED
        delivery.error = StringHelper.truncate(error, Limits.MAX_ERROR_LENGTH)
        self._failed += 1

        if delivery.attempts < self.settings.max_attempts:
            delay = self.retry_delay(delivery.attempts)
            delivery.next_retry = now + timedelta(seconds=delay)
            logger.warning(
                f"[Webhooks] Delivery {delivery.id} attempt {delivery.attempts}/"
                f"{self.settings.max_attempts} failed: {error}, retry in {delay:.1f}s"
            )
        else:
            delivery.next_retry = None
            self._exhausted += 1
            logger.error(
                f"[Webhooks] ✗ Delivery {delivery.id} failed permanently after "
                f"{delivery.attempts} attempts: {error}"
            )

    async def _save(self, delivery: WebhookDelivery) -> None:
        try:
            await self.repository.save_webhook_delivery(delivery)
        except PersistenceFailure as e:
            logger.error(f"[Webhooks] Delivery {delivery.id} state not stored: {e.log_format()}")

    def _schedule(self, delivery: WebhookDelivery) -> None:
        next_retry = TimeHelper.ensure_aware(delivery.next_retry)
        if next_retry is None or delivery.id in self._queued:
            return
        heapq.heappush(self._heap, (next_retry.timestamp(), next(self._seq), delivery.id))
        self._queued.add(delivery.id)
        self._wakeup.set()

    def _seconds_until_next_wake(self) -> float:
        now = self._clock()
        waits = [self.settings.sweep_interval]
        if self._last_sweep is not None:
            waits.append(
                self.settings.sweep_interval - (now - self._last_sweep).total_seconds()
            )
        if self._heap:
            waits.append(self._heap[0][0] - now.timestamp())
        return max(0.0, min(waits))

    async def _retry_loop(self) -> None:
        logger.info("[Webhooks] Retry loop started")
        while self._running:
            try:
                now = self._clock()
                if (
                    self._last_sweep is None
                    or (now - self._last_sweep).total_seconds() >= self.settings.sweep_interval
                ):
                    await self.sweep(now)

                await self.process_due(now)

                self._wakeup.clear()
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(),
                        timeout=self._seconds_until_next_wake(),
                    )
                except asyncio.TimeoutError:
                    pass
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.opt(exception=True).error(f"[Webhooks] Unhandled error in retry loop: {e}")
                await asyncio.sleep(1.0)
        logger.info("[Webhooks] Retry loop exited")

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "queued_retries": len(self._heap),
            "sent": self._sent,
            "failed_attempts": self._failed,
            "exhausted": self._exhausted,
        }


# ============================================================================
# WEBHOOK CHANNEL
# ============================================================================

class WebhookChannel(DeliveryChannel):
    """Sends ``notification.*`` events to the owner's subscribed webhooks."""

    channel_type = ChannelType.WEBHOOK

    def __init__(self, service: WebhookService):
        self.service = service

    @staticmethod
    def build_payload(notification: "Notification", event: "TransitionEvent") -> Dict[str, Any]:
        monitor = event.monitor
        return {
            "id": notification.id,
            "title": notification.title,
            "message": notification.message,
            "type": notification.to_dict()["type"],
            "url": monitor.url,
            "createdAt": TimeHelper.to_iso(notification.created_at),
            "monitorId": monitor.id,
            "event": event.kind.value,
            "state": event.transition.current.value,
        }

    async def deliver(
        self,
        notification: "Notification",
        event: "TransitionEvent",
    ) -> DeliveryOutcome:
        deliveries = await self.service.broadcast(
            notification.user_id,
            EventTypes.NOTIFICATION_CREATED,
            self.build_payload(notification, event),
        )
        if not deliveries:
            return DeliveryOutcome.skipped(self.channel_type, "no subscribed webhooks")

        delivered = sum(1 for d in deliveries if d.status == DeliveryStatus.SUCCESS)
        return DeliveryOutcome.ok(
            self.channel_type,
            f"{delivered}/{len(deliveries)} delivered on first attempt",
            deliveries=[d.id for d in deliveries],
        )

    async def publish_change(self, user_id: int, action: str, data: Dict[str, Any]) -> None:
        await self.service.broadcast(user_id, f"notification.{action}", data)

    async def start(self) -> None:
        await self.service.start()

    async def stop(self) -> None:
        await self.service.stop()

    def status(self) -> Dict[str, Any]:
        return {"channel": self.name, **self.service.get_stats()}
