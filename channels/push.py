"""
============================================================================
PINGMASTER - REAL-TIME PUSH
============================================================================
Server-sent-event streams, one or more per connected user. The
broadcaster holds the registry; the HTTP layer drains each stream's
queue onto its response.

Frames are ``data: <json>\\n\\n``. A stream's first frame is
``{"type": "connected"}``; notifications follow as
``{"type": "notification", "action": ..., "data": ...}``.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

from __future__ import annotations

import asyncio
import itertools
import json
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from channels.base import DeliveryChannel, DeliveryOutcome
from config.constants import ChannelType, Limits, PushActions
from utils.logger import get_logger

if TYPE_CHECKING:
    from database.models import Notification
    from monitoring.classifier import TransitionEvent


logger = get_logger("Push")


def format_frame(payload: Dict[str, Any]) -> str:
    """Encode one SSE frame."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


class PushStream:
    """
    One open SSE connection.

    Frames go through a bounded queue; when a slow client lets it fill
    up, new frames for that client are dropped rather than blocking
    the publisher.
    """

    _ids = itertools.count(1)

    def __init__(self, user_id: int, maxsize: int = Limits.PUSH_QUEUE_SIZE):
        self.id = next(self._ids)
        self.user_id = user_id
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def put(self, frame: str) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"[Push] Stream {self.id} of user {self.user_id} is full, frame dropped"
            )
            return False

    async def next_frame(self) -> Optional[str]:
        """Next frame, or None once the stream is closed."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            # Wake a reader blocked in next_frame()
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __repr__(self) -> str:
        return f"PushStream(id={self.id}, user_id={self.user_id}, closed={self.closed})"


class PushBroadcaster:
    """
    Registry of open streams per user.

    The registry is guarded by a ``threading.Lock``; ``publish``
    iterates over a snapshot so a concurrent disconnect cannot break
    the loop.
    """

    def __init__(self, queue_size: int = Limits.PUSH_QUEUE_SIZE):
        self._streams: Dict[int, Dict[int, PushStream]] = {}
        self._lock = threading.Lock()
        self._queue_size = queue_size

    def connect(self, user_id: int) -> PushStream:
        stream = PushStream(user_id, maxsize=self._queue_size)
        stream.put(format_frame({"type": "connected"}))

        with self._lock:
            self._streams.setdefault(user_id, {})[stream.id] = stream
            total = len(self._streams[user_id])

        logger.info(f"[Push] User {user_id} connected (stream {stream.id}, {total} open)")
        return stream

    def disconnect(self, stream: PushStream) -> None:
        stream.close()
        with self._lock:
            user_streams = self._streams.get(stream.user_id)
            if user_streams is None:
                return
            user_streams.pop(stream.id, None)
            if not user_streams:
                del self._streams[stream.user_id]

        logger.info(f"[Push] User {stream.user_id} disconnected (stream {stream.id})")

    def publish(self, user_id: int, payload: Dict[str, Any]) -> int:
        """
        Queue a frame on every open stream of a user.

        Returns:
            Number of streams the frame was queued on; 0 with no streams
        """
        with self._lock:
            snapshot: List[PushStream] = list(self._streams.get(user_id, {}).values())

        if not snapshot:
            return 0

        frame = format_frame(payload)
        return sum(1 for stream in snapshot if stream.put(frame))

    def connection_count(self, user_id: Optional[int] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._streams.get(user_id, {}))
            return sum(len(s) for s in self._streams.values())

    def close_all(self) -> None:
        with self._lock:
            streams = [s for user in self._streams.values() for s in user.values()]
            self._streams.clear()
        for stream in streams:
            stream.close()


class PushChannel(DeliveryChannel):
    """Delivers notifications to the owner's open SSE streams."""

    channel_type = ChannelType.PUSH

    def __init__(self, broadcaster: PushBroadcaster):
        self.broadcaster = broadcaster

    async def deliver(
        self,
        notification: "Notification",
        event: "TransitionEvent",
    ) -> DeliveryOutcome:
        delivered = self.broadcaster.publish(
            notification.user_id,
            {
                "type": "notification",
                "action": PushActions.CREATED,
                "data": notification.to_dict(),
            },
        )
        if delivered == 0:
            return DeliveryOutcome.skipped(self.channel_type, "no open streams")
        return DeliveryOutcome.ok(self.channel_type, streams=delivered)

    async def publish_change(self, user_id: int, action: str, data: Dict[str, Any]) -> None:
        self.broadcaster.publish(
            user_id,
            {"type": "notification", "action": action, "data": data},
        )

    async def stop(self) -> None:
        self.broadcaster.close_all()

    def status(self) -> Dict[str, Any]:
        return {
            "channel": self.name,
            "connections": self.broadcaster.connection_count(),
        }
