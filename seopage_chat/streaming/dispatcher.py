"""Typed routing of inbound frames to a single subscriber."""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ..exceptions import FrameParseError
from ..models.frames import ChatFrame
from ..monitoring import metrics
from .callbacks import Callback, notify

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by ``MessageDispatcher.subscribe``."""

    def __init__(self, dispatcher: "MessageDispatcher", handler: Callback):
        self._dispatcher = dispatcher
        self.handler = handler

    @property
    def active(self) -> bool:
        return self._dispatcher._subscription is self

    def cancel(self) -> None:
        if self.active:
            self._dispatcher._subscription = None


class MessageDispatcher:
    """Classifies raw frames and forwards them, in order, to one subscriber.

    Heartbeats are consumed here and only update ``last_heartbeat_at``.
    Unparseable frames are reported through ``on_error`` and never raised.
    There is no fan-out: a new subscription replaces the previous one.
    """

    def __init__(
        self,
        conversation_id: str,
        on_error: Optional[Callback] = None,
        on_delivered: Optional[Callable[[ChatFrame], None]] = None,
    ):
        self.conversation_id = conversation_id
        self.on_error = on_error
        self.on_delivered = on_delivered
        self._subscription: Optional[Subscription] = None

        self.last_heartbeat_at: Optional[datetime] = None
        self.frames_delivered = 0
        self.frames_undelivered = 0
        self.heartbeats_received = 0
        self.parse_errors = 0

    def subscribe(self, handler: Callback) -> Subscription:
        if self._subscription is not None:
            logger.warning(f"Replacing frame subscriber for {self.conversation_id}")
        self._subscription = Subscription(self, handler)
        return self._subscription

    @property
    def has_subscriber(self) -> bool:
        return self._subscription is not None

    def classify(self, raw: Union[str, bytes]) -> Union[ChatFrame, FrameParseError]:
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            data: Any = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return FrameParseError(raw, f"invalid JSON ({e})")

        if not isinstance(data, dict):
            return FrameParseError(raw, "frame is not a JSON object")

        try:
            return ChatFrame.from_wire(data)
        except (ValueError, ValidationError) as e:
            return FrameParseError(raw, str(e))

    async def route(self, frame: ChatFrame) -> None:
        if frame.is_heartbeat:
            self.heartbeats_received += 1
            self.last_heartbeat_at = datetime.now()
            metrics.heartbeats.labels(direction="received").inc()
            return

        metrics.frames_received.labels(frame_type=frame.type.value).inc()

        subscription = self._subscription
        if subscription is None:
            self.frames_undelivered += 1
            logger.debug(f"No subscriber for {frame.raw_type} frame on {self.conversation_id}")
            return

        await notify(subscription.handler, frame)
        self.frames_delivered += 1
        if self.on_delivered is not None:
            self.on_delivered(frame)

    async def feed(self, raw: Union[str, bytes]) -> None:
        result = self.classify(raw)
        if isinstance(result, FrameParseError):
            self.parse_errors += 1
            metrics.frame_errors.inc()
            logger.warning(f"Dropping unparseable frame on {self.conversation_id}: {result.reason}")
            await notify(self.on_error, result)
            return
        await self.route(result)
