"""
Status event fan-out to WebSocket clients

Every notifier instance reads the full status stream. An event is pushed to
the clients waiting on its correlation id and to the connections opened for
its user; when neither exists on this instance the event is dropped. Event ids
already pushed are remembered for a bounded window so that re-emitted outcomes
are not pushed twice.
"""

import asyncio
import logging
from collections import OrderedDict
from enum import Enum
from typing import Optional

from bridge_shared.models.events import StatusEvent
from bridge_shared.observability.metrics import BridgeMetrics, get_metrics
from bridge_shared.services.status_event_stream import StatusEventConsumer
from bridge_shared.services.websocket_service import WebSocketConnectionManager

logger = logging.getLogger(__name__)


class PushResult(str, Enum):
    DELIVERED = "delivered"
    DROPPED = "dropped"
    DUPLICATE = "duplicate"


class FeedbackNotifier:
    def __init__(
        self,
        manager: WebSocketConnectionManager,
        *,
        recent_event_window: int = 10000,
        metrics: Optional[BridgeMetrics] = None,
    ):
        self.manager = manager
        self.recent_event_window = recent_event_window
        self.metrics = metrics or get_metrics("feedback-notifier")
        self._recent: "OrderedDict[str, None]" = OrderedDict()
        self._running = False

    def _seen(self, event_id: str) -> bool:
        if event_id in self._recent:
            self._recent.move_to_end(event_id)
            return True
        return False

    def _remember(self, event_id: str) -> None:
        self._recent[event_id] = None
        while len(self._recent) > self.recent_event_window:
            self._recent.popitem(last=False)

    async def handle_event(self, event: StatusEvent) -> PushResult:
        """Push one outcome to whoever is listening for it on this instance"""
        if self._seen(event.event_id):
            logger.debug(f"Outcome {event.event_id} for {event.correlation_id} already pushed")
            self.metrics.events_pushed.labels(PushResult.DUPLICATE.value).inc()
            return PushResult.DUPLICATE

        message = {"type": "command_status", **event.to_notification()}
        delivered = await self.manager.send_to_correlation(event.correlation_id, message)
        if event.user_id:
            delivered += await self._send_to_user_only(event, message)

        if delivered == 0:
            # Only delivered events are remembered: a replay may find a listener later
            self.metrics.events_pushed.labels(PushResult.DROPPED.value).inc()
            logger.debug(f"No listener for {event.correlation_id}; outcome dropped")
            return PushResult.DROPPED

        self._remember(event.event_id)
        self.metrics.events_pushed.labels(PushResult.DELIVERED.value).inc()
        logger.info(f"Pushed {event.status.value} for {event.correlation_id} to {delivered} client(s)")
        return PushResult.DELIVERED

    async def _send_to_user_only(self, event: StatusEvent, message: dict) -> int:
        # A connection both opened for the user and waiting on the command gets one copy
        waiting = self.manager.correlation_subscribers.get(event.correlation_id, set())
        sent = 0
        for client_id in list(self.manager.user_connections.get(event.user_id, ())):
            if client_id in waiting:
                continue
            if await self.manager.send_to_client(client_id, message):
                sent += 1
        return sent

    async def consume(self, stream: StatusEventConsumer) -> None:
        """Read the status stream until stop() is called"""
        self._running = True
        stream.subscribe()
        logger.info(f"Consuming status events from {stream.topic}")
        while self._running:
            try:
                event = await stream.next_event()
            except Exception as e:
                logger.error(f"Status stream read failed: {e}")
                await asyncio.sleep(1)
                continue
            if event is None:
                continue
            await self.handle_event(event)
            stream.commit()

    def stop(self) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running
