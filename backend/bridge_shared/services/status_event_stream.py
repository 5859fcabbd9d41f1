"""
Durable status event stream (Kafka)

The worker publishes one StatusEvent per terminal command outcome, keyed by
correlation id so every copy of an outcome lands on the same partition. The
notifier consumes the stream with a per-instance consumer group so that every
instance sees every event.
"""

import asyncio
import logging
from typing import Optional

from confluent_kafka import Consumer, KafkaError, Producer
from pydantic import ValidationError

from bridge_shared.config.app_config import AppConfig
from bridge_shared.exceptions.base import EventPublishError
from bridge_shared.models.events import StatusEvent
from bridge_shared.utils.kafka_utils import ProduceError, produce_and_wait

logger = logging.getLogger(__name__)


class StatusEventPublisher:
    def __init__(self, producer: Producer, topic: str, timeout: float = 10.0):
        self.producer = producer
        self.topic = topic
        self.timeout = timeout

    async def publish(self, event: StatusEvent) -> None:
        """
        Publish and wait for the broker acknowledgement.

        Raises:
            EventPublishError: the event is not known to be durable
        """
        try:
            await produce_and_wait(
                self.producer,
                topic=self.topic,
                key=event.correlation_id,
                value=event.to_message(),
                headers=[(AppConfig.HEADER_CORRELATION_ID, event.correlation_id)],
                timeout=self.timeout,
            )
        except ProduceError as e:
            raise EventPublishError(str(e), correlation_id=event.correlation_id) from e
        logger.info(f"Published {event.status.value} event for {event.correlation_id}")

    def close(self, timeout: float = 5.0) -> None:
        self.producer.flush(timeout)


class StatusEventConsumer:
    """Reads StatusEvents; undecodable records are skipped"""

    def __init__(self, consumer: Consumer, topic: str, poll_timeout: float = 1.0):
        self.consumer = consumer
        self.topic = topic
        self.poll_timeout = poll_timeout
        self._last_message = None

    def subscribe(self) -> None:
        self.consumer.subscribe([self.topic])

    async def next_event(self) -> Optional[StatusEvent]:
        msg = await asyncio.to_thread(self.consumer.poll, self.poll_timeout)
        if msg is None:
            return None
        if msg.error():
            if msg.error().code() != KafkaError._PARTITION_EOF:
                logger.error(f"Kafka error: {msg.error()}")
            return None

        self._last_message = msg
        try:
            return StatusEvent.from_message(msg.value())
        except ValidationError as e:
            logger.warning(f"Skipping unreadable status event at offset {msg.offset()}: {e}")
            self.commit()
            return None

    def commit(self) -> None:
        """Commit the last returned event (asynchronously; replays are deduplicated by event id)"""
        if self._last_message is not None:
            self.consumer.commit(message=self._last_message, asynchronous=True)
            self._last_message = None

    def close(self) -> None:
        self.consumer.close()
