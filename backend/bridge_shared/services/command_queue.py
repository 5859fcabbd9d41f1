"""
Durable command queue

Producer side (ingestion gateway): idempotent enqueue. A correlation id is
marked in the duplicate-detection window once the broker has acknowledged the
command; a later enqueue of a marked id is collapsed.

Consumer side (command worker): Kafka for durable at-least-once delivery plus
the Postgres DeliveryRegistry for the per-message visibility lock and the
redelivery counter. Settlement operations:

- complete:    terminal, offset committed
- abandon:     lock released, message redelivered after backoff
- dead_letter: copied to the dead-letter topic with the reason, then committed
- renew_lock:  lease heartbeat while a long call runs
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from confluent_kafka import Consumer, KafkaError, Producer, TopicPartition
from pydantic import ValidationError
from redis.exceptions import RedisError

from bridge_shared.config.app_config import AppConfig
from bridge_shared.exceptions.base import QueueUnavailableError
from bridge_shared.models.commands import Command
from bridge_shared.services.delivery_registry import ClaimDecision, DeliveryRegistry
from bridge_shared.services.idempotency_service import IdempotencyService
from bridge_shared.utils.kafka_utils import ProduceError, produce_and_wait
from bridge_shared.utils.retry import exponential_backoff

logger = logging.getLogger(__name__)


class CommandQueueProducer:
    """Enqueue side of the command queue"""

    def __init__(
        self,
        producer: Producer,
        idempotency: IdempotencyService,
        topic: str,
        timeout: float = 10.0,
    ):
        self.producer = producer
        self.idempotency = idempotency
        self.topic = topic
        self.timeout = timeout

    async def enqueue(self, command: Command) -> bool:
        """
        Enqueue a command. Safe to call again with the same command.

        Returns:
            True if the command was produced, False if the correlation id was
            already on the topic (enqueued within the duplicate-detection window).

        Raises:
            QueueUnavailableError: the broker did not acknowledge the command
        """
        existing = await self.idempotency.find(command.correlation_id)
        if existing is not None:
            logger.info(
                f"Duplicate enqueue collapsed: {command.correlation_id}, "
                f"first enqueued at {existing.get('enqueued_at')}"
            )
            return False

        try:
            await produce_and_wait(
                self.producer,
                topic=self.topic,
                key=command.correlation_id,
                value=command.to_message(),
                headers=[
                    (AppConfig.HEADER_CORRELATION_ID, command.correlation_id),
                    (AppConfig.HEADER_OPERATION, command.operation.value),
                ],
                timeout=self.timeout,
            )
        except ProduceError as e:
            raise QueueUnavailableError(str(e), details={"correlation_id": command.correlation_id}) from e

        try:
            await self.idempotency.mark_enqueued(command.correlation_id, {"operation": command.operation.value})
        except RedisError as e:
            # Already on the topic; a missing marker only weakens duplicate detection.
            logger.warning(f"Could not mark {command.correlation_id} as enqueued: {e}")

        logger.info(f"Enqueued {command.operation.value} command {command.correlation_id}")
        return True


@dataclass
class CommandDelivery:
    """One delivery of a command to this worker"""
    command: Command
    delivery_attempt: int
    lock_token: str
    topic: str
    partition: int
    offset: int
    last_error: Optional[str] = None
    raw: Any = None

    @property
    def correlation_id(self) -> str:
        return self.command.correlation_id


class KafkaCommandQueue:
    """Consumer side of the command queue"""

    def __init__(
        self,
        consumer: Consumer,
        producer: Producer,
        registry: DeliveryRegistry,
        *,
        topic: str,
        dead_letter_topic: str,
        poll_timeout: float = 1.0,
        produce_timeout: float = 10.0,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        in_progress_wait: float = 2.0,
    ):
        self.consumer = consumer
        self.producer = producer
        self.registry = registry
        self.topic = topic
        self.dead_letter_topic = dead_letter_topic
        self.poll_timeout = poll_timeout
        self.produce_timeout = produce_timeout
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.in_progress_wait = in_progress_wait

    def subscribe(self) -> None:
        self.consumer.subscribe([self.topic])

    async def receive(self) -> Optional[CommandDelivery]:
        """
        Poll for the next deliverable command.

        Returns None when nothing is deliverable right now (empty poll,
        duplicate of a finished command, command locked by another worker,
        or a poison message that was dead-lettered).
        """
        msg = await asyncio.to_thread(self.consumer.poll, self.poll_timeout)
        if msg is None:
            return None
        if msg.error():
            if msg.error().code() != KafkaError._PARTITION_EOF:
                logger.error(f"Kafka error: {msg.error()}")
            return None

        try:
            command = Command.from_message(msg.value())
        except (ValidationError, ValueError, TypeError) as e:
            logger.error(f"Undecodable command at {msg.topic()}[{msg.partition()}]@{msg.offset()}: {e}")
            await self._dead_letter_raw(msg, f"undecodable command: {e}", attempts=1)
            self._commit(msg)
            return None

        claim = await self.registry.claim(command.correlation_id)
        if claim.decision == ClaimDecision.DUPLICATE_DONE:
            # A command is only marked done after its outcome was published
            logger.info(
                f"Skipping duplicate delivery of {command.correlation_id} "
                f"(already {claim.existing_status})"
            )
            self._commit(msg)
            return None
        if claim.decision == ClaimDecision.IN_PROGRESS:
            logger.info(f"Command {command.correlation_id} is locked by another worker; retrying later")
            await asyncio.sleep(self.in_progress_wait)
            self._seek(msg)
            return None

        attempt = max(int(claim.attempt_count or 1), 1)
        return CommandDelivery(
            command=command.with_delivery_attempt(attempt),
            delivery_attempt=attempt,
            lock_token=self.registry.owner,
            topic=msg.topic(),
            partition=msg.partition(),
            offset=msg.offset(),
            last_error=claim.last_error,
            raw=msg,
        )

    async def complete(self, delivery: CommandDelivery) -> None:
        await self.registry.mark_done(delivery.correlation_id)
        self._commit(delivery.raw)

    async def abandon(self, delivery: CommandDelivery, reason: str) -> None:
        """Release the lock and schedule redelivery; the attempt count advances on the next claim"""
        await self.registry.mark_failed(delivery.correlation_id, error=reason)
        delay = exponential_backoff(delivery.delivery_attempt - 1, self.backoff_base, self.backoff_max)
        logger.warning(
            f"Abandoning {delivery.correlation_id} (attempt {delivery.delivery_attempt}): {reason}; "
            f"redelivering in {delay:.2f}s"
        )
        await asyncio.sleep(delay)
        self._seek(delivery.raw)

    async def dead_letter(self, delivery: CommandDelivery, reason: str) -> None:
        await self._dead_letter_raw(delivery.raw, reason, attempts=delivery.delivery_attempt)
        await self.registry.mark_done(delivery.correlation_id, status="dead_lettered", error=reason)
        self._commit(delivery.raw)

    async def renew_lock(self, delivery: CommandDelivery) -> bool:
        return await self.registry.heartbeat(delivery.correlation_id)

    async def _dead_letter_raw(self, msg, reason: str, *, attempts: int) -> None:
        key = msg.key().decode("utf-8") if msg.key() else f"{msg.topic()}-{msg.partition()}-{msg.offset()}"
        headers = list(msg.headers() or [])
        headers.extend([
            (AppConfig.HEADER_DEAD_LETTER_REASON, reason[:1000]),
            (AppConfig.HEADER_DELIVERY_ATTEMPTS, str(attempts)),
        ])
        try:
            await produce_and_wait(
                self.producer,
                topic=self.dead_letter_topic,
                key=key,
                value=msg.value(),
                headers=headers,
                timeout=self.produce_timeout,
            )
        except ProduceError as e:
            raise QueueUnavailableError(f"dead-letter produce failed: {e}") from e
        logger.error(f"Dead-lettered {key}: {reason}")

    def _commit(self, msg) -> None:
        self.consumer.commit(message=msg, asynchronous=False)

    def _seek(self, msg) -> None:
        self.consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))

    def close(self) -> None:
        self.consumer.close()
        self.producer.flush(5.0)
