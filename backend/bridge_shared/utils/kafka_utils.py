"""
confluent-kafka helpers shared by the queue and the status stream
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from confluent_kafka import KafkaException, Producer

logger = logging.getLogger(__name__)


class ProduceError(Exception):
    """Message was not acknowledged by the broker"""


def discard_pending(producer: Producer) -> None:
    """
    Drop messages librdkafka still holds so none of them reaches the broker
    after the caller has reported a failure. Pending messages of other callers
    sharing the producer fail with a purge error and are retried by them.
    """
    try:
        producer.purge(in_queue=True)
        producer.flush(0)
    except KafkaException as e:
        logger.error(f"Could not purge pending messages: {e}")


def produce_sync(
    producer: Producer,
    *,
    topic: str,
    key: str,
    value: bytes,
    headers: Optional[Iterable[Tuple[str, str]]] = None,
    timeout: float = 10.0,
) -> None:
    """Produce one message and block until the broker acknowledges it."""
    errors: List[object] = []

    def _on_delivery(err, _msg):
        if err is not None:
            errors.append(err)

    try:
        producer.produce(
            topic,
            key=key.encode("utf-8"),
            value=value,
            headers=list(headers or []),
            on_delivery=_on_delivery,
        )
        remaining = producer.flush(timeout)
    except (BufferError, KafkaException) as e:
        raise ProduceError(str(e)) from e

    if remaining:
        discard_pending(producer)
        raise ProduceError(f"{remaining} message(s) not acknowledged within {timeout}s; discarded")
    if errors:
        raise ProduceError(str(errors[0]))


async def produce_and_wait(producer: Producer, **kwargs) -> None:
    """produce_sync() off the event loop"""
    await asyncio.to_thread(produce_sync, producer, **kwargs)
