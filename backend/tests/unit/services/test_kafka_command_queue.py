from __future__ import annotations

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from bridge_shared.config.app_config import AppConfig
from bridge_shared.exceptions.base import QueueUnavailableError
from bridge_shared.services.command_queue import CommandQueueProducer, KafkaCommandQueue
from bridge_shared.services.delivery_registry import ClaimDecision, ClaimResult
from bridge_shared.services.idempotency_service import IdempotencyService
from tests.factories import make_command


class DummyMessage:
    def __init__(self, value: bytes, key: bytes = b"cid", offset: int = 7, headers=None):
        self._value = value
        self._key = key
        self._offset = offset
        self._headers = headers or []

    def error(self):
        return None

    def value(self):
        return self._value

    def key(self):
        return self._key

    def topic(self):
        return "vendor_commands"

    def partition(self):
        return 2

    def offset(self):
        return self._offset

    def headers(self):
        return self._headers


class DummyConsumer:
    def __init__(self, messages):
        self.messages = list(messages)
        self.commits = []
        self.seeks = []
        self.subscribed = None

    def subscribe(self, topics):
        self.subscribed = topics

    def poll(self, timeout):
        return self.messages.pop(0) if self.messages else None

    def commit(self, message=None, asynchronous=True):
        self.commits.append(message)

    def seek(self, partition):
        self.seeks.append((partition.topic, partition.partition, partition.offset))


class DummyProducer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.produced = []
        self._callbacks = []

    def produce(self, topic, key=None, value=None, headers=None, on_delivery=None):
        self.produced.append({"topic": topic, "key": key, "value": value, "headers": headers})
        self._callbacks.append(on_delivery)

    def flush(self, timeout=None):
        for callback in self._callbacks:
            callback("broker down" if self.fail else None, None)
        self._callbacks = []
        return 0


class DummyRegistry:
    owner = "worker-1"

    def __init__(self, claim: ClaimResult):
        self._claim = claim
        self.done = []
        self.failed = []

    async def claim(self, correlation_id):
        return self._claim

    async def mark_done(self, correlation_id, *, status="done", error=None):
        self.done.append((correlation_id, status, error))

    async def mark_failed(self, correlation_id, *, error):
        self.failed.append((correlation_id, error))

    async def heartbeat(self, correlation_id):
        return True


def _queue(consumer, registry, producer=None) -> KafkaCommandQueue:
    return KafkaCommandQueue(
        consumer,
        producer or DummyProducer(),
        registry,
        topic="vendor_commands",
        dead_letter_topic="vendor_commands_dlq",
        backoff_base=0.0,
        backoff_max=0.0,
        in_progress_wait=0.0,
    )


@pytest.mark.asyncio
async def test_enqueue_produces_once_per_correlation_id(fake_redis) -> None:
    producer = DummyProducer()
    queue = CommandQueueProducer(producer, IdempotencyService(fake_redis), "vendor_commands")
    command = make_command()

    assert await queue.enqueue(command) is True
    assert await queue.enqueue(command) is False

    assert len(producer.produced) == 1
    produced = producer.produced[0]
    assert produced["key"] == command.correlation_id.encode("utf-8")
    assert (AppConfig.HEADER_CORRELATION_ID, command.correlation_id) in produced["headers"]


@pytest.mark.asyncio
async def test_failed_enqueue_leaves_no_marker(fake_redis) -> None:
    producer = DummyProducer(fail=True)
    queue = CommandQueueProducer(producer, IdempotencyService(fake_redis), "vendor_commands")
    command = make_command()

    with pytest.raises(QueueUnavailableError):
        await queue.enqueue(command)
    assert fake_redis.store == {}

    producer.fail = False
    assert await queue.enqueue(command) is True
    assert len(producer.produced) == 2


@pytest.mark.asyncio
async def test_lost_marker_write_still_reports_the_command_as_enqueued(fake_redis) -> None:
    async def broken_set(*args, **kwargs):
        raise RedisTimeoutError("reply lost")

    fake_redis.set = broken_set
    producer = DummyProducer()
    queue = CommandQueueProducer(producer, IdempotencyService(fake_redis), "vendor_commands")

    assert await queue.enqueue(make_command()) is True
    assert len(producer.produced) == 1


@pytest.mark.asyncio
async def test_receive_returns_delivery_with_attempt_from_registry() -> None:
    command = make_command()
    message = DummyMessage(command.to_message())
    registry = DummyRegistry(ClaimResult(ClaimDecision.CLAIMED, attempt_count=3, last_error="timeout"))
    queue = _queue(DummyConsumer([message]), registry)

    delivery = await queue.receive()

    assert delivery.correlation_id == command.correlation_id
    assert delivery.delivery_attempt == 3
    assert delivery.command.delivery_attempt == 3
    assert delivery.last_error == "timeout"
    assert delivery.lock_token == "worker-1"


@pytest.mark.asyncio
async def test_duplicate_of_finished_command_is_committed() -> None:
    message = DummyMessage(make_command().to_message())
    consumer = DummyConsumer([message])
    queue = _queue(consumer, DummyRegistry(ClaimResult(ClaimDecision.DUPLICATE_DONE, existing_status="done")))

    assert await queue.receive() is None
    assert consumer.commits == [message]


@pytest.mark.asyncio
async def test_locked_command_is_redelivered_later() -> None:
    message = DummyMessage(make_command().to_message(), offset=11)
    consumer = DummyConsumer([message])
    queue = _queue(consumer, DummyRegistry(ClaimResult(ClaimDecision.IN_PROGRESS)))

    assert await queue.receive() is None
    assert consumer.seeks == [("vendor_commands", 2, 11)]
    assert consumer.commits == []


@pytest.mark.asyncio
async def test_poison_message_goes_to_dead_letter_topic() -> None:
    message = DummyMessage(b"{not json", key=b"broken")
    consumer = DummyConsumer([message])
    producer = DummyProducer()
    queue = _queue(consumer, DummyRegistry(ClaimResult(ClaimDecision.CLAIMED, attempt_count=1)), producer)

    assert await queue.receive() is None
    assert producer.produced[0]["topic"] == "vendor_commands_dlq"
    assert consumer.commits == [message]


@pytest.mark.asyncio
async def test_settlement_operations() -> None:
    command = make_command()
    message = DummyMessage(command.to_message(), offset=5)
    consumer = DummyConsumer([message])
    producer = DummyProducer()
    registry = DummyRegistry(ClaimResult(ClaimDecision.CLAIMED, attempt_count=2))
    queue = _queue(consumer, registry, producer)
    delivery = await queue.receive()

    await queue.abandon(delivery, "legacy timeout")
    assert registry.failed == [(command.correlation_id, "legacy timeout")]
    assert consumer.seeks == [("vendor_commands", 2, 5)]

    await queue.dead_letter(delivery, "exhausted")
    dlq = producer.produced[-1]
    assert dlq["topic"] == "vendor_commands_dlq"
    assert (AppConfig.HEADER_DEAD_LETTER_REASON, "exhausted") in dlq["headers"]
    assert (AppConfig.HEADER_DELIVERY_ATTEMPTS, "2") in dlq["headers"]
    assert registry.done == [(command.correlation_id, "dead_lettered", "exhausted")]

    await queue.complete(delivery)
    assert registry.done[-1] == (command.correlation_id, "done", None)
    assert consumer.commits == [message, message]
    assert await queue.renew_lock(delivery) is True
