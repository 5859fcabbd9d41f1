from __future__ import annotations

from types import SimpleNamespace

import pytest
from confluent_kafka import KafkaError, KafkaException

import command_worker.main as worker_main
from bridge_shared.config.settings import get_settings
from bridge_shared.services.command_queue import CommandDelivery
from command_worker.main import VendorCommandWorker, ensure_topics
from tests.factories import make_command


class DummyFuture:
    def __init__(self, error=None):
        self.error = error

    def result(self):
        if self.error:
            raise self.error


class DummyAdmin:
    created = []

    def __init__(self, config):
        self.config = config

    def list_topics(self, timeout=None):
        return SimpleNamespace(topics={get_settings().kafka.command_topic: object()})

    def create_topics(self, topics):
        DummyAdmin.created = [topic.topic for topic in topics]
        return {
            topic.topic: DummyFuture(KafkaException(KafkaError(KafkaError.TOPIC_ALREADY_EXISTS)))
            for topic in topics
        }


def test_ensure_topics_creates_only_missing_topics(monkeypatch) -> None:
    monkeypatch.setattr(worker_main, "AdminClient", DummyAdmin)
    settings = get_settings()

    ensure_topics(settings)

    assert sorted(DummyAdmin.created) == sorted([settings.kafka.status_topic, settings.kafka.dead_letter_topic])


class OneShotQueue:
    def __init__(self, worker, delivery):
        self.worker = worker
        self.delivery = delivery
        self.abandoned = []

    async def receive(self):
        self.worker.stop()
        return self.delivery

    async def abandon(self, delivery, reason):
        self.abandoned.append(reason)


class ExplodingOrchestrator:
    async def handle(self, delivery):
        raise RuntimeError("bug")


@pytest.mark.asyncio
async def test_unexpected_error_releases_the_delivery() -> None:
    worker = VendorCommandWorker(get_settings())
    delivery = CommandDelivery(
        command=make_command(), delivery_attempt=1, lock_token="w", topic="t", partition=0, offset=0
    )
    worker.queue = OneShotQueue(worker, delivery)
    worker.orchestrator = ExplodingOrchestrator()

    await worker.run()

    assert worker.queue.abandoned == ["unhandled error: bug"]
