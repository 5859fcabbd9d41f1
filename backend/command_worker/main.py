"""
Vendor command worker

Consumes the command topic (one consumer group shared by every worker
instance), settles each delivery through WorkerOrchestrator and publishes the
outcome on the status topic.

Kafka message contract:
- value: Command JSON (camelCase), key: correlation id
"""

# Load environment variables first (before other imports)
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import signal
from contextlib import suppress
from typing import Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer
from confluent_kafka.admin import AdminClient, NewTopic
from prometheus_client import start_http_server

from bridge_shared.config.app_config import AppConfig
from bridge_shared.config.kafka_config import KafkaBridgeConfig
from bridge_shared.config.settings import ApplicationSettings, get_settings
from bridge_shared.services.bapi_adapter import HttpBapiAdapter
from bridge_shared.services.command_queue import KafkaCommandQueue
from bridge_shared.services.credential_resolver import AuthenticationStrategySelector
from bridge_shared.services.delivery_registry import DeliveryRegistry
from bridge_shared.services.outcome_cache import OutcomeCache
from bridge_shared.services.redis_service import RedisService, create_redis_service
from bridge_shared.services.status_event_stream import StatusEventPublisher
from bridge_shared.services.vendor_mapping_store import VendorMappingStore
from bridge_shared.utils.app_logger import configure_logging
from command_worker.orchestrator import WorkerOrchestrator, WorkerPolicy

logger = logging.getLogger(__name__)


def ensure_topics(settings: ApplicationSettings) -> None:
    """Create the command, status and dead-letter topics if they are missing"""
    admin = AdminClient(KafkaBridgeConfig.get_admin_config())
    existing = set(admin.list_topics(timeout=10).topics)
    new_topics = [
        NewTopic(
            name,
            num_partitions=settings.kafka.topic_partitions,
            replication_factor=settings.kafka.replication_factor,
            config=config,
        )
        for name, config in KafkaBridgeConfig.get_topic_specs().items()
        if name not in existing
    ]
    if not new_topics:
        return
    for topic, future in admin.create_topics(new_topics).items():
        try:
            future.result()
            logger.info(f"Created topic {topic}")
        except KafkaException as e:
            if e.args[0].code() != KafkaError.TOPIC_ALREADY_EXISTS:
                raise


class VendorCommandWorker:
    def __init__(self, settings: Optional[ApplicationSettings] = None):
        self.settings = settings or get_settings()
        self.running = False
        self.queue: Optional[KafkaCommandQueue] = None
        self.publisher: Optional[StatusEventPublisher] = None
        self.registry: Optional[DeliveryRegistry] = None
        self.mapping_store: Optional[VendorMappingStore] = None
        self.redis_service: Optional[RedisService] = None
        self.adapter: Optional[HttpBapiAdapter] = None
        self.orchestrator: Optional[WorkerOrchestrator] = None

    async def initialize(self) -> None:
        settings = self.settings
        logger.info("Initializing vendor command worker...")

        await asyncio.to_thread(ensure_topics, settings)

        postgres = settings.postgres
        self.registry = DeliveryRegistry(
            dsn=postgres.url,
            schema=postgres.schema_name,
            lease_timeout_seconds=settings.worker.lock_duration_seconds,
            pool_min=postgres.pool_min,
            pool_max=postgres.pool_max,
            command_timeout=postgres.command_timeout,
        )
        await self.registry.connect()
        self.mapping_store = VendorMappingStore(
            dsn=postgres.url,
            schema=postgres.schema_name,
            pool_min=postgres.pool_min,
            pool_max=postgres.pool_max,
            command_timeout=postgres.command_timeout,
        )
        await self.mapping_store.connect()
        logger.info("Postgres delivery registry and mapping store connected")

        self.redis_service = create_redis_service(settings.redis)
        await self.redis_service.connect()

        producer = Producer(KafkaBridgeConfig.get_producer_config(AppConfig.COMMAND_WORKER_SERVICE))
        consumer = Consumer(
            KafkaBridgeConfig.get_consumer_config(AppConfig.COMMAND_WORKER_SERVICE, settings.kafka.worker_group)
        )
        self.queue = KafkaCommandQueue(
            consumer,
            producer,
            self.registry,
            topic=AppConfig.get_command_topic(),
            dead_letter_topic=AppConfig.get_dead_letter_topic(),
            poll_timeout=settings.kafka.poll_timeout_seconds,
            produce_timeout=settings.kafka.produce_timeout_seconds,
            backoff_base=settings.worker.redelivery_backoff_seconds,
            backoff_max=settings.worker.redelivery_backoff_max_seconds,
        )
        self.publisher = StatusEventPublisher(
            producer, AppConfig.get_status_topic(), timeout=settings.kafka.produce_timeout_seconds
        )
        self.adapter = HttpBapiAdapter(settings.legacy)
        self.orchestrator = WorkerOrchestrator(
            queue=self.queue,
            selector=AuthenticationStrategySelector.from_settings(settings.credentials, settings.legacy),
            adapter=self.adapter,
            mapping_store=self.mapping_store,
            publisher=self.publisher,
            outcome_cache=OutcomeCache(self.redis_service.client, settings.worker.outcome_cache_ttl_seconds),
            policy=WorkerPolicy.from_settings(settings),
        )

        self.queue.subscribe()
        if settings.worker.metrics_port:
            start_http_server(settings.worker.metrics_port)
        logger.info(f"Vendor command worker initialized (group={settings.kafka.worker_group})")

    async def run(self) -> None:
        """Main processing loop"""
        self.running = True
        logger.info(f"Vendor command worker started, consuming {self.settings.kafka.command_topic}")

        while self.running:
            try:
                delivery = await self.queue.receive()
            except Exception as e:
                logger.error(f"Failed to receive command: {e}")
                await asyncio.sleep(1)
                continue
            if delivery is None:
                continue

            try:
                outcome = await self.orchestrator.handle(delivery)
                logger.info(
                    f"Command {outcome.correlation_id} -> {outcome.disposition.value} ({outcome.state.value})"
                )
            except Exception as e:
                logger.exception(f"Unhandled error processing {delivery.correlation_id}: {e}")
                try:
                    await self.queue.abandon(delivery, f"unhandled error: {e}")
                except Exception as abandon_error:
                    logger.error(f"Failed to release {delivery.correlation_id}: {abandon_error}")

    def stop(self) -> None:
        self.running = False

    async def shutdown(self) -> None:
        """Graceful shutdown"""
        logger.info("Shutting down vendor command worker...")
        self.running = False
        if self.queue:
            self.queue.close()
        if self.adapter:
            await self.adapter.close()
        if self.redis_service:
            await self.redis_service.disconnect()
        if self.mapping_store:
            await self.mapping_store.close()
        if self.registry:
            await self.registry.close()


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    worker = VendorCommandWorker(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.initialize()
        await worker.run()
    finally:
        await worker.shutdown()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
