"""
Feedback Notifier service

Consumes the status event stream and pushes each outcome over WebSocket to
the clients waiting for it. Every instance uses its own consumer group and
starts from the latest offset: outcomes emitted while no instance was running
are not replayed.
"""

# Load environment variables first (before other imports)
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager, suppress

from confluent_kafka import Consumer
from fastapi import FastAPI

from bridge_shared.config.app_config import AppConfig
from bridge_shared.config.kafka_config import KafkaBridgeConfig
from bridge_shared.config.settings import get_settings
from bridge_shared.services.service_factory import ServiceInfo, create_fastapi_service, run_service
from bridge_shared.services.status_event_stream import StatusEventConsumer
from bridge_shared.services.websocket_service import get_connection_manager
from bridge_shared.utils.app_logger import configure_logging
from feedback_notifier.notifier import FeedbackNotifier
from feedback_notifier.routers import websocket

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

NOTIFIER_SERVICE_INFO = ServiceInfo(
    name=AppConfig.FEEDBACK_NOTIFIER_SERVICE,
    title="Vendor Feedback Notifier",
    description="Pushes vendor command outcomes to connected clients",
    port=settings.notifier.port,
    host=settings.notifier.host,
    tags=[{"name": "WebSocket", "description": "Real-time command outcomes"}],
)


async def _keepalive(interval: float) -> None:
    manager = get_connection_manager()
    while True:
        await asyncio.sleep(interval)
        await manager.ping_all_clients()


@asynccontextmanager
async def lifespan(app: FastAPI):
    instance_id = uuid.uuid4().hex[:12]
    group_id = AppConfig.get_notifier_group(instance_id)
    logger.info(f"Feedback notifier starting (group {group_id})...")

    consumer = Consumer(
        KafkaBridgeConfig.get_consumer_config(
            AppConfig.FEEDBACK_NOTIFIER_SERVICE, group_id, auto_offset_reset="latest"
        )
    )
    stream = StatusEventConsumer(consumer, AppConfig.get_status_topic(), settings.kafka.poll_timeout_seconds)
    notifier = FeedbackNotifier(
        get_connection_manager(),
        recent_event_window=settings.notifier.recent_event_window,
    )
    app.state.notifier = notifier
    tasks = [
        asyncio.create_task(notifier.consume(stream)),
        asyncio.create_task(_keepalive(settings.notifier.ping_interval_seconds)),
    ]
    try:
        yield
    finally:
        notifier.stop()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        stream.close()
        logger.info("Feedback notifier stopped")


async def _stream_healthy(app: FastAPI) -> bool:
    notifier = getattr(app.state, "notifier", None)
    return bool(notifier) and notifier.running


app = create_fastapi_service(
    NOTIFIER_SERVICE_INFO,
    custom_lifespan=lifespan,
    health_checks={"status_stream": _stream_healthy},
)
app.include_router(websocket.router)


@app.get("/ws/stats", tags=["WebSocket"])
async def websocket_stats():
    return get_connection_manager().get_connection_stats()


def cli() -> None:
    run_service(NOTIFIER_SERVICE_INFO, "feedback_notifier.main:app")


if __name__ == "__main__":
    cli()
