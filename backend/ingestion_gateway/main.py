"""
Ingestion Gateway service

Accepts vendor Create/Update/Delete requests, validates them, assigns a
correlation id and enqueues a Command. Replies 202 without waiting for the
legacy system.
"""

# Load environment variables first (before other imports)
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from confluent_kafka import Producer
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bridge_shared.config.app_config import AppConfig
from bridge_shared.config.kafka_config import KafkaBridgeConfig
from bridge_shared.config.settings import get_settings
from bridge_shared.exceptions.base import CommandValidationError, QueueUnavailableError
from bridge_shared.services.command_queue import CommandQueueProducer
from bridge_shared.services.idempotency_service import IdempotencyService
from bridge_shared.services.redis_service import create_redis_service
from bridge_shared.services.service_factory import ServiceInfo, create_fastapi_service, run_service
from bridge_shared.utils.app_logger import configure_logging
from ingestion_gateway.routers import vendor_commands
from ingestion_gateway.service import IngestionGateway

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

GATEWAY_SERVICE_INFO = ServiceInfo(
    name=AppConfig.INGESTION_GATEWAY_SERVICE,
    title="Vendor Ingestion Gateway",
    description="Validates vendor mutation requests and enqueues them for the command worker",
    port=settings.ingestion.port,
    host=settings.ingestion.host,
    tags=[{"name": "Vendor Commands", "description": "Create / update / delete vendor records"}],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Ingestion gateway starting...")
    redis_service = create_redis_service(settings.redis)
    await redis_service.connect()
    producer = Producer(KafkaBridgeConfig.get_producer_config(AppConfig.INGESTION_GATEWAY_SERVICE))

    queue = CommandQueueProducer(
        producer,
        IdempotencyService(redis_service.client, settings.ingestion.duplicate_detection_window_seconds),
        AppConfig.get_command_topic(),
        timeout=settings.kafka.produce_timeout_seconds,
    )
    app.state.redis_service = redis_service
    app.state.gateway = IngestionGateway(
        queue,
        enqueue_max_attempts=settings.ingestion.enqueue_max_attempts,
        enqueue_retry_delay=settings.ingestion.enqueue_retry_delay_seconds,
    )
    try:
        yield
    finally:
        producer.flush(5.0)
        await redis_service.disconnect()
        logger.info("Ingestion gateway stopped")


async def _redis_healthy(app: FastAPI) -> bool:
    redis_service = getattr(app.state, "redis_service", None)
    return bool(redis_service) and await redis_service.ping()


app = create_fastapi_service(
    GATEWAY_SERVICE_INFO,
    custom_lifespan=lifespan,
    health_checks={"redis": _redis_healthy},
)
app.include_router(vendor_commands.router, prefix="/api/v1")


def error_envelope(code: str, message: str, errors: List[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"status": "error", "code": code, "message": message, "errors": errors or []}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Schema and user-context violations; nothing is enqueued"""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Rejected request to {request.url.path}: {errors}")
    return JSONResponse(
        status_code=422,
        content=error_envelope("VALIDATION_ERROR", "Request validation failed", errors),
    )


@app.exception_handler(CommandValidationError)
async def command_validation_handler(request: Request, exc: CommandValidationError):
    return JSONResponse(
        status_code=422,
        content=error_envelope(exc.code, exc.message, exc.errors),
    )


@app.exception_handler(QueueUnavailableError)
async def queue_unavailable_handler(request: Request, exc: QueueUnavailableError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_envelope(exc.code, "Command queue is unavailable, please retry later"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope("INTERNAL_ERROR", "Internal server error"),
    )


def cli() -> None:
    run_service(GATEWAY_SERVICE_INFO, "ingestion_gateway.main:app")


if __name__ == "__main__":
    cli()
