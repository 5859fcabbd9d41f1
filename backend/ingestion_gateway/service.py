"""
Ingestion gateway core: build a Command and enqueue it idempotently
"""

import logging
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from bridge_shared.exceptions.base import CommandValidationError, QueueUnavailableError
from bridge_shared.models.commands import Command, UserContext, VendorOperation, VendorPayload
from bridge_shared.observability.metrics import BridgeMetrics, get_metrics
from bridge_shared.services.command_queue import CommandQueueProducer
from bridge_shared.utils.retry import RetryError, run_with_retry

logger = logging.getLogger(__name__)


class IngestionGateway:
    def __init__(
        self,
        queue: CommandQueueProducer,
        *,
        enqueue_max_attempts: int = 3,
        enqueue_retry_delay: float = 0.5,
        metrics: Optional[BridgeMetrics] = None,
    ):
        self.queue = queue
        self.enqueue_max_attempts = enqueue_max_attempts
        self.enqueue_retry_delay = enqueue_retry_delay
        self.metrics = metrics or get_metrics("ingestion-gateway")

    async def submit(self, operation: VendorOperation, payload: VendorPayload,
                     user_context: UserContext) -> Command:
        """
        Assign a correlation id and enqueue the command.

        Every retry reuses the same Command (and so the same correlation id),
        which the queue collapses to one logical message.

        Raises:
            QueueUnavailableError: the queue did not accept the command within
                the bounded retries
        """
        try:
            command = Command(operation=operation, payload=payload, user_context=user_context)
        except ValidationError as e:
            raise CommandValidationError(
                "Command could not be built from the request",
                errors=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            ) from e

        try:
            produced = await run_with_retry(
                self.queue.enqueue,
                command,
                max_attempts=self.enqueue_max_attempts,
                delay=self.enqueue_retry_delay,
                exceptions=(QueueUnavailableError, RedisError),
            )
        except RetryError as e:
            self.metrics.commands_enqueued.labels(operation.value, "unavailable").inc()
            logger.error(f"Could not enqueue {command.correlation_id} after {e.attempts} attempts: {e.last_error}")
            raise QueueUnavailableError(
                f"enqueue failed after {e.attempts} attempts", details={"attempts": e.attempts}
            ) from e

        if not produced:
            # The enqueue marker is only written after a broker ack, so an earlier
            # attempt whose reply was lost did put the command on the topic.
            logger.info(f"Command {command.correlation_id} was already enqueued by an earlier attempt")

        self.metrics.commands_enqueued.labels(operation.value, "queued").inc()
        logger.info(
            f"Accepted {operation.value} command {command.correlation_id} "
            f"(role={user_context.role.value}, user={user_context.user_id})"
        )
        return command
