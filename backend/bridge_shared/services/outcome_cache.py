"""
Outcome cache

Short-lived record of each command's terminal StatusEvent, keyed by
correlation id. A redelivery of a command that already reached Done is
answered from here instead of calling the legacy system again.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from bridge_shared.config.app_config import AppConfig
from bridge_shared.models.events import StatusEvent

logger = logging.getLogger(__name__)


class OutcomeCache:
    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def get(self, correlation_id: str) -> Optional[StatusEvent]:
        raw = await self.redis.get(AppConfig.get_outcome_key(correlation_id))
        if raw is None:
            return None
        try:
            return StatusEvent.from_message(raw.encode("utf-8") if isinstance(raw, str) else raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cached outcome for {correlation_id}: {e}")
            return None

    async def record(self, event: StatusEvent) -> StatusEvent:
        """
        Store the outcome unless one is already recorded.

        Returns the event that is authoritative for the correlation id: the
        given one, or the previously recorded one when a concurrent execution
        got there first.
        """
        key = AppConfig.get_outcome_key(event.correlation_id)
        stored = await self.redis.set(
            key, event.to_message().decode("utf-8"), nx=True, ex=self.ttl_seconds
        )
        if stored:
            return event
        existing = await self.get(event.correlation_id)
        if existing is None:
            await self.redis.set(key, event.to_message().decode("utf-8"), ex=self.ttl_seconds)
            return event
        logger.info(f"Outcome for {event.correlation_id} already recorded; keeping first outcome")
        return existing
