"""
Enqueue duplicate detection

Collapses repeated submissions of the same correlation id within a bounded
window to one logical command. A correlation id is marked with Redis SET NX
and a TTL equal to the duplicate-detection window, but only once the broker
has acknowledged the command, so a marker always means "on the topic".
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from bridge_shared.config.app_config import AppConfig

logger = logging.getLogger(__name__)


class IdempotencyService:
    """
    Duplicate-detection window for command enqueues.

    Two concurrent enqueues of the same correlation id may both pass
    ``find`` and both produce; the delivery registry collapses those copies
    on the worker side.
    """

    def __init__(self, redis_client: aioredis.Redis, window_seconds: int = 600):
        """
        Args:
            redis_client: Async Redis client
            window_seconds: Duplicate-detection window
        """
        self.redis = redis_client
        self.window_seconds = window_seconds

    async def find(self, correlation_id: str) -> Optional[Dict[str, Any]]:
        """Marker metadata if the correlation id was enqueued within the window"""
        stored = await self.redis.get(AppConfig.get_enqueue_dedup_key(correlation_id))
        if stored is None:
            return None
        return json.loads(stored)

    async def mark_enqueued(
        self,
        correlation_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record that the correlation id is on the topic.

        Returns:
            False if a marker already existed (an earlier attempt got there first)
        """
        key = AppConfig.get_enqueue_dedup_key(correlation_id)
        record = {
            "correlation_id": correlation_id,
            "enqueued_at": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        }
        created = await self.redis.set(key, json.dumps(record), nx=True, ex=self.window_seconds)
        if not created:
            logger.info(f"Correlation id {correlation_id} was already marked as enqueued")
        return bool(created)
