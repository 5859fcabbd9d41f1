"""
Durable command delivery registry (Postgres).

Contract:
- One row per correlation id. The row is the command's visibility lock
  (``owner`` + ``heartbeat_at`` lease) and its redelivery counter
  (``attempt_count``).
- Kafka delivers at-least-once; a lease that is not renewed within
  ``lease_timeout_seconds`` becomes reclaimable by another worker, and every
  claim after the first counts as a redelivery.
- Terminal rows (``done`` / ``dead_lettered``) make later copies of the same
  correlation id duplicates.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

import asyncpg

from bridge_shared.exceptions.base import DeliveryRegistryError

TERMINAL_STATUSES = frozenset({"done", "dead_lettered"})


class ClaimDecision(str, Enum):
    CLAIMED = "claimed"
    DUPLICATE_DONE = "duplicate_done"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class ClaimResult:
    decision: ClaimDecision
    attempt_count: int = 0
    existing_status: Optional[str] = None
    last_error: Optional[str] = None


class DeliveryRegistry:
    """Postgres-backed lease and redelivery bookkeeping for the command queue"""

    def __init__(
        self,
        *,
        dsn: str,
        schema: str = "vendor_bridge",
        lease_timeout_seconds: int = 60,
        owner: Optional[str] = None,
        pool_min: int = 1,
        pool_max: int = 5,
        command_timeout: int = 30,
    ):
        self._dsn = dsn
        self._schema = schema
        self._pool: Optional[asyncpg.Pool] = None
        self._lease_timeout = timedelta(seconds=lease_timeout_seconds)
        self._pool_min = pool_min
        self._pool_max = pool_max
        self._command_timeout = command_timeout
        self.owner = owner or (
            f"{os.getenv('HOSTNAME') or 'worker'}:{os.getpid()}:{uuid4().hex[:8]}"
        )

    async def connect(self) -> None:
        if self._pool:
            return

        self._pool = await asyncpg.create_pool(
            self._dsn,
            min_size=self._pool_min,
            max_size=self._pool_max,
            command_timeout=self._command_timeout,
        )
        await self.ensure_schema()

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise DeliveryRegistryError("DeliveryRegistry not connected")
        return self._pool

    async def ensure_schema(self) -> None:
        pool = self._require_pool()
        async with pool.acquire() as conn:
            await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {self._schema}")
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._schema}.command_deliveries (
                    correlation_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    owner TEXT,
                    started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    heartbeat_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    finished_at TIMESTAMPTZ,
                    attempt_count INTEGER NOT NULL DEFAULT 1,
                    last_error TEXT
                )
                """
            )
            await conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_command_deliveries_lease
                ON {self._schema}.command_deliveries(status, heartbeat_at)
                WHERE status = 'processing'
                """
            )

    async def claim(self, correlation_id: str) -> ClaimResult:
        """
        Try to take the visibility lock for a command.

        Returns:
        - CLAIMED: caller owns the lease; settle with mark_done / mark_failed.
        - DUPLICATE_DONE: the command already reached a terminal state.
        - IN_PROGRESS: another worker holds a live lease.
        """
        if not correlation_id:
            raise ValueError("correlation_id is required")
        pool = self._require_pool()
        lease_cutoff = datetime.now(timezone.utc) - self._lease_timeout

        async with pool.acquire() as conn:
            async with conn.transaction():
                inserted = await conn.fetchrow(
                    f"""
                    INSERT INTO {self._schema}.command_deliveries (
                        correlation_id, status, started_at, owner, heartbeat_at
                    )
                    VALUES ($1, 'processing', NOW(), $2, NOW())
                    ON CONFLICT (correlation_id) DO NOTHING
                    RETURNING attempt_count
                    """,
                    correlation_id,
                    self.owner,
                )
                if inserted:
                    return ClaimResult(decision=ClaimDecision.CLAIMED, attempt_count=int(inserted["attempt_count"]))

                existing = await conn.fetchrow(
                    f"""
                    SELECT status, heartbeat_at, attempt_count, last_error
                    FROM {self._schema}.command_deliveries
                    WHERE correlation_id = $1
                    FOR UPDATE
                    """,
                    correlation_id,
                )
                if not existing:
                    return ClaimResult(decision=ClaimDecision.IN_PROGRESS)

                status = str(existing["status"])
                attempt_count = int(existing["attempt_count"] or 0)
                last_error = existing["last_error"]

                if status in TERMINAL_STATUSES:
                    return ClaimResult(
                        decision=ClaimDecision.DUPLICATE_DONE,
                        attempt_count=attempt_count,
                        existing_status=status,
                    )

                if status == "processing" and existing["heartbeat_at"] >= lease_cutoff:
                    return ClaimResult(
                        decision=ClaimDecision.IN_PROGRESS,
                        attempt_count=attempt_count,
                        existing_status=status,
                    )

                # 'failed', or 'processing' with an expired lease: redelivery
                reclaimed = await conn.fetchrow(
                    f"""
                    UPDATE {self._schema}.command_deliveries
                    SET status = 'processing',
                        started_at = NOW(),
                        heartbeat_at = NOW(),
                        owner = $2,
                        attempt_count = attempt_count + 1,
                        last_error = NULL
                    WHERE correlation_id = $1
                    RETURNING attempt_count
                    """,
                    correlation_id,
                    self.owner,
                )
                return ClaimResult(
                    decision=ClaimDecision.CLAIMED,
                    attempt_count=int(reclaimed["attempt_count"]),
                    existing_status=status,
                    last_error=last_error or (
                        "visibility lock expired" if status == "processing" else None
                    ),
                )

    async def heartbeat(self, correlation_id: str) -> bool:
        """Extend the lease (owner-scoped). False means the lock was lost."""
        pool = self._require_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self._schema}.command_deliveries
                SET heartbeat_at = NOW()
                WHERE correlation_id = $1
                  AND status = 'processing'
                  AND owner = $2
                RETURNING 1
                """,
                correlation_id,
                self.owner,
            )
            return row is not None

    async def mark_done(self, correlation_id: str, *, status: str = "done",
                        error: Optional[str] = None) -> None:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status}")
        pool = self._require_pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchrow(
                f"""
                UPDATE {self._schema}.command_deliveries
                SET status = $3,
                    finished_at = NOW(),
                    heartbeat_at = NOW(),
                    last_error = $4
                WHERE correlation_id = $1
                  AND status = 'processing'
                  AND owner = $2
                RETURNING 1
                """,
                correlation_id,
                self.owner,
                status,
                error[:4000] if error else None,
            )
            if updated:
                return

            existing = await conn.fetchrow(
                f"SELECT status, owner FROM {self._schema}.command_deliveries WHERE correlation_id = $1",
                correlation_id,
            )
            if existing and str(existing["status"]) in TERMINAL_STATUSES:
                return
            raise DeliveryRegistryError(
                f"mark_done rejected for {correlation_id}",
                details={"owner": existing["owner"] if existing else None},
            )

    async def mark_failed(self, correlation_id: str, *, error: str) -> None:
        """Release the lease so the next delivery of the command can claim it"""
        pool = self._require_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self._schema}.command_deliveries
                SET status = 'failed',
                    heartbeat_at = NOW(),
                    last_error = $3
                WHERE correlation_id = $1
                  AND status = 'processing'
                  AND owner = $2
                """,
                correlation_id,
                self.owner,
                error[:4000] if error else None,
            )
            # Lost lease or already terminal: never overwrite.
