"""
Vendor identity mapping store (Postgres).

Sole owner of VendorMapping rows. ``user_id`` is the natural key, so a
re-processed Create for the same user can never add a second row. The upsert
is a conditional write: an existing mapping to a *different* record id is
reported as a conflict and left untouched.
"""

from __future__ import annotations

from typing import Optional

import asyncpg

from bridge_shared.exceptions.base import MappingStoreError
from bridge_shared.models.mapping import MappingUpsertOutcome, VendorMapping

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class VendorMappingStore:
    def __init__(
        self,
        *,
        dsn: str,
        schema: str = "vendor_bridge",
        pool_min: int = 1,
        pool_max: int = 5,
        command_timeout: int = 30,
    ):
        self._dsn = dsn
        self._schema = schema
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_min = pool_min
        self._pool_max = pool_max
        self._command_timeout = command_timeout

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
            raise MappingStoreError("VendorMappingStore not connected")
        return self._pool

    async def ensure_schema(self) -> None:
        pool = self._require_pool()
        async with pool.acquire() as conn:
            await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {self._schema}")
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._schema}.vendor_mappings (
                    user_id TEXT PRIMARY KEY,
                    external_record_id TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )

    async def upsert(self, user_id: str, external_record_id: str) -> MappingUpsertOutcome:
        """
        Idempotent conditional upsert.

        - no row: insert                        -> CREATED
        - row with the same record id: no-op    -> UNCHANGED
        - row with a different record id: keep  -> CONFLICT
        """
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO {self._schema}.vendor_mappings AS m (
                        user_id, external_record_id, created_at, last_updated
                    )
                    VALUES ($1, $2, NOW(), NOW())
                    ON CONFLICT (user_id) DO UPDATE
                    SET external_record_id = m.external_record_id
                    WHERE m.external_record_id = EXCLUDED.external_record_id
                    RETURNING (xmax = 0) AS inserted
                    """,
                    user_id,
                    external_record_id,
                )
        except _STORE_ERRORS as e:
            raise MappingStoreError(str(e), details={"user_id": user_id}) from e

        if row is None:
            return MappingUpsertOutcome.CONFLICT
        return MappingUpsertOutcome.CREATED if row["inserted"] else MappingUpsertOutcome.UNCHANGED

    async def lookup(self, user_id: str) -> Optional[VendorMapping]:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT user_id, external_record_id, created_at, last_updated
                    FROM {self._schema}.vendor_mappings
                    WHERE user_id = $1
                    """,
                    user_id,
                )
        except _STORE_ERRORS as e:
            raise MappingStoreError(str(e), details={"user_id": user_id}) from e
        return VendorMapping(**dict(row)) if row else None

    async def touch(self, user_id: str) -> bool:
        """Bump last_updated after an Update/Delete executed for the user"""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE {self._schema}.vendor_mappings
                    SET last_updated = NOW()
                    WHERE user_id = $1
                    RETURNING 1
                    """,
                    user_id,
                )
        except _STORE_ERRORS as e:
            raise MappingStoreError(str(e), details={"user_id": user_id}) from e
        return row is not None
