"""
PostgreSQL persistence layer for rights.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import asyncpg

from shared.errors import AccessLayerException
from shared.logging import get_logger
from ..errors import DuplicatePair, RightNotFound
from ..rights.models import Permission, Right, RightPatch, RightsFilter, RightsStats, RightStatus
from ..rights.status import with_derived_status
from .base import RightsStore


class PostgreSQLRightsStore(RightsStore):
    """asyncpg-backed rights store.

    The unique constraint on (application_id, account_id) is what makes
    two concurrent grants for the same pair safe.
    """

    def __init__(self, dsn: Optional[str] = None, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.pool = pool
        self._owns_pool = pool is None
        self.logger = get_logger("rights.persistence.postgres")

    async def start(self):
        """Start the persistence layer."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )
            await self._create_tables()
            self.logger.info("PostgreSQL rights store started")
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL rights store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e), status_code=503) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool and self._owns_pool:
            await self.pool.close()
            self.logger.info("PostgreSQL rights store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rights (
                    right_id VARCHAR(64) PRIMARY KEY,
                    application_id VARCHAR(255) NOT NULL,
                    account_id VARCHAR(255) NOT NULL,
                    permissions TEXT[] NOT NULL DEFAULT '{}',
                    expires_at TIMESTAMP WITH TIME ZONE,
                    entitlement_token TEXT NOT NULL,
                    status VARCHAR(20) NOT NULL DEFAULT 'active',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    CONSTRAINT uq_rights_application_account UNIQUE (application_id, account_id)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_rights_account ON rights(account_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_rights_expires_at ON rights(expires_at);
            """)

    async def get(self, right_id: str, now: datetime) -> Optional[Right]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM rights WHERE right_id = $1", right_id)
        return with_derived_status(self._row_to_right(row), now) if row else None

    async def find_by_pair(self, application_id: str, account_id: str, now: datetime) -> Optional[Right]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM rights WHERE application_id = $1 AND account_id = $2
            """, application_id, account_id)
        return with_derived_status(self._row_to_right(row), now) if row else None

    async def insert(self, right: Right) -> Right:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO rights (
                        right_id, application_id, account_id, permissions, expires_at,
                        entitlement_token, status, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING *
                """,
                    right.right_id, right.application_id, right.account_id,
                    self._permissions_to_db(right.permissions), right.expires_at,
                    right.entitlement_token, right.status.value, right.created_at, right.updated_at
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicatePair(details={
                "application_id": right.application_id,
                "account_id": right.account_id,
            }) from e

        self.logger.info("Right inserted", right_id=right.right_id)
        return self._row_to_right(row)

    async def update(self, right_id: str, patch: RightPatch) -> Right:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE rights SET
                    permissions = $2,
                    expires_at = $3,
                    entitlement_token = $4,
                    status = $5,
                    updated_at = $6
                WHERE right_id = $1
                RETURNING *
            """,
                right_id, self._permissions_to_db(patch.permissions), patch.expires_at,
                patch.entitlement_token, patch.status.value, patch.updated_at
            )
        if row is None:
            raise RightNotFound(details={"id": right_id})
        return self._row_to_right(row)

    async def delete(self, right_id: str) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM rights WHERE right_id = $1", right_id)
        if result != "DELETE 1":
            raise RightNotFound(details={"id": right_id})
        self.logger.info("Right deleted", right_id=right_id)

    async def list(self, rights_filter: RightsFilter) -> List[Right]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM rights
                WHERE ($1::VARCHAR IS NULL OR application_id = $1)
                  AND ($2::VARCHAR IS NULL OR account_id = $2)
                ORDER BY created_at DESC
            """, rights_filter.application_id, rights_filter.account_id)
        return [with_derived_status(self._row_to_right(row), rights_filter.status_as_of) for row in rows]

    async def list_expiring_within(self, window: timedelta, now: datetime) -> List[Right]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM rights
                WHERE expires_at IS NOT NULL AND expires_at >= $1 AND expires_at <= $2
                  AND status <> 'inactive'
                ORDER BY expires_at ASC
            """, now, now + window)
        return [with_derived_status(self._row_to_right(row), now) for row in rows]

    async def count_for_account(self, account_id: str) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval("SELECT COUNT(*) FROM rights WHERE account_id = $1", account_id)
        return count or 0

    async def count_for_application(self, application_id: str) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval("SELECT COUNT(*) FROM rights WHERE application_id = $1", application_id)
        return count or 0

    async def stats(self, now: datetime) -> RightsStats:
        async with self.pool.acquire() as conn:
            totals = await conn.fetchrow("""
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE expires_at IS NOT NULL AND expires_at < $1) AS expired,
                    COUNT(*) FILTER (
                        WHERE (expires_at IS NULL OR expires_at >= $1) AND status = 'inactive'
                    ) AS inactive
                FROM rights
            """, now)
            rows = await conn.fetch("""
                SELECT application_id, COUNT(*) AS count
                FROM rights GROUP BY application_id ORDER BY count DESC
            """)

        total = totals["total"] or 0
        expired = totals["expired"] or 0
        inactive = totals["inactive"] or 0
        return RightsStats(
            total=total,
            active=total - expired - inactive,
            inactive=inactive,
            expired=expired,
            by_application={row["application_id"]: row["count"] for row in rows},
        )

    async def health_check(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (OSError, asyncpg.PostgresError):
            return False

    @staticmethod
    def _permissions_to_db(permissions) -> List[str]:
        return sorted(p.value for p in permissions)

    @staticmethod
    def _row_to_right(row) -> Right:
        return Right(
            right_id=row["right_id"],
            application_id=row["application_id"],
            account_id=row["account_id"],
            permissions=frozenset(Permission(p) for p in row["permissions"]),
            expires_at=row["expires_at"],
            entitlement_token=row["entitlement_token"],
            status=RightStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
