"""
PostgreSQL audit store.
"""

import json
from typing import Optional

import asyncpg

from shared.errors import AuditWriteError
from shared.logging import get_logger

from .models import AuditRecord


class PostgresAuditStore:
    """Append-only audit table backed by asyncpg."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("access.audit.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create the audit table."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=30
            )
            await self._create_tables()
            self.logger.info("PostgreSQL audit store started")
        except Exception as e:
            self.logger.error("Failed to start PostgreSQL audit store", error=str(e))
            raise AuditWriteError("Audit store unavailable", {"error": str(e)})

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL audit store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS access_audit_log (
                    record_id UUID PRIMARY KEY,
                    actor_id VARCHAR(255),
                    actor_role_at_time VARCHAR(100),
                    action VARCHAR(100) NOT NULL,
                    target_type VARCHAR(100),
                    target_id VARCHAR(255),
                    country_code VARCHAR(8),
                    previous_value JSONB,
                    new_value JSONB,
                    decision VARCHAR(20) NOT NULL,
                    code VARCHAR(50),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_access_audit_target ON access_audit_log(target_type, target_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_access_audit_created ON access_audit_log(created_at DESC);
            """)

    async def append(self, record: AuditRecord) -> None:
        """Insert one record. Raises AuditWriteError on any failure."""
        if self.pool is None:
            raise AuditWriteError("Audit store not started")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO access_audit_log (
                        record_id, actor_id, actor_role_at_time, action, target_type, target_id,
                        country_code, previous_value, new_value, decision, code, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                    record.record_id, record.actor_id, record.actor_role_at_time, record.action,
                    record.target_type, record.target_id, record.country_code,
                    _to_json(record.previous_value), _to_json(record.new_value),
                    record.decision, record.code, record.timestamp
                )
        except Exception as e:
            raise AuditWriteError("Audit write failed", {"record_id": record.record_id, "error": str(e)})

    async def check(self) -> str:
        """Dependency status for the health endpoint."""
        if self.pool is None:
            return "not_started"
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return "ok"
        except Exception as e:
            self.logger.warning("Audit store health check failed", error=str(e))
            return "error"


def _to_json(value) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)
