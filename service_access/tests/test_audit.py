"""
Unit tests for the audit emitter and stores.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from prometheus_client import CollectorRegistry

from shared.errors import AuditWriteError
from shared.metrics import MetricsCollector
from service_access.app.audit.emitter import AuditEmitter, InMemoryAuditStore
from service_access.app.audit.models import AuditAction, AuditRecord
from service_access.app.audit.postgres import PostgresAuditStore


@pytest.fixture
def record():
    return AuditRecord(
        actor_id="sa-1",
        actor_role_at_time="SUPER_ADMIN",
        action=AuditAction.ROLLOUT_UPDATE,
        target_type="country",
        target_id="IN",
        country_code="IN",
        previous_value={"is_active": False},
        new_value={"is_active": True},
        decision="ALLOW",
    )


@pytest.fixture
def metrics():
    return MetricsCollector("audit-test", registry=CollectorRegistry())


def mock_pool(conn):
    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=conn)
    acquire.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire)
    pool.close = AsyncMock()
    return pool


class TestAuditRecord:

    def test_record_is_immutable(self, record):
        with pytest.raises(Exception):
            record.decision = "DENY"

    def test_ids_and_timestamps_are_generated(self, record):
        other = AuditRecord(None, None, AuditAction.ACCESS_CHECK, None, None, "DENY")
        assert record.record_id != other.record_id
        assert record.timestamp.tzinfo is not None

    def test_to_dict(self, record):
        data = record.to_dict()
        assert data["action"] == "rollout.update"
        assert data["new_value"] == {"is_active": True}
        assert data["timestamp"] == record.timestamp.isoformat()


class TestAuditEmitter:
    """Test cases for AuditEmitter."""

    @pytest.mark.asyncio
    async def test_record_mutation_success(self, record, metrics):
        store = InMemoryAuditStore()
        emitter = AuditEmitter(store, metrics)
        assert await emitter.record_mutation(record) is True
        assert store.records == [record]

    @pytest.mark.asyncio
    async def test_record_mutation_failure_returns_false(self, record, metrics):
        store = MagicMock()
        store.append = AsyncMock(side_effect=AuditWriteError("down"))
        emitter = AuditEmitter(store, metrics)
        assert await emitter.record_mutation(record) is False
        assert metrics.registry.get_sample_value(
            "audit_writes_total", {"kind": "mutation", "result": "error"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_record_denial_is_background(self, record):
        store = InMemoryAuditStore()
        emitter = AuditEmitter(store)
        emitter.record_denial(record)
        await emitter.drain()
        assert store.records == [record]

    @pytest.mark.asyncio
    async def test_record_denial_failure_is_swallowed(self, record, metrics):
        store = MagicMock()
        store.append = AsyncMock(side_effect=RuntimeError("boom"))
        emitter = AuditEmitter(store, metrics)
        emitter.record_denial(record)
        await emitter.drain()
        assert metrics.registry.get_sample_value(
            "audit_writes_total", {"kind": "denial", "result": "error"}
        ) == 1.0

    def test_record_denial_without_loop(self, record):
        store = InMemoryAuditStore()
        AuditEmitter(store).record_denial(record)
        assert store.records == []

    @pytest.mark.asyncio
    async def test_in_memory_has_no_update_or_delete(self):
        store = InMemoryAuditStore()
        assert not hasattr(store, "delete")
        assert not hasattr(store, "update")
        assert await store.check() == "ok"


class TestPostgresAuditStore:
    """Test cases for PostgresAuditStore with a mocked pool."""

    @pytest.mark.asyncio
    async def test_append_inserts_row(self, record):
        conn = AsyncMock()
        store = PostgresAuditStore("postgres://test")
        store.pool = mock_pool(conn)

        await store.append(record)

        conn.execute.assert_awaited_once()
        args = conn.execute.await_args.args
        assert "INSERT INTO access_audit_log" in args[0]
        assert args[1] == record.record_id
        assert args[4] == "rollout.update"
        assert json.loads(args[9]) == {"is_active": True}

    @pytest.mark.asyncio
    async def test_append_failure_raises_audit_error(self, record):
        conn = AsyncMock()
        conn.execute.side_effect = ConnectionError("connection reset")
        store = PostgresAuditStore("postgres://test")
        store.pool = mock_pool(conn)

        with pytest.raises(AuditWriteError):
            await store.append(record)

    @pytest.mark.asyncio
    async def test_append_before_start_raises(self, record):
        with pytest.raises(AuditWriteError):
            await PostgresAuditStore("postgres://test").append(record)

    @pytest.mark.asyncio
    async def test_check(self):
        conn = AsyncMock()
        conn.fetchval.return_value = 1
        store = PostgresAuditStore("postgres://test")
        assert await store.check() == "not_started"
        store.pool = mock_pool(conn)
        assert await store.check() == "ok"
        conn.fetchval.side_effect = ConnectionError("down")
        assert await store.check() == "error"

    @pytest.mark.asyncio
    async def test_stop_closes_pool(self):
        store = PostgresAuditStore("postgres://test")
        pool = mock_pool(AsyncMock())
        store.pool = pool
        await store.stop()
        pool.close.assert_awaited_once()
