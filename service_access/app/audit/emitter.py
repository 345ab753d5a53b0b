"""
Audit trail emitter.

Mutations are written synchronously so that a failed write can abort the
change. Denials are written best-effort in the background.
"""

import asyncio
from typing import List, Optional, Protocol, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .models import AuditRecord


class AuditStore(Protocol):
    """Append-only sink. There is no update or delete."""

    async def append(self, record: AuditRecord) -> None:
        ...


class InMemoryAuditStore:
    """Process-local audit store."""

    def __init__(self):
        self._records: List[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)

    async def check(self) -> str:
        return "ok"


class AuditEmitter:
    """Writes audit records and never lets a failure escape."""

    def __init__(self, store: AuditStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("access.audit")
        self._pending: Set[asyncio.Task] = set()

    async def record_mutation(self, record: AuditRecord) -> bool:
        """Write a mutation record and report whether it was persisted."""
        try:
            await self.store.append(record)
        except Exception as e:
            self.logger.error(
                "Audit write failed",
                action=record.action,
                target_id=record.target_id,
                error=str(e),
            )
            self._count("mutation", False)
            return False

        self._count("mutation", True)
        return True

    def record_denial(self, record: AuditRecord) -> None:
        """Schedule a best-effort denial record."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No event loop for denial audit", action=record.action)
            self._count("denial", False)
            return

        task = loop.create_task(self._write_denial(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_denial(self, record: AuditRecord) -> None:
        try:
            await self.store.append(record)
        except Exception as e:
            self.logger.warning(
                "Denial audit write failed",
                action=record.action,
                code=record.code,
                error=str(e),
            )
            self._count("denial", False)
            return
        self._count("denial", True)

    async def drain(self) -> None:
        """Wait for pending denial writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _count(self, kind: str, success: bool) -> None:
        if self.metrics:
            self.metrics.record_audit_write(kind, success)
