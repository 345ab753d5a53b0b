"""
Versioned configuration store.

Readers take the current immutable snapshot without locking. Writers
commit one key at a time under a per-key lock with an expected-version
check, and the new snapshot is published by a single reference swap.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from shared.errors import ConfigurationError, StaleWriteError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..entitlements.models import AddonEntitlement, CountryPricingConfig, ModuleDefinition, Tenant, Tier
from ..rollout.policy import CountryRolloutPolicy

MODULES = "modules"
ROLLOUT = "rollout"
PRICING = "pricing"
ADDONS = "addons"
NAMESPACES = (MODULES, ROLLOUT, PRICING, ADDONS)


@dataclass(frozen=True)
class VersionedRecord:
    """A configuration value and its per-key version. Version 0 means absent."""
    key: str
    version: int
    value: Any
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_by: Optional[str] = None


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable view of every configuration namespace."""
    namespaces: Mapping[str, Mapping[str, VersionedRecord]]

    @classmethod
    def from_tables(cls, tables: Mapping[str, Mapping[str, Any]], updated_by: str = "seed") -> "ConfigSnapshot":
        namespaces = {}
        for namespace in NAMESPACES:
            records = {
                key: VersionedRecord(key=key, version=1, value=value, updated_by=updated_by)
                for key, value in (tables.get(namespace) or {}).items()
            }
            namespaces[namespace] = MappingProxyType(records)
        return cls(namespaces=MappingProxyType(namespaces))

    def get(self, namespace: str, key: str) -> Optional[VersionedRecord]:
        return self._namespace(namespace).get(key)

    def version_of(self, namespace: str, key: str) -> int:
        record = self.get(namespace, key)
        return record.version if record else 0

    def values(self, namespace: str) -> Dict[str, Any]:
        return {key: record.value for key, record in self._namespace(namespace).items()}

    def replace(self, namespace: str, record: VersionedRecord) -> "ConfigSnapshot":
        """Return a new snapshot with one record swapped in."""
        records = dict(self._namespace(namespace))
        records[record.key] = record
        namespaces = dict(self.namespaces)
        namespaces[namespace] = MappingProxyType(records)
        return ConfigSnapshot(namespaces=MappingProxyType(namespaces))

    def _namespace(self, namespace: str) -> Mapping[str, VersionedRecord]:
        try:
            return self.namespaces[namespace]
        except KeyError:
            raise ConfigurationError("Unknown configuration namespace", {"namespace": namespace})

    @property
    def modules(self) -> Dict[str, ModuleDefinition]:
        return self.values(MODULES)

    @property
    def rollout(self) -> Dict[str, CountryRolloutPolicy]:
        return self.values(ROLLOUT)

    @property
    def pricing(self) -> Dict[str, CountryPricingConfig]:
        return self.values(PRICING)

    def addon_grants(self, tenant_id: str) -> Tuple[Tuple[AddonEntitlement, ...], int]:
        """Grants held by a tenant and the version of that grant set."""
        record = self.get(ADDONS, tenant_id)
        if record is None:
            return (), 0
        return tuple(record.value), record.version

    def tenant(
        self,
        tenant_id: str,
        tier: Tier,
        country_code: str,
        business_type: Optional[str] = None,
    ) -> Tenant:
        """Tenant view combining caller-supplied tier and country with stored grants."""
        grants, version = self.addon_grants(tenant_id)
        return Tenant(
            tenant_id=tenant_id,
            tier=Tier.parse(tier),
            country_code=country_code,
            business_type=business_type,
            addon_entitlements=grants,
            addon_state_version=version,
        )


BeforeCommit = Callable[[Optional[VersionedRecord], VersionedRecord], Awaitable[None]]


class ConfigurationStore:
    """Holds the current snapshot and serializes writes per key."""

    def __init__(self, tables: Mapping[str, Mapping[str, Any]], metrics: Optional[MetricsCollector] = None):
        self._snapshot = ConfigSnapshot.from_tables(tables)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self.metrics = metrics
        self.logger = get_logger("access.store")

    @property
    def snapshot(self) -> ConfigSnapshot:
        return self._snapshot

    def _lock_for(self, namespace: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((namespace, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(namespace, key)] = lock
        return lock

    async def commit(
        self,
        namespace: str,
        key: str,
        expected_version: int,
        value: Any,
        updated_by: Optional[str],
        before_commit: Optional[BeforeCommit] = None,
    ) -> VersionedRecord:
        """Publish a new value for a key if its version is still expected_version.

        ``before_commit`` receives the previous and new record after the
        version check; if it raises, nothing is published and the error
        propagates.
        """
        async with self._lock_for(namespace, key):
            current = self._snapshot.get(namespace, key)
            current_version = current.version if current else 0

            if expected_version != current_version:
                self.logger.info(
                    "Stale configuration write rejected",
                    namespace=namespace,
                    key=key,
                    expected_version=expected_version,
                    current_version=current_version,
                )
                self._count(namespace, "stale")
                raise StaleWriteError(f"{namespace}:{key}", expected_version, current_version)

            record = VersionedRecord(
                key=key,
                version=current_version + 1,
                value=value,
                updated_by=updated_by,
            )

            if before_commit is not None:
                try:
                    await before_commit(current, record)
                except Exception:
                    self._count(namespace, "aborted")
                    raise

            self._snapshot = self._snapshot.replace(namespace, record)

        self._count(namespace, "committed")
        self.logger.info(
            "Configuration committed",
            namespace=namespace,
            key=key,
            version=record.version,
            updated_by=updated_by,
        )
        return record

    def _count(self, namespace: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_config_commit(namespace, result)
