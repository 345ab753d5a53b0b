"""
Redis cache for module access decisions.

Keys embed the tenant's tier, country and add-on state version, so a tier
change or a grant/revoke moves readers to a fresh key instead of relying
on invalidation.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis

from shared.errors import AccessCoreException
from shared.logging import get_logger

from ..entitlements.models import ModuleAccessResult, Tenant, Tier
from ..rbac.scope import normalize_country_code

ENTITLEMENT_PREFIX = "entitlement:"


def entitlement_cache_key(tenant: Tenant, module_id: str, for_write: bool = False) -> str:
    key = (
        f"{ENTITLEMENT_PREFIX}{tenant.tenant_id}:{module_id}:{Tier.parse(tenant.tier).value}:"
        f"{normalize_country_code(tenant.country_code)}:v{tenant.addon_state_version}"
    )
    # Writes are decided separately; grace periods allow reads only
    return f"{key}:write" if for_write else key


class EntitlementCache:
    """Caches ModuleAccessResult values. Any Redis error is a cache miss."""

    def __init__(self, redis_url: str, ttl_seconds: int = 60):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("access.cache.redis")
        self.redis: Optional[redis.Redis] = None

        self.min_ttl = 1

    async def start(self):
        """Connect to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
            self.logger.info("Redis entitlement cache started")
        except Exception as e:
            self.logger.error("Failed to start Redis entitlement cache", error=str(e))
            raise AccessCoreException("REDIS_START_FAILED", str(e))

    async def stop(self):
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis entitlement cache stopped")

    async def get(
        self, tenant: Tenant, module_id: str, for_write: bool = False
    ) -> Optional[ModuleAccessResult]:
        if self.redis is None:
            return None
        cache_key = entitlement_cache_key(tenant, module_id, for_write)
        try:
            cached = await self.redis.get(cache_key)
            if not cached:
                return None
            result = ModuleAccessResult.from_dict(json.loads(cached))
            self.logger.debug("Cache hit for module access", cache_key=cache_key)
            return result
        except Exception as e:
            self.logger.error("Error reading cached module access", cache_key=cache_key, error=str(e))
            return None

    async def set(
        self,
        tenant: Tenant,
        module_id: str,
        result: ModuleAccessResult,
        now: Optional[datetime] = None,
        for_write: bool = False,
    ) -> bool:
        if self.redis is None:
            return False
        cache_key = entitlement_cache_key(tenant, module_id, for_write)
        ttl = self._ttl_for(tenant, now or datetime.now(timezone.utc))
        try:
            await self.redis.setex(cache_key, ttl, json.dumps(result.to_dict()))
            self.logger.debug("Cached module access", cache_key=cache_key, ttl=ttl)
            return True
        except Exception as e:
            self.logger.error("Error caching module access", cache_key=cache_key, error=str(e))
            return False

    def _ttl_for(self, tenant: Tenant, now: datetime) -> int:
        """Default TTL, shortened so no entry outlives a trial or grace period it depends on."""
        ttl = self.ttl_seconds
        for grant in tenant.addon_entitlements:
            if not grant.is_active:
                continue
            for ends in (grant.trial_ends_at, grant.grace_until):
                if ends is None:
                    continue
                if ends.tzinfo is None:
                    ends = ends.replace(tzinfo=timezone.utc)
                remaining = int((ends - now).total_seconds())
                if remaining > 0:
                    ttl = min(ttl, remaining)
        return max(self.min_ttl, ttl)

    async def check(self) -> str:
        if self.redis is None:
            return "disabled"
        try:
            await self.redis.ping()
            return "ok"
        except Exception as e:
            self.logger.warning("Redis health check failed", error=str(e))
            return "error"
