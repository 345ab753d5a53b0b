"""
Unit tests for the Redis entitlement cache.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from service_access.app.cache.redis_cache import EntitlementCache, entitlement_cache_key
from service_access.app.entitlements.models import (
    AccessReason,
    AddonEntitlement,
    ModuleAccess,
    ModuleAccessResult,
    Tenant,
    Tier,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def tenant():
    return Tenant(tenant_id="t1", tier=Tier.STARTER, country_code="uk", addon_state_version=3)


@pytest.fixture
def cache():
    cache = EntitlementCache("redis://localhost:6379/0", ttl_seconds=60)
    cache.redis = AsyncMock()
    return cache


@pytest.fixture
def result():
    return ModuleAccessResult(False, ModuleAccess.ADDON, None, AccessReason.ADDON_REQUIRED)


class TestCacheKey:

    def test_key_embeds_tier_country_and_addon_version(self, tenant):
        assert entitlement_cache_key(tenant, "legal") == "entitlement:t1:legal:starter:GB:v3"

    def test_version_change_moves_key(self, tenant):
        bumped = Tenant(tenant_id="t1", tier=Tier.STARTER, country_code="GB", addon_state_version=4)
        assert entitlement_cache_key(tenant, "legal") != entitlement_cache_key(bumped, "legal")

    def test_tier_change_moves_key(self, tenant):
        upgraded = Tenant(tenant_id="t1", tier=Tier.PRO, country_code="GB", addon_state_version=3)
        assert entitlement_cache_key(tenant, "legal") != entitlement_cache_key(upgraded, "legal")

    def test_write_checks_use_their_own_key(self, tenant):
        assert entitlement_cache_key(tenant, "legal", for_write=True) == "entitlement:t1:legal:starter:GB:v3:write"


class TestEntitlementCache:
    """Test cases for EntitlementCache."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache, tenant, result):
        assert await cache.set(tenant, "legal", result, now=NOW) is True
        key, ttl, payload = cache.redis.setex.await_args.args
        assert key == "entitlement:t1:legal:starter:GB:v3"
        assert ttl == 60

        cache.redis.get.return_value = payload
        assert await cache.get(tenant, "legal") == result

    @pytest.mark.asyncio
    async def test_miss(self, cache, tenant):
        cache.redis.get.return_value = None
        assert await cache.get(tenant, "legal") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_misses(self, cache, tenant, result):
        cache.redis.get.side_effect = ConnectionError("redis down")
        cache.redis.setex.side_effect = ConnectionError("redis down")
        assert await cache.get(tenant, "legal") is None
        assert await cache.set(tenant, "legal", result) is False

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_miss(self, cache, tenant):
        cache.redis.get.return_value = json.dumps({"allowed": True, "access": "SOMETIMES"})
        assert await cache.get(tenant, "legal") is None

    @pytest.mark.asyncio
    async def test_ttl_capped_by_trial_end(self, cache, result):
        trial = AddonEntitlement("legal", "GB", trial_ends_at=NOW + timedelta(seconds=20))
        tenant = Tenant("t1", Tier.STARTER, "GB", addon_entitlements=(trial,), addon_state_version=1)
        await cache.set(tenant, "legal", result, now=NOW)
        assert cache.redis.setex.await_args.args[1] == 20

    @pytest.mark.asyncio
    async def test_ttl_capped_by_grace_end(self, cache, result):
        lapsed = AddonEntitlement("legal", "GB", grace_until=NOW + timedelta(seconds=45))
        revoked = AddonEntitlement("clinic", "GB", is_active=False, grace_until=NOW + timedelta(seconds=5))
        tenant = Tenant("t1", Tier.STARTER, "GB", addon_entitlements=(lapsed, revoked), addon_state_version=2)
        await cache.set(tenant, "legal", result, now=NOW, for_write=True)
        key, ttl, _ = cache.redis.setex.await_args.args
        assert key.endswith(":v2:write")
        assert ttl == 45

    @pytest.mark.asyncio
    async def test_not_started(self, tenant, result):
        cache = EntitlementCache("redis://localhost:6379/0")
        assert await cache.get(tenant, "legal") is None
        assert await cache.set(tenant, "legal", result) is False
        assert await cache.check() == "disabled"

    @pytest.mark.asyncio
    async def test_check(self, cache):
        assert await cache.check() == "ok"
        cache.redis.ping.side_effect = ConnectionError("down")
        assert await cache.check() == "error"
