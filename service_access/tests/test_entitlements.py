"""
Unit tests for the entitlement matrix and pricing.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from shared.errors import PricingError
from service_access.app.entitlements.matrix import (
    addon_status,
    check_module_access,
    find_redundant_addons,
    has_tier_feature,
    included_modules,
    lowest_including_tier,
    lowest_tier_with_feature,
    tier_features,
)
from service_access.app.entitlements.models import (
    AccessReason,
    AddonEntitlement,
    AddonStatus,
    CountryPricingConfig,
    GRACE_PERIOD_DAYS,
    GrantState,
    ModuleAccess,
    ModuleAccessResult,
    ModuleDefinition,
    NEXUS_DEPENDENT,
    Tenant,
    Tier,
)
from service_access.app.entitlements.pricing import price_of
from service_access.app.store.defaults import default_modules, default_pricing

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def matrix():
    return default_modules()


@pytest.fixture
def pricing():
    return default_pricing()


def make_tenant(tier=Tier.STARTER, country="IN", grants=()):
    return Tenant(
        tenant_id="tenant-1",
        tier=tier,
        country_code=country,
        addon_entitlements=tuple(grants),
    )


class TestTiers:

    def test_tier_order(self):
        assert Tier.FREE.rank < Tier.STARTER.rank < Tier.PRO.rank < Tier.ENTERPRISE.rank

    def test_parse(self):
        assert Tier.parse("PRO") is Tier.PRO
        with pytest.raises(ValueError):
            Tier.parse("platinum")

    def test_tier_features(self):
        assert tier_features(Tier.FREE) == {"multi_currency": False, "ai_insights": False, "white_label": False}
        assert has_tier_feature("pro", "multi_currency")
        assert not has_tier_feature("pro", "ai_insights")
        assert has_tier_feature(Tier.ENTERPRISE, "white_label")
        assert not has_tier_feature(Tier.ENTERPRISE, "time_travel")

    def test_lowest_tier_with_feature(self):
        assert lowest_tier_with_feature("multi_currency") is Tier.PRO
        assert lowest_tier_with_feature("ai_insights") is Tier.ENTERPRISE
        assert lowest_tier_with_feature("time_travel") is None

    def test_included_modules(self, matrix):
        free = included_modules(Tier.FREE, matrix)
        assert "salon" in free
        assert "hrms" not in free
        assert "hrms" in included_modules(Tier.STARTER, matrix)


class TestCheckModuleAccess:
    """Test cases for check_module_access."""

    def test_included(self, matrix):
        result = check_module_access(make_tenant(Tier.FREE), "salon", matrix, now=NOW)
        assert result == ModuleAccessResult(True, ModuleAccess.INCLUDED, None, AccessReason.INCLUDED)

    def test_addon_without_grant_offers_purchase_path(self, matrix):
        result = check_module_access(make_tenant(Tier.STARTER), "furniture_manufacturing", matrix, now=NOW)
        assert result.allowed is False
        assert result.access is ModuleAccess.ADDON
        assert result.upgrade_tier is None
        assert result.reason is AccessReason.ADDON_REQUIRED

    def test_addon_with_grant(self, matrix):
        grant = AddonEntitlement("furniture_manufacturing", "IN")
        result = check_module_access(make_tenant(Tier.STARTER, grants=[grant]), "furniture_manufacturing", matrix, now=NOW)
        assert result.allowed is True
        assert result.access is ModuleAccess.ADDON
        assert result.reason is AccessReason.ADDON_GRANTED

    def test_locked_without_grant_suggests_lowest_including_tier(self, matrix):
        result = check_module_access(make_tenant(Tier.STARTER), "clinic", matrix, now=NOW)
        assert result.allowed is False
        assert result.access is ModuleAccess.LOCKED
        assert result.upgrade_tier is Tier.ENTERPRISE
        assert result.reason is AccessReason.UPGRADE_REQUIRED

    def test_locked_with_grant_allows_regardless_of_tier(self, matrix):
        grant = AddonEntitlement("furniture", "IN")
        result = check_module_access(make_tenant(Tier.FREE, grants=[grant]), "furniture_manufacturing", matrix, now=NOW)
        assert result.allowed is True
        assert result.access is ModuleAccess.ADDON

    def test_grant_matches_explicit_aliases_only(self, matrix):
        grant = AddonEntitlement("furniture_manufacturing_pro", "IN")
        result = check_module_access(make_tenant(Tier.FREE, grants=[grant]), "furniture_manufacturing", matrix, now=NOW)
        assert result.allowed is False

    def test_grant_for_other_country_is_ignored(self, matrix):
        grant = AddonEntitlement("clinic", "GB")
        result = check_module_access(make_tenant(Tier.PRO, country="IN", grants=[grant]), "clinic", matrix, now=NOW)
        assert result.allowed is False
        assert result.reason is AccessReason.ADDON_REQUIRED

    def test_grant_country_compared_after_normalization(self, matrix):
        grant = AddonEntitlement("clinic", "UK")
        result = check_module_access(make_tenant(Tier.PRO, country="GB", grants=[grant]), "clinic", matrix, now=NOW)
        assert result.allowed is True

    def test_expired_trial_is_ignored(self, matrix):
        grant = AddonEntitlement("clinic", "IN", trial_ends_at=NOW - timedelta(seconds=1))
        result = check_module_access(make_tenant(Tier.PRO, grants=[grant]), "clinic", matrix, now=NOW)
        assert result.allowed is False

    def test_running_trial_counts(self, matrix):
        grant = AddonEntitlement("clinic", "IN", trial_ends_at=(NOW + timedelta(days=3)).replace(tzinfo=None))
        result = check_module_access(make_tenant(Tier.PRO, grants=[grant]), "clinic", matrix, now=NOW)
        assert result.allowed is True

    def test_unknown_module(self, matrix):
        result = check_module_access(make_tenant(Tier.ENTERPRISE), "spaceflight", matrix, now=NOW)
        assert result == ModuleAccessResult(False, ModuleAccess.LOCKED, None, AccessReason.NOT_OFFERED)

    def test_module_never_included_is_not_offered(self):
        matrix = {"beta": ModuleDefinition("beta", "Beta", access={Tier.ENTERPRISE: ModuleAccess.ADDON})}
        result = check_module_access(make_tenant(Tier.PRO), "beta", matrix, now=NOW)
        assert result.access is ModuleAccess.LOCKED
        assert result.upgrade_tier is None
        assert result.reason is AccessReason.NOT_OFFERED

    def test_grant_then_revoke_restores_result(self, matrix):
        for module_id in ("furniture_manufacturing", "clinic", "legal"):
            for tier in Tier:
                before = check_module_access(make_tenant(tier), module_id, matrix, now=NOW)
                granted = make_tenant(tier, grants=[AddonEntitlement(module_id, "IN")])
                revoked = make_tenant(tier, grants=[AddonEntitlement(module_id, "IN", is_active=False)])
                assert check_module_access(granted, module_id, matrix, now=NOW).allowed is True
                assert check_module_access(revoked, module_id, matrix, now=NOW) == before

    def test_lowest_including_tier(self, matrix):
        assert lowest_including_tier("hrms", matrix) is Tier.STARTER
        assert lowest_including_tier("furniture_manufacturing", matrix) is Tier.PRO
        assert lowest_including_tier("salon", matrix) is Tier.FREE
        assert lowest_including_tier("spaceflight", matrix) is None

    def test_result_dict_round_trip(self):
        result = ModuleAccessResult(False, ModuleAccess.LOCKED, Tier.PRO, AccessReason.UPGRADE_REQUIRED)
        assert ModuleAccessResult.from_dict(result.to_dict()) == result


class TestAddonLifecycle:
    """Trials, grace periods, cancellation and add-on dependencies."""

    def test_trial_reason(self, matrix):
        grant = AddonEntitlement("legal", "IN", trial_ends_at=NOW + timedelta(days=7))
        result = check_module_access(make_tenant(grants=[grant]), "legal", matrix, now=NOW)
        assert result.allowed is True
        assert result.reason is AccessReason.ADDON_TRIAL

    def test_expired_trial_reason(self, matrix):
        grant = AddonEntitlement("legal", "IN", trial_ends_at=NOW - timedelta(days=1))
        result = check_module_access(make_tenant(grants=[grant]), "legal", matrix, now=NOW)
        assert result == ModuleAccessResult(False, ModuleAccess.ADDON, None, AccessReason.ADDON_TRIAL_EXPIRED)

    def test_grace_period_allows_reads_only(self, matrix):
        grant = AddonEntitlement("legal", "IN", grace_until=NOW + timedelta(days=2))
        tenant = make_tenant(grants=[grant])

        read = check_module_access(tenant, "legal", matrix, now=NOW)
        assert read.allowed is True
        assert read.reason is AccessReason.ADDON_GRACE_PERIOD

        write = check_module_access(tenant, "legal", matrix, now=NOW, for_write=True)
        assert write.allowed is False
        assert write.reason is AccessReason.ADDON_GRACE_PERIOD

    def test_grace_period_over_is_expired(self, matrix):
        grant = AddonEntitlement("clinic", "IN", grace_until=NOW - timedelta(seconds=1))
        result = check_module_access(make_tenant(Tier.STARTER, grants=[grant]), "clinic", matrix, now=NOW)
        assert result.allowed is False
        assert result.access is ModuleAccess.LOCKED
        assert result.upgrade_tier is Tier.ENTERPRISE
        assert result.reason is AccessReason.ADDON_EXPIRED

    def test_lapsed_grant_keeps_grace_period_days(self):
        lapsed = AddonEntitlement("legal", "IN", trial_ends_at=NOW - timedelta(days=30)).lapsed(NOW)
        assert lapsed.trial_ends_at is None
        assert lapsed.grace_until == NOW + timedelta(days=GRACE_PERIOD_DAYS)
        assert lapsed.state_at(NOW + timedelta(days=GRACE_PERIOD_DAYS, seconds=-1)) is GrantState.GRACE
        assert lapsed.state_at(NOW + timedelta(days=GRACE_PERIOD_DAYS)) is GrantState.EXPIRED

    def test_cancelled_grant_reads_as_never_granted(self, matrix):
        grant = AddonEntitlement("legal", "IN", is_active=False, grace_until=NOW + timedelta(days=1))
        result = check_module_access(make_tenant(grants=[grant]), "legal", matrix, now=NOW)
        assert result.reason is AccessReason.ADDON_REQUIRED

    def test_payroll_needs_hrms(self, matrix):
        payroll = AddonEntitlement("payroll", "IN")
        result = check_module_access(make_tenant(Tier.FREE, grants=[payroll]), "payroll", matrix, now=NOW)
        assert result == ModuleAccessResult(False, ModuleAccess.ADDON, None, AccessReason.ADDON_DEPENDENCY_MISSING)

        with_hrms = make_tenant(Tier.FREE, grants=[payroll, AddonEntitlement("hrms", "IN")])
        assert check_module_access(with_hrms, "payroll", matrix, now=NOW).reason is AccessReason.ADDON_GRANTED

    def test_hrms_included_by_tier_satisfies_payroll(self, matrix):
        tenant = make_tenant(Tier.STARTER, grants=[AddonEntitlement("payroll_india", "IN")])
        assert check_module_access(tenant, "payroll", matrix, now=NOW).allowed is True

    @pytest.mark.parametrize("hrms", [
        AddonEntitlement("hrms", "IN", is_active=False),
        AddonEntitlement("hrms", "GB"),
        AddonEntitlement("hrms", "IN", trial_ends_at=NOW - timedelta(days=1)),
    ])
    def test_unusable_hrms_is_missing(self, matrix, hrms):
        tenant = make_tenant(Tier.FREE, grants=[AddonEntitlement("payroll", "IN"), hrms])
        result = check_module_access(tenant, "payroll", matrix, now=NOW)
        assert result.reason is AccessReason.ADDON_DEPENDENCY_MISSING

    def test_hrms_in_grace_blocks_payroll_writes(self, matrix):
        hrms = AddonEntitlement("hrms", "IN", grace_until=NOW + timedelta(days=1))
        tenant = make_tenant(Tier.FREE, grants=[AddonEntitlement("payroll", "IN"), hrms])
        assert check_module_access(tenant, "payroll", matrix, now=NOW).allowed is True

        write = check_module_access(tenant, "payroll", matrix, now=NOW, for_write=True)
        assert write.allowed is False
        assert write.reason is AccessReason.ADDON_DEPENDENCY_EXPIRED

    def test_status_without_grant(self, matrix):
        status = addon_status(make_tenant(), "legal", matrix, now=NOW)
        assert status == AddonStatus("legal", False, None, AccessReason.ADDON_REQUIRED)

    def test_status_of_cancelled_grant(self, matrix):
        status = addon_status(make_tenant(grants=[AddonEntitlement("legal", "IN", is_active=False)]), "legal", matrix, now=NOW)
        assert status.entitled is False
        assert status.state is GrantState.CANCELLED
        assert status.reason is AccessReason.ADDON_CANCELLED

    def test_status_counts_days_remaining(self, matrix):
        trial = AddonEntitlement("legal", "IN", trial_ends_at=NOW + timedelta(hours=36))
        status = addon_status(make_tenant(grants=[trial]), "legal", matrix, now=NOW)
        assert status.state is GrantState.TRIAL
        assert status.days_remaining == 2
        assert status.to_dict()["valid_until"] == "2026-03-03T00:00:00+00:00"

        lapsed = AddonEntitlement("legal", "IN").lapsed(NOW)
        status = addon_status(make_tenant(grants=[lapsed]), "legal", matrix, now=NOW)
        assert status.entitled is True
        assert status.reason is AccessReason.ADDON_GRACE_PERIOD
        assert status.days_remaining == GRACE_PERIOD_DAYS

    def test_status_reports_missing_dependency(self, matrix):
        status = addon_status(make_tenant(Tier.FREE, grants=[AddonEntitlement("payroll", "IN")]), "payroll", matrix, now=NOW)
        assert status.state is GrantState.ACTIVE
        assert status.entitled is False
        assert status.reason is AccessReason.ADDON_DEPENDENCY_MISSING


class TestRedundantAddons:
    """A downgrade or upgrade never revokes grants; redundancy is only reported."""

    def test_grant_for_included_module_is_redundant(self, matrix):
        grant = AddonEntitlement("furniture", "IN")
        tenant = make_tenant(Tier.PRO, grants=[grant])
        assert find_redundant_addons(tenant, matrix) == [grant]
        assert check_module_access(tenant, "furniture_manufacturing", matrix, now=NOW).allowed

    def test_grant_needed_at_lower_tier_is_not_redundant(self, matrix):
        grant = AddonEntitlement("furniture", "IN")
        assert find_redundant_addons(make_tenant(Tier.STARTER, grants=[grant]), matrix) == []

    def test_inactive_and_unknown_grants_are_skipped(self, matrix):
        grants = [AddonEntitlement("furniture", "IN", is_active=False), AddonEntitlement("mystery", "IN")]
        assert find_redundant_addons(make_tenant(Tier.ENTERPRISE, grants=grants), matrix) == []


class TestPricing:
    """Test cases for price_of."""

    def test_starter_furniture_addon_in_india(self, matrix, pricing):
        quote = price_of("furniture_manufacturing", Tier.STARTER, "IN", matrix, pricing)
        assert quote.base_usd == Decimal("15")
        assert quote.currency == "INR"
        assert quote.amount == Decimal("1245.00")
        assert quote.tax_name == "GST"
        assert quote.tax_rate == Decimal("18")
        assert quote.tax_amount == Decimal("224.10")
        assert quote.total == Decimal("1469.10")
        assert quote.tax_computed_externally is False

    def test_uk_alias_prices_in_gbp(self, matrix, pricing):
        quote = price_of("furniture_manufacturing", "starter", "uk", matrix, pricing)
        assert quote.country_code == "GB"
        assert quote.amount == Decimal("11.85")
        assert quote.tax_amount == Decimal("2.37")
        assert quote.total == Decimal("14.22")

    def test_nexus_dependent_country(self, matrix, pricing):
        quote = price_of("furniture_manufacturing", Tier.STARTER, "US", matrix, pricing)
        assert quote.amount == Decimal("15.00")
        assert quote.tax_amount is None
        assert quote.total is None
        assert quote.tax_rate is None
        assert quote.tax_computed_externally is True

    def test_half_up_rounding(self):
        matrix = {"m": ModuleDefinition(
            "m", "M", access={Tier.PRO: ModuleAccess.ADDON}, prices_usd={Tier.PRO: Decimal("1")}
        )}
        pricing = {"ZZ": CountryPricingConfig("ZZ", "ZZD", "Tax", Decimal("0.5"), Decimal("1"))}
        quote = price_of("m", Tier.PRO, "ZZ", matrix, pricing)
        assert quote.tax_amount == Decimal("0.01")
        assert quote.total == Decimal("1.01")

    def test_quote_serializes_money_as_strings(self, matrix, pricing):
        body = price_of("furniture_manufacturing", Tier.STARTER, "US", matrix, pricing).to_dict()
        assert body["amount"] == "15.00"
        assert body["total"] is None
        assert body["tax_computed_externally"] is True

    @pytest.mark.parametrize("module_id,tier,country", [
        ("spaceflight", "starter", "IN"),
        ("furniture_manufacturing", "starter", "ZZ"),
        ("furniture_manufacturing", "platinum", "IN"),
    ])
    def test_pricing_errors(self, matrix, pricing, module_id, tier, country):
        with pytest.raises(PricingError):
            price_of(module_id, tier, country, matrix, pricing)

    def test_missing_tier_price(self, pricing):
        matrix = {"m": ModuleDefinition(
            "m", "M",
            access={Tier.STARTER: ModuleAccess.ADDON, Tier.PRO: ModuleAccess.ADDON},
            prices_usd={Tier.PRO: Decimal("5")},
        )}
        with pytest.raises(PricingError):
            price_of("m", Tier.STARTER, "IN", matrix, pricing)

    def test_locked_tier_is_not_quoted(self, matrix, pricing):
        with pytest.raises(PricingError) as exc_info:
            price_of("clinic", Tier.FREE, "IN", matrix, pricing)
        assert exc_info.value.message == "Module not offered at tier"

    def test_locked_tiers_carry_no_seed_price(self, matrix):
        for module in matrix.values():
            for tier in module.prices_usd:
                assert module.access_for(tier) is not ModuleAccess.LOCKED, (module.module_id, tier)

    def test_locked_tier_rejected_even_with_price(self, pricing):
        matrix = {"m": ModuleDefinition("m", "M", prices_usd={Tier.FREE: Decimal("0")})}
        with pytest.raises(PricingError):
            price_of("m", Tier.FREE, "IN", matrix, pricing)

    def test_nexus_marker(self, pricing):
        assert pricing["US"].tax_rate == NEXUS_DEPENDENT
        assert pricing["US"].is_nexus_dependent
