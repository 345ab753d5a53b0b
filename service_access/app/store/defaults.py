"""
Seed tables for the configuration store.

An optional JSON seed file may replace any of the module, rollout and
pricing tables at startup.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from shared.errors import ConfigurationError
from shared.logging import get_logger

from ..entitlements.models import (
    CountryPricingConfig,
    ModuleAccess,
    ModuleDefinition,
    NEXUS_DEPENDENT,
    Tier,
)
from ..rbac.scope import normalize_country_code
from ..rollout.policy import CountryRolloutPolicy

logger = get_logger("access.store.defaults")

I = ModuleAccess.INCLUDED
A = ModuleAccess.ADDON
L = ModuleAccess.LOCKED

ALL_TIERS_INCLUDED = (I, I, I, I)
FROM_STARTER = (L, I, I, I)
VERTICAL = (L, A, I, I)
PREMIUM_VERTICAL = (L, L, A, I)
ALL_TIERS_ADDON = (A, A, A, A)

# module_id: (name, access per tier free..enterprise, USD price per tier, add-on codes).
# Prices at LOCKED tiers are dropped; those tiers cannot be quoted.
_MODULE_ROWS = {
    "furniture_manufacturing": (
        "Furniture Manufacturing", VERTICAL, ("0", "15", "0", "0"),
        ("furniture_manufacturing", "furniture", "manufacturing"),
    ),
    "hrms": ("HR Management", FROM_STARTER, ("0", "0", "0", "0"), ("hrms",)),
    "payroll": (
        "Payroll", ALL_TIERS_ADDON, ("5", "5", "5", "5"),
        ("payroll", "payroll_india", "payroll_malaysia", "payroll_uk"),
    ),
    "legal": (
        "Legal Services", VERTICAL, ("0", "19", "0", "0"),
        ("legal_services", "legal", "case_management"),
    ),
    "education": ("Education", VERTICAL, ("0", "12", "0", "0"), ("education", "coaching", "lms")),
    "tourism": ("Tourism", VERTICAL, ("0", "12", "0", "0"), ("tourism", "travel", "tour_management")),
    "logistics": (
        "Logistics", VERTICAL, ("0", "15", "0", "0"),
        ("logistics", "delivery", "fleet_management"),
    ),
    "real_estate": (
        "Real Estate", VERTICAL, ("0", "15", "0", "0"),
        ("real_estate", "property_management"),
    ),
    "clinic": ("Clinic", PREMIUM_VERTICAL, ("0", "0", "29", "0"), ("clinic", "healthcare", "medical")),
    "reseller": ("Reseller", PREMIUM_VERTICAL, ("0", "0", "49", "0"), ("reseller",)),
    "pg_hostel": ("PG / Hostel", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "coworking": ("Coworking", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "salon": ("Salon", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "gym": ("Gym", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "general_service": ("General Service", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "marketplace": ("Marketplace", FROM_STARTER, ("0", "0", "0", "0"), ("marketplace", "addon_marketplace")),
    "analytics": (
        "Analytics", FROM_STARTER, ("0", "0", "0", "0"),
        ("analytics", "advanced_analytics", "reporting"),
    ),
    "bookings": ("Bookings", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "invoices": ("Invoices", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "customers": ("Customers", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
    "portal": ("Customer Portal", ALL_TIERS_INCLUDED, ("0", "0", "0", "0"), ()),
}


def default_modules() -> Dict[str, ModuleDefinition]:
    modules = {}
    for module_id, (name, access, prices, addon_ids) in _MODULE_ROWS.items():
        tiers = list(Tier)
        modules[module_id] = ModuleDefinition(
            module_id=module_id,
            name=name,
            access={tier: level for tier, level in zip(tiers, access) if level is not L},
            prices_usd={
                tier: Decimal(price)
                for tier, level, price in zip(tiers, access, prices)
                if level is not L
            },
            addon_ids=frozenset(addon_ids),
        )
    return modules


def default_pricing() -> Dict[str, CountryPricingConfig]:
    configs = [
        CountryPricingConfig("IN", "INR", "GST", Decimal("18"), Decimal("83")),
        CountryPricingConfig("GB", "GBP", "VAT", Decimal("20"), Decimal("0.79")),
        CountryPricingConfig("AE", "AED", "VAT", Decimal("5"), Decimal("3.67")),
        CountryPricingConfig("MY", "MYR", "SST", Decimal("6"), Decimal("4.7")),
        CountryPricingConfig("SG", "SGD", "GST", Decimal("9"), Decimal("1.35")),
        CountryPricingConfig("US", "USD", "Sales Tax", NEXUS_DEPENDENT, Decimal("1")),
    ]
    return {c.country_code: c for c in configs}


_ALL_BUSINESS_TYPES = frozenset({
    "furniture_manufacturing", "hrms", "legal", "education", "tourism", "logistics",
    "real_estate", "clinic", "pg_hostel", "coworking", "salon", "gym", "general_service",
})
_ALL_FEATURES = {"multi_currency": True, "ai_insights": True, "white_label": True}


def default_rollout() -> Dict[str, CountryRolloutPolicy]:
    all_modules = frozenset(_MODULE_ROWS)
    policies = [
        CountryRolloutPolicy(
            country_code="IN",
            is_active=True,
            enabled_business_types=_ALL_BUSINESS_TYPES,
            enabled_modules=all_modules,
            enabled_features=dict(_ALL_FEATURES, gst_features=True),
        ),
        CountryRolloutPolicy(
            country_code="GB",
            is_active=True,
            enabled_business_types=_ALL_BUSINESS_TYPES - {"pg_hostel"},
            enabled_modules=all_modules - {"pg_hostel"},
            enabled_features=dict(_ALL_FEATURES),
        ),
        CountryRolloutPolicy(
            country_code="AE",
            is_active=True,
            enabled_business_types=_ALL_BUSINESS_TYPES,
            enabled_modules=all_modules,
            enabled_features=dict(_ALL_FEATURES),
        ),
        CountryRolloutPolicy(
            country_code="MY",
            is_active=True,
            enabled_business_types=_ALL_BUSINESS_TYPES,
            enabled_modules=all_modules,
            enabled_features=dict(_ALL_FEATURES, ai_insights=False),
        ),
        CountryRolloutPolicy(
            country_code="SG",
            is_active=False,
            coming_soon_message="We're launching in Singapore soon",
        ),
        CountryRolloutPolicy(
            country_code="US",
            is_active=False,
            coming_soon_message="Coming soon to the United States",
        ),
    ]
    return {p.country_code: p for p in policies}


def _parse_module(module_id: str, data: Mapping[str, Any]) -> ModuleDefinition:
    return ModuleDefinition(
        module_id=module_id,
        name=data.get("name", module_id),
        access={Tier.parse(t): ModuleAccess(a.upper()) for t, a in (data.get("access") or {}).items()},
        prices_usd={Tier.parse(t): Decimal(str(p)) for t, p in (data.get("prices_usd") or {}).items()},
        addon_ids=frozenset(data.get("addon_ids") or ()),
    )


def _parse_pricing(code: str, data: Mapping[str, Any]) -> CountryPricingConfig:
    rate = data["tax_rate"]
    return CountryPricingConfig(
        country_code=normalize_country_code(code),
        currency=data["currency"],
        tax_name=data["tax_name"],
        tax_rate=NEXUS_DEPENDENT if rate == NEXUS_DEPENDENT else Decimal(str(rate)),
        exchange_rate=Decimal(str(data.get("exchange_rate", "1"))),
    )


def _require_mapping(section: Any, name: str) -> Iterable:
    if not isinstance(section, Mapping):
        raise ConfigurationError("Seed section must be an object", {"section": name})
    return section.items()


def load_seed_file(path: str) -> Dict[str, Dict[str, Any]]:
    """Parse a JSON seed file into store tables.

    Only the sections present in the file are returned; the caller keeps
    defaults for the rest.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except (OSError, ValueError) as e:
        raise ConfigurationError("Cannot read seed file", {"path": path, "error": str(e)})

    tables: Dict[str, Dict[str, Any]] = {}
    try:
        if "modules" in raw:
            tables["modules"] = {
                module_id: _parse_module(module_id, data)
                for module_id, data in _require_mapping(raw["modules"], "modules")
            }
        if "pricing" in raw:
            parsed = [_parse_pricing(code, data) for code, data in _require_mapping(raw["pricing"], "pricing")]
            tables["pricing"] = {c.country_code: c for c in parsed}
        if "rollout" in raw:
            parsed = [
                CountryRolloutPolicy.from_dict(dict(data, country_code=code))
                for code, data in _require_mapping(raw["rollout"], "rollout")
            ]
            tables["rollout"] = {p.country_code: p for p in parsed}
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigurationError("Invalid seed file", {"path": path, "error": str(e)})

    logger.info("Seed file loaded", path=path, sections=sorted(tables))
    return tables


def default_tables(seed_file: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    tables: Dict[str, Dict[str, Any]] = {
        "modules": default_modules(),
        "rollout": default_rollout(),
        "pricing": default_pricing(),
        "addons": {},
    }
    if seed_file:
        tables.update(load_seed_file(seed_file))
    return tables
