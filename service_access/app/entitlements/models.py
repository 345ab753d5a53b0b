"""
Entitlement data models.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from ..rbac.scope import normalize_country_code


class Tier(str, Enum):
    """Subscription tiers, declared in ascending order."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    @classmethod
    def parse(cls, raw: Union["Tier", str]) -> "Tier":
        if isinstance(raw, cls):
            return raw
        return cls(str(raw).strip().lower())


TIER_ORDER: Tuple[Tier, ...] = tuple(Tier)


class ModuleAccess(str, Enum):
    """Base access a tier gives to a module."""
    INCLUDED = "INCLUDED"
    ADDON = "ADDON"
    LOCKED = "LOCKED"


class AccessReason(str, Enum):
    """Why check_module_access reached its result."""
    INCLUDED = "included"
    ADDON_GRANTED = "addon_granted"
    ADDON_TRIAL = "addon_trial"
    ADDON_GRACE_PERIOD = "addon_grace_period"
    ADDON_REQUIRED = "addon_required"
    ADDON_TRIAL_EXPIRED = "addon_trial_expired"
    ADDON_EXPIRED = "addon_expired"
    ADDON_CANCELLED = "addon_cancelled"
    ADDON_DEPENDENCY_MISSING = "addon_dependency_missing"
    ADDON_DEPENDENCY_EXPIRED = "addon_dependency_expired"
    UPGRADE_REQUIRED = "upgrade_required"
    NOT_OFFERED = "not_offered"


class GrantState(str, Enum):
    """Lifecycle state of an add-on grant at a point in time."""
    ACTIVE = "active"
    TRIAL = "trial"
    GRACE = "grace"
    TRIAL_EXPIRED = "trial_expired"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Days a lapsed paid add-on keeps working before it expires
GRACE_PERIOD_DAYS = 3

# States in which a grant unlocks its modules; GRACE only for reads
USABLE_GRANT_STATES = frozenset({GrantState.ACTIVE, GrantState.TRIAL, GrantState.GRACE})


@dataclass(frozen=True)
class TierDefinition:
    """Feature flags and limits of a tier. None limits are unlimited."""
    tier: Tier
    multi_currency: bool
    ai_insights: bool
    white_label: bool
    max_users: Optional[int]
    max_customers: Optional[int]
    api_rate_limit: Optional[int]

    def features(self) -> Dict[str, bool]:
        return {
            "multi_currency": self.multi_currency,
            "ai_insights": self.ai_insights,
            "white_label": self.white_label,
        }


@dataclass(frozen=True)
class ModuleDefinition:
    """A vertical module with per-tier access and USD list prices.

    Tiers missing from ``access`` are LOCKED. ``addon_ids`` are the
    add-on codes whose grant unlocks this module.
    """
    module_id: str
    name: str
    access: Mapping[Tier, ModuleAccess] = field(default_factory=dict)
    prices_usd: Mapping[Tier, Decimal] = field(default_factory=dict)
    addon_ids: FrozenSet[str] = field(default_factory=frozenset)

    def access_for(self, tier: Tier) -> ModuleAccess:
        return self.access.get(tier, ModuleAccess.LOCKED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "name": self.name,
            "access": {t.value: a.value for t, a in self.access.items()},
            "prices_usd": {t.value: str(p) for t, p in self.prices_usd.items()},
            "addon_ids": sorted(self.addon_ids),
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class AddonEntitlement:
    """An add-on grant held by a tenant.

    ``trial_ends_at`` bounds a trial. ``grace_until`` marks a lapsed
    subscription that keeps read access until that instant.
    """
    addon_id: str
    country_code: str
    is_active: bool = True
    trial_ends_at: Optional[datetime] = None
    grace_until: Optional[datetime] = None

    def state_at(self, now: datetime) -> GrantState:
        if not self.is_active:
            return GrantState.CANCELLED
        now = _as_utc(now)
        if self.trial_ends_at is not None and now < _as_utc(self.trial_ends_at):
            return GrantState.TRIAL
        if self.grace_until is not None:
            return GrantState.GRACE if now < _as_utc(self.grace_until) else GrantState.EXPIRED
        if self.trial_ends_at is not None:
            return GrantState.TRIAL_EXPIRED
        return GrantState.ACTIVE

    def applies_to(self, country_code: Optional[str]) -> bool:
        return normalize_country_code(self.country_code) == normalize_country_code(country_code)

    def valid_until(self) -> Optional[datetime]:
        """Latest instant this grant may still be usable, or None if open ended."""
        if self.grace_until is not None:
            return _as_utc(self.grace_until)
        if self.trial_ends_at is not None:
            return _as_utc(self.trial_ends_at)
        return None

    def lapsed(self, now: datetime) -> "AddonEntitlement":
        """Copy that stays readable for GRACE_PERIOD_DAYS after ``now``."""
        return replace(self, trial_ends_at=None, grace_until=_as_utc(now) + timedelta(days=GRACE_PERIOD_DAYS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addon_id": self.addon_id,
            "country_code": self.country_code,
            "is_active": self.is_active,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "grace_until": self.grace_until.isoformat() if self.grace_until else None,
        }


@dataclass(frozen=True)
class Tenant:
    """Tenant view handed in by the caller; tier is never cached here."""
    tenant_id: str
    tier: Tier
    country_code: str
    business_type: Optional[str] = None
    addon_entitlements: Tuple[AddonEntitlement, ...] = ()
    addon_state_version: int = 0


@dataclass(frozen=True)
class ModuleAccessResult:
    """Outcome of a module access check."""
    allowed: bool
    access: ModuleAccess
    upgrade_tier: Optional[Tier] = None
    reason: Optional[AccessReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "access": self.access.value,
            "upgrade_tier": self.upgrade_tier.value if self.upgrade_tier else None,
            "reason": self.reason.value if self.reason else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModuleAccessResult":
        upgrade_tier = data.get("upgrade_tier")
        reason = data.get("reason")
        return cls(
            allowed=bool(data["allowed"]),
            access=ModuleAccess(data["access"]),
            upgrade_tier=Tier(upgrade_tier) if upgrade_tier else None,
            reason=AccessReason(reason) if reason else None,
        )


@dataclass(frozen=True)
class AddonStatus:
    """Lifecycle of one add-on for a tenant."""
    addon_id: str
    entitled: bool
    state: Optional[GrantState]
    reason: AccessReason
    valid_until: Optional[datetime] = None
    days_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addon_id": self.addon_id,
            "entitled": self.entitled,
            "state": self.state.value if self.state else None,
            "reason": self.reason.value,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "days_remaining": self.days_remaining,
        }


# Marker for countries whose sales tax depends on the buyer's nexus
NEXUS_DEPENDENT = "NEXUS_DEPENDENT"


@dataclass(frozen=True)
class CountryPricingConfig:
    """Currency and tax regime of a country.

    ``tax_rate`` is a percentage, or NEXUS_DEPENDENT when tax is computed
    by an external calculator. ``exchange_rate`` converts USD for display.
    """
    country_code: str
    currency: str
    tax_name: str
    tax_rate: Union[Decimal, str]
    exchange_rate: Decimal = Decimal("1")

    @property
    def is_nexus_dependent(self) -> bool:
        return self.tax_rate == NEXUS_DEPENDENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country_code": self.country_code,
            "currency": self.currency,
            "tax_name": self.tax_name,
            "tax_rate": str(self.tax_rate),
            "exchange_rate": str(self.exchange_rate),
        }


@dataclass(frozen=True)
class PriceQuote:
    """Display price of a module for a tier in a country's currency."""
    module_id: str
    tier: Tier
    country_code: str
    base_usd: Decimal
    currency: str
    exchange_rate: Decimal
    amount: Decimal
    tax_name: str
    tax_rate: Optional[Decimal]
    tax_amount: Optional[Decimal]
    total: Optional[Decimal]
    tax_computed_externally: bool = False

    def to_dict(self) -> Dict[str, Any]:
        def fmt(value: Optional[Decimal]) -> Optional[str]:
            return None if value is None else str(value)

        return {
            "module_id": self.module_id,
            "tier": self.tier.value,
            "country_code": self.country_code,
            "base_usd": fmt(self.base_usd),
            "currency": self.currency,
            "exchange_rate": fmt(self.exchange_rate),
            "amount": fmt(self.amount),
            "tax_name": self.tax_name,
            "tax_rate": fmt(self.tax_rate),
            "tax_amount": fmt(self.tax_amount),
            "total": fmt(self.total),
            "tax_computed_externally": self.tax_computed_externally,
        }
