"""
Entitlement matrix evaluation.

Module access is the union of what the tenant's tier includes and the
add-ons the tenant holds. Tier is always passed in by the caller.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Tuple, Union

from shared.logging import get_logger

from .models import (
    AccessReason,
    AddonEntitlement,
    AddonStatus,
    GrantState,
    ModuleAccess,
    ModuleAccessResult,
    ModuleDefinition,
    Tenant,
    Tier,
    TierDefinition,
    TIER_ORDER,
    USABLE_GRANT_STATES,
)

logger = get_logger("access.entitlements")

ModuleMatrix = Mapping[str, ModuleDefinition]


TIER_DEFINITIONS: Dict[Tier, TierDefinition] = {
    Tier.FREE: TierDefinition(
        tier=Tier.FREE,
        multi_currency=False,
        ai_insights=False,
        white_label=False,
        max_users=1,
        max_customers=25,
        api_rate_limit=100,
    ),
    Tier.STARTER: TierDefinition(
        tier=Tier.STARTER,
        multi_currency=False,
        ai_insights=False,
        white_label=False,
        max_users=5,
        max_customers=100,
        api_rate_limit=1000,
    ),
    Tier.PRO: TierDefinition(
        tier=Tier.PRO,
        multi_currency=True,
        ai_insights=False,
        white_label=False,
        max_users=25,
        max_customers=500,
        api_rate_limit=10000,
    ),
    Tier.ENTERPRISE: TierDefinition(
        tier=Tier.ENTERPRISE,
        multi_currency=True,
        ai_insights=True,
        white_label=True,
        max_users=None,
        max_customers=None,
        api_rate_limit=None,
    ),
}


def tier_features(tier: Union[Tier, str]) -> Dict[str, bool]:
    return TIER_DEFINITIONS[Tier.parse(tier)].features()


def has_tier_feature(tier: Union[Tier, str], feature_key: str) -> bool:
    """Unknown feature keys are treated as not granted."""
    return tier_features(tier).get(feature_key, False)


def lowest_tier_with_feature(feature_key: str) -> Optional[Tier]:
    for tier in TIER_ORDER:
        if has_tier_feature(tier, feature_key):
            return tier
    return None


def included_modules(tier: Union[Tier, str], matrix: ModuleMatrix) -> List[str]:
    """Module ids a tier includes without any add-on."""
    tier = Tier.parse(tier)
    return sorted(
        module_id for module_id, module in matrix.items()
        if module.access_for(tier) is ModuleAccess.INCLUDED
    )


def lowest_including_tier(module_id: str, matrix: ModuleMatrix) -> Optional[Tier]:
    """Lowest tier for which the module is INCLUDED, scanning upward."""
    module = matrix.get(module_id)
    if module is None:
        return None
    for tier in TIER_ORDER:
        if module.access_for(tier) is ModuleAccess.INCLUDED:
            return tier
    return None


# Add-ons that only work alongside other add-ons
ADDON_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "payroll": ("hrms",),
    "payroll_india": ("hrms",),
    "payroll_malaysia": ("hrms",),
    "payroll_uk": ("hrms",),
}

_STATE_REASONS = {
    GrantState.ACTIVE: AccessReason.ADDON_GRANTED,
    GrantState.TRIAL: AccessReason.ADDON_TRIAL,
    GrantState.GRACE: AccessReason.ADDON_GRACE_PERIOD,
    GrantState.TRIAL_EXPIRED: AccessReason.ADDON_TRIAL_EXPIRED,
    GrantState.EXPIRED: AccessReason.ADDON_EXPIRED,
    GrantState.CANCELLED: AccessReason.ADDON_CANCELLED,
}


def _dependency_state(
    tenant: Tenant,
    addon_id: str,
    matrix: ModuleMatrix,
    now: datetime,
) -> Optional[GrantState]:
    """Best state of a required add-on; the tier including its module counts as ACTIVE."""
    tier = Tier.parse(tenant.tier)
    if any(addon_id in m.addon_ids and m.access_for(tier) is ModuleAccess.INCLUDED for m in matrix.values()):
        return GrantState.ACTIVE

    states = {
        grant.state_at(now)
        for grant in tenant.addon_entitlements
        if grant.addon_id == addon_id and grant.applies_to(tenant.country_code)
    }
    for state in (GrantState.ACTIVE, GrantState.TRIAL, GrantState.GRACE):
        if state in states:
            return state
    return None


def _grant_outcome(
    tenant: Tenant,
    grant: AddonEntitlement,
    matrix: ModuleMatrix,
    now: datetime,
    for_write: bool,
) -> Tuple[bool, Optional[AccessReason]]:
    """Whether one grant unlocks access, and why not when it does not.

    Cancelled grants give no reason, so revoking restores the pre-grant result.
    """
    state = grant.state_at(now)
    if state is GrantState.CANCELLED:
        return False, None
    if state not in USABLE_GRANT_STATES:
        return False, _STATE_REASONS[state]
    if state is GrantState.GRACE and for_write:
        return False, AccessReason.ADDON_GRACE_PERIOD

    for required in ADDON_DEPENDENCIES.get(grant.addon_id, ()):
        required_state = _dependency_state(tenant, required, matrix, now)
        if required_state is None:
            return False, AccessReason.ADDON_DEPENDENCY_MISSING
        if required_state is GrantState.GRACE and for_write:
            return False, AccessReason.ADDON_DEPENDENCY_EXPIRED

    return True, _STATE_REASONS[state]


def _evaluate_grants(
    tenant: Tenant,
    module: ModuleDefinition,
    matrix: ModuleMatrix,
    now: datetime,
    for_write: bool,
) -> Tuple[Optional[AddonEntitlement], Optional[AccessReason]]:
    """First grant that unlocks the module with its reason, else the first denial reason."""
    denial = None
    for grant in tenant.addon_entitlements:
        if grant.addon_id not in module.addon_ids or not grant.applies_to(tenant.country_code):
            continue
        allowed, reason = _grant_outcome(tenant, grant, matrix, now, for_write)
        if allowed:
            return grant, reason
        denial = denial or reason
    return None, denial


def check_module_access(
    tenant: Tenant,
    module_id: str,
    matrix: ModuleMatrix,
    now: Optional[datetime] = None,
    for_write: bool = False,
) -> ModuleAccessResult:
    """Decide whether a tenant may use a module at its current tier.

    ``for_write`` withholds grants that are in their grace period, or
    whose required add-on is, so lapsed add-ons stay readable only.
    """
    now = now or datetime.now(timezone.utc)
    tier = Tier.parse(tenant.tier)

    module = matrix.get(module_id)
    if module is None:
        return ModuleAccessResult(
            allowed=False,
            access=ModuleAccess.LOCKED,
            upgrade_tier=None,
            reason=AccessReason.NOT_OFFERED,
        )

    base = module.access_for(tier)

    if base is ModuleAccess.INCLUDED:
        return ModuleAccessResult(allowed=True, access=ModuleAccess.INCLUDED, reason=AccessReason.INCLUDED)

    grant, grant_reason = _evaluate_grants(tenant, module, matrix, now, for_write)
    if grant is not None:
        return ModuleAccessResult(allowed=True, access=ModuleAccess.ADDON, reason=grant_reason)

    if base is ModuleAccess.ADDON:
        return ModuleAccessResult(
            allowed=False,
            access=ModuleAccess.ADDON,
            upgrade_tier=None,
            reason=grant_reason or AccessReason.ADDON_REQUIRED,
        )

    upgrade_tier = lowest_including_tier(module_id, matrix)
    if grant_reason is None:
        grant_reason = AccessReason.UPGRADE_REQUIRED if upgrade_tier else AccessReason.NOT_OFFERED
    return ModuleAccessResult(
        allowed=False,
        access=ModuleAccess.LOCKED,
        upgrade_tier=upgrade_tier,
        reason=grant_reason,
    )


def addon_status(
    tenant: Tenant,
    addon_id: str,
    matrix: ModuleMatrix,
    now: Optional[datetime] = None,
) -> AddonStatus:
    """Lifecycle view of one add-on for a tenant, including cancelled grants."""
    now = now or datetime.now(timezone.utc)
    grants = [
        g for g in tenant.addon_entitlements
        if g.addon_id == addon_id and g.applies_to(tenant.country_code)
    ]
    if not grants:
        return AddonStatus(addon_id=addon_id, entitled=False, state=None, reason=AccessReason.ADDON_REQUIRED)

    grant = grants[-1]
    state = grant.state_at(now)
    entitled, reason = _grant_outcome(tenant, grant, matrix, now, for_write=False)
    valid_until = grant.valid_until()
    days_remaining = None
    if valid_until is not None:
        days_remaining = max(0, math.ceil((valid_until - now).total_seconds() / 86400))
    return AddonStatus(
        addon_id=addon_id,
        entitled=entitled,
        state=state,
        reason=reason or _STATE_REASONS[state],
        valid_until=valid_until,
        days_remaining=days_remaining,
    )


def find_redundant_addons(tenant: Tenant, matrix: ModuleMatrix) -> List[AddonEntitlement]:
    """Active grants that only unlock modules the current tier already includes.

    Such grants are kept (entitlement is a union); this surfaces them so
    billing can decide whether to cancel.
    """
    tier = Tier.parse(tenant.tier)
    redundant = []
    for grant in tenant.addon_entitlements:
        if not grant.is_active:
            continue
        unlocked = [m for m in matrix.values() if grant.addon_id in m.addon_ids]
        if unlocked and all(m.access_for(tier) is ModuleAccess.INCLUDED for m in unlocked):
            redundant.append(grant)

    if redundant:
        logger.info(
            "Redundant add-ons found",
            tenant_id=tenant.tenant_id,
            tier=tier.value,
            addon_ids=[g.addon_id for g in redundant],
        )
    return redundant
