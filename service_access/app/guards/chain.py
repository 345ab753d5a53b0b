"""
Composable guards and the enforcement chain.

Each guard is a plain function of the request context returning a
Decision. A chain runs its guards in order and stops at the first
denial. A guard that raises denies the request.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

from shared.errors import UnknownRoleError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..audit.emitter import AuditEmitter
from ..audit.models import AuditAction, AuditRecord
from ..entitlements.matrix import ModuleMatrix, check_module_access, has_tier_feature, lowest_tier_with_feature
from ..entitlements.models import AccessReason, ModuleAccess, ModuleAccessResult, Tenant, Tier
from ..rbac.registry import Permission, has_permission
from ..rbac.scope import Actor, ScopeContext, normalize_country_code, resolve_scope
from ..rollout.policy import (
    DEFAULT_COMING_SOON_MESSAGE,
    RolloutTable,
    coming_soon_message,
    is_business_type_enabled,
    is_country_active,
    is_feature_enabled,
    is_module_enabled_in_country,
)
from .decisions import Decision, DecisionCode

logger = get_logger("access.guards")

AUTH_REQUIRED_MESSAGE = "Authentication required"
INSUFFICIENT_PERMISSIONS_MESSAGE = "Insufficient permissions"
SUPER_ADMIN_REQUIRED_MESSAGE = "Super admin access required"
FAIL_CLOSED_MESSAGE = "Access denied"


@dataclass(frozen=True)
class UpgradeLinks:
    """URL templates used in payment-required denials."""
    upgrade_url_template: str = "/billing/upgrade?tier={tier}&module={module_id}"
    addon_url_template: str = "/billing/addons/{module_id}"
    feature_upgrade_url_template: str = "/billing/upgrade?tier={tier}&feature={feature}"
    default_coming_soon_message: str = DEFAULT_COMING_SOON_MESSAGE

    @classmethod
    def from_config(cls, config) -> "UpgradeLinks":
        return cls(
            upgrade_url_template=config.upgrade_url_template,
            addon_url_template=config.addon_url_template,
            feature_upgrade_url_template=config.feature_upgrade_url_template,
            default_coming_soon_message=config.default_coming_soon_message,
        )

    def upgrade_url(self, tier: Tier, module_id: str) -> str:
        return self.upgrade_url_template.format(tier=tier.value, module_id=module_id)

    def addon_url(self, module_id: str) -> str:
        return self.addon_url_template.format(module_id=module_id)

    def feature_upgrade_url(self, tier: Tier, feature: str) -> str:
        return self.feature_upgrade_url_template.format(tier=tier.value, feature=feature)


_UNRESOLVED = object()


@dataclass
class RequestContext:
    """Everything the guards may look at for one request.

    The actor's scope is resolved once, on first use.
    """
    actor: Optional[Actor]
    action: str = AuditAction.ACCESS_CHECK
    target_tenant: Optional[Tenant] = None
    target_tenant_id: Optional[str] = None
    target_country: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    modules: ModuleMatrix = field(default_factory=dict)
    rollout: RolloutTable = field(default_factory=dict)
    links: UpgradeLinks = field(default_factory=UpgradeLinks)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    for_write: bool = False
    # Module results already resolved for this request, e.g. from the cache
    module_results: Dict[str, ModuleAccessResult] = field(default_factory=dict)
    _scope: object = field(default=_UNRESOLVED, init=False, repr=False)

    @property
    def scope(self) -> Optional[ScopeContext]:
        """Resolved scope, or None for no actor, unknown role or no applicable scope."""
        if self._scope is _UNRESOLVED:
            try:
                self._scope = resolve_scope(self.actor)
            except UnknownRoleError:
                logger.info("Unknown role on request", role=self.actor.role if self.actor else None)
                self._scope = None
        return self._scope

    @property
    def tenant_id(self) -> Optional[str]:
        if self.target_tenant is not None:
            return self.target_tenant.tenant_id
        return self.target_tenant_id

    @property
    def country_code(self) -> Optional[str]:
        if self.target_tenant is not None:
            return normalize_country_code(self.target_tenant.country_code)
        return normalize_country_code(self.target_country)


Guard = Callable[[RequestContext], Decision]


def _named(guard: Guard, name: str) -> Guard:
    guard.__name__ = name
    guard.__qualname__ = name
    return guard


def require_auth(ctx: RequestContext) -> Decision:
    if ctx.actor is None or ctx.scope is None:
        return Decision.deny(DecisionCode.UNAUTHORIZED, AUTH_REQUIRED_MESSAGE)
    return Decision.allow()


def require_permission(permission: Union[Permission, str]) -> Guard:
    def guard(ctx: RequestContext) -> Decision:
        if ctx.actor is None:
            return Decision.deny(DecisionCode.UNAUTHORIZED, AUTH_REQUIRED_MESSAGE)
        if not has_permission(ctx.actor.role, permission):
            return Decision.deny(DecisionCode.FORBIDDEN, INSUFFICIENT_PERMISSIONS_MESSAGE)
        return Decision.allow()

    return _named(guard, f"require_permission({_value(permission)})")


def require_any_permission(*permissions: Union[Permission, str]) -> Guard:
    def guard(ctx: RequestContext) -> Decision:
        if ctx.actor is None:
            return Decision.deny(DecisionCode.UNAUTHORIZED, AUTH_REQUIRED_MESSAGE)
        if not any(has_permission(ctx.actor.role, p) for p in permissions):
            return Decision.deny(DecisionCode.FORBIDDEN, INSUFFICIENT_PERMISSIONS_MESSAGE)
        return Decision.allow()

    names = ",".join(_value(p) for p in permissions)
    return _named(guard, f"require_any_permission({names})")


def require_super_admin_only(ctx: RequestContext) -> Decision:
    """Only the super admin passes, whatever permissions others hold."""
    scope = ctx.scope
    if scope is None or not scope.is_super_admin:
        return Decision.deny(DecisionCode.SUPER_ADMIN_REQUIRED, SUPER_ADMIN_REQUIRED_MESSAGE)
    return Decision.allow()


def enforce_tenant_scope(ctx: RequestContext) -> Decision:
    """Hide targets outside the actor's scope as if they did not exist."""
    scope = ctx.scope
    if scope is None:
        return Decision.not_found()
    if ctx.tenant_id is None and ctx.country_code is None:
        return Decision.not_found()
    if not scope.can_access_tenant(ctx.tenant_id, ctx.country_code):
        logger.info(
            "Target outside actor scope",
            scope_kind=scope.kind.value,
            target_tenant_id=ctx.tenant_id,
            target_country=ctx.country_code,
        )
        return Decision.not_found()
    return Decision.allow()


def _country_disabled(ctx: RequestContext) -> Decision:
    message = coming_soon_message(
        ctx.rollout,
        ctx.country_code,
        default=ctx.links.default_coming_soon_message,
    )
    return Decision.deny(DecisionCode.COUNTRY_DISABLED, message)


def require_business_type(business_type: str) -> Guard:
    def guard(ctx: RequestContext) -> Decision:
        tenant = ctx.target_tenant
        if tenant is None:
            return Decision.not_found()
        if not is_business_type_enabled(ctx.rollout, tenant.country_code, business_type):
            return _country_disabled(ctx)
        if tenant.business_type != business_type:
            return Decision.deny(DecisionCode.FORBIDDEN, "Not available for this business type")
        return Decision.allow()

    return _named(guard, f"require_business_type({business_type})")


def require_feature(feature_key: str) -> Guard:
    def guard(ctx: RequestContext) -> Decision:
        tenant = ctx.target_tenant
        if tenant is None:
            return Decision.not_found()
        if not is_feature_enabled(ctx.rollout, tenant.country_code, feature_key):
            return _country_disabled(ctx)
        if has_tier_feature(tenant.tier, feature_key):
            return Decision.allow()

        lowest = lowest_tier_with_feature(feature_key)
        if lowest is None:
            return Decision.deny(DecisionCode.FORBIDDEN, "Feature not offered")
        return Decision.deny(
            DecisionCode.PAYMENT_REQUIRED,
            f"Upgrade to {lowest.value} to use this feature",
            upgrade_url=ctx.links.feature_upgrade_url(lowest, feature_key),
        )

    return _named(guard, f"require_feature({feature_key})")


# Denials a renewal or a further add-on purchase can lift
ADDON_DENIAL_MESSAGES = {
    AccessReason.ADDON_REQUIRED: "This module requires an add-on",
    AccessReason.ADDON_TRIAL_EXPIRED: "Add-on trial has ended",
    AccessReason.ADDON_EXPIRED: "Add-on subscription has expired",
    AccessReason.ADDON_GRACE_PERIOD: "Add-on is in its grace period; renew it to make changes",
    AccessReason.ADDON_DEPENDENCY_MISSING: "This add-on requires another add-on",
    AccessReason.ADDON_DEPENDENCY_EXPIRED: "A required add-on is in its grace period; renew it to make changes",
}


def require_module_access(module_id: str) -> Guard:
    """Module must be enabled in the tenant's country and entitled to the tenant.

    A result already in ``ctx.module_results`` is used as is; otherwise
    the matrix is evaluated.
    """
    def guard(ctx: RequestContext) -> Decision:
        tenant = ctx.target_tenant
        if tenant is None:
            return Decision.not_found()
        if not (is_country_active(ctx.rollout, tenant.country_code)
                and is_module_enabled_in_country(ctx.rollout, tenant.country_code, module_id)):
            return _country_disabled(ctx)

        result = ctx.module_results.get(module_id)
        if result is None:
            result = check_module_access(tenant, module_id, ctx.modules, now=ctx.now, for_write=ctx.for_write)
            ctx.module_results[module_id] = result
        if result.allowed:
            return Decision.allow()
        if result.access is ModuleAccess.ADDON or result.reason in ADDON_DENIAL_MESSAGES:
            return Decision.deny(
                DecisionCode.PAYMENT_REQUIRED,
                ADDON_DENIAL_MESSAGES.get(result.reason, ADDON_DENIAL_MESSAGES[AccessReason.ADDON_REQUIRED]),
                upgrade_url=ctx.links.addon_url(module_id),
            )
        if result.upgrade_tier is not None:
            return Decision.deny(
                DecisionCode.PAYMENT_REQUIRED,
                f"Upgrade to {result.upgrade_tier.value} to use this module",
                upgrade_url=ctx.links.upgrade_url(result.upgrade_tier, module_id),
            )
        return Decision.deny(DecisionCode.FORBIDDEN, "Module not offered")

    return _named(guard, f"require_module_access({module_id})")


def _value(item) -> str:
    return getattr(item, "value", str(item))


class GuardChain:
    """Ordered guards evaluated with short-circuit on the first denial."""

    def __init__(self, *guards: Guard, metrics: Optional[MetricsCollector] = None):
        self.guards: Sequence[Guard] = guards
        self.metrics = metrics

    def evaluate(self, ctx: RequestContext) -> Decision:
        for guard in self.guards:
            name = getattr(guard, "__name__", repr(guard))
            try:
                decision = guard(ctx)
            except Exception as e:
                logger.error("Guard failed, denying", guard=name, error=str(e), exc_info=True)
                if self.metrics:
                    self.metrics.record_guard_error(name)
                return Decision.deny(DecisionCode.FORBIDDEN, FAIL_CLOSED_MESSAGE)

            if not isinstance(decision, Decision):
                logger.error("Guard returned no decision, denying", guard=name)
                return Decision.deny(DecisionCode.FORBIDDEN, FAIL_CLOSED_MESSAGE)

            if not decision.allowed:
                logger.debug("Guard denied", guard=name, code=decision.code.value)
                return decision

        return Decision.allow()


class AccessEnforcer:
    """Evaluates a chain and writes the audit trail for the outcome."""

    def __init__(self, emitter: AuditEmitter, metrics: Optional[MetricsCollector] = None):
        self.emitter = emitter
        self.metrics = metrics

    async def enforce(self, chain: GuardChain, ctx: RequestContext) -> Decision:
        decision = chain.evaluate(ctx)

        if not decision.allowed:
            logger.info(
                "Access denied",
                action=ctx.action,
                code=decision.code.value,
                target_tenant_id=ctx.tenant_id,
            )
            self.emitter.record_denial(self.audit_record(ctx, decision))
        else:
            logger.debug("Access allowed", action=ctx.action, target_tenant_id=ctx.tenant_id)

        if self.metrics:
            self.metrics.record_decision(decision.outcome.value, decision.code.value if decision.code else None)
        return decision

    @staticmethod
    def audit_record(ctx: RequestContext, decision: Decision) -> AuditRecord:
        return AuditRecord(
            actor_id=ctx.actor.user_id if ctx.actor else None,
            actor_role_at_time=ctx.actor.role if ctx.actor else None,
            action=ctx.action,
            target_type=ctx.target_type or ("tenant" if ctx.tenant_id else None),
            target_id=ctx.target_id or ctx.tenant_id,
            country_code=ctx.country_code,
            decision=decision.outcome.value,
            code=decision.code.value if decision.code else None,
        )
