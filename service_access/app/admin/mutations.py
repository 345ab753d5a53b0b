"""
Administrative mutations on the configuration store.

Every mutation is guarded, committed against an expected version and
audited synchronously with its previous and new value. If the audit
write fails the change is not published.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from shared.errors import AuditWriteError, StaleWriteError
from shared.logging import get_logger, set_actor_context
from shared.metrics import MetricsCollector

from ..audit.emitter import AuditEmitter
from ..audit.models import AuditAction, AuditRecord
from ..entitlements.models import AddonEntitlement, ModuleDefinition
from ..guards.chain import (
    AccessEnforcer,
    GuardChain,
    RequestContext,
    UpgradeLinks,
    enforce_tenant_scope,
    require_auth,
    require_permission,
    require_super_admin_only,
)
from ..guards.decisions import Decision, DecisionCode, Outcome
from ..rbac.registry import Permission
from ..rbac.scope import Actor, normalize_country_code
from ..rollout.policy import CountryRolloutPolicy
from ..store.snapshot import ADDONS, MODULES, ROLLOUT, ConfigurationStore, VersionedRecord

STALE_WRITE_MESSAGE = "Configuration was modified by another writer; reload and retry"
AUDIT_UNAVAILABLE_MESSAGE = "Audit trail unavailable"


@dataclass(frozen=True)
class MutationResult:
    decision: Decision
    record: Optional[VersionedRecord] = None


def _serialize(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


class AdminService:
    """Guarded, audited writes to rollout, module and add-on configuration."""

    def __init__(
        self,
        store: ConfigurationStore,
        emitter: AuditEmitter,
        links: Optional[UpgradeLinks] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.emitter = emitter
        self.links = links or UpgradeLinks()
        self.metrics = metrics
        self.enforcer = AccessEnforcer(emitter, metrics)
        self.logger = get_logger("access.admin")

        self.super_admin_chain = GuardChain(require_auth, require_super_admin_only, metrics=metrics)
        self.addon_chain = GuardChain(
            require_auth,
            require_permission(Permission.MARKETPLACE_OVERRIDE),
            enforce_tenant_scope,
            metrics=metrics,
        )

    def _context(self, actor: Optional[Actor], action: str, **target) -> RequestContext:
        snapshot = self.store.snapshot
        return RequestContext(
            actor=actor,
            action=action,
            modules=snapshot.modules,
            rollout=snapshot.rollout,
            links=self.links,
            **target,
        )

    async def update_rollout_policy(
        self,
        actor: Optional[Actor],
        policy: CountryRolloutPolicy,
        expected_version: int,
    ) -> MutationResult:
        country_code = normalize_country_code(policy.country_code)
        ctx = self._context(
            actor,
            AuditAction.ROLLOUT_UPDATE,
            target_country=country_code,
            target_type="country",
            target_id=country_code,
        )
        return await self._mutate(
            ctx, self.super_admin_chain, ROLLOUT, country_code, expected_version,
            lambda current: replace(policy, country_code=country_code),
        )

    async def update_module_access(
        self,
        actor: Optional[Actor],
        module: ModuleDefinition,
        expected_version: int,
    ) -> MutationResult:
        ctx = self._context(
            actor,
            AuditAction.MODULE_ACCESS_UPDATE,
            target_type="module",
            target_id=module.module_id,
        )
        return await self._mutate(
            ctx, self.super_admin_chain, MODULES, module.module_id, expected_version,
            lambda current: module,
        )

    async def grant_addon(
        self,
        actor: Optional[Actor],
        tenant_id: str,
        tenant_country: str,
        addon_id: str,
        expected_version: int,
        trial_ends_at: Optional[datetime] = None,
        grace_until: Optional[datetime] = None,
    ) -> MutationResult:
        """Grant an add-on, replacing any earlier grant of the same add-on."""
        country_code = normalize_country_code(tenant_country)
        grant = AddonEntitlement(
            addon_id=addon_id,
            country_code=country_code,
            is_active=True,
            trial_ends_at=trial_ends_at,
            grace_until=grace_until,
        )

        def build(current: Optional[VersionedRecord]):
            existing = tuple(current.value) if current else ()
            return tuple(g for g in existing if g.addon_id != addon_id) + (grant,)

        ctx = self._context(
            actor,
            AuditAction.ADDON_GRANT,
            target_tenant_id=tenant_id,
            target_country=country_code,
            target_type="tenant_addon",
            target_id=f"{tenant_id}:{addon_id}",
        )
        return await self._mutate(ctx, self.addon_chain, ADDONS, tenant_id, expected_version, build)

    async def revoke_addon(
        self,
        actor: Optional[Actor],
        tenant_id: str,
        tenant_country: str,
        addon_id: str,
        expected_version: int,
    ) -> MutationResult:
        """Deactivate an add-on grant. The grant is kept with is_active=False."""
        return await self._update_grant(
            actor, AuditAction.ADDON_REVOKE, tenant_id, tenant_country, addon_id, expected_version,
            lambda grant: replace(grant, is_active=False),
        )

    async def lapse_addon(
        self,
        actor: Optional[Actor],
        tenant_id: str,
        tenant_country: str,
        addon_id: str,
        expected_version: int,
        now: Optional[datetime] = None,
    ) -> MutationResult:
        """Start the grace period of a grant whose subscription stopped paying."""
        now = now or datetime.now(timezone.utc)
        return await self._update_grant(
            actor, AuditAction.ADDON_LAPSE, tenant_id, tenant_country, addon_id, expected_version,
            lambda grant: grant.lapsed(now),
        )

    async def _update_grant(
        self,
        actor: Optional[Actor],
        action: str,
        tenant_id: str,
        tenant_country: str,
        addon_id: str,
        expected_version: int,
        transform: Callable[[AddonEntitlement], AddonEntitlement],
    ) -> MutationResult:
        country_code = normalize_country_code(tenant_country)
        current = self.store.snapshot.get(ADDONS, tenant_id)
        existing = tuple(current.value) if current else ()
        ctx = self._context(
            actor,
            action,
            target_tenant_id=tenant_id,
            target_country=country_code,
            target_type="tenant_addon",
            target_id=f"{tenant_id}:{addon_id}",
        )

        if not any(g.addon_id == addon_id and g.is_active for g in existing):
            decision = await self.enforcer.enforce(self.addon_chain, ctx)
            if not decision.allowed:
                return MutationResult(decision=decision)
            return MutationResult(decision=Decision.not_found("Add-on grant not found"))

        def build(current: Optional[VersionedRecord]):
            grants = tuple(current.value) if current else ()
            return tuple(transform(g) if g.addon_id == addon_id else g for g in grants)

        return await self._mutate(ctx, self.addon_chain, ADDONS, tenant_id, expected_version, build)

    async def _mutate(
        self,
        ctx: RequestContext,
        chain: GuardChain,
        namespace: str,
        key: str,
        expected_version: int,
        build_value: Callable[[Optional[VersionedRecord]], Any],
    ) -> MutationResult:
        if ctx.actor is not None:
            set_actor_context(ctx.actor.user_id, ctx.tenant_id, role=ctx.actor.role)

        decision = await self.enforcer.enforce(chain, ctx)
        if not decision.allowed:
            return MutationResult(decision=decision)

        value = build_value(self.store.snapshot.get(namespace, key))

        async def audit(previous: Optional[VersionedRecord], record: VersionedRecord) -> None:
            written = await self.emitter.record_mutation(AuditRecord(
                actor_id=ctx.actor.user_id,
                actor_role_at_time=ctx.actor.role,
                action=ctx.action,
                target_type=ctx.target_type,
                target_id=ctx.target_id,
                country_code=ctx.country_code,
                previous_value=_serialize(previous.value) if previous else None,
                new_value=_serialize(record.value),
                decision=Outcome.ALLOW.value,
            ))
            if not written:
                raise AuditWriteError(details={"action": ctx.action, "key": key})

        try:
            record = await self.store.commit(
                namespace, key, expected_version, value,
                updated_by=ctx.actor.user_id,
                before_commit=audit,
            )
        except StaleWriteError as e:
            denied = Decision.deny(DecisionCode.STALE_WRITE, STALE_WRITE_MESSAGE)
            self.emitter.record_denial(self.enforcer.audit_record(ctx, denied))
            self._count(denied)
            self.logger.info(
                "Mutation rejected as stale",
                action=ctx.action,
                key=key,
                expected_version=e.expected_version,
                current_version=e.current_version,
            )
            return MutationResult(decision=denied)
        except AuditWriteError:
            denied = Decision.deny(DecisionCode.AUDIT_UNAVAILABLE, AUDIT_UNAVAILABLE_MESSAGE)
            self._count(denied)
            self.logger.error("Mutation aborted, audit unavailable", action=ctx.action, key=key)
            return MutationResult(decision=denied)

        self.logger.info(
            "Configuration mutated",
            action=ctx.action,
            key=key,
            version=record.version,
        )
        return MutationResult(decision=Decision.allow(), record=record)

    def _count(self, decision: Decision) -> None:
        if self.metrics:
            self.metrics.record_decision(decision.outcome.value, decision.code.value if decision.code else None)
