"""
Access service for the Access Control Core.
"""

from typing import Dict, Optional

from fastapi import Query, Request

from shared.base_service import BaseService
from shared.errors import UnknownRoleError
from shared.logging import set_actor_context

from .admin.mutations import AdminService, MutationResult
from .audit.emitter import AuditEmitter, InMemoryAuditStore
from .audit.postgres import PostgresAuditStore
from .cache.redis_cache import EntitlementCache
from .entitlements.matrix import addon_status, check_module_access, find_redundant_addons
from .entitlements.models import ModuleDefinition, Tier
from .entitlements.pricing import price_of
from .guards.chain import (
    AccessEnforcer,
    GuardChain,
    RequestContext,
    UpgradeLinks,
    enforce_tenant_scope,
    require_auth,
    require_module_access,
)
from .guards.decisions import Decision
from .rbac.registry import has_permission, is_super_admin_only, normalize_role
from .rbac.scope import Actor, normalize_country_code, normalize_country_codes
from .rollout.policy import CountryRolloutPolicy
from .schemas import (
    AddonGrantRequest,
    AddonLapseRequest,
    ModuleCheckRequest,
    ModuleCheckResponse,
    ModuleUpdateRequest,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RecordResponse,
    RolloutUpdateRequest,
    ScopeResponse,
    TenantTarget,
)
from .store.defaults import default_tables
from .store.snapshot import ROLLOUT, ConfigurationStore


def actor_from_headers(request: Request) -> Optional[Actor]:
    """Build the actor the identity layer attached as X-Actor-* headers."""
    user_id = request.headers.get("x-actor-id")
    role = request.headers.get("x-actor-role")
    if not user_id or not role:
        return None
    countries = request.headers.get("x-actor-countries") or ""
    return Actor(
        user_id=user_id,
        role=role,
        tenant_id=request.headers.get("x-actor-tenant") or None,
        assigned_country_ids=normalize_country_codes(c for c in countries.split(",") if c.strip()),
    )


class AccessService(BaseService):
    """Access service implementation."""

    def __init__(self):
        super().__init__("access", 8010)

        self.links = UpgradeLinks.from_config(self.config)
        self.store = ConfigurationStore(default_tables(self.config.seed_file), metrics=self.metrics)

        if self.config.audit_backend == "postgres":
            self.audit_store = PostgresAuditStore(self.config.postgres_dsn)
        else:
            self.audit_store = InMemoryAuditStore()
        self.emitter = AuditEmitter(self.audit_store, metrics=self.metrics)
        self.enforcer = AccessEnforcer(self.emitter, metrics=self.metrics)
        self.admin = AdminService(self.store, self.emitter, links=self.links, metrics=self.metrics)

        self.cache: Optional[EntitlementCache] = None
        if self.config.enable_entitlement_cache:
            self.cache = EntitlementCache(self.config.redis_url, self.config.entitlement_cache_ttl_seconds)

        self.tenant_chain = GuardChain(require_auth, enforce_tenant_scope, metrics=self.metrics)

        self._setup_access_routes()

    async def startup(self):
        if isinstance(self.audit_store, PostgresAuditStore):
            await self.audit_store.start()
        if self.cache is not None:
            try:
                await self.cache.start()
            except Exception as e:
                self.logger.warning("Entitlement cache disabled", error=str(e))
                self.cache = None

    async def shutdown(self):
        await self.emitter.drain()
        if isinstance(self.audit_store, PostgresAuditStore):
            await self.audit_store.stop()
        if self.cache is not None:
            await self.cache.stop()

    def _context(self, request: Request, **target) -> RequestContext:
        actor = actor_from_headers(request)
        if actor is not None:
            set_actor_context(actor.user_id, actor.tenant_id, role=actor.role)
        snapshot = self.store.snapshot
        return RequestContext(
            actor=actor,
            modules=snapshot.modules,
            rollout=snapshot.rollout,
            links=self.links,
            **target,
        )

    def module_chain(self, module_id: str) -> GuardChain:
        return GuardChain(
            require_auth,
            enforce_tenant_scope,
            require_module_access(module_id),
            metrics=self.metrics,
        )

    def _tenant_context(self, request: Request, target: TenantTarget) -> RequestContext:
        tenant = self.store.snapshot.tenant(
            target.tenant_id, target.tier, target.country_code, target.business_type
        )
        return self._context(request, target_tenant=tenant)

    async def _enforce(self, chain: GuardChain, ctx: RequestContext) -> Decision:
        decision = await self.enforcer.enforce(chain, ctx)
        if not decision.allowed:
            raise decision.to_exception()
        return decision

    @staticmethod
    def _mutation_response(result: MutationResult) -> RecordResponse:
        if not result.decision.allowed:
            raise result.decision.to_exception()
        record = result.record
        value = record.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif isinstance(value, tuple):
            value = [item.to_dict() for item in value]
        return RecordResponse(
            key=record.key,
            version=record.version,
            value=value,
            updated_by=record.updated_by,
            updated_at=record.updated_at,
        )

    def _setup_access_routes(self):
        """Set up access-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "access",
                "message": "Access Control Core - Access Service",
                "version": "1.0.0",
                "capabilities": ["rbac", "scope", "entitlements", "pricing", "rollout", "audit"]
            }

        @self.app.post("/access/permissions/check", response_model=PermissionCheckResponse)
        async def check_permission(body: PermissionCheckRequest):
            """Look up whether a role holds a permission."""
            try:
                canonical = normalize_role(body.role).value
            except UnknownRoleError:
                canonical = None
            return PermissionCheckResponse(
                role=canonical,
                permission=body.permission,
                allowed=has_permission(body.role, body.permission),
                super_admin_only=is_super_admin_only(body.permission),
            )

        @self.app.post("/access/scope", response_model=ScopeResponse)
        async def resolve_actor_scope(request: Request):
            """Resolve the calling actor's administrative scope."""
            ctx = self._context(request)
            await self._enforce(GuardChain(require_auth, metrics=self.metrics), ctx)
            scope = ctx.scope
            return ScopeResponse(
                kind=scope.kind.value,
                allowed_country_ids=sorted(scope.allowed_country_ids),
                tenant_id=scope.tenant_id,
                is_super_admin=scope.is_super_admin,
            )

        @self.app.post("/access/modules/check", response_model=ModuleCheckResponse)
        async def check_module(body: ModuleCheckRequest, request: Request):
            """Check a tenant's access to a module; denials carry an upgrade path."""
            ctx = self._tenant_context(request, body)
            ctx.target_type = "module"
            ctx.target_id = body.module_id
            ctx.for_write = body.write

            # Resolve once, from the cache when possible, for callers in scope;
            # the module guard then decides on that result.
            cached = None
            result = None
            if self.tenant_chain.evaluate(ctx).allowed:
                tenant = ctx.target_tenant
                if self.cache is not None:
                    cached = await self.cache.get(tenant, body.module_id, for_write=body.write)
                result = cached or check_module_access(
                    tenant, body.module_id, ctx.modules, now=ctx.now, for_write=body.write
                )
                if self.cache is not None and cached is None:
                    await self.cache.set(tenant, body.module_id, result, now=ctx.now, for_write=body.write)
                ctx.module_results[body.module_id] = result

            await self._enforce(self.module_chain(body.module_id), ctx)

            return ModuleCheckResponse(
                allowed=result.allowed,
                access=result.access,
                upgrade_tier=result.upgrade_tier,
                reason=result.reason.value if result.reason else None,
                cached=cached is not None,
            )

        @self.app.post("/access/addons/{addon_id}/status")
        async def get_addon_status(addon_id: str, body: TenantTarget, request: Request):
            """Lifecycle state of one of the tenant's add-ons."""
            ctx = self._tenant_context(request, body)
            await self._enforce(self.tenant_chain, ctx)
            return addon_status(ctx.target_tenant, addon_id, ctx.modules, now=ctx.now).to_dict()

        @self.app.post("/access/addons/redundant")
        async def redundant_addons(body: TenantTarget, request: Request):
            """Active add-ons whose modules the tenant's tier already includes."""
            ctx = self._tenant_context(request, body)
            await self._enforce(self.tenant_chain, ctx)
            grants = find_redundant_addons(ctx.target_tenant, ctx.modules)
            return {"tenant_id": body.tenant_id, "redundant": [g.to_dict() for g in grants]}

        @self.app.get("/pricing/{module_id}")
        async def get_price(
            module_id: str,
            tier: Tier = Query(..., description="Subscription tier"),
            country_code: str = Query(..., description="Country to price in"),
        ):
            """Quote a module price in the country's currency and tax regime."""
            snapshot = self.store.snapshot
            quote = price_of(module_id, tier, country_code, snapshot.modules, snapshot.pricing)
            return quote.to_dict()

        @self.app.get("/rollout/{country_code}")
        async def get_rollout(country_code: str):
            """Current rollout policy for a country. Unknown countries are inactive."""
            code = normalize_country_code(country_code)
            record = self.store.snapshot.get(ROLLOUT, code) if code else None
            if record is None:
                policy = CountryRolloutPolicy(
                    country_code=code or country_code,
                    coming_soon_message=self.links.default_coming_soon_message,
                )
                return dict(policy.to_dict(), version=0)
            return dict(record.value.to_dict(), version=record.version)

        @self.app.put("/admin/rollout/{country_code}", response_model=RecordResponse)
        async def update_rollout(country_code: str, body: RolloutUpdateRequest, request: Request):
            """Replace a country's rollout policy."""
            policy = CountryRolloutPolicy(
                country_code=normalize_country_code(country_code),
                is_active=body.is_active,
                enabled_business_types=frozenset(body.enabled_business_types),
                enabled_modules=frozenset(body.enabled_modules),
                enabled_features=dict(body.enabled_features),
                coming_soon_message=body.coming_soon_message,
            )
            result = await self.admin.update_rollout_policy(
                actor_from_headers(request), policy, body.expected_version
            )
            return self._mutation_response(result)

        @self.app.put("/admin/modules/{module_id}", response_model=RecordResponse)
        async def update_module(module_id: str, body: ModuleUpdateRequest, request: Request):
            """Replace a module's tier access and prices."""
            module = ModuleDefinition(
                module_id=module_id,
                name=body.name,
                access=dict(body.access),
                prices_usd=dict(body.prices_usd),
                addon_ids=frozenset(body.addon_ids),
            )
            result = await self.admin.update_module_access(
                actor_from_headers(request), module, body.expected_version
            )
            return self._mutation_response(result)

        @self.app.post("/admin/tenants/{tenant_id}/addons", response_model=RecordResponse)
        async def grant_addon(tenant_id: str, body: AddonGrantRequest, request: Request):
            """Grant an add-on to a tenant."""
            result = await self.admin.grant_addon(
                actor_from_headers(request),
                tenant_id,
                body.tenant_country,
                body.addon_id,
                body.expected_version,
                trial_ends_at=body.trial_ends_at,
                grace_until=body.grace_until,
            )
            return self._mutation_response(result)

        @self.app.delete("/admin/tenants/{tenant_id}/addons/{addon_id}", response_model=RecordResponse)
        async def revoke_addon(
            tenant_id: str,
            addon_id: str,
            request: Request,
            tenant_country: str = Query(..., description="Tenant country"),
            expected_version: int = Query(..., ge=0, description="Add-on state version"),
        ):
            """Revoke a tenant's add-on grant."""
            result = await self.admin.revoke_addon(
                actor_from_headers(request), tenant_id, tenant_country, addon_id, expected_version
            )
            return self._mutation_response(result)

        @self.app.post("/admin/tenants/{tenant_id}/addons/{addon_id}/lapse", response_model=RecordResponse)
        async def lapse_addon(tenant_id: str, addon_id: str, body: AddonLapseRequest, request: Request):
            """Move a tenant's add-on into its grace period after a missed payment."""
            result = await self.admin.lapse_addon(
                actor_from_headers(request), tenant_id, body.tenant_country, addon_id, body.expected_version
            )
            return self._mutation_response(result)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check access service dependencies."""
        dependencies = {"audit": await self.audit_store.check()}
        dependencies["cache"] = await self.cache.check() if self.cache is not None else "disabled"
        return dependencies


def create_app():
    """Create access service application."""
    service = AccessService()
    return service.app


if __name__ == "__main__":
    service = AccessService()
    service.run()
