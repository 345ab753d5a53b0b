"""
Access Service package for the Access Control Core.

Decides whether an actor may perform an action on a tenant resource by
composing four independent axes: role permissions, administrative scope,
subscription tier with add-on entitlements, and per-country rollout.

- app.main: HTTP surface for checks, pricing, rollout and admin mutations.
- app.rbac: Permission registry and scope resolution.
- app.entitlements: Module x tier matrix, add-on grants and pricing.
- app.rollout: Per-country rollout policy.
- app.guards: Composable guards, decisions and the enforcement chain.
- app.audit: Append-only audit trail.
- app.store: Versioned configuration snapshots.
- app.admin: Guarded, audited configuration mutations.
- app.cache: Redis-backed entitlement decision cache.

Guidelines:
- Decision functions are pure; tier and country are always parameters.
- Anything unexpected denies rather than allows.
"""
