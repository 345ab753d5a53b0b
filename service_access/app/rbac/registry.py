"""
Permission registry for the Access Control Core.

Static catalog of roles, permissions and legacy role aliases. Every role
lists its permissions explicitly; nothing is inherited from another role.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Union

from shared.errors import ConfigurationError, UnknownRoleError


class ScopeKind(str, Enum):
    """Administrative breadth a role operates within."""
    GLOBAL = "GLOBAL"
    COUNTRY = "COUNTRY"
    TENANT = "TENANT"


class Role(str, Enum):
    """Canonical roles."""
    PLATFORM_SUPER_ADMIN = "PLATFORM_SUPER_ADMIN"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    TECH_SUPPORT_MANAGER = "TECH_SUPPORT_MANAGER"
    MANAGER = "MANAGER"
    SUPPORT_TEAM = "SUPPORT_TEAM"
    TENANT_ADMIN = "TENANT_ADMIN"
    TENANT_STAFF = "TENANT_STAFF"
    TENANT_VIEWER = "TENANT_VIEWER"
    CUSTOMER = "CUSTOMER"


class Permission(str, Enum):
    """Atomic capabilities."""
    # Platform
    MANAGE_PLATFORM_ADMINS = "MANAGE_PLATFORM_ADMINS"
    MANAGE_GLOBAL_CONFIG = "MANAGE_GLOBAL_CONFIG"
    MANAGE_PLANS_PRICING = "MANAGE_PLANS_PRICING"
    MANAGE_BUSINESS_TYPES = "MANAGE_BUSINESS_TYPES"
    MANAGE_COUNTRIES_REGIONS = "MANAGE_COUNTRIES_REGIONS"
    VIEW_ALL_TENANTS = "VIEW_ALL_TENANTS"
    VIEW_TENANTS_SCOPED = "VIEW_TENANTS_SCOPED"
    SUSPEND_TENANT_SCOPED = "SUSPEND_TENANT_SCOPED"
    OVERRIDE_TENANT_LOCK = "OVERRIDE_TENANT_LOCK"
    VIEW_SYSTEM_LOGS = "VIEW_SYSTEM_LOGS"
    VIEW_API_METRICS = "VIEW_API_METRICS"
    MANAGE_APIS = "MANAGE_APIS"
    VIEW_INVOICES_PAYMENTS = "VIEW_INVOICES_PAYMENTS"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
    HANDLE_SUPPORT_TICKETS = "HANDLE_SUPPORT_TICKETS"
    VIEW_TICKETS = "VIEW_TICKETS"
    RESPOND_TICKETS = "RESPOND_TICKETS"
    ESCALATE_TICKETS = "ESCALATE_TICKETS"
    VIEW_SYSTEM_HEALTH = "VIEW_SYSTEM_HEALTH"
    VIEW_ERROR_LOGS = "VIEW_ERROR_LOGS"
    VIEW_PERFORMANCE = "VIEW_PERFORMANCE"
    VIEW_OPERATIONS = "VIEW_OPERATIONS"
    VIEW_REPORTS = "VIEW_REPORTS"

    # Marketplace management
    MARKETPLACE_VIEW_CATALOG = "MARKETPLACE_VIEW_CATALOG"
    MARKETPLACE_MANAGE_CATALOG = "MARKETPLACE_MANAGE_CATALOG"
    MARKETPLACE_MANAGE_PRICING = "MARKETPLACE_MANAGE_PRICING"
    MARKETPLACE_MANAGE_ELIGIBILITY = "MARKETPLACE_MANAGE_ELIGIBILITY"
    MARKETPLACE_VIEW_ANALYTICS = "MARKETPLACE_VIEW_ANALYTICS"
    MARKETPLACE_VIEW_AUDIT_LOGS = "MARKETPLACE_VIEW_AUDIT_LOGS"
    MARKETPLACE_PUBLISH = "MARKETPLACE_PUBLISH"
    MARKETPLACE_OVERRIDE = "MARKETPLACE_OVERRIDE"

    # Tenant
    MANAGE_USERS = "MANAGE_USERS"
    VIEW_DASHBOARD = "VIEW_DASHBOARD"
    MANAGE_PROJECTS = "MANAGE_PROJECTS"
    MANAGE_TIMESHEETS = "MANAGE_TIMESHEETS"
    VIEW_INVOICES = "VIEW_INVOICES"
    CREATE_INVOICES = "CREATE_INVOICES"
    RECORD_PAYMENTS = "RECORD_PAYMENTS"
    VIEW_ANALYTICS = "VIEW_ANALYTICS"
    MANAGE_SETTINGS = "MANAGE_SETTINGS"
    SUBSCRIPTION_VIEW = "SUBSCRIPTION_VIEW"
    SUBSCRIPTION_CHANGE = "SUBSCRIPTION_CHANGE"
    INVOICES_VIEW = "INVOICES_VIEW"
    PAYMENTS_VIEW = "PAYMENTS_VIEW"
    MARKETPLACE_BROWSE = "MARKETPLACE_BROWSE"
    MARKETPLACE_PURCHASE = "MARKETPLACE_PURCHASE"
    MARKETPLACE_MANAGE_BILLING = "MARKETPLACE_MANAGE_BILLING"

    # Customer portal
    PORTAL_ACCESS = "PORTAL_ACCESS"
    VIEW_OWN_INVOICES = "VIEW_OWN_INVOICES"
    VIEW_OWN_BOOKINGS = "VIEW_OWN_BOOKINGS"


@dataclass(frozen=True)
class RoleDefinition:
    """A role, its scope kind and its full permission set."""
    role: Role
    scope_kind: ScopeKind
    permissions: FrozenSet[Permission]


P = Permission

ROLE_DEFINITIONS: Dict[Role, RoleDefinition] = {
    Role.PLATFORM_SUPER_ADMIN: RoleDefinition(
        role=Role.PLATFORM_SUPER_ADMIN,
        scope_kind=ScopeKind.GLOBAL,
        permissions=frozenset({
            P.MANAGE_PLATFORM_ADMINS,
            P.MANAGE_GLOBAL_CONFIG,
            P.MANAGE_PLANS_PRICING,
            P.MANAGE_BUSINESS_TYPES,
            P.MANAGE_COUNTRIES_REGIONS,
            P.VIEW_ALL_TENANTS,
            P.SUSPEND_TENANT_SCOPED,
            P.OVERRIDE_TENANT_LOCK,
            P.VIEW_SYSTEM_LOGS,
            P.VIEW_API_METRICS,
            P.MANAGE_APIS,
            P.VIEW_INVOICES_PAYMENTS,
            P.VIEW_AUDIT_LOGS,
            P.HANDLE_SUPPORT_TICKETS,
            P.VIEW_TICKETS,
            P.VIEW_SYSTEM_HEALTH,
            P.VIEW_ERROR_LOGS,
            P.VIEW_PERFORMANCE,
            P.VIEW_OPERATIONS,
            P.VIEW_REPORTS,
            P.MARKETPLACE_VIEW_CATALOG,
            P.MARKETPLACE_MANAGE_CATALOG,
            P.MARKETPLACE_MANAGE_PRICING,
            P.MARKETPLACE_MANAGE_ELIGIBILITY,
            P.MARKETPLACE_VIEW_ANALYTICS,
            P.MARKETPLACE_VIEW_AUDIT_LOGS,
            P.MARKETPLACE_PUBLISH,
            P.MARKETPLACE_OVERRIDE,
        }),
    ),
    Role.PLATFORM_ADMIN: RoleDefinition(
        role=Role.PLATFORM_ADMIN,
        scope_kind=ScopeKind.COUNTRY,
        permissions=frozenset({
            P.VIEW_TENANTS_SCOPED,
            P.SUSPEND_TENANT_SCOPED,
            P.VIEW_INVOICES_PAYMENTS,
            P.VIEW_AUDIT_LOGS,
            P.HANDLE_SUPPORT_TICKETS,
            P.VIEW_TICKETS,
            P.RESPOND_TICKETS,
            P.ESCALATE_TICKETS,
        }),
    ),
    Role.TECH_SUPPORT_MANAGER: RoleDefinition(
        role=Role.TECH_SUPPORT_MANAGER,
        scope_kind=ScopeKind.GLOBAL,
        permissions=frozenset({
            P.VIEW_SYSTEM_LOGS,
            P.VIEW_API_METRICS,
            P.MANAGE_APIS,
            P.VIEW_SYSTEM_HEALTH,
            P.VIEW_ERROR_LOGS,
            P.VIEW_PERFORMANCE,
            P.VIEW_AUDIT_LOGS,
        }),
    ),
    Role.MANAGER: RoleDefinition(
        role=Role.MANAGER,
        scope_kind=ScopeKind.COUNTRY,
        permissions=frozenset({
            P.VIEW_TENANTS_SCOPED,
            P.VIEW_OPERATIONS,
            P.VIEW_REPORTS,
            P.VIEW_TICKETS,
        }),
    ),
    Role.SUPPORT_TEAM: RoleDefinition(
        role=Role.SUPPORT_TEAM,
        scope_kind=ScopeKind.COUNTRY,
        permissions=frozenset({
            P.VIEW_TENANTS_SCOPED,
            P.VIEW_TICKETS,
            P.RESPOND_TICKETS,
            P.ESCALATE_TICKETS,
            P.HANDLE_SUPPORT_TICKETS,
        }),
    ),
    Role.TENANT_ADMIN: RoleDefinition(
        role=Role.TENANT_ADMIN,
        scope_kind=ScopeKind.TENANT,
        permissions=frozenset({
            P.MANAGE_USERS,
            P.VIEW_DASHBOARD,
            P.MANAGE_PROJECTS,
            P.MANAGE_TIMESHEETS,
            P.VIEW_INVOICES,
            P.CREATE_INVOICES,
            P.RECORD_PAYMENTS,
            P.VIEW_ANALYTICS,
            P.MANAGE_SETTINGS,
            P.SUBSCRIPTION_VIEW,
            P.SUBSCRIPTION_CHANGE,
            P.INVOICES_VIEW,
            P.PAYMENTS_VIEW,
            P.MARKETPLACE_BROWSE,
            P.MARKETPLACE_PURCHASE,
            P.MARKETPLACE_MANAGE_BILLING,
        }),
    ),
    Role.TENANT_STAFF: RoleDefinition(
        role=Role.TENANT_STAFF,
        scope_kind=ScopeKind.TENANT,
        permissions=frozenset({
            P.VIEW_DASHBOARD,
            P.MANAGE_PROJECTS,
            P.MANAGE_TIMESHEETS,
            P.VIEW_INVOICES,
            P.SUBSCRIPTION_VIEW,
            P.INVOICES_VIEW,
            P.MARKETPLACE_BROWSE,
        }),
    ),
    Role.TENANT_VIEWER: RoleDefinition(
        role=Role.TENANT_VIEWER,
        scope_kind=ScopeKind.TENANT,
        permissions=frozenset({
            P.VIEW_DASHBOARD,
            P.VIEW_INVOICES,
            P.SUBSCRIPTION_VIEW,
        }),
    ),
    Role.CUSTOMER: RoleDefinition(
        role=Role.CUSTOMER,
        scope_kind=ScopeKind.TENANT,
        permissions=frozenset({
            P.PORTAL_ACCESS,
            P.VIEW_OWN_INVOICES,
            P.VIEW_OWN_BOOKINGS,
        }),
    ),
}

# Held by the super admin and nobody else
SUPER_ADMIN_ONLY_PERMISSIONS: FrozenSet[Permission] = frozenset({
    P.MANAGE_PLATFORM_ADMINS,
    P.MANAGE_GLOBAL_CONFIG,
    P.MANAGE_PLANS_PRICING,
    P.MANAGE_BUSINESS_TYPES,
    P.MANAGE_COUNTRIES_REGIONS,
    P.VIEW_ALL_TENANTS,
    P.OVERRIDE_TENANT_LOCK,
    P.MARKETPLACE_MANAGE_CATALOG,
    P.MARKETPLACE_MANAGE_PRICING,
    P.MARKETPLACE_MANAGE_ELIGIBILITY,
    P.MARKETPLACE_OVERRIDE,
})

# Keys are matched after lower-casing and turning "-" and " " into "_".
LEGACY_ROLE_ALIASES: Dict[str, Role] = {
    "super_admin": Role.PLATFORM_SUPER_ADMIN,
    "superadmin": Role.PLATFORM_SUPER_ADMIN,
    "platform_super": Role.PLATFORM_SUPER_ADMIN,
    "platform_super_admin": Role.PLATFORM_SUPER_ADMIN,
    "platform_admin": Role.PLATFORM_ADMIN,
    "country_admin": Role.PLATFORM_ADMIN,
    "regional_admin": Role.PLATFORM_ADMIN,
    "tech_support": Role.TECH_SUPPORT_MANAGER,
    "tech_support_manager": Role.TECH_SUPPORT_MANAGER,
    "manager": Role.MANAGER,
    "platform_manager": Role.MANAGER,
    "support": Role.SUPPORT_TEAM,
    "support_team": Role.SUPPORT_TEAM,
    "admin": Role.TENANT_ADMIN,
    "owner": Role.TENANT_ADMIN,
    "tenant_admin": Role.TENANT_ADMIN,
    "tenant_owner": Role.TENANT_ADMIN,
    "staff": Role.TENANT_STAFF,
    "employee": Role.TENANT_STAFF,
    "member": Role.TENANT_STAFF,
    "tenant_staff": Role.TENANT_STAFF,
    "viewer": Role.TENANT_VIEWER,
    "read_only": Role.TENANT_VIEWER,
    "readonly": Role.TENANT_VIEWER,
    "tenant_viewer": Role.TENANT_VIEWER,
    "customer": Role.CUSTOMER,
    "client": Role.CUSTOMER,
    "portal_user": Role.CUSTOMER,
}


def _alias_key(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def normalize_role(raw: Union[Role, str]) -> Role:
    """Map a canonical or legacy role name to its canonical Role.

    Raises UnknownRoleError for anything not in the alias table; there is
    no default role.
    """
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise UnknownRoleError(raw)

    stripped = raw.strip()
    if stripped in Role.__members__:
        return Role(stripped)

    role = LEGACY_ROLE_ALIASES.get(_alias_key(stripped))
    if role is None:
        raise UnknownRoleError(raw)
    return role


def permissions_of(role: Union[Role, str]) -> FrozenSet[Permission]:
    """Return the permission set held by a role."""
    return ROLE_DEFINITIONS[normalize_role(role)].permissions


def has_permission(role: Union[Role, str], permission_id: Union[Permission, str]) -> bool:
    """Check whether a role holds a permission.

    Unknown roles and unknown permission ids return False so that a guard
    naming a permission the registry does not know yet fails closed.
    """
    try:
        permission = Permission(permission_id)
        canonical = normalize_role(role)
    except (ValueError, UnknownRoleError):
        return False
    return permission in ROLE_DEFINITIONS[canonical].permissions


def is_super_admin_only(permission_id: Union[Permission, str]) -> bool:
    try:
        return Permission(permission_id) in SUPER_ADMIN_ONLY_PERMISSIONS
    except ValueError:
        return False


def scope_kind_of(role: Union[Role, str]) -> ScopeKind:
    return ROLE_DEFINITIONS[normalize_role(role)].scope_kind


def is_super_admin(role: Union[Role, str]) -> bool:
    """True only for the super admin role (canonical or alias)."""
    try:
        return normalize_role(role) is Role.PLATFORM_SUPER_ADMIN
    except UnknownRoleError:
        return False


def verify_registry() -> None:
    """Check the static tables for gaps that would open or close access silently."""
    missing = [role.value for role in Role if role not in ROLE_DEFINITIONS]
    if missing:
        raise ConfigurationError("Roles without a definition", {"roles": missing})

    for role, definition in ROLE_DEFINITIONS.items():
        if definition.role is not role:
            raise ConfigurationError("Role definition keyed under the wrong role", {"role": role.value})
        if role is Role.PLATFORM_SUPER_ADMIN:
            continue
        leaked = definition.permissions & SUPER_ADMIN_ONLY_PERMISSIONS
        if leaked:
            raise ConfigurationError(
                "Super-admin-only permissions granted to another role",
                {"role": role.value, "permissions": sorted(p.value for p in leaked)},
            )

    for alias, role in LEGACY_ROLE_ALIASES.items():
        if _alias_key(alias) != alias:
            raise ConfigurationError("Alias key is not normalized", {"alias": alias})
        if not isinstance(role, Role):
            raise ConfigurationError("Alias maps to a non-role", {"alias": alias})


verify_registry()
