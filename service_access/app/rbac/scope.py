"""
Scope resolution.

Derives the administrative breadth of an actor from its role, its tenant
and its country assignments. Resolution is pure: the same actor always
yields the same scope.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

from .registry import Role, ScopeKind, normalize_role, scope_kind_of

# Legacy tenant country names and common non-ISO spellings
COUNTRY_ALIASES: Dict[str, str] = {
    "india": "IN",
    "uk": "GB",
    "united_kingdom": "GB",
    "great_britain": "GB",
    "uae": "AE",
    "united_arab_emirates": "AE",
    "malaysia": "MY",
    "singapore": "SG",
    "usa": "US",
    "us": "US",
    "united_states": "US",
    "australia": "AU",
    "canada": "CA",
}


def normalize_country_code(raw: Optional[str]) -> Optional[str]:
    """Return the upper-case ISO-3166 alpha-2 code for a country, or None."""
    if raw is None:
        return None
    stripped = raw.strip()
    if not stripped:
        return None
    key = stripped.lower().replace("-", "_").replace(" ", "_")
    if key in COUNTRY_ALIASES:
        return COUNTRY_ALIASES[key]
    return stripped.upper()


def normalize_country_codes(raw: Optional[Iterable[str]]) -> FrozenSet[str]:
    codes = set()
    for item in raw or ():
        code = normalize_country_code(item)
        if code:
            codes.add(code)
    return frozenset(codes)


@dataclass(frozen=True)
class Actor:
    """Authenticated principal attached to a request by the identity layer."""
    user_id: str
    role: str
    tenant_id: Optional[str] = None
    assigned_country_ids: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ScopeContext:
    """Effective administrative scope of an actor.

    COUNTRY scope with an empty ``allowed_country_ids`` is valid and
    grants nothing.
    """
    kind: ScopeKind
    allowed_country_ids: FrozenSet[str] = field(default_factory=frozenset)
    tenant_id: Optional[str] = None
    is_super_admin: bool = False

    def can_access_country(self, country_code: Optional[str]) -> bool:
        if self.kind is ScopeKind.GLOBAL:
            return True
        if self.kind is ScopeKind.COUNTRY:
            code = normalize_country_code(country_code)
            return code is not None and code in self.allowed_country_ids
        return False

    def can_access_tenant(self, tenant_id: Optional[str], country_code: Optional[str] = None) -> bool:
        """Check whether a target tenant lies inside this scope."""
        if self.kind is ScopeKind.GLOBAL:
            return True
        if self.kind is ScopeKind.COUNTRY:
            return self.can_access_country(country_code)
        return tenant_id is not None and tenant_id == self.tenant_id


def resolve_scope(actor: Optional[Actor]) -> Optional[ScopeContext]:
    """Resolve the scope of an actor.

    Returns None when no scope applies (no actor, or a tenant role
    without a tenant). Unknown roles raise UnknownRoleError.
    """
    if actor is None:
        return None

    role = normalize_role(actor.role)

    if role is Role.PLATFORM_SUPER_ADMIN:
        return ScopeContext(kind=ScopeKind.GLOBAL, is_super_admin=True)

    kind = scope_kind_of(role)
    if kind is ScopeKind.GLOBAL:
        return ScopeContext(kind=ScopeKind.GLOBAL, is_super_admin=False)

    if kind is ScopeKind.COUNTRY:
        return ScopeContext(
            kind=ScopeKind.COUNTRY,
            allowed_country_ids=normalize_country_codes(actor.assigned_country_ids),
        )

    if actor.tenant_id:
        return ScopeContext(kind=ScopeKind.TENANT, tenant_id=actor.tenant_id)

    return None
