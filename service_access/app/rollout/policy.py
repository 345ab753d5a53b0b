"""
Per-country rollout policy.

A closed world: a country, business type, module or feature that the
policy table does not mention is disabled. An inactive country disables
everything before any tier logic runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional

from ..rbac.scope import normalize_country_code

DEFAULT_COMING_SOON_MESSAGE = "Coming soon in your country"


@dataclass(frozen=True)
class CountryRolloutPolicy:
    """What a country has switched on."""
    country_code: str
    is_active: bool = False
    enabled_business_types: FrozenSet[str] = field(default_factory=frozenset)
    enabled_modules: FrozenSet[str] = field(default_factory=frozenset)
    enabled_features: Mapping[str, bool] = field(default_factory=dict)
    coming_soon_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country_code": self.country_code,
            "is_active": self.is_active,
            "enabled_business_types": sorted(self.enabled_business_types),
            "enabled_modules": sorted(self.enabled_modules),
            "enabled_features": dict(self.enabled_features),
            "coming_soon_message": self.coming_soon_message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CountryRolloutPolicy":
        return cls(
            country_code=normalize_country_code(data["country_code"]),
            is_active=bool(data.get("is_active", False)),
            enabled_business_types=frozenset(data.get("enabled_business_types") or ()),
            enabled_modules=frozenset(data.get("enabled_modules") or ()),
            enabled_features={k: bool(v) for k, v in (data.get("enabled_features") or {}).items()},
            coming_soon_message=data.get("coming_soon_message"),
        )


RolloutTable = Mapping[str, CountryRolloutPolicy]


def _active_policy(policies: RolloutTable, country_code: Optional[str]) -> Optional[CountryRolloutPolicy]:
    code = normalize_country_code(country_code)
    if code is None:
        return None
    policy = policies.get(code)
    if policy is None or not policy.is_active:
        return None
    return policy


def is_country_active(policies: RolloutTable, country_code: Optional[str]) -> bool:
    return _active_policy(policies, country_code) is not None


def is_business_type_enabled(policies: RolloutTable, country_code: Optional[str], business_type: str) -> bool:
    policy = _active_policy(policies, country_code)
    return policy is not None and business_type in policy.enabled_business_types


def is_module_enabled_in_country(policies: RolloutTable, country_code: Optional[str], module_id: str) -> bool:
    policy = _active_policy(policies, country_code)
    return policy is not None and module_id in policy.enabled_modules


def is_feature_enabled(policies: RolloutTable, country_code: Optional[str], feature_key: str) -> bool:
    policy = _active_policy(policies, country_code)
    return policy is not None and policy.enabled_features.get(feature_key, False)


def coming_soon_message(
    policies: RolloutTable,
    country_code: Optional[str],
    default: str = DEFAULT_COMING_SOON_MESSAGE,
) -> str:
    code = normalize_country_code(country_code)
    policy = policies.get(code) if code else None
    if policy is not None and policy.coming_soon_message:
        return policy.coming_soon_message
    return default


def effective_features(
    policies: RolloutTable,
    country_code: Optional[str],
    tier_flags: Mapping[str, bool],
) -> Dict[str, bool]:
    """Tier feature flags masked by what the country has enabled."""
    return {
        key: bool(granted) and is_feature_enabled(policies, country_code, key)
        for key, granted in tier_flags.items()
    }
