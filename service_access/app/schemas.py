"""
Request and response models for the Access Service API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .entitlements.models import ModuleAccess, Tier


class PermissionCheckRequest(BaseModel):
    """Registry lookup for a role and permission."""
    role: str = Field(..., description="Canonical or legacy role name")
    permission: str = Field(..., description="Permission id")


class PermissionCheckResponse(BaseModel):
    role: Optional[str] = Field(None, description="Canonical role, or null when unknown")
    permission: str
    allowed: bool
    super_admin_only: bool


class ScopeResponse(BaseModel):
    kind: str
    allowed_country_ids: List[str] = Field(default_factory=list)
    tenant_id: Optional[str] = None
    is_super_admin: bool = False


class TenantTarget(BaseModel):
    """Tenant facts supplied by the caller; tier is never looked up here."""
    tenant_id: str = Field(..., description="Tenant ID")
    tier: Tier = Field(..., description="Current subscription tier")
    country_code: str = Field(..., description="Tenant country")
    business_type: Optional[str] = Field(None, description="Tenant business type")


class ModuleCheckRequest(TenantTarget):
    module_id: str = Field(..., description="Module to check")
    write: bool = Field(False, description="Check for a write; add-ons in grace allow reads only")


class ModuleCheckResponse(BaseModel):
    allowed: bool
    access: ModuleAccess
    upgrade_tier: Optional[Tier] = None
    reason: Optional[str] = None
    cached: bool = False


class RolloutUpdateRequest(BaseModel):
    expected_version: int = Field(..., ge=0, description="Version the change is based on")
    is_active: bool = False
    enabled_business_types: List[str] = Field(default_factory=list)
    enabled_modules: List[str] = Field(default_factory=list)
    enabled_features: Dict[str, bool] = Field(default_factory=dict)
    coming_soon_message: Optional[str] = None


class ModuleUpdateRequest(BaseModel):
    expected_version: int = Field(..., ge=0, description="Version the change is based on")
    name: str
    access: Dict[Tier, ModuleAccess] = Field(default_factory=dict)
    prices_usd: Dict[Tier, Decimal] = Field(default_factory=dict)
    addon_ids: List[str] = Field(default_factory=list)


class AddonGrantRequest(BaseModel):
    addon_id: str
    tenant_country: str
    expected_version: int = Field(..., ge=0, description="Add-on state version the grant is based on")
    trial_ends_at: Optional[datetime] = None
    grace_until: Optional[datetime] = None


class AddonLapseRequest(BaseModel):
    """Start the grace period of a tenant's paid add-on."""
    tenant_country: str
    expected_version: int = Field(..., ge=0, description="Add-on state version the change is based on")


class RecordResponse(BaseModel):
    """A committed configuration record."""
    key: str
    version: int
    value: Any
    updated_by: Optional[str] = None
    updated_at: datetime
