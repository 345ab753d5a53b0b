"""
Audit record model.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid


class AuditAction:
    """Action names recorded in the audit trail."""
    ACCESS_CHECK = "access.check"
    ROLLOUT_UPDATE = "rollout.update"
    MODULE_ACCESS_UPDATE = "module.access.update"
    ADDON_GRANT = "addon.grant"
    ADDON_REVOKE = "addon.revoke"
    ADDON_LAPSE = "addon.lapse"


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit trail entry."""
    actor_id: Optional[str]
    actor_role_at_time: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    decision: str
    code: Optional[str] = None
    country_code: Optional[str] = None
    previous_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "actor_id": self.actor_id,
            "actor_role_at_time": self.actor_role_at_time,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "country_code": self.country_code,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "decision": self.decision,
            "code": self.code,
            "timestamp": self.timestamp.isoformat(),
        }
