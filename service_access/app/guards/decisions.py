"""
Typed access decisions and their HTTP rendering.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from shared.errors import AccessDeniedError


class Outcome(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    NOT_FOUND = "NOT_FOUND"


class DecisionCode(str, Enum):
    """Machine-readable denial codes."""
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SUPER_ADMIN_REQUIRED = "SUPER_ADMIN_REQUIRED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    NOT_FOUND = "NOT_FOUND"
    COUNTRY_DISABLED = "COUNTRY_DISABLED"
    STALE_WRITE = "STALE_WRITE"
    AUDIT_UNAVAILABLE = "AUDIT_UNAVAILABLE"


HTTP_STATUS: Dict[DecisionCode, int] = {
    DecisionCode.UNAUTHORIZED: 401,
    DecisionCode.PAYMENT_REQUIRED: 402,
    DecisionCode.FORBIDDEN: 403,
    DecisionCode.SUPER_ADMIN_REQUIRED: 403,
    DecisionCode.COUNTRY_DISABLED: 403,
    DecisionCode.NOT_FOUND: 404,
    DecisionCode.STALE_WRITE: 409,
    DecisionCode.AUDIT_UNAVAILABLE: 503,
}

NOT_FOUND_MESSAGE = "Resource not found"


@dataclass(frozen=True)
class Decision:
    """Result of a guard or a guard chain."""
    outcome: Outcome
    code: Optional[DecisionCode] = None
    message: Optional[str] = None
    upgrade_url: Optional[str] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(outcome=Outcome.ALLOW)

    @classmethod
    def deny(cls, code: DecisionCode, message: str, upgrade_url: Optional[str] = None) -> "Decision":
        return cls(outcome=Outcome.DENY, code=code, message=message, upgrade_url=upgrade_url)

    @classmethod
    def not_found(cls, message: str = NOT_FOUND_MESSAGE) -> "Decision":
        return cls(outcome=Outcome.NOT_FOUND, code=DecisionCode.NOT_FOUND, message=message)

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def http_status(self) -> int:
        if self.allowed:
            return 200
        return HTTP_STATUS.get(self.code, 403)

    def to_body(self) -> Dict[str, Any]:
        """Client-facing body: message and code, plus upgradeUrl when payment is required."""
        if self.allowed:
            return {"allowed": True}
        body = {"message": self.message or "", "code": self.code.value}
        if self.code is DecisionCode.PAYMENT_REQUIRED and self.upgrade_url:
            body["upgradeUrl"] = self.upgrade_url
        return body

    def to_exception(self) -> AccessDeniedError:
        return AccessDeniedError(
            code=self.code.value,
            message=self.message or "",
            status_code=self.http_status,
            upgrade_url=self.upgrade_url if self.code is DecisionCode.PAYMENT_REQUIRED else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "code": self.code.value if self.code else None,
            "message": self.message,
            "upgrade_url": self.upgrade_url,
        }
