"""
Shared error handling for the Access Control Core.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format.

    Every denial rendered to a client carries exactly ``message`` and
    ``code``; ``upgradeUrl`` is added only for payment-gated denials.
    """

    message: str
    code: str
    upgradeUrl: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        """Render the client-facing body, omitting absent optional fields."""
        return self.model_dump(exclude_none=True)


class AccessCoreException(Exception):
    """Base exception for Access Control Core components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(code=self.code, message=self.message)


class UnknownRoleError(AccessCoreException):
    """Role name could not be normalized to a canonical role."""

    def __init__(self, raw_role: Any):
        super().__init__(
            "UNKNOWN_ROLE",
            f"Unknown role: {raw_role!r}",
            {"role": str(raw_role)},
        )
        self.raw_role = raw_role


class StaleWriteError(AccessCoreException):
    """Optimistic-concurrency conflict on a configuration mutation."""

    def __init__(self, key: str, expected_version: int, current_version: int):
        super().__init__(
            "STALE_WRITE",
            "Configuration was modified by another writer; reload and retry",
            {
                "key": key,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        self.key = key
        self.expected_version = expected_version
        self.current_version = current_version


class AuditWriteError(AccessCoreException):
    """The audit trail could not be written for a mutating action."""

    def __init__(self, message: str = "Audit trail unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIT_UNAVAILABLE", message, details)


class PricingError(AccessCoreException):
    """A price quote cannot be produced for the requested inputs."""

    def __init__(self, message: str = "Pricing unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("PRICING_UNAVAILABLE", message, details)


class ConfigurationError(AccessCoreException):
    """Static configuration tables are inconsistent."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class AccessDeniedError(AccessCoreException):
    """Raised by the HTTP adapter when a guard chain denies a request."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        upgrade_url: Optional[str] = None,
    ):
        super().__init__(code, message)
        self.status_code = status_code
        self.upgrade_url = upgrade_url

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, message=self.message, upgradeUrl=self.upgrade_url)
