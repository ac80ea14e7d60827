"""Error taxonomy for the access governance core.

- NotFoundError        — unknown config key, unknown entity in facility scope
- ValidationError      — rejected before any mutation (missing reason, non-overridable key)
- TransientStoreError  — I/O failure during a transaction; rolled back, safe to retry
- AuditWriteError      — the fail-closed denial log write could not be completed
"""

from typing import Any


class GovernanceError(Exception):
    """Base exception for governance core errors."""

    error_code = "GOVERNANCE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a serializable dict."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(GovernanceError):
    """Resource does not exist in the caller's scope.

    The message is identical whether the row is missing entirely or belongs to
    another facility, so errors cannot be used to probe other tenants.
    """

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource} not found: {resource_id}",
            details={"resource": resource, "resource_id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(GovernanceError):
    """Request rejected before any state was changed."""

    error_code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        if field:
            self.details["field"] = field


class TransientStoreError(GovernanceError):
    """Store I/O failed; the enclosing transaction was rolled back."""

    error_code = "TRANSIENT_STORE_FAILURE"


class VersionConflictError(TransientStoreError):
    """Another writer claimed the same (chain, version) slot."""

    error_code = "VERSION_CONFLICT"


class AuditWriteError(GovernanceError):
    """A mandatory access-log write failed after all retries."""

    error_code = "AUDIT_WRITE_FAILED"
