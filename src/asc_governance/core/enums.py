"""Enumerations shared by the governance core models and schemas.

Values are the stored wire values; columns persist them as plain strings.
"""

from enum import StrEnum


class ConfigValueType(StrEnum):
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    NUMBER = "NUMBER"
    JSON = "JSON"


class ConfigRiskClass(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def requires_reason(self) -> bool:
        """MEDIUM and above require a human-readable justification on write."""
        return self is not ConfigRiskClass.LOW


class ConfigScope(StrEnum):
    PLATFORM = "PLATFORM"
    FACILITY = "FACILITY"


class ConfigSource(StrEnum):
    CODE_FALLBACK = "CODE_FALLBACK"
    PLATFORM = "PLATFORM"
    FACILITY = "FACILITY"


class ConfigAuditAction(StrEnum):
    SET = "SET"
    CLEAR = "CLEAR"


class PhiClassification(StrEnum):
    CLINICAL = "PHI_CLINICAL"
    BILLING = "PHI_BILLING"
    AUDIT = "PHI_AUDIT"


class AccessPurpose(StrEnum):
    CLINICAL_CARE = "CLINICAL_CARE"
    SCHEDULING = "SCHEDULING"
    BILLING = "BILLING"
    AUDIT = "AUDIT"
    EMERGENCY = "EMERGENCY"


class AccessOutcome(StrEnum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class RetentionReason(StrEnum):
    ACTIVE_CASE = "ACTIVE_CASE"
    BILLING_HOLD = "BILLING_HOLD"
    AUDIT_RETENTION = "AUDIT_RETENTION"


# Surgical case lifecycle statuses after which no further transitions occur.
TERMINAL_CASE_STATUSES: frozenset[str] = frozenset({"COMPLETED", "CANCELLED"})

# Denial reason emitted by the access guard when a clinical-care window has closed.
OUTSIDE_CLINICAL_WINDOW = "OUTSIDE_CLINICAL_WINDOW"
