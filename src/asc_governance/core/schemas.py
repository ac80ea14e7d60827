"""Pydantic input and result schemas for the governance core contract surface.

Request handlers (outside this package) build the input models and serialize
the result models. Results are never raw dicts or ORM objects.

Groups:
- Actor identity
- Configuration Registry
- PHI access audit
- Audit analytics
- Retention
"""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from asc_governance.core.enums import (
    AccessOutcome,
    AccessPurpose,
    ConfigAuditAction,
    ConfigRiskClass,
    ConfigScope,
    ConfigSource,
    ConfigValueType,
    PhiClassification,
    RetentionReason,
)


# ---------------------------------------------------------------------------
# Actor identity
# ---------------------------------------------------------------------------


class ActorContext(BaseModel):
    """Identity of the caller, supplied by the authentication layer."""

    user_id: uuid.UUID = Field(description="Acting user UUID")
    name: str = Field(description="Display name captured into audit rows")
    roles: list[str] = Field(default_factory=list, description="Role names at time of action")
    request_id: str | None = Field(default=None, description="Request correlation ID")
    ip_address: str | None = Field(default=None, description="Client IP address")
    user_agent: str | None = Field(default=None, description="Client User-Agent header")


# ---------------------------------------------------------------------------
# Configuration Registry
# ---------------------------------------------------------------------------


class ConfigKeyResponse(BaseModel):
    """Registry definition of a configuration key."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    value_type: ConfigValueType
    default_value: str | None
    allow_facility_override: bool
    risk_class: ConfigRiskClass
    display_name: str
    description: str | None
    category: str
    is_sensitive: bool
    deprecated_at: datetime | None


class EffectiveConfig(BaseModel):
    """The single value a caller observes after precedence resolution."""

    key: str = Field(description="Config key name")
    value: str | None = Field(description="Raw stored value (string form)")
    value_type: ConfigValueType
    source: ConfigSource = Field(description="Which layer supplied the value")
    platform_version: int | None = Field(default=None, description="Selected platform version, if any")
    facility_version: int | None = Field(default=None, description="Selected facility version, if any")
    risk_class: ConfigRiskClass
    is_sensitive: bool


class SetConfigInput(BaseModel):
    """Input for a platform value or facility override write."""

    value: str | None = Field(description="New raw value; must parse per the key's value type")
    reason: str | None = Field(default=None, description="Required for MEDIUM/HIGH/CRITICAL keys")
    note: str | None = Field(default=None, description="Optional free-text note")
    effective_at: datetime | None = Field(
        default=None,
        description="When the version takes effect (UTC). Defaults to now.",
    )


class ConfigWriteResult(BaseModel):
    """Outcome of a versioned config write."""

    key: str
    scope: ConfigScope
    facility_id: uuid.UUID | None = None
    version: int


class ConfigAuditLogResponse(BaseModel):
    """Read model for a ConfigAuditLogEntry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    config_key: str
    scope: ConfigScope
    facility_id: uuid.UUID | None
    action: ConfigAuditAction
    old_value: str | None
    new_value: str | None
    version_before: int | None
    version_after: int | None
    change_reason: str | None
    change_note: str | None
    actor_user_id: uuid.UUID
    actor_name: str
    actor_roles: list[str]
    request_id: str | None
    created_at: datetime


# ---------------------------------------------------------------------------
# PHI access audit
# ---------------------------------------------------------------------------


class PhiAccessContext(BaseModel):
    """Everything the access guard knows about one access decision."""

    user_id: uuid.UUID
    user_roles: list[str]
    facility_id: uuid.UUID
    organization_ids: list[uuid.UUID] = Field(default_factory=list)
    case_id: uuid.UUID | None = None
    phi_classification: PhiClassification
    access_purpose: AccessPurpose
    outcome: AccessOutcome
    denial_reason: str | None = Field(default=None, description="Populated when outcome is DENIED")
    request_id: str | None = None
    endpoint: str | None = None
    http_method: str | None = None
    is_emergency: bool = False
    emergency_justification: str | None = None
    ip_address: str | None = Field(default=None, description="Hashed into breach_context, never stored raw")
    user_agent: str | None = Field(default=None, description="Hashed into breach_context, never stored raw")


class PhiAccessLogEntryResponse(BaseModel):
    """Read model for a PhiAccessAuditLogEntry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    user_roles: list[str]
    facility_id: uuid.UUID
    organization_ids: list[uuid.UUID]
    case_id: uuid.UUID | None
    phi_classification: PhiClassification
    access_purpose: AccessPurpose
    outcome: AccessOutcome
    denial_reason: str | None
    request_id: str | None
    endpoint: str | None
    http_method: str | None
    is_emergency: bool
    emergency_justification: str | None
    created_at: datetime


class PhiAccessFilters(BaseModel):
    """Filters for the access log query. ``facility_id`` is always enforced."""

    facility_id: uuid.UUID
    user_id: uuid.UUID | None = None
    case_id: uuid.UUID | None = None
    phi_classification: PhiClassification | None = None
    access_purpose: AccessPurpose | None = None
    outcome: AccessOutcome | None = None
    is_emergency: bool | None = None
    start_date: date | None = Field(default=None, description="Inclusive start day (UTC)")
    end_date: date | None = Field(default=None, description="Inclusive end day (UTC)")
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class PhiAccessLogPage(BaseModel):
    """One page of access log entries plus the filtered total."""

    entries: list[PhiAccessLogEntryResponse]
    total: int


class PhiAccessStats(BaseModel):
    """Grouped aggregate counts over a facility's access log."""

    total: int
    by_outcome: dict[str, int]
    by_purpose: dict[str, int]
    emergency_count: int
    export_count: int


# ---------------------------------------------------------------------------
# Audit analytics
# ---------------------------------------------------------------------------

# Display name used when the acting user has no app_user row.
UNKNOWN_USER_NAME = "Unknown"


class AccessEvent(BaseModel):
    """Minimal projection of an access row used for session reconstruction."""

    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    created_at: datetime
    outcome: AccessOutcome
    denial_reason: str | None = None
    is_emergency: bool = False
    phi_classification: PhiClassification
    access_purpose: AccessPurpose
    case_id: uuid.UUID | None = None
    user_name: str = UNKNOWN_USER_NAME


class AuditSession(BaseModel):
    """A gap-bounded run of one user's access events. Derived, never stored."""

    user_id: uuid.UUID
    user_name: str = UNKNOWN_USER_NAME
    session_index: int = Field(description="1-based per-user session ordinal")
    session_start: datetime
    session_end: datetime
    access_count: int
    denial_count: int
    emergency_count: int
    classifications: list[str]
    purposes: list[str]
    case_ids: list[uuid.UUID]
    is_suspicious: bool
    suspicious_reasons: list[str]


class AuditSessionFilters(BaseModel):
    """Filters and paging for session reconstruction."""

    user_id: uuid.UUID | None = None
    start_date: date | None = None
    end_date: date | None = None
    only_suspicious: bool = False
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)


class AuditSessionPage(BaseModel):
    """Sessions (most recent first) and the total over the same filtered set."""

    sessions: list[AuditSession]
    total: int


class DenialBucket(BaseModel):
    """Denied accesses of one user within one clock hour."""

    user_id: uuid.UUID
    user_name: str = UNKNOWN_USER_NAME
    hour_bucket: datetime
    denial_count: int
    denial_reasons: list[str]


class ExcessiveDenialFilters(BaseModel):
    """Filters for excessive-denial detection."""

    start_date: date | None = None
    end_date: date | None = None
    limit: int = Field(default=100, ge=1)


class ExcessiveDenialEntry(BaseModel):
    """An hourly bucket whose denial count exceeded the threshold."""

    user_id: uuid.UUID
    user_name: str = UNKNOWN_USER_NAME
    hour_bucket: datetime
    denial_count: int
    denial_reasons: list[str]
    threshold: int


class TopUser(BaseModel):
    user_id: uuid.UUID
    user_name: str = UNKNOWN_USER_NAME
    access_count: int


class AuditAnalyticsSummary(BaseModel):
    """Dashboard summary composed from sessions and denial buckets."""

    total_sessions: int
    suspicious_session_count: int
    excessive_denial_count: int
    top_users: list[TopUser]


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class RetentionDetail(BaseModel):
    """One retention hold and its expiry (``None`` means indefinite)."""

    reason: RetentionReason
    description: str
    expires_at: datetime | None


class RetentionStatus(BaseModel):
    """Advisory purge eligibility for one surgical case. Never triggers deletion."""

    entity_type: str = "SURGICAL_CASE"
    entity_id: uuid.UUID
    facility_id: uuid.UUID
    is_purgeable: bool
    earliest_purge_at: datetime | None = Field(description="None while the case is active")
    retention_reasons: list[RetentionReason] = Field(description="Holds still in force")
    retention_details: list[RetentionDetail]
    terminal_event_missing: bool = Field(
        default=False,
        description="Terminal transition history was missing; evaluation time was used instead",
    )
    evaluated_at: datetime


class RetentionSummary(BaseModel):
    """Facility-wide retention counts. An approximation for dashboards."""

    facility_id: uuid.UUID
    total_cases: int
    active_cases: int
    billing_hold_cases: int
    audit_retention_cases: int
    purgeable_cases: int
    missing_terminal_event_cases: int
    evaluated_at: datetime


class RetentionEligibilityPage(BaseModel):
    """Exact per-case retention evaluation, paginated."""

    cases: list[RetentionStatus]
    total: int


class RetentionPeriods(BaseModel):
    """Resolved retention windows for a facility, in whole years."""

    billing_years: int
    clinical_years: int
    audit_years: int
