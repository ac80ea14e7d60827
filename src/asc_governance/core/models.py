"""SQLAlchemy ORM models for the access governance core.

Owned tables (created by migrations/versions/0001_access_governance_core.py):
- ConfigKey                — typed registry of configuration keys
- PlatformConfigValue      — append-only version chain per key
- FacilityConfigOverride   — append-only version chain per (key, facility)
- ConfigAuditLogEntry      — IMMUTABLE record of every config write/clear
- PhiAccessAuditLogEntry   — IMMUTABLE record of every PHI access decision
- PhiExportAuditLogEntry   — export metadata linked 1:1 to an access entry

Read-only lifecycle source (owned by the scheduling application):
- SurgicalCase
- SurgicalCaseStatusEvent
- AppUser

IMPORTANT: rows of the version chains and audit logs are never updated or
deleted. Clearing a facility override appends a tombstone version.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from asc_governance.database import Base


class ConfigKey(Base):
    """Registry definition of a configuration key.

    Rows are created by schema migration, never deleted, and may be
    soft-deprecated via ``deprecated_at``.

    Attributes:
        key: Unique dot-notation key name.
        value_type: STRING | BOOLEAN | NUMBER | JSON.
        default_value: Code fallback used when no platform value exists.
        allow_facility_override: Whether facilities may override the platform value.
        risk_class: LOW | MEDIUM | HIGH | CRITICAL. MEDIUM+ writes require a reason.
        is_sensitive: Redact old/new values in the config audit log.
    """

    __tablename__ = "platform_config_key"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="STRING",
        comment="STRING | BOOLEAN | NUMBER | JSON",
    )
    default_value: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Code fallback value",
    )
    allow_facility_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    risk_class: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="LOW",
        index=True,
        comment="LOW | MEDIUM | HIGH | CRITICAL",
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general", index=True)
    is_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deprecated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class PlatformConfigValue(Base):
    """One version of the platform-level value for a key.

    The current value is the highest version whose ``effective_at`` has passed.
    ``(config_key_id, version)`` is unique so concurrent writers racing for the
    same version fail instead of silently forking the chain.
    """

    __tablename__ = "platform_config_value"
    __table_args__ = (UniqueConstraint("config_key_id", "version", name="uq_platform_config_value_version"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    config_key_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("platform_config_key.id"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class FacilityConfigOverride(Base):
    """One version of a facility override for a key.

    A row with ``cleared_at`` set is a tombstone: when it is the selected
    version of its chain, the facility has no override and resolution falls
    back to the platform value.
    """

    __tablename__ = "facility_config_override"
    __table_args__ = (
        UniqueConstraint(
            "facility_id",
            "config_key_id",
            "version",
            name="uq_facility_config_override_version",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    facility_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    config_key_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("platform_config_key.id"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    override_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cleared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cleared_by_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ConfigAuditLogEntry(Base):
    """Immutable record of one configuration mutation.

    PLATFORM-scope rows reference the platform_config_value chain of
    ``config_key``; FACILITY-scope rows reference the facility_config_override
    chain of (``config_key``, ``facility_id``).
    """

    __tablename__ = "config_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    config_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    scope: Mapped[str] = mapped_column(String(20), nullable=False, comment="PLATFORM | FACILITY")
    facility_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False, comment="SET | CLEAR")
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True, comment="Redacted for sensitive keys")
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True, comment="Redacted for sensitive keys")
    version_before: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    actor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_roles: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )


class PhiAccessAuditLogEntry(Base):
    """Immutable record of one PHI access attempt, allowed or denied.

    Written only through PhiAccessAuditRepository.append(). The emergency and
    breach-context columns are additive extensions of the same row.
    """

    __tablename__ = "phi_access_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    user_roles: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False)
    facility_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    organization_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
        comment="User org affiliations at time of access (snapshot)",
    )
    case_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    phi_classification: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="PHI_CLINICAL | PHI_BILLING | PHI_AUDIT",
    )
    access_purpose: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="CLINICAL_CARE | SCHEDULING | BILLING | AUDIT | EMERGENCY",
    )
    outcome: Mapped[str] = mapped_column(String(10), nullable=False, comment="ALLOWED | DENIED")
    denial_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    http_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    breach_context: Mapped[dict | None] = mapped_column(  # type: ignore[type-arg]
        JSONB,
        nullable=True,
        comment="Hashed request metadata: ip_hash, user_agent_hash, geo_hint, request_fingerprint",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )


class PhiExportAuditLogEntry(Base):
    """Export metadata for an access entry. At most one per access entry."""

    __tablename__ = "phi_export_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phi_access_log_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("phi_access_audit_log.id"),
        nullable=False,
        unique=True,
    )
    export_format: Mapped[str] = mapped_column(String(10), nullable=False, comment="csv | xlsx | json")
    export_row_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class SurgicalCase(Base):
    """Scheduled surgical case. Read-only here, owned by the scheduling app."""

    __tablename__ = "surgical_case"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    facility_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class SurgicalCaseStatusEvent(Base):
    """Append-only case status transition. Read-only here."""

    __tablename__ = "surgical_case_status_event"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    surgical_case_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("surgical_case.id"),
        nullable=False,
    )
    from_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    to_status: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AppUser(Base):
    """Application user, joined for display names only. Read-only here."""

    __tablename__ = "app_user"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    facility_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
