"""Access governance core tables and seeded registry keys.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


_SEEDED_KEYS: list[dict[str, object]] = [
    {
        "key": "feature.ai.explain_readiness.enabled",
        "value_type": "BOOLEAN",
        "default_value": "false",
        "display_name": "AI Readiness Explanation",
        "description": "Enable AI-powered case readiness explanations",
        "category": "ai",
        "risk_class": "MEDIUM",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "integration.openai.api_key",
        "value_type": "STRING",
        "default_value": None,
        "display_name": "OpenAI API Key",
        "description": "API key for OpenAI integration",
        "category": "integrations",
        "risk_class": "HIGH",
        "is_sensitive": True,
        "allow_facility_override": False,
    },
    {
        "key": "security.session.timeout_hours",
        "value_type": "NUMBER",
        "default_value": "24",
        "display_name": "Session Timeout (hours)",
        "description": "Token expiration time in hours",
        "category": "security",
        "risk_class": "MEDIUM",
        "is_sensitive": False,
        "allow_facility_override": False,
    },
    {
        "key": "feature.loaner_tracking.enabled",
        "value_type": "BOOLEAN",
        "default_value": "true",
        "display_name": "Loaner Tracking",
        "description": "Enable loaner set tracking features",
        "category": "features",
        "risk_class": "LOW",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "feature.financial_attribution.enabled",
        "value_type": "BOOLEAN",
        "default_value": "true",
        "display_name": "Financial Attribution",
        "description": "Enable financial attribution tracking",
        "category": "features",
        "risk_class": "LOW",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "killswitch.ai.all",
        "value_type": "BOOLEAN",
        "default_value": "false",
        "display_name": "AI Kill Switch",
        "description": "Emergency disable all AI features",
        "category": "killswitches",
        "risk_class": "CRITICAL",
        "is_sensitive": False,
        "allow_facility_override": False,
    },
    {
        "key": "killswitch.external_integrations.all",
        "value_type": "BOOLEAN",
        "default_value": "false",
        "display_name": "External Integrations Kill Switch",
        "description": "Emergency disable all external API calls",
        "category": "killswitches",
        "risk_class": "CRITICAL",
        "is_sensitive": False,
        "allow_facility_override": False,
    },
    {
        "key": "phi.retention.billing_years",
        "value_type": "NUMBER",
        "default_value": "7",
        "display_name": "Billing PHI Retention (years)",
        "description": "Minimum years to retain PHI_BILLING data after case completion.",
        "category": "phi",
        "risk_class": "HIGH",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "phi.retention.audit_years",
        "value_type": "NUMBER",
        "default_value": "7",
        "display_name": "Audit Log Retention (years)",
        "description": "Minimum years to retain PHI audit logs after the last access.",
        "category": "phi",
        "risk_class": "HIGH",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "phi.retention.clinical_years",
        "value_type": "NUMBER",
        "default_value": "7",
        "display_name": "Clinical PHI Retention (years)",
        "description": "Minimum years to retain PHI_CLINICAL data after case completion.",
        "category": "phi",
        "risk_class": "HIGH",
        "is_sensitive": False,
        "allow_facility_override": True,
    },
    {
        "key": "phi.audit.session_gap_minutes",
        "value_type": "NUMBER",
        "default_value": "15",
        "display_name": "Audit Session Gap (minutes)",
        "description": "Maximum gap between sequential PHI accesses grouped into one audit session.",
        "category": "phi",
        "risk_class": "MEDIUM",
        "is_sensitive": False,
        "allow_facility_override": False,
    },
    {
        "key": "phi.audit.excessive_denial_threshold",
        "value_type": "NUMBER",
        "default_value": "10",
        "display_name": "Excessive Denial Threshold",
        "description": "Denials per user per hour above which audit analytics flags the hour.",
        "category": "phi",
        "risk_class": "MEDIUM",
        "is_sensitive": False,
        "allow_facility_override": False,
    },
]


def _uuid_pk() -> sa.Column:  # type: ignore[type-arg]
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:  # type: ignore[type-arg]
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "platform_config_key",
        _uuid_pk(),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("value_type", sa.String(20), nullable=False, server_default="STRING"),
        sa.Column("default_value", sa.Text(), nullable=True),
        sa.Column("allow_facility_override", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("risk_class", sa.String(20), nullable=False, server_default="LOW"),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=False, server_default="general"),
        sa.Column("is_sensitive", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deprecated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "value_type IN ('STRING', 'BOOLEAN', 'NUMBER', 'JSON')",
            name="ck_platform_config_key_value_type",
        ),
        sa.CheckConstraint(
            "risk_class IN ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')",
            name="ck_platform_config_key_risk_class",
        ),
    )
    op.create_index("ix_platform_config_key_risk_class", "platform_config_key", ["risk_class"])
    op.create_index("ix_platform_config_key_category", "platform_config_key", ["category"])

    op.create_table(
        "platform_config_value",
        _uuid_pk(),
        sa.Column(
            "config_key_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("platform_config_key.id"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("changed_by_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("change_note", sa.Text(), nullable=True),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.UniqueConstraint("config_key_id", "version", name="uq_platform_config_value_version"),
    )
    op.create_index(
        "ix_platform_config_value_chain",
        "platform_config_value",
        ["config_key_id", sa.text("version DESC"), sa.text("effective_at DESC")],
    )

    op.create_table(
        "facility_config_override",
        _uuid_pk(),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "config_key_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("platform_config_key.id"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("override_value", sa.Text(), nullable=True),
        sa.Column("changed_by_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("change_note", sa.Text(), nullable=True),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cleared_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "facility_id",
            "config_key_id",
            "version",
            name="uq_facility_config_override_version",
        ),
    )
    op.create_index(
        "ix_facility_config_override_chain",
        "facility_config_override",
        ["facility_id", "config_key_id", sa.text("version DESC"), sa.text("effective_at DESC")],
    )

    op.create_table(
        "config_audit_log",
        _uuid_pk(),
        sa.Column("config_key", sa.String(100), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(20), nullable=False, server_default="SET"),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("version_before", sa.Integer(), nullable=True),
        sa.Column("version_after", sa.Integer(), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("change_note", sa.Text(), nullable=True),
        sa.Column("actor_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor_name", sa.String(255), nullable=False),
        sa.Column("actor_roles", postgresql.ARRAY(sa.Text()), nullable=False, server_default="{}"),
        sa.Column("request_id", sa.String(100), nullable=True),
        sa.Column("ip_address", sa.String(50), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint("scope IN ('PLATFORM', 'FACILITY')", name="ck_config_audit_log_scope"),
        sa.CheckConstraint(
            "(scope = 'PLATFORM' AND facility_id IS NULL) OR (scope = 'FACILITY' AND facility_id IS NOT NULL)",
            name="ck_config_audit_log_scope_facility",
        ),
    )
    op.create_index("ix_config_audit_log_config_key", "config_audit_log", ["config_key"])
    op.create_index("ix_config_audit_log_facility_id", "config_audit_log", ["facility_id"])
    op.create_index("ix_config_audit_log_actor_user_id", "config_audit_log", ["actor_user_id"])
    op.create_index("ix_config_audit_log_created_at", "config_audit_log", ["created_at"])

    op.create_table(
        "phi_access_audit_log",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_roles", postgresql.ARRAY(sa.Text()), nullable=False),
        sa.Column("facility_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "organization_ids",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("case_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("phi_classification", sa.String(20), nullable=False),
        sa.Column("access_purpose", sa.String(20), nullable=False),
        sa.Column("outcome", sa.String(10), nullable=False),
        sa.Column("denial_reason", sa.String(255), nullable=True),
        sa.Column("request_id", sa.String(100), nullable=True),
        sa.Column("endpoint", sa.String(255), nullable=True),
        sa.Column("http_method", sa.String(10), nullable=True),
        sa.Column("is_emergency", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("emergency_justification", sa.Text(), nullable=True),
        sa.Column("breach_context", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "phi_classification IN ('PHI_CLINICAL', 'PHI_BILLING', 'PHI_AUDIT')",
            name="ck_phi_access_audit_log_classification",
        ),
        sa.CheckConstraint(
            "access_purpose IN ('CLINICAL_CARE', 'SCHEDULING', 'BILLING', 'AUDIT', 'EMERGENCY')",
            name="ck_phi_access_audit_log_purpose",
        ),
        sa.CheckConstraint("outcome IN ('ALLOWED', 'DENIED')", name="ck_phi_access_audit_log_outcome"),
    )
    op.create_index("ix_phi_access_audit_log_user_id", "phi_access_audit_log", ["user_id"])
    op.create_index("ix_phi_access_audit_log_facility_id", "phi_access_audit_log", ["facility_id"])
    op.create_index("ix_phi_access_audit_log_case_id", "phi_access_audit_log", ["case_id"])
    op.create_index("ix_phi_access_audit_log_created_at", "phi_access_audit_log", ["created_at"])
    op.create_index(
        "ix_phi_access_audit_log_facility_user_time",
        "phi_access_audit_log",
        ["facility_id", "user_id", "created_at"],
    )
    op.create_index(
        "ix_phi_access_audit_log_denied",
        "phi_access_audit_log",
        ["facility_id", "user_id", "created_at"],
        postgresql_where=sa.text("outcome = 'DENIED'"),
    )

    op.create_table(
        "phi_export_audit_log",
        _uuid_pk(),
        sa.Column(
            "phi_access_log_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("phi_access_audit_log.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("export_format", sa.String(10), nullable=False),
        sa.Column("export_row_count", sa.Integer(), nullable=False),
        _created_at(),
        sa.CheckConstraint("export_format IN ('csv', 'xlsx', 'json')", name="ck_phi_export_audit_log_format"),
    )

    key_table = sa.table(
        "platform_config_key",
        sa.column("key", sa.String),
        sa.column("value_type", sa.String),
        sa.column("default_value", sa.Text),
        sa.column("display_name", sa.String),
        sa.column("description", sa.Text),
        sa.column("category", sa.String),
        sa.column("risk_class", sa.String),
        sa.column("is_sensitive", sa.Boolean),
        sa.column("allow_facility_override", sa.Boolean),
    )
    op.bulk_insert(key_table, _SEEDED_KEYS)


def downgrade() -> None:
    op.drop_table("phi_export_audit_log")
    op.drop_table("phi_access_audit_log")
    op.drop_table("config_audit_log")
    op.drop_table("facility_config_override")
    op.drop_table("platform_config_value")
    op.drop_table("platform_config_key")
