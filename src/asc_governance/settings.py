"""Process settings for the access governance core.

These are deployment-level settings (database connection, logging, cache TTL).
They are NOT the tenant-governed runtime configuration; that lives in the
Configuration Registry (see core/services.py ConfigRegistryService) and is
resolved per facility at query time.

Environment variable prefix: ASC_GOVERNANCE_
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for asc-governance-core.

    Environment variable prefix: ASC_GOVERNANCE_
    """

    service_name: str = "asc-governance-core"

    # -------------------------------------------------------------------------
    # Relational store
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="postgresql+asyncpg://postgres@localhost:5432/asc",
        description="SQLAlchemy async URL for the shared relational store.",
    )
    db_pool_size: int = Field(
        default=10,
        description="Connection pool size.",
    )
    db_max_overflow: int = Field(
        default=5,
        description="Max overflow connections above db_pool_size.",
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection before raising an error.",
    )
    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements. Keep off in production: audit queries must not log values.",
    )

    # -------------------------------------------------------------------------
    # Configuration Registry
    # -------------------------------------------------------------------------

    config_cache_ttl_seconds: float = Field(
        default=60.0,
        description="TTL for process-local effective-config cache entries. "
        "Other instances may observe up to this much staleness after a write.",
    )

    # -------------------------------------------------------------------------
    # PHI access audit
    # -------------------------------------------------------------------------

    denial_log_max_attempts: int = Field(
        default=3,
        description="Attempts for the synchronous DENIED access-log write before a hard failure.",
    )
    denial_log_retry_max_wait_seconds: float = Field(
        default=1.0,
        description="Upper bound for the exponential wait between denial-log write attempts.",
    )
    breach_hash_salt: SecretStr = Field(
        default=SecretStr("phi-breach-default-salt"),
        description="HMAC key for hashing client IP / user agent into breach_context.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(
        default="INFO",
        description="Root log level.",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines. Disable for local console output.",
    )

    model_config = SettingsConfigDict(env_prefix="ASC_GOVERNANCE_")
