"""Governance core entry point.

Wires the shared relational store, the repositories and the four services:
- ConfigRegistryService
- PhiAuditService
- AuditAnalyticsService
- RetentionService

Request handlers call ``init_governance()`` once at startup (for example in
their framework's lifespan hook) and ``GovernanceCore.close()`` at shutdown.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asc_governance.adapters.analytics_repository import AuditAnalyticsRepository
from asc_governance.adapters.audit_wall import PhiAccessAuditRepository
from asc_governance.adapters.config_repository import ConfigRepository
from asc_governance.adapters.retention_repository import RetentionRepository
from asc_governance.core.config_cache import EffectiveConfigCache
from asc_governance.core.services import (
    AuditAnalyticsService,
    ConfigRegistryService,
    PhiAuditService,
    RetentionService,
)
from asc_governance.database import close_database, init_database
from asc_governance.observability import configure_logging, get_logger
from asc_governance.settings import Settings

logger = get_logger(__name__)


@dataclass
class GovernanceCore:
    """The wired services sharing one session factory and one config cache."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    config: ConfigRegistryService
    phi_audit: PhiAuditService
    analytics: AuditAnalyticsService
    retention: RetentionService

    async def close(self) -> None:
        """Flush pending ALLOWED access-log writes, then dispose the engine."""
        pending = self.phi_audit.pending_writes
        logger.info("Shutting down governance core", pending_audit_writes=pending)
        await self.phi_audit.drain()
        await close_database()
        logger.info("Governance core shutdown complete")


def build_governance(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> GovernanceCore:
    """Construct repositories and services over an existing session factory."""
    config_service = ConfigRegistryService(
        config_repo=ConfigRepository(session_factory),
        cache=EffectiveConfigCache(ttl_seconds=settings.config_cache_ttl_seconds),
    )
    phi_audit = PhiAuditService(
        audit_repo=PhiAccessAuditRepository(session_factory),
        breach_hash_salt=settings.breach_hash_salt.get_secret_value(),
        denial_max_attempts=settings.denial_log_max_attempts,
        denial_retry_max_wait=settings.denial_log_retry_max_wait_seconds,
    )
    analytics = AuditAnalyticsService(
        analytics_repo=AuditAnalyticsRepository(session_factory),
        config_service=config_service,
    )
    retention = RetentionService(
        retention_repo=RetentionRepository(session_factory),
        config_service=config_service,
    )
    return GovernanceCore(
        settings=settings,
        session_factory=session_factory,
        config=config_service,
        phi_audit=phi_audit,
        analytics=analytics,
        retention=retention,
    )


def init_governance(settings: Settings | None = None) -> GovernanceCore:
    """Configure logging, open the database engine and wire the services.

    Args:
        settings: Process settings; read from the environment when omitted.

    Returns:
        The ready-to-use GovernanceCore.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level, settings.log_json)

    logger.info("Initializing governance core", service=settings.service_name)
    session_factory = init_database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        echo=settings.db_echo,
    )
    core = build_governance(settings, session_factory)
    logger.info(
        "Governance core startup complete",
        config_cache_ttl_seconds=settings.config_cache_ttl_seconds,
        denial_log_max_attempts=settings.denial_log_max_attempts,
    )
    return core
