"""Configuration Registry persistence.

Every write is one transaction: read the chain's highest version, insert
version+1, insert the ConfigAuditLogEntry, commit. There is no row lock; the
unique constraints on ``(config_key_id, version)`` and
``(facility_id, config_key_id, version)`` make a racing writer fail with
VersionConflictError instead of forking the chain.

Key exports:
- ConfigRepository — registry reads, chain selection, versioned writes, audit log
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asc_governance.core.enums import ConfigAuditAction, ConfigScope
from asc_governance.core.models import (
    ConfigAuditLogEntry,
    ConfigKey,
    FacilityConfigOverride,
    PlatformConfigValue,
)
from asc_governance.core.schemas import ActorContext, SetConfigInput
from asc_governance.errors import TransientStoreError, VersionConflictError
from asc_governance.observability import get_logger

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Unique constraints that guard the next version of a chain.
VERSION_CONSTRAINTS = frozenset({"uq_platform_config_value_version", "uq_facility_config_override_version"})


def _violated_constraint(exc: IntegrityError) -> str | None:
    """Name of the constraint behind an IntegrityError, if the driver reports one.

    asyncpg exposes ``constraint_name`` on the error chained under the DBAPI
    adapter; otherwise the name is looked up in the server message.
    """
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return str(name)
    message = str(exc.orig)
    for name in VERSION_CONSTRAINTS:
        if name in message:
            return name
    return None


@contextmanager
def _store_errors(key: str, scope: ConfigScope) -> Iterator[None]:
    """Translate driver errors raised by a rolled-back write transaction."""
    try:
        yield
    except IntegrityError as exc:
        constraint = _violated_constraint(exc)
        if constraint not in VERSION_CONSTRAINTS:
            logger.error(
                "Config write violated a constraint",
                key=key,
                scope=str(scope),
                constraint=constraint,
                error=str(exc.orig),
            )
            raise TransientStoreError(
                f"Config write for {key} was rejected by the store and rolled back",
                details={"key": key, "scope": str(scope), "constraint": constraint},
            ) from exc
        logger.warning("Config version conflict", key=key, scope=str(scope), constraint=constraint)
        raise VersionConflictError(
            f"Concurrent write claimed the next version of {key}",
            details={"key": key, "scope": str(scope)},
        ) from exc
    except DBAPIError as exc:
        logger.error("Config write rolled back", key=key, scope=str(scope), error=str(exc.orig))
        raise TransientStoreError(
            f"Config write for {key} failed and was rolled back",
            details={"key": key, "scope": str(scope)},
        ) from exc


def _audit_entry(
    config_key: ConfigKey,
    scope: ConfigScope,
    facility_id: uuid.UUID | None,
    action: ConfigAuditAction,
    old_value: str | None,
    new_value: str | None,
    version_before: int | None,
    version_after: int,
    reason: str | None,
    note: str | None,
    actor: ActorContext,
) -> ConfigAuditLogEntry:
    return ConfigAuditLogEntry(
        config_key=config_key.key,
        scope=str(scope),
        facility_id=facility_id,
        action=str(action),
        old_value=REDACTED if config_key.is_sensitive else old_value,
        new_value=REDACTED if config_key.is_sensitive else new_value,
        version_before=version_before,
        version_after=version_after,
        change_reason=reason,
        change_note=note,
        actor_user_id=actor.user_id,
        actor_name=actor.name,
        actor_roles=list(actor.roles),
        request_id=actor.request_id,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )


class ConfigRepository:
    """Repository for the registry, both version chains and the config audit log.

    Args:
        session_factory: Factory used to open one unit of work per call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    async def get_key(self, key: str) -> ConfigKey | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ConfigKey).where(ConfigKey.key == key))
            return result.scalar_one_or_none()

    async def list_keys(self, include_deprecated: bool = False) -> list[ConfigKey]:
        stmt = select(ConfigKey)
        if not include_deprecated:
            stmt = stmt.where(ConfigKey.deprecated_at.is_(None))
        stmt = stmt.order_by(ConfigKey.category, ConfigKey.key)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Chain selection
    # -------------------------------------------------------------------------

    async def get_current_platform_value(
        self,
        config_key_id: uuid.UUID,
        now: datetime,
    ) -> PlatformConfigValue | None:
        """Highest version already in effect, ties broken by latest effective_at."""
        stmt = (
            select(PlatformConfigValue)
            .where(
                PlatformConfigValue.config_key_id == config_key_id,
                PlatformConfigValue.effective_at <= now,
            )
            .order_by(PlatformConfigValue.version.desc(), PlatformConfigValue.effective_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_current_facility_override(
        self,
        config_key_id: uuid.UUID,
        facility_id: uuid.UUID,
        now: datetime,
    ) -> FacilityConfigOverride | None:
        """Selected row of the facility chain. May be a tombstone (cleared_at set)."""
        stmt = (
            select(FacilityConfigOverride)
            .where(
                FacilityConfigOverride.config_key_id == config_key_id,
                FacilityConfigOverride.facility_id == facility_id,
                FacilityConfigOverride.effective_at <= now,
            )
            .order_by(FacilityConfigOverride.version.desc(), FacilityConfigOverride.effective_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Versioned writes
    # -------------------------------------------------------------------------

    async def write_platform_value(
        self,
        config_key: ConfigKey,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        """Append the next platform version and its audit row atomically.

        Args:
            config_key: The validated registry row.
            data: New value, reason, note and optional effective time.
            actor: Identity recorded on the version and audit rows.
            now: Write time; also the default effective time.

        Returns:
            The new version number.

        Raises:
            VersionConflictError: Another writer inserted the same version first.
            TransientStoreError: Any other store failure; nothing was written.
        """
        with _store_errors(config_key.key, ConfigScope.PLATFORM):
            async with self._session_factory() as session, session.begin():
                latest = (
                    await session.execute(
                        select(PlatformConfigValue)
                        .where(PlatformConfigValue.config_key_id == config_key.id)
                        .order_by(PlatformConfigValue.version.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                version_before = latest.version if latest is not None else None
                version = (version_before or 0) + 1

                session.add(
                    PlatformConfigValue(
                        config_key_id=config_key.id,
                        version=version,
                        value=data.value,
                        changed_by_user_id=actor.user_id,
                        change_reason=data.reason,
                        change_note=data.note,
                        effective_at=data.effective_at or now,
                    )
                )
                session.add(
                    _audit_entry(
                        config_key=config_key,
                        scope=ConfigScope.PLATFORM,
                        facility_id=None,
                        action=ConfigAuditAction.SET,
                        old_value=latest.value if latest is not None else None,
                        new_value=data.value,
                        version_before=version_before,
                        version_after=version,
                        reason=data.reason,
                        note=data.note,
                        actor=actor,
                    )
                )
                await session.flush()

        logger.info(
            "Platform config version written",
            key=config_key.key,
            version=version,
            actor_user_id=str(actor.user_id),
        )
        return version

    async def write_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        """Append the next facility override version and its audit row atomically.

        Raises:
            VersionConflictError: Another writer inserted the same version first.
            TransientStoreError: Any other store failure; nothing was written.
        """
        with _store_errors(config_key.key, ConfigScope.FACILITY):
            async with self._session_factory() as session, session.begin():
                latest = await self._latest_override(session, config_key.id, facility_id)
                version_before = latest.version if latest is not None else None
                version = (version_before or 0) + 1
                old_value = latest.override_value if latest is not None and latest.cleared_at is None else None

                session.add(
                    FacilityConfigOverride(
                        facility_id=facility_id,
                        config_key_id=config_key.id,
                        version=version,
                        override_value=data.value,
                        changed_by_user_id=actor.user_id,
                        change_reason=data.reason,
                        change_note=data.note,
                        effective_at=data.effective_at or now,
                    )
                )
                session.add(
                    _audit_entry(
                        config_key=config_key,
                        scope=ConfigScope.FACILITY,
                        facility_id=facility_id,
                        action=ConfigAuditAction.SET,
                        old_value=old_value,
                        new_value=data.value,
                        version_before=version_before,
                        version_after=version,
                        reason=data.reason,
                        note=data.note,
                        actor=actor,
                    )
                )
                await session.flush()

        logger.info(
            "Facility config override written",
            key=config_key.key,
            facility_id=str(facility_id),
            version=version,
            actor_user_id=str(actor.user_id),
        )
        return version

    async def clear_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        reason: str | None,
        actor: ActorContext,
        now: datetime,
    ) -> int | None:
        """Append a tombstone version so the facility falls back to the platform value.

        Returns:
            The tombstone version, or None when the chain is empty or already
            cleared (nothing is written in that case).
        """
        with _store_errors(config_key.key, ConfigScope.FACILITY):
            async with self._session_factory() as session, session.begin():
                latest = await self._latest_override(session, config_key.id, facility_id)
                if latest is None or latest.cleared_at is not None:
                    return None
                version = latest.version + 1

                session.add(
                    FacilityConfigOverride(
                        facility_id=facility_id,
                        config_key_id=config_key.id,
                        version=version,
                        override_value=None,
                        changed_by_user_id=actor.user_id,
                        change_reason=reason,
                        effective_at=now,
                        cleared_at=now,
                        cleared_by_user_id=actor.user_id,
                    )
                )
                session.add(
                    _audit_entry(
                        config_key=config_key,
                        scope=ConfigScope.FACILITY,
                        facility_id=facility_id,
                        action=ConfigAuditAction.CLEAR,
                        old_value=latest.override_value,
                        new_value=None,
                        version_before=latest.version,
                        version_after=version,
                        reason=reason,
                        note=None,
                        actor=actor,
                    )
                )
                await session.flush()

        logger.info(
            "Facility config override cleared",
            key=config_key.key,
            facility_id=str(facility_id),
            version=version,
            actor_user_id=str(actor.user_id),
        )
        return version

    @staticmethod
    async def _latest_override(
        session: AsyncSession,
        config_key_id: uuid.UUID,
        facility_id: uuid.UUID,
    ) -> FacilityConfigOverride | None:
        result = await session.execute(
            select(FacilityConfigOverride)
            .where(
                FacilityConfigOverride.config_key_id == config_key_id,
                FacilityConfigOverride.facility_id == facility_id,
            )
            .order_by(FacilityConfigOverride.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Config audit log (read-only)
    # -------------------------------------------------------------------------

    async def list_audit_log(
        self,
        key: str | None = None,
        facility_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConfigAuditLogEntry]:
        """Config audit rows, newest first, optionally filtered by key and facility."""
        stmt = select(ConfigAuditLogEntry)
        if key is not None:
            stmt = stmt.where(ConfigAuditLogEntry.config_key == key)
        if facility_id is not None:
            stmt = stmt.where(ConfigAuditLogEntry.facility_id == facility_id)
        stmt = stmt.order_by(ConfigAuditLogEntry.created_at.desc()).offset(offset).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
