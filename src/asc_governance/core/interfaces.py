"""Abstract interfaces (Protocol classes) for the governance core.

Services depend on these protocols, never on concrete adapter
implementations. This enables testing with mock adapters.

Protocols defined:
- IConfigRepository
- IPhiAccessAuditRepository
- IAuditAnalyticsRepository
- IRetentionRepository
"""

import uuid
from datetime import datetime
from typing import Any, Protocol

from asc_governance.core.models import (
    ConfigAuditLogEntry,
    ConfigKey,
    FacilityConfigOverride,
    PhiAccessAuditLogEntry,
    PlatformConfigValue,
    SurgicalCase,
)
from asc_governance.core.schemas import (
    AccessEvent,
    ActorContext,
    DenialBucket,
    PhiAccessFilters,
    SetConfigInput,
)


class IConfigRepository(Protocol):
    """Repository contract for the Configuration Registry tables."""

    async def get_key(self, key: str) -> ConfigKey | None:
        """Return the registry row for a key, or None if unknown."""
        ...

    async def list_keys(self, include_deprecated: bool = False) -> list[ConfigKey]:
        """List registry rows ordered by category then key."""
        ...

    async def get_current_platform_value(
        self,
        config_key_id: uuid.UUID,
        now: datetime,
    ) -> PlatformConfigValue | None:
        """Return the selected platform version (highest version effective at ``now``)."""
        ...

    async def get_current_facility_override(
        self,
        config_key_id: uuid.UUID,
        facility_id: uuid.UUID,
        now: datetime,
    ) -> FacilityConfigOverride | None:
        """Return the selected facility version, which may be a tombstone."""
        ...

    async def write_platform_value(
        self,
        config_key: ConfigKey,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        """Append the next platform version and its audit row in one transaction.

        Returns:
            The new version number.

        Raises:
            VersionConflictError: Another writer claimed the same version.
            TransientStoreError: The transaction failed and was rolled back.
        """
        ...

    async def write_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        """Append the next facility override version and its audit row in one transaction."""
        ...

    async def clear_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        reason: str | None,
        actor: ActorContext,
        now: datetime,
    ) -> int | None:
        """Append a tombstone version and its audit row in one transaction.

        Returns:
            The tombstone version, or None when there was no active override.
        """
        ...

    async def list_audit_log(
        self,
        key: str | None = None,
        facility_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConfigAuditLogEntry]:
        """Query config audit rows, newest first."""
        ...


class IPhiAccessAuditRepository(Protocol):
    """Repository contract for the PHI access log — APPEND-ONLY, no update/delete."""

    async def append(
        self,
        entry_id: uuid.UUID,
        values: dict[str, Any],
    ) -> uuid.UUID:
        """Insert one access row in its own committed transaction."""
        ...

    async def append_export(
        self,
        phi_access_log_id: uuid.UUID,
        export_format: str,
        export_row_count: int,
    ) -> None:
        """Insert the export record linked to an access row."""
        ...

    async def query(
        self,
        filters: PhiAccessFilters,
    ) -> tuple[list[PhiAccessAuditLogEntry], int]:
        """Return one page of facility-scoped rows plus the filtered total."""
        ...

    async def get_by_id(
        self,
        entry_id: uuid.UUID,
        facility_id: uuid.UUID,
    ) -> PhiAccessAuditLogEntry:
        """Return one row scoped to the facility.

        Raises:
            NotFoundError: If the row does not exist in this facility.
        """
        ...

    async def get_stats(
        self,
        facility_id: uuid.UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> dict[str, Any]:
        """Grouped aggregate counts for the facility and range."""
        ...


class IAuditAnalyticsRepository(Protocol):
    """Read-only projections of the access log used by audit analytics."""

    async def list_access_events(
        self,
        facility_id: uuid.UUID,
        user_id: uuid.UUID | None,
        start: datetime | None,
        end: datetime | None,
    ) -> list[AccessEvent]:
        """Return access events ordered by (user_id, created_at)."""
        ...

    async def list_denial_buckets(
        self,
        facility_id: uuid.UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> list[DenialBucket]:
        """Return DENIED counts grouped by (user, clock hour), newest hour first."""
        ...


class IRetentionRepository(Protocol):
    """Read-only access to case lifecycle and access history for retention."""

    async def get_case(self, case_id: uuid.UUID, facility_id: uuid.UUID) -> SurgicalCase | None:
        """Return the case if it exists in the facility."""
        ...

    async def list_cases(
        self,
        facility_id: uuid.UUID,
        terminal_only: bool,
        limit: int | None,
        offset: int,
    ) -> tuple[list[SurgicalCase], int]:
        """Return cases (terminal first, newest schedule first) and the total."""
        ...

    async def get_terminal_transition_times(
        self,
        case_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, datetime]:
        """Latest transition into a terminal status, per case."""
        ...

    async def get_last_access_times(
        self,
        case_ids: list[uuid.UUID],
        facility_id: uuid.UUID,
    ) -> dict[uuid.UUID, datetime]:
        """Latest access-log timestamp referencing each case."""
        ...

    async def count_retention_summary(
        self,
        facility_id: uuid.UUID,
        terminal_cutoff: datetime,
        audit_cutoff: datetime,
    ) -> dict[str, int]:
        """Set-based facility counts for the retention dashboard."""
        ...
