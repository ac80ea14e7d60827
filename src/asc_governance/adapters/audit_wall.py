"""Audit Wall — append-only persistence for the PHI access log.

Every access decision, allowed or denied, becomes one PhiAccessAuditLogEntry.
Rows are never updated or deleted: this module exposes no mutation other than
append() and append_export(). In production the database role used here
should hold only INSERT and SELECT grants on phi_access_audit_log and
phi_export_audit_log.

Each append opens and commits its own transaction, so a fire-and-forget write
scheduled by a request remains valid after that request has finished.

Key exports:
- PhiAccessAuditRepository — append-only writes, facility-scoped reads, grouped stats
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asc_governance.core.models import PhiAccessAuditLogEntry, PhiExportAuditLogEntry
from asc_governance.core.schemas import PhiAccessFilters
from asc_governance.core.timeutil import day_bounds
from asc_governance.errors import NotFoundError
from asc_governance.observability import get_logger

logger = get_logger(__name__)


def _in_range(
    stmt: Select[Any],
    start: datetime | None,
    end: datetime | None,
) -> Select[Any]:
    if start is not None:
        stmt = stmt.where(PhiAccessAuditLogEntry.created_at >= start)
    if end is not None:
        stmt = stmt.where(PhiAccessAuditLogEntry.created_at < end)
    return stmt


class PhiAccessAuditRepository:
    """Append-only repository for PhiAccessAuditLogEntry.

    IMPORTANT: there is no update() or delete() on this class. The access
    log is immutable once committed.

    Args:
        session_factory: Factory used to open one transaction per append.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        entry_id: uuid.UUID,
        values: dict[str, Any],
    ) -> uuid.UUID:
        """Insert one access row and commit.

        The insert is idempotent on ``entry_id``: retrying a write whose
        commit succeeded but whose acknowledgement was lost is a no-op.

        Args:
            entry_id: Client-generated row id, stable across retries.
            values: Column values for the row (see PhiAccessAuditLogEntry).

        Returns:
            The row id.
        """
        stmt = (
            pg_insert(PhiAccessAuditLogEntry)
            .values(id=entry_id, **values)
            .on_conflict_do_nothing(index_elements=[PhiAccessAuditLogEntry.id])
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)

        logger.debug(
            "PHI access logged",
            entry_id=str(entry_id),
            facility_id=str(values.get("facility_id")),
            outcome=values.get("outcome"),
        )
        return entry_id

    async def append_export(
        self,
        phi_access_log_id: uuid.UUID,
        export_format: str,
        export_row_count: int,
    ) -> None:
        """Insert the export record for an access row. At most one per access row."""
        async with self._session_factory() as session, session.begin():
            session.add(
                PhiExportAuditLogEntry(
                    phi_access_log_id=phi_access_log_id,
                    export_format=export_format,
                    export_row_count=export_row_count,
                )
            )
            await session.flush()

    async def query(
        self,
        filters: PhiAccessFilters,
    ) -> tuple[list[PhiAccessAuditLogEntry], int]:
        """Query the access log. The facility predicate is always applied.

        Args:
            filters: Facility scope, optional column filters, inclusive day
                range and paging.

        Returns:
            Tuple of (page of entries newest first, total matching rows).
        """
        stmt = select(PhiAccessAuditLogEntry).where(
            PhiAccessAuditLogEntry.facility_id == filters.facility_id,
        )

        if filters.user_id is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.user_id == filters.user_id)
        if filters.case_id is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.case_id == filters.case_id)
        if filters.phi_classification is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.phi_classification == str(filters.phi_classification))
        if filters.access_purpose is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.access_purpose == str(filters.access_purpose))
        if filters.outcome is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.outcome == str(filters.outcome))
        if filters.is_emergency is not None:
            stmt = stmt.where(PhiAccessAuditLogEntry.is_emergency == filters.is_emergency)
        stmt = _in_range(stmt, *day_bounds(filters.start_date, filters.end_date))

        count_stmt = select(func.count()).select_from(stmt.subquery())
        page_stmt = (
            stmt.order_by(PhiAccessAuditLogEntry.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )

        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            result = await session.execute(page_stmt)
            return list(result.scalars().all()), total

    async def get_by_id(
        self,
        entry_id: uuid.UUID,
        facility_id: uuid.UUID,
    ) -> PhiAccessAuditLogEntry:
        """Retrieve a single access row within the facility.

        Raises:
            NotFoundError: If not found in this facility.
        """
        stmt = select(PhiAccessAuditLogEntry).where(
            PhiAccessAuditLogEntry.id == entry_id,
            PhiAccessAuditLogEntry.facility_id == facility_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError(resource="PhiAccessAuditLogEntry", resource_id=str(entry_id))
        return entry

    async def get_stats(
        self,
        facility_id: uuid.UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> dict[str, Any]:
        """Grouped aggregates for the facility's access log.

        Args:
            facility_id: Facility scope.
            start: Inclusive lower bound on created_at.
            end: Exclusive upper bound on created_at.

        Returns:
            Dict with total, emergency_count, by_outcome, by_purpose, export_count.
        """
        entry = PhiAccessAuditLogEntry
        scoped = entry.facility_id == facility_id

        totals_stmt = _in_range(
            select(
                func.count().label("total"),
                func.count().filter(entry.is_emergency.is_(True)).label("emergency"),
            ).where(scoped),
            start,
            end,
        )
        outcome_stmt = _in_range(
            select(entry.outcome, func.count()).where(scoped).group_by(entry.outcome),
            start,
            end,
        )
        purpose_stmt = _in_range(
            select(entry.access_purpose, func.count()).where(scoped).group_by(entry.access_purpose),
            start,
            end,
        )
        export_stmt = _in_range(
            select(func.count(PhiExportAuditLogEntry.id))
            .join(entry, PhiExportAuditLogEntry.phi_access_log_id == entry.id)
            .where(scoped),
            start,
            end,
        )

        async with self._session_factory() as session:
            totals = (await session.execute(totals_stmt)).one()
            by_outcome = {row[0]: row[1] for row in (await session.execute(outcome_stmt)).all()}
            by_purpose = {row[0]: row[1] for row in (await session.execute(purpose_stmt)).all()}
            export_count = (await session.execute(export_stmt)).scalar() or 0

        return {
            "total": totals.total or 0,
            "emergency_count": totals.emergency or 0,
            "by_outcome": by_outcome,
            "by_purpose": by_purpose,
            "export_count": export_count,
        }
