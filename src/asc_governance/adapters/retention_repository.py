"""Read-only lifecycle and access-history queries for retention evaluation.

The surgical case tables belong to the scheduling application; this module
only reads them. All lookups that feed per-case evaluation are bulk (one
query per list of case ids) so paginated eligibility never issues one query
per case.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asc_governance.core.enums import TERMINAL_CASE_STATUSES
from asc_governance.core.models import PhiAccessAuditLogEntry, SurgicalCase, SurgicalCaseStatusEvent

_TERMINAL = sorted(TERMINAL_CASE_STATUSES)


class RetentionRepository:
    """Queries over surgical cases, their status history and access log references.

    Args:
        session_factory: Factory used to open one read session per call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_case(self, case_id: uuid.UUID, facility_id: uuid.UUID) -> SurgicalCase | None:
        stmt = select(SurgicalCase).where(
            SurgicalCase.id == case_id,
            SurgicalCase.facility_id == facility_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_cases(
        self,
        facility_id: uuid.UUID,
        terminal_only: bool,
        limit: int | None,
        offset: int,
    ) -> tuple[list[SurgicalCase], int]:
        """List facility cases, newest scheduled date first.

        Args:
            facility_id: Facility scope.
            terminal_only: Restrict to COMPLETED/CANCELLED cases.
            limit: Page size, or None for all rows.
            offset: Rows to skip.

        Returns:
            Tuple of (cases, total matching cases).
        """
        stmt = select(SurgicalCase).where(SurgicalCase.facility_id == facility_id)
        if terminal_only:
            stmt = stmt.where(SurgicalCase.status.in_(_TERMINAL))

        count_stmt = select(func.count()).select_from(stmt.subquery())
        page_stmt = stmt.order_by(SurgicalCase.scheduled_date.desc().nulls_last(), SurgicalCase.id).offset(offset)
        if limit is not None:
            page_stmt = page_stmt.limit(limit)

        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            result = await session.execute(page_stmt)
            return list(result.scalars().all()), total

    async def get_terminal_transition_times(
        self,
        case_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, datetime]:
        """Latest transition into a terminal status for each case that has one."""
        if not case_ids:
            return {}
        event = SurgicalCaseStatusEvent
        stmt = (
            select(event.surgical_case_id, func.max(event.created_at))
            .where(event.surgical_case_id.in_(case_ids), event.to_status.in_(_TERMINAL))
            .group_by(event.surgical_case_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0]: row[1] for row in result.all()}

    async def get_last_access_times(
        self,
        case_ids: list[uuid.UUID],
        facility_id: uuid.UUID,
    ) -> dict[uuid.UUID, datetime]:
        """Latest access-log timestamp for each case that has been accessed."""
        if not case_ids:
            return {}
        entry = PhiAccessAuditLogEntry
        stmt = (
            select(entry.case_id, func.max(entry.created_at))
            .where(entry.facility_id == facility_id, entry.case_id.in_(case_ids))
            .group_by(entry.case_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0]: row[1] for row in result.all()}

    async def count_retention_summary(
        self,
        facility_id: uuid.UUID,
        terminal_cutoff: datetime,
        audit_cutoff: datetime,
    ) -> dict[str, int]:
        """Set-based retention counts for one facility.

        A terminal case is past its billing/clinical hold when its terminal
        transition happened at or before ``terminal_cutoff``; it is still held
        for audit when it was accessed after ``audit_cutoff``. Terminal cases
        without a terminal transition count as held.

        Returns:
            Dict with total, active, terminal, past_hold, audit_hold, missing_terminal_event.
        """
        event = SurgicalCaseStatusEvent
        entry = PhiAccessAuditLogEntry

        terminal_at = (
            select(
                event.surgical_case_id.label("case_id"),
                func.max(event.created_at).label("terminal_at"),
            )
            .where(event.to_status.in_(_TERMINAL))
            .group_by(event.surgical_case_id)
            .subquery()
        )
        last_access = (
            select(
                entry.case_id.label("case_id"),
                func.max(entry.created_at).label("last_access_at"),
            )
            .where(entry.facility_id == facility_id, entry.case_id.is_not(None))
            .group_by(entry.case_id)
            .subquery()
        )

        is_terminal = SurgicalCase.status.in_(_TERMINAL)
        past_hold = is_terminal & (terminal_at.c.terminal_at <= terminal_cutoff)

        stmt = (
            select(
                func.count().label("total"),
                func.count().filter(~is_terminal).label("active"),
                func.count().filter(is_terminal).label("terminal"),
                func.count().filter(past_hold).label("past_hold"),
                func.count().filter(past_hold & (last_access.c.last_access_at > audit_cutoff)).label("audit_hold"),
                func.count().filter(is_terminal & terminal_at.c.terminal_at.is_(None)).label("missing_terminal_event"),
            )
            .select_from(SurgicalCase)
            .outerjoin(terminal_at, terminal_at.c.case_id == SurgicalCase.id)
            .outerjoin(last_access, last_access.c.case_id == SurgicalCase.id)
            .where(SurgicalCase.facility_id == facility_id)
        )

        async with self._session_factory() as session:
            row = (await session.execute(stmt)).one()

        return {
            "total": row.total or 0,
            "active": row.active or 0,
            "terminal": row.terminal or 0,
            "past_hold": row.past_hold or 0,
            "audit_hold": row.audit_hold or 0,
            "missing_terminal_event": row.missing_terminal_event or 0,
        }
