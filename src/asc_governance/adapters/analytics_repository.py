"""Read-only analytics projections over the PHI access log.

Provides the ordered event stream consumed by session reconstruction and the
grouped per-(user, hour) denial counts consumed by excessive-denial detection.
Both are facility-scoped by predicate. Display names come from a LEFT JOIN on
the read-only app_user table and fall back to "Unknown".
"""

import uuid
from datetime import datetime

from sqlalchemy import ColumnElement, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asc_governance.core.enums import AccessOutcome
from asc_governance.core.models import AppUser, PhiAccessAuditLogEntry
from asc_governance.core.schemas import UNKNOWN_USER_NAME, AccessEvent, DenialBucket
from asc_governance.observability import get_logger

logger = get_logger(__name__)


def _user_name_column() -> ColumnElement[str]:
    return func.coalesce(AppUser.name, UNKNOWN_USER_NAME).label("user_name")


class AuditAnalyticsRepository:
    """Analytics queries for audit sessions and denial bursts.

    Args:
        session_factory: Factory used to open one read session per call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_access_events(
        self,
        facility_id: uuid.UUID,
        user_id: uuid.UUID | None,
        start: datetime | None,
        end: datetime | None,
    ) -> list[AccessEvent]:
        """Project access rows needed for sessionization.

        Args:
            facility_id: Facility scope.
            user_id: Optional single-user filter.
            start: Inclusive lower bound on created_at.
            end: Exclusive upper bound on created_at.

        Returns:
            AccessEvent list ordered by (user_id, created_at).
        """
        entry = PhiAccessAuditLogEntry
        stmt = select(
            entry.user_id,
            entry.created_at,
            entry.outcome,
            entry.denial_reason,
            entry.is_emergency,
            entry.phi_classification,
            entry.access_purpose,
            entry.case_id,
            _user_name_column(),
        )
        stmt = stmt.outerjoin_from(entry, AppUser, AppUser.id == entry.user_id).where(
            entry.facility_id == facility_id
        )

        if user_id is not None:
            stmt = stmt.where(entry.user_id == user_id)
        if start is not None:
            stmt = stmt.where(entry.created_at >= start)
        if end is not None:
            stmt = stmt.where(entry.created_at < end)
        stmt = stmt.order_by(entry.user_id, entry.created_at, entry.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.mappings().all()

        logger.debug("Loaded access events for sessionization", facility_id=str(facility_id), count=len(rows))
        return [AccessEvent.model_validate(dict(row)) for row in rows]

    async def list_denial_buckets(
        self,
        facility_id: uuid.UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> list[DenialBucket]:
        """Count DENIED rows per (user, clock hour) with distinct non-null reasons.

        Returns:
            DenialBucket list, newest hour first.
        """
        entry = PhiAccessAuditLogEntry
        hour_bucket = func.date_trunc("hour", entry.created_at).label("hour_bucket")
        reasons = (
            func.array_agg(distinct(entry.denial_reason))
            .filter(entry.denial_reason.is_not(None))
            .label("denial_reasons")
        )

        stmt = select(
            entry.user_id,
            hour_bucket,
            func.count().label("denial_count"),
            reasons,
            _user_name_column(),
        )
        stmt = stmt.outerjoin_from(entry, AppUser, AppUser.id == entry.user_id).where(
            entry.facility_id == facility_id,
            entry.outcome == str(AccessOutcome.DENIED),
        )
        if start is not None:
            stmt = stmt.where(entry.created_at >= start)
        if end is not None:
            stmt = stmt.where(entry.created_at < end)
        stmt = stmt.group_by(entry.user_id, AppUser.name, hour_bucket).order_by(hour_bucket.desc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            DenialBucket(
                user_id=row.user_id,
                user_name=row.user_name,
                hour_bucket=row.hour_bucket,
                denial_count=row.denial_count,
                denial_reasons=list(row.denial_reasons or []),
            )
            for row in rows
        ]
