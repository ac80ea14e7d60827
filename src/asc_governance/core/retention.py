"""Retention hold evaluation for surgical cases.

Pure computation. Callers supply the case status, its terminal-transition
time, its last access time and the resolved retention periods. The result is
advisory; nothing here ever deletes data.
"""

import uuid
from datetime import datetime

from asc_governance.core.enums import TERMINAL_CASE_STATUSES, RetentionReason
from asc_governance.core.schemas import RetentionDetail, RetentionPeriods, RetentionStatus
from asc_governance.core.timeutil import add_years, ensure_utc


def is_terminal_status(status: str) -> bool:
    return status in TERMINAL_CASE_STATUSES


def evaluate_retention(
    case_id: uuid.UUID,
    facility_id: uuid.UUID,
    status: str,
    terminal_at: datetime | None,
    last_access_at: datetime | None,
    periods: RetentionPeriods,
    now: datetime,
) -> RetentionStatus:
    """Reduce the independent holds on one case to a purge-eligibility verdict.

    Non-terminal cases short-circuit to an indefinite ACTIVE_CASE hold. For
    terminal cases, billing and clinical windows run from the terminal
    transition and the audit window runs from the last logged access; the
    earliest purge time is the latest of those expiries.

    Args:
        case_id: The surgical case UUID.
        facility_id: Owning facility UUID.
        status: Current lifecycle status of the case.
        terminal_at: Latest transition into a terminal status, or None when
            the history is missing (evaluation time is used instead).
        last_access_at: Latest access-log timestamp referencing the case.
        periods: Resolved retention windows in whole years.
        now: Evaluation time (UTC).

    Returns:
        RetentionStatus with every hold listed in retention_details.
    """
    if not is_terminal_status(status):
        return RetentionStatus(
            entity_id=case_id,
            facility_id=facility_id,
            is_purgeable=False,
            earliest_purge_at=None,
            retention_reasons=[RetentionReason.ACTIVE_CASE],
            retention_details=[
                RetentionDetail(
                    reason=RetentionReason.ACTIVE_CASE,
                    description=f"Case is in non-terminal status {status}",
                    expires_at=None,
                )
            ],
            evaluated_at=now,
        )

    terminal_event_missing = terminal_at is None
    terminal_time = now if terminal_at is None else ensure_utc(terminal_at)

    billing_expiry = add_years(terminal_time, periods.billing_years)
    clinical_expiry = add_years(terminal_time, periods.clinical_years)
    audit_expiry = (
        add_years(ensure_utc(last_access_at), periods.audit_years) if last_access_at is not None else None
    )

    earliest_purge_at = max(billing_expiry, clinical_expiry)
    if audit_expiry is not None:
        earliest_purge_at = max(earliest_purge_at, audit_expiry)

    reasons: list[RetentionReason] = []
    details = [
        RetentionDetail(
            reason=RetentionReason.BILLING_HOLD,
            description=f"Billing records retained {periods.billing_years} years after case closure",
            expires_at=billing_expiry,
        )
    ]
    if now < billing_expiry:
        reasons.append(RetentionReason.BILLING_HOLD)

    if audit_expiry is not None:
        details.append(
            RetentionDetail(
                reason=RetentionReason.AUDIT_RETENTION,
                description=f"Access audit trail retained {periods.audit_years} years after last access",
                expires_at=audit_expiry,
            )
        )
        if now < audit_expiry:
            reasons.append(RetentionReason.AUDIT_RETENTION)

    return RetentionStatus(
        entity_id=case_id,
        facility_id=facility_id,
        is_purgeable=now >= earliest_purge_at and not reasons,
        earliest_purge_at=earliest_purge_at,
        retention_reasons=reasons,
        retention_details=details,
        terminal_event_missing=terminal_event_missing,
        evaluated_at=now,
    )
