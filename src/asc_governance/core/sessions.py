"""Session reconstruction and anomaly heuristics over PHI access events.

Pure functions, no I/O. The analytics repository supplies events ordered by
``(user_id, created_at)``; everything here is a single linear pass.

Functions:
- reconstruct_sessions(events, gap_minutes)  — gap-bounded per-user sessions
- suspicious_reasons(...)                    — OR-combined heuristics for one session
- flag_excessive_denials(buckets, threshold) — exclusive-threshold bucket filter
- rank_top_users(sessions, limit)            — users by summed access volume
"""

import uuid
from collections import defaultdict
from collections.abc import Iterable
from datetime import timedelta

from asc_governance.core.enums import OUTSIDE_CLINICAL_WINDOW, AccessOutcome, AccessPurpose
from asc_governance.core.schemas import (
    AccessEvent,
    AuditSession,
    DenialBucket,
    ExcessiveDenialEntry,
    TopUser,
)

REASON_EMERGENCY_OUTSIDE_WINDOW = "Emergency access with OUTSIDE_CLINICAL_WINDOW denial"
REASON_EMERGENCY_WITH_DENIALS = "Emergency access with denied request(s)"
REASON_EMERGENCY_CASE_SPREAD = "More than 5 distinct cases accessed via EMERGENCY in one session"

# Distinct cases reached through EMERGENCY purpose above which a session is flagged.
EMERGENCY_CASE_SPREAD_LIMIT = 5


def suspicious_reasons(
    emergency_count: int,
    denial_count: int,
    has_outside_window_denial: bool,
    emergency_case_count: int,
) -> list[str]:
    """Evaluate every heuristic and return the reasons that fired, in a fixed order."""
    reasons: list[str] = []
    if emergency_count > 0 and has_outside_window_denial:
        reasons.append(REASON_EMERGENCY_OUTSIDE_WINDOW)
    if emergency_count > 0 and denial_count > 0:
        reasons.append(REASON_EMERGENCY_WITH_DENIALS)
    if emergency_case_count > EMERGENCY_CASE_SPREAD_LIMIT:
        reasons.append(REASON_EMERGENCY_CASE_SPREAD)
    return reasons


class _SessionBuilder:
    """Accumulates one session's aggregates while scanning events."""

    def __init__(self, user_id: uuid.UUID, session_index: int, first: AccessEvent) -> None:
        self.user_id = user_id
        self.user_name = first.user_name
        self.session_index = session_index
        self.start = first.created_at
        self.end = first.created_at
        self.access_count = 0
        self.denial_count = 0
        self.emergency_count = 0
        self.outside_window_denial = False
        # dicts keep first-seen order and dedupe
        self.classifications: dict[str, None] = {}
        self.purposes: dict[str, None] = {}
        self.case_ids: dict[uuid.UUID, None] = {}
        self.emergency_case_ids: set[uuid.UUID] = set()

    def add(self, event: AccessEvent) -> None:
        self.end = event.created_at
        self.access_count += 1
        if event.outcome == AccessOutcome.DENIED:
            self.denial_count += 1
            if event.denial_reason == OUTSIDE_CLINICAL_WINDOW:
                self.outside_window_denial = True
        if event.is_emergency or event.access_purpose == AccessPurpose.EMERGENCY:
            self.emergency_count += 1
        self.classifications[str(event.phi_classification)] = None
        self.purposes[str(event.access_purpose)] = None
        if event.case_id is not None:
            self.case_ids[event.case_id] = None
            if event.access_purpose == AccessPurpose.EMERGENCY:
                self.emergency_case_ids.add(event.case_id)

    def build(self) -> AuditSession:
        reasons = suspicious_reasons(
            emergency_count=self.emergency_count,
            denial_count=self.denial_count,
            has_outside_window_denial=self.outside_window_denial,
            emergency_case_count=len(self.emergency_case_ids),
        )
        return AuditSession(
            user_id=self.user_id,
            user_name=self.user_name,
            session_index=self.session_index,
            session_start=self.start,
            session_end=self.end,
            access_count=self.access_count,
            denial_count=self.denial_count,
            emergency_count=self.emergency_count,
            classifications=list(self.classifications),
            purposes=list(self.purposes),
            case_ids=list(self.case_ids),
            is_suspicious=bool(reasons),
            suspicious_reasons=reasons,
        )


def reconstruct_sessions(events: Iterable[AccessEvent], gap_minutes: float) -> list[AuditSession]:
    """Partition access events into gap-bounded sessions.

    A boundary is placed before an event when it is the user's first event or
    when the gap to that user's previous event is at least ``gap_minutes``.

    Args:
        events: Access events ordered by (user_id, created_at).
        gap_minutes: Maximum inactivity inside one session.

    Returns:
        Sessions in input order (per user, chronological).
    """
    max_gap = timedelta(minutes=gap_minutes)
    sessions: list[AuditSession] = []
    current: _SessionBuilder | None = None

    for event in events:
        if current is None or current.user_id != event.user_id:
            if current is not None:
                sessions.append(current.build())
            current = _SessionBuilder(event.user_id, 1, event)
        elif event.created_at - current.end >= max_gap:
            sessions.append(current.build())
            current = _SessionBuilder(event.user_id, current.session_index + 1, event)
        current.add(event)

    if current is not None:
        sessions.append(current.build())
    return sessions


def paginate_sessions(
    sessions: list[AuditSession],
    only_suspicious: bool,
    limit: int,
    offset: int,
) -> tuple[list[AuditSession], int]:
    """Filter, sort most-recent-first, count, then slice.

    The total is taken over the filtered set before slicing so page and total
    always agree.
    """
    selected = [s for s in sessions if s.is_suspicious] if only_suspicious else list(sessions)
    selected.sort(key=lambda s: s.session_start, reverse=True)
    return selected[offset : offset + limit], len(selected)


def flag_excessive_denials(
    buckets: Iterable[DenialBucket],
    threshold: int,
    limit: int,
) -> list[ExcessiveDenialEntry]:
    """Keep buckets whose denial count is strictly greater than ``threshold``."""
    flagged = [
        ExcessiveDenialEntry(
            user_id=bucket.user_id,
            user_name=bucket.user_name,
            hour_bucket=bucket.hour_bucket,
            denial_count=bucket.denial_count,
            denial_reasons=bucket.denial_reasons,
            threshold=threshold,
        )
        for bucket in buckets
        if bucket.denial_count > threshold
    ]
    flagged.sort(key=lambda entry: entry.hour_bucket, reverse=True)
    return flagged[:limit]


def rank_top_users(sessions: Iterable[AuditSession], limit: int = 5) -> list[TopUser]:
    """Sum access counts per user across sessions and rank descending."""
    totals: dict[uuid.UUID, int] = defaultdict(int)
    names: dict[uuid.UUID, str] = {}
    for session in sessions:
        totals[session.user_id] += session.access_count
        names.setdefault(session.user_id, session.user_name)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        TopUser(user_id=user_id, user_name=names[user_id], access_count=count)
        for user_id, count in ranked[:limit]
    ]
