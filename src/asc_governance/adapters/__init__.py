"""Adapters — persistence for the governance core.

Contains:
- config_repository.py    — Configuration Registry chains and config audit log
- audit_wall.py           — Append-only PHI access log and export sub-log
- analytics_repository.py — Access-log projections for sessions and denial buckets
- retention_repository.py — Case lifecycle and access-history lookups
"""

__all__: list[str] = []
