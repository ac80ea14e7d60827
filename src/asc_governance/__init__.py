"""Access governance core for multi-tenant surgery-center operations.

Configuration Registry, PHI Access Audit Log, Audit Analytics and Retention
Evaluator. Use ``asc_governance.bootstrap.init_governance`` to wire them.
"""

__version__ = "0.1.0"
