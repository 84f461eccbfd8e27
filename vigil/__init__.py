"""Vigil: security monitoring and rate-limiting engine.

Guards a multi-tenant marketplace backend with per-user rate limits,
progressive violation penalties, heuristic threat detection over an
append-only audit log, and scheduled retention maintenance.
"""

__version__ = "0.1.0"
