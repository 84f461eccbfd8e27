"""Append-only security audit log.

Provides file-based JSON audit logging with filtering, export, and query
capabilities. Events are stored under ``<VIGIL_HOME>/security_audit/`` as
one newline-delimited JSON file per UTC day.

Entries are never updated. The only removal path is
:meth:`AuditLogger.purge_before`, which belongs to the retention sweep.
"""

from __future__ import annotations

import csv
import io
import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from vigil.store.events import EventLog
from vigil.utils.clock import Clock, parse_timestamp, utc_iso, utc_now

SCHEMA_VERSION = "2.0"


@dataclass(frozen=True)
class AuditEntry:
    """A single, immutable audit log entry."""

    id: str
    timestamp: str
    user_id: str
    action: str
    resource_type: str
    resource_id: str
    risk_level: str = "low"
    metadata: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    schema_version: str = SCHEMA_VERSION

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditEntry:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})


class AuditLogger:
    """File-based JSON audit logger."""

    def __init__(self, base_dir: Optional[Path] = None, clock: Clock = utc_now) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".vigil" / "security_audit"
        self._log = EventLog(self._base_dir)
        self._clock = clock

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Persist *entry*. Entries are immutable once written."""
        self._log.append(asdict(entry))
        return entry

    def log_event(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        *,
        risk_level: str = "low",
        metadata: Optional[dict[str, Any]] = None,
        success: bool = True,
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        """Record an audit event and return the created entry."""
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=utc_iso(timestamp or self._clock()),
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            risk_level=getattr(risk_level, "value", risk_level),
            metadata=metadata or {},
            success=success,
        )
        return self.append(entry)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recent_for_user(
        self, user_id: str, window: timedelta, limit: int, now: Optional[datetime] = None
    ) -> list[AuditEntry]:
        """Return the user's newest entries within the trailing *window*.

        This is a snapshot read; appends racing with it may or may not be
        included.
        """
        now = now or self._clock()
        records = self._log.query(
            lambda r: r.get("user_id") == user_id,
            since=now - window,
            limit=limit,
        )
        return [AuditEntry.from_dict(r) for r in records]

    def get_events(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""

        def matches(r: dict[str, Any]) -> bool:
            if user_id and r.get("user_id") != user_id:
                return False
            if action and r.get("action") != action:
                return False
            if resource_type and r.get("resource_type") != resource_type:
                return False
            return True

        records = self._log.query(
            matches,
            since=parse_timestamp(start_date) if start_date else None,
            until=parse_timestamp(end_date) if end_date else None,
            limit=limit,
        )
        return [AuditEntry.from_dict(r) for r in records]

    def get_events_for_resource(
        self, resource_type: str, resource_id: str
    ) -> list[AuditEntry]:
        """Return all events for a specific resource."""
        records = self._log.query(
            lambda r: r.get("resource_type") == resource_type
            and r.get("resource_id") == resource_id
        )
        return [AuditEntry.from_dict(r) for r in records]

    def count(self) -> int:
        return self._log.count()

    def export_events(
        self,
        fmt: str = "json",
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 10000,
    ) -> str:
        """Export audit events in the specified format (``json`` or ``csv``)."""
        entries = self.get_events(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )

        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(
                ["id", "timestamp", "user_id", "action", "resource_type",
                 "resource_id", "risk_level", "success"]
            )
            for e in entries:
                writer.writerow(
                    [e.id, e.timestamp, e.user_id, e.action, e.resource_type,
                     e.resource_id, e.risk_level, e.success]
                )
            return buf.getvalue()

        return json.dumps([asdict(e) for e in entries], indent=2)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_before(self, cutoff: datetime, limit: int) -> int:
        """Delete up to *limit* entries older than *cutoff*. Retention sweep only."""
        return self._log.purge_before(cutoff, limit)
