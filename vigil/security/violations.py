"""Per-user violation bookkeeping.

Every violation atomically bumps the user's count, appends to the history
and recomputes severity from the count. Counts are never decremented and
nothing is removed automatically. The history list keeps the most recent
``history_limit`` entries; ``type_counts`` keeps complete per-type totals
so trimmed entries are still summarised.

Every violation is also appended to a daily journal, which the daily report
reads; the journal is complete even for users whose history was trimmed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from vigil.security.models import ViolationEntry, ViolationRecord, severity_for_count
from vigil.store.events import EventLog
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)


class ViolationTracker:
    """Stores one :class:`ViolationRecord` per user."""

    def __init__(
        self,
        store: KeyedRecordStore,
        journal: EventLog,
        history_limit: int = 200,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._journal = journal
        self._history_limit = history_limit
        self._clock = clock

    def record_violation(
        self,
        user_id: str,
        violation_type: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ViolationRecord:
        """Add a violation for *user_id* and return the updated record."""
        entry = ViolationEntry(
            type=violation_type,
            timestamp=utc_iso(self._clock()),
            metadata=dict(metadata or {}),
        )

        def apply(data: Optional[dict]) -> tuple[dict, ViolationRecord]:
            record = ViolationRecord.from_dict(data) if data else ViolationRecord(user_id=user_id)
            record.count += 1
            record.severity = severity_for_count(record.count)
            record.history.append(replace(entry, severity=record.severity.value))
            if len(record.history) > self._history_limit:
                record.history = record.history[-self._history_limit:]
            record.type_counts[violation_type] = record.type_counts.get(violation_type, 0) + 1
            record.updated_at = entry.timestamp
            return record.to_dict(), record

        record = self._store.update(user_id, apply)
        self._journal.append(
            {
                "user_id": user_id,
                "type": violation_type,
                "timestamp": entry.timestamp,
                "severity": record.severity.value,
                "metadata": entry.metadata,
            }
        )
        logger.info(
            "Recorded %s violation for %s (count=%d, severity=%s)",
            violation_type,
            user_id,
            record.count,
            record.severity.value,
        )
        return record

    def get_violations(self, user_id: str) -> ViolationRecord:
        """Return the user's record; users without violations get an empty one."""
        data = self._store.get(user_id)
        if not data:
            return ViolationRecord(user_id=user_id)
        return ViolationRecord.from_dict(data)

    def list_records(self) -> list[ViolationRecord]:
        """Return every user's violation record."""
        return [ViolationRecord.from_dict(r.data) for r in self._store.iter_records()]

    def entries_between(self, since: datetime, until: datetime) -> list[tuple[str, ViolationEntry]]:
        """Return ``(user_id, entry)`` for violations in ``[since, until)``, newest first."""
        return [
            (
                r["user_id"],
                ViolationEntry(
                    type=r["type"],
                    timestamp=r["timestamp"],
                    metadata=r.get("metadata", {}),
                    severity=r.get("severity", ""),
                ),
            )
            for r in self._journal.query(since=since, until=until)
        ]

    def purge_journal_before(self, cutoff: datetime, limit: int) -> int:
        """Drop journal entries older than *cutoff*; the per-user records are untouched."""
        return self._journal.purge_before(cutoff, limit)
