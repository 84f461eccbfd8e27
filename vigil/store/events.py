"""Append-only event log stored as newline-delimited JSON.

Records are written to one file per UTC day (``YYYY-MM-DD.jsonl``), picked
from the record's own ``timestamp``. Time-range reads only open the files
that can contain matching records.

Writers lock only the day file they touch, with a thread lock plus an OS
file lock under ``.locks/``. Live appends land in the current day's file and
retention only rewrites files at least a year old, so a purge never waits
on, or blocks, the request path.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from vigil.store.locking import file_lock
from vigil.utils.clock import parse_timestamp

Record = dict[str, Any]


class EventLog:
    """Daily-partitioned JSONL log. Records must carry a ``timestamp``."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._locks_dir = self._base / ".locks"
        self._locks_dir.mkdir(exist_ok=True)
        self._registry_lock = threading.Lock()
        self._day_locks: dict[date, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _file_for_day(self, day: date) -> Path:
        return self._base / f"{day.strftime('%Y-%m-%d')}.jsonl"

    @contextmanager
    def _locked_day(self, day: date) -> Iterator[None]:
        with self._registry_lock:
            lock = self._day_locks.setdefault(day, threading.Lock())
        with lock, file_lock(self._locks_dir / f"{day.isoformat()}.lock"):
            yield

    def _day_files(self) -> list[tuple[date, Path]]:
        files = []
        for path in self._base.glob("*.jsonl"):
            try:
                day = date.fromisoformat(path.stem)
            except ValueError:
                continue
            files.append((day, path))
        files.sort()
        return files

    @staticmethod
    def _read_file(path: Path) -> list[Record]:
        records: list[Record] = []
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return records
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return records

    @staticmethod
    def _timestamp_of(record: Record) -> Optional[datetime]:
        try:
            return parse_timestamp(record["timestamp"])
        except (KeyError, TypeError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, record: Record) -> Record:
        """Append *record* to the file of its timestamp's day."""
        ts = self._timestamp_of(record)
        if ts is None:
            raise ValueError("record needs an ISO-8601 'timestamp'")
        line = json.dumps(record, default=str) + "\n"
        day = ts.astimezone(timezone.utc).date()
        path = self._file_for_day(day)
        with self._locked_day(day):
            with path.open("a", encoding="utf-8") as fh:
                fh.write(line)
        return record

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def iter_records(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Iterator[Record]:
        """Yield records with ``since <= timestamp < until``, oldest file first."""
        for day, path in self._day_files():
            if since is not None and day < since.astimezone(timezone.utc).date():
                continue
            if until is not None and day > until.astimezone(timezone.utc).date():
                break
            for record in self._read_file(path):
                ts = self._timestamp_of(record)
                if ts is None:
                    continue
                if since is not None and ts < since:
                    continue
                if until is not None and ts >= until:
                    continue
                yield record

    def query(
        self,
        predicate: Optional[Callable[[Record], bool]] = None,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        """Return matching records, newest first."""
        records = [
            r for r in self.iter_records(since, until) if predicate is None or predicate(r)
        ]
        records.sort(key=lambda r: parse_timestamp(r["timestamp"]), reverse=True)
        if limit is not None:
            records = records[:limit]
        return records

    def count(self) -> int:
        return sum(1 for _ in self.iter_records())

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_before(self, cutoff: datetime, limit: int) -> int:
        """Delete at most *limit* records older than *cutoff*.

        Records at or after *cutoff* are kept. Files are processed oldest
        first, so repeated runs make progress and a run with nothing left
        to delete is a no-op. Returns the number of records removed.
        """
        removed = 0
        cutoff_day = cutoff.astimezone(timezone.utc).date()
        for day, path in self._day_files():
            if removed >= limit or day > cutoff_day:
                break
            with self._locked_day(day):
                try:
                    lines = path.read_text(encoding="utf-8").splitlines()
                except FileNotFoundError:
                    continue
                kept: list[str] = []
                dropped = 0
                for line in lines:
                    if not line.strip():
                        continue
                    try:
                        ts = self._timestamp_of(json.loads(line))
                    except json.JSONDecodeError:
                        ts = None
                    if ts is not None and ts < cutoff and removed + dropped < limit:
                        dropped += 1
                        continue
                    kept.append(line)
                if not dropped:
                    continue
                if kept:
                    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
                    tmp.write_text("\n".join(kept) + "\n", encoding="utf-8")
                    os.replace(tmp, path)
                else:
                    path.unlink(missing_ok=True)
                removed += dropped
        return removed
