"""Tests for the daily-partitioned event log and its retention purge."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vigil.store.events import EventLog

T0 = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


def _ts(offset: timedelta) -> str:
    return (T0 + offset).isoformat()


def test_append_requires_timestamp():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        with pytest.raises(ValueError):
            log.append({"id": "x"})


def test_records_land_in_daily_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        log.append({"id": "a", "timestamp": _ts(timedelta(0))})
        log.append({"id": "b", "timestamp": _ts(timedelta(days=1))})
        files = sorted(p.name for p in Path(tmpdir).glob("*.jsonl"))
        assert files == ["2026-03-11.jsonl", "2026-03-12.jsonl"]


def test_query_newest_first_with_range_and_limit():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        for i in range(5):
            log.append({"id": str(i), "timestamp": _ts(timedelta(hours=i))})

        ids = [r["id"] for r in log.query()]
        assert ids == ["4", "3", "2", "1", "0"]

        ranged = log.query(since=T0 + timedelta(hours=1), until=T0 + timedelta(hours=3))
        assert [r["id"] for r in ranged] == ["2", "1"]

        assert [r["id"] for r in log.query(limit=2)] == ["4", "3"]
        odd = log.query(lambda r: int(r["id"]) % 2 == 1)
        assert [r["id"] for r in odd] == ["3", "1"]


def test_purge_keeps_entries_at_cutoff():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        log.append({"id": "old", "timestamp": _ts(-timedelta(seconds=1))})
        log.append({"id": "edge", "timestamp": _ts(timedelta(0))})
        log.append({"id": "new", "timestamp": _ts(timedelta(seconds=1))})

        assert log.purge_before(T0, limit=100) == 1
        assert sorted(r["id"] for r in log.iter_records()) == ["edge", "new"]


def test_purge_is_paginated_and_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        for i in range(7):
            log.append({"id": str(i), "timestamp": _ts(-timedelta(days=10, hours=i))})
        log.append({"id": "keep", "timestamp": _ts(timedelta(0))})

        assert log.purge_before(T0, limit=3) == 3
        assert log.purge_before(T0, limit=3) == 3
        assert log.purge_before(T0, limit=3) == 1
        assert log.purge_before(T0, limit=3) == 0
        assert [r["id"] for r in log.iter_records()] == ["keep"]


def test_purge_removes_emptied_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = EventLog(tmpdir)
        log.append({"id": "old", "timestamp": _ts(-timedelta(days=400))})
        log.purge_before(T0, limit=10)
        assert list(Path(tmpdir).glob("*.jsonl")) == []
