"""Tests for the append-only audit log."""

import csv
import dataclasses
import io
import json
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from vigil.security.audit_log import SCHEMA_VERSION, AuditLogger

T0 = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)


def _logger(tmpdir: str) -> AuditLogger:
    return AuditLogger(tmpdir, clock=lambda: T0)


def test_log_event_fills_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        entry = _logger(tmpdir).log_event("u1", "create", "jobs", "job-1")
        assert entry.timestamp == T0.isoformat()
        assert entry.risk_level == "low"
        assert entry.schema_version == SCHEMA_VERSION == "2.0"
        assert entry.success


def test_entries_are_immutable():
    with tempfile.TemporaryDirectory() as tmpdir:
        entry = _logger(tmpdir).log_event("u1", "create", "jobs", "job-1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.action = "delete"


def test_filters():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = _logger(tmpdir)
        log.log_event("u1", "create", "jobs", "j1")
        log.log_event("u1", "read", "certificates", "c1")
        log.log_event("u2", "read", "jobs", "j2", timestamp=T0 - timedelta(days=2))

        assert len(log.get_events()) == 3
        assert [e.resource_id for e in log.get_events(user_id="u1", action="read")] == ["c1"]
        assert [e.resource_id for e in log.get_events(resource_type="jobs")] == ["j1", "j2"]
        recent = log.get_events(start_date=(T0 - timedelta(days=1)).isoformat())
        assert {e.resource_id for e in recent} == {"j1", "c1"}
        assert [e.user_id for e in log.get_events_for_resource("jobs", "j2")] == ["u2"]


def test_recent_for_user_limits_window_and_size():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = _logger(tmpdir)
        log.log_event("u1", "read", "jobs", "stale", timestamp=T0 - timedelta(hours=1, seconds=1))
        for i in range(5):
            log.log_event("u1", "read", "jobs", f"j{i}", timestamp=T0 - timedelta(minutes=i))
        log.log_event("u2", "read", "jobs", "other")

        window = log.recent_for_user("u1", timedelta(hours=1), limit=3)
        assert [e.resource_id for e in window] == ["j0", "j1", "j2"]
        assert len(log.recent_for_user("u1", timedelta(hours=1), limit=100)) == 5


def test_export_json_and_csv():
    with tempfile.TemporaryDirectory() as tmpdir:
        log = _logger(tmpdir)
        log.log_event("u1", "create", "jobs", "j1", risk_level="high", metadata={"data_size": 12})

        exported = json.loads(log.export_events("json"))
        assert exported[0]["metadata"] == {"data_size": 12}

        rows = list(csv.DictReader(io.StringIO(log.export_events("csv"))))
        assert rows[0]["resource_id"] == "j1"
        assert rows[0]["risk_level"] == "high"
