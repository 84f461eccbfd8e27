"""Tests for the maintenance sweeper and its scheduler."""

import threading
from datetime import datetime, timedelta, timezone

from vigil.config import VigilConfig
from vigil.engine import SecurityEngine
from vigil.maintenance.scheduler import MaintenanceScheduler, next_run_after
from vigil.maintenance.sweeper import one_year_before
from vigil.security.audit_log import AuditEntry
from vigil.security.models import RiskLevel, ThreatAssessment


def _fill_windows(engine, user_prefix, n):
    for i in range(n):
        engine.rate_limiter.check_and_consume(f"{user_prefix}-{i}", "user_reads", "default")


# ---------------------------------------------------------------------------
# Rate-limit purge
# ---------------------------------------------------------------------------


def test_purge_rate_limits_removes_idle_windows(engine, clock):
    _fill_windows(engine, "idle", 3)
    clock.advance(hours=24, seconds=1)
    _fill_windows(engine, "active", 2)

    assert engine.sweeper.purge_rate_limits() == 3
    assert sorted(engine.rate_limit_store.keys()) == ["active-0/user_reads", "active-1/user_reads"]
    assert engine.sweeper.purge_rate_limits() == 0


def test_purge_rate_limits_is_paginated(engine, clock):
    _fill_windows(engine, "idle", 5)
    clock.advance(days=2)
    assert engine.sweeper.purge_rate_limits(limit=2) == 2
    assert engine.sweeper.purge_rate_limits(limit=2) == 2
    assert engine.sweeper.purge_rate_limits(limit=2) == 1
    assert len(engine.rate_limit_store) == 0


def test_window_touched_at_24h_survives(engine, clock):
    _fill_windows(engine, "u", 1)
    clock.advance(hours=24)
    assert engine.sweeper.purge_rate_limits() == 0


# ---------------------------------------------------------------------------
# Audit retention
# ---------------------------------------------------------------------------


def test_one_year_before_handles_leap_day():
    leap = datetime(2028, 2, 29, 12, 0, tzinfo=timezone.utc)
    assert one_year_before(leap) == datetime(2027, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_purge_audit_log_boundary_and_idempotence(engine, clock):
    cutoff = one_year_before(clock())
    engine.audit.log_event("u1", "read", "jobs", "old", timestamp=cutoff - timedelta(seconds=1))
    engine.audit.log_event("u1", "read", "jobs", "edge", timestamp=cutoff)
    engine.audit.log_event("u1", "read", "jobs", "new")

    assert engine.sweeper.purge_audit_log() == 1
    assert engine.sweeper.purge_audit_log() == 0
    assert sorted(e.resource_id for e in engine.audit.get_events()) == ["edge", "new"]


def test_purge_audit_log_pages(engine, clock):
    old = clock() - timedelta(days=400)
    for i in range(5):
        engine.audit.log_event("u1", "read", "jobs", f"r{i}", timestamp=old)
    assert engine.sweeper.purge_audit_log(limit=2) == 2
    assert engine.audit.count() == 3


def test_purge_violation_events_keeps_user_records(engine, clock):
    now = clock()
    clock.set(now - timedelta(days=400))
    engine.violations.record_violation("u1", "rate_limit")
    clock.set(now)
    engine.violations.record_violation("u1", "rate_limit")

    assert engine.sweeper.purge_violation_events() == 1
    assert engine.sweeper.purge_violation_events() == 0
    assert engine.violations.get_violations("u1").count == 2
    assert len(engine.violations.entries_between(now - timedelta(days=500), now + timedelta(seconds=1))) == 1


def test_audit_purge_does_not_block_current_appends(engine, clock):
    old = clock() - timedelta(days=400)
    engine.audit.log_event("u1", "read", "jobs", "old", timestamp=old)
    log = engine.audit._log
    appended = threading.Event()

    def append_now():
        engine.audit.log_event("u1", "read", "jobs", "live")
        appended.set()

    # hold the lock a purge of the old day would take
    with log._locked_day(old.astimezone(timezone.utc).date()):
        worker = threading.Thread(target=append_now)
        worker.start()
        assert appended.wait(timeout=5)
        worker.join()

    assert engine.sweeper.purge_audit_log() == 1
    assert [e.resource_id for e in engine.audit.get_events()] == ["live"]


# ---------------------------------------------------------------------------
# Daily report
# ---------------------------------------------------------------------------


def test_daily_report_covers_prior_local_day(engine, clock):
    today = clock()
    # 2026-03-10 13:00 Amsterdam
    clock.set(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
    engine.responder.respond("a", ThreatAssessment("a", ["rapidFire"], RiskLevel.high, clock().isoformat()))
    engine.violations.record_violation("b", "rate_limit")
    # 2026-03-11 00:30 Amsterdam is already "today"
    clock.set(datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc))
    engine.responder.respond("c", ThreatAssessment("c", ["bsnAccess"], RiskLevel.critical, clock().isoformat()))
    clock.set(today)

    report = engine.sweeper.daily_report()

    assert report.date == "2026-03-10"
    assert report.threats_detected == 1
    assert report.threats_by_type == {"rapidFire": 1}
    assert report.threats_by_severity == {"high": 1}
    assert report.violations_recorded == 2
    assert report.violations_by_type == {"suspicious_activity": 1, "rate_limit": 1}
    assert report.violations_by_severity == {"low": 2}
    assert engine.sweeper.get_report("2026-03-10") == report
    assert len(engine.compliance.snapshots()) == 4


def test_daily_report_counts_violations_trimmed_from_history(tmp_path, clock):
    config = VigilConfig.for_directory(tmp_path / "vigil")
    config.store.violation_history_limit = 3
    engine = SecurityEngine(config, clock=clock)
    today = clock()
    clock.set(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
    for _ in range(8):
        engine.violations.record_violation("heavy", "rate_limit")
    clock.set(today)
    for _ in range(4):
        engine.violations.record_violation("heavy", "rate_limit")

    assert len(engine.violations.get_violations("heavy").history) == 3
    report = engine.sweeper.daily_report()
    assert report.violations_recorded == 8
    assert report.violations_by_severity == {"low": 2, "medium": 3, "high": 3}


def test_daily_report_raises_certificate_alerts_once_per_day(engine, clock):
    engine.certificates.record(
        "c1",
        {"userId": "g1", "status": "verified", "expirationDate": (clock() + timedelta(days=29)).isoformat()},
    )
    assert engine.sweeper.daily_report().certificate_alerts == 1
    assert engine.sweeper.daily_report().certificate_alerts == 0
    clock.advance(days=1)
    assert engine.sweeper.daily_report().certificate_alerts == 1


# ---------------------------------------------------------------------------
# Full sweep
# ---------------------------------------------------------------------------


def test_run_all_isolates_job_failures(engine, clock, monkeypatch):
    _fill_windows(engine, "idle", 2)
    clock.advance(days=2)

    def broken(limit=None):
        raise OSError("disk full")

    monkeypatch.setattr(engine.sweeper, "purge_audit_log", broken)
    summary = engine.sweeper.run_all()

    assert summary.failed_jobs == ["purge_audit_log"]
    assert summary.rate_limits_removed == 2
    assert summary.report is not None
    assert not summary.cancelled


def test_run_all_drains_pages(engine, clock):
    engine.config.retention.rate_limit_page_size = 2
    _fill_windows(engine, "idle", 5)
    clock.advance(days=2)
    assert engine.sweeper.run_all().rate_limits_removed == 5


def test_cancelled_sweep_stops_between_pages(engine):
    cancel = threading.Event()
    cancel.set()
    summary = engine.sweeper.run_all(cancel)
    assert summary.cancelled
    assert summary.report is None


def test_audit_log_only_removed_by_retention():
    """Nothing but the retention sweep may delete audit entries."""
    from pathlib import Path

    root = Path(__file__).resolve().parents[1] / "vigil"
    callers = sorted(
        str(p.relative_to(root))
        for p in root.rglob("*.py")
        if "audit.purge_before(" in p.read_text()
    )
    assert callers == ["maintenance/sweeper.py"]
    assert not any(name in vars(AuditEntry) for name in ("update", "delete"))


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


def test_next_run_is_two_am_amsterdam():
    # 10:00 local -> tomorrow 02:00 CET (01:00 UTC)
    after_two = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)
    assert next_run_after(after_two).astimezone(timezone.utc) == datetime(2026, 3, 12, 1, 0, tzinfo=timezone.utc)
    # 01:30 local -> today 02:00
    before_two = datetime(2026, 3, 11, 0, 30, tzinfo=timezone.utc)
    assert next_run_after(before_two).astimezone(timezone.utc) == datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)
    # Summer time: 02:00 CEST is 00:00 UTC
    summer = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)
    assert next_run_after(summer).astimezone(timezone.utc) == datetime(2026, 7, 2, 0, 0, tzinfo=timezone.utc)


def test_scheduler_start_and_stop(engine):
    scheduler = MaintenanceScheduler(engine.sweeper)
    scheduler.start()
    assert scheduler.running
    scheduler.stop()
    assert not scheduler.running


def test_scheduler_run_once(engine):
    summary = engine.scheduler().run_once()
    assert summary.failed_jobs == []
    assert engine.scheduler().next_run() > engine.clock()
