"""Daily maintenance jobs.

Three independent jobs, each paginated and idempotent:

1. :meth:`MaintenanceSweeper.purge_rate_limits` -- drop rate-limit windows
   idle for more than 24 hours.
2. :meth:`MaintenanceSweeper.purge_audit_log` -- enforce the one-year audit
   retention. :meth:`MaintenanceSweeper.purge_violation_events` applies the
   same retention to the violation journal.
3. :meth:`MaintenanceSweeper.daily_report` -- summarise the prior day's
   threats and violations, raise certificate expiry alerts and refresh the
   compliance snapshots.

A single job call handles at most one page. :meth:`MaintenanceSweeper.run_all`
keeps calling the purges page by page until they run dry or the sweep is
cancelled; whatever is left is picked up by the next run.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from vigil.compliance.checks import ComplianceMonitor
from vigil.config import DEFAULT_TIMEZONE, RetentionConfig
from vigil.security.audit_log import AuditLogger
from vigil.security.certificates import CertificateRegistry, build_expiration_alert
from vigil.security.models import RateLimitWindow
from vigil.security.response import ThreatLog
from vigil.security.violations import ViolationTracker
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, to_local, utc_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SecurityReport:
    """Threat and violation totals for one local calendar day."""

    date: str
    threats_detected: int = 0
    violations_recorded: int = 0
    threats_by_type: dict[str, int] = field(default_factory=dict)
    threats_by_severity: dict[str, int] = field(default_factory=dict)
    violations_by_type: dict[str, int] = field(default_factory=dict)
    violations_by_severity: dict[str, int] = field(default_factory=dict)
    certificate_alerts: int = 0
    generated_at: str = ""


@dataclass
class SweepSummary:
    """What one :meth:`MaintenanceSweeper.run_all` call did."""

    rate_limits_removed: int = 0
    audit_entries_removed: int = 0
    violation_events_removed: int = 0
    report: Optional[SecurityReport] = None
    failed_jobs: list[str] = field(default_factory=list)
    cancelled: bool = False


def one_year_before(moment: datetime, years: int = 1) -> datetime:
    """Same wall-clock instant *years* calendar years earlier (29 Feb -> 28 Feb)."""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)


class MaintenanceSweeper:
    """Retention purges and the daily security report."""

    def __init__(
        self,
        rate_limits: KeyedRecordStore,
        audit: AuditLogger,
        threats: ThreatLog,
        violations: ViolationTracker,
        certificates: CertificateRegistry,
        compliance: ComplianceMonitor,
        reports_dir: Path,
        retention: Optional[RetentionConfig] = None,
        tz_name: str = DEFAULT_TIMEZONE,
        clock: Clock = utc_now,
    ) -> None:
        self._rate_limits = rate_limits
        self._audit = audit
        self._threats = threats
        self._violations = violations
        self._certificates = certificates
        self._compliance = compliance
        self._reports = KeyedRecordStore(reports_dir)
        self._retention = retention or RetentionConfig()
        self._tz_name = tz_name
        self._clock = clock

    # ------------------------------------------------------------------
    # Purges
    # ------------------------------------------------------------------

    def purge_rate_limits(self, limit: Optional[int] = None) -> int:
        """Delete up to *limit* windows whose last request is older than the TTL.

        Each delete is conditional on the version read, so a window touched
        by a live request in the meantime survives. The version check and the
        unlink run under the record store's commit lock for that key, held
        for one file operation and never across pages.
        """
        limit = limit or self._retention.rate_limit_page_size
        cutoff = self._clock().timestamp() - self._retention.rate_limit_ttl_seconds
        removed = 0
        for record in self._rate_limits.iter_records():
            if removed >= limit:
                break
            window = RateLimitWindow.from_dict(record.data)
            if window.last_request < cutoff and self._rate_limits.delete_if_version(
                record.key, record.version
            ):
                removed += 1
        logger.info("Cleaned up %d expired rate limit records", removed)
        return removed

    def purge_audit_log(self, limit: Optional[int] = None) -> int:
        """Delete up to *limit* audit entries older than the retention period."""
        limit = limit or self._retention.audit_page_size
        cutoff = one_year_before(self._clock(), self._retention.audit_retention_years)
        removed = self._audit.purge_before(cutoff, limit)
        logger.info("Cleaned up %d old audit log records", removed)
        return removed

    def purge_violation_events(self, limit: Optional[int] = None) -> int:
        """Delete up to *limit* violation journal entries past the audit retention."""
        limit = limit or self._retention.audit_page_size
        cutoff = one_year_before(self._clock(), self._retention.audit_retention_years)
        removed = self._violations.purge_journal_before(cutoff, limit)
        logger.info("Cleaned up %d old violation journal records", removed)
        return removed

    # ------------------------------------------------------------------
    # Daily report
    # ------------------------------------------------------------------

    def _prior_day(self) -> tuple[datetime, datetime]:
        today = to_local(self._clock(), self._tz_name).date()
        tz = ZoneInfo(self._tz_name)
        start = datetime.combine(today - timedelta(days=1), time.min, tzinfo=tz)
        end = datetime.combine(today, time.min, tzinfo=tz)
        return start, end

    def check_certificate_expirations(self) -> int:
        """Raise an alert for each verified certificate expiring soon. Returns new alerts."""
        now = self._clock()
        horizon = now + timedelta(days=self._retention.certificate_warning_days)
        expiring = self._certificates.expiring(horizon)
        raised = sum(
            1 for cert in expiring if self._certificates.raise_alert(build_expiration_alert(cert, now))
        )
        logger.info("Found %d expiring certificates (%d new alerts)", len(expiring), raised)
        return raised

    def daily_report(self) -> SecurityReport:
        """Build and store the report for the prior local calendar day.

        Re-running on the same day overwrites that day's report.
        """
        start, end = self._prior_day()
        threats = self._threats.query(since=start, until=end)

        violations = [entry for _user, entry in self._violations.entries_between(start, end)]

        report = SecurityReport(
            date=start.date().isoformat(),
            threats_detected=len(threats),
            violations_recorded=len(violations),
            threats_by_type=dict(Counter(t.threat_type for t in threats)),
            threats_by_severity=dict(Counter(t.severity for t in threats)),
            violations_by_type=dict(Counter(v.type for v in violations)),
            violations_by_severity=dict(Counter(v.severity or "unknown" for v in violations)),
            certificate_alerts=self.check_certificate_expirations(),
            generated_at=utc_iso(self._clock()),
        )
        self._compliance.refresh()

        payload = asdict(report)
        self._reports.update(report.date, lambda _current: (payload, None))
        logger.info(
            "Daily security report for %s: %d threats, %d violations",
            report.date,
            report.threats_detected,
            report.violations_recorded,
        )
        return report

    def get_report(self, day: str) -> Optional[SecurityReport]:
        data = self._reports.get(day)
        return SecurityReport(**data) if data else None

    # ------------------------------------------------------------------
    # Full sweep
    # ------------------------------------------------------------------

    def _drain(self, job: Callable[[], int], page_size: int, cancel: threading.Event) -> int:
        total = 0
        while not cancel.is_set():
            removed = job()
            total += removed
            if removed < page_size:
                break
        return total

    def run_all(self, cancel: Optional[threading.Event] = None) -> SweepSummary:
        """Run every job once. A failing job is logged and the others still run."""
        cancel = cancel or threading.Event()
        summary = SweepSummary()
        logger.info("Starting daily security maintenance")

        jobs = (
            ("purge_rate_limits", self._retention.rate_limit_page_size, self.purge_rate_limits),
            ("purge_audit_log", self._retention.audit_page_size, self.purge_audit_log),
            ("purge_violation_events", self._retention.audit_page_size, self.purge_violation_events),
        )
        for name, page_size, job in jobs:
            try:
                removed = self._drain(job, page_size, cancel)
            except Exception:
                logger.exception("Maintenance job %s failed", name)
                summary.failed_jobs.append(name)
                continue
            if name == "purge_rate_limits":
                summary.rate_limits_removed = removed
            elif name == "purge_audit_log":
                summary.audit_entries_removed = removed
            else:
                summary.violation_events_removed = removed

        if not cancel.is_set():
            try:
                summary.report = self.daily_report()
            except Exception:
                logger.exception("Maintenance job daily_report failed")
                summary.failed_jobs.append("daily_report")

        summary.cancelled = cancel.is_set()
        logger.info(
            "Daily security maintenance finished (failed=%s, cancelled=%s)",
            ",".join(summary.failed_jobs) or "none",
            summary.cancelled,
        )
        return summary
