"""Component wiring.

:class:`SecurityEngine` builds every component from one
:class:`~vigil.config.VigilConfig` so that they share stores, clock and
limits. State is laid out under the configured storage root::

    <base_dir>/
        rate_limits/            one window record per (user, operation)
        security_violations/    one violation record per user
        violation_events/       daily JSONL violation journal
        security_audit/         daily JSONL audit files
        threat_monitoring/      daily JSONL threat files
        auth/                   users and API keys
        certificates/           certificate index, revocations, alerts
        gdpr_requests/          data-subject request decisions
        compliance_monitoring/  one snapshot per compliance type
        security_reports/       one report per day
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from vigil.auth.models import Role, User
from vigil.auth.permissions import require_role
from vigil.auth.store import UserStore
from vigil.compliance.checks import ComplianceMonitor
from vigil.compliance.gdpr import GdprDecision, GdprRequestLog
from vigil.config import VigilConfig, load_config
from vigil.errors import AuthenticationError, PermissionDeniedError
from vigil.maintenance.scheduler import MaintenanceScheduler
from vigil.maintenance.sweeper import MaintenanceSweeper
from vigil.security.audit_log import AuditLogger
from vigil.security.certificates import CertificateRegistry, CertificateValidator
from vigil.security.monitor import SecurityMonitor
from vigil.security.rate_limiter import RateLimiter
from vigil.security.response import ResponseCoordinator, ThreatLog
from vigil.security.threat_detector import ThreatDetector
from vigil.security.violations import ViolationTracker
from vigil.store.events import EventLog
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)

# Users with this many rate-limit offenders or more need attention
RATE_LIMIT_WARNING_THRESHOLD = 10


@dataclass
class AssessmentCheck:
    count: int
    status: str  # passed | warning


@dataclass
class SecurityAssessment:
    """Result of a manual, admin-triggered security assessment."""

    timestamp: str
    checks: dict[str, AssessmentCheck] = field(default_factory=dict)
    overall_status: str = "secure"  # secure | attention_required


class SecurityEngine:
    """All engine components built from one configuration."""

    def __init__(self, config: Optional[VigilConfig] = None, clock: Clock = utc_now) -> None:
        self.config = config or VigilConfig()
        self.clock = clock
        base = self.config.store.base_dir
        attempts = self.config.store.max_attempts

        self.audit = AuditLogger(base / "security_audit", clock=clock)
        self.violations = ViolationTracker(
            KeyedRecordStore(base / "security_violations", max_attempts=attempts),
            EventLog(base / "violation_events"),
            history_limit=self.config.store.violation_history_limit,
            clock=clock,
        )
        self.rate_limit_store = KeyedRecordStore(base / "rate_limits", max_attempts=attempts)
        self.rate_limiter = RateLimiter(
            self.rate_limit_store, self.violations, self.config.limits, clock=clock
        )
        self.users = UserStore(base / "auth", max_attempts=attempts, clock=clock)
        self.threats = ThreatLog(base / "threat_monitoring")
        self.detector = ThreatDetector(
            self.audit, self.config.detector, self.config.timezone, clock=clock
        )
        self.responder = ResponseCoordinator(
            self.threats, self.violations, self.users, self.audit, clock=clock
        )
        self.certificates = CertificateRegistry(base / "certificates", max_attempts=attempts)
        self.certificate_validator = CertificateValidator(
            self.certificates, self.violations, clock=clock
        )
        self.monitor = SecurityMonitor(
            self.detector,
            self.responder,
            self.audit,
            certificates=self.certificate_validator,
            certificate_collection=self.config.detector.certificate_collection,
            fail_open=self.config.monitoring_fail_open,
        )
        self.gdpr = GdprRequestLog(base / "gdpr_requests", max_attempts=attempts, clock=clock)
        self.compliance = ComplianceMonitor(
            base / "compliance_monitoring",
            self.gdpr,
            self.certificates,
            self.threats,
            max_attempts=attempts,
            clock=clock,
        )
        self.sweeper = MaintenanceSweeper(
            self.rate_limit_store,
            self.audit,
            self.threats,
            self.violations,
            self.certificates,
            self.compliance,
            base / "security_reports",
            retention=self.config.retention,
            tz_name=self.config.timezone,
            clock=clock,
        )

    @classmethod
    def from_config(cls, path: Optional[str] = None, clock: Clock = utc_now) -> SecurityEngine:
        """Build an engine from a YAML file (or ``VIGIL_CONFIG``, or defaults)."""
        return cls(load_config(path), clock=clock)

    def scheduler(self) -> MaintenanceScheduler:
        retention = self.config.retention
        return MaintenanceScheduler(
            self.sweeper,
            hour=retention.maintenance_hour,
            minute=retention.maintenance_minute,
            tz_name=self.config.timezone,
            clock=self.clock,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def authenticate(self, raw_key: Optional[str]) -> User:
        """Resolve an API key to an active account.

        Raises :class:`AuthenticationError` for a missing or unknown key and
        :class:`PermissionDeniedError` for a suspended account.
        """
        user = self.users.validate_api_key(raw_key) if raw_key else None
        if user is None:
            raise AuthenticationError("Not authenticated")
        if user.suspended:
            raise PermissionDeniedError("Account suspended")
        return user

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def perform_security_assessment(self) -> SecurityAssessment:
        """Count unresolved serious threats and rate-limit offenders."""
        active = self.threats.query(blocked=False, severities={"high", "critical"})
        offenders = [
            r for r in self.violations.list_records() if r.type_counts.get("rate_limit", 0) > 0
        ]
        checks = {
            "active_threats": AssessmentCheck(
                count=len(active), status="passed" if not active else "warning"
            ),
            "rate_limit_violations": AssessmentCheck(
                count=len(offenders),
                status="passed" if len(offenders) < RATE_LIMIT_WARNING_THRESHOLD else "warning",
            ),
        }
        warnings = [c for c in checks.values() if c.status == "warning"]
        return SecurityAssessment(
            timestamp=utc_iso(self.clock()),
            checks=checks,
            overall_status="attention_required" if warnings else "secure",
        )

    def trigger_security_assessment(self, user: Optional[User]) -> SecurityAssessment:
        """Admin-only assessment; the run itself is audited."""
        if user is None:
            raise AuthenticationError("Authentication required")
        require_role(user, Role.admin)
        logger.info("Manual security assessment triggered by admin %s", user.id)
        results = self.perform_security_assessment()
        self.audit.log_event(
            user.id,
            "manual_security_assessment",
            "system",
            "global",
            metadata={"results": asdict(results)},
        )
        return results

    # ------------------------------------------------------------------
    # Data-subject requests
    # ------------------------------------------------------------------

    def complete_gdpr_request(self, request_id: str, actor_id: str) -> Optional[GdprDecision]:
        """Mark an accepted request as answered and audit who closed it.

        Returns ``None`` for unknown or rejected requests.
        """
        decision = self.gdpr.complete(request_id)
        if decision is None:
            return None
        logger.info("GDPR request %s completed by %s", request_id, actor_id)
        self.audit.log_event(
            actor_id,
            "gdpr_request_completed",
            "gdpr_requests",
            request_id,
            metadata={"subject": decision.user_id},
        )
        return decision
