"""Daily compliance snapshots for GDPR, AVG, WPBR and BTW.

Each check inspects the engine's own records and returns the violations it
found. :meth:`ComplianceMonitor.refresh` runs every check and overwrites one
snapshot per compliance type; a failing check is logged and leaves the
previous snapshot in place.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from vigil.compliance.gdpr import GdprRequestLog
from vigil.security.certificates import CertificateRegistry
from vigil.security.response import ThreatLog
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)

COMPLIANCE_TYPES = ("GDPR", "AVG", "WPBR", "BTW")

# Each violation found adds this much to the 0-100 risk score
RISK_PER_VIOLATION = 10


@dataclass
class ComplianceResult:
    compliant: bool
    violations: list[str] = field(default_factory=list)

    @property
    def risk_score(self) -> int:
        return min(100, RISK_PER_VIOLATION * len(self.violations))


@dataclass
class ComplianceSnapshot:
    """Latest state of one compliance type."""

    compliance_type: str
    status: str  # compliant | violation
    violations: list[str] = field(default_factory=list)
    risk_score: int = 0
    last_check: str = ""
    next_check: str = ""


class ComplianceMonitor:
    """Runs the compliance checks and stores their snapshots."""

    def __init__(
        self,
        base_dir: Path,
        gdpr: GdprRequestLog,
        certificates: CertificateRegistry,
        threats: ThreatLog,
        max_attempts: int = 25,
        clock: Clock = utc_now,
    ) -> None:
        self._snapshots = KeyedRecordStore(base_dir, max_attempts=max_attempts)
        self._gdpr = gdpr
        self._certificates = certificates
        self._threats = threats
        self._clock = clock

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_gdpr(self, now: datetime) -> ComplianceResult:
        """Data-subject requests must be answered within their deadline."""
        late = self._gdpr.overdue(now)
        return ComplianceResult(
            compliant=not late,
            violations=[f"request {d.request_id} overdue since {d.deadline}" for d in late],
        )

    def check_avg(self, now: datetime) -> ComplianceResult:
        """No unencrypted national-ID numbers seen in the last day."""
        exposures = [
            t for t in self._threats.query(since=now - timedelta(days=1))
            if "bsnAccess" in t.patterns
        ]
        return ComplianceResult(
            compliant=not exposures,
            violations=[f"unencrypted BSN written by {t.user_id}" for t in exposures],
        )

    def check_wpbr(self, now: datetime) -> ComplianceResult:
        """Guards may not hold invalid or lapsed-but-verified certificates."""
        violations = [
            f"certificate {c['certificate_id']} invalid: {c.get('validation_error', '')}"
            for c in self._certificates.with_status("invalid")
        ]
        violations.extend(
            f"certificate {c['certificate_id']} expired on {c['expiration_date']}"
            for c in self._certificates.expiring(now)
        )
        return ComplianceResult(compliant=not violations, violations=violations)

    def check_btw(self, now: datetime) -> ComplianceResult:
        """VAT bookkeeping lives outside the engine; nothing to inspect here."""
        return ComplianceResult(compliant=True)

    def _checks(self) -> dict[str, Callable[[datetime], ComplianceResult]]:
        return {
            "GDPR": self.check_gdpr,
            "AVG": self.check_avg,
            "WPBR": self.check_wpbr,
            "BTW": self.check_btw,
        }

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def refresh(self) -> list[ComplianceSnapshot]:
        """Run every check and overwrite its snapshot. Returns the new snapshots."""
        now = self._clock()
        written = []
        for compliance_type, check in self._checks().items():
            try:
                result = check(now)
            except Exception:
                logger.exception("Compliance check failed for %s", compliance_type)
                continue
            snapshot = ComplianceSnapshot(
                compliance_type=compliance_type,
                status="compliant" if result.compliant else "violation",
                violations=result.violations,
                risk_score=result.risk_score,
                last_check=utc_iso(now),
                next_check=utc_iso(now + timedelta(days=1)),
            )
            payload = asdict(snapshot)
            self._snapshots.update(compliance_type, lambda _current: (payload, None))
            written.append(snapshot)
        return written

    def get_snapshot(self, compliance_type: str) -> Optional[ComplianceSnapshot]:
        data = self._snapshots.get(compliance_type)
        return ComplianceSnapshot(**data) if data else None

    def snapshots(self) -> list[ComplianceSnapshot]:
        return [ComplianceSnapshot(**r.data) for r in self._snapshots.iter_records()]
