"""Automatic response to detected threats.

Every finding is persisted as a :class:`ThreatRecord` and counted as a
``suspicious_activity`` violation, so any threat degrades the user's future
rate limits. Critical findings additionally suspend the account; the
suspension is idempotent, so re-evaluating the same event never suspends
twice.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from vigil.auth.store import UserStore
from vigil.security.audit_log import AuditLogger
from vigil.security.models import RiskLevel, ThreatAssessment, ThreatRecord, ViolationRecord
from vigil.security.violations import ViolationTracker
from vigil.store.events import EventLog
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)

SUSPENSION_REASON = "Automatic suspension due to critical threat detection"


class ThreatLog:
    """Append-only store of threat findings."""

    def __init__(self, base_dir: Path) -> None:
        self._log = EventLog(base_dir)

    def append(self, record: ThreatRecord) -> ThreatRecord:
        self._log.append(asdict(record))
        return record

    def query(
        self,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        blocked: Optional[bool] = None,
        severities: Optional[set[str]] = None,
    ) -> list[ThreatRecord]:
        """Return matching threat records, newest first."""

        def matches(r: dict[str, Any]) -> bool:
            if blocked is not None and r.get("blocked") != blocked:
                return False
            if severities and r.get("severity") not in severities:
                return False
            return True

        known = {f.name for f in fields(ThreatRecord)}
        return [
            ThreatRecord(**{k: v for k, v in r.items() if k in known})
            for r in self._log.query(matches, since=since, until=until)
        ]


@dataclass
class ResponseOutcome:
    """What the coordinator did for one assessment."""

    threat: ThreatRecord
    violation: ViolationRecord
    suspended: bool = False


class ResponseCoordinator:
    """Turns threat assessments into records, violations and suspensions."""

    def __init__(
        self,
        threats: ThreatLog,
        violations: ViolationTracker,
        users: UserStore,
        audit: AuditLogger,
        clock: Clock = utc_now,
    ) -> None:
        self._threats = threats
        self._violations = violations
        self._users = users
        self._audit = audit
        self._clock = clock

    def respond(
        self, user_id: str, assessment: ThreatAssessment, event_id: str = ""
    ) -> ResponseOutcome:
        """Record the finding, suspend on critical risk, and count a violation."""
        risk = assessment.risk_level
        threat = self._threats.append(
            ThreatRecord(
                user_id=user_id,
                threat_type=assessment.patterns[0] if assessment.patterns else "unknown",
                severity=risk.value,
                timestamp=assessment.timestamp or utc_iso(self._clock()),
                blocked=risk is RiskLevel.critical,
                patterns=list(assessment.patterns),
                event_id=event_id,
            )
        )

        suspended = False
        if risk is RiskLevel.critical:
            suspended = self._users.suspend_user(user_id, SUSPENSION_REASON, "automatic")
            if suspended:
                self._audit.log_event(
                    user_id,
                    "account_suspended",
                    "users",
                    user_id,
                    risk_level=risk.value,
                    metadata={"reason": SUSPENSION_REASON, "threat_id": threat.id},
                )

        violation = self._violations.record_violation(
            user_id,
            "suspicious_activity",
            {"patterns": list(assessment.patterns), "risk_level": risk.value},
        )

        logger.warning(
            "Threat detected for user %s: patterns=%s risk=%s",
            user_id,
            ",".join(assessment.patterns),
            risk.value,
        )
        return ResponseOutcome(threat=threat, violation=violation, suspended=suspended)
