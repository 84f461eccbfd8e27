"""Heuristic threat detection over a user's recent audit trail.

For each monitored write, the detector takes the user's newest audit
entries from the trailing hour and evaluates a fixed set of independent
predicates against that window plus the event itself:

=====================  ==================================================
Pattern                Fires when
=====================  ==================================================
rapidFire              more than 200 events in the window
massAccess             more than 500 ``read`` events in the window
certManipulation       certificate write and more than 20 certificate
                       events in the window
privilegeEscalation    update that changes the role field
bsnAccess              certificate write exposing an unencrypted
                       national-ID number
unusualTiming          outside Mon-Fri 06:00-22:00 business time
=====================  ==================================================

:func:`assess` is pure: the same window, event and clock always produce
the same assessment.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from vigil.config import DEFAULT_TIMEZONE, DetectorConfig
from vigil.security.audit_log import AuditEntry, AuditLogger
from vigil.security.models import RiskLevel, ThreatAssessment
from vigil.utils.clock import Clock, to_local, utc_iso, utc_now

PATTERN_NAMES = (
    "rapidFire",
    "massAccess",
    "certManipulation",
    "privilegeEscalation",
    "bsnAccess",
    "unusualTiming",
)

CRITICAL_PATTERNS = frozenset({"privilegeEscalation", "bsnAccess", "certManipulation"})
HIGH_PATTERNS = frozenset({"rapidFire", "massAccess"})


def classify_risk(patterns: Sequence[str]) -> RiskLevel:
    """Map detected patterns to a risk level; first matching rule wins."""
    if any(p in CRITICAL_PATTERNS for p in patterns):
        return RiskLevel.critical
    if any(p in HIGH_PATTERNS for p in patterns):
        return RiskLevel.high
    if len(patterns) > 2:
        return RiskLevel.medium
    return RiskLevel.low


def is_outside_business_hours(
    moment: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
    start_hour: int = 6,
    end_hour: int = 22,
) -> bool:
    """True on weekends and outside ``[start_hour, end_hour)`` local time."""
    local = to_local(moment, tz_name)
    return local.weekday() >= 5 or local.hour < start_hour or local.hour >= end_hour


def assess(
    user_id: str,
    window: Sequence[AuditEntry],
    collection: str,
    event_type: str,
    before: Optional[dict[str, Any]],
    after: Optional[dict[str, Any]],
    now: datetime,
    config: Optional[DetectorConfig] = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> ThreatAssessment:
    """Evaluate every pattern predicate and classify the result."""
    cfg = config or DetectorConfig()
    before = before or {}
    after = after or {}
    is_cert_write = collection == cfg.certificate_collection

    reads = sum(1 for e in window if e.action == "read")
    cert_events = sum(1 for e in window if e.resource_type == cfg.certificate_collection)
    national_id = after.get(cfg.national_id_field)

    checks = {
        "rapidFire": len(window) > cfg.rapid_fire_threshold,
        "massAccess": reads > cfg.mass_access_threshold,
        "certManipulation": is_cert_write and cert_events > cfg.cert_manipulation_threshold,
        "privilegeEscalation": event_type == "update"
        and after.get(cfg.role_field) != before.get(cfg.role_field),
        "bsnAccess": is_cert_write
        and bool(national_id)
        and not str(national_id).startswith(cfg.encrypted_prefix),
        "unusualTiming": is_outside_business_hours(
            now, tz_name, cfg.business_start_hour, cfg.business_end_hour
        ),
    }
    patterns = [name for name in PATTERN_NAMES if checks[name]]
    return ThreatAssessment(
        user_id=user_id,
        patterns=patterns,
        risk_level=classify_risk(patterns),
        timestamp=utc_iso(now),
    )


class ThreatDetector:
    """Fetches the audit window for a user and runs :func:`assess` on it."""

    def __init__(
        self,
        audit: AuditLogger,
        config: Optional[DetectorConfig] = None,
        tz_name: str = DEFAULT_TIMEZONE,
        clock: Clock = utc_now,
    ) -> None:
        self._audit = audit
        self._config = config or DetectorConfig()
        self._tz_name = tz_name
        self._clock = clock

    def is_monitored(self, collection: str) -> bool:
        """The monitoring system's own collections are never evaluated."""
        return collection not in self._config.system_collections

    def fetch_window(self, user_id: str, now: datetime) -> list[AuditEntry]:
        return self._audit.recent_for_user(
            user_id,
            timedelta(seconds=self._config.window_seconds),
            self._config.window_limit,
            now=now,
        )

    def evaluate(
        self,
        user_id: str,
        collection: str,
        event_type: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> ThreatAssessment:
        """Assess one event against the user's trailing-hour audit window."""
        now = self._clock()
        if not self.is_monitored(collection):
            return ThreatAssessment(user_id=user_id, timestamp=utc_iso(now))
        window = self.fetch_window(user_id, now)
        return assess(
            user_id,
            window,
            collection,
            event_type,
            before,
            after,
            now,
            self._config,
            self._tz_name,
        )
