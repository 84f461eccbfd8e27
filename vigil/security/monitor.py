"""Monitoring pipeline for data events.

Every create, update and audited read on a monitored collection runs through
the threat detector. Findings go to the response coordinator. The event is
then appended to the audit log with its size and the detector's risk level.

Monitoring fails open: with ``fail_open`` set, an error anywhere in the
pipeline is logged and the event is dropped, so a fault here never blocks
the write that produced the event.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from vigil.security.audit_log import AuditEntry, AuditLogger
from vigil.security.certificates import CertificateCheck, CertificateValidator
from vigil.security.models import RiskLevel, ThreatAssessment
from vigil.security.response import ResponseCoordinator, ResponseOutcome
from vigil.security.threat_detector import ThreatDetector

logger = logging.getLogger(__name__)

EVENT_TYPES = ("create", "update", "delete", "read")


@dataclass
class DataEvent:
    """A change (or audited read) on one document of the primary store."""

    collection: str
    document_id: str
    event_type: str = "update"
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    auth_id: str = ""
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def acting_user(self) -> str:
        """The user who caused the event: ``after.userId``, else the auth id."""
        if self.after and self.after.get("userId"):
            return str(self.after["userId"])
        return self.auth_id or ""

    def attributed_to_caller(self) -> DataEvent:
        """Copy of this event whose ``after.userId`` is the authenticated caller.

        Used for events reported by end users, who may only report their
        own actions.
        """
        after = dict(self.after) if self.after is not None else None
        if after is not None and after.get("userId") not in (None, "", self.auth_id):
            after["userId"] = self.auth_id
        return replace(self, after=after)


@dataclass
class MonitorResult:
    """What the pipeline did with one event."""

    event_id: str
    user_id: str
    assessment: ThreatAssessment
    audit_entry: AuditEntry
    response: Optional[ResponseOutcome] = None
    certificate: Optional[CertificateCheck] = None


class SecurityMonitor:
    """Runs detector, response coordinator and audit log for each event."""

    def __init__(
        self,
        detector: ThreatDetector,
        responder: ResponseCoordinator,
        audit: AuditLogger,
        certificates: Optional[CertificateValidator] = None,
        certificate_collection: str = "certificates",
        fail_open: bool = True,
    ) -> None:
        self._detector = detector
        self._responder = responder
        self._audit = audit
        self._certificates = certificates
        self._certificate_collection = certificate_collection
        self.fail_open = fail_open

    def handle_event(self, event: DataEvent) -> Optional[MonitorResult]:
        """Process *event*. Returns ``None`` when the event was skipped or failed."""
        try:
            return self._process(event)
        except Exception:
            if not self.fail_open:
                raise
            logger.exception(
                "Security monitoring failed for %s/%s (event %s)",
                event.collection,
                event.document_id,
                event.event_id,
            )
            return None

    def _process(self, event: DataEvent) -> Optional[MonitorResult]:
        if event.event_type not in EVENT_TYPES:
            logger.debug("Ignoring unknown event type %r", event.event_type)
            return None
        if not self._detector.is_monitored(event.collection):
            return None
        user_id = event.acting_user()
        if not user_id:
            logger.debug("Ignoring event %s without an acting user", event.event_id)
            return None

        certificate = None
        if (
            self._certificates is not None
            and event.collection == self._certificate_collection
            and event.after
        ):
            if event.event_type == "create":
                certificate = self._certificates.check_new_certificate(
                    event.document_id, event.after
                )
            elif event.event_type == "update":
                self._certificates.track(event.document_id, event.after)

        assessment = self._detector.evaluate(
            user_id, event.collection, event.event_type, event.before, event.after
        )
        response = None
        if assessment.detected:
            response = self._responder.respond(user_id, assessment, event.event_id)

        data_size = len(json.dumps(event.after, default=str)) if event.after else 0
        entry = self._audit.log_event(
            user_id,
            event.event_type,
            event.collection,
            event.document_id,
            risk_level=assessment.risk_level.value if assessment.detected else RiskLevel.low.value,
            metadata={"data_size": data_size, "event_id": event.event_id},
        )
        return MonitorResult(
            event_id=event.event_id,
            user_id=user_id,
            assessment=assessment,
            audit_entry=entry,
            response=response,
            certificate=certificate,
        )
