"""AVG/GDPR data-subject request validation.

Dutch law keeps some data out of reach of a consent-based deletion request,
and national-ID (BSN) exports need identity verification beyond a normal
login. Accepted requests get the statutory 30-day response deadline.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from vigil.errors import ComplianceError, ValidationError
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, parse_timestamp, utc_iso, utc_now

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("access", "export", "rectify", "delete")

# Data that must be retained for legal obligations (tax, employment, WPBR)
LEGAL_OBLIGATION_DATA = frozenset({"tax_records", "employment_records", "certificate_data"})

RESPONSE_DEADLINE = timedelta(days=30)


@dataclass
class GdprRequest:
    """A data-subject request as submitted by the user."""

    user_id: str
    request_type: str
    legal_basis: str = "consent"
    data_types: list[str] = field(default_factory=list)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = uuid.uuid4().hex[:16]


@dataclass
class GdprDecision:
    """Outcome of validating a :class:`GdprRequest`."""

    request_id: str
    user_id: str
    accepted: bool
    status: str  # processing | rejected
    compliance_check: str = "passed"
    deadline: str = ""
    error: str = ""
    processed_at: str = ""


def validate_gdpr_request(request: GdprRequest) -> None:
    """Raise :class:`ComplianceError` when *request* may not be honoured."""
    if not request.user_id:
        raise ValidationError("user_id is required")
    if request.request_type not in REQUEST_TYPES:
        raise ValidationError(f"Unknown request type: {request.request_type}")

    if request.request_type == "delete" and request.legal_basis == "consent":
        if LEGAL_OBLIGATION_DATA.intersection(request.data_types):
            raise ComplianceError(
                "Cannot delete data required for legal obligations under Dutch law"
            )

    if "bsn_data" in request.data_types and request.request_type == "export":
        raise ComplianceError(
            "BSN data export requires additional identity verification under Dutch law"
        )


class GdprRequestLog:
    """Validates requests and keeps their decisions for deadline tracking."""

    def __init__(self, base_dir: Path, max_attempts: int = 25, clock: Clock = utc_now) -> None:
        self._store = KeyedRecordStore(base_dir, max_attempts=max_attempts)
        self._clock = clock

    def submit(self, request: GdprRequest) -> GdprDecision:
        """Validate *request* and record the decision.

        Malformed requests raise :class:`ValidationError` and are not stored;
        requests refused on compliance grounds are stored as ``rejected``.
        """
        now = self._clock()
        try:
            validate_gdpr_request(request)
        except ComplianceError as exc:
            logger.warning("GDPR request %s rejected: %s", request.id, exc)
            decision = GdprDecision(
                request_id=request.id,
                user_id=request.user_id,
                accepted=False,
                status="rejected",
                compliance_check="failed",
                error=str(exc),
                processed_at=utc_iso(now),
            )
        else:
            decision = GdprDecision(
                request_id=request.id,
                user_id=request.user_id,
                accepted=True,
                status="processing",
                deadline=utc_iso(now + RESPONSE_DEADLINE),
                processed_at=utc_iso(now),
            )

        payload = {"request": asdict(request), "decision": asdict(decision)}
        self._store.update(request.id, lambda _current: (payload, None))
        return decision

    def get(self, request_id: str) -> Optional[GdprDecision]:
        data = self._store.get(request_id)
        return GdprDecision(**data["decision"]) if data else None

    def complete(self, request_id: str) -> Optional[GdprDecision]:
        """Mark an accepted request as answered."""

        def apply(data: Optional[dict]):
            if data is None or not data["decision"]["accepted"]:
                return None, None
            data["decision"]["status"] = "completed"
            return data, GdprDecision(**data["decision"])

        return self._store.update(request_id, apply)

    def overdue(self, now: Optional[datetime] = None) -> list[GdprDecision]:
        """Accepted requests still open past their deadline."""
        now = now or self._clock()
        late = []
        for rec in self._store.iter_records():
            decision = GdprDecision(**rec.data["decision"])
            if decision.status == "processing" and parse_timestamp(decision.deadline) < now:
                late.append(decision)
        return late
