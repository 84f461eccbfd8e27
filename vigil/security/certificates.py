"""Certificate checks for Dutch security-guard credentials.

New certificates are validated for number format, expiry, revocation,
national-ID (BSN) encryption and issuing authority. Failures mark the
certificate invalid and count as an ``invalid_certificate`` violation.

The registry also keeps a small index of certificate status and expiry,
fed from the monitored write stream, which the daily maintenance job scans
for upcoming expirations.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from vigil.errors import CertificateValidationError
from vigil.security.violations import ViolationTracker
from vigil.store.records import KeyedRecordStore
from vigil.utils.clock import Clock, utc_iso, utc_now

logger = logging.getLogger(__name__)

CERTIFICATE_FORMATS: dict[str, re.Pattern[str]] = {
    "WPBR": re.compile(r"^WPBR-[A-Z0-9]{8,12}$"),
    "VCA": re.compile(r"^VCA-[A-Z0-9]{8,10}$"),
    "BHV": re.compile(r"^BHV-[A-Z0-9]{6,10}$"),
    "EHBO": re.compile(r"^EHBO-[A-Z0-9]{6,10}$"),
    "SVPB": re.compile(r"^SVPB-[A-Z0-9]{8,12}$"),
}

VALID_AUTHORITIES = (
    "Politie Nederland",
    "VCA Nederland",
    "BHV Nederland",
    "EHBO Nederland",
    "SVPB",
    "Ministerie van Justitie",
)

# Authorities whose certificates are queued for automatic verification
AUTO_VERIFY_AUTHORITIES = frozenset({"Politie Nederland", "VCA Nederland"})

ENCRYPTED_PREFIX = "ENC:"


def parse_expiration(value: Any) -> Optional[datetime]:
    """Accept a datetime, a date or an ISO-8601 string; naive means UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class CertificateAlert:
    """Expiration warning raised by the daily scan."""

    id: str
    user_id: str
    certificate_id: str
    expiration_date: str
    days_until_expiration: int
    alert_type: str = "expiration_warning"
    sent: bool = False
    created_at: str = ""


@dataclass
class CertificateCheck:
    """Outcome of validating one new certificate."""

    certificate_id: str
    valid: bool
    error: str = ""
    auto_verify: bool = False


class CertificateRegistry:
    """Certificate index, revocation list and expiration alerts."""

    def __init__(self, base_dir: Path, max_attempts: int = 25) -> None:
        base = Path(base_dir)
        self._certificates = KeyedRecordStore(base / "index", max_attempts=max_attempts)
        self._revocations = KeyedRecordStore(base / "revocations", max_attempts=max_attempts)
        self._alerts = KeyedRecordStore(base / "alerts", max_attempts=max_attempts)

    # -- index ---------------------------------------------------------------

    def record(self, certificate_id: str, data: dict[str, Any]) -> None:
        """Index the fields the expiry scan needs from a certificate write."""
        expiration = parse_expiration(data.get("expirationDate"))
        entry = {
            "certificate_id": certificate_id,
            "user_id": data.get("userId", ""),
            "status": data.get("status", "pending"),
            "certificate_type": data.get("certificateType", ""),
            "expiration_date": utc_iso(expiration) if expiration else "",
        }

        def apply(current: Optional[dict]):
            merged = dict(current or {})
            merged.update(entry)
            return merged, None

        self._certificates.update(certificate_id, apply)

    def set_status(self, certificate_id: str, status: str, error: str = "") -> None:
        def apply(current: Optional[dict]):
            merged = dict(current or {"certificate_id": certificate_id})
            merged.update(status=status, validation_error=error)
            return merged, None

        self._certificates.update(certificate_id, apply)

    def get(self, certificate_id: str) -> Optional[dict[str, Any]]:
        return self._certificates.get(certificate_id)

    def with_status(self, status: str) -> list[dict[str, Any]]:
        return [r.data for r in self._certificates.iter_records() if r.data.get("status") == status]

    def expiring(self, before: datetime) -> list[dict[str, Any]]:
        """Verified certificates whose expiry is on or before *before*."""
        found = []
        for rec in self._certificates.iter_records():
            expiration = parse_expiration(rec.data.get("expiration_date"))
            if rec.data.get("status") == "verified" and expiration and expiration <= before:
                found.append(rec.data)
        return found

    # -- revocations ---------------------------------------------------------

    def revoke(self, certificate_type: str, certificate_number: str, reason: str = "") -> None:
        payload = {"certificate_type": certificate_type, "certificate_number": certificate_number,
                   "reason": reason}
        self._revocations.update(
            f"{certificate_type}/{certificate_number}", lambda _current: (payload, None)
        )

    def is_revoked(self, certificate_type: str, certificate_number: str) -> bool:
        return self._revocations.get(f"{certificate_type}/{certificate_number}") is not None

    # -- alerts --------------------------------------------------------------

    def raise_alert(self, alert: CertificateAlert) -> bool:
        """Store *alert* unless one with the same id exists. Returns True if new."""
        payload = asdict(alert)

        def apply(current: Optional[dict]):
            if current is not None:
                return None, False
            return payload, True

        return self._alerts.update(alert.id, apply)

    def alerts(self) -> list[CertificateAlert]:
        return [CertificateAlert(**r.data) for r in self._alerts.iter_records()]


class CertificateValidator:
    """Validates newly created certificates."""

    def __init__(
        self,
        registry: CertificateRegistry,
        violations: ViolationTracker,
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._violations = violations
        self._clock = clock

    def validate(self, cert: dict[str, Any]) -> None:
        """Raise :class:`CertificateValidationError` on the first failed rule."""
        cert_type = cert.get("certificateType", "")
        number = cert.get("certificateNumber", "")
        pattern = CERTIFICATE_FORMATS.get(cert_type)
        if pattern is None or not pattern.match(str(number)):
            raise CertificateValidationError(f"Invalid {cert_type} certificate number format")

        expiration = parse_expiration(cert.get("expirationDate"))
        if expiration is None or expiration <= self._clock():
            raise CertificateValidationError("Certificate has expired")

        if self._registry.is_revoked(cert_type, number):
            raise CertificateValidationError("Certificate has been revoked")

        bsn = cert.get("holderBsn")
        if bsn and not str(bsn).startswith(ENCRYPTED_PREFIX):
            raise CertificateValidationError("BSN data must be encrypted")

        authority = cert.get("issuingAuthority")
        if authority not in VALID_AUTHORITIES:
            raise CertificateValidationError(f"Invalid certificate authority: {authority}")

    def track(self, certificate_id: str, cert: dict[str, Any]) -> None:
        """Keep the index current for a certificate update."""
        self._registry.record(certificate_id, cert)

    def check_new_certificate(self, certificate_id: str, cert: dict[str, Any]) -> CertificateCheck:
        """Validate a created certificate and record the outcome."""
        self._registry.record(certificate_id, cert)
        try:
            self.validate(cert)
        except CertificateValidationError as exc:
            logger.error("Certificate validation error for %s: %s", certificate_id, exc)
            self._registry.set_status(certificate_id, "invalid", str(exc))
            user_id = cert.get("userId")
            if user_id:
                self._violations.record_violation(
                    user_id,
                    "invalid_certificate",
                    {"certificate_id": certificate_id, "error": str(exc)},
                )
            return CertificateCheck(certificate_id=certificate_id, valid=False, error=str(exc))

        auto_verify = cert.get("issuingAuthority") in AUTO_VERIFY_AUTHORITIES
        if auto_verify:
            logger.info("Certificate %s queued for automatic verification", certificate_id)
        return CertificateCheck(certificate_id=certificate_id, valid=True, auto_verify=auto_verify)


def build_expiration_alert(cert: dict[str, Any], now: datetime) -> CertificateAlert:
    """Create the warning for an indexed certificate expiring soon."""
    expiration = parse_expiration(cert["expiration_date"])
    days = math.ceil((expiration - now) / timedelta(days=1))
    return CertificateAlert(
        id=f"{cert['certificate_id']}:{now.astimezone(timezone.utc).date().isoformat()}",
        user_id=cert.get("user_id", ""),
        certificate_id=cert["certificate_id"],
        expiration_date=cert["expiration_date"],
        days_until_expiration=days,
        created_at=utc_iso(now),
    )
