"""Error taxonomy for the security engine.

Each error carries a ``code`` naming the RPC status the HTTP layer maps it
to. Rate limiting is the expected rejection path and is not a fault.
"""

from __future__ import annotations


class VigilError(Exception):
    """Base class for all engine errors."""

    code = "INTERNAL"


class AuthenticationError(VigilError):
    """Raised when a call carries no valid identity."""

    code = "UNAUTHENTICATED"


class PermissionDeniedError(VigilError):
    """Raised when the caller's role is insufficient for the operation."""

    code = "PERMISSION_DENIED"


class ValidationError(VigilError):
    """Raised for malformed input."""

    code = "INVALID_ARGUMENT"


class RateLimitExceeded(VigilError):
    """Raised when a user is over budget for an operation."""

    code = "RESOURCE_EXHAUSTED"

    def __init__(self, operation: str, limit: int, attempts: int, window_seconds: int = 60) -> None:
        self.operation = operation
        self.limit = limit
        self.attempts = attempts
        self.window_seconds = window_seconds
        period = "hour" if window_seconds >= 3600 else "minute"
        super().__init__(
            f"Rate limit exceeded for {operation}. Limit: {limit} per {period}."
        )


class ContentionError(VigilError):
    """Raised when an atomic update keeps conflicting past its retry budget."""

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(f"Gave up updating {key!r} after {attempts} conflicting attempts")


class ConfigurationError(VigilError):
    """Raised for invalid configuration values or files."""


class CertificateValidationError(VigilError):
    """Raised when a certificate fails format, expiry or authority checks."""

    code = "INVALID_ARGUMENT"


class ComplianceError(VigilError):
    """Raised when a data-subject request violates AVG/GDPR rules."""

    code = "FAILED_PRECONDITION"
