"""Pydantic models for API request/response serialization.

These models mirror the Vigil dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitCheckRequest(BaseModel):
    operation: Optional[str] = None
    role: Optional[str] = None


class RateLimitCheckResponse(BaseModel):
    """Mirrors vigil.security.models.RateLimitDecision."""

    allowed: bool
    operation: str
    role: str
    timestamp: str
    effective_limit: int
    count: int = 0


# ---------------------------------------------------------------------------
# Assessment & violations
# ---------------------------------------------------------------------------


class AssessmentCheckResponse(BaseModel):
    count: int
    status: str


class SecurityAssessmentResponse(BaseModel):
    """Mirrors vigil.engine.SecurityAssessment."""

    timestamp: str
    checks: dict[str, AssessmentCheckResponse] = Field(default_factory=dict)
    overall_status: str


class ViolationEntryResponse(BaseModel):
    type: str
    timestamp: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    severity: str = ""


class ViolationRecordResponse(BaseModel):
    """Mirrors vigil.security.models.ViolationRecord."""

    user_id: str
    count: int = 0
    severity: str = "low"
    history: list[ViolationEntryResponse] = Field(default_factory=list)
    type_counts: dict[str, int] = Field(default_factory=dict)
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Data events
# ---------------------------------------------------------------------------


class DataEventRequest(BaseModel):
    """Mirrors vigil.security.monitor.DataEvent."""

    collection: str
    document_id: str
    event_type: str = "update"
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    event_id: Optional[str] = None


class EventAcceptedResponse(BaseModel):
    accepted: bool = True
    event_id: str


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    """Mirrors vigil.security.audit_log.AuditEntry."""

    id: str
    timestamp: str
    user_id: str
    action: str
    resource_type: str
    resource_id: str
    risk_level: str = "low"
    metadata: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    schema_version: str = "2.0"


class AuditExportResponse(BaseModel):
    format: str
    content: str
    count: int


# ---------------------------------------------------------------------------
# GDPR / AVG
# ---------------------------------------------------------------------------


class GdprRequestBody(BaseModel):
    request_type: str
    legal_basis: str = "consent"
    data_types: list[str] = Field(default_factory=list)


class GdprDecisionResponse(BaseModel):
    """Mirrors vigil.compliance.gdpr.GdprDecision."""

    request_id: str
    user_id: str
    accepted: bool
    status: str
    compliance_check: str = "passed"
    deadline: str = ""
    error: str = ""
    processed_at: str = ""
