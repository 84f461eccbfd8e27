"""Security API router: rate limiting, assessments, event intake, audit log.

Prefix: ``/api/security``
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from vigil.auth.models import Role, User
from vigil.auth.permissions import has_permission
from vigil.compliance.gdpr import GdprRequest
from vigil.engine import SecurityEngine
from vigil.errors import PermissionDeniedError, RateLimitExceeded, ValidationError, VigilError
from vigil.security.monitor import DataEvent
from web.backend.app.middleware.auth import get_current_user, get_engine
from web.backend.app.models.api import (
    AuditEntryResponse,
    AuditExportResponse,
    DataEventRequest,
    EventAcceptedResponse,
    GdprDecisionResponse,
    GdprRequestBody,
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    SecurityAssessmentResponse,
    ViolationRecordResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security", tags=["security"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_admin(user: User) -> None:
    if not has_permission(user, Role.admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )


def _role_for(user: User, requested: Optional[str]) -> str:
    """Callers may ask for the smaller ``default`` budget, never a larger one."""
    if requested == Role.default.value:
        return requested
    return user.role.value


def _consume(engine: SecurityEngine, user: User, operation: str, role: str):
    """Run the rate limiter, mapping its errors to HTTP responses (fail closed)."""
    try:
        return engine.rate_limiter.check_and_consume(user.id, operation, role)
    except RateLimitExceeded as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"message": str(e), "limit": e.limit, "attempts": e.attempts},
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except VigilError:
        logger.exception("Rate limit check failed for %s/%s", user.id, operation)
        raise HTTPException(status_code=500, detail="Rate limit check failed")


# =========================================================================
# Rate limiting
# =========================================================================


@router.post("/rate-limit/check", response_model=RateLimitCheckResponse)
async def check_rate_limit(
    body: RateLimitCheckRequest,
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Consume one request of ``operation`` for the calling user."""
    if not body.operation:
        raise HTTPException(status_code=400, detail="Operation is required")

    decision = _consume(engine, user, body.operation, _role_for(user, body.role))
    return RateLimitCheckResponse(
        allowed=decision.allowed,
        operation=decision.operation,
        role=decision.role,
        timestamp=decision.timestamp,
        effective_limit=decision.effective_limit,
        count=decision.count,
    )


# =========================================================================
# Assessment & violations
# =========================================================================


@router.post("/assessment", response_model=SecurityAssessmentResponse)
async def trigger_security_assessment(
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Run a manual security assessment (admin only)."""
    try:
        results = engine.trigger_security_assessment(user)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return SecurityAssessmentResponse(**asdict(results))


@router.get("/violations/{user_id}", response_model=ViolationRecordResponse)
async def get_violations(
    user_id: str,
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Return a user's violation record (admins, or the user themself)."""
    if user.id != user_id:
        _require_admin(user)
    return ViolationRecordResponse(**engine.violations.get_violations(user_id).to_dict())


# =========================================================================
# Event intake
# =========================================================================


@router.post(
    "/events",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_event(
    body: DataEventRequest,
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Feed a data event to the monitoring pipeline. Monitoring never fails the call.

    Admins may report events on behalf of other users (``after.userId``);
    everyone else is recorded as the acting user of the events they send.
    """
    event = DataEvent(
        collection=body.collection,
        document_id=body.document_id,
        event_type=body.event_type,
        before=body.before,
        after=body.after,
        auth_id=user.id,
    )
    if body.event_id:
        event.event_id = body.event_id
    if not has_permission(user, Role.admin):
        event = event.attributed_to_caller()
    engine.monitor.handle_event(event)
    return EventAcceptedResponse(event_id=event.event_id)


# =========================================================================
# Audit log
# =========================================================================


@router.get("/audit", response_model=list[AuditEntryResponse])
async def list_audit_events(
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=10000),
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """List audit events with optional filters (admin only)."""
    _require_admin(user)
    events = engine.audit.get_events(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [AuditEntryResponse(**asdict(e)) for e in events]


@router.get("/audit/export", response_model=AuditExportResponse)
async def export_audit_log(
    format: str = Query("json", pattern="^(json|csv)$"),
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Export the audit log in JSON or CSV format (admin only)."""
    _require_admin(user)
    filters = dict(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
    )
    content = engine.audit.export_events(format, **filters)
    count = len(engine.audit.get_events(limit=10000, **filters))
    return AuditExportResponse(format=format, content=content, count=count)


# =========================================================================
# GDPR / AVG
# =========================================================================


@router.post("/gdpr/validate", response_model=GdprDecisionResponse)
async def validate_gdpr_request(
    body: GdprRequestBody,
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Validate a data-subject request for the calling user.

    Refusals on compliance grounds are returned as ``rejected`` decisions;
    malformed requests get a 400.
    """
    _consume(engine, user, "gdpr_requests", user.role.value)
    request = GdprRequest(
        user_id=user.id,
        request_type=body.request_type,
        legal_basis=body.legal_basis,
        data_types=body.data_types,
    )
    try:
        decision = engine.gdpr.submit(request)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return GdprDecisionResponse(**asdict(decision))


@router.post("/gdpr/{request_id}/complete", response_model=GdprDecisionResponse)
async def complete_gdpr_request(
    request_id: str,
    user: User = Depends(get_current_user),
    engine: SecurityEngine = Depends(get_engine),
):
    """Mark an accepted data-subject request as answered (admin only)."""
    _require_admin(user)
    decision = engine.complete_gdpr_request(request_id, user.id)
    if decision is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No accepted GDPR request '{request_id}'",
        )
    return GdprDecisionResponse(**asdict(decision))
