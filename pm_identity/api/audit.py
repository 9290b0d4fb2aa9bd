"""Read access to the identity audit trail for account owners."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..domain.audit import AuditService
from ..security.session import SessionContext, require_owner
from .dependencies import get_audit_service

router = APIRouter(prefix="/v1/audit", tags=["audit"])


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    tenant_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


@router.get("/logs", response_model=AuditLogResponse)
def list_audit_logs(
    event_type: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    session: SessionContext = Depends(require_owner),
    service: AuditService = Depends(get_audit_service),
) -> AuditLogResponse:
    """Return paginated audit events for the caller's tenant with optional filtering."""
    try:
        records, next_cursor = service.list_audit_events(
            tenant_id=session.tenant_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=cursor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            tenant_id=record.tenant_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)
