"""Global audit trail endpoints (privileged)."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from reqflow.api.deps import PermissionDependency, get_actor, get_recorder
from reqflow.core.rbac import Actor, Permission
from reqflow.db.base import utcnow
from reqflow.schemas.audit import AuditEntryResponse
from reqflow.schemas.common import PaginatedResponse
from reqflow.services.audit_trail import AuditTrailRecorder

router = APIRouter(prefix="/audit-trail", tags=["audit"])

require_audit_reader = PermissionDependency(Permission.VIEW_AUDIT_TRAIL)


@router.get("", response_model=PaginatedResponse[AuditEntryResponse])
def list_audit_entries(
    recorder: AuditTrailRecorder = Depends(get_recorder),
    actor: Actor = Depends(get_actor),
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=100),
):
    """Paginated chronological audit trail across all requisitions."""
    entries = recorder.get_all(actor, skip=skip, take=take)
    return PaginatedResponse.create(
        items=[AuditEntryResponse.model_validate(e) for e in entries],
        total=recorder.count(),
        skip=skip,
        take=take,
    )


@router.get("/by-actor/{actor_id}", response_model=List[AuditEntryResponse])
def list_by_actor(
    actor_id: UUID,
    recorder: AuditTrailRecorder = Depends(get_recorder),
    actor: Actor = Depends(require_audit_reader),
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=100),
):
    return [AuditEntryResponse.model_validate(e) for e in recorder.get_by_actor(actor_id, skip, take)]


@router.get("/range", response_model=List[AuditEntryResponse])
def list_by_date_range(
    start: datetime,
    end: Optional[datetime] = None,
    recorder: AuditTrailRecorder = Depends(get_recorder),
    actor: Actor = Depends(require_audit_reader),
):
    """Entries with start <= created_at < end (naive UTC)."""
    return [AuditEntryResponse.model_validate(e) for e in recorder.get_by_date_range(start, end or utcnow())]
