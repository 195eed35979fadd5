"""Requisition workflow API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from reqflow.api.deps import get_actor, get_recorder, get_workflow
from reqflow.core.approval.service import RequisitionWorkflow
from reqflow.core.approval.states import RequisitionStatus
from reqflow.core.rbac import Actor
from reqflow.db.models import AuditAction
from reqflow.schemas.audit import AuditEntryResponse
from reqflow.schemas.common import PaginatedResponse
from reqflow.schemas.requisition import (
    ApprovalStepResponse,
    AttachmentEvent,
    PaymentRecord,
    ReasonRequest,
    RequisitionCreate,
    RequisitionResponse,
    RequisitionUpdate,
    StepDecision,
    SubmitRequest,
    TransitionsResponse,
)
from reqflow.services.audit_trail import AuditTrailRecorder

router = APIRouter(prefix="/requisitions", tags=["requisitions"])


class RejectAllRequest(BaseModel):
    comment: str


def _response(workflow: RequisitionWorkflow, requisition_id: UUID) -> RequisitionResponse:
    requisition = workflow.get_requisition(requisition_id)
    workflow.db.refresh(requisition)
    return RequisitionResponse.model_validate(requisition)


# Endpoints
@router.get("", response_model=PaginatedResponse[RequisitionResponse])
def list_requisitions(
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=100),
    status_filter: Optional[RequisitionStatus] = Query(None, alias="status"),
    submitter_id: Optional[UUID] = None,
    department_id: Optional[UUID] = None,
):
    """List requisitions visible to the actor."""
    items, total = workflow.list_requisitions(
        actor,
        status=status_filter,
        submitter_id=submitter_id,
        department_id=department_id,
        skip=skip,
        take=take,
    )
    return PaginatedResponse.create(
        items=[RequisitionResponse.model_validate(r) for r in items],
        total=total,
        skip=skip,
        take=take,
    )


@router.post("", response_model=RequisitionResponse, status_code=status.HTTP_201_CREATED)
def create_requisition(
    data: RequisitionCreate,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Create a draft requisition."""
    requisition = workflow.create_requisition(actor, data)
    return _response(workflow, requisition.id)


@router.get("/{requisition_id}", response_model=RequisitionResponse)
def get_requisition(
    requisition_id: UUID,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    return RequisitionResponse.model_validate(workflow.get_requisition(requisition_id, actor))


@router.patch("/{requisition_id}", response_model=RequisitionResponse)
def update_requisition(
    requisition_id: UUID,
    data: RequisitionUpdate,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Edit a draft."""
    workflow.update_requisition(requisition_id, actor, data)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/submit", response_model=RequisitionResponse)
def submit_requisition(
    requisition_id: UUID,
    data: Optional[SubmitRequest] = None,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Submit a draft for approval."""
    pending_uploads = data.pending_uploads if data else 0
    workflow.submit(requisition_id, actor, pending_uploads=pending_uploads)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/approve", response_model=RequisitionResponse)
def approve_step(
    requisition_id: UUID,
    data: StepDecision,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Approve the next pending step, named by ``step_id``."""
    workflow.approve_step(requisition_id, actor, data.step_id, comment=data.comment)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/reject", response_model=RequisitionResponse)
def reject_step(
    requisition_id: UUID,
    data: StepDecision,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Reject the next pending step. A comment is required."""
    workflow.reject_step(requisition_id, actor, data.step_id, comment=data.comment)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/reject-all", response_model=RequisitionResponse)
def reject_all(
    requisition_id: UUID,
    data: RejectAllRequest,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Reject every pending step at once (admin override)."""
    workflow.reject_all(requisition_id, actor, comment=data.comment)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/cancel", response_model=RequisitionResponse)
def cancel_requisition(
    requisition_id: UUID,
    data: ReasonRequest,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    workflow.cancel(requisition_id, actor, reason=data.reason)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/payment", response_model=RequisitionResponse)
def record_payment(
    requisition_id: UUID,
    data: PaymentRecord,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Record the payment of an approved requisition."""
    workflow.record_payment(requisition_id, actor, data)
    return _response(workflow, requisition_id)


@router.post("/{requisition_id}/attachments/events", status_code=status.HTTP_202_ACCEPTED)
def record_attachment_event(
    requisition_id: UUID,
    data: AttachmentEvent,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """Audit an attachment upload, deletion or download."""
    event = workflow.record_attachment_event(requisition_id, actor, data)
    return {"requisition_id": str(requisition_id), "action": event.audit_records[0].action.value}


@router.get("/{requisition_id}/steps", response_model=List[ApprovalStepResponse])
def list_steps(
    requisition_id: UUID,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    return [ApprovalStepResponse.model_validate(s) for s in workflow.get_steps(requisition_id, actor)]


@router.get("/{requisition_id}/transitions", response_model=TransitionsResponse)
def available_transitions(
    requisition_id: UUID,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
):
    """What the actor can do with the requisition right now."""
    workflow.get_requisition(requisition_id, actor)
    return TransitionsResponse(**workflow.get_available_transitions(requisition_id, actor))


@router.get("/{requisition_id}/audit-trail", response_model=List[AuditEntryResponse])
def requisition_audit_trail(
    requisition_id: UUID,
    action: Optional[AuditAction] = None,
    workflow: RequisitionWorkflow = Depends(get_workflow),
    recorder: AuditTrailRecorder = Depends(get_recorder),
    actor: Actor = Depends(get_actor),
):
    """Chronological history of one requisition."""
    workflow.get_requisition(requisition_id, actor)
    return [AuditEntryResponse.model_validate(e) for e in recorder.get_for_requisition(requisition_id, action)]
