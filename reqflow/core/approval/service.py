"""Requisition workflow service.

Provides the high-level API for driving requisitions through the approval
workflow: drafts, submission, step decisions, payment and cancellation.

Every mutating operation follows the same shape:

1. take the in-process lock for the requisition id
2. load the requisition with a row lock
3. validate the transition (state, permission, step eligibility)
4. mutate requisition and steps, commit once
5. after the commit, hand a ``TransitionEvent`` to the post-commit hooks
   (audit trail, notifications); their failures never reach the caller
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar
from uuid import UUID
import uuid

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from reqflow.core.config import Settings, get_settings
from reqflow.core.errors import (
    ConcurrentTransitionError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    NotPendingError,
    ValidationError,
)
from reqflow.core.rbac import Actor, Permission, has_permission, require_permission
from reqflow.core.rules.directory import ApproverDirectory, assign_approvers
from reqflow.core.rules.resolver import ApprovalRuleResolver
from reqflow.db.base import utcnow
from reqflow.db.models import ApprovalStep, AuditAction, Requisition
from reqflow.schemas.requisition import (
    AttachmentEvent,
    PaymentRecord,
    RequisitionCreate,
    RequisitionUpdate,
)
from .hooks import AuditRecord, PostCommitHooks, TransitionEvent, attachment_record
from .ledger import ApprovalStepLedger
from .locks import RequisitionLockRegistry
from .machine import RequisitionStateMachine
from .states import RequisitionStatus, RequisitionTransition, StepStatus

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Fields a draft may change, in audit order
EDITABLE_FIELDS = (
    "title",
    "description",
    "category",
    "amount",
    "currency",
    "urgency_level",
    "business_justification",
)

REQUIRED_FOR_SUBMISSION = ("title", "description", "category", "business_justification", "currency")

ATTACHMENT_EVENT_ACTIONS = {
    "UPLOADED": AuditAction.ATTACHMENT_UPLOADED,
    "DELETED": AuditAction.ATTACHMENT_DELETED,
    "DOWNLOADED": AuditAction.ATTACHMENT_DOWNLOADED,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _validate(model: Type[M], data: Any) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, f"Invalid {model.__name__}") from e


def _step_details(step: ApprovalStep) -> Dict[str, Any]:
    return {
        "step_id": str(step.id),
        "sequence": step.sequence,
        "role": step.required_role,
        "comment": step.comment,
    }


class RequisitionWorkflow:
    """
    High-level service for the requisition approval workflow.

    Handles:
    - Draft creation, editing and listing
    - Submission (rule resolution and step creation in one commit)
    - Step approval and rejection, administrative bulk rejection
    - Payment recording and cancellation
    - Attachment lifecycle audit events
    """

    def __init__(
        self,
        db: Session,
        *,
        locks: Optional[RequisitionLockRegistry] = None,
        hooks: Optional[PostCommitHooks] = None,
        settings: Optional[Settings] = None,
        resolver: Optional[ApprovalRuleResolver] = None,
        directory: Optional[ApproverDirectory] = None,
    ):
        """
        Initialize the workflow service.

        Args:
            db: Database session, owned by the caller
            locks: Shared per-requisition lock registry
            hooks: Post-commit hooks; None runs no hooks
            settings: Settings; defaults to the process settings
            resolver: Rule resolver; defaults to one built from settings
            directory: Approver directory consulted at submission; None leaves
                steps role-only
        """
        self.db = db
        self.settings = settings or get_settings()
        self.locks = locks or RequisitionLockRegistry()
        self.hooks = hooks
        self.resolver = resolver or ApprovalRuleResolver.from_settings(db, self.settings)
        self.directory = directory
        self.ledger = ApprovalStepLedger(db)

    # Queries

    def get_requisition(self, requisition_id: UUID, actor: Optional[Actor] = None) -> Requisition:
        """Get a requisition; with ``actor``, also check it may be viewed."""
        requisition = self._load(requisition_id)
        if actor is not None and not self._can_view(requisition, actor):
            raise NotAuthorizedError(f"Not allowed to view requisition {requisition_id}")
        return requisition

    def list_requisitions(
        self,
        actor: Actor,
        *,
        status: Optional[RequisitionStatus] = None,
        submitter_id: Optional[UUID] = None,
        department_id: Optional[UUID] = None,
        skip: int = 0,
        take: int = 50,
    ) -> Tuple[List[Requisition], int]:
        """List requisitions newest first. Actors without VIEW_ALL only see their own."""
        if skip < 0 or take < 1:
            raise ValidationError("skip must be >= 0 and take must be >= 1")
        take = min(take, self.settings.max_page_size)

        query = self.db.query(Requisition)
        if not has_permission(actor, Permission.VIEW_ALL_REQUISITIONS):
            submitter_id = actor.id
        if submitter_id:
            query = query.filter(Requisition.submitter_id == submitter_id)
        if department_id:
            query = query.filter(Requisition.department_id == department_id)
        if status:
            query = query.filter(Requisition.status == RequisitionStatus(status).value)

        total = query.with_entities(func.count(Requisition.id)).scalar() or 0
        items = query.order_by(Requisition.created_at.desc(), Requisition.id).offset(skip).limit(take).all()
        return items, total

    def get_steps(self, requisition_id: UUID, actor: Optional[Actor] = None) -> List[ApprovalStep]:
        self.get_requisition(requisition_id, actor)
        return self.ledger.get_steps(requisition_id)

    def get_available_transitions(self, requisition_id: UUID, actor: Actor) -> Dict[str, Any]:
        """Transitions ``actor`` could perform on the requisition right now."""
        requisition = self._load(requisition_id)
        machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
        available = set(machine.get_available_transitions())

        if requisition.submitter_id != actor.id:
            available.discard(RequisitionTransition.SUBMIT)

        step_transitions = {
            RequisitionTransition.ADVANCE,
            RequisitionTransition.APPROVE,
            RequisitionTransition.REJECT,
        }
        available -= step_transitions

        next_step = None
        can_decide = False
        if machine.state == RequisitionStatus.IN_APPROVAL:
            pending = self.ledger.get_pending_steps(requisition.id)
            next_step = pending[0] if pending else None
            if next_step is not None and self.ledger.is_eligible(next_step, actor, requisition.submitter_id):
                can_decide = True
                available.add(RequisitionTransition.APPROVE if len(pending) == 1 else RequisitionTransition.ADVANCE)
                available.add(RequisitionTransition.REJECT)

        return {
            "status": machine.state.value,
            "transitions": sorted(t.value for t in available),
            "next_step_id": next_step.id if next_step else None,
            "can_decide_next_step": can_decide,
        }

    # Drafts

    def create_requisition(self, actor: Actor, data: Any) -> Requisition:
        """Create a DRAFT owned by ``actor``."""
        require_permission(actor, Permission.CREATE_REQUISITION)
        payload = _validate(RequisitionCreate, data)

        department_id = payload.department_id or actor.department_id
        if department_id is None:
            raise ValidationError(
                "A department is required",
                [{"loc": ["department_id"], "msg": "Field required", "type": "missing"}],
            )

        requisition = Requisition(
            id=uuid.uuid4(),
            submitter_id=actor.id,
            department_id=department_id,
            title=payload.title.strip(),
            description=payload.description,
            category=payload.category.strip(),
            amount=payload.amount,
            currency=payload.currency,
            urgency_level=payload.urgency_level.value,
            business_justification=payload.business_justification,
            status=RequisitionStatus.DRAFT.value,
        )

        with self._transaction(requisition.id):
            self.db.add(requisition)
            self.db.flush()
            event = self._event(
                requisition, actor, "create", None, None,
                records=[AuditRecord(AuditAction.CREATED, new_value=self._snapshot(requisition))],
            )

        self._after_commit(event)
        return requisition

    def update_requisition(self, requisition_id: UUID, actor: Actor, data: Any) -> Requisition:
        """Edit a DRAFT. One FIELD_UPDATED entry per changed field."""
        payload = _validate(RequisitionUpdate, data)
        changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}

        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            self._require_submitter(requisition, actor)
            if requisition.status != RequisitionStatus.DRAFT.value:
                raise InvalidTransitionError(
                    f"Cannot edit requisition in state {requisition.status}",
                    requisition.status,
                    "update",
                )

            records = []
            for field_name in EDITABLE_FIELDS:
                if field_name not in changes:
                    continue
                new = _jsonable(changes[field_name])
                old = getattr(requisition, field_name)
                if field_name == "amount" and Decimal(str(old)) == Decimal(str(new)):
                    continue
                if field_name != "amount" and old == new:
                    continue
                setattr(requisition, field_name, changes[field_name] if field_name == "amount" else new)
                records.append(AuditRecord(
                    AuditAction.FIELD_UPDATED,
                    previous_value=_jsonable(old),
                    new_value=new,
                    field_name=field_name,
                ))

            if records:
                requisition.updated_at = utcnow()
                self.db.flush()
            event = self._event(requisition, actor, "update", requisition.status, requisition.status, records=records)

        self._after_commit(event)
        return requisition

    # Transitions

    def submit(self, requisition_id: UUID, actor: Actor, *, pending_uploads: int = 0) -> Requisition:
        """
        Submit a DRAFT for approval.

        Rules are resolved once, the step list is created and the status
        becomes IN_APPROVAL, all in one commit.

        Raises:
            ValidationError: Blank required fields, non-positive amount, or uploads in flight
            NotAuthorizedError: Actor is not the submitter
            InvalidTransitionError: Requisition is not a DRAFT
            ApprovalConfigurationError: Rules cannot produce a step list
        """
        if pending_uploads:
            raise ValidationError(
                f"{pending_uploads} attachment(s) are still uploading",
                [{"loc": ["pending_uploads"], "msg": "Attachments must be finalized", "type": "value_error"}],
            )

        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            self._require_submitter(requisition, actor)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            new_status = machine.transition(RequisitionTransition.SUBMIT)
            self._check_submittable(requisition)

            resolution = assign_approvers(
                self.resolver.resolve(self._attributes(requisition)), self.directory, requisition.department_id
            )
            self.ledger.create_steps(requisition.id, resolution.steps)

            now = utcnow()
            from_status = requisition.status
            requisition.status = new_status.value
            requisition.resolved_rule = resolution.to_snapshot()
            requisition.submitted_at = now
            requisition.updated_at = now
            self.db.flush()

            event = self._event(
                requisition, actor, RequisitionTransition.SUBMIT.value, from_status, requisition.status,
                details={"rule": requisition.resolved_rule},
            )

        self._after_commit(event)
        return requisition

    def approve_step(
        self,
        requisition_id: UUID,
        actor: Actor,
        step_id: UUID,
        *,
        comment: Optional[str] = None,
    ) -> ApprovalStep:
        """
        Approve step ``step_id``, which must be the next pending step.

        The decision is judged against the step the caller saw: repeating
        the call raises ``NotPendingError`` instead of deciding the next one.

        The requisition stays IN_APPROVAL while steps remain and becomes
        APPROVED with the last one.
        """
        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            self._check_step_pending(requisition, step_id)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            machine.check(RequisitionTransition.APPROVE, enforce_permission=False)

            pending = self.ledger.get_pending_steps(requisition.id)
            transition = RequisitionTransition.APPROVE if len(pending) == 1 else RequisitionTransition.ADVANCE
            new_status = machine.transition(transition, enforce_permission=False)

            step = self.ledger.approve_step(step_id, actor, comment)

            from_status = requisition.status
            now = utcnow()
            requisition.status = new_status.value
            requisition.updated_at = now
            if new_status == RequisitionStatus.APPROVED:
                requisition.decided_at = now
            self.db.flush()

            event = self._event(
                requisition, actor, transition.value, from_status, requisition.status,
                records=[AuditRecord(
                    AuditAction.STEP_APPROVED,
                    previous_value=StepStatus.PENDING.value,
                    new_value=StepStatus.APPROVED.value,
                    details=_step_details(step),
                )],
            )

        self._after_commit(event)
        return step

    def reject_step(
        self,
        requisition_id: UUID,
        actor: Actor,
        step_id: UUID,
        *,
        comment: str,
    ) -> ApprovalStep:
        """
        Reject step ``step_id``, the next pending one; the requisition becomes REJECTED.

        Later PENDING steps are left untouched.
        """
        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            self._check_step_pending(requisition, step_id)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            new_status = machine.transition(
                RequisitionTransition.REJECT, comment=comment, enforce_permission=False
            )

            step = self.ledger.reject_step(step_id, actor, comment)

            from_status = requisition.status
            now = utcnow()
            requisition.status = new_status.value
            requisition.updated_at = now
            requisition.decided_at = now
            self.db.flush()

            event = self._event(
                requisition, actor, RequisitionTransition.REJECT.value, from_status, requisition.status,
                reason=comment,
                records=[AuditRecord(
                    AuditAction.STEP_REJECTED,
                    previous_value=StepStatus.PENDING.value,
                    new_value=StepStatus.REJECTED.value,
                    details=_step_details(step),
                )],
            )

        self._after_commit(event)
        return step

    def reject_all(self, requisition_id: UUID, actor: Actor, *, comment: str) -> List[ApprovalStep]:
        """Administrative override: reject every pending step and the requisition at once."""
        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            new_status = machine.transition(RequisitionTransition.REJECT_ALL, comment=comment)

            steps = self.ledger.reject_pending_steps(requisition.id, actor, comment)

            from_status = requisition.status
            now = utcnow()
            requisition.status = new_status.value
            requisition.updated_at = now
            requisition.decided_at = now
            self.db.flush()

            records = [
                AuditRecord(
                    AuditAction.STEP_REJECTED,
                    previous_value=StepStatus.PENDING.value,
                    new_value=StepStatus.REJECTED.value,
                    details={**_step_details(step), "override": True},
                )
                for step in steps
            ]
            event = self._event(
                requisition, actor, RequisitionTransition.REJECT_ALL.value, from_status, requisition.status,
                reason=comment, records=records, details={"rejected_steps": len(steps)},
            )

        self._after_commit(event)
        return steps

    def record_payment(self, requisition_id: UUID, actor: Actor, data: Any) -> Requisition:
        """Record the downstream payment of an APPROVED requisition."""
        payload = _validate(PaymentRecord, data)

        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            new_status = machine.transition(RequisitionTransition.RECORD_PAYMENT)

            from_status = requisition.status
            requisition.actual_amount_paid = payload.actual_amount_paid
            requisition.payment_date = payload.payment_date or utcnow()
            requisition.payment_method = payload.payment_method
            requisition.payment_reference = payload.payment_reference
            requisition.payment_comment = payload.comment
            requisition.status = new_status.value
            requisition.updated_at = utcnow()
            self.db.flush()

            payment = {
                "actual_amount_paid": _jsonable(payload.actual_amount_paid),
                "payment_date": _jsonable(requisition.payment_date),
                "payment_method": payload.payment_method,
                "payment_reference": payload.payment_reference,
                "comment": payload.comment,
            }
            event = self._event(
                requisition, actor, RequisitionTransition.RECORD_PAYMENT.value, from_status, requisition.status,
                records=[AuditRecord(AuditAction.PAYMENT_RECORDED, new_value=payment, field_name="payment")],
            )

        self._after_commit(event)
        return requisition

    def cancel(self, requisition_id: UUID, actor: Actor, *, reason: str) -> Requisition:
        """Administrative cancellation of a non-terminal requisition; pending steps become SKIPPED."""
        with self._transaction(requisition_id):
            requisition = self._load(requisition_id, for_update=True)
            machine = RequisitionStateMachine(requisition.id, requisition.status, actor)
            new_status = machine.transition(RequisitionTransition.CANCEL, comment=reason)

            skipped = self.ledger.skip_pending_steps(requisition.id, reason.strip())

            from_status = requisition.status
            now = utcnow()
            requisition.status = new_status.value
            requisition.cancellation_reason = reason.strip()
            requisition.decided_at = now
            requisition.updated_at = now
            self.db.flush()

            event = self._event(
                requisition, actor, RequisitionTransition.CANCEL.value, from_status, requisition.status,
                reason=requisition.cancellation_reason,
                details={"skipped_steps": len(skipped)} if skipped else None,
            )

        self._after_commit(event)
        return requisition

    def record_attachment_event(self, requisition_id: UUID, actor: Actor, data: Any) -> TransitionEvent:
        """
        Audit an attachment lifecycle event reported by the storage collaborator.

        Uploads and deletions are accepted on drafts, from the submitter or
        an admin. Downloads need read access to the requisition.
        """
        payload = _validate(AttachmentEvent, data)
        action = ATTACHMENT_EVENT_ACTIONS[payload.event]
        requisition = self.get_requisition(requisition_id, actor)

        if action == AuditAction.ATTACHMENT_DOWNLOADED:
            require_permission(actor, Permission.DOWNLOAD_ATTACHMENTS)
        else:
            require_permission(actor, Permission.UPLOAD_ATTACHMENTS)
            if not actor.is_admin:
                self._require_submitter(requisition, actor)
            if requisition.status != RequisitionStatus.DRAFT.value:
                raise InvalidTransitionError(
                    f"Attachments cannot change in state {requisition.status}",
                    requisition.status,
                    payload.event.lower(),
                )

        record = attachment_record(
            action,
            filename=payload.filename,
            size=payload.size,
            content_type=payload.content_type,
            attachment_id=payload.attachment_id,
        )
        event = self._event(requisition, actor, action.value.lower(), None, None, records=[record])
        self._after_commit(event)
        return event

    # Internals

    @contextmanager
    def _transaction(self, requisition_id: UUID):
        with self.locks.hold(requisition_id):
            try:
                yield
                self.db.commit()
            except StaleDataError as e:
                self.db.rollback()
                raise ConcurrentTransitionError(
                    f"Requisition {requisition_id} was modified concurrently"
                ) from e
            except Exception:
                self.db.rollback()
                raise

    def _load(self, requisition_id: UUID, *, for_update: bool = False) -> Requisition:
        query = self.db.query(Requisition).filter(Requisition.id == requisition_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        requisition = query.first()
        if requisition is None:
            raise NotFoundError("Requisition", requisition_id)
        return requisition

    def _check_step_pending(self, requisition: Requisition, step_id: UUID) -> None:
        """The step must belong to the requisition and still be PENDING."""
        step = self.ledger.get_step(step_id)
        if step.requisition_id != requisition.id:
            raise NotFoundError("Approval step", step_id)
        self.db.refresh(step)
        if step.status != StepStatus.PENDING.value:
            raise NotPendingError(step.id, step.status)

    def _require_submitter(self, requisition: Requisition, actor: Actor) -> None:
        if requisition.submitter_id != actor.id:
            raise NotAuthorizedError(f"Only the submitter may change requisition {requisition.id}")

    def _can_view(self, requisition: Requisition, actor: Actor) -> bool:
        if requisition.submitter_id == actor.id:
            return True
        if has_permission(actor, Permission.VIEW_ALL_REQUISITIONS):
            return True
        return any(step.assignee_id == actor.id for step in requisition.steps)

    def _check_submittable(self, requisition: Requisition) -> None:
        errors = [
            {"loc": [name], "msg": "Field must not be blank", "type": "missing"}
            for name in REQUIRED_FOR_SUBMISSION
            if not (getattr(requisition, name) or "").strip()
        ]
        if requisition.amount is None or Decimal(str(requisition.amount)) <= 0:
            errors.append({"loc": ["amount"], "msg": "Amount must be greater than 0", "type": "greater_than"})
        if errors:
            raise ValidationError(f"Requisition {requisition.id} is incomplete", errors)

    @staticmethod
    def _attributes(requisition: Requisition) -> Dict[str, Any]:
        return {
            "amount": requisition.amount,
            "currency": requisition.currency,
            "category": requisition.category,
            "department_id": requisition.department_id,
            "urgency_level": requisition.urgency_level,
            "submitter_id": str(requisition.submitter_id),
            "title": requisition.title,
        }

    @staticmethod
    def _snapshot(requisition: Requisition) -> Dict[str, Any]:
        return {name: _jsonable(getattr(requisition, name)) for name in EDITABLE_FIELDS + ("status",)}

    def _event(
        self,
        requisition: Requisition,
        actor: Actor,
        operation: str,
        from_status: Optional[str],
        to_status: Optional[str],
        *,
        reason: Optional[str] = None,
        records: Optional[List[AuditRecord]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> TransitionEvent:
        records = list(records or [])
        if to_status is not None and from_status is not None and from_status != to_status:
            status_details = {"transition": operation}
            if reason:
                status_details["reason"] = reason
            if details:
                status_details.update(details)
            records.append(AuditRecord(
                AuditAction.STATUS_CHANGED,
                previous_value=from_status,
                new_value=to_status,
                field_name="status",
                details=status_details,
            ))
        return TransitionEvent(
            requisition_id=requisition.id,
            actor_id=actor.id,
            operation=operation,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            audit_records=records,
        )

    def _after_commit(self, event: TransitionEvent) -> None:
        if event.status_changed:
            logger.info("Requisition %s: %s -> %s (%s) by %s", event.requisition_id,
                        event.from_status, event.to_status, event.operation, event.actor_id)
        if self.hooks is not None:
            self.hooks.run(event)
