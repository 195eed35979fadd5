"""Approval step ledger.

Owns the per-requisition approval steps and their individual states.
Steps are strictly sequential: only the lowest-sequence PENDING step is
actionable. Decisions are applied with a conditional UPDATE on
``status = 'PENDING'``, so of two racing deciders exactly one wins and the
other gets ``NotPendingError``.

The ledger flushes but never commits; the caller owns the transaction.
"""

import logging
from typing import List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from reqflow.core.errors import (
    EmptyApprovalChainError,
    NotAuthorizedError,
    NotFoundError,
    NotPendingError,
    StepOutOfOrderError,
    StepsAlreadyCreatedError,
    ValidationError,
)
from reqflow.core.rbac import Actor, Role
from reqflow.core.rules.resolver import ResolvedStep
from reqflow.db.base import utcnow
from reqflow.db.models import ApprovalStep, Requisition
from .states import StepStatus

logger = logging.getLogger(__name__)


class ApprovalStepLedger:
    """Step records for requisitions, and the rules for deciding them."""

    def __init__(self, db: Session):
        self.db = db

    def create_steps(
        self,
        requisition_id: UUID,
        steps: Sequence[Union[ResolvedStep, Role]],
    ) -> List[ApprovalStep]:
        """
        Bulk-create PENDING steps at sequence positions 0..n-1.

        Raises:
            StepsAlreadyCreatedError: The requisition already has steps
            EmptyApprovalChainError: ``steps`` is empty
        """
        if not steps:
            raise EmptyApprovalChainError(f"No approval steps for requisition {requisition_id}")

        existing = self.db.query(ApprovalStep.id).filter(
            ApprovalStep.requisition_id == requisition_id
        ).first()
        if existing is not None:
            raise StepsAlreadyCreatedError(
                f"Approval steps already exist for requisition {requisition_id}",
                transition="create_steps",
            )

        rows = []
        for sequence, step in enumerate(steps):
            if isinstance(step, Role):
                step = ResolvedStep(role=step)
            row = ApprovalStep(
                requisition_id=requisition_id,
                sequence=sequence,
                required_role=step.role.value,
                assignee_id=step.assignee_id,
                status=StepStatus.PENDING.value,
            )
            self.db.add(row)
            rows.append(row)

        self.db.flush()
        return rows

    def get_steps(self, requisition_id: UUID) -> List[ApprovalStep]:
        return self.db.query(ApprovalStep).filter(
            ApprovalStep.requisition_id == requisition_id
        ).order_by(ApprovalStep.sequence.asc()).all()

    def get_step(self, step_id: UUID) -> ApprovalStep:
        step = self.db.get(ApprovalStep, step_id)
        if step is None:
            raise NotFoundError("Approval step", step_id)
        return step

    def get_next_pending_step(self, requisition_id: UUID) -> Optional[ApprovalStep]:
        """Lowest-sequence PENDING step, or None if every step is decided or none exist."""
        return self.db.query(ApprovalStep).filter(
            ApprovalStep.requisition_id == requisition_id,
            ApprovalStep.status == StepStatus.PENDING.value,
        ).order_by(ApprovalStep.sequence.asc()).first()

    def get_pending_steps(self, requisition_id: UUID) -> List[ApprovalStep]:
        return self.db.query(ApprovalStep).filter(
            ApprovalStep.requisition_id == requisition_id,
            ApprovalStep.status == StepStatus.PENDING.value,
        ).order_by(ApprovalStep.sequence.asc()).all()

    def is_eligible(self, step: ApprovalStep, actor: Actor, submitter_id: Optional[UUID] = None) -> bool:
        """
        Whether ``actor`` may decide ``step``.

        A specific assignee is authoritative. Otherwise the actor's role must
        equal the required role; admins may decide any unassigned step. The
        submitter never decides steps of their own requisition.
        """
        if submitter_id is not None and actor.id == submitter_id:
            return False
        if step.assignee_id is not None:
            return actor.id == step.assignee_id
        return actor.is_admin or actor.role.value == step.required_role

    def check_eligibility(self, step: ApprovalStep, actor: Actor) -> None:
        submitter_id = self._submitter_of(step)
        if submitter_id is not None and actor.id == submitter_id:
            raise NotAuthorizedError("Submitters cannot decide steps of their own requisition")
        if not self.is_eligible(step, actor):
            if step.assignee_id is not None:
                raise NotAuthorizedError(f"Step {step.sequence} is assigned to another approver")
            raise NotAuthorizedError(
                f"Step {step.sequence} requires role {step.required_role}, actor has {actor.role.value}"
            )

    def approve_step(self, step_id: UUID, actor: Actor, comment: Optional[str] = None) -> ApprovalStep:
        """
        Approve the next pending step.

        Raises:
            NotFoundError: Unknown step
            NotPendingError: The step is already decided (or a concurrent decision won)
            StepOutOfOrderError: An earlier step is still pending
            NotAuthorizedError: The actor may not decide this step
        """
        step = self._actionable_step(step_id, actor)
        return self._decide(step, StepStatus.APPROVED, actor, comment)

    def reject_step(self, step_id: UUID, actor: Actor, comment: str) -> ApprovalStep:
        """Reject the next pending step. A comment is required."""
        if not comment or not comment.strip():
            raise ValidationError(
                "Rejecting a step requires a comment",
                [{"loc": ["comment"], "msg": "Comment is required", "type": "missing"}],
            )
        step = self._actionable_step(step_id, actor)
        return self._decide(step, StepStatus.REJECTED, actor, comment)

    def reject_pending_steps(self, requisition_id: UUID, actor: Actor, comment: str) -> List[ApprovalStep]:
        """
        Reject every PENDING step of a requisition (administrative override).

        Eligibility is not checked per step; callers gate this on the
        override permission.
        """
        pending = self.get_pending_steps(requisition_id)
        return [self._decide(step, StepStatus.REJECTED, actor, comment) for step in pending]

    def skip_pending_steps(self, requisition_id: UUID, reason: Optional[str] = None) -> List[ApprovalStep]:
        """Mark every PENDING step SKIPPED, with no deciding actor. Used on cancellation."""
        pending = self.get_pending_steps(requisition_id)
        if not pending:
            return []

        self.db.execute(
            update(ApprovalStep)
            .where(
                ApprovalStep.requisition_id == requisition_id,
                ApprovalStep.status == StepStatus.PENDING.value,
            )
            .values(status=StepStatus.SKIPPED.value, decided_at=utcnow(), comment=reason)
            .execution_options(synchronize_session=False)
        )
        for step in pending:
            self.db.refresh(step)
        logger.debug("Skipped %d pending steps of requisition %s", len(pending), requisition_id)
        return pending

    def _actionable_step(self, step_id: UUID, actor: Actor) -> ApprovalStep:
        step = self.get_step(step_id)
        if step.status != StepStatus.PENDING.value:
            raise NotPendingError(step.id, step.status)

        next_step = self.get_next_pending_step(step.requisition_id)
        if next_step is not None and next_step.id != step.id:
            raise StepOutOfOrderError(
                f"Step {step.sequence} cannot be decided before step {next_step.sequence}",
                transition="decide_step",
            )

        self.check_eligibility(step, actor)
        return step

    def _decide(self, step: ApprovalStep, status: StepStatus, actor: Actor, comment: Optional[str]) -> ApprovalStep:
        decided_at = utcnow()
        result = self.db.execute(
            update(ApprovalStep)
            .where(
                ApprovalStep.id == step.id,
                ApprovalStep.status == StepStatus.PENDING.value,
            )
            .values(status=status.value, actor_id=actor.id, decided_at=decided_at, comment=comment)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.refresh(step)
            raise NotPendingError(step.id, step.status)

        self.db.refresh(step)
        logger.debug("Step %s of requisition %s -> %s by %s",
                     step.sequence, step.requisition_id, status.value, actor.id)
        return step

    def _submitter_of(self, step: ApprovalStep) -> Optional[UUID]:
        requisition = step.requisition or self.db.get(Requisition, step.requisition_id)
        return requisition.submitter_id if requisition else None
