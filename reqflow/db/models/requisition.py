"""Requisition and approval step models.

A requisition owns its approval steps; steps are bulk-created at
submission time, never reordered, and only removed when the requisition
itself is deleted.
"""

import uuid
from sqlalchemy import (
    Column, String, DateTime, JSON, ForeignKey, Text, Integer, Numeric, Uuid, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from reqflow.db.base import Base, utcnow
from reqflow.core.approval.states import RequisitionStatus, StepStatus


class Requisition(Base):
    """
    A request for an expenditure that must pass approval before payment.

    ``version`` is the optimistic-concurrency counter: every UPDATE checks
    and bumps it, so a stale writer fails instead of overwriting.
    """
    __tablename__ = "requisitions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Ownership (references into the identity collaborator)
    submitter_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    department_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    # Request details
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    urgency_level = Column(String(20), nullable=False, default="MEDIUM")
    business_justification = Column(Text, nullable=False, default="")

    # Workflow state
    status = Column(String(20), nullable=False, default=RequisitionStatus.DRAFT.value, index=True)
    version = Column(Integer, nullable=False, default=1)

    # Rule resolved at submission (snapshot; later rule edits never apply)
    resolved_rule = Column(JSON, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)

    # Payment (recorded downstream, observed here)
    actual_amount_paid = Column(Numeric(12, 2), nullable=True)
    payment_date = Column(DateTime, nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    payment_comment = Column(Text, nullable=True)

    cancellation_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    steps = relationship(
        "ApprovalStep",
        back_populates="requisition",
        order_by="ApprovalStep.sequence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Requisition {self.id} [{self.status}]>"


class ApprovalStep(Base):
    """
    One position in a requisition's ordered approval chain.

    Sequence positions are 0-based and contiguous per requisition.
    """
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("requisition_id", "sequence", name="uq_approval_steps_requisition_sequence"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    requisition_id = Column(
        Uuid(as_uuid=True), ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence = Column(Integer, nullable=False)

    # Who may decide
    required_role = Column(String(20), nullable=False)
    assignee_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    # Decision
    status = Column(String(20), nullable=False, default=StepStatus.PENDING.value, index=True)
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    requisition = relationship("Requisition", back_populates="steps")

    def __repr__(self) -> str:
        return f"<ApprovalStep #{self.sequence} {self.required_role} [{self.status}]>"
