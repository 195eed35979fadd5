import uuid
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text, Numeric, Uuid

from reqflow.db.base import Base, utcnow


class ApprovalRule(Base):
    """
    Configuration mapping requisition attributes to an ordered approver chain.

    Amount bands are half-open: ``min_amount <= amount < max_amount``.
    Null ``category``/``department_id``/``currency``/``max_amount`` match anything.
    ``steps`` is a list of ``{"role": ..., "assignee_id": ...}`` objects.
    """
    __tablename__ = "approval_rules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    # Predicate
    min_amount = Column(Numeric(12, 2), nullable=False, default=0)
    max_amount = Column(Numeric(12, 2), nullable=True)
    category = Column(String(100), nullable=True)
    department_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    currency = Column(String(3), nullable=True)
    conditions = Column(JSON, nullable=False, default=list)

    # Outcome
    steps = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.name} [{'active' if self.is_active else 'inactive'}]>"
