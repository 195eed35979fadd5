"""Audit trail model.

This table is APPEND-ONLY. The ORM refuses to update or delete loaded
entries, and database triggers (see migrations) refuse UPDATE and DELETE
statements. Entries carry no foreign key to ``requisitions`` so the
history outlives archived requisitions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import BigInteger, Column, DateTime, Integer, JSON, String, Uuid, event

from reqflow.core.errors import AuditImmutableError
from reqflow.db.base import Base, utcnow


class AuditAction(str, Enum):
    """Kinds of audit entries."""
    CREATED = "CREATED"
    FIELD_UPDATED = "FIELD_UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    STEP_APPROVED = "STEP_APPROVED"
    STEP_REJECTED = "STEP_REJECTED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    ATTACHMENT_UPLOADED = "ATTACHMENT_UPLOADED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"
    ATTACHMENT_DOWNLOADED = "ATTACHMENT_DOWNLOADED"


ATTACHMENT_ACTIONS = frozenset({
    AuditAction.ATTACHMENT_UPLOADED,
    AuditAction.ATTACHMENT_DELETED,
    AuditAction.ATTACHMENT_DOWNLOADED,
})


class AuditEntry(Base):
    """
    Immutable audit entry for one requisition change.

    Ordered by ``created_at``; ``id`` is an increasing integer identity and
    breaks ties in insertion order.
    """
    __tablename__ = "audit_entries"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    requisition_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    actor_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    action = Column(String(50), nullable=False, index=True)
    field_name = Column(String(100), nullable=True)

    # Opaque snapshots, stored verbatim
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action} on {self.requisition_id} by {self.actor_id}>"

    @classmethod
    def create_entry(
        cls,
        requisition_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        *,
        previous_value: Any = None,
        new_value: Any = None,
        field_name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> "AuditEntry":
        """
        Factory method to create a new audit entry.

        Args:
            requisition_id: Requisition the change belongs to
            actor_id: Identity that caused the change
            action: Kind of change
            previous_value: Value before the change
            new_value: Value after the change
            field_name: Changed field, for field-level entries
            details: Additional context (reason, step, attachment metadata)
            created_at: When the change committed; defaults to now
        """
        return cls(
            requisition_id=requisition_id,
            actor_id=actor_id,
            action=action.value if isinstance(action, AuditAction) else action,
            field_name=field_name,
            previous_value=previous_value,
            new_value=new_value,
            details=details,
            created_at=created_at or utcnow(),
        )


@event.listens_for(AuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditImmutableError(f"Audit entries are immutable and cannot be updated. Record ID: {target.id}")


@event.listens_for(AuditEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise AuditImmutableError(f"Audit entries are immutable and cannot be deleted. Record ID: {target.id}")
