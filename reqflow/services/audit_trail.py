"""Audit trail recorder.

Writes and reads the append-only audit trail. Every write uses its own
session and commits before returning, so a successful ``record`` is
durable and independent of the transition that prompted it.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from reqflow.core.errors import ValidationError
from reqflow.core.rbac import Actor, Permission, require_permission
from reqflow.db.models.audit import AuditAction, AuditEntry

logger = logging.getLogger(__name__)


class AuditTrailRecorder:
    """
    Append-only log of field-level and status-level requisition changes.

    Entries are never updated or deleted. Reads are chronological:
    ``created_at`` ascending with ``id`` breaking ties.
    """

    def __init__(self, session_factory: sessionmaker, *, max_page_size: int = 100):
        self.session_factory = session_factory
        self.max_page_size = max_page_size

    def record(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        previous_value: Any = None,
        new_value: Any = None,
        *,
        field_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> AuditEntry:
        """Append one entry and commit it."""
        with self.session_factory() as session:
            entry = AuditEntry.create_entry(
                requisition_id,
                actor_id,
                AuditAction(action),
                previous_value=previous_value,
                new_value=new_value,
                field_name=field_name,
                details=details,
                created_at=created_at,
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            session.expunge(entry)
            return entry

    def record_many(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        records: Iterable[Any],
        *,
        created_at: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """
        Append several entries in one commit, in the given order.

        ``records`` are objects with ``action``, ``previous_value``,
        ``new_value``, ``field_name`` and ``details`` attributes.
        """
        with self.session_factory() as session:
            entries = []
            for record in records:
                entry = AuditEntry.create_entry(
                    requisition_id,
                    actor_id,
                    AuditAction(record.action),
                    previous_value=record.previous_value,
                    new_value=record.new_value,
                    field_name=record.field_name,
                    details=record.details,
                    created_at=created_at,
                )
                session.add(entry)
                # Flush one at a time so ids follow list order
                session.flush()
                entries.append(entry)
            session.commit()
            for entry in entries:
                session.refresh(entry)
                session.expunge(entry)
            return entries

    def get_for_requisition(self, requisition_id: UUID, action: Optional[AuditAction] = None) -> List[AuditEntry]:
        """Chronological history of one requisition."""
        with self.session_factory() as session:
            query = session.query(AuditEntry).filter(AuditEntry.requisition_id == requisition_id)
            if action is not None:
                query = query.filter(AuditEntry.action == AuditAction(action).value)
            return self._detach(session, self._chronological(query).all())

    def get_all(self, actor: Actor, skip: int = 0, take: int = 50) -> List[AuditEntry]:
        """
        Paginated global audit trail (privileged).

        Raises:
            NotAuthorizedError: Actor lacks VIEW_AUDIT_TRAIL
        """
        require_permission(actor, Permission.VIEW_AUDIT_TRAIL)
        skip, take = self._page(skip, take)
        with self.session_factory() as session:
            query = self._chronological(session.query(AuditEntry)).offset(skip).limit(take)
            return self._detach(session, query.all())

    def get_by_actor(self, actor_id: UUID, skip: int = 0, take: int = 50) -> List[AuditEntry]:
        skip, take = self._page(skip, take)
        with self.session_factory() as session:
            query = session.query(AuditEntry).filter(AuditEntry.actor_id == actor_id)
            return self._detach(session, self._chronological(query).offset(skip).limit(take).all())

    def get_by_date_range(self, start: datetime, end: datetime) -> List[AuditEntry]:
        """Entries with ``start <= created_at < end``."""
        if end <= start:
            raise ValidationError("Date range end must be after start")
        with self.session_factory() as session:
            query = session.query(AuditEntry).filter(
                AuditEntry.created_at >= start,
                AuditEntry.created_at < end,
            )
            return self._detach(session, self._chronological(query).all())

    def count(self, requisition_id: Optional[UUID] = None) -> int:
        with self.session_factory() as session:
            query = session.query(func.count(AuditEntry.id))
            if requisition_id is not None:
                query = query.filter(AuditEntry.requisition_id == requisition_id)
            return query.scalar() or 0

    def _page(self, skip: int, take: int) -> tuple[int, int]:
        if skip < 0 or take < 1:
            raise ValidationError("skip must be >= 0 and take must be >= 1")
        return skip, min(take, self.max_page_size)

    @staticmethod
    def _chronological(query):
        return query.order_by(AuditEntry.created_at.asc(), AuditEntry.id.asc())

    @staticmethod
    def _detach(session: Session, entries: List[AuditEntry]) -> List[AuditEntry]:
        for entry in entries:
            session.expunge(entry)
        return entries
