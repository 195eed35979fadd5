"""Post-commit hooks.

After a transition's transaction commits, the workflow hands a
``TransitionEvent`` to every registered hook. Each hook is isolated: an
exception is logged and dropped, and a hook registered with a timeout runs
on a worker thread and is abandoned once the timeout passes. The committed
transition never appears to fail because of a hook.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from reqflow.db.base import utcnow
from reqflow.core.errors import ValidationError
from reqflow.db.models.audit import ATTACHMENT_ACTIONS, AuditAction

logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    """One audit entry to write for a committed change."""
    action: AuditAction
    previous_value: Any = None
    new_value: Any = None
    field_name: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


def attachment_record(
    action: AuditAction,
    *,
    filename: str,
    size: Optional[int] = None,
    content_type: Optional[str] = None,
    attachment_id: Optional[str] = None,
) -> AuditRecord:
    """Audit record for an attachment lifecycle event; deletions keep the metadata as the previous value."""
    action = AuditAction(action)
    if action not in ATTACHMENT_ACTIONS:
        raise ValidationError(f"{action.value} is not an attachment event")

    metadata = {
        "filename": filename,
        "size": size,
        "content_type": content_type,
        "attachment_id": attachment_id,
    }
    deleted = action == AuditAction.ATTACHMENT_DELETED
    return AuditRecord(
        action,
        previous_value=metadata if deleted else None,
        new_value=None if deleted else metadata,
        field_name="attachments",
        details=metadata,
    )


@dataclass
class TransitionEvent:
    """What a committed engine operation changed."""
    requisition_id: UUID
    actor_id: UUID
    operation: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    reason: Optional[str] = None
    audit_records: List[AuditRecord] = field(default_factory=list)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def status_changed(self) -> bool:
        return self.to_status is not None and self.from_status != self.to_status


Hook = Callable[[TransitionEvent], None]


@dataclass
class _Registration:
    name: str
    func: Hook
    timeout: Optional[float] = None


class PostCommitHooks:
    """
    Ordered list of post-commit hooks.

    Hooks without a timeout run inline, in registration order. Hooks with
    a timeout run on a shared thread pool; the caller waits at most that
    long for each. At most ``max_in_flight`` bounded calls may be running or
    queued; further ones are dropped with a warning.
    """

    def __init__(self, *, max_workers: int = 4, max_in_flight: Optional[int] = None):
        self._hooks: List[_Registration] = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reqflow-hook")
        self._max_in_flight = max_in_flight or max_workers * 2
        self._slots = threading.BoundedSemaphore(self._max_in_flight)

    def register(self, func: Hook, *, name: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self._hooks.append(_Registration(name=name or getattr(func, "__name__", "hook"), func=func, timeout=timeout))

    @property
    def names(self) -> List[str]:
        return [h.name for h in self._hooks]

    def run(self, event: TransitionEvent) -> None:
        """Run every hook for ``event``. Never raises."""
        for hook in self._hooks:
            if hook.timeout is None:
                self._run_inline(hook, event)
            else:
                self._run_bounded(hook, event)

    def _run_inline(self, hook: _Registration, event: TransitionEvent) -> None:
        try:
            hook.func(event)
        except Exception:
            logger.warning("Post-commit hook %s failed for requisition %s",
                           hook.name, event.requisition_id, exc_info=True)

    def _run_bounded(self, hook: _Registration, event: TransitionEvent) -> None:
        if not self._slots.acquire(blocking=False):
            logger.warning("Post-commit hook %s dropped for requisition %s: %d calls already in flight",
                           hook.name, event.requisition_id, self._max_in_flight)
            return
        try:
            future = self._executor.submit(self._call_and_release, hook.func, event)
        except RuntimeError:
            self._slots.release()
            logger.warning("Post-commit hook %s skipped: executor shut down", hook.name)
            return
        try:
            future.result(timeout=hook.timeout)
        except FutureTimeoutError:
            logger.warning("Post-commit hook %s timed out after %.2fs for requisition %s",
                           hook.name, hook.timeout, event.requisition_id)
        except Exception:
            logger.warning("Post-commit hook %s failed for requisition %s",
                           hook.name, event.requisition_id, exc_info=True)

    def _call_and_release(self, func: Hook, event: TransitionEvent) -> None:
        try:
            func(event)
        finally:
            self._slots.release()

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)


def make_audit_hook(recorder) -> Hook:
    """Hook writing the event's audit records through an AuditTrailRecorder."""

    def record_audit_trail(event: TransitionEvent) -> None:
        if not event.audit_records:
            return
        try:
            recorder.record_many(
                event.requisition_id,
                event.actor_id,
                event.audit_records,
                created_at=event.occurred_at,
            )
        except Exception:
            # Acknowledged audit gap: the transition stays committed.
            logger.error(
                "Audit gap: failed to record %d entries for requisition %s (%s)",
                len(event.audit_records), event.requisition_id, event.operation,
                exc_info=True,
            )

    return record_audit_trail


def make_notification_hook(dispatcher) -> Hook:
    """Hook forwarding status changes and step decisions to a NotificationDispatcher."""

    def dispatch_notifications(event: TransitionEvent) -> None:
        for record in event.audit_records:
            details = record.details or {}
            if record.action == AuditAction.STEP_APPROVED:
                dispatcher.notify_step_approved(
                    event.requisition_id, details.get("step_id"), event.actor_id,
                    sequence=details.get("sequence"), role=details.get("role"),
                )
            elif record.action == AuditAction.STEP_REJECTED:
                dispatcher.notify_step_rejected(
                    event.requisition_id, details.get("step_id"), event.actor_id,
                    comment=details.get("comment"), sequence=details.get("sequence"),
                    role=details.get("role"),
                )
        if event.status_changed:
            dispatcher.notify_status_changed(
                event.requisition_id, event.from_status, event.to_status, event.reason,
            )

    return dispatch_notifications
