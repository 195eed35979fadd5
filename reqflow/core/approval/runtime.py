"""Lifecycle-scoped engine runtime.

One ``WorkflowRuntime`` per process (or per test): it owns the lock
registry, the post-commit hooks, the notification dispatcher and the
audit recorder, and hands out per-session ``RequisitionWorkflow`` objects.
"""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from reqflow.core.config import Settings
from reqflow.core.rules.directory import ApproverDirectory
from reqflow.services.audit_trail import AuditTrailRecorder
from reqflow.services.notifications import NotificationDispatcher, build_dispatcher
from .hooks import PostCommitHooks, make_audit_hook, make_notification_hook
from .locks import RequisitionLockRegistry
from .service import RequisitionWorkflow

logger = logging.getLogger(__name__)


@dataclass
class WorkflowRuntime:
    settings: Settings
    session_factory: sessionmaker
    locks: RequisitionLockRegistry
    hooks: PostCommitHooks
    dispatcher: NotificationDispatcher
    recorder: AuditTrailRecorder
    directory: Optional[ApproverDirectory] = None

    def workflow(self, db: Session) -> RequisitionWorkflow:
        return RequisitionWorkflow(
            db, locks=self.locks, hooks=self.hooks, settings=self.settings, directory=self.directory
        )

    def close(self) -> None:
        self.hooks.shutdown()
        self.dispatcher.close()


def build_runtime(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    directory: Optional[ApproverDirectory] = None,
) -> WorkflowRuntime:
    """Wire the engine: audit hook inline, notification hook bounded by a timeout."""
    recorder = AuditTrailRecorder(session_factory, max_page_size=settings.max_page_size)
    dispatcher = dispatcher or build_dispatcher(settings)

    hooks = PostCommitHooks()
    hooks.register(make_audit_hook(recorder), name="audit_trail")
    hooks.register(
        make_notification_hook(dispatcher),
        name="notifications",
        timeout=settings.notification_timeout_seconds,
    )
    logger.info("Workflow runtime ready (hooks: %s, channels: %d)",
                ", ".join(hooks.names), len(dispatcher.registry.channels()))

    return WorkflowRuntime(
        settings=settings,
        session_factory=session_factory,
        locks=RequisitionLockRegistry(),
        hooks=hooks,
        dispatcher=dispatcher,
        recorder=recorder,
        directory=directory,
    )
