from typing import Generator, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from reqflow.core.approval.runtime import WorkflowRuntime
from reqflow.core.approval.service import RequisitionWorkflow
from reqflow.core.rbac import Actor, Permission, Role, require_permission
from reqflow.services.approval_rules import ApprovalRuleService
from reqflow.services.audit_trail import AuditTrailRecorder


def get_runtime(request: Request) -> WorkflowRuntime:
    return request.app.state.runtime


def get_db(runtime: WorkflowRuntime = Depends(get_runtime)) -> Generator:
    """Database session dependency."""
    db = runtime.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_department_id: Optional[str] = Header(None),
) -> Actor:
    """Identity supplied by the trusted upstream session layer."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid actor headers",
    )
    if not x_actor_id or not x_actor_role:
        raise credentials_exception
    try:
        return Actor(
            id=UUID(x_actor_id),
            role=Role.parse(x_actor_role),
            department_id=UUID(x_department_id) if x_department_id else None,
        )
    except ValueError:
        raise credentials_exception


def get_workflow(
    db: Session = Depends(get_db),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> RequisitionWorkflow:
    return runtime.workflow(db)


def get_rule_service(db: Session = Depends(get_db)) -> ApprovalRuleService:
    return ApprovalRuleService(db)


def get_recorder(runtime: WorkflowRuntime = Depends(get_runtime)) -> AuditTrailRecorder:
    return runtime.recorder


class PermissionDependency:
    """Dependency that requires the actor to hold any of the given permissions."""

    def __init__(self, *permissions: Permission):
        self.permissions = permissions

    def __call__(self, actor: Actor = Depends(get_actor)) -> Actor:
        require_permission(actor, *self.permissions)
        return actor
