"""Approval rule administration endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from reqflow.api.deps import PermissionDependency, get_rule_service
from reqflow.core.rbac import Actor, Permission
from reqflow.schemas.common import PaginatedResponse
from reqflow.schemas.rule import ApprovalRuleCreate, ApprovalRuleResponse, ApprovalRuleUpdate
from reqflow.services.approval_rules import ApprovalRuleService

router = APIRouter(prefix="/approval-rules", tags=["approval-rules"])

require_rule_admin = PermissionDependency(Permission.MANAGE_APPROVAL_RULES)


@router.get("", response_model=PaginatedResponse[ApprovalRuleResponse])
def list_rules(
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
    active_only: bool = False,
    skip: int = Query(0, ge=0),
    take: int = Query(100, ge=1, le=100),
):
    rules, total = service.list_rules(active_only=active_only, skip=skip, take=take)
    return PaginatedResponse.create(
        items=[ApprovalRuleResponse.model_validate(r) for r in rules],
        total=total,
        skip=skip,
        take=take,
    )


@router.get("/{rule_id}", response_model=ApprovalRuleResponse)
def get_rule(
    rule_id: UUID,
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
):
    return ApprovalRuleResponse.model_validate(service.get_rule(rule_id))


@router.post("", response_model=ApprovalRuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    data: ApprovalRuleCreate,
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
):
    """Create a new approval rule."""
    return ApprovalRuleResponse.model_validate(service.create_rule(actor, data))


@router.patch("/{rule_id}", response_model=ApprovalRuleResponse)
def update_rule(
    rule_id: UUID,
    data: ApprovalRuleUpdate,
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
):
    return ApprovalRuleResponse.model_validate(service.update_rule(rule_id, actor, data))


@router.post("/{rule_id}/deactivate", response_model=ApprovalRuleResponse)
def deactivate_rule(
    rule_id: UUID,
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
):
    return ApprovalRuleResponse.model_validate(service.deactivate_rule(rule_id, actor))


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: UUID,
    service: ApprovalRuleService = Depends(get_rule_service),
    actor: Actor = Depends(require_rule_admin),
):
    """Delete a rule. Requisitions already resolved against it keep their steps."""
    service.delete_rule(rule_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
