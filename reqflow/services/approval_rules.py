"""Approval rule administration.

Rules are configuration data edited by administrators. Editing a rule
never touches requisitions that already resolved against it: their step
lists and resolution snapshots were persisted at submission.
"""

from decimal import Decimal
import logging
from typing import Any, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from reqflow.core.errors import NotFoundError, ValidationError
from reqflow.core.rbac import Actor, Permission, require_permission
from reqflow.db.base import utcnow
from reqflow.db.models import ApprovalRule
from reqflow.schemas.rule import ApprovalRuleCreate, ApprovalRuleUpdate

logger = logging.getLogger(__name__)


def _steps_json(steps) -> List[dict]:
    return [
        {"role": s.role.value, "assignee_id": str(s.assignee_id) if s.assignee_id else None}
        for s in steps
    ]


def _conditions_json(conditions) -> List[dict]:
    return [
        {"field": c.field, "operator": c.operator.value,
         "value": str(c.value) if isinstance(c.value, Decimal) else c.value}
        for c in conditions
    ]


class ApprovalRuleService:
    """CRUD for approval rules, restricted to MANAGE_APPROVAL_RULES."""

    def __init__(self, db: Session):
        self.db = db

    def list_rules(self, *, active_only: bool = False, skip: int = 0, take: int = 100) -> Tuple[List[ApprovalRule], int]:
        query = self.db.query(ApprovalRule)
        if active_only:
            query = query.filter(ApprovalRule.is_active.is_(True))
        total = query.with_entities(func.count(ApprovalRule.id)).scalar() or 0
        rules = query.order_by(ApprovalRule.name.asc()).offset(skip).limit(take).all()
        return rules, total

    def count(self, *, active_only: bool = False) -> int:
        return self.list_rules(active_only=active_only, take=1)[1]

    def get_rule(self, rule_id: UUID) -> ApprovalRule:
        rule = self.db.get(ApprovalRule, rule_id)
        if rule is None:
            raise NotFoundError("Approval rule", rule_id)
        return rule

    def create_rule(self, actor: Actor, data: Any) -> ApprovalRule:
        require_permission(actor, Permission.MANAGE_APPROVAL_RULES)
        payload = self._parse(ApprovalRuleCreate, data)
        self._check_unique_name(payload.name)

        rule = ApprovalRule(
            name=payload.name.strip(),
            description=payload.description,
            min_amount=payload.min_amount,
            max_amount=payload.max_amount,
            category=payload.category,
            department_id=payload.department_id,
            currency=payload.currency,
            conditions=_conditions_json(payload.conditions),
            steps=_steps_json(payload.steps),
            is_active=payload.is_active,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info("Approval rule %s created by %s", rule.name, actor.id)
        return rule

    def update_rule(self, rule_id: UUID, actor: Actor, data: Any) -> ApprovalRule:
        require_permission(actor, Permission.MANAGE_APPROVAL_RULES)
        payload = self._parse(ApprovalRuleUpdate, data)
        rule = self.get_rule(rule_id)
        changes = payload.model_dump(exclude_unset=True)

        if changes.get("name") is not None:
            changes["name"] = changes["name"].strip()
            if not changes["name"]:
                raise ValidationError(
                    "Rule name cannot be blank",
                    [{"loc": ["name"], "msg": "Name is required", "type": "value_error"}],
                )
        if "name" in changes and changes["name"] != rule.name:
            self._check_unique_name(changes["name"], exclude_id=rule.id)

        min_amount = changes.get("min_amount", rule.min_amount)
        max_amount = changes["max_amount"] if "max_amount" in changes else rule.max_amount
        if min_amount is None:
            raise ValidationError("min_amount cannot be null")
        if max_amount is not None and Decimal(str(max_amount)) <= Decimal(str(min_amount)):
            raise ValidationError(
                "max_amount must be greater than min_amount",
                [{"loc": ["max_amount"], "msg": "Must be greater than min_amount", "type": "value_error"}],
            )

        if payload.steps is not None:
            rule.steps = _steps_json(payload.steps)
        if payload.conditions is not None:
            rule.conditions = _conditions_json(payload.conditions)
        for field in ("name", "description", "min_amount", "max_amount", "category",
                      "department_id", "currency", "is_active"):
            if field in changes:
                if field in ("name", "min_amount", "is_active") and changes[field] is None:
                    continue
                setattr(rule, field, changes[field])
        rule.updated_at = utcnow()

        self.db.commit()
        self.db.refresh(rule)
        logger.info("Approval rule %s updated by %s", rule.name, actor.id)
        return rule

    def deactivate_rule(self, rule_id: UUID, actor: Actor) -> ApprovalRule:
        return self.update_rule(rule_id, actor, {"is_active": False})

    def delete_rule(self, rule_id: UUID, actor: Actor) -> None:
        require_permission(actor, Permission.MANAGE_APPROVAL_RULES)
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.commit()
        logger.info("Approval rule %s deleted by %s", rule.name, actor.id)

    def _check_unique_name(self, name: str, exclude_id: Optional[UUID] = None) -> None:
        query = self.db.query(ApprovalRule.id).filter(ApprovalRule.name == name.strip())
        if exclude_id is not None:
            query = query.filter(ApprovalRule.id != exclude_id)
        if query.first() is not None:
            raise ValidationError(
                f"Approval rule with name {name!r} already exists",
                [{"loc": ["name"], "msg": "Name already in use", "type": "value_error"}],
            )

    @staticmethod
    def _parse(model, data):
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, f"Invalid {model.__name__}") from e
