"""Approval rule schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reqflow.core.rbac import Role
from reqflow.core.rules.conditions import ConditionOperator


class RuleStep(BaseModel):
    role: Role
    assignee_id: Optional[UUID] = None

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        return Role.parse(v)


class RuleCondition(BaseModel):
    field: str = Field(..., min_length=1, max_length=100)
    operator: ConditionOperator
    value: Any = None


class ApprovalRuleBase(BaseModel):
    description: Optional[str] = None
    min_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    max_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(None, max_length=100)
    department_id: Optional[UUID] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    conditions: List[RuleCondition] = []
    is_active: bool = True

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ApprovalRuleCreate(ApprovalRuleBase):
    name: str = Field(..., min_length=1, max_length=255)
    steps: List[RuleStep] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_band(self):
        if self.max_amount is not None and self.max_amount <= self.min_amount:
            raise ValueError("max_amount must be greater than min_amount")
        return self


class ApprovalRuleUpdate(BaseModel):
    """Partial update; the amount band is re-validated against the stored rule."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    min_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    max_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(None, max_length=100)
    department_id: Optional[UUID] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    conditions: Optional[List[RuleCondition]] = None
    steps: Optional[List[RuleStep]] = Field(None, min_length=1)
    is_active: Optional[bool] = None

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ApprovalRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str]
    min_amount: Decimal
    max_amount: Optional[Decimal]
    category: Optional[str]
    department_id: Optional[UUID]
    currency: Optional[str]
    conditions: List[dict]
    steps: List[dict]
    is_active: bool
    created_at: datetime
    updated_at: datetime
