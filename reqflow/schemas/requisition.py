"""Requisition, step and payment schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UrgencyLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RequisitionCreate(BaseModel):
    """A new draft. Description and justification may stay blank until submission."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str = Field("USD", min_length=3, max_length=3)
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM
    business_justification: str = ""
    department_id: Optional[UUID] = None

    @field_validator("currency", "urgency_level", mode="before")
    @classmethod
    def upper_codes(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class RequisitionUpdate(BaseModel):
    """Partial update of a draft; only fields that are set are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    urgency_level: Optional[UrgencyLevel] = None
    business_justification: Optional[str] = None

    @field_validator("currency", "urgency_level", mode="before")
    @classmethod
    def upper_codes(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class SubmitRequest(BaseModel):
    pending_uploads: int = Field(0, ge=0, description="Attachments still uploading")


class StepDecision(BaseModel):
    step_id: UUID = Field(..., description="Step being decided, from the transitions query")
    comment: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentRecord(BaseModel):
    actual_amount_paid: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_date: Optional[datetime] = None
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_reference: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = None


class AttachmentEvent(BaseModel):
    event: Literal["UPLOADED", "DELETED", "DOWNLOADED"]
    filename: str = Field(..., min_length=1, max_length=255)
    size: Optional[int] = Field(None, ge=0)
    content_type: Optional[str] = Field(None, max_length=100)
    attachment_id: Optional[str] = None

    @field_validator("event", mode="before")
    @classmethod
    def upper_event(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ApprovalStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    requisition_id: UUID
    sequence: int
    required_role: str
    assignee_id: Optional[UUID]
    status: str
    actor_id: Optional[UUID]
    decided_at: Optional[datetime]
    comment: Optional[str]


class RequisitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    submitter_id: UUID
    department_id: UUID
    title: str
    description: str
    category: str
    amount: Decimal
    currency: str
    urgency_level: str
    business_justification: str
    status: str
    version: int
    resolved_rule: Optional[Dict[str, Any]] = None
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    actual_amount_paid: Optional[Decimal] = None
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    steps: List[ApprovalStepResponse] = []


class TransitionsResponse(BaseModel):
    status: str
    transitions: List[str]
    next_step_id: Optional[UUID] = None
    can_decide_next_step: bool = False
