"""Audit trail schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    requisition_id: UUID
    actor_id: UUID
    action: str
    field_name: Optional[str]
    previous_value: Optional[Any]
    new_value: Optional[Any]
    details: Optional[Any]
    created_at: datetime
