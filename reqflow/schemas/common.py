"""Common schemas for the reqflow API."""

from typing import Generic, TypeVar, Optional, List, Any
from pydantic import BaseModel, Field

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Offset pagination parameters."""
    skip: int = Field(0, ge=0, description="Items to skip")
    take: int = Field(50, ge=1, le=100, description="Items to return")


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response wrapper."""
    items: List[T]
    total: int
    skip: int
    take: int

    @classmethod
    def create(cls, items: List[T], total: int, skip: int, take: int):
        return cls(items=items, total=total, skip=skip, take=take)


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
    code: Optional[str] = None


class SuccessResponse(BaseModel):
    """Standard success response."""
    message: str
    data: Optional[Any] = None
