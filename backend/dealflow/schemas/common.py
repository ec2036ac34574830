"""Common Pydantic schemas used across the API."""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ListMeta(BaseModel):
    """Metadata included in list responses."""

    total: int = 0
    limit: Optional[int] = None


class ApiResponse(BaseModel, Generic[T]):
    """Standard API response envelope."""

    status: str = "success"
    data: T
    meta: Optional[ListMeta] = None


class ErrorDetail(BaseModel):
    """Error detail for error responses."""

    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard API error response."""

    status: str = "error"
    error: ErrorDetail
