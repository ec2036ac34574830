"""User submission schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubmissionRequest(BaseModel):
    """Deal submitted by a user for ingestion."""

    title: str = Field(..., max_length=500)
    url: str = Field(..., max_length=2000)
    price: Decimal
    original_price: Optional[Decimal] = None
    merchant: Optional[str] = None
    category: str = ""
    description: Optional[str] = Field(None, max_length=5000)
    submitted_by: Optional[str] = None


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    url: str
    price: Decimal
    original_price: Optional[Decimal] = None
    merchant: Optional[str] = None
    submitted_at: datetime
