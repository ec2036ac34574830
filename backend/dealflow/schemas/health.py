"""Health check schemas."""

from typing import Dict

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    scheduler: str
    offers_indexed: int = 0
    services: Dict[str, str] = {}
