"""Pydantic schemas for the dealflow API.

All request/response models are defined here for easy import.
"""

from dealflow.schemas.common import ApiResponse, ErrorDetail, ErrorResponse, ListMeta
from dealflow.schemas.health import HealthCheckResponse
from dealflow.schemas.job import JobResponse, JobStatsResponse, JobTriggerResponse, SourceResponse
from dealflow.schemas.offer import (
    DealDetailResponse,
    OfferResponse,
    PredictionResponse,
    PricePointResponse,
    PriceStatsResponse,
    ScoreBreakdownResponse,
    ScoredOfferResponse,
)
from dealflow.schemas.submission import SubmissionRequest, SubmissionResponse

__all__ = [
    # Common
    "ApiResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ListMeta",
    # Health
    "HealthCheckResponse",
    # Jobs and sources
    "JobResponse",
    "JobStatsResponse",
    "JobTriggerResponse",
    "SourceResponse",
    # Offers
    "DealDetailResponse",
    "OfferResponse",
    "PredictionResponse",
    "PricePointResponse",
    "PriceStatsResponse",
    "ScoreBreakdownResponse",
    "ScoredOfferResponse",
    # Submissions
    "SubmissionRequest",
    "SubmissionResponse",
]
