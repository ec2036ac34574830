"""Scored offer and price history schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class OfferResponse(BaseModel):
    """Canonical offer fields exposed by the API."""

    model_config = ConfigDict(from_attributes=True)

    fingerprint: str
    title: str
    brand: str
    model: Optional[str] = None
    category: str
    marketplace: str
    current_price: Decimal
    original_price: Optional[Decimal] = None
    discount_percent: Optional[int] = None
    currency: str
    url: Optional[str] = None
    image_url: Optional[str] = None
    condition: str
    stock_status: str
    rating: Optional[float] = None
    review_count: Optional[int] = None
    source: str
    listed_at: Optional[datetime] = None
    fetched_at: datetime


class ScoreBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    price_history: float
    discount: float
    quality: float
    freshness: float
    trust: float
    engagement: float


class ScoredOfferResponse(BaseModel):
    """An offer with its deal score, verdict and insights."""

    model_config = ConfigDict(from_attributes=True)

    fingerprint: str
    offer: OfferResponse
    breakdown: ScoreBreakdownResponse
    total_score: int
    verdict: str
    recommendation: str
    insights: List[str] = []


class PricePointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    price: Decimal
    observed_at: datetime
    source: str


class PriceStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current: Decimal
    average: Decimal
    average_7d: Decimal
    average_30d: Decimal
    average_90d: Decimal
    lowest: Decimal
    lowest_at: Optional[datetime] = None
    highest: Decimal
    highest_at: Optional[datetime] = None
    change_7d: float
    change_30d: float
    is_at_all_time_low: bool
    confidence: int
    sample_count: int
    buy_signal: str


class DealDetailResponse(ScoredOfferResponse):
    """Scored offer with its price history and statistics."""

    price_history: List[PricePointResponse] = []
    price_stats: Optional[PriceStatsResponse] = None


class PredictionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    fingerprint: str
    direction: str
    change_percent: float
    confidence: int
    reasoning: str
    suggested_wait_days: int
