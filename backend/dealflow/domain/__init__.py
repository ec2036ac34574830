"""Domain records shared by every stage of the aggregation pipeline."""

from dealflow.domain.offers import (
    CONDITIONS,
    STOCK_STATUSES,
    CanonicalOffer,
    RawOffer,
    ScoreBreakdown,
    ScoredOffer,
)
from dealflow.domain.prices import PricePoint, PricePrediction, PriceStats, SaleEvent

__all__ = [
    "CONDITIONS",
    "STOCK_STATUSES",
    "CanonicalOffer",
    "RawOffer",
    "ScoreBreakdown",
    "ScoredOffer",
    "PricePoint",
    "PricePrediction",
    "PriceStats",
    "SaleEvent",
]
