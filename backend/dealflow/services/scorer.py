"""Deal scoring.

Six subscores in [0, 100] are combined with configurable weights into an
integer deal score, then mapped onto a verdict bucket, a buy/wait/skip
recommendation and a short list of insights. Scoring is total and
deterministic: the same offer and stats always produce the same result.
"""

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

import structlog

from dealflow.config import CategoryThreshold, ScoringConfig, TablesConfig
from dealflow.domain.offers import CanonicalOffer, ScoreBreakdown, ScoredOffer
from dealflow.domain.prices import PriceStats

logger = structlog.get_logger(__name__)

MAX_INSIGHTS = 4
BUY_NOW_SCORE = 75
WAIT_SCORE = 50


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _retailer_key(name: str) -> str:
    return re.sub(r"[^a-z]", "", name.lower())


class DealScorer:
    """Scores canonical offers against their price statistics."""

    def __init__(
        self,
        scoring: Optional[ScoringConfig] = None,
        tables: Optional[TablesConfig] = None,
    ):
        self.scoring = scoring or ScoringConfig()
        tables = tables or TablesConfig()
        self.trust: Dict[str, int] = {
            _retailer_key(name): value for name, value in tables.retailer_trust.items()
        }
        self.default_trust = tables.retailer_trust["default"]
        self.thresholds: Dict[str, CategoryThreshold] = {
            key.lower(): value for key, value in tables.category_thresholds.items()
        }

    # ------------------------------------------------------------------
    # Subscores
    # ------------------------------------------------------------------

    @staticmethod
    def score_price_history(offer: CanonicalOffer, stats: Optional[PriceStats]) -> float:
        if stats is None or stats.sample_count == 0:
            return 50.0

        current = offer.current_price
        score = 50.0

        if stats.is_at_all_time_low:
            score += 35
        elif current <= stats.lowest * Decimal("1.05"):
            score += 25
        elif current <= stats.average * Decimal("0.9"):
            score += 15

        if stats.average > 0 and current > stats.average:
            score -= min(30.0, (float(current / stats.average) - 1) * 100)

        if current >= stats.highest * Decimal("0.95"):
            score -= 20

        return round(_clamp(score), 2)

    def category_threshold(self, category: str) -> CategoryThreshold:
        """Thresholds for the most specific level of the category hierarchy that has one."""
        for segment in reversed(category.split(">")):
            threshold = self.thresholds.get(segment.strip().lower())
            if threshold is not None:
                return threshold
        return self.thresholds["default"]

    def score_discount(self, offer: CanonicalOffer) -> float:
        discount = offer.discount_percent or 0
        if discount <= 0:
            return 20.0

        threshold = self.category_threshold(offer.category)
        if discount >= threshold.great * 1.5:
            return 100.0
        if discount >= threshold.great:
            return 85.0
        if discount >= threshold.good:
            return 70.0
        if discount >= threshold.good / 2:
            return 50.0
        return 35.0

    @staticmethod
    def score_quality(offer: CanonicalOffer) -> float:
        score = 50.0

        rating = offer.rating
        if rating is not None:
            if rating >= 4.5:
                score += 30
            elif rating >= 4.0:
                score += 20
            elif rating >= 3.5:
                score += 5
            elif rating < 3.0:
                score -= 20

        reviews = offer.review_count
        if reviews is not None:
            if reviews >= 1000:
                score += 15
            elif reviews >= 500:
                score += 10
            elif reviews >= 100:
                score += 5
            elif reviews < 10:
                score -= 10

        return _clamp(score)

    @staticmethod
    def score_freshness(offer: CanonicalOffer) -> float:
        score = 50.0

        days = offer.days_on_market
        if days is not None:
            if days <= 1:
                score += 30
            elif days <= 3:
                score += 20
            elif days <= 7:
                score += 10
            elif days > 30:
                score -= 15

        if offer.stock_status == "low_stock":
            score += 10
        elif offer.stock_status == "out_of_stock":
            score -= 40

        return _clamp(score)

    def score_trust(self, offer: CanonicalOffer) -> float:
        score = float(self.trust.get(_retailer_key(offer.marketplace), self.default_trust))

        seller_rating = offer.seller_rating
        if seller_rating is not None:
            if seller_rating >= 4.5:
                score += 5
            elif seller_rating < 3.5:
                score -= 15

        return _clamp(score)

    @staticmethod
    def score_engagement(offer: CanonicalOffer) -> float:
        score = 50.0

        views = offer.views or 0
        if views >= 1000:
            score += 20
        elif views >= 500:
            score += 10

        saves = offer.saves or 0
        if saves >= 100:
            score += 25
        elif saves >= 50:
            score += 15
        elif saves >= 20:
            score += 5

        return _clamp(score)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def total(self, breakdown: ScoreBreakdown) -> int:
        weights = self.scoring.weights
        weighted = (
            Decimal(str(breakdown.price_history)) * weights.price_history
            + Decimal(str(breakdown.discount)) * weights.discount
            + Decimal(str(breakdown.quality)) * weights.quality
            + Decimal(str(breakdown.freshness)) * weights.freshness
            + Decimal(str(breakdown.trust)) * weights.trust
            + Decimal(str(breakdown.engagement)) * weights.engagement
        ) / 100
        total = int(weighted.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        return max(0, min(100, total))

    def verdict(self, score: int) -> str:
        thresholds = self.scoring.verdict_thresholds
        if score >= thresholds.incredible:
            return "incredible"
        if score >= thresholds.great:
            return "great"
        if score >= thresholds.good:
            return "good"
        if score >= thresholds.fair:
            return "fair"
        return "poor"

    @staticmethod
    def recommendation(score: int, stats: Optional[PriceStats]) -> str:
        if score >= BUY_NOW_SCORE or (stats is not None and stats.is_at_all_time_low):
            return "buy_now"
        if score >= WAIT_SCORE:
            return "wait"
        return "skip"

    @staticmethod
    def insights(
        offer: CanonicalOffer,
        breakdown: ScoreBreakdown,
        stats: Optional[PriceStats],
    ) -> List[str]:
        insights = []

        if stats is not None and stats.is_at_all_time_low:
            insights.append("This is the lowest price we've ever tracked!")

        if breakdown.price_history >= 80:
            insights.append("Price is significantly below average")
        elif breakdown.price_history <= 30:
            insights.append("Price is above historical average - consider waiting")

        if breakdown.discount >= 85:
            insights.append(f"Exceptional {offer.discount_percent}% discount for this category")

        if breakdown.quality >= 80:
            insights.append("Highly rated product with excellent reviews")

        if offer.stock_status == "low_stock":
            insights.append("Limited stock - may sell out soon")

        if breakdown.trust >= 90:
            insights.append("From a highly trusted retailer")
        elif breakdown.trust <= 50:
            insights.append("Verify seller reputation before purchasing")

        return insights[:MAX_INSIGHTS]

    def score(self, offer: CanonicalOffer, stats: Optional[PriceStats] = None) -> ScoredOffer:
        """Score an offer, optionally against its price statistics."""
        breakdown = ScoreBreakdown(
            price_history=self.score_price_history(offer, stats),
            discount=self.score_discount(offer),
            quality=self.score_quality(offer),
            freshness=self.score_freshness(offer),
            trust=self.score_trust(offer),
            engagement=self.score_engagement(offer),
        )
        total = self.total(breakdown)

        scored = ScoredOffer(
            offer=offer,
            breakdown=breakdown,
            total_score=total,
            verdict=self.verdict(total),
            recommendation=self.recommendation(total, stats),
            insights=tuple(self.insights(offer, breakdown, stats)),
        )
        logger.debug(
            "deal_score_computed",
            fingerprint=offer.fingerprint,
            total_score=total,
            verdict=scored.verdict,
        )
        return scored
