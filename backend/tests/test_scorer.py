"""Tests for DealScorer."""

from decimal import Decimal

import pytest

from dealflow.config import ScoringConfig, ScoringWeights
from dealflow.domain.offers import ScoreBreakdown
from dealflow.domain.prices import PricePoint
from dealflow.services.normalizer import Normalizer
from dealflow.services.price_history import PriceHistoryStore
from dealflow.services.scorer import DealScorer
from tests.helpers import days_ago, make_raw

VERDICT_RANK = {"poor": 0, "fair": 1, "good": 2, "great": 3, "incredible": 4}


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def laptop(normalizer: Normalizer):
    return normalizer.normalize(make_raw(
        title="Apple MacBook Pro 14 M3 Pro 512GB",
        brand="Apple",
        current_price=1099,
        original_price=None,
        category="laptops",
        merchant="bestbuy.com",
    ))


# ============================================================================
# TESTS
# ============================================================================


class TestSubscores:
    """Tests for the individual subscores."""

    def test_price_history_neutral_without_stats(self, scorer: DealScorer, laptop):
        """Test no history scores a neutral 50."""
        assert scorer.score_price_history(laptop, None) == 50.0

    def test_category_threshold_lookup(self, scorer: DealScorer):
        """Test the most specific category level with thresholds wins."""
        assert scorer.category_threshold("Electronics > Computers > Laptops").great == 20
        assert scorer.category_threshold("Electronics > Audio > Headphones").great == 30
        assert scorer.category_threshold("Electronics > Cameras").great == 25
        assert scorer.category_threshold("Home > Garden").great == 30

    @pytest.mark.parametrize(
        "current,original,expected",
        [
            ("100", None, 20.0),
            ("50", "100", 100.0),
            ("70", "100", 85.0),
            ("78", "100", 70.0),
            ("88", "100", 50.0),
            ("95", "100", 35.0),
        ],
    )
    def test_discount_against_category(self, scorer, normalizer, current, original, expected):
        """Test discount bands relative to the audio thresholds (great 30, good 20)."""
        offer = normalizer.normalize(make_raw(current_price=current, original_price=original))
        assert scorer.score_discount(offer) == expected

    def test_quality_counts_zero_values(self, scorer: DealScorer, normalizer: Normalizer):
        """Test a zero rating and zero reviews are penalized, not ignored."""
        offer = normalizer.normalize(make_raw(rating=0.0, review_count=0))
        assert scorer.score_quality(offer) == 20.0

        unknown = normalizer.normalize(make_raw())
        assert scorer.score_quality(unknown) == 50.0

        great = normalizer.normalize(make_raw(rating=4.7, review_count=2500))
        assert scorer.score_quality(great) == 95.0

    def test_freshness(self, scorer: DealScorer, normalizer: Normalizer):
        """Test recent listings score higher and out-of-stock listings lower."""
        fresh = normalizer.normalize(make_raw(listed_at=days_ago(0.5), stock_status="low_stock"))
        assert scorer.score_freshness(fresh) == 90.0

        stale = normalizer.normalize(make_raw(listed_at=days_ago(45)))
        assert scorer.score_freshness(stale) == 35.0

        gone = normalizer.normalize(make_raw(in_stock=False, stock_status="out_of_stock"))
        assert scorer.score_freshness(gone) == 10.0

    def test_trust(self, scorer: DealScorer, normalizer: Normalizer):
        """Test retailer trust lookup with seller rating adjustments."""
        assert scorer.score_trust(normalizer.normalize(make_raw(merchant="amazon.com"))) == 95.0
        assert scorer.score_trust(normalizer.normalize(make_raw(merchant="bestbuy.com"))) == 92.0
        assert scorer.score_trust(normalizer.normalize(make_raw(merchant="Bob's Shop"))) == 60.0
        assert scorer.score_trust(
            normalizer.normalize(make_raw(merchant="amazon.com", seller_rating=4.9))
        ) == 100.0
        assert scorer.score_trust(
            normalizer.normalize(make_raw(merchant="ebay.com", seller_rating=3.0))
        ) == 55.0

    def test_engagement(self, scorer: DealScorer, normalizer: Normalizer):
        """Test views and saves lift engagement."""
        offer = normalizer.normalize(make_raw(views=1500, saves=120))
        assert scorer.score_engagement(offer) == 95.0
        assert scorer.score_engagement(normalizer.normalize(make_raw())) == 50.0


class TestScore:
    """Tests for the combined score."""

    async def test_all_time_low_recommends_buy_now(self, scorer, history: PriceHistoryStore, laptop):
        """Test a price under the whole history is a buy_now with the matching insight."""
        for offset, price in enumerate([1299, 1249, 1199, 1149]):
            await history.append(
                PricePoint(laptop.fingerprint, Decimal(price), days_ago(4 - offset), "s")
            )
        stats = history.stats_for(laptop.fingerprint, laptop.current_price)

        scored = scorer.score(laptop, stats)

        assert stats.is_at_all_time_low is True
        assert scored.breakdown.price_history >= 85
        assert scored.recommendation == "buy_now"
        assert any("lowest price we've ever tracked" in i for i in scored.insights)

    def test_total_is_bounded_integer(self, scorer: DealScorer, normalizer: Normalizer):
        """Test totals are integers in [0, 100] for extreme inputs."""
        worst = normalizer.normalize(make_raw(
            merchant="craigslist", rating=1.0, review_count=1, seller_rating=1.0,
            in_stock=False, stock_status="out_of_stock", listed_at=days_ago(90),
        ))
        best = normalizer.normalize(make_raw(
            current_price="10", original_price="100", rating=5.0, review_count=5000,
            seller_rating=5.0, views=5000, saves=500, listed_at=days_ago(0),
        ))
        for offer in (worst, best):
            total = scorer.score(offer).total_score
            assert isinstance(total, int)
            assert 0 <= total <= 100

    def test_total_weights(self, scorer: DealScorer):
        """Test weighted combination and rounding."""
        assert scorer.total(ScoreBreakdown(100, 100, 100, 100, 100, 100)) == 100
        assert scorer.total(ScoreBreakdown(0, 0, 0, 0, 0, 0)) == 0
        assert scorer.total(ScoreBreakdown(50, 50, 50, 50, 50, 50)) == 50

    def test_custom_weights(self, normalizer: Normalizer, laptop):
        """Test weights from configuration drive the total."""
        weights = ScoringWeights(
            price_history=0, discount=100, quality=0, freshness=0, trust=0, engagement=0
        )
        scorer = DealScorer(ScoringConfig(weights=weights))
        assert scorer.score(laptop).total_score == 20

    def test_verdict_is_monotone(self, scorer: DealScorer):
        """Test a higher score never maps to a worse verdict."""
        ranks = [VERDICT_RANK[scorer.verdict(score)] for score in range(101)]
        assert ranks == sorted(ranks)
        assert scorer.verdict(0) == "poor"
        assert scorer.verdict(85) == "incredible"

    def test_recommendation_thresholds(self, scorer: DealScorer):
        assert scorer.recommendation(75, None) == "buy_now"
        assert scorer.recommendation(74, None) == "wait"
        assert scorer.recommendation(49, None) == "skip"

    def test_deterministic(self, scorer: DealScorer, normalizer: Normalizer):
        """Test the same offer always scores the same."""
        offer = normalizer.normalize(make_raw(rating=4.2, review_count=300))
        assert scorer.score(offer) == scorer.score(offer)

    async def test_insights_capped(self, scorer, normalizer: Normalizer, history: PriceHistoryStore):
        """Test no more than four insights are returned."""
        offer = normalizer.normalize(make_raw(
            current_price="100", original_price="300", rating=4.9, review_count=4000,
            stock_status="low_stock", merchant="amazon.com",
        ))
        await history.append(PricePoint(offer.fingerprint, Decimal("150"), days_ago(3), "s"))
        stats = history.stats_for(offer.fingerprint, offer.current_price)

        scored = scorer.score(offer, stats)

        assert len(scored.insights) == 4
        assert scored.insights[0] == "This is the lowest price we've ever tracked!"
