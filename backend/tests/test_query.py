"""Tests for QueryService."""

from dataclasses import replace
from decimal import Decimal

import pytest_asyncio

from dealflow.domain.prices import PricePoint
from dealflow.services.query import QueryService
from tests.helpers import days_ago, make_raw


# ============================================================================
# FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def populated(index, normalizer, scorer):
    """Index holding headphones, a laptop and a TV with fixed scores."""
    raws = [
        (make_raw(external_id="1"), 72),
        (make_raw(
            external_id="2",
            title="Bose QuietComfort Ultra Wireless Headphones",
            brand="Bose",
            category="headphones",
        ), 81),
        (make_raw(
            external_id="3",
            title="Dell XPS 13 Laptop 16GB",
            brand="Dell",
            category="laptops",
        ), 64),
        (make_raw(
            external_id="4",
            title="LG C3 65 inch OLED TV",
            brand="LG",
            category="tvs",
        ), 72),
    ]
    offers = [
        replace(scorer.score(normalizer.normalize(raw)), total_score=score)
        for raw, score in raws
    ]
    await index.put_many(offers)
    return {o.offer.external_id: o for o in offers}


# ============================================================================
# TESTS
# ============================================================================


class TestSearch:
    """Tests for QueryService.search."""

    async def test_all_tokens_must_match(self, query_service: QueryService, populated):
        """Test every token has to appear in title, brand or category."""
        results = query_service.search("wireless headphones")
        assert [s.offer.external_id for s in results] == ["2", "1"]

        assert [s.offer.external_id for s in query_service.search("SONY wireless")] == ["1"]
        assert query_service.search("sony laptop") == []

    async def test_matches_category_text(self, query_service: QueryService, populated):
        assert [s.offer.external_id for s in query_service.search("computers")] == ["3"]

    async def test_category_filter(self, query_service: QueryService, populated):
        """Test the category argument restricts results by prefix."""
        results = query_service.search("16gb", category="Electronics > Computers")
        assert [s.offer.external_id for s in results] == ["3"]
        assert query_service.search("headphones", category="Home") == []

    async def test_blank_query(self, query_service: QueryService, populated):
        assert query_service.search("   ") == []


class TestRanking:
    """Tests for top_n and by_category."""

    async def test_top_n(self, query_service: QueryService, populated):
        """Test results are ordered by score with fingerprint as tie break."""
        top = query_service.top_n(3)

        assert top[0].offer.external_id == "2"
        assert {s.offer.external_id for s in top[1:]} == {"1", "4"}
        assert top[1].fingerprint < top[2].fingerprint
        assert len(query_service.top_n(100)) == 4
        assert query_service.top_n(0) == []

    async def test_by_category(self, query_service: QueryService, populated):
        audio = query_service.by_category("electronics > audio")
        assert [s.offer.external_id for s in audio] == ["2", "1"]
        assert query_service.by_category("Garden") == []

    def test_empty_index(self, query_service: QueryService):
        assert query_service.top_n(10) == []
        assert query_service.search("anything") == []
        assert query_service.by_category("Electronics") == []


class TestLookups:
    """Tests for fingerprint lookups and price data."""

    async def test_by_fingerprint(self, query_service: QueryService, populated):
        laptop = populated["3"]
        assert query_service.by_fingerprint(laptop.fingerprint) == laptop
        assert query_service.by_fingerprint("missing") is None

    async def test_price_stats(self, query_service: QueryService, history, populated):
        """Test statistics are computed against the indexed current price."""
        laptop = populated["3"]
        await history.append(PricePoint(laptop.fingerprint, Decimal("999"), days_ago(5), "s"))

        stats = query_service.price_stats(laptop.fingerprint)

        assert stats.current == laptop.offer.current_price
        assert stats.sample_count == 1
        assert query_service.price_history(laptop.fingerprint)[0].price == Decimal("999")
        assert query_service.price_stats("missing") is None

    def test_prediction_without_history(self, query_service: QueryService):
        prediction = query_service.prediction("missing")
        assert prediction.direction == "stable"
        assert prediction.confidence == 10
