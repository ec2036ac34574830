"""Tests for batch deduplication."""

from decimal import Decimal

import pytest

from dealflow.domain.offers import CanonicalOffer
from dealflow.services.dedup import Deduper, jaccard_similarity
from tests.helpers import NOW


# ============================================================================
# FIXTURES
# ============================================================================


def canonical(title: str, fingerprint: str, price: str, brand: str = "Sony", **kwargs) -> CanonicalOffer:
    values = dict(
        external_id=fingerprint + price,
        source="test-source",
        title=title,
        brand=brand,
        model=None,
        category="Electronics",
        marketplace="Amazon",
        current_price=Decimal(price),
        currency="USD",
        fingerprint=fingerprint,
        fetched_at=NOW,
    )
    values.update(kwargs)
    return CanonicalOffer(**values)


@pytest.fixture
def deduper() -> Deduper:
    return Deduper(0.85)


EIGHT = "one two three four five six seven eight"


# ============================================================================
# TESTS
# ============================================================================


class TestJaccard:
    """Tests for title similarity."""

    def test_identical(self):
        assert jaccard_similarity("Sony Headphones", "sony headphones") == 1.0

    def test_partial_overlap(self):
        assert jaccard_similarity(EIGHT, EIGHT + " nine") == pytest.approx(8 / 9)

    def test_disjoint(self):
        assert jaccard_similarity("alpha beta", "gamma delta") == 0.0


class TestDeduper:
    """Tests for Deduper.dedup."""

    def test_empty_batch(self, deduper: Deduper):
        """Test an empty batch yields nothing."""
        result = deduper.dedup([])
        assert result.offers == []
        assert result.duplicates_collapsed == 0

    def test_lowest_price_wins_on_fingerprint(self, deduper: Deduper):
        """Test offers sharing a fingerprint collapse to the cheapest one."""
        pricey = canonical("Apple Macbook Pro 14 M3 Pro 512GB", "apple::512gb::x", "1799")
        cheap = canonical("APPLE Macbook Pro 14-inch M3 Pro 512GB SSD", "apple::512gb::x", "1749")

        result = deduper.dedup([pricey, cheap])

        assert result.offers == [cheap]
        assert result.duplicates_collapsed == 1

    def test_similar_titles_merge(self, deduper: Deduper):
        """Test same-brand offers with near-identical titles merge."""
        a = canonical(EIGHT, "fp-a", "100")
        b = canonical(EIGHT + " nine", "fp-b", "90")

        result = deduper.dedup([a, b])

        assert result.offers == [b]
        assert result.duplicates_collapsed == 1

    def test_different_brands_never_merge(self, deduper: Deduper):
        """Test identical titles from different brands stay separate."""
        a = canonical(EIGHT, "fp-a", "100", brand="Sony")
        b = canonical(EIGHT, "fp-b", "90", brand="Bose")

        result = deduper.dedup([a, b])

        assert result.offers == [a, b]
        assert result.duplicates_collapsed == 0

    def test_below_threshold_kept(self, deduper: Deduper):
        """Test titles at 0.75 similarity are not merged."""
        a = canonical(EIGHT, "fp-a", "100")
        b = canonical("one two three four five six nine ten", "fp-b", "90")

        assert len(deduper.dedup([a, b]).offers) == 2

    def test_merge_is_transitive(self, deduper: Deduper):
        """Test A~B and B~C collapse A, B and C even though A and C differ more."""
        a = canonical(EIGHT, "fp-a", "100")
        b = canonical(EIGHT + " nine", "fp-b", "110")
        c = canonical(EIGHT + " nine ten", "fp-c", "95")
        assert jaccard_similarity(a.title, c.title) < 0.85

        result = deduper.dedup([a, b, c])

        assert result.offers == [c]
        assert result.duplicates_collapsed == 2

    def test_tie_prefers_rated_offer(self, deduper: Deduper):
        """Test equal prices are broken in favour of offers with a rating."""
        unrated = canonical("Sony Headphones", "fp", "50", source="a")
        rated = canonical("Sony Headphones", "fp", "50", source="b", rating=4.5)

        assert deduper.dedup([unrated, rated]).offers == [rated]

    def test_first_seen_order_and_unique_fingerprints(self, deduper: Deduper):
        """Test survivors keep first-seen order and fingerprints are unique."""
        offers = [
            canonical("alpha gadget", "fp-1", "10"),
            canonical("bravo gadget", "fp-2", "20"),
            canonical("alpha gadget", "fp-1", "5"),
            canonical("charlie gadget", "fp-3", "30"),
        ]

        result = deduper.dedup(offers)

        assert [o.fingerprint for o in result.offers] == ["fp-1", "fp-2", "fp-3"]
        assert result.offers[0].current_price == Decimal("5")
        assert result.duplicates_collapsed == 1

    def test_deterministic(self, deduper: Deduper):
        """Test the same batch always yields the same survivors."""
        offers = [canonical(EIGHT, "fp-a", "100"), canonical(EIGHT + " nine", "fp-b", "100")]
        assert deduper.dedup(offers) == deduper.dedup(list(offers))
