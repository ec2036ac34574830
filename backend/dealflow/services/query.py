"""Read-only queries over the scored index."""

from datetime import date
from typing import List, Optional

import structlog

from dealflow.domain.offers import ScoredOffer
from dealflow.domain.prices import PricePoint, PricePrediction, PriceStats
from dealflow.services.index import ScoredIndex
from dealflow.services.price_history import PriceHistoryStore

logger = structlog.get_logger(__name__)


def _ranked(offers: List[ScoredOffer]) -> List[ScoredOffer]:
    return sorted(offers, key=lambda s: (-s.total_score, s.fingerprint))


def _haystack(scored: ScoredOffer) -> str:
    offer = scored.offer
    return f"{offer.title} {offer.brand} {offer.category}".lower()


class QueryService:
    """Point-in-time queries against the latest index snapshot.

    Every result list is ordered by deal score, highest first, with the
    fingerprint as tie break. An empty index yields empty results.
    """

    def __init__(self, index: ScoredIndex, history: PriceHistoryStore):
        self.index = index
        self.history = history
        self.logger = logger.bind(service="query_service")

    def search(self, query: str, category: Optional[str] = None) -> List[ScoredOffer]:
        """Offers whose title, brand and category contain every query token.

        Args:
            query: Free text; matching is case-insensitive
            category: Optional canonical category prefix

        Returns:
            Matching offers, best first. A blank query matches nothing.
        """
        tokens = query.lower().split()
        if not tokens:
            self.logger.debug("empty_search_query")
            return []

        matches = [
            scored
            for scored in self.index.all()
            if all(token in _haystack(scored) for token in tokens)
        ]
        if category:
            prefix = category.lower()
            matches = [s for s in matches if s.offer.category.lower().startswith(prefix)]

        self.logger.debug("search_completed", query=query, category=category, count=len(matches))
        return _ranked(matches)

    def top_n(self, n: int) -> List[ScoredOffer]:
        if n <= 0:
            return []
        return _ranked(self.index.all())[:n]

    def by_category(self, prefix: str) -> List[ScoredOffer]:
        prefix = prefix.lower()
        return _ranked(
            [s for s in self.index.all() if s.offer.category.lower().startswith(prefix)]
        )

    def by_fingerprint(self, fingerprint: str) -> Optional[ScoredOffer]:
        return self.index.get(fingerprint)

    def price_history(self, fingerprint: str) -> List[PricePoint]:
        return self.history.series_for(fingerprint)

    def price_stats(self, fingerprint: str) -> Optional[PriceStats]:
        """Statistics against the indexed offer's current price, if indexed."""
        scored = self.index.get(fingerprint)
        if scored is None:
            return None
        return self.history.stats_for(fingerprint, scored.offer.current_price)

    def prediction(self, fingerprint: str, today: Optional[date] = None) -> PricePrediction:
        return self.history.predict(fingerprint, today)
