"""Batch deduplication of canonical offers.

Two offers are duplicates when they share a fingerprint, or when they share
a canonical brand and their title token sets have a Jaccard similarity above
the configured threshold. Duplicates are merged transitively (connected
components), and each component keeps exactly one representative.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import structlog

from dealflow.domain.offers import CanonicalOffer

logger = structlog.get_logger(__name__)


def title_tokens(title: str) -> frozenset:
    return frozenset(title.lower().split())


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard index of two titles' lowercased whitespace token sets."""
    tokens_a = title_tokens(a)
    tokens_b = title_tokens(b)
    if not tokens_a and not tokens_b:
        return 1.0
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union)


def winner_key(offer: CanonicalOffer) -> Tuple:
    """Sort key; the smallest key wins a duplicate group."""
    return (
        offer.current_price,
        offer.rating is None,
        offer.review_count is None,
        offer.fetched_at,
        offer.source,
        offer.external_id,
        offer.fingerprint,
    )


@dataclass(frozen=True)
class DedupResult:
    offers: List[CanonicalOffer]
    duplicates_collapsed: int


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Lower index becomes the root so first-seen order is kept
            if root_b < root_a:
                root_a, root_b = root_b, root_a
            self.parent[root_b] = root_a


class Deduper:
    """Collapses duplicate offers within one pipeline batch."""

    def __init__(self, similarity_threshold: float = 0.85):
        self.similarity_threshold = similarity_threshold

    def dedup(self, offers: List[CanonicalOffer]) -> DedupResult:
        """Return one representative per duplicate component, in first-seen order."""
        if not offers:
            return DedupResult(offers=[], duplicates_collapsed=0)

        # Exact fingerprint prefilter
        groups: Dict[str, List[CanonicalOffer]] = {}
        for offer in offers:
            groups.setdefault(offer.fingerprint, []).append(offer)
        heads = [min(group, key=winner_key) for group in groups.values()]
        members = list(groups.values())

        # Pairwise title similarity over the group heads, same brand only
        uf = _UnionFind(len(heads))
        tokens = [title_tokens(head.title) for head in heads]
        for i in range(len(heads)):
            for j in range(i + 1, len(heads)):
                if heads[i].brand != heads[j].brand:
                    continue
                union = tokens[i] | tokens[j]
                if not union:
                    continue
                if len(tokens[i] & tokens[j]) / len(union) > self.similarity_threshold:
                    uf.union(i, j)

        components: Dict[int, List[CanonicalOffer]] = {}
        for index in range(len(heads)):
            components.setdefault(uf.find(index), []).extend(members[index])

        representatives = [
            min(components[root], key=winner_key) for root in sorted(components)
        ]
        collapsed = len(offers) - len(representatives)
        if collapsed:
            logger.debug("duplicates_collapsed", count=collapsed, kept=len(representatives))
        return DedupResult(offers=representatives, duplicates_collapsed=collapsed)
