"""Shared builders for offers and canned sources."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Mapping, Optional

from dealflow.config import EngineConfig
from dealflow.core.exceptions import ErrorKind
from dealflow.domain.offers import RawOffer
from dealflow.engine import Engine
from dealflow.sources.base import FetchContext, SourceAdapter, SourceResult

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def make_raw(**overrides) -> RawOffer:
    """RawOffer with sensible defaults for a well-formed electronics offer."""
    values = dict(
        external_id="sku-1",
        title="Sony WH-1000XM5 Wireless Noise Canceling Headphones",
        current_price=Decimal("299.99"),
        original_price=Decimal("399.99"),
        source="test-source",
        merchant="amazon.com",
        category="headphones",
        brand="Sony",
        fetched_at=NOW,
    )
    values.update(overrides)
    return RawOffer(**values)


def distinct_offers(count: int, prefix: str, source: str) -> List[RawOffer]:
    """Offers that share no fingerprint and no similar titles."""
    words = [
        "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel",
        "india", "juliet", "kilo", "lima", "mike", "november", "oscar", "papa",
        "quebec", "romeo", "sierra", "tango",
    ]
    return [
        make_raw(
            external_id=f"{prefix}-{i}",
            title=f"{prefix} {words[i]} gadget {i}",
            brand=f"Brand{prefix}{i}",
            current_price=Decimal(10 + i),
            original_price=None,
            source=source,
        )
        for i in range(count)
    ]


class StaticSource(SourceAdapter):
    """Adapter returning a canned result, for pipeline and engine tests."""

    kind = "affiliate"

    def __init__(
        self,
        name: str,
        offers: Optional[List[RawOffer]] = None,
        error: Optional[ErrorKind] = None,
    ):
        super().__init__(name, poll_interval_minutes=15, min_interval=0.0)
        self.offers = offers or []
        self.error = error
        self.calls = 0

    async def fetch(self, ctx: FetchContext, params: Optional[Mapping[str, str]] = None) -> SourceResult:
        self.calls += 1
        if ctx.cancelled:
            return SourceResult.cancelled()
        if self.error is not None:
            return SourceResult.failure(self.error, f"{self.name} unavailable", retryable=True)
        return SourceResult.success(self.offers)

    async def search_products(self, ctx: FetchContext, query: str, category: Optional[str] = None) -> SourceResult:
        tokens = query.lower().split()
        return SourceResult.success(
            [o for o in self.offers if all(t in o.title.lower() for t in tokens)]
        )


def build_engine(store, settings, sources=()):
    """Engine over ``store`` with a frozen clock and only the given sources."""
    return Engine(
        config=EngineConfig(sources=list(sources)),
        store=store,
        settings=settings,
        clock=lambda: NOW,
    )
