"""Tests for AggregationPipeline runs and housekeeping jobs."""

from decimal import Decimal
from typing import Mapping, Optional

import httpx
import pytest

from dealflow.core.exceptions import (
    AllSourcesFailedError,
    ErrorKind,
    PipelineCancelled,
    StoreWriteError,
)
from dealflow.domain.prices import PricePoint
from dealflow.services.dedup import Deduper
from dealflow.services.index import ScoredIndex
from dealflow.services.pipeline import AggregationPipeline
from dealflow.services.price_history import PriceHistoryStore
from dealflow.sources.adapters.rss import RSSFeedAdapter
from dealflow.sources.base import FetchContext, SourceResult
from tests.helpers import NOW, StaticSource, days_ago, distinct_offers, make_raw


# ============================================================================
# FIXTURES
# ============================================================================


class FailingStore:
    """Record store that refuses every write."""

    async def put(self, key, record):
        raise StoreWriteError(key, "disk full")

    async def get(self, key):
        return None

    async def scan(self, prefix):
        return []

    async def delete(self, key):
        raise StoreWriteError(key, "disk full")


class CancellingSource(StaticSource):
    """Returns offers but cancels the run while doing so."""

    async def fetch(self, ctx: FetchContext, params: Optional[Mapping[str, str]] = None) -> SourceResult:
        ctx.cancel()
        return SourceResult.success(self.offers)


def macbook(price, merchant: str, source: str, title: str, brand: str):
    return make_raw(
        external_id=f"{source}-mbp",
        title=title,
        brand=brand,
        current_price=price,
        original_price=None,
        merchant=merchant,
        category="laptops",
        source=source,
    )


# ============================================================================
# TESTS
# ============================================================================


class TestPipelineRun:
    """Tests for AggregationPipeline.run."""

    async def test_one_source_fails_others_succeed(self, pipeline: AggregationPipeline, index: ScoredIndex):
        """Test a failing upstream is recorded while the rest of the batch is indexed."""
        a = StaticSource("A", error=ErrorKind.TRANSIENT_UPSTREAM)
        b = StaticSource("B", distinct_offers(12, "B", "B"))
        c = StaticSource("C", distinct_offers(8, "C", "C"))

        stats = await pipeline.run([a, b, c], job="affiliate-poll")

        assert stats["sources_failed"] == 1
        assert stats["source_stats"]["A"]["ok"] is False
        assert stats["source_stats"]["A"]["error_kind"] == "transient_upstream"
        assert stats["source_stats"]["A"]["retryable"] is True
        assert stats["source_stats"]["B"] == {"ok": True, "offers": 12}
        assert stats["offers_fetched"] == 20
        assert stats["offers_indexed"] == 20 - stats["duplicates_collapsed"]
        assert len(index) == 20
        assert pipeline.last_stats["affiliate-poll"] is stats

    async def test_all_sources_fail(self, pipeline: AggregationPipeline, index: ScoredIndex):
        """Test the run fails when no source returned data."""
        sources = [
            StaticSource("A", error=ErrorKind.TRANSIENT_UPSTREAM),
            StaticSource("B", error=ErrorKind.PERMANENT_UPSTREAM),
        ]

        with pytest.raises(AllSourcesFailedError) as exc_info:
            await pipeline.run(sources, job="rss-fetch")

        assert set(exc_info.value.errors) == {"A", "B"}
        assert len(index) == 0

    async def test_no_sources(self, pipeline: AggregationPipeline):
        stats = await pipeline.run([], job="scrape")
        assert stats["sources"] == 0
        assert stats["offers_indexed"] == 0

    async def test_malformed_offer_dropped(self, pipeline: AggregationPipeline, index: ScoredIndex):
        """Test a blank-title offer is counted and never indexed."""
        source = StaticSource("A", [make_raw(title="   ", current_price=99, currency="USD"), make_raw()])

        stats = await pipeline.run([source])

        assert stats["malformed_dropped"] == 1
        assert stats["offers_indexed"] == 1
        assert len(index) == 1

    async def test_fingerprint_collision_keeps_cheapest(self, pipeline: AggregationPipeline, index: ScoredIndex):
        """Test the same laptop from two merchants is indexed once at the lower price."""
        amazon = StaticSource("amazon", [
            macbook(1799, "amazon.com", "amazon", "Apple MacBook Pro 14 M3 Pro 512GB", "apple inc"),
        ])
        bestbuy = StaticSource("bestbuy", [
            macbook(1749, "bestbuy.com", "bestbuy", "APPLE MacBook Pro 14-inch M3 Pro 512GB SSD", "APPLE"),
        ])

        stats = await pipeline.run([amazon, bestbuy])

        assert stats["duplicates_collapsed"] == 1
        assert len(index) == 1
        (scored,) = index.all()
        assert scored.offer.current_price == Decimal("1749")
        assert scored.offer.marketplace == "Best Buy"

    async def test_all_time_low_end_to_end(
        self, pipeline: AggregationPipeline, history: PriceHistoryStore, index: ScoredIndex, normalizer
    ):
        """Test an offer under its whole price history is indexed as buy_now."""
        raw = macbook(1099, "bestbuy.com", "bestbuy", "Apple MacBook Pro 14 M3 Pro 512GB", "Apple")
        fingerprint = normalizer.normalize(raw).fingerprint
        for offset, price in enumerate([1299, 1249, 1199, 1149]):
            await history.append(PricePoint(fingerprint, Decimal(price), days_ago(4 - offset), "bestbuy"))

        stats = await pipeline.run([StaticSource("bestbuy", [raw])])

        scored = index.get(fingerprint)
        assert scored.breakdown.price_history >= 85
        assert scored.recommendation == "buy_now"
        assert "This is the lowest price we've ever tracked!" in scored.insights
        assert stats["price_points_recorded"] == 1
        assert [p.price for p in history.series_for(fingerprint)][-1] == Decimal("1099")

    async def test_marks_sources_polled(self, pipeline: AggregationPipeline):
        source = StaticSource("A", [make_raw()])
        await pipeline.run([source])
        assert source.last_polled == NOW
        assert not source.is_due(NOW)

    async def test_cancelled_before_fetch(self, pipeline: AggregationPipeline, index: ScoredIndex):
        """Test a cancelled context raises and commits nothing."""
        ctx = FetchContext()
        ctx.cancel()

        with pytest.raises(PipelineCancelled):
            await pipeline.run([StaticSource("A", [make_raw()])], ctx)

        assert len(index) == 0

    async def test_cancelled_during_fetch(
        self, pipeline: AggregationPipeline, index: ScoredIndex, history: PriceHistoryStore
    ):
        """Test offers fetched by a cancelled run are discarded."""
        with pytest.raises(PipelineCancelled):
            await pipeline.run([CancellingSource("A", [make_raw()])], FetchContext())

        assert len(index) == 0
        assert len(history) == 0

    async def test_cancelled_run_returns_rss_links_next_time(self, pipeline: AggregationPipeline):
        """Test links fetched by a cancelled run are not marked seen."""
        ctx = FetchContext()
        feed = b"<rss><channel><item><title>Deal</title><link>https://x.example.com/1</link></item></channel></rss>"

        def handler(request: httpx.Request) -> httpx.Response:
            ctx.cancel()
            return httpx.Response(200, content=feed)

        rss = RSSFeedAdapter(
            "Feed",
            "https://x.example.com/rss",
            min_interval=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(PipelineCancelled):
            await pipeline.run([rss], ctx)

        assert rss.seen_count == 0
        assert len((await rss.fetch(FetchContext())).offers) == 1

    async def test_source_outcome_recorded_on_adapter(self, pipeline: AggregationPipeline):
        """Test a failing source next to a healthy one keeps its error for reporting."""
        a = StaticSource("A", error=ErrorKind.PERMANENT_UPSTREAM)
        b = StaticSource("B", [make_raw()])

        await pipeline.run([a, b])

        assert a.consecutive_failures == 1
        assert a.last_error == "A unavailable"
        assert a.last_error_kind == "permanent_upstream"
        assert a.last_success is None
        assert b.last_success == NOW
        assert b.consecutive_failures == 0

        await pipeline.run([a, b])
        assert a.consecutive_failures == 2

        a.error = None
        await pipeline.run([a, b])
        assert a.consecutive_failures == 0
        assert a.last_success == NOW
        assert a.describe()["last_error"] == "A unavailable"

    async def test_store_failure_keeps_memory(self, normalizer, scorer):
        """Test a refused write surfaces while the batch stays queryable in memory."""
        store = FailingStore()
        index = ScoredIndex(store)
        history = PriceHistoryStore(store, clock=lambda: NOW)
        pipeline = AggregationPipeline(normalizer, Deduper(), scorer, history, index, clock=lambda: NOW)

        with pytest.raises(StoreWriteError):
            await pipeline.run([StaticSource("A", distinct_offers(3, "X", "A"))], job="scrape")

        assert len(index) == 3
        assert len(history) == 3
        assert pipeline.last_stats["scrape"]["offers_indexed"] == 3


class TestHousekeeping:
    """Tests for verify_prices and run_maintenance."""

    async def test_verify_prices_rescores(
        self, pipeline: AggregationPipeline, history: PriceHistoryStore, index: ScoredIndex
    ):
        """Test indexed offers are rescored once history makes them an all-time low."""
        raw = macbook(1099, "bestbuy.com", "bestbuy", "Apple MacBook Pro 14 M3 Pro 512GB", "Apple")
        await pipeline.run([StaticSource("bestbuy", [raw])])
        (before,) = index.all()
        assert before.breakdown.price_history == 50.0

        for offset, price in enumerate([1299, 1249]):
            await history.append(PricePoint(before.fingerprint, Decimal(price), days_ago(10 - offset), "s"))

        result = await pipeline.verify_prices()

        assert result == {"checked": 1, "rescored": 1}
        assert index.get(before.fingerprint).recommendation == "buy_now"
        assert (await pipeline.verify_prices())["rescored"] == 0

    async def test_maintenance(self, pipeline: AggregationPipeline, history, index, store):
        """Test maintenance prunes history, evicts stale offers and resets RSS seen sets."""
        await pipeline.run([StaticSource("old", [make_raw(external_id="old", fetched_at=days_ago(40))])])
        await pipeline.run([StaticSource("new", [make_raw(
            external_id="new", title="Bose QuietComfort Ultra Headphones", brand="Bose",
        )])])
        old_fp = next(s.fingerprint for s in index.all() if s.offer.external_id == "old")
        await history.append(PricePoint(old_fp, Decimal("350"), days_ago(400), "s"))

        feed = b"<rss><channel><item><title>Deal</title><link>https://x.example.com/1</link></item></channel></rss>"
        rss = RSSFeedAdapter(
            "Feed",
            "https://x.example.com/rss",
            min_interval=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=feed))),
        )
        await rss.fetch(FetchContext())

        result = await pipeline.run_maintenance(now=NOW, sources=[rss])

        assert result == {"price_points_pruned": 1, "offers_evicted": 1, "seen_links_cleared": 1}
        assert old_fp not in index
        assert await store.get(f"offer:{old_fp}") is None
        assert len(index) == 1
        assert rss.seen_count == 0
