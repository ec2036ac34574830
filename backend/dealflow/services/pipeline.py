"""Aggregation pipeline.

One run takes a set of source adapters through fetch, normalize, dedup,
score and write, strictly in that order. Adapter calls run in parallel and
the run waits for all of them; a single failing upstream never fails the run
unless every upstream failed.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from dealflow.core.exceptions import (
    AllSourcesFailedError,
    PipelineCancelled,
    StoreWriteError,
)
from dealflow.domain.offers import CanonicalOffer, RawOffer, ScoredOffer, utcnow
from dealflow.domain.prices import PricePoint
from dealflow.services.dedup import Deduper
from dealflow.services.index import ScoredIndex
from dealflow.services.normalizer import Normalizer
from dealflow.services.price_history import PriceHistoryStore
from dealflow.services.scorer import DealScorer
from dealflow.sources.base import FetchContext, SourceAdapter, SourceResult, classify_error

logger = structlog.get_logger(__name__)


class AggregationPipeline:
    """Runs batches of source adapters into the scored index.

    The pipeline holds no per-run state besides ``last_stats``; concurrent
    runs for different jobs share the index and the price history, both of
    which serialize their own writes.
    """

    def __init__(
        self,
        normalizer: Normalizer,
        deduper: Deduper,
        scorer: DealScorer,
        history: PriceHistoryStore,
        index: ScoredIndex,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.normalizer = normalizer
        self.deduper = deduper
        self.scorer = scorer
        self.history = history
        self.index = index
        self._clock = clock
        self.last_stats: Dict[str, Dict[str, Any]] = {}
        self.logger = logger.bind(service="aggregation_pipeline")

    async def _fetch_one(self, adapter: SourceAdapter, ctx: FetchContext) -> SourceResult:
        try:
            result = await adapter.fetch(ctx)
        finally:
            adapter.mark_polled(self._clock())
        return result

    async def run(
        self,
        sources: Sequence[SourceAdapter],
        ctx: Optional[FetchContext] = None,
        job: str = "adhoc",
    ) -> Dict[str, Any]:
        """Fetch from every source and commit the scored batch.

        Args:
            sources: Adapters to fetch from in parallel
            ctx: Cancellation and timeout context shared by every adapter
            job: Name of the job driving this run, for logs and errors

        Returns:
            Run statistics, including per-source results

        Raises:
            PipelineCancelled: If ``ctx`` was cancelled before the commit
            AllSourcesFailedError: If no source returned data
            StoreWriteError: If the record store refused part of the batch;
                the in-memory index and history still hold the batch
        """
        ctx = ctx or FetchContext()
        log = self.logger.bind(job=job)
        started = time.monotonic()

        stats: Dict[str, Any] = {
            "job": job,
            "sources": len(sources),
            "sources_failed": 0,
            "offers_fetched": 0,
            "malformed_dropped": 0,
            "duplicates_collapsed": 0,
            "offers_indexed": 0,
            "price_points_recorded": 0,
            "source_stats": {},
        }
        self.last_stats[job] = stats

        if not sources:
            log.info("pipeline_no_sources")
            return stats

        log.info("pipeline_started", sources=[s.name for s in sources])

        results = await asyncio.gather(
            *(self._fetch_one(adapter, ctx) for adapter in sources),
            return_exceptions=True,
        )

        raw_offers: List[RawOffer] = []
        errors: Dict[str, str] = {}
        fetched: List[SourceAdapter] = []
        now = self._clock()
        for adapter, result in zip(sources, results):
            if isinstance(result, asyncio.CancelledError):
                result = SourceResult.cancelled()
            elif isinstance(result, Exception):
                # Adapters report failures as values, so a raised exception is unexpected
                log.error("source_raised", source=adapter.name, error=str(result), exc_info=result)
                error = classify_error(result)
                result = SourceResult.failure(error.kind, error.message, error.retryable)

            adapter.record_result(result, now)
            if result.ok:
                fetched.append(adapter)
                raw_offers.extend(result.offers)
                stats["source_stats"][adapter.name] = {"ok": True, "offers": len(result.offers)}
            else:
                stats["sources_failed"] += 1
                errors[adapter.name] = result.error.message
                stats["source_stats"][adapter.name] = {
                    "ok": False,
                    "offers": 0,
                    "error_kind": result.error.kind.value,
                    "error": result.error.message,
                    "retryable": result.error.retryable,
                }
                log.warning(
                    "source_fetch_failed",
                    source=adapter.name,
                    error_kind=result.error.kind.value,
                    error=result.error.message,
                )

        stats["offers_fetched"] = len(raw_offers)

        if ctx.cancelled:
            log.warning("pipeline_cancelled", stage="fetch", dropped=len(raw_offers))
            self._discard(fetched)
            raise PipelineCancelled(job)

        if stats["sources_failed"] == len(sources):
            raise AllSourcesFailedError(job, errors)

        canonical: List[CanonicalOffer] = []
        for raw in raw_offers:
            offer = self.normalizer.try_normalize(raw)
            if offer is None:
                stats["malformed_dropped"] += 1
            else:
                canonical.append(offer)

        deduped = self.deduper.dedup(canonical)
        stats["duplicates_collapsed"] = deduped.duplicates_collapsed

        scored = [self._score(offer) for offer in deduped.offers]

        if ctx.cancelled:
            log.warning("pipeline_cancelled", stage="score", dropped=len(scored))
            self._discard(fetched)
            raise PipelineCancelled(job)

        failure = await self._commit(scored, stats)

        stats["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
        log.info(
            "pipeline_completed",
            **{k: v for k, v in stats.items() if k not in ("job", "source_stats")},
        )

        if failure is not None:
            raise failure
        return stats

    @staticmethod
    def _discard(adapters: List[SourceAdapter]) -> None:
        for adapter in adapters:
            adapter.discard_batch()

    def _score(self, offer: CanonicalOffer) -> ScoredOffer:
        if not self.history.has_history(offer.fingerprint):
            return self.scorer.score(offer)
        stats = self.history.stats_for(offer.fingerprint, offer.current_price, offer.fetched_at)
        return self.scorer.score(offer, stats)

    async def _commit(
        self,
        scored: List[ScoredOffer],
        stats: Dict[str, Any],
    ) -> Optional[StoreWriteError]:
        """Write the batch to the index and price history.

        Every record is attempted; the first store refusal is returned rather
        than raised so the rest of the batch still lands in memory.
        """
        failure: Optional[StoreWriteError] = None

        try:
            await self.index.put_many(scored)
        except StoreWriteError as e:
            failure = e
        stats["offers_indexed"] = len(scored)

        for item in scored:
            point = PricePoint(
                fingerprint=item.fingerprint,
                price=item.offer.current_price,
                observed_at=item.offer.fetched_at,
                source=item.offer.source,
            )
            try:
                await self.history.append(point)
            except StoreWriteError as e:
                failure = failure or e
            stats["price_points_recorded"] += 1

        return failure

    # ------------------------------------------------------------------
    # Housekeeping jobs
    # ------------------------------------------------------------------

    async def verify_prices(self) -> Dict[str, int]:
        """Rescore every indexed offer against its current price history.

        Offers whose score, verdict or recommendation changed are rewritten.
        """
        rescored: List[ScoredOffer] = []
        checked = 0
        for current in self.index.all():
            checked += 1
            updated = self._score(current.offer)
            if updated != current:
                rescored.append(updated)

        if rescored:
            await self.index.put_many(rescored)

        self.logger.info("prices_verified", checked=checked, rescored=len(rescored))
        return {"checked": checked, "rescored": len(rescored)}

    async def run_maintenance(
        self,
        now: Optional[datetime] = None,
        archival_days: int = 365,
        stale_offer_days: int = 30,
        sources: Sequence[SourceAdapter] = (),
    ) -> Dict[str, int]:
        """Prune archived price history, evict stale offers and reset RSS seen sets."""
        now = now or self._clock()

        pruned = await self.history.prune(now - timedelta(days=archival_days))
        evicted = await self.index.evict_older_than(now - timedelta(days=stale_offer_days))

        seen_cleared = 0
        for adapter in sources:
            clear_seen = getattr(adapter, "clear_seen", None)
            if clear_seen is not None:
                seen_cleared += clear_seen()

        result = {
            "price_points_pruned": pruned,
            "offers_evicted": evicted,
            "seen_links_cleared": seen_cleared,
        }
        self.logger.info("maintenance_completed", **result)
        return result

