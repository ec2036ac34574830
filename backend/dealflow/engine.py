"""Top-level wiring of the aggregation engine.

Every component takes its collaborators through its constructor; ``Engine``
is the one place that builds them and holds them together.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from dealflow.config import EngineConfig, Settings, load_engine_config
from dealflow.db.session import create_engine_and_factory, create_tables
from dealflow.domain.offers import utcnow
from dealflow.domain.prices import SaleEvent
from dealflow.scheduler import Scheduler
from dealflow.services.dedup import Deduper
from dealflow.services.index import ScoredIndex
from dealflow.services.normalizer import Normalizer
from dealflow.services.pipeline import AggregationPipeline
from dealflow.services.price_history import PriceHistoryStore
from dealflow.services.query import QueryService
from dealflow.services.scorer import DealScorer
from dealflow.sources.adapters.submissions import SubmissionQueue
from dealflow.sources.base import FetchContext
from dealflow.sources.factory import SourceRegistry
from dealflow.stores.base import RecordStore
from dealflow.stores.memory import MemoryRecordStore
from dealflow.stores.sql import SqlRecordStore

logger = structlog.get_logger(__name__)

# (job name, interval minutes, source kind polled by the job)
SOURCE_JOBS = (
    ("affiliate-poll", 15, "affiliate"),
    ("rss-fetch", 10, "rss"),
    ("scrape", 30, "scraper"),
    ("user-submissions", 5, "submission"),
)
PRICE_VERIFICATION_MINUTES = 60
MAINTENANCE_MINUTES = 24 * 60


class Engine:
    """Owns the store, the pipeline stages, the sources and the scheduler."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[RecordStore] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        db_engine: Optional[AsyncEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or EngineConfig()
        self.settings = settings or Settings()
        self.store = store if store is not None else MemoryRecordStore()
        self.http_client = http_client
        self.db_engine = db_engine
        self._clock = clock
        self.logger = logger.bind(service="engine")

        tables = self.config.tables
        self.history = PriceHistoryStore(
            self.store,
            all_time_low_tolerance=self.config.price_history.all_time_low_tolerance,
            sale_events=[SaleEvent(**event.model_dump()) for event in tables.sale_events],
            clock=clock,
        )
        self.index = ScoredIndex(self.store)
        self.normalizer = Normalizer(tables)
        self.deduper = Deduper(self.config.dedup.similarity_threshold)
        self.scorer = DealScorer(self.config.scoring, tables)
        self.pipeline = AggregationPipeline(
            self.normalizer,
            self.deduper,
            self.scorer,
            self.history,
            self.index,
            clock=clock,
        )
        self.query = QueryService(self.index, self.history)

        self.submissions = SubmissionQueue()
        self.sources = SourceRegistry.from_config(
            self.config.sources, self.settings, self.submissions, http_client
        )
        self.scheduler = Scheduler(
            self.store,
            tick_interval_seconds=self.config.scheduler.tick_interval_seconds,
            request_timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            clock=clock,
        )
        self.register_default_jobs()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Engine":
        """Build an engine backed by the SQL store named in settings.

        Raises:
            ConfigError: If the engine configuration file is invalid
        """
        settings = settings or Settings()
        config = load_engine_config(settings.ENGINE_CONFIG_PATH)
        db_engine, session_factory = create_engine_and_factory(
            settings.DATABASE_URL, echo=settings.DEBUG and settings.LOG_LEVEL == "DEBUG"
        )
        http_client = httpx.AsyncClient(follow_redirects=True)
        return cls(
            config=config,
            store=SqlRecordStore(session_factory),
            settings=settings,
            http_client=http_client,
            db_engine=db_engine,
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def register_default_jobs(self) -> None:
        for name, interval, kind in SOURCE_JOBS:
            self.scheduler.register_job(name, interval, self._source_job(name, kind))
        self.scheduler.register_job(
            "price-verification", PRICE_VERIFICATION_MINUTES, self._verify_prices
        )
        self.scheduler.register_job("maintenance", MAINTENANCE_MINUTES, self._maintenance)

    def _source_job(self, job: str, kind: str):
        async def handler(ctx: FetchContext) -> Dict[str, Any]:
            return await self.poll(kind, ctx, job=job)

        return handler

    async def poll(
        self,
        kind: str,
        ctx: Optional[FetchContext] = None,
        job: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run the pipeline over every source of ``kind`` whose polling period elapsed."""
        now = self._clock()
        due = [adapter for adapter in self.sources.by_kind(kind) if adapter.is_due(now)]
        return await self.pipeline.run(due, ctx, job=job or kind)

    async def _verify_prices(self, ctx: FetchContext) -> Dict[str, int]:
        return await self.pipeline.verify_prices()

    async def _maintenance(self, ctx: FetchContext) -> Dict[str, int]:
        return await self.pipeline.run_maintenance(
            now=self._clock(),
            archival_days=self.config.price_history.archival_days,
            stale_offer_days=self.config.maintenance.stale_offer_days,
            sources=self.sources.by_kind("rss"),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Warm in-memory state from the record store."""
        if self.db_engine is not None:
            await create_tables(self.db_engine)
        await self.history.load()
        await self.index.load()
        await self.scheduler.load_stats()

    async def start(self, start_scheduler: bool = True) -> None:
        await self.load()
        if start_scheduler:
            self.scheduler.start()
        self.logger.info(
            "engine_started",
            sources=len(self.sources),
            jobs=len(self.scheduler),
            offers=len(self.index),
            scheduler=start_scheduler,
        )

    async def shutdown(self, cancel: bool = True) -> None:
        """Stop the scheduler cooperatively, then release connections."""
        await self.scheduler.stop(cancel=cancel)
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.db_engine is not None:
            await self.db_engine.dispose()
        self.logger.info("engine_stopped")
