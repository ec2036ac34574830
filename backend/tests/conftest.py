"""Pytest configuration and shared fixtures."""

import pytest

from dealflow.config import Settings, SourceConfig, TablesConfig
from dealflow.engine import Engine
from dealflow.services.dedup import Deduper
from dealflow.services.index import ScoredIndex
from dealflow.services.normalizer import Normalizer
from dealflow.services.pipeline import AggregationPipeline
from dealflow.services.price_history import PriceHistoryStore
from dealflow.services.query import QueryService
from dealflow.services.scorer import DealScorer
from dealflow.stores.memory import MemoryRecordStore
from tests.helpers import NOW, build_engine


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
def tables() -> TablesConfig:
    return TablesConfig()


@pytest.fixture
def normalizer(tables: TablesConfig) -> Normalizer:
    return Normalizer(tables)


@pytest.fixture
def scorer(tables: TablesConfig) -> DealScorer:
    return DealScorer(tables=tables)


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def history(store: MemoryRecordStore) -> PriceHistoryStore:
    return PriceHistoryStore(store, clock=lambda: NOW)


@pytest.fixture
def index(store: MemoryRecordStore) -> ScoredIndex:
    return ScoredIndex(store)


@pytest.fixture
def pipeline(normalizer, scorer, history, index) -> AggregationPipeline:
    return AggregationPipeline(
        normalizer,
        Deduper(0.85),
        scorer,
        history,
        index,
        clock=lambda: NOW,
    )


@pytest.fixture
def query_service(index, history) -> QueryService:
    return QueryService(index, history)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, ENVIRONMENT="test")


@pytest.fixture
def engine(store: MemoryRecordStore, settings: Settings) -> Engine:
    """Engine with only the user submission source configured."""
    return build_engine(store, settings, [SourceConfig(kind="submission", name="user-submissions")])
