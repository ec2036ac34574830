"""Builds and holds the configured source adapters."""

from typing import Dict, List, Optional

import httpx
import structlog

from dealflow.config import Settings, SourceConfig
from dealflow.core.exceptions import ConfigError
from dealflow.sources.adapters.affiliate import NETWORKS, AffiliateAdapter
from dealflow.sources.adapters.rss import RSSFeedAdapter
from dealflow.sources.adapters.scraper import HTMLScraperAdapter
from dealflow.sources.adapters.submissions import SubmissionIntakeAdapter, SubmissionQueue
from dealflow.sources.base import SourceAdapter


logger = structlog.get_logger(__name__)


def build_adapter(
    config: SourceConfig,
    settings: Settings,
    submission_queue: SubmissionQueue,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[SourceAdapter]:
    """Create the adapter described by one source configuration entry.

    Args:
        config: Source entry from EngineConfig.sources
        settings: Process settings (affiliate credentials, RSS user agent)
        submission_queue: Queue drained by submission sources
        http_client: Optional shared httpx client

    Returns:
        Configured adapter, or None for affiliate sources without credentials

    Raises:
        ConfigError: If an affiliate source names an unknown network
    """
    common = dict(
        poll_interval_minutes=config.interval_minutes,
        min_interval=config.min_interval,
        enabled=config.enabled,
    )

    if config.kind == "affiliate":
        network = NETWORKS.get((config.network or "").lower())
        if network is None:
            raise ConfigError(f"Unknown affiliate network '{config.network}' for source '{config.name}'")
        credentials = settings.credentials_for(network.key)
        credentials.update(config.auth or {})
        adapter = AffiliateAdapter(
            config.name, network, credentials=credentials, http_client=http_client, **common
        )
        if adapter.missing_credentials:
            logger.info(
                "affiliate_source_skipped",
                source=config.name,
                missing=adapter.missing_credentials,
            )
            return None
        return adapter

    if config.kind == "rss":
        return RSSFeedAdapter(
            config.name,
            config.url,
            category=config.category,
            merchant=config.merchant,
            user_agent=settings.RSS_USER_AGENT,
            http_client=http_client,
            **common,
        )

    if config.kind == "scraper":
        return HTMLScraperAdapter(
            config.name,
            config.url,
            config.selectors,
            merchant=config.merchant,
            category=config.category,
            search_url=config.search_url,
            http_client=http_client,
            **common,
        )

    return SubmissionIntakeAdapter(
        config.name,
        submission_queue,
        batch_size=config.batch_size,
        **common,
    )


class SourceRegistry:
    """Name-indexed collection of source adapters."""

    def __init__(self):
        self._sources: Dict[str, SourceAdapter] = {}

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, name: str) -> bool:
        return name in self._sources

    def register(self, adapter: SourceAdapter) -> SourceAdapter:
        if adapter.name in self._sources:
            raise ValueError(f"Source already registered: {adapter.name}")
        self._sources[adapter.name] = adapter
        logger.info("source_registered", source=adapter.name, kind=adapter.kind)
        return adapter

    def get(self, name: str) -> Optional[SourceAdapter]:
        return self._sources.get(name)

    def all(self) -> List[SourceAdapter]:
        return list(self._sources.values())

    def by_kind(self, kind: str) -> List[SourceAdapter]:
        return [adapter for adapter in self._sources.values() if adapter.kind == kind]

    @classmethod
    def from_config(
        cls,
        sources: List[SourceConfig],
        settings: Settings,
        submission_queue: SubmissionQueue,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "SourceRegistry":
        registry = cls()
        for config in sources:
            adapter = build_adapter(config, settings, submission_queue, http_client)
            if adapter is not None:
                registry.register(adapter)
        logger.info("sources_loaded", count=len(registry), configured=len(sources))
        return registry
