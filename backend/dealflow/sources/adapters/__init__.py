"""Concrete source adapters."""

from dealflow.sources.adapters.affiliate import NETWORKS, AffiliateAdapter, AffiliateNetwork
from dealflow.sources.adapters.rss import RSSFeedAdapter
from dealflow.sources.adapters.scraper import HTMLScraperAdapter
from dealflow.sources.adapters.submissions import (
    Submission,
    SubmissionIntakeAdapter,
    SubmissionQueue,
)

__all__ = [
    "NETWORKS",
    "AffiliateAdapter",
    "AffiliateNetwork",
    "RSSFeedAdapter",
    "HTMLScraperAdapter",
    "Submission",
    "SubmissionIntakeAdapter",
    "SubmissionQueue",
]
