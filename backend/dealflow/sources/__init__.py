"""Source adapters: everything that fetches raw offers from an upstream."""

from dealflow.sources.base import (
    FetchContext,
    RateLimitInfo,
    SourceAdapter,
    SourceError,
    SourceResult,
)

__all__ = [
    "FetchContext",
    "RateLimitInfo",
    "SourceAdapter",
    "SourceError",
    "SourceResult",
]
