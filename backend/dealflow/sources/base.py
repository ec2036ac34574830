"""Source adapter interface.

Every upstream (affiliate API, RSS feed, scraped deal page, submission
queue) is wrapped by a SourceAdapter. Adapters throttle their own requests
and report failures as values: ``fetch`` and ``search_products`` return a
SourceResult and never raise for upstream problems.
"""

import asyncio
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import httpx
import structlog

from dealflow.core.exceptions import ErrorKind
from dealflow.domain.offers import RawOffer
from dealflow.sources.utils.rate_limiter import RequestThrottle


DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass(frozen=True)
class RateLimitInfo:
    """Upstream quota reported alongside a successful response."""

    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None


@dataclass(frozen=True)
class SourceError:
    kind: ErrorKind
    message: str
    retryable: bool


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one adapter call: offers on success, a SourceError otherwise."""

    ok: bool
    offers: List[RawOffer] = field(default_factory=list)
    error: Optional[SourceError] = None
    rate_limit: Optional[RateLimitInfo] = None

    @classmethod
    def success(
        cls,
        offers: List[RawOffer],
        rate_limit: Optional[RateLimitInfo] = None,
    ) -> "SourceResult":
        return cls(ok=True, offers=list(offers), rate_limit=rate_limit)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, retryable: bool = False) -> "SourceResult":
        return cls(ok=False, error=SourceError(kind=kind, message=message, retryable=retryable))

    @classmethod
    def cancelled(cls) -> "SourceResult":
        return cls.failure(ErrorKind.CANCELLED, "fetch cancelled", retryable=True)


class FetchContext:
    """Cancellation signal and request deadline handed down from the scheduler.

    Cancellation is cooperative: adapters check ``cancelled`` before each
    request and the pipeline checks it again before committing a batch.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        """Initialize fetch context.

        Args:
            timeout: Per-request timeout in seconds
            deadline: Optional absolute time.monotonic() deadline for the whole run
            cancel_event: Shared event; setting it cancels every holder
        """
        self.timeout = timeout
        self.deadline = deadline
        self.cancel_event = cancel_event or asyncio.Event()

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def cancel(self) -> None:
        self.cancel_event.set()

    def request_timeout(self) -> float:
        """Timeout for the next request, shortened to fit the deadline."""
        if self.deadline is None:
            return self.timeout
        return max(0.0, min(self.timeout, self.deadline - time.monotonic()))


def classify_error(exc: BaseException) -> SourceError:
    """Map an exception raised while talking to an upstream onto an error kind."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return SourceError(ErrorKind.TRANSIENT_UPSTREAM, "rate limit exceeded (HTTP 429)", True)
        if status >= 500:
            return SourceError(ErrorKind.TRANSIENT_UPSTREAM, f"upstream error (HTTP {status})", True)
        if status in (401, 403):
            return SourceError(ErrorKind.PERMANENT_UPSTREAM, f"authentication failed (HTTP {status})", False)
        return SourceError(ErrorKind.PERMANENT_UPSTREAM, f"request rejected (HTTP {status})", False)
    if isinstance(exc, httpx.TimeoutException):
        return SourceError(ErrorKind.TRANSIENT_UPSTREAM, f"request timed out: {exc}", True)
    if isinstance(exc, httpx.TransportError):
        return SourceError(ErrorKind.TRANSIENT_UPSTREAM, f"network error: {exc}", True)
    if isinstance(exc, ET.ParseError):
        return SourceError(ErrorKind.PARSE_ERROR, f"invalid XML: {exc}", True)
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return SourceError(ErrorKind.PARSE_ERROR, f"unexpected response shape: {exc}", True)
    return SourceError(ErrorKind.TRANSIENT_UPSTREAM, str(exc) or type(exc).__name__, True)


# Exceptions an adapter converts into a failed SourceResult
UPSTREAM_ERRORS = (httpx.HTTPError, ET.ParseError, ValueError, KeyError, TypeError)


class SourceAdapter(ABC):
    """Abstract base class for all source adapters.

    Subclasses implement fetch() and search_products(). The adapter keeps its
    own request throttle and its own polling bookkeeping; nothing is shared
    between adapters.
    """

    kind: str = ""  # 'affiliate', 'rss', 'scraper' or 'submission'

    def __init__(
        self,
        name: str,
        poll_interval_minutes: float = 15,
        min_interval: float = 1.0,
        enabled: bool = True,
    ):
        self.name = name
        self.poll_interval = timedelta(minutes=poll_interval_minutes)
        self.enabled = enabled
        self.throttle = RequestThrottle(min_interval)
        self.last_polled: Optional[datetime] = None
        self.last_success: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_error_kind: Optional[str] = None
        self.consecutive_failures = 0
        self.logger = structlog.get_logger(source=self.name, kind=self.kind)

    @property
    def min_interval(self) -> float:
        return self.throttle.min_interval

    @abstractmethod
    async def fetch(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> SourceResult:
        """Fetch the current batch of offers from this upstream.

        Args:
            ctx: Cancellation and timeout context
            params: Optional upstream-specific query parameters

        Returns:
            SourceResult with offers, or a failure describing why not
        """

    @abstractmethod
    async def search_products(
        self,
        ctx: FetchContext,
        query: str,
        category: Optional[str] = None,
    ) -> SourceResult:
        """Search this upstream for offers matching a free-text query."""

    def is_due(self, now: datetime) -> bool:
        """True when the effective polling period has elapsed."""
        if not self.enabled:
            return False
        if self.last_polled is None:
            return True
        return now - self.last_polled >= self.poll_interval

    def mark_polled(self, now: datetime) -> None:
        self.last_polled = now

    def record_result(self, result: SourceResult, now: datetime) -> None:
        """Track the outcome of a pipeline fetch for the health report.

        ``last_error`` keeps the most recent failure; ``consecutive_failures``
        drops back to zero on the next success. Cancellations are not counted.
        """
        if result.ok:
            self.last_success = now
            self.consecutive_failures = 0
            return
        if result.error.kind == ErrorKind.CANCELLED:
            return
        self.consecutive_failures += 1
        self.last_error = result.error.message
        self.last_error_kind = result.error.kind.value

    def discard_batch(self) -> None:
        """Forget bookkeeping for the last fetched batch when it was never committed."""

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "enabled": self.enabled,
            "poll_interval_minutes": self.poll_interval.total_seconds() / 60,
            "min_interval_seconds": self.min_interval,
            "last_polled": self.last_polled.isoformat() if self.last_polled else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind,
            "consecutive_failures": self.consecutive_failures,
        }


class HTTPSourceAdapter(SourceAdapter):
    """Source adapter that talks HTTP through httpx.

    An ``http_client`` may be injected (shared pool, or a mock transport in
    tests); otherwise each request opens a short-lived client.
    """

    def __init__(
        self,
        name: str,
        poll_interval_minutes: float = 15,
        min_interval: float = 1.0,
        enabled: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, poll_interval_minutes, min_interval, enabled)
        self.http_client = http_client

    async def _request(
        self,
        ctx: FetchContext,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Throttled HTTP request. Raises httpx errors for the caller to classify."""
        await self.throttle.wait()
        timeout = ctx.request_timeout()

        if self.http_client is not None:
            response = await self.http_client.request(method, url, timeout=timeout, **kwargs)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                response = await client.request(method, url, timeout=timeout, **kwargs)

        if response.status_code == 429:
            self.logger.warning("rate_limit_hit", url=url)
        response.raise_for_status()
        return response

    def _failed(self, exc: BaseException, operation: str = "fetch") -> SourceResult:
        error = classify_error(exc)
        self.logger.warning(
            f"{operation}_failed",
            error_kind=error.kind.value,
            error=error.message,
            retryable=error.retryable,
        )
        return SourceResult(ok=False, error=error)
