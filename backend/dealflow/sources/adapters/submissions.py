"""User-submitted deals.

Submissions arrive through the HTTP API, are validated and parked in a
bounded in-memory queue, and are drained into the pipeline by the
SubmissionIntakeAdapter like any other source.
"""

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Deque, List, Mapping, Optional
from urllib.parse import urlparse

import structlog

from dealflow.core.exceptions import SubmissionRejected
from dealflow.domain.offers import RawOffer, utcnow
from dealflow.services.dedup import jaccard_similarity
from dealflow.sources.base import FetchContext, SourceAdapter, SourceResult

logger = structlog.get_logger(__name__)

MIN_TITLE_LENGTH = 10
DUPLICATE_SIMILARITY = 0.8


@dataclass
class Submission:
    id: str
    title: str
    url: str
    price: Decimal
    original_price: Optional[Decimal] = None
    merchant: Optional[str] = None
    category: str = ""
    description: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: datetime = field(default_factory=utcnow)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


class SubmissionQueue:
    """Bounded FIFO of validated, not yet ingested submissions."""

    def __init__(self, maxsize: int = 500):
        self.maxsize = maxsize
        self._pending: Deque[Submission] = deque()
        self.logger = logger.bind(service="submission_queue")

    def __len__(self) -> int:
        return len(self._pending)

    def pending(self) -> List[Submission]:
        return list(self._pending)

    def submit(
        self,
        title: str,
        url: str,
        price: Any,
        original_price: Any = None,
        merchant: Optional[str] = None,
        category: str = "",
        description: Optional[str] = None,
        submitted_by: Optional[str] = None,
    ) -> Submission:
        """Validate and enqueue a submission.

        Raises:
            SubmissionRejected: With every validation problem found
        """
        title = " ".join((title or "").split())
        errors = []

        if len(title) < MIN_TITLE_LENGTH:
            errors.append(f"Title must be at least {MIN_TITLE_LENGTH} characters")

        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("Invalid URL")

        current = _to_decimal(price)
        if current is None or current <= 0:
            errors.append("Price must be greater than 0")

        original = _to_decimal(original_price)
        if original_price not in (None, "") and (
            original is None or (current is not None and original <= current)
        ):
            errors.append("Original price must be higher than current price")

        if not errors and self._is_duplicate(title, url):
            errors.append("Duplicate of a pending submission")

        if not errors and len(self._pending) >= self.maxsize:
            errors.append("Submission queue is full, try again later")

        if errors:
            self.logger.info("submission_rejected", title=title, errors=errors)
            raise SubmissionRejected(errors)

        submission = Submission(
            id=uuid.uuid4().hex,
            title=title,
            url=url,
            price=current,
            original_price=original,
            merchant=merchant or parsed.netloc,
            category=category,
            description=description,
            submitted_by=submitted_by,
        )
        self._pending.append(submission)
        self.logger.info("submission_accepted", submission_id=submission.id, pending=len(self._pending))
        return submission

    def drain(self, limit: int) -> List[Submission]:
        batch = []
        while self._pending and len(batch) < limit:
            batch.append(self._pending.popleft())
        return batch

    def requeue(self, batch: List[Submission]) -> None:
        """Put a drained batch back at the head of the queue, in its original order."""
        self._pending.extendleft(reversed(batch))

    def _is_duplicate(self, title: str, url: str) -> bool:
        for existing in self._pending:
            if existing.url == url:
                return True
            if jaccard_similarity(existing.title, title) > DUPLICATE_SIMILARITY:
                return True
        return False


class SubmissionIntakeAdapter(SourceAdapter):
    """Source adapter that drains the submission queue in bounded batches."""

    kind = "submission"

    def __init__(
        self,
        name: str,
        queue: SubmissionQueue,
        batch_size: int = 50,
        poll_interval_minutes: float = 5,
        min_interval: float = 0.0,
        enabled: bool = True,
    ):
        super().__init__(name, poll_interval_minutes, min_interval, enabled)
        self.queue = queue
        self.batch_size = batch_size
        self._last_batch: List[Submission] = []

    async def fetch(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> SourceResult:
        if ctx.cancelled:
            return SourceResult.cancelled()
        await self.throttle.wait()

        batch = self.queue.drain(self.batch_size)
        self._last_batch = batch
        if batch:
            self.logger.info("submissions_drained", count=len(batch), remaining=len(self.queue))
        return SourceResult.success([self._to_raw_offer(s) for s in batch])

    def discard_batch(self) -> None:
        if self._last_batch:
            self.queue.requeue(self._last_batch)
            self.logger.info("submissions_requeued", count=len(self._last_batch))
        self._last_batch = []

    async def search_products(
        self,
        ctx: FetchContext,
        query: str,
        category: Optional[str] = None,
    ) -> SourceResult:
        tokens = query.lower().split()
        matches = [
            s for s in self.queue.pending()
            if all(token in s.title.lower() for token in tokens)
            and (not category or category.lower() in s.category.lower())
        ]
        return SourceResult.success([self._to_raw_offer(s) for s in matches])

    def _to_raw_offer(self, submission: Submission) -> RawOffer:
        return RawOffer(
            external_id=submission.id,
            title=submission.title,
            current_price=submission.price,
            original_price=submission.original_price,
            source=self.name,
            merchant=submission.merchant or "",
            category=submission.category,
            description=submission.description,
            url=submission.url,
            listed_at=submission.submitted_at,
            fetched_at=utcnow(),
        )
