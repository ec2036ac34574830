"""RSS/Atom deal feed adapter.

One adapter per curated feed URL. The body is parsed with a real XML parser,
so malformed feeds are reported as parse errors instead of being half-read.
Links already returned once by this feed are skipped for the rest of the
process lifetime.
"""

import hashlib
import html
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Mapping, Optional, Set, Tuple

import httpx

from dealflow.domain.offers import RawOffer, utcnow
from dealflow.sources.base import (
    UPSTREAM_ERRORS,
    FetchContext,
    HTTPSourceAdapter,
    SourceResult,
)
from dealflow.sources.utils.parsing import (
    extract_merchant,
    extract_original_price,
    extract_price_from_text,
    html_to_text,
)

ACCEPT_HEADER = "application/rss+xml, application/xml, text/xml"
DEFAULT_USER_AGENT = "dealflow/0.1 (+deal aggregator)"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name:
            text = "".join(child.itertext()).strip()
            return text or None
    return None


def _child_link(element: ET.Element) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) != "link":
            continue
        # Atom puts the URL in href, RSS in the element text
        href = child.get("href")
        if href:
            return href.strip()
        if child.text and child.text.strip():
            return child.text.strip()
    return None


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RSSFeedAdapter(HTTPSourceAdapter):
    """Adapter for a single RSS 2.0 or Atom deal feed."""

    kind = "rss"

    def __init__(
        self,
        name: str,
        url: str,
        category: Optional[str] = None,
        merchant: Optional[str] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        poll_interval_minutes: float = 10,
        min_interval: float = 2.0,
        enabled: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, poll_interval_minutes, min_interval, enabled, http_client)
        self.url = url
        self.category = category
        self.merchant = merchant
        self.user_agent = user_agent
        self._seen: Set[Tuple[str, str]] = set()
        self._last_batch: List[Tuple[str, str]] = []

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def discard_batch(self) -> None:
        """Un-see the links of the last fetch so the next run returns them again."""
        self._seen.difference_update(self._last_batch)
        self._last_batch = []

    def clear_seen(self) -> int:
        """Forget every link seen so far. Returns how many were dropped."""
        count = len(self._seen)
        self._seen.clear()
        self.logger.info("rss_seen_cleared", count=count)
        return count

    async def fetch(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> SourceResult:
        if ctx.cancelled:
            return SourceResult.cancelled()

        try:
            entries = await self._fetch_entries(ctx, params)
        except UPSTREAM_ERRORS as e:
            return self._failed(e)

        offers = []
        self._last_batch = []
        for entry in entries:
            key = (self.name, entry["link"])
            if key in self._seen:
                continue
            self._seen.add(key)
            self._last_batch.append(key)
            offers.append(self._to_raw_offer(entry))

        self.logger.info(
            "rss_feed_fetched",
            items=len(entries),
            new_items=len(offers),
        )
        return SourceResult.success(offers)

    async def search_products(
        self,
        ctx: FetchContext,
        query: str,
        category: Optional[str] = None,
    ) -> SourceResult:
        """Filter the live feed by query tokens. Does not touch the seen set."""
        if ctx.cancelled:
            return SourceResult.cancelled()

        try:
            entries = await self._fetch_entries(ctx)
        except UPSTREAM_ERRORS as e:
            return self._failed(e, operation="search")

        tokens = query.lower().split()
        offers = []
        for entry in entries:
            haystack = f"{entry['title']} {entry.get('description') or ''}".lower()
            if not all(token in haystack for token in tokens):
                continue
            offer = self._to_raw_offer(entry)
            if category and category.lower() not in offer.category.lower():
                continue
            offers.append(offer)
        return SourceResult.success(offers)

    async def _fetch_entries(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Optional[str]]]:
        response = await self._request(
            ctx,
            "GET",
            self.url,
            params=dict(params) if params else None,
            headers={"Accept": ACCEPT_HEADER, "User-Agent": self.user_agent},
        )
        return self.parse_feed(response.content)

    def parse_feed(self, body: bytes) -> List[Dict[str, Optional[str]]]:
        """Parse a feed document into plain item dicts.

        Args:
            body: Raw response body

        Returns:
            One dict per item with title, link, description, pub_date, category

        Raises:
            ET.ParseError: If the document is not well-formed XML
        """
        # &nbsp; is an HTML entity, undefined in plain XML
        root = ET.fromstring(body.replace(b"&nbsp;", b"&#160;"))

        entries = []
        for element in root.iter():
            if _local_name(element.tag) not in ("item", "entry"):
                continue

            title = _child_text(element, "title")
            link = _child_link(element)
            if not title or not link:
                self.logger.debug("rss_item_skipped", reason="missing title or link")
                continue

            description = _child_text(element, "description") or _child_text(element, "summary")
            entries.append({
                "title": " ".join(html.unescape(title).split()),
                "link": html.unescape(link),
                "description": html_to_text(html.unescape(description)) if description else None,
                "pub_date": (
                    _child_text(element, "pubDate")
                    or _child_text(element, "published")
                    or _child_text(element, "updated")
                ),
                "category": _child_text(element, "category"),
            })
        return entries

    def _to_raw_offer(self, entry: Dict[str, Optional[str]]) -> RawOffer:
        title = entry["title"] or ""
        description = entry.get("description")
        text = f"{title} {description or ''}"

        price = extract_price_from_text(title) or extract_price_from_text(description)
        merchant = (
            extract_merchant(title)
            or extract_merchant(description)
            or self.merchant
            or self.name
        )
        link = entry["link"] or ""

        return RawOffer(
            external_id=hashlib.sha1(link.encode("utf-8")).hexdigest()[:16],
            title=title,
            current_price=price,
            original_price=extract_original_price(text),
            source=self.name,
            merchant=merchant,
            category=entry.get("category") or self.category or "",
            description=description,
            url=link,
            listed_at=_parse_date(entry.get("pub_date")),
            fetched_at=utcnow(),
        )
