"""HTML deal page scraper adapter.

Fetches a deal page over plain HTTP with a rotating user agent and extracts
offers with a site-specific CSS selector profile. There is no browser
automation: pages that only render client-side yield no containers and
therefore an empty, successful result.
"""

import hashlib
from typing import List, Mapping, Optional
from urllib.parse import quote_plus, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from dealflow.config import SelectorProfile
from dealflow.domain.offers import RawOffer, utcnow
from dealflow.sources.base import (
    UPSTREAM_ERRORS,
    FetchContext,
    HTTPSourceAdapter,
    SourceResult,
)
from dealflow.sources.utils.parsing import clean_price_string, detect_stock_status
from dealflow.sources.utils.user_agents import get_random_user_agent


class HTMLScraperAdapter(HTTPSourceAdapter):
    """Selector-profile driven scraper for one deal page."""

    kind = "scraper"

    def __init__(
        self,
        name: str,
        url: str,
        selectors: SelectorProfile,
        merchant: Optional[str] = None,
        category: Optional[str] = None,
        search_url: Optional[str] = None,
        poll_interval_minutes: float = 30,
        min_interval: float = 6.0,
        enabled: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, poll_interval_minutes, min_interval, enabled, http_client)
        self.url = url
        self.selectors = selectors
        self.merchant = merchant or urlparse(url).netloc
        self.category = category
        self.search_url = search_url

    async def fetch(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> SourceResult:
        if ctx.cancelled:
            return SourceResult.cancelled()

        try:
            offers = await self._scrape(ctx, self.url, params)
        except UPSTREAM_ERRORS as e:
            return self._failed(e)

        self.logger.info("page_scraped", url=self.url, offers=len(offers))
        return SourceResult.success(offers)

    async def search_products(
        self,
        ctx: FetchContext,
        query: str,
        category: Optional[str] = None,
    ) -> SourceResult:
        if ctx.cancelled:
            return SourceResult.cancelled()

        try:
            if self.search_url:
                url = self.search_url.format(query=quote_plus(query))
                offers = await self._scrape(ctx, url)
            else:
                # No search page for this site: filter the deal page instead
                tokens = query.lower().split()
                offers = [
                    offer
                    for offer in await self._scrape(ctx, self.url)
                    if all(token in offer.title.lower() for token in tokens)
                ]
        except UPSTREAM_ERRORS as e:
            return self._failed(e, operation="search")

        if category:
            for offer in offers:
                offer.category = category
        return SourceResult.success(offers)

    async def _scrape(
        self,
        ctx: FetchContext,
        url: str,
        params: Optional[Mapping[str, str]] = None,
    ) -> List[RawOffer]:
        response = await self._request(
            ctx,
            "GET",
            url,
            params=dict(params) if params else None,
            headers={
                "User-Agent": get_random_user_agent(),
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
        )
        return self.parse_page(response.text, str(response.url))

    def parse_page(self, markup: str, base_url: Optional[str] = None) -> List[RawOffer]:
        """Extract offers from a deal page.

        Args:
            markup: Page HTML
            base_url: URL the page was served from, for resolving relative links

        Returns:
            List of RawOffer, empty when no container matches
        """
        soup = BeautifulSoup(markup, "html.parser")
        base_url = base_url or self.url

        containers = soup.select(self.selectors.container)
        if not containers:
            self.logger.debug("no_containers_matched", selector=self.selectors.container)
            return []

        # Page-wide stock text only describes the offer on a single-product page
        page_status = (
            detect_stock_status(soup.get_text(" ")) if len(containers) == 1 else "in_stock"
        )

        fetched_at = utcnow()
        offers = []
        for container in containers:
            offer = self._parse_container(container, base_url, page_status, fetched_at)
            if offer is not None:
                offers.append(offer)
        return offers

    def _parse_container(self, container, base_url, page_status, fetched_at) -> Optional[RawOffer]:
        sel = self.selectors

        title_elem = container.select_one(sel.title)
        title = " ".join(title_elem.get_text(" ", strip=True).split()) if title_elem else ""
        if not title:
            return None

        price_elem = container.select_one(sel.price)
        price = clean_price_string(price_elem.get_text(strip=True)) if price_elem else None

        original_price = None
        if sel.original_price:
            orig_elem = container.select_one(sel.original_price)
            if orig_elem:
                original_price = clean_price_string(orig_elem.get_text(strip=True))

        image_url = None
        if sel.image:
            img = container.select_one(sel.image)
            if img:
                src = img.get("src") or img.get("data-src")
                image_url = urljoin(base_url, src) if src else None

        link = None
        if sel.link:
            link_elem = container.select_one(sel.link)
            href = link_elem.get("href") if link_elem else None
            if href:
                link = urljoin(base_url, href)

        stock_status = page_status
        if sel.in_stock:
            stock_elem = container.select_one(sel.in_stock)
            if stock_elem:
                stock_status = detect_stock_status(stock_elem.get_text(" ", strip=True))

        identity = link or f"{self.name}:{title}"
        return RawOffer(
            external_id=hashlib.sha1(identity.encode("utf-8")).hexdigest()[:16],
            title=title,
            current_price=price,
            original_price=original_price,
            source=self.name,
            merchant=self.merchant,
            category=self.category or "",
            image_url=image_url,
            url=link,
            in_stock=stock_status != "out_of_stock",
            stock_status=stock_status,
            fetched_at=fetched_at,
        )
