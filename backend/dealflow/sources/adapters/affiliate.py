"""Affiliate network API adapter.

A single adapter class serves every network; what differs between Amazon,
Rakuten, CJ, eBay, Walmart and Best Buy is captured by an AffiliateNetwork
profile: endpoint, authentication style, the parameters that ask for "hot
deals", how a search is phrased, and where each offer field lives in the
JSON response.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from dealflow.core.exceptions import ErrorKind
from dealflow.domain.offers import RawOffer, utcnow
from dealflow.sources.base import (
    UPSTREAM_ERRORS,
    FetchContext,
    HTTPSourceAdapter,
    RateLimitInfo,
    SourceResult,
)
from dealflow.sources.utils.parsing import detect_stock_status, to_float, to_int


SearchParams = Callable[[str, Optional[str]], Dict[str, str]]


@dataclass(frozen=True)
class AffiliateNetwork:
    """Static description of one affiliate network's product API."""

    key: str
    merchant: str
    base_url: str
    path: str
    auth_style: str  # 'hmac', 'bearer', 'header' or 'query'
    required_credentials: Tuple[str, ...]
    items_path: str
    fields: Mapping[str, str]
    deal_params: Tuple[Mapping[str, str], ...]
    search_params: SearchParams
    min_interval: float = 1.0
    key_name: str = ""  # header or query parameter for 'header'/'query' auth
    base_params: Mapping[str, str] = field(default_factory=dict)


NETWORKS: Dict[str, AffiliateNetwork] = {
    "amazon": AffiliateNetwork(
        key="amazon",
        merchant="amazon.com",
        base_url="https://webservices.amazon.com",
        path="/paapi5/searchitems",
        auth_style="hmac",
        required_credentials=("access_key", "secret_key", "partner_tag"),
        items_path="SearchResult.Items",
        fields={
            "external_id": "ASIN",
            "title": "ItemInfo.Title.DisplayValue",
            "brand": "ItemInfo.ByLineInfo.Brand.DisplayValue",
            "current_price": "Offers.Listings.0.Price.Amount",
            "original_price": "Offers.Listings.0.SavingBasis.Amount",
            "currency": "Offers.Listings.0.Price.Currency",
            "availability": "Offers.Listings.0.Availability.Message",
            "url": "DetailPageURL",
            "image_url": "Images.Primary.Large.URL",
            "category": "BrowseNodeInfo.BrowseNodes.0.DisplayName",
            "rating": "CustomerReviews.StarRating.Value",
            "review_count": "CustomerReviews.Count",
        },
        deal_params=({"BrowseNodeId": "deals"},),
        search_params=lambda query, category: {
            "Keywords": query,
            "SearchIndex": category or "All",
        },
        min_interval=0.2,
    ),
    "rakuten": AffiliateNetwork(
        key="rakuten",
        merchant="rakuten",
        base_url="https://api.linksynergy.com",
        path="/productsearch/1.0",
        auth_style="bearer",
        required_credentials=("token",),
        items_path="items",
        fields={
            "external_id": "sku",
            "title": "productname",
            "merchant": "merchantname",
            "current_price": "saleprice.amount",
            "original_price": "price.amount",
            "currency": "price.currency",
            "url": "linkurl",
            "image_url": "imageurl",
            "category": "category.primary",
            "description": "description.short",
        },
        deal_params=({"sort": "retailprice", "sorttype": "asc"},),
        search_params=lambda query, category: {"keyword": query, "cat": category or ""},
    ),
    "cj": AffiliateNetwork(
        key="cj",
        merchant="cj",
        base_url="https://product-search.api.cj.com",
        path="/v2/product-search",
        auth_style="bearer",
        required_credentials=("api_key", "website_id"),
        items_path="products",
        fields={
            "external_id": "ad-id",
            "title": "name",
            "brand": "manufacturer-name",
            "merchant": "advertiser-name",
            "current_price": "sale-price",
            "original_price": "price",
            "currency": "currency",
            "url": "buy-url",
            "image_url": "image-url",
            "category": "advertiser-category",
            "description": "description",
            "in_stock": "in-stock",
        },
        deal_params=({"sort-by": "sale-price", "sort-order": "asc"},),
        search_params=lambda query, category: {"keywords": query},
    ),
    "ebay": AffiliateNetwork(
        key="ebay",
        merchant="ebay",
        base_url="https://api.ebay.com",
        path="/buy/browse/v1/item_summary/search",
        auth_style="bearer",
        required_credentials=("token",),
        items_path="itemSummaries",
        fields={
            "external_id": "itemId",
            "title": "title",
            "current_price": "price.value",
            "original_price": "marketingPrice.originalPrice.value",
            "currency": "price.currency",
            "url": "itemAffiliateWebUrl",
            "image_url": "image.imageUrl",
            "category": "categories.0.categoryName",
            "condition": "condition",
        },
        deal_params=({"filter": "daily_deals"},),
        search_params=lambda query, category: {"q": query, "category_ids": category or ""},
    ),
    "walmart": AffiliateNetwork(
        key="walmart",
        merchant="walmart.com",
        base_url="https://developer.api.walmart.com",
        path="/api-proxy/service/affil/product/v2/search",
        auth_style="header",
        key_name="WM_CONSUMER.ID",
        required_credentials=("api_key",),
        items_path="items",
        fields={
            "external_id": "itemId",
            "title": "name",
            "brand": "brandName",
            "current_price": "salePrice",
            "original_price": "msrp",
            "url": "productTrackingUrl",
            "image_url": "largeImage",
            "category": "categoryPath",
            "rating": "customerRating",
            "review_count": "numReviews",
            "availability": "stock",
        },
        deal_params=({"specialOffer": "rollback"}, {"specialOffer": "clearance"}),
        search_params=lambda query, category: {"query": query, "categoryId": category or ""},
    ),
    "bestbuy": AffiliateNetwork(
        key="bestbuy",
        merchant="bestbuy.com",
        base_url="https://api.bestbuy.com",
        path="/v1/products",
        auth_style="query",
        key_name="apiKey",
        required_credentials=("api_key",),
        items_path="products",
        fields={
            "external_id": "sku",
            "title": "name",
            "brand": "manufacturer",
            "current_price": "salePrice",
            "original_price": "regularPrice",
            "url": "url",
            "image_url": "image",
            "category": "categoryPath.-1.name",
            "rating": "customerReviewAverage",
            "review_count": "customerReviewCount",
            "in_stock": "onlineAvailability",
        },
        deal_params=({"onSale": "true", "sort": "percentSavings.dsc"},),
        search_params=lambda query, category: {
            "search": query,
            "categoryPath": category or "",
            "show": "sku,name,salePrice,regularPrice,image,url,customerReviewAverage,customerReviewCount",
        },
        base_params={"format": "json"},
    ),
}


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts and lists.

    Integer segments index lists (negative indexes count from the end).
    Returns None as soon as a segment is missing.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return None
        else:
            return None
        if current is None:
            return None
    return current


def _condition(value: Any) -> str:
    text = str(value or "new").strip().lower()
    if "refurb" in text:
        return "refurbished"
    if "like new" in text or "like-new" in text or "open box" in text:
        return "like-new"
    if "used" in text or "pre-owned" in text:
        return "used"
    return "new"


def _reset_time(value: Optional[str]) -> Optional[datetime]:
    """Read an epoch ``X-RateLimit-Reset`` header. Unusable values give None."""
    reset = to_int(value)
    if reset is None:
        return None
    # millisecond epoch
    if reset > 10**11:
        reset //= 1000
    try:
        return datetime.fromtimestamp(reset, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


class AffiliateAdapter(HTTPSourceAdapter):
    """Adapter for one affiliate network, configured by an AffiliateNetwork profile."""

    kind = "affiliate"

    def __init__(
        self,
        name: str,
        network: AffiliateNetwork,
        credentials: Optional[Mapping[str, str]] = None,
        poll_interval_minutes: float = 15,
        min_interval: Optional[float] = None,
        enabled: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(
            name,
            poll_interval_minutes,
            network.min_interval if min_interval is None else min_interval,
            enabled,
            http_client,
        )
        self.network = network
        self.credentials = dict(credentials or {})
        self._clock = clock

    @property
    def missing_credentials(self) -> List[str]:
        return [
            cred for cred in self.network.required_credentials
            if not self.credentials.get(cred)
        ]

    async def fetch(
        self,
        ctx: FetchContext,
        params: Optional[Mapping[str, str]] = None,
    ) -> SourceResult:
        """Fetch the network's hot deals, or a single request with explicit params."""
        requests = (params,) if params else self.network.deal_params
        return await self._run(ctx, requests, operation="fetch")

    async def search_products(
        self,
        ctx: FetchContext,
        query: str,
        category: Optional[str] = None,
    ) -> SourceResult:
        params = self.network.search_params(query, category)
        return await self._run(ctx, (params,), operation="search")

    async def _run(
        self,
        ctx: FetchContext,
        requests: Tuple[Mapping[str, str], ...],
        operation: str,
    ) -> SourceResult:
        missing = self.missing_credentials
        if missing:
            message = f"missing credentials: {', '.join(missing)}"
            self.logger.warning(f"{operation}_failed", error_kind="permanent_upstream", error=message)
            return SourceResult.failure(ErrorKind.PERMANENT_UPSTREAM, message, retryable=False)

        offers: List[RawOffer] = []
        rate_limit = None
        for params in requests:
            if ctx.cancelled:
                return SourceResult.cancelled()
            try:
                response = await self._call_api(ctx, params)
                data = response.json()
                offers.extend(self.parse_items(data))
            except UPSTREAM_ERRORS as e:
                return self._failed(e, operation=operation)
            rate_limit = self._rate_limit_from(response) or rate_limit

        self.logger.info(f"{operation}_completed", offers=len(offers), requests=len(requests))
        return SourceResult.success(offers, rate_limit=rate_limit)

    async def _call_api(self, ctx: FetchContext, params: Mapping[str, str]) -> httpx.Response:
        network = self.network
        query = dict(network.base_params)
        query.update({k: v for k, v in params.items() if v})
        headers = {"Accept": "application/json"}

        if network.auth_style == "hmac":
            query["PartnerTag"] = self.credentials["partner_tag"]
            headers.update(self._sign(network.path, query))
        elif network.auth_style == "bearer":
            token = self.credentials.get("token") or self.credentials["api_key"]
            headers["Authorization"] = f"Bearer {token}"
            if "website_id" in self.credentials:
                query["website-id"] = self.credentials["website_id"]
        elif network.auth_style == "header":
            headers[network.key_name] = self.credentials["api_key"]
        elif network.auth_style == "query":
            query[network.key_name] = self.credentials["api_key"]

        self.logger.debug("affiliate_api_call", network=network.key, params=sorted(query))
        return await self._request(
            ctx,
            "GET",
            network.base_url + network.path,
            params=query,
            headers=headers,
        )

    def _sign(self, path: str, params: Mapping[str, str]) -> Dict[str, str]:
        """HMAC-SHA256 request signature over date, method, path and sorted query."""
        signed_date = self._clock().astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        query_string = "&".join(f"{key}={value}" for key, value in sorted(params.items()))
        message = f"{signed_date}GET{path}?{query_string}"

        signature = hmac.new(
            self.credentials["secret_key"].encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        return {
            "Authorization": (
                f"HMAC-SHA256 AccessKey={self.credentials['access_key']}, "
                f"SignedDate={signed_date}, Signature={signature}"
            ),
            "X-Amz-Date": signed_date,
        }

    def parse_items(self, data: Any) -> List[RawOffer]:
        """Translate a network response body into RawOffers.

        Raises:
            ValueError: If the item list is not where the profile says it is
        """
        items = dig(data, self.network.items_path)
        if items is None:
            return []
        if not isinstance(items, list):
            raise ValueError(f"expected a list at '{self.network.items_path}'")

        fetched_at = utcnow()
        return [self._to_raw_offer(item, fetched_at) for item in items if isinstance(item, dict)]

    def _to_raw_offer(self, item: Dict[str, Any], fetched_at: datetime) -> RawOffer:
        fields = self.network.fields

        def get(name: str) -> Any:
            path = fields.get(name)
            return dig(item, path) if path else None

        availability = get("availability")
        if availability is not None:
            stock_status = detect_stock_status(str(availability))
        elif get("in_stock") in (False, "false", "no", "No"):
            stock_status = "out_of_stock"
        else:
            stock_status = "in_stock"

        return RawOffer(
            external_id=str(get("external_id") or ""),
            title=str(get("title") or ""),
            current_price=get("current_price"),
            original_price=get("original_price"),
            currency=str(get("currency") or "USD"),
            source=self.name,
            merchant=str(get("merchant") or self.network.merchant),
            category=str(get("category") or ""),
            brand=get("brand"),
            description=get("description"),
            url=get("url"),
            image_url=get("image_url"),
            condition=_condition(get("condition")),
            in_stock=stock_status != "out_of_stock",
            stock_status=stock_status,
            rating=to_float(get("rating")),
            review_count=to_int(get("review_count")),
            fetched_at=fetched_at,
        )

    @staticmethod
    def _rate_limit_from(response: httpx.Response) -> Optional[RateLimitInfo]:
        remaining = to_int(response.headers.get("X-RateLimit-Remaining"))
        reset_at = _reset_time(response.headers.get("X-RateLimit-Reset"))
        if remaining is None and reset_at is None:
            return None
        return RateLimitInfo(remaining=remaining, reset_at=reset_at)
