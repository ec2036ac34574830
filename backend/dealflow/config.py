"""Application configuration.

``Settings`` carries process level options from the environment (pydantic
settings, ``.env`` file). ``EngineConfig`` is the structured engine
configuration object: sources, scoring weights, dedup and price history
tuning, and the curated lookup tables. Unknown keys are rejected.
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from dealflow.core.exceptions import ConfigError


class Settings(BaseSettings):
    """Global process settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./dealflow.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but the engine is async."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite:///"):
            self.DATABASE_URL = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    START_SCHEDULER: bool = True
    CORS_ORIGINS: str = "http://localhost:3000"

    # Engine
    ENGINE_CONFIG_PATH: str = ""
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    RSS_USER_AGENT: str = "dealflow/0.1 (+deal aggregator)"

    # Amazon PA-API
    AMAZON_ACCESS_KEY: str = ""
    AMAZON_SECRET_KEY: str = ""
    AMAZON_PARTNER_TAG: str = ""

    # Rakuten Advertising
    RAKUTEN_API_KEY: str = ""

    # CJ Affiliate
    CJ_API_KEY: str = ""
    CJ_WEBSITE_ID: str = ""

    # eBay Partner Network
    EBAY_CLIENT_TOKEN: str = ""

    # Walmart Affiliate
    WALMART_API_KEY: str = ""

    # Best Buy
    BESTBUY_API_KEY: str = ""

    def credentials_for(self, network: str) -> Dict[str, str]:
        """Return the non-empty credentials configured for an affiliate network.

        Args:
            network: Network key (e.g. "amazon", "bestbuy")

        Returns:
            Mapping of credential name to value, empty if nothing is set
        """
        fields = {
            "amazon": {
                "access_key": self.AMAZON_ACCESS_KEY,
                "secret_key": self.AMAZON_SECRET_KEY,
                "partner_tag": self.AMAZON_PARTNER_TAG,
            },
            "rakuten": {"token": self.RAKUTEN_API_KEY},
            "cj": {"api_key": self.CJ_API_KEY, "website_id": self.CJ_WEBSITE_ID},
            "ebay": {"token": self.EBAY_CLIENT_TOKEN},
            "walmart": {"api_key": self.WALMART_API_KEY},
            "bestbuy": {"api_key": self.BESTBUY_API_KEY},
        }.get(network, {})
        return {name: value for name, value in fields.items() if value}


# ----------------------------------------------------------------------
# Engine configuration
# ----------------------------------------------------------------------


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SelectorProfile(_ConfigModel):
    """CSS selectors used to extract offers from a deal page."""

    container: str
    title: str
    price: str
    original_price: Optional[str] = None
    image: Optional[str] = None
    link: Optional[str] = None
    in_stock: Optional[str] = None


class SourceConfig(_ConfigModel):
    kind: Literal["affiliate", "rss", "scraper", "submission"]
    name: str = Field(min_length=1)
    enabled: bool = True
    interval_minutes: int = Field(default=15, gt=0)
    rate_limit_per_minute: float = Field(default=60.0, gt=0)
    auth: Optional[Dict[str, str]] = None
    url: Optional[str] = None
    search_url: Optional[str] = None
    category: Optional[str] = None
    network: Optional[str] = None
    merchant: Optional[str] = None
    selectors: Optional[SelectorProfile] = None
    batch_size: int = Field(default=50, gt=0)

    @model_validator(mode="after")
    def check_kind_fields(self) -> "SourceConfig":
        if self.kind in ("rss", "scraper") and not self.url:
            raise ValueError(f"{self.kind} source '{self.name}' requires url")
        if self.kind == "scraper" and self.selectors is None:
            raise ValueError(f"scraper source '{self.name}' requires selectors")
        if self.kind == "affiliate" and not self.network:
            raise ValueError(f"affiliate source '{self.name}' requires network")
        return self

    @property
    def min_interval(self) -> float:
        """Seconds that must elapse between two requests of this source."""
        return 60.0 / self.rate_limit_per_minute


class ScoringWeights(_ConfigModel):
    price_history: int = 30
    discount: int = 20
    quality: int = 20
    freshness: int = 15
    trust: int = 10
    engagement: int = 5

    @model_validator(mode="after")
    def check_total(self) -> "ScoringWeights":
        total = (
            self.price_history
            + self.discount
            + self.quality
            + self.freshness
            + self.trust
            + self.engagement
        )
        if total != 100:
            raise ValueError(f"scoring weights must sum to 100, got {total}")
        return self


class VerdictThresholds(_ConfigModel):
    incredible: int = 85
    great: int = 70
    good: int = 55
    fair: int = 40

    @model_validator(mode="after")
    def check_order(self) -> "VerdictThresholds":
        if not (100 >= self.incredible > self.great > self.good > self.fair >= 0):
            raise ValueError("verdict thresholds must be strictly descending within [0, 100]")
        return self


class ScoringConfig(_ConfigModel):
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    verdict_thresholds: VerdictThresholds = Field(default_factory=VerdictThresholds)


class DedupConfig(_ConfigModel):
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)


class PriceHistoryConfig(_ConfigModel):
    all_time_low_tolerance: float = Field(default=1.02, ge=1.0)
    archival_days: int = Field(default=365, gt=0)


class SchedulerConfig(_ConfigModel):
    tick_interval_seconds: int = Field(default=60, gt=0)


class MaintenanceConfig(_ConfigModel):
    stale_offer_days: int = Field(default=30, gt=0)


class CategoryThreshold(_ConfigModel):
    great: float
    good: float


class SaleEventConfig(_ConfigModel):
    name: str
    month: int = Field(ge=0, le=11)  # 0-indexed, 10 = November
    day: int = Field(ge=1, le=31)
    window_days: int = Field(gt=0)
    expected_discount: int = Field(ge=0, le=100)


DEFAULT_RETAILER_TRUST: Dict[str, int] = {
    "amazon": 95,
    "bestbuy": 92,
    "walmart": 90,
    "target": 88,
    "costco": 95,
    "newegg": 85,
    "bhphoto": 92,
    "apple": 98,
    "samsung": 90,
    "dell": 85,
    "hp": 82,
    "ebay": 70,
    "facebook marketplace": 50,
    "craigslist": 40,
    "offerup": 55,
    "swappa": 75,
    "woot": 85,
    "default": 60,
}

DEFAULT_CATEGORY_THRESHOLDS: Dict[str, Dict[str, float]] = {
    "electronics": {"great": 25, "good": 15},
    "laptops": {"great": 20, "good": 12},
    "smartphones": {"great": 15, "good": 10},
    "audio": {"great": 30, "good": 20},
    "appliances": {"great": 25, "good": 15},
    "gaming": {"great": 20, "good": 12},
    "tvs": {"great": 25, "good": 15},
    "clothing": {"great": 50, "good": 30},
    "shoes": {"great": 40, "good": 25},
    "default": {"great": 30, "good": 18},
}

DEFAULT_BRAND_ALIASES: Dict[str, List[str]] = {
    "Apple": ["APPLE", "apple inc", "apple computer"],
    "Samsung": ["SAMSUNG", "samsung electronics"],
    "Sony": ["SONY", "sony corporation"],
    "LG": ["LG Electronics", "lg electronics"],
    "Microsoft": ["MICROSOFT", "microsoft corporation"],
    "Dell": ["DELL", "dell technologies"],
    "HP": ["Hewlett-Packard", "Hewlett Packard", "hp inc"],
    "Lenovo": ["LENOVO"],
    "ASUS": ["Asus", "ASUSTek"],
    "Bose": ["BOSE", "bose corporation"],
    "JBL": ["jbl", "JBL by Harman"],
    "Beats": ["Beats by Dr. Dre", "beats by dre"],
    "Nintendo": ["NINTENDO"],
    "Dyson": ["DYSON"],
    "Google": ["GOOGLE", "google llc"],
    "Amazon": ["AMAZON", "amazon basics", "amazonbasics"],
}

# Substring patterns are checked in order, first hit wins
DEFAULT_MARKETPLACES: Dict[str, str] = {
    "smile.amazon.com": "Amazon",
    "amazon.com": "Amazon",
    "amazon": "Amazon",
    "walmart": "Walmart",
    "bestbuy.com": "Best Buy",
    "bestbuy": "Best Buy",
    "best buy": "Best Buy",
    "target": "Target",
    "ebay": "eBay",
    "newegg": "Newegg",
    "b&h": "B&H Photo",
    "bhphoto": "B&H Photo",
    "costco": "Costco",
    "woot": "Woot",
}

# Substring patterns, first hit wins: more specific patterns go first
DEFAULT_CATEGORIES: Dict[str, str] = {
    "laptops": "Electronics > Computers > Laptops",
    "laptop": "Electronics > Computers > Laptops",
    "notebooks": "Electronics > Computers > Laptops",
    "desktops": "Electronics > Computers > Desktops",
    "desktop": "Electronics > Computers > Desktops",
    "headphones": "Electronics > Audio > Headphones",
    "earbuds": "Electronics > Audio > Earbuds",
    "smartphones": "Electronics > Phones > Smartphones",
    "cell phones": "Electronics > Phones > Smartphones",
    "mobile phones": "Electronics > Phones > Smartphones",
    "phones": "Electronics > Phones > Smartphones",
    "tablets": "Electronics > Tablets",
    "speakers": "Electronics > Audio > Speakers",
    "tvs": "Electronics > TVs",
    "television": "Electronics > TVs",
    "monitors": "Electronics > Computers > Monitors",
    "video games": "Electronics > Gaming > Games",
    "consoles": "Electronics > Gaming > Consoles",
    "gaming": "Electronics > Gaming",
    "cameras": "Electronics > Cameras",
    "smart home": "Electronics > Smart Home",
    "smartwatch": "Electronics > Wearables > Smartwatches",
    "wearables": "Electronics > Wearables",
    "computers": "Electronics > Computers",
    "audio": "Electronics > Audio",
    "appliances": "Home > Appliances",
    "electronics": "Electronics",
}

DEFAULT_SALE_EVENTS: List[Dict[str, object]] = [
    {"name": "Black Friday", "month": 10, "day": 25, "window_days": 10, "expected_discount": 25},
    {"name": "Cyber Monday", "month": 10, "day": 28, "window_days": 7, "expected_discount": 20},
    {"name": "Prime Day", "month": 6, "day": 15, "window_days": 14, "expected_discount": 20},
    {"name": "Memorial Day", "month": 4, "day": 25, "window_days": 7, "expected_discount": 15},
    {"name": "Labor Day", "month": 8, "day": 1, "window_days": 7, "expected_discount": 15},
]


class TablesConfig(_ConfigModel):
    """Curated lookup tables consulted by the normalizer, scorer and predictor."""

    retailer_trust: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_RETAILER_TRUST))
    category_thresholds: Dict[str, CategoryThreshold] = Field(
        default_factory=lambda: {
            key: CategoryThreshold(**value)
            for key, value in DEFAULT_CATEGORY_THRESHOLDS.items()
        }
    )
    brand_aliases: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_BRAND_ALIASES.items()}
    )
    marketplaces: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MARKETPLACES))
    categories: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CATEGORIES))
    sale_events: List[SaleEventConfig] = Field(
        default_factory=lambda: [SaleEventConfig(**event) for event in DEFAULT_SALE_EVENTS]
    )

    @model_validator(mode="after")
    def check_defaults_present(self) -> "TablesConfig":
        if "default" not in self.retailer_trust:
            raise ValueError("retailerTrust requires a 'default' entry")
        if "default" not in self.category_thresholds:
            raise ValueError("categoryThresholds requires a 'default' entry")
        return self


def default_sources() -> List[SourceConfig]:
    """Built-in source catalog used when the configuration names none."""
    affiliate = [
        SourceConfig(kind="affiliate", name="amazon", network="amazon",
                     interval_minutes=15, rate_limit_per_minute=300),
        SourceConfig(kind="affiliate", name="rakuten", network="rakuten", interval_minutes=15),
        SourceConfig(kind="affiliate", name="cj", network="cj", interval_minutes=15),
        SourceConfig(kind="affiliate", name="ebay", network="ebay", interval_minutes=15),
        SourceConfig(kind="affiliate", name="walmart", network="walmart", interval_minutes=15),
        SourceConfig(kind="affiliate", name="bestbuy", network="bestbuy", interval_minutes=15),
    ]

    feeds = [
        ("Slickdeals Frontpage",
         "https://slickdeals.net/newsearch.php?mode=frontpage&searcharea=deals&searchin=first&rss=1",
         None, 10),
        ("Slickdeals Hot",
         "https://slickdeals.net/newsearch.php?mode=popdeals&searcharea=deals&searchin=first&rss=1",
         None, 15),
        ("DealNews All", "https://www.dealnews.com/rss/", None, 10),
        ("DealNews Electronics", "https://www.dealnews.com/c69/Electronics/rss/", "electronics", 15),
        ("DealNews Computers", "https://www.dealnews.com/c3/Computers/rss/", "computers", 15),
        ("TechBargains", "https://www.techbargains.com/rss.xml", "electronics", 20),
        ("Reddit BuildAPCSales", "https://www.reddit.com/r/buildapcsales/.rss", "computers", 5),
        ("Reddit GameDeals", "https://www.reddit.com/r/GameDeals/.rss", "gaming", 5),
        ("Woot", "https://www.woot.com/feed/rss", None, 30),
        ("Newegg Deals",
         "https://www.newegg.com/Product/RSS.aspx?Submit=RSSDailyDeals&Depa=1",
         "electronics", 30),
    ]
    rss = [
        SourceConfig(kind="rss", name=name, url=url, category=category,
                     interval_minutes=interval, rate_limit_per_minute=30)
        for name, url, category, interval in feeds
    ]

    scrapers = [
        SourceConfig(
            kind="scraper", name="Amazon Deals", merchant="amazon.com",
            url="https://www.amazon.com/deals", interval_minutes=30, rate_limit_per_minute=10,
            search_url="https://www.amazon.com/s?k={query}",
            selectors=SelectorProfile(
                container='[data-component-type="s-search-result"]',
                title="h2 a span", price=".a-price-whole",
                original_price=".a-text-price span", image="img.s-image", link="h2 a",
            ),
        ),
        SourceConfig(
            kind="scraper", name="Best Buy Deals", merchant="bestbuy.com",
            url="https://www.bestbuy.com/site/misc/deal-of-the-day/pcmcat248000050016.c",
            interval_minutes=30, rate_limit_per_minute=15,
            selectors=SelectorProfile(
                container=".sku-item", title=".sku-title a",
                price=".priceView-customer-price span",
                original_price=".pricing-price__regular-price",
                image=".product-image img", link=".sku-title a",
            ),
        ),
        SourceConfig(
            kind="scraper", name="Walmart Rollbacks", merchant="walmart.com",
            url="https://www.walmart.com/shop/deals", interval_minutes=30, rate_limit_per_minute=12,
            selectors=SelectorProfile(
                container="[data-item-id]", title='[data-automation-id="product-title"]',
                price='[data-automation-id="product-price"] span',
                image='img[data-testid="productImage"]', link="a[link-identifier]",
            ),
        ),
        SourceConfig(
            kind="scraper", name="Newegg Deals Page", merchant="newegg.com",
            url="https://www.newegg.com/todays-deals", interval_minutes=30, rate_limit_per_minute=20,
            search_url="https://www.newegg.com/p/pl?d={query}",
            selectors=SelectorProfile(
                container=".item-cell", title=".item-title", price=".price-current strong",
                original_price=".price-was-data", image=".item-img img", link=".item-title",
            ),
        ),
        SourceConfig(
            kind="scraper", name="Woot Daily Deals", merchant="woot.com",
            url="https://www.woot.com", interval_minutes=30, rate_limit_per_minute=30,
            selectors=SelectorProfile(
                container=".sale-thumb", title=".title", price=".price",
                original_price=".list-price", image="img", link="a",
            ),
        ),
        SourceConfig(
            kind="scraper", name="Slickdeals Deals Page", merchant="slickdeals",
            url="https://slickdeals.net/deals/", interval_minutes=30, rate_limit_per_minute=20,
            selectors=SelectorProfile(
                container=".dealCard", title=".dealCard__title", price=".dealCard__price",
                link=".dealCard__titleLink", image=".dealCard__image img",
            ),
        ),
    ]

    submissions = [
        SourceConfig(kind="submission", name="user-submissions",
                     interval_minutes=5, rate_limit_per_minute=600),
    ]

    return affiliate + rss + scrapers + submissions


class EngineConfig(_ConfigModel):
    """Single structured configuration object for the aggregation engine."""

    sources: List[SourceConfig] = Field(default_factory=default_sources)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    price_history: PriceHistoryConfig = Field(default_factory=PriceHistoryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    tables: TablesConfig = Field(default_factory=TablesConfig)

    @model_validator(mode="after")
    def check_unique_source_names(self) -> "EngineConfig":
        names = [source.name for source in self.sources]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate source names: {', '.join(duplicates)}")
        return self


def load_engine_config(path: Optional[str] = None) -> EngineConfig:
    """Load the engine configuration from a JSON file.

    Args:
        path: Path to the JSON document, or None/empty for built-in defaults

    Returns:
        Validated EngineConfig

    Raises:
        ConfigError: If the file cannot be read or fails validation
    """
    if not path:
        return EngineConfig()

    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read engine config '{path}': {e}") from e

    try:
        return EngineConfig.model_validate_json(text)
    except ValidationError as e:
        raise ConfigError(f"Invalid engine config '{path}': {e}") from e


settings = Settings()
