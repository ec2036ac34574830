"""Offer records emitted and consumed by the pipeline stages.

RawOffer is what a source adapter produces. CanonicalOffer is the
normalizer's output and the unit of deduplication. ScoredOffer is what the
index stores under a fingerprint.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


CONDITIONS = ("new", "used", "refurbished", "like-new")
STOCK_STATUSES = ("in_stock", "low_stock", "out_of_stock")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


@dataclass
class RawOffer:
    """Offer as fetched from one upstream, before any cleaning.

    Prices are kept as whatever the upstream handed over (string, number or
    Decimal); the normalizer decides whether they are usable.
    """

    external_id: str
    title: str
    current_price: Any
    source: str
    merchant: str = ""
    category: str = ""
    currency: str = "USD"
    original_price: Any = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    url: Optional[str] = None
    brand: Optional[str] = None
    condition: str = "new"
    in_stock: bool = True
    stock_status: str = "in_stock"
    rating: Optional[float] = None
    review_count: Optional[int] = None
    seller_rating: Optional[float] = None
    views: Optional[int] = None
    saves: Optional[int] = None
    listed_at: Optional[datetime] = None
    fetched_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CanonicalOffer:
    """Normalized offer keyed by its product fingerprint."""

    external_id: str
    source: str
    title: str
    brand: str
    model: Optional[str]
    category: str
    marketplace: str
    current_price: Decimal
    currency: str
    fingerprint: str
    original_price: Optional[Decimal] = None
    discount_percent: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    url: Optional[str] = None
    condition: str = "new"
    in_stock: bool = True
    stock_status: str = "in_stock"
    rating: Optional[float] = None
    review_count: Optional[int] = None
    seller_rating: Optional[float] = None
    views: Optional[int] = None
    saves: Optional[int] = None
    listed_at: Optional[datetime] = None
    fetched_at: datetime = field(default_factory=utcnow)
    # Upstream values the canonical fields were derived from
    raw_title: str = ""
    raw_brand: Optional[str] = None
    raw_category: str = ""
    raw_merchant: str = ""

    @property
    def days_on_market(self) -> Optional[int]:
        """Whole days between first listing and the observation."""
        if self.listed_at is None:
            return None
        return max(0, (self.fetched_at - self.listed_at).days)

    def to_raw(self) -> RawOffer:
        """Rebuild the raw offer this record normalizes from."""
        return RawOffer(
            external_id=self.external_id,
            title=self.raw_title,
            current_price=self.current_price,
            source=self.source,
            merchant=self.raw_merchant,
            category=self.raw_category,
            currency=self.currency,
            original_price=self.original_price,
            description=self.description,
            image_url=self.image_url,
            url=self.url,
            brand=self.raw_brand,
            condition=self.condition,
            in_stock=self.in_stock,
            stock_status=self.stock_status,
            rating=self.rating,
            review_count=self.review_count,
            seller_rating=self.seller_rating,
            views=self.views,
            saves=self.saves,
            listed_at=self.listed_at,
            fetched_at=self.fetched_at,
        )

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["current_price"] = str(self.current_price)
        record["original_price"] = (
            str(self.original_price) if self.original_price is not None else None
        )
        record["listed_at"] = _iso(self.listed_at)
        record["fetched_at"] = _iso(self.fetched_at)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CanonicalOffer":
        data = dict(record)
        data["current_price"] = Decimal(data["current_price"])
        data["original_price"] = _dec(data.get("original_price"))
        data["listed_at"] = _parse_dt(data.get("listed_at"))
        data["fetched_at"] = _parse_dt(data["fetched_at"])
        return cls(**data)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component subscores, each in [0, 100]."""

    price_history: float
    discount: float
    quality: float
    freshness: float
    trust: float
    engagement: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ScoredOffer:
    """A canonical offer together with its deal score."""

    offer: CanonicalOffer
    breakdown: ScoreBreakdown
    total_score: int
    verdict: str
    recommendation: str
    insights: Tuple[str, ...] = ()

    @property
    def fingerprint(self) -> str:
        return self.offer.fingerprint

    def to_record(self) -> Dict[str, Any]:
        return {
            "offer": self.offer.to_record(),
            "breakdown": self.breakdown.as_dict(),
            "total_score": self.total_score,
            "verdict": self.verdict,
            "recommendation": self.recommendation,
            "insights": list(self.insights),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ScoredOffer":
        return cls(
            offer=CanonicalOffer.from_record(record["offer"]),
            breakdown=ScoreBreakdown(**record["breakdown"]),
            total_score=int(record["total_score"]),
            verdict=record["verdict"],
            recommendation=record["recommendation"],
            insights=tuple(record.get("insights", ())),
        )
