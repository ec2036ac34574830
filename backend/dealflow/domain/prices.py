"""Price observation and derived price statistic records."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PricePoint:
    """One observed price for a product fingerprint. Immutable once stored."""

    fingerprint: str
    price: Decimal
    observed_at: datetime
    source: str

    def to_record(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "price": str(self.price),
            "observed_at": self.observed_at.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PricePoint":
        return cls(
            fingerprint=record["fingerprint"],
            price=Decimal(record["price"]),
            observed_at=datetime.fromisoformat(record["observed_at"]),
            source=record["source"],
        )


@dataclass(frozen=True)
class PriceStats:
    """Statistics derived from a fingerprint's price history."""

    current: Decimal
    average: Decimal
    average_7d: Decimal
    average_30d: Decimal
    average_90d: Decimal
    lowest: Decimal
    lowest_at: Optional[datetime]
    highest: Decimal
    highest_at: Optional[datetime]
    change_7d: float
    change_30d: float
    is_at_all_time_low: bool
    confidence: int
    sample_count: int
    buy_signal: str


@dataclass(frozen=True)
class PricePrediction:
    """Short-term price direction forecast for a fingerprint."""

    direction: str  # 'up', 'down' or 'stable'
    change_percent: float
    confidence: int
    reasoning: str
    suggested_wait_days: int


@dataclass(frozen=True)
class SaleEvent:
    """Recurring retail sale event. ``month`` is 0-indexed (10 = November)."""

    name: str
    month: int
    day: int
    window_days: int
    expected_discount: int
