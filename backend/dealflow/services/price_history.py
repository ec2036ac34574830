"""Append-only price history per fingerprint, with derived statistics.

Series live in memory (copy-on-write lists, so readers never see a partial
append) and are written through to the record store under
``price:{fingerprint}``. Appends to the same fingerprint are serialized.
"""

import asyncio
import bisect
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from dealflow.config import DEFAULT_SALE_EVENTS
from dealflow.domain.offers import utcnow
from dealflow.domain.prices import PricePoint, PricePrediction, PriceStats, SaleEvent
from dealflow.stores.base import PRICE_PREFIX, RecordStore

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
MIN_PREDICTION_POINTS = 7

DEFAULT_EVENTS: Tuple[SaleEvent, ...] = tuple(SaleEvent(**event) for event in DEFAULT_SALE_EVENTS)


def _mean(prices: Sequence[Decimal]) -> Decimal:
    return (sum(prices, Decimal(0)) / len(prices)).quantize(CENT, rounding=ROUND_HALF_UP)


def _percent_change(current: Decimal, reference: Decimal) -> float:
    if reference == 0:
        return 0.0
    return round(float((current - reference) / reference * 100), 2)


def _trend(prices: Sequence[Decimal]) -> float:
    """Percent change per sample between the first and last price."""
    if len(prices) < 2 or prices[0] == 0:
        return 0.0
    return float((prices[-1] - prices[0]) / prices[0] * 100) / len(prices)


def buy_signal(
    current: Decimal,
    average_30d: Decimal,
    lowest: Decimal,
    is_at_all_time_low: bool,
) -> str:
    """Classify the current price as buy_now, good_price, wait or avoid."""
    if is_at_all_time_low:
        return "buy_now"
    vs_avg = _percent_change(current, average_30d)
    vs_low = _percent_change(current, lowest)
    if vs_avg <= -15 and vs_low <= 5:
        return "buy_now"
    if vs_avg <= -5:
        return "good_price"
    if vs_avg <= 5:
        return "wait"
    return "avoid"


class PriceHistoryStore:
    """Owns PricePoint sequences keyed by fingerprint."""

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        all_time_low_tolerance: float = 1.02,
        sale_events: Sequence[SaleEvent] = DEFAULT_EVENTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tolerance = Decimal(str(all_time_low_tolerance))
        self.sale_events = tuple(sale_events)
        self._clock = clock
        self._series: Dict[str, List[PricePoint]] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.logger = logger.bind(service="price_history")

    def __len__(self) -> int:
        return len(self._series)

    def fingerprints(self) -> List[str]:
        return sorted(self._series)

    def has_history(self, fingerprint: str) -> bool:
        return bool(self._series.get(fingerprint))

    async def load(self) -> int:
        """Rebuild the in-memory series from the record store."""
        if self.store is None:
            return 0
        loaded = 0
        for _key, record in await self.store.scan(PRICE_PREFIX):
            points = [PricePoint.from_record(p) for p in record.get("points", [])]
            points.sort(key=lambda p: p.observed_at)
            if points:
                self._series[record["fingerprint"]] = points
                loaded += len(points)
        self.logger.info("price_history_loaded", fingerprints=len(self._series), points=loaded)
        return loaded

    async def append(self, point: PricePoint) -> None:
        """Record one observation, keeping the series chronological.

        Raises:
            StoreWriteError: If the record store refuses the write. The point
                stays in the in-memory series.
        """
        async with self._locks[point.fingerprint]:
            series = list(self._series.get(point.fingerprint, []))
            bisect.insort(series, point, key=lambda p: p.observed_at)
            self._series[point.fingerprint] = series
            if self.store is not None:
                await self._persist(point.fingerprint, series)

    async def _persist(self, fingerprint: str, series: List[PricePoint]) -> None:
        await self.store.put(
            f"{PRICE_PREFIX}{fingerprint}",
            {"fingerprint": fingerprint, "points": [p.to_record() for p in series]},
        )

    def series_for(self, fingerprint: str, since: Optional[datetime] = None) -> List[PricePoint]:
        series = self._series.get(fingerprint, [])
        if since is None:
            return list(series)
        return [p for p in series if p.observed_at >= since]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats_for(
        self,
        fingerprint: str,
        current_price: Decimal,
        now: Optional[datetime] = None,
    ) -> PriceStats:
        """Derive statistics for a fingerprint against a current price.

        Window averages fall back to the current price when the window is
        empty; percent changes use the oldest point inside the window.
        """
        current = Decimal(current_price)
        history = self._series.get(fingerprint, [])

        if not history:
            return PriceStats(
                current=current,
                average=current,
                average_7d=current,
                average_30d=current,
                average_90d=current,
                lowest=current,
                lowest_at=None,
                highest=current,
                highest_at=None,
                change_7d=0.0,
                change_30d=0.0,
                is_at_all_time_low=True,
                confidence=20,
                sample_count=0,
                buy_signal="wait",
            )

        now = now or self._clock()

        def window(days: int) -> List[PricePoint]:
            cutoff = now - timedelta(days=days)
            return [p for p in history if p.observed_at >= cutoff]

        last_7d, last_30d, last_90d = window(7), window(30), window(90)
        prices = [p.price for p in history]

        lowest_point = min(history, key=lambda p: p.price)
        highest_point = max(history, key=lambda p: p.price)
        average_30d = _mean([p.price for p in last_30d]) if last_30d else current
        is_atl = current <= lowest_point.price * self.tolerance

        return PriceStats(
            current=current,
            average=_mean(prices),
            average_7d=_mean([p.price for p in last_7d]) if last_7d else current,
            average_30d=average_30d,
            average_90d=_mean([p.price for p in last_90d]) if last_90d else current,
            lowest=lowest_point.price,
            lowest_at=lowest_point.observed_at,
            highest=highest_point.price,
            highest_at=highest_point.observed_at,
            change_7d=_percent_change(current, last_7d[0].price) if last_7d else 0.0,
            change_30d=_percent_change(current, last_30d[0].price) if last_30d else 0.0,
            is_at_all_time_low=is_atl,
            confidence=min(100, 20 + 5 * len(history)),
            sample_count=len(history),
            buy_signal=buy_signal(current, average_30d, lowest_point.price, is_atl),
        )

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def upcoming_sale(self, today: date) -> Optional[Tuple[SaleEvent, int]]:
        """First sale event starting within its window after ``today``."""
        for event in self.sale_events:
            try:
                event_date = date(today.year, event.month + 1, event.day)
            except ValueError:
                continue
            days_until = (event_date - today).days
            if 0 < days_until <= event.window_days:
                return event, days_until
        return None

    def predict(self, fingerprint: str, today: Optional[date] = None) -> PricePrediction:
        history = self._series.get(fingerprint, [])
        if len(history) < MIN_PREDICTION_POINTS:
            return PricePrediction(
                direction="stable",
                change_percent=0.0,
                confidence=10,
                reasoning="Insufficient price history for prediction",
                suggested_wait_days=0,
            )

        today = today or self._clock().date()
        upcoming = self.upcoming_sale(today)
        if upcoming is not None:
            event, days_until = upcoming
            return PricePrediction(
                direction="down",
                change_percent=float(event.expected_discount),
                confidence=70,
                reasoning=f"{event.name} is approaching - prices typically drop",
                suggested_wait_days=days_until,
            )

        prices = [p.price for p in history]
        recent = _trend(prices[-7:])
        medium = _trend(prices[-30:])
        samples = len(history)

        if recent < -2 and medium < -1:
            return PricePrediction(
                direction="down",
                change_percent=round(abs(recent) * 0.5, 2),
                confidence=60 + min(20, samples // 2),
                reasoning="Price has been consistently declining",
                suggested_wait_days=7,
            )
        if recent > 2 and medium > 1:
            return PricePrediction(
                direction="up",
                change_percent=round(recent * 0.5, 2),
                confidence=55 + min(15, samples // 2),
                reasoning="Price has been increasing - may want to buy soon",
                suggested_wait_days=0,
            )
        return PricePrediction(
            direction="stable",
            change_percent=0.0,
            confidence=40,
            reasoning="Price appears stable",
            suggested_wait_days=0,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def prune(self, before: datetime) -> int:
        """Drop points observed before ``before``, keeping each series' latest point.

        Returns:
            Number of points removed
        """
        removed = 0
        for fingerprint in list(self._series):
            async with self._locks[fingerprint]:
                series = self._series.get(fingerprint, [])
                kept = [p for p in series if p.observed_at >= before]
                if not kept and series:
                    kept = [series[-1]]
                if len(kept) == len(series):
                    continue
                removed += len(series) - len(kept)
                self._series[fingerprint] = kept
                if self.store is not None:
                    await self._persist(fingerprint, kept)

        self.logger.info("price_history_pruned", removed=removed, before=before.isoformat())
        return removed
