"""Tests for PriceHistoryStore statistics, prediction and persistence."""

from datetime import date
from decimal import Decimal
from typing import List

import pytest

from dealflow.domain.prices import PricePoint
from dealflow.services.price_history import PriceHistoryStore, buy_signal
from dealflow.stores.memory import MemoryRecordStore
from tests.helpers import NOW, days_ago

FP = "apple::512gb::512gb-apple-macbook"


# ============================================================================
# FIXTURES
# ============================================================================


async def seed(history: PriceHistoryStore, prices: List[float], fingerprint: str = FP) -> None:
    """Append prices oldest first, one per day ending yesterday."""
    for offset, price in enumerate(prices):
        await history.append(PricePoint(
            fingerprint=fingerprint,
            price=Decimal(str(price)),
            observed_at=days_ago(len(prices) - offset),
            source="test-source",
        ))


# ============================================================================
# TESTS
# ============================================================================


class TestPriceStats:
    """Tests for stats_for."""

    def test_empty_history(self, history: PriceHistoryStore):
        """Test a fingerprint with no history reports itself at its all-time low."""
        stats = history.stats_for("unknown", Decimal("49.99"))

        assert stats.is_at_all_time_low is True
        assert stats.confidence == 20
        assert stats.sample_count == 0
        assert stats.lowest == stats.highest == stats.average_30d == Decimal("49.99")
        assert stats.buy_signal == "wait"

    async def test_all_time_low(self, history: PriceHistoryStore):
        """Test a price under every observation is flagged as an all-time low."""
        await seed(history, [1299, 1249, 1199, 1149])

        stats = history.stats_for(FP, Decimal("1099"))

        assert stats.is_at_all_time_low is True
        assert stats.sample_count == 4
        assert stats.confidence == 40
        assert stats.lowest == Decimal("1149")
        assert stats.highest == Decimal("1299")
        assert stats.average == Decimal("1224.00")
        assert stats.change_7d == pytest.approx(-15.4, abs=0.01)
        assert stats.buy_signal == "buy_now"

    async def test_all_time_low_tolerance(self, history: PriceHistoryStore):
        """Test prices within 2% of the lowest still count as an all-time low."""
        await seed(history, [1299, 1149])

        assert history.stats_for(FP, Decimal("1170")).is_at_all_time_low is True
        assert history.stats_for(FP, Decimal("1180")).is_at_all_time_low is False

    async def test_window_ordering(self, history: PriceHistoryStore):
        """Test lowest <= 30-day average <= highest."""
        await seed(history, [120, 80, 150, 95, 110, 130])

        stats = history.stats_for(FP, Decimal("100"))

        assert stats.lowest <= stats.average_30d <= stats.highest

    async def test_confidence_capped(self, history: PriceHistoryStore):
        """Test confidence never exceeds 100."""
        await seed(history, [100] * 25)
        assert history.stats_for(FP, Decimal("100")).confidence == 100

    def test_buy_signal_buckets(self):
        """Test buy signal thresholds relative to the 30-day average."""
        assert buy_signal(Decimal("80"), Decimal("100"), Decimal("78"), False) == "buy_now"
        assert buy_signal(Decimal("94"), Decimal("100"), Decimal("60"), False) == "good_price"
        assert buy_signal(Decimal("100"), Decimal("100"), Decimal("60"), False) == "wait"
        assert buy_signal(Decimal("120"), Decimal("100"), Decimal("60"), False) == "avoid"


class TestPrediction:
    """Tests for predict."""

    async def test_insufficient_data(self, history: PriceHistoryStore):
        """Test fewer than seven points yields a low-confidence stable forecast."""
        await seed(history, [100, 100, 100])

        prediction = history.predict(FP, date(2024, 3, 1))

        assert prediction.direction == "stable"
        assert prediction.confidence == 10
        assert prediction.suggested_wait_days == 0

    async def test_seasonal_event_overrides_trend(self, history: PriceHistoryStore):
        """Test an upcoming Black Friday forecasts a drop regardless of a flat trend."""
        await seed(history, [500] * 30)

        prediction = history.predict(FP, date(2024, 11, 15))

        assert prediction.direction == "down"
        assert prediction.change_percent == 25
        assert prediction.confidence == 70
        assert prediction.suggested_wait_days == 10
        assert "Black Friday" in prediction.reasoning

    async def test_declining_trend(self, history: PriceHistoryStore):
        """Test a steadily falling series forecasts a further drop."""
        await seed(history, [1000 - 30 * i for i in range(10)])

        prediction = history.predict(FP, date(2024, 3, 1))

        assert prediction.direction == "down"
        assert prediction.confidence == 65
        assert prediction.suggested_wait_days == 7

    async def test_rising_trend(self, history: PriceHistoryStore):
        """Test a steadily rising series forecasts an increase."""
        await seed(history, [700 + 30 * i for i in range(10)])

        prediction = history.predict(FP, date(2024, 3, 1))

        assert prediction.direction == "up"
        assert prediction.suggested_wait_days == 0

    async def test_flat_series_is_stable(self, history: PriceHistoryStore):
        """Test a flat series outside any sale window is stable."""
        await seed(history, [250] * 10)

        prediction = history.predict(FP, date(2024, 3, 1))

        assert prediction.direction == "stable"
        assert prediction.confidence == 40

    def test_upcoming_sale_window(self, history: PriceHistoryStore):
        """Test the sale event lookup honours each event's window."""
        event, days_until = history.upcoming_sale(date(2024, 7, 5))
        assert event.name == "Prime Day"
        assert days_until == 10
        assert history.upcoming_sale(date(2024, 3, 1)) is None


class TestHistoryStorage:
    """Tests for append ordering, persistence and pruning."""

    async def test_out_of_order_append(self, history: PriceHistoryStore):
        """Test late observations are inserted chronologically."""
        for days, price in ((1, "10"), (3, "30"), (2, "20")):
            await history.append(PricePoint(FP, Decimal(price), days_ago(days), "s"))

        series = history.series_for(FP)

        assert [p.price for p in series] == [Decimal("30"), Decimal("20"), Decimal("10")]
        assert history.series_for(FP, since=days_ago(2)) == series[1:]

    async def test_write_through_and_load(self, store: MemoryRecordStore, history: PriceHistoryStore):
        """Test appended points survive a reload from the record store."""
        await seed(history, [100, 90, 80])

        record = await store.get(f"price:{FP}")
        assert record["fingerprint"] == FP
        assert len(record["points"]) == 3

        reloaded = PriceHistoryStore(store, clock=lambda: NOW)
        assert await reloaded.load() == 3
        assert reloaded.series_for(FP) == history.series_for(FP)
        assert reloaded.fingerprints() == [FP]

    async def test_prune_keeps_latest_point(self, store: MemoryRecordStore, history: PriceHistoryStore):
        """Test pruning drops archived points but never empties a series."""
        for days, price in ((400, "100"), (380, "95"), (10, "90")):
            await history.append(PricePoint("fp-1", Decimal(price), days_ago(days), "s"))
        for days, price in ((500, "50"), (450, "45")):
            await history.append(PricePoint("fp-2", Decimal(price), days_ago(days), "s"))

        removed = await history.prune(days_ago(365))

        assert removed == 3
        assert [p.price for p in history.series_for("fp-1")] == [Decimal("90")]
        assert [p.price for p in history.series_for("fp-2")] == [Decimal("45")]
        record = await store.get("price:fp-2")
        assert len(record["points"]) == 1

    def test_has_history(self, history: PriceHistoryStore):
        assert history.has_history(FP) is False
        assert len(history) == 0
