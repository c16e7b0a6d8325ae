"""Derivation engine tests over a SQLite store."""

from __future__ import annotations

from datetime import date

import pytest

from signal_desk.db.store import Store
from signal_desk.models import Signal
from signal_desk.signals.engine import DerivationEngine
from signal_desk.signals.rules import TECHNICAL_FAMILIES
from signal_desk.sync.descriptors import EARNINGS, GRADES_CONSENSUS, HISTORICAL_PRICES
from signal_desk.sync.synchronizer import Synchronizer

PRICES_PATH = "stable/historical-price-eod/full"


async def _seed_prices(store, upstream, settings, clock, items) -> None:
    upstream.payloads[PRICES_PATH] = items
    await Synchronizer(store, upstream, settings=settings, clock=clock).ensure_fresh(HISTORICAL_PRICES, "AAPL")


@pytest.mark.asyncio
async def test_rerun_over_unchanged_history_inserts_nothing(database_url, settings, clock, upstream, make_prices):
    closes = [100.0 + 0.5 * index for index in range(260)]
    async with Store(database_url) as store:
        await store.create_all()
        await _seed_prices(store, upstream, settings, clock, make_prices("AAPL", closes))
        engine = DerivationEngine(store, settings)

        first = await engine.derive("AAPL")
        codes = {signal.signal_code for signal in first.signals}
        assert first.signal_date == date(2024, 6, 28)
        assert {"PRICE_POS_RANK_5", "RSI_OVERBOUGHT"} <= codes
        assert first.inserted == len(first.signals)
        count = await store.count(Signal, filters={"symbol": "AAPL"})
        assert count == len(first.signals)

        second = await engine.derive("AAPL")
        assert second.inserted == 0
        assert {signal.signal_code for signal in second.signals} == codes
        assert await store.count(Signal, filters={"symbol": "AAPL"}) == count


@pytest.mark.asyncio
async def test_as_of_ignores_later_rows(database_url, settings, clock, upstream, make_prices):
    closes = [100.0 + 0.5 * index for index in range(230)]
    # a sharp drop over the final week
    closes[-5:] = [60.0, 58.0, 55.0, 52.0, 50.0]
    items = make_prices("AAPL", closes)
    cutoff = date.fromisoformat(items[5]["date"])
    async with Store(database_url) as store:
        await store.create_all()
        await _seed_prices(store, upstream, settings, clock, items)
        engine = DerivationEngine(store, settings)

        result = await engine.derive("AAPL", as_of=cutoff)
        assert result.signal_date == cutoff
        assert all(signal.signal_date == cutoff for signal in result.signals)
        assert "RSI_OVERBOUGHT" in {signal.signal_code for signal in result.signals}

        latest = await engine.derive("AAPL")
        assert latest.signal_date == date(2024, 6, 28)
        assert "RSI_OVERBOUGHT" not in {signal.signal_code for signal in latest.signals}


@pytest.mark.asyncio
async def test_short_history_skips_families(database_url, settings, clock, upstream, make_prices):
    closes = [100.0 + index for index in range(30)]
    async with Store(database_url) as store:
        await store.create_all()
        await _seed_prices(store, upstream, settings, clock, make_prices("AAPL", closes))
        result = await DerivationEngine(store, settings).derive("AAPL")

        assert result.families["rsi"] == "Success"
        for family in ("sma_cross", "ema_cross", "price_position", "macd", "analyst_consensus", "earnings"):
            assert result.families[family].startswith("Skipped")
        assert [signal.signal_code for signal in result.signals] == ["RSI_OVERBOUGHT"]


@pytest.mark.asyncio
async def test_no_price_history(database_url, settings):
    async with Store(database_url) as store:
        await store.create_all()
        result = await DerivationEngine(store, settings).derive("msft")

        assert result.symbol == "MSFT"
        assert result.signal_date is None
        assert result.inserted == 0
        for family in TECHNICAL_FAMILIES:
            assert result.families[family] == "Skipped: no price history"


@pytest.mark.asyncio
async def test_external_families_and_listing(database_url, settings, clock, upstream):
    upstream.payloads["stable/grades-consensus"] = [{"symbol": "AAPL", "buy": 20, "consensus": "Hold"}]
    upstream.payloads["stable/earnings"] = [
        {"symbol": "AAPL", "date": "2024-05-02", "epsActual": 1.53, "epsEstimated": 1.50},
        {"symbol": "AAPL", "date": "2024-02-01", "epsActual": 2.18, "epsEstimated": 2.10},
    ]
    async with Store(database_url) as store:
        await store.create_all()
        sync = Synchronizer(store, upstream, settings=settings, clock=clock)
        await sync.ensure_fresh(GRADES_CONSENSUS, "AAPL")
        await sync.ensure_fresh(EARNINGS, "AAPL")

        upstream.payloads["stable/grades-consensus"] = [{"symbol": "AAPL", "buy": 25, "consensus": "Buy"}]
        clock.advance(days=1, minutes=5)
        await sync.ensure_fresh(GRADES_CONSENSUS, "AAPL")

        engine = DerivationEngine(store, settings)
        result = await engine.derive("AAPL")
        assert result.families["analyst_consensus"] == "Success"
        assert result.families["earnings"] == "Success"

        listed = await engine.list_signals("aapl")
        assert [(row["signal_date"], row["signal_code"]) for row in listed] == [
            (date(2024, 7, 2), "ANALYST_CONSENSUS_UPGRADE"),
            (date(2024, 7, 2), "ANALYST_CONSENSUS_RANK_4"),
            (date(2024, 5, 2), "EARNINGS_BEAT_EPS"),
        ]
        assert listed[0]["signal_type"] == "event"
        assert listed[0]["details"]["previous_consensus"] == "Hold"
        assert listed[2]["signal_type"] == "state"

        windowed = await engine.list_signals("AAPL", from_date=date(2024, 6, 1), to_date=date(2024, 7, 1))
        assert windowed == []


@pytest.mark.asyncio
async def test_upcoming_earnings_is_dated_on_the_derivation_day(database_url, settings, clock, upstream):
    upstream.payloads["stable/earnings"] = [
        {"symbol": "AAPL", "date": "2024-08-01", "epsEstimated": 1.35},
        {"symbol": "AAPL", "date": "2024-05-02", "epsActual": 1.53, "epsEstimated": 1.50},
    ]
    async with Store(database_url) as store:
        await store.create_all()
        await Synchronizer(store, upstream, settings=settings, clock=clock).ensure_fresh(EARNINGS, "AAPL")
        engine = DerivationEngine(store, settings, clock=clock)

        today = await engine.derive("AAPL")
        upcoming = [signal for signal in today.signals if signal.signal_code == "EARNINGS_UPCOMING"]
        assert [signal.signal_date for signal in upcoming] == [date(2024, 7, 1)]
        assert upcoming[0].details["earnings_date"] == "2024-08-01"
        assert upcoming[0].details["days_until"] == 31

        # the May report was still pending at the end of April
        earlier = await engine.derive("AAPL", as_of=date(2024, 4, 30))
        assert earlier.families["earnings"].startswith("Skipped")
        assert [(signal.signal_code, signal.details["earnings_date"]) for signal in earlier.signals] == [
            ("EARNINGS_UPCOMING", "2024-05-02")
        ]
        assert earlier.signals[0].details["days_until"] == 2
