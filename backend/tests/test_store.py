"""Store handle tests against SQLite."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from signal_desk.core.errors import ConfigurationError, StoreError
from signal_desk.db.store import Store
from signal_desk.models import HistoricalPrice, Signal

STAMP = datetime(2024, 7, 1, tzinfo=timezone.utc)


def _bar(day: int, close: float) -> dict:
    return {
        "symbol": "AAPL",
        "date": date(2024, 6, day),
        "open": close,
        "high": close,
        "low": close,
        "close": close,
        "adj_close": close,
        "volume": 100.0,
        "modified_at": STAMP,
    }


@pytest.mark.asyncio
async def test_upsert_updates_on_conflict(database_url):
    async with Store(database_url) as store:
        await store.create_all()
        await store.upsert(HistoricalPrice, [_bar(27, 10.0), _bar(28, 11.0)], ("symbol", "date"))
        await store.upsert(HistoricalPrice, [_bar(28, 12.5)], ("symbol", "date"))

        assert await store.count(HistoricalPrice, filters={"symbol": "AAPL"}) == 2
        latest = await store.find_latest(HistoricalPrice, filters={"symbol": "AAPL"}, order_by="date")
        assert latest["close"] == 12.5
        assert latest["date"] == date(2024, 6, 28)


@pytest.mark.asyncio
async def test_upsert_do_nothing_reports_new_rows_only(database_url):
    row = {
        "symbol": "AAPL",
        "signal_date": date(2024, 6, 28),
        "signal_code": "RSI_OVERBOUGHT",
        "signal_category": "technical",
        "signal_type": "state",
        "details": {"rsi": 71.2},
        "confidence": None,
    }
    async with Store(database_url) as store:
        await store.create_all()
        key = ("symbol", "signal_date", "signal_code")
        assert await store.upsert(Signal, [row], key, update=False) == 1
        changed = dict(row, details={"rsi": 99.0})
        assert await store.upsert(Signal, [changed], key, update=False) == 0

        rows = await store.find(Signal, filters={"symbol": "AAPL"})
        assert len(rows) == 1
        assert rows[0]["details"] == {"rsi": 71.2}
        assert rows[0]["created_at"] is not None


@pytest.mark.asyncio
async def test_find_sort_limit_and_projection(database_url):
    async with Store(database_url) as store:
        await store.create_all()
        await store.upsert(HistoricalPrice, [_bar(day, float(day)) for day in (24, 25, 26, 27, 28)], ("symbol", "date"))

        rows = await store.find(
            HistoricalPrice,
            filters={"symbol": "AAPL"},
            conditions=[HistoricalPrice.date <= date(2024, 6, 27)],
            order_by="date",
            descending=True,
            limit=2,
            columns=["date", "close"],
        )
        assert rows == [
            {"date": date(2024, 6, 27), "close": 27.0},
            {"date": date(2024, 6, 26), "close": 26.0},
        ]
        assert await store.select_distinct(HistoricalPrice, "symbol") == ["AAPL"]


@pytest.mark.asyncio
async def test_unknown_columns_are_configuration_errors(database_url):
    async with Store(database_url) as store:
        await store.create_all()
        with pytest.raises(ConfigurationError):
            await store.find(HistoricalPrice, filters={"ticker": "AAPL"})
        with pytest.raises(ConfigurationError):
            await store.upsert(HistoricalPrice, [_bar(28, 1.0)], ("symbol", "day"))


@pytest.mark.asyncio
async def test_closed_store_raises_store_error(database_url):
    store = Store(database_url)
    with pytest.raises(StoreError):
        await store.find(HistoricalPrice)

    await store.open()
    await store.close()
    assert not store.is_open
    with pytest.raises(StoreError):
        await store.count(HistoricalPrice)


@pytest.mark.asyncio
async def test_driver_errors_become_store_errors(database_url):
    async with Store(database_url) as store:
        with pytest.raises(StoreError):
            await store.find(HistoricalPrice)


@pytest.mark.asyncio
async def test_operations_past_the_timeout_become_store_errors(database_url):
    async with Store(database_url, timeout_seconds=0.05) as store:
        with pytest.raises(StoreError, match="timed out after 0.05s"):
            await store._guard("find on historical_prices", asyncio.sleep(5))
