"""Batch orchestrator tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from conftest import StubUpstream, price_items
from signal_desk.core.errors import ConfigurationError, StoreError, UpstreamFetchError
from signal_desk.db.store import Store
from signal_desk.models import CompanyProfile, Signal
from signal_desk.services.orchestrator import (
    FAILED,
    PROFILE_FETCH_FAILED,
    SKIPPED,
    SUCCESS,
    BatchOrchestrator,
    StaticSymbolSource,
    StoreSymbolSource,
    default_symbol_source,
)
from signal_desk.signals.engine import DerivationEngine
from signal_desk.sync.descriptors import build_descriptors
from signal_desk.sync.synchronizer import Synchronizer

CLOSES = [100.0 + 0.25 * index for index in range(240)]


def statement(symbol: str) -> list[dict[str, Any]]:
    return [{"symbol": symbol, "date": "2023-09-30", "fiscalYear": "2023", "period": "FY"}]


def full_payloads() -> dict[str, Any]:
    return {
        "stable/profile": lambda symbol: [{"symbol": symbol, "companyName": f"{symbol} Inc."}],
        "stable/historical-price-eod/full": lambda symbol: price_items(symbol, CLOSES),
        "stable/income-statement": statement,
        "stable/balance-sheet-statement": statement,
        "stable/cash-flow-statement": statement,
        "stable/grades-consensus": lambda symbol: [{"symbol": symbol, "consensus": "Buy"}],
        "stable/earnings": lambda symbol: [
            {"symbol": symbol, "date": "2024-05-02", "epsActual": 1.53, "epsEstimated": 1.50}
        ],
    }


class FailingSource:
    async def list_symbols(self) -> list[str]:
        raise StoreError("find on profiles failed: connection refused")


def _orchestrator(store, upstream, settings, clock, symbols) -> BatchOrchestrator:
    synchronizer = Synchronizer(store, upstream, settings=settings, clock=clock)
    return BatchOrchestrator(synchronizer, DerivationEngine(store, settings), symbols, settings)


@pytest.mark.asyncio
async def test_successful_symbol_runs_every_step(database_url, settings, clock):
    upstream = StubUpstream(full_payloads())
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(["aapl"]))
        report = await orchestrator.run()

        assert (report.attempted, report.succeeded, report.failed) == (1, 1, 0)
        entity = report.details[0]
        assert entity.symbol == "AAPL"
        assert entity.status == SUCCESS
        assert set(entity.steps.values()) == {SUCCESS}
        assert entity.signals_inserted > 0
        assert entity.signal_families["earnings"] == SUCCESS
        assert await store.count(Signal, filters={"symbol": "AAPL"}) == entity.signals_inserted


@pytest.mark.asyncio
async def test_batches_page_through_sorted_symbols(database_url, settings, clock):
    upstream = StubUpstream(full_payloads())
    source = StaticSymbolSource(["MSFT", "AAPL", "NVDA", "AMZN", "GOOG", "msft"])
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, source)

        first = await orchestrator.run(batch=1, size=2)
        assert [entity.symbol for entity in first.details] == ["AAPL", "AMZN"]
        assert first.total_available == 5
        assert first.next_batch == 2

        last = await orchestrator.run(batch=3, size=2)
        assert [entity.symbol for entity in last.details] == ["NVDA"]
        assert last.next_batch is None

        beyond = await orchestrator.run(batch=4, size=2)
        assert beyond.attempted == 0
        assert beyond.details == []
        assert beyond.next_batch is None
        assert "No symbols" in beyond.message


@pytest.mark.asyncio
async def test_default_batch_size_comes_from_settings(database_url, settings, clock):
    upstream = StubUpstream(full_payloads())
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(["A", "B", "C"]))
        report = await orchestrator.run()
        assert report.batch_size == settings.batch_size == 2
        assert report.attempted == 2
        assert report.next_batch == 2


@pytest.mark.asyncio
async def test_profile_failure_short_circuits_symbol(database_url, settings, clock):
    payloads = full_payloads()
    good_profile = payloads["stable/profile"]

    def profile(symbol):
        if symbol == "BAD":
            raise UpstreamFetchError("stable/profile returned HTTP 404")
        return good_profile(symbol)

    payloads["stable/profile"] = profile
    upstream = StubUpstream(payloads)
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(["AAPL", "BAD"]))
        report = await orchestrator.run()

        by_symbol = {entity.symbol: entity for entity in report.details}
        bad = by_symbol["BAD"]
        assert bad.status == PROFILE_FETCH_FAILED
        assert bad.steps["profile"] == "profile failed: stable/profile returned HTTP 404"
        assert all(status == SKIPPED for step, status in bad.steps.items() if step != "profile")
        assert [call["path"] for call in upstream.calls if call["symbol"] == "BAD"] == ["stable/profile"]

        assert by_symbol["AAPL"].status == SUCCESS
        assert (report.succeeded, report.failed) == (1, 1)


@pytest.mark.asyncio
async def test_dependent_failure_is_recorded_per_step(database_url, settings, clock):
    payloads = full_payloads()
    del payloads["stable/earnings"]
    payloads["stable/grades-consensus"] = UpstreamFetchError("stable/grades-consensus returned HTTP 500")
    upstream = StubUpstream(payloads)
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(["AAPL"]))
        entity = (await orchestrator.run()).details[0]

        assert entity.status == FAILED
        assert entity.steps["earnings"] == "earnings failed: stable/earnings returned HTTP 404"
        assert entity.steps["grades_consensus"].startswith("grades_consensus failed:")
        assert entity.steps["historical_prices"] == SUCCESS
        assert entity.steps["derivation"] == SUCCESS
        assert entity.signal_families["earnings"].startswith("Skipped")
        assert "earnings failed" in entity.error


@pytest.mark.asyncio
async def test_price_failure_skips_derivation(database_url, settings, clock):
    payloads = full_payloads()
    payloads["stable/historical-price-eod/full"] = []
    upstream = StubUpstream(payloads)
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(["AAPL"]))
        entity = (await orchestrator.run()).details[0]

        assert entity.status == FAILED
        assert entity.steps["historical_prices"].startswith("historical_prices failed:")
        assert entity.steps["derivation"] == SKIPPED
        assert entity.signals_inserted == 0


@pytest.mark.asyncio
async def test_concurrency_is_bounded(database_url, settings, clock):
    class SlowUpstream(StubUpstream):
        def __init__(self, payloads):
            super().__init__(payloads)
            self.in_flight: set[str] = set()
            self.peak = 0

        async def fetch(self, path, *, symbol=None, params=None, symbol_location="param"):
            if path == "stable/profile":
                self.in_flight.add(symbol)
                self.peak = max(self.peak, len(self.in_flight))
                await asyncio.sleep(0.01)
                self.in_flight.discard(symbol)
            return await super().fetch(path, symbol=symbol, params=params, symbol_location=symbol_location)

    upstream = SlowUpstream(full_payloads())
    async with Store(database_url) as store:
        await store.create_all()
        orchestrator = _orchestrator(store, upstream, settings, clock, StaticSymbolSource(list("ABCDEFG")))
        report = await orchestrator.run(size=7)

        assert report.attempted == 7
        assert 1 <= upstream.peak <= settings.max_concurrency


@pytest.mark.asyncio
async def test_invalid_batch_parameters(database_url, settings, clock):
    async with Store(database_url) as store:
        orchestrator = _orchestrator(store, StubUpstream(), settings, clock, StaticSymbolSource(["AAPL"]))
        with pytest.raises(ConfigurationError):
            await orchestrator.run(batch=0)
        with pytest.raises(ConfigurationError):
            await orchestrator.run(batch=1, size=0)


@pytest.mark.asyncio
async def test_symbol_enumeration_failure_propagates(database_url, settings, clock):
    async with Store(database_url) as store:
        orchestrator = _orchestrator(store, StubUpstream(), settings, clock, FailingSource())
        with pytest.raises(StoreError):
            await orchestrator.run()


@pytest.mark.asyncio
async def test_store_symbol_source_lists_cached_profiles(database_url, settings, clock):
    async with Store(database_url) as store:
        await store.create_all()
        await store.upsert(
            CompanyProfile,
            [{"symbol": symbol, "modified_at": clock()} for symbol in ("MSFT", "AAPL")],
            ("symbol",),
        )
        assert await StoreSymbolSource(store).list_symbols() == ["AAPL", "MSFT"]
        assert isinstance(default_symbol_source(store, settings), StoreSymbolSource)
        configured = settings.model_copy(update={"symbols": ["tsla"]})
        assert await default_symbol_source(store, configured).list_symbols() == ["TSLA"]


def test_missing_descriptors_are_rejected(settings):
    store = Store(settings.database_url)
    descriptors = build_descriptors(settings)
    del descriptors["earnings"]
    synchronizer = Synchronizer(store, StubUpstream(), descriptors, settings=settings)
    with pytest.raises(ConfigurationError):
        BatchOrchestrator(synchronizer, DerivationEngine(store, settings), StaticSymbolSource([]), settings)
