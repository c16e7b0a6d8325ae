"""Batch orchestration: sync every entity for a page of symbols, then derive signals.

Per symbol the profile refresh runs first and gates everything else. The
remaining entities refresh concurrently (settle-all), then signals are
derived when the price history refreshed. Symbols in a page run
concurrently up to ``max_concurrency``; one symbol's failure never aborts
its siblings. Only invalid batch parameters and symbol enumeration errors
reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, Sequence

from signal_desk.config import AppSettings, get_settings
from signal_desk.core.errors import ConfigurationError
from signal_desk.core.telemetry import get_tracer
from signal_desk.db.store import Store
from signal_desk.models import CompanyProfile
from signal_desk.signals.engine import DerivationEngine
from signal_desk.sync.descriptors import (
    BALANCE_SHEET_STATEMENTS,
    CASH_FLOW_STATEMENTS,
    EARNINGS,
    GRADES_CONSENSUS,
    HISTORICAL_PRICES,
    INCOME_STATEMENTS,
    PROFILE,
)
from signal_desk.sync.synchronizer import Synchronizer, normalise_symbol

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SKIPPED = "Skipped"
SUCCESS = "Success"
FAILED = "Failed"
PROFILE_FETCH_FAILED = "Profile_Fetch_Failed"

DERIVATION = "derivation"
CRITICAL_STEP = PROFILE
DEPENDENT_STEPS: tuple[str, ...] = (
    HISTORICAL_PRICES,
    INCOME_STATEMENTS,
    BALANCE_SHEET_STATEMENTS,
    CASH_FLOW_STATEMENTS,
    GRADES_CONSENSUS,
    EARNINGS,
)


class SymbolSource(Protocol):
    async def list_symbols(self) -> list[str]:
        ...


class StaticSymbolSource:
    """Symbols supplied up front, e.g. from settings."""

    def __init__(self, symbols: Sequence[str]) -> None:
        self._symbols = sorted({normalise_symbol(symbol) for symbol in symbols})

    async def list_symbols(self) -> list[str]:
        return list(self._symbols)


class StoreSymbolSource:
    """Symbols that already have a cached profile."""

    def __init__(self, store: Store) -> None:
        self._store = store

    async def list_symbols(self) -> list[str]:
        symbols = await self._store.select_distinct(CompanyProfile, "symbol")
        return sorted({normalise_symbol(symbol) for symbol in symbols})


@dataclass
class EntityReport:
    symbol: str
    status: str = SKIPPED
    steps: dict[str, str] = field(default_factory=dict)
    signal_families: dict[str, str] = field(default_factory=dict)
    signals_inserted: int = 0
    error: str | None = None


@dataclass
class BatchReport:
    batch: int
    batch_size: int
    total_available: int
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    next_batch: int | None = None
    duration_ms: int = 0
    message: str = ""
    details: list[EntityReport] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def failure_message(stage: str, exc: BaseException) -> str:
    return f"{stage} failed: {exc}"


class BatchOrchestrator:
    def __init__(
        self,
        synchronizer: Synchronizer,
        engine: DerivationEngine,
        symbols: SymbolSource,
        settings: AppSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._synchronizer = synchronizer
        self._engine = engine
        self._symbols = symbols
        missing = [step for step in (CRITICAL_STEP, *DEPENDENT_STEPS) if step not in synchronizer.entities]
        if missing:
            raise ConfigurationError(f"Synchronizer is missing descriptors for {missing}")

    async def run(self, batch: int = 1, size: int | None = None) -> BatchReport:
        """Process page ``batch`` (1-based) of ``size`` symbols and return the aggregate report."""

        size = self._settings.batch_size if size is None else size
        if batch < 1:
            raise ConfigurationError(f"batch must be >= 1, got {batch}")
        if size < 1:
            raise ConfigurationError(f"size must be >= 1, got {size}")

        started = time.perf_counter()
        with tracer.start_as_current_span("batch.run") as span:
            span.set_attribute("batch.index", batch)
            span.set_attribute("batch.size", size)

            symbols = await self._symbols.list_symbols()
            start = (batch - 1) * size
            page = symbols[start : start + size]
            report = BatchReport(batch=batch, batch_size=size, total_available=len(symbols))
            report.next_batch = batch + 1 if start + size < len(symbols) else None

            if not page:
                report.message = f"No symbols in batch {batch} (total available {len(symbols)})"
                logger.info(report.message)
            else:
                logger.info("Processing batch %s: %s", batch, ", ".join(page))
                semaphore = asyncio.Semaphore(self._settings.max_concurrency)
                outcomes = await asyncio.gather(
                    *(self._guarded(semaphore, symbol) for symbol in page),
                    return_exceptions=True,
                )
                for symbol, outcome in zip(page, outcomes):
                    if isinstance(outcome, BaseException):
                        logger.error("Unhandled failure for %s: %r", symbol, outcome)
                        outcome = EntityReport(symbol=symbol, status=FAILED, error=failure_message("pipeline", outcome))
                    report.details.append(outcome)

                report.attempted = len(page)
                report.succeeded = sum(1 for entity in report.details if entity.status == SUCCESS)
                report.failed = report.attempted - report.succeeded
                report.message = (
                    f"Batch {batch} processed {report.attempted} symbols: "
                    f"{report.succeeded} succeeded, {report.failed} failed"
                )
                logger.info(report.message)

            report.duration_ms = int((time.perf_counter() - started) * 1000)
            span.set_attribute("batch.attempted", report.attempted)
            span.set_attribute("batch.failed", report.failed)
        return report

    async def _guarded(self, semaphore: asyncio.Semaphore, symbol: str) -> EntityReport:
        async with semaphore:
            return await self.process_symbol(symbol)

    async def process_symbol(self, symbol: str) -> EntityReport:
        """Run one symbol through sync and derivation; failures are recorded, never raised."""

        entity = EntityReport(symbol=symbol)
        entity.steps = {step: SKIPPED for step in (CRITICAL_STEP, *DEPENDENT_STEPS, DERIVATION)}

        with tracer.start_as_current_span("batch.symbol") as span:
            span.set_attribute("batch.symbol", symbol)
            try:
                await self._synchronizer.ensure_fresh(CRITICAL_STEP, symbol)
            except Exception as exc:
                logger.warning("Profile refresh failed for %s: %s", symbol, exc)
                entity.steps[CRITICAL_STEP] = failure_message(CRITICAL_STEP, exc)
                entity.status = PROFILE_FETCH_FAILED
                entity.error = entity.steps[CRITICAL_STEP]
                return entity
            entity.steps[CRITICAL_STEP] = SUCCESS

            outcomes = await asyncio.gather(
                *(self._synchronizer.ensure_fresh(step, symbol) for step in DEPENDENT_STEPS),
                return_exceptions=True,
            )
            for step, outcome in zip(DEPENDENT_STEPS, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning("%s refresh failed for %s: %s", step, symbol, outcome)
                    entity.steps[step] = failure_message(step, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    entity.steps[step] = SUCCESS

            if entity.steps[HISTORICAL_PRICES] == SUCCESS:
                try:
                    derived = await self._engine.derive(symbol)
                except Exception as exc:
                    logger.warning("Signal derivation failed for %s: %s", symbol, exc)
                    entity.steps[DERIVATION] = failure_message(DERIVATION, exc)
                else:
                    entity.steps[DERIVATION] = SUCCESS
                    entity.signal_families = derived.families
                    entity.signals_inserted = derived.inserted

            failures = [status for status in entity.steps.values() if status != SUCCESS]
            entity.status = SUCCESS if not failures else FAILED
            if failures:
                entity.error = "; ".join(status for status in failures if status != SKIPPED) or None
            span.set_attribute("batch.status", entity.status)
        return entity


def default_symbol_source(store: Store, settings: AppSettings) -> SymbolSource:
    if settings.symbols:
        return StaticSymbolSource(settings.symbols)
    return StoreSymbolSource(store)


__all__ = [
    "BatchOrchestrator",
    "BatchReport",
    "EntityReport",
    "StaticSymbolSource",
    "StoreSymbolSource",
    "SymbolSource",
    "default_symbol_source",
    "failure_message",
]
