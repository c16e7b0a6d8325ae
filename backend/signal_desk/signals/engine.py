"""Signal derivation engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Sequence

import pandas as pd

from signal_desk.config import AppSettings, get_settings
from signal_desk.core.errors import InsufficientDataError
from signal_desk.core.telemetry import get_tracer
from signal_desk.db.base import Base
from signal_desk.db.store import Store
from signal_desk.indicators.compute import compute_indicators
from signal_desk.models import EarningsReport, GradesConsensus, HistoricalPrice, Signal
from signal_desk.signals.rules import (
    TECHNICAL_FAMILIES,
    PriceWindow,
    SignalCandidate,
    analyst_consensus_signals,
    earnings_signals,
    upcoming_earnings_signals,
)
from signal_desk.sync.synchronizer import Clock, normalise_symbol, utcnow

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SIGNAL_KEY = ("symbol", "signal_date", "signal_code")
SUCCESS = "Success"

# Earnings calendars interleave scheduled rows; read enough to find two reported ones.
_EARNINGS_LOOKBACK = 12


@dataclass
class DerivationResult:
    symbol: str
    signal_date: date | None = None
    families: dict[str, str] = field(default_factory=dict)
    signals: list[SignalCandidate] = field(default_factory=list)
    inserted: int = 0


class DerivationEngine:
    """Derive signals for one symbol from the cached history.

    Derivation only looks at rows dated on or before ``as_of`` (all rows when
    omitted) and persists with insert-or-ignore on (symbol, signal_date,
    signal_code), so re-running over unchanged history writes nothing. The
    one forward-looking family, upcoming earnings, is dated ``as_of`` or the
    clock's current day and only reads the earnings calendar from that day on.
    """

    def __init__(self, store: Store, settings: AppSettings | None = None, *, clock: Clock | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or utcnow

    async def derive(self, symbol: str, as_of: date | None = None) -> DerivationResult:
        symbol = normalise_symbol(symbol)
        result = DerivationResult(symbol=symbol)
        with tracer.start_as_current_span("signals.derive") as span:
            span.set_attribute("signals.symbol", symbol)

            window = await self._price_window(symbol, as_of)
            if window is None:
                for family in TECHNICAL_FAMILIES:
                    result.families[family] = "Skipped: no price history"
            else:
                result.signal_date = window.signal_date
                for family, rule in TECHNICAL_FAMILIES.items():
                    self._run_family(result, family, lambda rule=rule: rule(window, self._settings))

            readings = await self._recent(GradesConsensus, symbol, as_of, limit=2)
            self._run_family(
                result,
                "analyst_consensus",
                lambda: analyst_consensus_signals(symbol, readings, self._settings),
            )
            reports = await self._recent(EarningsReport, symbol, as_of, limit=_EARNINGS_LOOKBACK)
            self._run_family(result, "earnings", lambda: earnings_signals(symbol, reports, self._settings))

            reference = as_of or self._clock().date()
            scheduled = await self._store.find(
                EarningsReport,
                filters={"symbol": symbol},
                conditions=[EarningsReport.date >= reference],
                order_by="date",
                limit=2,
            )
            self._run_family(
                result,
                "upcoming_earnings",
                lambda: upcoming_earnings_signals(symbol, scheduled, reference),
            )

            result.inserted = await self._store.upsert(
                Signal,
                [candidate.as_row() for candidate in result.signals],
                SIGNAL_KEY,
                update=False,
            )
            span.set_attribute("signals.inserted", result.inserted)
        logger.info(
            "Derived %s signals for %s (%s new)",
            len(result.signals),
            symbol,
            result.inserted,
        )
        return result

    async def list_signals(
        self,
        symbol: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[dict[str, Any]]:
        conditions = []
        if from_date is not None:
            conditions.append(Signal.signal_date >= from_date)
        if to_date is not None:
            conditions.append(Signal.signal_date <= to_date)
        return await self._store.find(
            Signal,
            filters={"symbol": normalise_symbol(symbol)},
            conditions=conditions,
            order_by=["signal_date", "signal_code"],
            descending=True,
        )

    def _run_family(
        self,
        result: DerivationResult,
        family: str,
        evaluate: Callable[[], list[SignalCandidate]],
    ) -> None:
        try:
            candidates = evaluate()
        except InsufficientDataError as exc:
            logger.info("Skipping %s signals for %s: %s", family, result.symbol, exc)
            result.families[family] = f"Skipped: {exc}"
            return
        result.signals.extend(candidates)
        result.families[family] = SUCCESS

    async def _price_window(self, symbol: str, as_of: date | None) -> PriceWindow | None:
        rows = await self._recent(HistoricalPrice, symbol, as_of, limit=self._settings.price_lookback)
        if not rows:
            return None
        frame = pd.DataFrame(rows[::-1])
        frame = frame.set_index("date")
        frame["close"] = frame["close"].astype(float)
        frame = compute_indicators(frame, self._settings)
        return PriceWindow(symbol=symbol, frame=frame)

    async def _recent(
        self,
        model: type[Base],
        symbol: str,
        as_of: date | None,
        *,
        limit: int,
    ) -> Sequence[dict[str, Any]]:
        conditions = [model.date <= as_of] if as_of is not None else []  # type: ignore[attr-defined]
        return await self._store.find(
            model,
            filters={"symbol": symbol},
            conditions=conditions,
            order_by="date",
            descending=True,
            limit=limit,
        )


__all__ = ["DerivationEngine", "DerivationResult", "SIGNAL_KEY"]
