"""Signal rule families.

Technical families read a chronological indicator frame and compare the
last two rows (T-1 and T). External families compare the two most recent
analyst-consensus or earnings records. A family that cannot be evaluated
raises :class:`InsufficientDataError`; the engine logs it and moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, Sequence

import pandas as pd

from signal_desk.config import AppSettings
from signal_desk.core.errors import InsufficientDataError
from signal_desk.indicators.compute import ema_column, last_two, sma_column

TECHNICAL = "technical"
FUNDAMENTAL = "fundamental"
SENTIMENT = "sentiment"

STATE = "state"
EVENT = "event"


@dataclass
class SignalCandidate:
    symbol: str
    signal_date: date
    signal_code: str
    signal_category: str
    signal_type: str
    details: dict[str, Any] = field(default_factory=dict)
    confidence: float | None = None

    def as_row(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "signal_date": self.signal_date,
            "signal_code": self.signal_code,
            "signal_category": self.signal_category,
            "signal_type": self.signal_type,
            "details": self.details,
            "confidence": self.confidence,
        }


@dataclass
class PriceWindow:
    """Chronological price rows with indicator columns, indexed by trading date."""

    symbol: str
    frame: pd.DataFrame

    @property
    def signal_date(self) -> date:
        return self.frame.index[-1]

    @property
    def previous_date(self) -> date:
        return self.frame.index[-2]

    def pair(self, column: str) -> tuple[float, float]:
        if column not in self.frame:
            raise InsufficientDataError(f"{column} was not computed")
        return last_two(self.frame[column], column)

    def current(self, column: str) -> float:
        if column not in self.frame or len(self.frame) == 0:
            raise InsufficientDataError(f"{column} was not computed")
        value = self.frame[column].iloc[-1]
        if pd.isna(value):
            raise InsufficientDataError(f"{column} is not defined at T")
        return float(value)


def crossed_above(prev: float, prev_ref: float, cur: float, cur_ref: float) -> bool:
    return prev <= prev_ref and cur > cur_ref


def crossed_below(prev: float, prev_ref: float, cur: float, cur_ref: float) -> bool:
    return prev >= prev_ref and cur < cur_ref


def _price_crossings(window: PriceWindow, label: str, column: str, period: int) -> list[SignalCandidate]:
    prev_close, close = window.pair("close")
    prev_ref, ref = window.pair(column)
    key = f"{label.lower()}{period}"
    details = {"close": close, "prev_close": prev_close, key: ref, f"prev_{key}": prev_ref}
    if crossed_above(prev_close, prev_ref, close, ref):
        code = f"{label}{period}_CROSS_ABOVE"
    elif crossed_below(prev_close, prev_ref, close, ref):
        code = f"{label}{period}_CROSS_BELOW"
    else:
        return []
    return [SignalCandidate(window.symbol, window.signal_date, code, TECHNICAL, EVENT, details)]


def _per_period(
    window: PriceWindow,
    periods: Sequence[int],
    label: str,
    column_for: Callable[[int], str],
) -> list[SignalCandidate]:
    signals: list[SignalCandidate] = []
    missing: list[str] = []
    for period in periods:
        try:
            signals.extend(_price_crossings(window, label, column_for(period), period))
        except InsufficientDataError as exc:
            missing.append(str(exc))
    if missing and len(missing) == len(periods):
        raise InsufficientDataError("; ".join(missing))
    return signals


def sma_cross_signals(window: PriceWindow, settings: AppSettings) -> list[SignalCandidate]:
    return _per_period(window, settings.sma_periods, "SMA", sma_column)


def ema_cross_signals(window: PriceWindow, settings: AppSettings) -> list[SignalCandidate]:
    return _per_period(window, settings.ema_periods, "EMA", ema_column)


# (close > short, close > long, short > long) -> rank. The two combinations
# missing here cannot occur for real numbers.
POSITION_RANKS: dict[tuple[bool, bool, bool], int] = {
    (True, True, True): 5,
    (True, True, False): 4,
    (False, True, True): 4,
    (True, False, False): 2,
    (False, False, True): 2,
    (False, False, False): 1,
}


def position_rank(close: float, short: float, long: float) -> int | None:
    return POSITION_RANKS.get((close > short, close > long, short > long))


def price_position_signals(window: PriceWindow, settings: AppSettings) -> list[SignalCandidate]:
    close = window.current("close")
    short = window.current(sma_column(settings.rank_short_period))
    long = window.current(sma_column(settings.rank_long_period))
    rank = position_rank(close, short, long)
    if rank is None:
        raise InsufficientDataError("price position is undefined for the current averages")
    details = {
        "close": close,
        f"sma{settings.rank_short_period}": short,
        f"sma{settings.rank_long_period}": long,
        "rank": rank,
    }
    return [SignalCandidate(window.symbol, window.signal_date, f"PRICE_POS_RANK_{rank}", TECHNICAL, STATE, details)]


def rsi_band(value: float, settings: AppSettings) -> str | None:
    if value >= settings.rsi_overbought:
        return "OVERBOUGHT"
    if value <= settings.rsi_oversold:
        return "OVERSOLD"
    return None


def rsi_signals(window: PriceWindow, settings: AppSettings) -> list[SignalCandidate]:
    prev_rsi, cur_rsi = window.pair("rsi")
    close = window.current("close")
    thresholds = {"OVERBOUGHT": settings.rsi_overbought, "OVERSOLD": settings.rsi_oversold}
    previous, current = rsi_band(prev_rsi, settings), rsi_band(cur_rsi, settings)

    def _candidate(code: str, signal_type: str, band: str) -> SignalCandidate:
        details = {"rsi": cur_rsi, "prev_rsi": prev_rsi, "close": close, "threshold": thresholds[band]}
        return SignalCandidate(window.symbol, window.signal_date, code, TECHNICAL, signal_type, details)

    signals: list[SignalCandidate] = []
    if current is not None:
        signals.append(_candidate(f"RSI_{current}", STATE, current))
    # At most one event per day; overbought transitions win a direct jump between bands.
    if previous != current:
        if current == "OVERBOUGHT":
            signals.append(_candidate("RSI_ENTERED_OVERBOUGHT", EVENT, current))
        elif previous == "OVERBOUGHT":
            signals.append(_candidate("RSI_EXITED_OVERBOUGHT", EVENT, previous))
        elif current == "OVERSOLD":
            signals.append(_candidate("RSI_ENTERED_OVERSOLD", EVENT, current))
        else:
            signals.append(_candidate("RSI_EXITED_OVERSOLD", EVENT, "OVERSOLD"))
    return signals


def macd_signals(window: PriceWindow, settings: AppSettings) -> list[SignalCandidate]:
    prev_line, line = window.pair("macd")
    prev_signal, signal = window.pair("macd_signal")
    details = {"macd": line, "signal": signal, "prev_macd": prev_line, "prev_signal": prev_signal}

    codes: list[str] = []
    if crossed_above(prev_line, prev_signal, line, signal):
        codes.append("MACD_CROSS_ABOVE")
    elif crossed_below(prev_line, prev_signal, line, signal):
        codes.append("MACD_CROSS_BELOW")
    if crossed_above(prev_line, 0.0, line, 0.0):
        codes.append("MACD_ZERO_CROSS_ABOVE")
    elif crossed_below(prev_line, 0.0, line, 0.0):
        codes.append("MACD_ZERO_CROSS_BELOW")
    return [SignalCandidate(window.symbol, window.signal_date, code, TECHNICAL, EVENT, dict(details)) for code in codes]


def consensus_rank(consensus: str | None, settings: AppSettings) -> int | None:
    if not consensus:
        return None
    wanted = consensus.strip().lower()
    for label, rank in settings.consensus_rank_map.items():
        if label.lower() == wanted:
            return rank
    return None


def analyst_consensus_signals(
    symbol: str,
    readings: Sequence[Mapping[str, Any]],
    settings: AppSettings,
) -> list[SignalCandidate]:
    """State for the latest reading; upgrade/downgrade event when its rank moved."""

    if not readings:
        raise InsufficientDataError("no analyst consensus readings")
    current = readings[0]
    rank = consensus_rank(current.get("consensus"), settings)
    if rank is None:
        raise InsufficientDataError(f"unranked consensus {current.get('consensus')!r}")

    signal_date = current["date"]
    counts = {name: current.get(name) for name in ("strong_buy", "buy", "hold", "sell", "strong_sell")}
    signals = [
        SignalCandidate(
            symbol,
            signal_date,
            f"ANALYST_CONSENSUS_RANK_{rank}",
            SENTIMENT,
            STATE,
            {"consensus": current["consensus"], "rank": rank, **counts},
        )
    ]

    if len(readings) > 1:
        previous = readings[1]
        previous_rank = consensus_rank(previous.get("consensus"), settings)
        if previous_rank is not None and previous_rank != rank:
            code = "ANALYST_CONSENSUS_UPGRADE" if rank > previous_rank else "ANALYST_CONSENSUS_DOWNGRADE"
            details = {
                "previous_consensus": previous["consensus"],
                "current_consensus": current["consensus"],
                "previous_rank": previous_rank,
                "current_rank": rank,
                "previous_date": previous["date"].isoformat(),
            }
            signals.append(SignalCandidate(symbol, signal_date, code, SENTIMENT, EVENT, details))
    return signals


EARNINGS_METRICS = (
    ("EPS", "eps_actual", "eps_estimated"),
    ("REVENUE", "revenue_actual", "revenue_estimated"),
)


def earnings_outcome(actual: float | None, estimate: float | None, tolerance: float) -> str | None:
    if actual is None:
        return None
    if estimate is None:
        return "REPORTED"
    if abs(actual - estimate) <= tolerance:
        return "MEET"
    return "BEAT" if actual > estimate else "MISS"


def is_reported(row: Mapping[str, Any]) -> bool:
    return row.get("eps_actual") is not None or row.get("revenue_actual") is not None


def earnings_signals(
    symbol: str,
    reports: Sequence[Mapping[str, Any]],
    settings: AppSettings,
) -> list[SignalCandidate]:
    """Beat/miss/meet per metric for the latest report; an event when the outcome changed."""

    reported = [row for row in reports if is_reported(row)]
    if not reported:
        raise InsufficientDataError("no reported earnings")
    current = reported[0]
    previous = reported[1] if len(reported) > 1 else None
    tolerance = settings.earnings_meet_tolerance

    signals: list[SignalCandidate] = []
    for metric, actual_key, estimate_key in EARNINGS_METRICS:
        actual, estimate = current.get(actual_key), current.get(estimate_key)
        outcome = earnings_outcome(actual, estimate, tolerance)
        if outcome is None:
            continue
        previous_outcome = (
            earnings_outcome(previous.get(actual_key), previous.get(estimate_key), tolerance) if previous else None
        )
        details: dict[str, Any] = {"actual": actual, "estimate": estimate, "previous_outcome": previous_outcome}
        if estimate is not None:
            details["surprise"] = actual - estimate
            if estimate != 0:
                details["surprise_pct"] = (actual - estimate) / abs(estimate) * 100.0
        if previous is not None:
            details["previous_date"] = previous["date"].isoformat()
        signal_type = EVENT if outcome != previous_outcome else STATE
        signals.append(
            SignalCandidate(symbol, current["date"], f"EARNINGS_{outcome}_{metric}", FUNDAMENTAL, signal_type, details)
        )
    return signals


def upcoming_earnings_signals(
    symbol: str,
    scheduled: Sequence[Mapping[str, Any]],
    reference: date,
) -> list[SignalCandidate]:
    """Announce the nearest report due on or after ``reference``, dated ``reference``.

    Rows dated after ``reference`` count as scheduled even if they carry
    actuals today, since those were unknown on the reference day.
    """

    upcoming = [
        row
        for row in scheduled
        if row["date"] > reference or (row["date"] == reference and not is_reported(row))
    ]
    if not upcoming:
        raise InsufficientDataError(f"no earnings scheduled on or after {reference.isoformat()}")
    nearest = min(upcoming, key=lambda row: row["date"])
    details = {
        "earnings_date": nearest["date"].isoformat(),
        "days_until": (nearest["date"] - reference).days,
        "eps_estimated": nearest.get("eps_estimated"),
        "revenue_estimated": nearest.get("revenue_estimated"),
    }
    return [SignalCandidate(symbol, reference, "EARNINGS_UPCOMING", FUNDAMENTAL, EVENT, details)]


TechnicalRule = Callable[[PriceWindow, AppSettings], list[SignalCandidate]]

TECHNICAL_FAMILIES: dict[str, TechnicalRule] = {
    "sma_cross": sma_cross_signals,
    "ema_cross": ema_cross_signals,
    "price_position": price_position_signals,
    "rsi": rsi_signals,
    "macd": macd_signals,
}


__all__ = [
    "EVENT",
    "FUNDAMENTAL",
    "POSITION_RANKS",
    "PriceWindow",
    "SENTIMENT",
    "STATE",
    "SignalCandidate",
    "TECHNICAL",
    "TECHNICAL_FAMILIES",
    "analyst_consensus_signals",
    "consensus_rank",
    "crossed_above",
    "crossed_below",
    "earnings_outcome",
    "earnings_signals",
    "ema_cross_signals",
    "macd_signals",
    "position_rank",
    "price_position_signals",
    "rsi_band",
    "rsi_signals",
    "sma_cross_signals",
    "upcoming_earnings_signals",
]
