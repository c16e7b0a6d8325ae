"""Technical indicator computation helpers.

All functions take an oldest-first sequence and return pandas objects
aligned to the input index. Warm-up positions are NaN; an input too short
for the requested period yields an all-NaN result rather than an error.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

import numpy as np
import pandas as pd

from signal_desk.config import AppSettings
from signal_desk.core.errors import InsufficientDataError

SeriesLike = Union[pd.Series, np.ndarray, Sequence[float]]


def _as_series(values: SeriesLike) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float)
    return pd.Series(np.asarray(values, dtype=float))


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")


def _seeded_smoothing(values: np.ndarray, period: int, alpha: float) -> np.ndarray:
    """Recursive smoothing seeded with the simple mean of the first ``period`` values.

    Position ``period - 1`` holds the seed, taken from :func:`sma` so the two
    agree bit for bit; every later position is
    ``alpha * value + (1 - alpha) * previous``.
    """

    out = np.full(len(values), np.nan)
    if len(values) < period:
        return out
    seed = sma(values, period).iloc[period - 1]
    tail = pd.Series(np.concatenate(([seed], values[period:])))
    out[period - 1 :] = tail.ewm(alpha=alpha, adjust=False).mean().to_numpy()
    return out


def sma(values: SeriesLike, period: int) -> pd.Series:
    _check_period(period)
    series = _as_series(values)
    return series.rolling(window=period, min_periods=period).mean()


def ema(values: SeriesLike, period: int) -> pd.Series:
    _check_period(period)
    series = _as_series(values)
    smoothed = _seeded_smoothing(series.to_numpy(), period, alpha=2.0 / (period + 1))
    return pd.Series(smoothed, index=series.index)


def rsi(values: SeriesLike, period: int = 14) -> pd.Series:
    """Wilder RSI; defined from index ``period`` and exactly 100 whenever the average loss is zero."""

    _check_period(period)
    series = _as_series(values)
    out = np.full(len(series), np.nan)
    if len(series) <= period:
        return pd.Series(out, index=series.index)

    delta = np.diff(series.to_numpy())
    gains = np.where(delta > 0, delta, 0.0)
    losses = np.where(delta < 0, -delta, 0.0)
    avg_gain = _seeded_smoothing(gains, period, alpha=1.0 / period)[period - 1 :]
    avg_loss = _seeded_smoothing(losses, period, alpha=1.0 / period)[period - 1 :]

    ratio = np.divide(avg_gain, avg_loss, out=np.zeros_like(avg_gain), where=avg_loss != 0)
    values_rsi = np.where(avg_loss == 0, 100.0, 100.0 - 100.0 / (1.0 + ratio))
    out[period:] = values_rsi
    return pd.Series(out, index=series.index)


def macd(values: SeriesLike, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD line, signal line and histogram.

    The line exists where both EMAs do; the signal line is the EMA recurrence
    run over the defined line values only.
    """

    for period in (fast, slow, signal):
        _check_period(period)
    series = _as_series(values)
    frame = pd.DataFrame(
        {"macd": np.nan, "signal": np.nan, "hist": np.nan},
        index=series.index,
        dtype=float,
    )
    if len(series) < slow + signal:
        return frame

    line = ema(series, fast) - ema(series, slow)
    defined = line.dropna()
    signal_line = ema(defined, signal)
    frame["macd"] = line
    frame["signal"] = signal_line.reindex(series.index)
    frame["hist"] = frame["macd"] - frame["signal"]
    return frame


def last_two(series: pd.Series, name: str | None = None) -> tuple[float, float]:
    """Return the values at T-1 and T (the last two rows), or raise if either is undefined."""

    label = name or series.name or "series"
    if len(series) < 2:
        raise InsufficientDataError(f"{label}: need at least two points, have {len(series)}")
    previous, current = series.iloc[-2], series.iloc[-1]
    if pd.isna(previous) or pd.isna(current):
        raise InsufficientDataError(f"{label}: not defined at T-1 and T")
    return float(previous), float(current)


def sma_column(period: int) -> str:
    return f"sma_{period}"


def ema_column(period: int) -> str:
    return f"ema_{period}"


def compute_indicators(df: pd.DataFrame, settings: AppSettings) -> pd.DataFrame:
    """Add the configured indicator columns to a chronological price frame."""

    if "close" not in df:
        raise ValueError("DataFrame must contain a close column")
    df = df.copy()
    close = df["close"].astype(float)

    for period in _unique(settings.sma_periods, [settings.rank_short_period, settings.rank_long_period]):
        df[sma_column(period)] = sma(close, period)
    for period in _unique(settings.ema_periods):
        df[ema_column(period)] = ema(close, period)
    df["rsi"] = rsi(close, settings.rsi_period)
    macd_df = macd(close, settings.macd_fast, settings.macd_slow, settings.macd_signal)
    df["macd"] = macd_df["macd"]
    df["macd_signal"] = macd_df["signal"]
    df["macd_hist"] = macd_df["hist"]
    return df


def _unique(*groups: Iterable[int]) -> list[int]:
    seen: list[int] = []
    for group in groups:
        for period in group:
            if period not in seen:
                seen.append(period)
    return seen


__all__ = [
    "compute_indicators",
    "ema",
    "ema_column",
    "last_two",
    "macd",
    "rsi",
    "sma",
    "sma_column",
]
