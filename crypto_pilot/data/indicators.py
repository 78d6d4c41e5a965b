"""Indicator series aligned one-to-one with a candle window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from statistics import mean, pstdev
from typing import List, Optional, Sequence

from crypto_pilot.data.market_feed import Candle
from crypto_pilot.errors import InsufficientHistory

Series = List[Optional[float]]


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError("period must be > 0")


def ema(values: Sequence[Optional[float]], period: int) -> Series:
    """EMA seeded with the simple average of the first ``period`` defined values.

    Leading ``None`` entries in ``values`` are carried through, so the EMA of a
    partially defined series (e.g. the MACD line) stays index-aligned.
    """
    _check_period(period)
    out: Series = [None] * len(values)
    start = next((i for i, v in enumerate(values) if v is not None), len(values))
    if len(values) - start < period:
        return out

    k = 2.0 / (period + 1.0)
    acc = sum(values[start : start + period]) / period
    out[start + period - 1] = acc
    for i in range(start + period, len(values)):
        acc = (values[i] * k) + (acc * (1.0 - k))
        out[i] = acc
    return out


def sma(values: Sequence[float], period: int) -> Series:
    """Trailing arithmetic mean."""
    _check_period(period)
    out: Series = [None] * len(values)
    for i in range(period - 1, len(values)):
        out[i] = mean(values[i + 1 - period : i + 1])
    return out


def rsi_value(closes: Sequence[float], period: int = 14) -> float:
    """RSI of the last ``period`` deltas using simple average gains/losses."""
    _check_period(period)
    if len(closes) < period + 1:
        raise InsufficientHistory(required=period + 1, available=len(closes))

    gains = 0.0
    losses = 0.0
    for i in range(len(closes) - period, len(closes)):
        delta = closes[i] - closes[i - 1]
        if delta >= 0:
            gains += delta
        else:
            losses -= delta

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    # Any loss keeps RSI below 100 even when rounding would reach it.
    return min(round(100.0 - (100.0 / (1.0 + rs)), 2), 99.99)


def rsi(closes: Sequence[float], period: int = 14) -> Series:
    """RSI at every index that has ``period`` trailing deltas."""
    _check_period(period)
    out: Series = [None] * len(closes)
    for i in range(period, len(closes)):
        out[i] = rsi_value(closes[: i + 1], period)
    return out


def macd(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> tuple[Series, Series, Series]:
    """Return (line, signal, histogram)."""
    fast_ema = ema(closes, fast)
    slow_ema = ema(closes, slow)
    line: Series = [
        f - s if f is not None and s is not None else None for f, s in zip(fast_ema, slow_ema)
    ]
    signal_line = ema(line, signal)
    hist: Series = [
        m - s if m is not None and s is not None else None for m, s in zip(line, signal_line)
    ]
    return line, signal_line, hist


def bollinger_bands(closes: Sequence[float], period: int = 20, stddevs: float = 2.0) -> tuple[Series, Series, Series]:
    """Return (lower, middle, upper) using population standard deviation."""
    _check_period(period)
    lower: Series = [None] * len(closes)
    upper: Series = [None] * len(closes)
    middle = sma(closes, period)
    for i in range(period - 1, len(closes)):
        std = pstdev(closes[i + 1 - period : i + 1])
        lower[i] = middle[i] - (stddevs * std)
        upper[i] = middle[i] + (stddevs * std)
    return lower, middle, upper


@dataclass(frozen=True)
class IndicatorParams:
    """Lookback configuration for the pipeline."""

    ema_fast: int = 9
    ema_slow: int = 21
    sma_short: int = 20
    sma_long: int = 200
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_stddevs: float = 2.0

    @property
    def min_lookback(self) -> int:
        """Longest window any indicator needs to produce a latest value."""
        return max(
            self.ema_fast,
            self.ema_slow,
            self.sma_short,
            self.sma_long,
            self.rsi_period + 1,
            self.macd_slow + self.macd_signal - 1,
            self.bb_period,
        )


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values for one candle; ``None`` where history is too short."""

    timestamp: datetime
    close: float
    ema_fast: Optional[float]
    ema_slow: Optional[float]
    sma_short: Optional[float]
    sma_long: Optional[float]
    rsi: Optional[float]
    macd: Optional[float]
    macd_signal: Optional[float]
    macd_hist: Optional[float]
    bb_upper: Optional[float]
    bb_middle: Optional[float]
    bb_lower: Optional[float]

    @property
    def is_complete(self) -> bool:
        return all(
            v is not None
            for v in (
                self.ema_fast,
                self.ema_slow,
                self.sma_short,
                self.sma_long,
                self.rsi,
                self.macd,
                self.macd_signal,
                self.bb_upper,
                self.bb_lower,
            )
        )


def compute_snapshots(candles: Sequence[Candle], params: IndicatorParams | None = None) -> List[IndicatorSnapshot]:
    """Run every indicator over the window and zip the results per candle."""
    params = params or IndicatorParams()
    if len(candles) < params.min_lookback:
        raise InsufficientHistory(required=params.min_lookback, available=len(candles))

    closes = [c.close for c in candles]
    ema_fast = ema(closes, params.ema_fast)
    ema_slow = ema(closes, params.ema_slow)
    sma_short = sma(closes, params.sma_short)
    sma_long = sma(closes, params.sma_long)
    rsi_series = rsi(closes, params.rsi_period)
    macd_line, macd_signal, macd_hist = macd(closes, params.macd_fast, params.macd_slow, params.macd_signal)
    bb_lower, bb_middle, bb_upper = bollinger_bands(closes, params.bb_period, params.bb_stddevs)

    return [
        IndicatorSnapshot(
            timestamp=c.ts,
            close=c.close,
            ema_fast=ema_fast[i],
            ema_slow=ema_slow[i],
            sma_short=sma_short[i],
            sma_long=sma_long[i],
            rsi=rsi_series[i],
            macd=macd_line[i],
            macd_signal=macd_signal[i],
            macd_hist=macd_hist[i],
            bb_upper=bb_upper[i],
            bb_middle=bb_middle[i],
            bb_lower=bb_lower[i],
        )
        for i, c in enumerate(candles)
    ]
