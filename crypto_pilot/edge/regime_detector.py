"""Regime and trend classification from the latest indicator snapshot."""

from __future__ import annotations

from dataclasses import dataclass

from crypto_pilot.data.indicators import IndicatorSnapshot
from crypto_pilot.strategy.signal import Regime, Side


@dataclass(frozen=True)
class RegimeState:
    """Market regime classification snapshot."""

    regime: Regime
    side: Side
    ma_spread: float
    rsi: float

    @property
    def trend(self) -> str:
        return "bullish" if self.side is Side.LONG else "bearish"


class RegimeDetector:
    """Classifies a snapshot into trend / mean-reversion / scalp buckets."""

    def __init__(self, trend_threshold: float, rsi_low: float, rsi_high: float) -> None:
        self.trend_threshold = trend_threshold
        self.rsi_low = rsi_low
        self.rsi_high = rsi_high

    def classify(self, snapshot: IndicatorSnapshot) -> RegimeState:
        """Return regime and directional bias; the snapshot must be complete."""
        short_ma = snapshot.sma_short
        long_ma = snapshot.sma_long
        rsi = snapshot.rsi
        if short_ma is None or long_ma is None or rsi is None or long_ma == 0:
            raise ValueError("snapshot lacks moving averages or RSI")

        side = Side.LONG if short_ma > long_ma else Side.SHORT
        spread = abs(short_ma - long_ma) / long_ma

        if spread > self.trend_threshold:
            regime = Regime.TREND
        elif rsi < self.rsi_low or rsi > self.rsi_high:
            regime = Regime.MEAN_REVERSION
        else:
            regime = Regime.SCALP
        return RegimeState(regime=regime, side=side, ma_spread=spread, rsi=rsi)
