"""Regime-driven strategy rules emitting scored signal candidates."""

from __future__ import annotations

from datetime import datetime
from statistics import mean
from typing import List, Sequence

from crypto_pilot.data.indicators import IndicatorSnapshot
from crypto_pilot.data.market_feed import Candle
from crypto_pilot.edge.regime_detector import RegimeDetector, RegimeState
from crypto_pilot.errors import InvalidSignal
from crypto_pilot.logging.channels import get_signal_logger
from crypto_pilot.risk.order_planner import OrderPlanner
from crypto_pilot.strategy.signal import Regime, Side, Signal

TREND_FOLLOW = "Trend"
MEAN_REVERSION = "Mean-Reversion"
SCALP = "Scalp"


class SignalEngine:
    """Evaluates trend-follow, mean-reversion, and scalp rules for one instrument."""

    def __init__(
        self,
        detector: RegimeDetector,
        planner: OrderPlanner,
        confidence_threshold: float = 80.0,
        min_risk_reward: float = 2.0,
        mr_oversold: float = 35.0,
        mr_overbought: float = 65.0,
        scalp_volume_window: int = 20,
        scalp_volume_multiplier: float = 1.5,
        trend_confidence: float = 90.0,
        mean_reversion_confidence: float = 85.0,
        scalp_confidence: float = 80.0,
        score_confidence_weight: float = 1.0,
        score_rsi_weight: float = 0.5,
        timeframe: str = "",
    ) -> None:
        self.detector = detector
        self.planner = planner
        self.confidence_threshold = confidence_threshold
        self.min_risk_reward = min_risk_reward
        self.mr_oversold = mr_oversold
        self.mr_overbought = mr_overbought
        self.scalp_volume_window = scalp_volume_window
        self.scalp_volume_multiplier = scalp_volume_multiplier
        self.trend_confidence = trend_confidence
        self.mean_reversion_confidence = mean_reversion_confidence
        self.scalp_confidence = scalp_confidence
        self.score_confidence_weight = score_confidence_weight
        self.score_rsi_weight = score_rsi_weight
        self.timeframe = timeframe
        self.logger = get_signal_logger()

    def generate(
        self,
        symbol: str,
        snapshot: IndicatorSnapshot,
        candles: Sequence[Candle],
        ts: datetime,
    ) -> List[Signal]:
        """Return every rule that fired and survived the confidence/RR filters."""
        if None in (snapshot.sma_short, snapshot.sma_long, snapshot.rsi, snapshot.ema_fast, snapshot.ema_slow):
            self.logger.debug("skip symbol=%s reason=incomplete_snapshot", symbol)
            return []

        state = self.detector.classify(snapshot)
        fired: list[tuple[str, float]] = []
        if state.regime is Regime.TREND and self._ema_confirms(snapshot, state.side):
            fired.append((TREND_FOLLOW, self.trend_confidence))
        if state.regime is Regime.MEAN_REVERSION and self._rsi_extreme(state.rsi):
            fired.append((MEAN_REVERSION, self.mean_reversion_confidence))
        if state.regime is Regime.SCALP and self._volume_spike(candles):
            fired.append((SCALP, self.scalp_confidence))

        out: List[Signal] = []
        for name, confidence in fired:
            try:
                signal = self._build(symbol, name, confidence, state, snapshot, candles, ts)
            except InvalidSignal as exc:
                self.logger.debug("discard symbol=%s strategy=%s reason=%s", symbol, name, exc.reason)
                continue
            if signal.confidence < self.confidence_threshold:
                self.logger.debug("discard symbol=%s strategy=%s reason=low_confidence", symbol, name)
                continue
            if signal.risk_reward < self.min_risk_reward:
                self.logger.debug(
                    "discard symbol=%s strategy=%s reason=low_rr rr=%.2f", symbol, name, signal.risk_reward
                )
                continue
            out.append(signal)
        return out

    @staticmethod
    def _ema_confirms(snapshot: IndicatorSnapshot, side: Side) -> bool:
        if side is Side.LONG:
            return snapshot.ema_fast > snapshot.ema_slow
        return snapshot.ema_fast < snapshot.ema_slow

    def _rsi_extreme(self, rsi: float) -> bool:
        return rsi <= self.mr_oversold or rsi >= self.mr_overbought

    def _volume_spike(self, candles: Sequence[Candle]) -> bool:
        if len(candles) < self.scalp_volume_window:
            return False
        window = [c.volume for c in candles[-self.scalp_volume_window :]]
        return candles[-1].volume > mean(window) * self.scalp_volume_multiplier

    def _build(
        self,
        symbol: str,
        name: str,
        confidence: float,
        state: RegimeState,
        snapshot: IndicatorSnapshot,
        candles: Sequence[Candle],
        ts: datetime,
    ) -> Signal:
        entry = snapshot.close
        levels = self.planner.levels(state.side, entry)
        risk = abs(entry - levels.stop_loss)
        reward = abs(levels.take_profit - entry)
        if risk <= 0:
            raise InvalidSignal("non-positive risk")

        daily_change = None
        if len(candles) >= 2 and candles[-2].close:
            prev = candles[-2].close
            daily_change = round((candles[-1].close - prev) / prev * 100.0, 2)

        return Signal(
            symbol=symbol,
            side=state.side,
            entry=entry,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            confidence=confidence,
            score=round(self.score_confidence_weight * confidence + self.score_rsi_weight * state.rsi, 2),
            regime=state.regime,
            strategy=name,
            risk_reward=reward / risk,
            forecast_pnl=round(self.planner.take_profit_pct * confidence, 2),
            ts=ts,
            timeframe=self.timeframe,
            trend=state.trend,
            rsi=state.rsi,
            daily_change=daily_change,
            liquidation_price=levels.liquidation,
        )
