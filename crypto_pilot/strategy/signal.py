"""Signal models shared between strategy, planner, and engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from crypto_pilot.errors import InvalidSignal


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_order_side(self) -> str:
        return "BUY" if self is Side.LONG else "SELL"

    @property
    def exit_order_side(self) -> str:
        return "SELL" if self is Side.LONG else "BUY"


class Regime(str, Enum):
    TREND = "TREND"
    MEAN_REVERSION = "MEAN_REVERSION"
    SCALP = "SCALP"


@dataclass(frozen=True)
class Signal:
    """Scored trade candidate for one instrument in one scan cycle."""

    symbol: str
    side: Side
    entry: float
    stop_loss: float
    take_profit: float
    confidence: float
    score: float
    regime: Regime
    strategy: str
    risk_reward: float
    forecast_pnl: float
    ts: datetime
    timeframe: str = ""
    trend: str = ""
    rsi: float | None = None
    daily_change: float | None = None
    liquidation_price: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.side, Side):
            raise InvalidSignal(f"side must be Side, got {self.side!r}")
        if not isinstance(self.regime, Regime):
            raise InvalidSignal(f"regime must be Regime, got {self.regime!r}")
        if self.entry <= 0:
            raise InvalidSignal(f"non-positive entry {self.entry}")
        if not 0.0 <= self.confidence <= 100.0:
            raise InvalidSignal(f"confidence out of range {self.confidence}")
        if self.risk <= 0:
            raise InvalidSignal(f"non-positive risk entry={self.entry} stop={self.stop_loss}")
        if self.reward <= 0:
            raise InvalidSignal(f"non-positive reward entry={self.entry} tp={self.take_profit}")

    @property
    def risk(self) -> float:
        """Distance from entry to stop in the losing direction."""
        if self.side is Side.LONG:
            return self.entry - self.stop_loss
        return self.stop_loss - self.entry

    @property
    def reward(self) -> float:
        """Distance from entry to take-profit in the winning direction."""
        if self.side is Side.LONG:
            return self.take_profit - self.entry
        return self.entry - self.take_profit

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["regime"] = self.regime.value
        data["ts"] = self.ts.isoformat()
        return data
