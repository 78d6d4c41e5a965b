"""Liquidation-aware stop placement and order plan construction."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict

from crypto_pilot.errors import InvalidSignal
from crypto_pilot.risk.position_sizer import PositionSizer
from crypto_pilot.strategy.signal import Side, Signal


class TakeProfitMode(str, Enum):
    FIXED_PCT = "fixed_pct"
    RR_MULTIPLE = "rr_multiple"


@dataclass(frozen=True)
class ProtectiveLevels:
    liquidation: float
    stop_loss: float
    take_profit: float


def liquidation_price(side: Side, entry: float, leverage: float) -> float:
    """Price at which an isolated position with no buffer is force-closed."""
    if side is Side.LONG:
        return entry * (1.0 - 1.0 / leverage)
    return entry * (1.0 + 1.0 / leverage)


@dataclass(frozen=True)
class OrderPlan:
    """Signal sized for execution; immutable once produced."""

    signal: Signal
    leverage: float
    quantity: float
    liquidation_price: float

    def __post_init__(self) -> None:
        if self.leverage < 1:
            raise InvalidSignal(f"leverage must be >= 1, got {self.leverage}")
        if self.quantity <= 0:
            raise InvalidSignal(f"non-positive quantity {self.quantity}")

    @property
    def symbol(self) -> str:
        return self.signal.symbol

    @property
    def side(self) -> Side:
        return self.signal.side

    @property
    def entry(self) -> float:
        return self.signal.entry

    @property
    def stop_loss(self) -> float:
        return self.signal.stop_loss

    @property
    def take_profit(self) -> float:
        return self.signal.take_profit

    @property
    def margin(self) -> float:
        """Capital posted for the position (notional / leverage)."""
        return self.quantity * self.entry / self.leverage

    def to_dict(self) -> Dict[str, Any]:
        data = self.signal.to_dict()
        data.update(leverage=self.leverage, quantity=self.quantity, liquidation_price=self.liquidation_price)
        return data


class OrderPlanner:
    """Turns a signal into a liquidation-safe, sized order plan."""

    def __init__(
        self,
        leverage: float,
        stop_loss_pct: float,
        take_profit_pct: float,
        liquidation_margin: float,
        sizer: PositionSizer,
        take_profit_mode: TakeProfitMode | str = TakeProfitMode.FIXED_PCT,
        rr_multiple: float = 2.0,
    ) -> None:
        self.leverage = leverage
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct
        self.liquidation_margin = liquidation_margin
        self.sizer = sizer
        self.take_profit_mode = TakeProfitMode(take_profit_mode)
        self.rr_multiple = rr_multiple

    def levels(self, side: Side, entry: float) -> ProtectiveLevels:
        """Stop clamped inside the liquidation boundary, then take-profit."""
        liq = liquidation_price(side, entry, self.leverage)
        m = self.liquidation_margin
        if side is Side.LONG:
            stop = max(entry * (1.0 - self.stop_loss_pct), liq * (1.0 + m))
        else:
            stop = min(entry * (1.0 + self.stop_loss_pct), liq * (1.0 - m))

        if self.take_profit_mode is TakeProfitMode.RR_MULTIPLE:
            risk = abs(entry - stop)
            tp = entry + risk * self.rr_multiple if side is Side.LONG else entry - risk * self.rr_multiple
        else:
            tp = entry * (1.0 + self.take_profit_pct) if side is Side.LONG else entry * (1.0 - self.take_profit_pct)
        return ProtectiveLevels(liquidation=liq, stop_loss=stop, take_profit=tp)

    def plan(self, signal: Signal, capital: float, qty_decimals: int) -> OrderPlan:
        """Return an OrderPlan or raise InvalidSignal."""
        levels = self.levels(signal.side, signal.entry)
        risk = abs(signal.entry - levels.stop_loss)
        reward = abs(levels.take_profit - signal.entry)
        if risk <= 0 or reward <= 0:
            raise InvalidSignal(f"{signal.symbol}: risk={risk} reward={reward}")

        # replace() re-runs validation, catching stops pushed past entry by the clamp.
        sized = replace(
            signal,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            risk_reward=reward / risk,
            liquidation_price=levels.liquidation,
        )
        qty = self.sizer.size(capital=capital, entry=sized.entry, stop=sized.stop_loss, qty_decimals=qty_decimals)
        if qty <= 0:
            raise InvalidSignal(f"{signal.symbol}: quantity rounds to zero")
        return OrderPlan(signal=sized, leverage=self.leverage, quantity=qty, liquidation_price=levels.liquidation)
