"""Trade entity and its allowed status transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from crypto_pilot.errors import IllegalTransition
from crypto_pilot.risk.order_planner import OrderPlan
from crypto_pilot.strategy.signal import Side


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    OPENED = "OPENED"
    SIMULATED = "SIMULATED"
    CLOSED_WIN = "CLOSED_WIN"
    CLOSED_LOSS = "CLOSED_LOSS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self not in (TradeStatus.PENDING, TradeStatus.OPENED)


_TRANSITIONS = {
    TradeStatus.PENDING: {TradeStatus.OPENED, TradeStatus.FAILED, TradeStatus.SIMULATED},
    TradeStatus.OPENED: {TradeStatus.CLOSED_WIN, TradeStatus.CLOSED_LOSS},
}


@dataclass
class Trade:
    """An order plan moving from PENDING to exactly one terminal status."""

    plan: OrderPlan
    trade_id: str
    status: TradeStatus = TradeStatus.PENDING
    order_id: Optional[str] = None
    protective_order_ids: Dict[str, str] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)
    opened_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    pnl: Optional[float] = None

    def _transition(self, new: TradeStatus) -> None:
        if new not in _TRANSITIONS.get(self.status, set()):
            raise IllegalTransition(f"{self.trade_id}: {self.status.value} -> {new.value}")
        self.status = new

    def mark_opened(self, order_id: str, ts: datetime) -> None:
        self._transition(TradeStatus.OPENED)
        self.order_id = order_id
        self.opened_at = ts

    def mark_simulated(self, ts: datetime) -> None:
        self._transition(TradeStatus.SIMULATED)
        self.opened_at = ts

    def mark_failed(self, reason: str) -> None:
        self._transition(TradeStatus.FAILED)
        self.failures.append(reason)

    def record_failure(self, reason: str) -> None:
        """Note a non-fatal problem (e.g. a rejected protective order)."""
        self.failures.append(reason)

    def exit_status(self, price: float) -> Optional[TradeStatus]:
        """Terminal status implied by ``price``; take-profit is checked before stop."""
        plan = self.plan
        if plan.side is Side.LONG:
            if price >= plan.take_profit:
                return TradeStatus.CLOSED_WIN
            if price <= plan.stop_loss:
                return TradeStatus.CLOSED_LOSS
        else:
            if price <= plan.take_profit:
                return TradeStatus.CLOSED_WIN
            if price >= plan.stop_loss:
                return TradeStatus.CLOSED_LOSS
        return None

    def realized_pnl(self, exit_price: float) -> float:
        """Return on margin scaled by leverage, signed by side."""
        plan = self.plan
        direction = 1.0 if plan.side is Side.LONG else -1.0
        return direction * (exit_price - plan.entry) / plan.entry * plan.leverage * plan.margin

    def close(self, status: TradeStatus, exit_price: float, ts: datetime) -> None:
        self._transition(status)
        self.exit_price = exit_price
        self.closed_at = ts
        self.pnl = self.realized_pnl(exit_price)

    def to_dict(self) -> Dict[str, Any]:
        data = self.plan.to_dict()
        data.update(
            trade_id=self.trade_id,
            status=self.status.value,
            order_id=self.order_id,
            protective_order_ids=dict(self.protective_order_ids),
            failures=list(self.failures),
            opened_at=self.opened_at.isoformat() if self.opened_at else None,
            exit_price=self.exit_price,
            closed_at=self.closed_at.isoformat() if self.closed_at else None,
            pnl=self.pnl,
        )
        return data
