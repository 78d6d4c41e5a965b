"""Paper execution gateway with deterministic simulated fills."""

from __future__ import annotations

from datetime import datetime, timezone
import random
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from crypto_pilot.errors import OrderRejected
from crypto_pilot.execution.order import Fill, OrderRequest, OrderType


class PaperBroker:
    """Accepts orders in memory: market orders fill immediately, others rest."""

    def __init__(
        self,
        fee_rate: float = 0.0004,
        slippage_bps: float = 1.0,
        min_notional: float = 0.0,
        price_source: Optional[Callable[[str], float]] = None,
        seed: int = 42,
    ) -> None:
        self.fee_rate = fee_rate
        self.slippage_bps = slippage_bps
        self.min_notional = min_notional
        self.price_source = price_source
        self._rng = random.Random(seed)
        self.leverage: Dict[str, int] = {}
        self.orders: Dict[str, OrderRequest] = {}
        self.resting: Dict[str, OrderRequest] = {}
        self.fills: List[Fill] = []

    def change_leverage(self, symbol: str, leverage: int) -> None:
        if leverage < 1:
            raise OrderRejected(symbol, f"invalid leverage {leverage}")
        self.leverage[symbol] = int(leverage)

    def submit_order(self, order: OrderRequest) -> str:
        ref_price = self._reference_price(order)
        if ref_price is not None and ref_price * order.quantity < self.min_notional:
            raise OrderRejected(order.symbol, f"notional below {self.min_notional}")

        order_id = str(uuid4())
        self.orders[order_id] = order
        if order.order_type is OrderType.MARKET:
            self.fills.append(self._simulate_fill(order_id, order, ref_price))
        else:
            self.resting[order_id] = order
        return order_id

    def _reference_price(self, order: OrderRequest) -> Optional[float]:
        if order.order_type is OrderType.LIMIT:
            return order.price
        if order.order_type is OrderType.STOP_MARKET:
            return order.stop_price
        if self.price_source is not None:
            return self.price_source(order.symbol)
        return None

    def _simulate_fill(self, order_id: str, order: OrderRequest, price: Optional[float]) -> Fill:
        """Fill the full quantity with a small random adverse slippage."""
        price = price or 0.0
        slip = self._rng.uniform(0.0, self.slippage_bps) / 10_000.0
        slipped = price * (1.0 + slip if order.side == "BUY" else 1.0 - slip)
        return Fill(
            order_id=order_id,
            ts=datetime.now(timezone.utc),
            price=slipped,
            qty=order.quantity,
            fee=slipped * order.quantity * self.fee_rate,
        )
