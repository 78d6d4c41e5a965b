"""Order models shared by the live gateway and the paper broker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_MARKET = "STOP_MARKET"


@dataclass(frozen=True)
class OrderRequest:
    """Order submission keyed by instrument, side, and quantity."""

    symbol: str
    side: str
    order_type: OrderType
    quantity: float
    price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: Optional[str] = None

    def __post_init__(self) -> None:
        if self.side not in ("BUY", "SELL"):
            raise ValueError(f"side must be BUY or SELL, got {self.side!r}")
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if self.order_type is OrderType.LIMIT and self.price is None:
            raise ValueError("LIMIT order needs a price")
        if self.order_type is OrderType.STOP_MARKET and self.stop_price is None:
            raise ValueError("STOP_MARKET order needs a stop price")


@dataclass
class Fill:
    """Simulated execution of an order."""

    order_id: str
    ts: datetime
    price: float
    qty: float
    fee: float
