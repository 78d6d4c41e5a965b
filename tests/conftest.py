from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from crypto_pilot.data.market_feed import Candle
from crypto_pilot.errors import DataUnavailable, OrderRejected
from crypto_pilot.execution.order import OrderRequest, OrderType

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ManualClock:
    """Clock whose sleeps only finish when the test advances time."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start
        self._sleepers: List[tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())

    async def sleep(self, seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + timedelta(seconds=seconds), fut))
        await fut

    async def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        due = [(t, f) for t, f in self._sleepers if t <= self._now]
        self._sleepers = [(t, f) for t, f in self._sleepers if t > self._now]
        for _, fut in due:
            if not fut.done():
                fut.set_result(None)
        await asyncio.sleep(0)


class FakeMarket:
    interval = "15m"

    def __init__(self, candles: Optional[Dict[str, List[Candle]]] = None, prices: Optional[Dict[str, float]] = None):
        self.candle_map = candles or {}
        self.prices = prices or {}
        self.failing: set[str] = set()
        self.precision = 3

    def symbols(self) -> List[str]:
        return list(self.candle_map)

    def candles(self, symbol: str) -> List[Candle]:
        if symbol in self.failing:
            raise DataUnavailable(symbol, "timeout")
        return self.candle_map[symbol]

    def latest_price(self, symbol: str) -> float:
        if symbol in self.failing:
            raise DataUnavailable(symbol, "timeout")
        return self.prices[symbol]

    def quantity_precision(self, symbol: str) -> int:
        return self.precision


class FakeGateway:
    def __init__(self) -> None:
        self.leverage_calls: List[tuple[str, int]] = []
        self.orders: List[OrderRequest] = []
        self.reject_leverage = False
        self.reject_types: set[OrderType] = set()

    def change_leverage(self, symbol: str, leverage: int) -> None:
        self.leverage_calls.append((symbol, leverage))
        if self.reject_leverage:
            raise OrderRejected(symbol, "leverage not allowed")

    def submit_order(self, order: OrderRequest) -> str:
        if order.order_type in self.reject_types:
            raise OrderRejected(order.symbol, f"{order.order_type.value} rejected")
        self.orders.append(order)
        return f"ord-{len(self.orders)}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: List[dict] = []

    async def start(self) -> None:
        return None

    def publish(self, event: dict) -> None:
        self.events.append(event)

    async def stop(self) -> None:
        return None


def make_candles(closes, volumes=None, start: datetime = T0) -> List[Candle]:
    volumes = volumes or [100.0] * len(closes)
    return [
        Candle(ts=start + timedelta(minutes=15 * i), open=c, high=c * 1.001, low=c * 0.999, close=c, volume=v)
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def candle_factory():
    return make_candles


@pytest.fixture
def market_factory():
    return FakeMarket


def make_signal(
    symbol: str = "BTCUSDT",
    side=None,
    entry: float = 106.0,
    stop_loss: float = 105.735,
    take_profit: float = 159.0,
    score: float = 117.5,
    confidence: float = 90.0,
):
    from crypto_pilot.strategy.signal import Regime, Side, Signal

    side = side or Side.LONG
    return Signal(
        symbol=symbol,
        side=side,
        entry=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        confidence=confidence,
        score=score,
        regime=Regime.TREND,
        strategy="Trend",
        risk_reward=abs(take_profit - entry) / abs(entry - stop_loss),
        forecast_pnl=45.0,
        ts=T0,
    )


async def wait_until(predicate, attempts: int = 500) -> None:
    """Yield to the loop (and worker threads) until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")
