"""Market data sources: Binance USDT-M futures and a deterministic synthetic feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math
import random
from typing import Dict, List, Protocol, Sequence

from binance.error import ClientError, ServerError
from binance.um_futures import UMFutures
from requests.exceptions import RequestException

from crypto_pilot.config.constants import (
    DEFAULT_CANDLE_LIMIT,
    DEFAULT_CONTRACT_TYPE,
    DEFAULT_INTERVAL,
    DEFAULT_QUOTE_ASSET,
    DEFAULT_UNIVERSE_LIMIT,
    QTY_DECIMALS,
)
from crypto_pilot.errors import DataUnavailable

_INTERVAL_MINUTES = {"1m": 1, "5m": 5, "15m": 15, "30m": 30, "1h": 60, "4h": 240, "1d": 1440}


@dataclass(frozen=True)
class Candle:
    """OHLCV candle."""

    ts: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


class MarketDataSource(Protocol):
    """Pull-based market data contract used by the scan and the trade monitor."""

    interval: str

    def symbols(self) -> List[str]: ...

    def candles(self, symbol: str) -> List[Candle]: ...

    def latest_price(self, symbol: str) -> float: ...

    def quantity_precision(self, symbol: str) -> int: ...


class BinanceMarketData:
    """USDT-margined perpetual futures data through the Binance REST API."""

    def __init__(
        self,
        client: UMFutures,
        interval: str = DEFAULT_INTERVAL,
        candle_limit: int = DEFAULT_CANDLE_LIMIT,
        universe_limit: int = DEFAULT_UNIVERSE_LIMIT,
        quote_asset: str = DEFAULT_QUOTE_ASSET,
    ) -> None:
        self.client = client
        self.interval = interval
        self.candle_limit = candle_limit
        self.universe_limit = universe_limit
        self.quote_asset = quote_asset
        self._qty_precision: Dict[str, int] = {}

    def symbols(self) -> List[str]:
        """First ``universe_limit`` perpetual contracts quoted in the quote asset."""
        try:
            info = self.client.exchange_info()
        except (ClientError, ServerError, RequestException) as exc:
            raise DataUnavailable("*", f"exchange_info failed: {exc}") from exc

        out: List[str] = []
        for s in info.get("symbols", []):
            if s.get("contractType") != DEFAULT_CONTRACT_TYPE:
                continue
            if not s["symbol"].endswith(self.quote_asset):
                continue
            self._qty_precision[s["symbol"]] = int(s.get("quantityPrecision", QTY_DECIMALS))
            out.append(s["symbol"])
            if len(out) >= self.universe_limit:
                break
        return out

    def candles(self, symbol: str) -> List[Candle]:
        try:
            rows = self.client.klines(symbol, self.interval, limit=self.candle_limit)
        except (ClientError, ServerError, RequestException) as exc:
            raise DataUnavailable(symbol, f"klines failed: {exc}") from exc
        return parse_klines(rows)

    def latest_price(self, symbol: str) -> float:
        try:
            data = self.client.ticker_price(symbol)
        except (ClientError, ServerError, RequestException) as exc:
            raise DataUnavailable(symbol, f"ticker_price failed: {exc}") from exc
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DataUnavailable(symbol, f"bad ticker payload: {data!r}") from exc

    def quantity_precision(self, symbol: str) -> int:
        return self._qty_precision.get(symbol, QTY_DECIMALS)


def parse_klines(rows: Sequence[Sequence[object]]) -> List[Candle]:
    """Convert raw kline rows ``[open_time_ms, o, h, l, c, v, ...]`` into candles."""
    candles = []
    for row in rows:
        candles.append(
            Candle(
                ts=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
        )
    return candles


class SyntheticMarketData:
    """Seeded random-walk feed per symbol, suitable for paper and dry runs."""

    def __init__(
        self,
        symbols: Sequence[str],
        seed: int = 42,
        start_price: float = 100.0,
        interval: str = DEFAULT_INTERVAL,
        candle_limit: int = DEFAULT_CANDLE_LIMIT,
    ) -> None:
        self._symbols = list(symbols)
        self.seed = seed
        self.start_price = start_price
        self.interval = interval
        self.candle_limit = candle_limit
        self._step = timedelta(minutes=_INTERVAL_MINUTES.get(interval, 15))
        self._rngs: Dict[str, random.Random] = {}
        self._prices: Dict[str, float] = {}
        self._ts: Dict[str, datetime] = {}

    def symbols(self) -> List[str]:
        return list(self._symbols)

    def _rng(self, symbol: str) -> random.Random:
        if symbol not in self._rngs:
            self._rngs[symbol] = random.Random(f"{self.seed}:{symbol}")
            self._prices[symbol] = self.start_price
            self._ts[symbol] = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return self._rngs[symbol]

    def _next_candle(self, symbol: str) -> Candle:
        """Next candle with bounded noise around a mild sinusoid."""
        rng = self._rng(symbol)
        ts = self._ts[symbol]
        wave = math.sin(ts.timestamp() / 24000.0) * 0.004
        drift = wave + rng.uniform(-0.006, 0.006)

        open_price = self._prices[symbol]
        close_price = max(0.0001, open_price * (1.0 + drift))
        high = max(open_price, close_price) * (1.0 + rng.uniform(0.0, 0.002))
        low = min(open_price, close_price) * (1.0 - rng.uniform(0.0, 0.002))
        volume = rng.uniform(100.0, 1000.0)

        self._prices[symbol] = close_price
        self._ts[symbol] = ts + self._step
        return Candle(ts=ts, open=open_price, high=high, low=low, close=close_price, volume=volume)

    def candles(self, symbol: str) -> List[Candle]:
        """Advance the walk by a full window and return it."""
        if symbol not in self._symbols:
            raise DataUnavailable(symbol, "unknown symbol")
        return [self._next_candle(symbol) for _ in range(self.candle_limit)]

    def latest_price(self, symbol: str) -> float:
        if symbol not in self._symbols:
            raise DataUnavailable(symbol, "unknown symbol")
        return self._next_candle(symbol).close

    def quantity_precision(self, symbol: str) -> int:
        return QTY_DECIMALS
