"""Execution gateway contract and the Binance USDT-M futures implementation."""

from __future__ import annotations

import os
from typing import Any, Dict, Protocol

from binance.error import ClientError, ServerError
from binance.um_futures import UMFutures
from requests.exceptions import RequestException

from crypto_pilot.execution.order import OrderRequest, OrderType
from crypto_pilot.errors import OrderRejected


class ExecutionGateway(Protocol):
    def change_leverage(self, symbol: str, leverage: int) -> None: ...

    def submit_order(self, order: OrderRequest) -> str: ...


def build_futures_client(
    api_key_env: str = "BINANCE_API_KEY",
    api_secret_env: str = "BINANCE_API_SECRET",
    base_url: str | None = None,
    timeout: float | None = None,
) -> UMFutures:
    """Create a UMFutures client from credentials held in the environment."""
    kwargs: Dict[str, Any] = {}
    if base_url:
        kwargs["base_url"] = base_url
    if timeout:
        kwargs["timeout"] = timeout
    return UMFutures(key=os.environ.get(api_key_env), secret=os.environ.get(api_secret_env), **kwargs)


class BinanceFuturesGateway:
    """Submits market, limit, and stop-market orders to Binance futures."""

    def __init__(self, client: UMFutures) -> None:
        self.client = client

    def change_leverage(self, symbol: str, leverage: int) -> None:
        try:
            self.client.change_leverage(symbol=symbol, leverage=int(leverage))
        except (ClientError, ServerError, RequestException) as exc:
            raise OrderRejected(symbol, f"change_leverage failed: {_describe(exc)}") from exc

    def submit_order(self, order: OrderRequest) -> str:
        params: Dict[str, Any] = {"quantity": order.quantity}
        if order.order_type is OrderType.LIMIT:
            params["price"] = str(order.price)
            params["timeInForce"] = order.time_in_force or "GTC"
        elif order.order_type is OrderType.STOP_MARKET:
            params["stopPrice"] = str(order.stop_price)

        try:
            resp = self.client.new_order(
                symbol=order.symbol, side=order.side, type=order.order_type.value, **params
            )
        except (ClientError, ServerError, RequestException) as exc:
            raise OrderRejected(order.symbol, f"{order.order_type.value} rejected: {_describe(exc)}") from exc
        return str(resp["orderId"])


def _describe(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return f"code={exc.error_code} msg={exc.error_message}"
    return str(exc)
