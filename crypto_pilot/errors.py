"""Error taxonomy shared across scan, planning, and trade lifecycle."""

from __future__ import annotations


class CryptoPilotError(Exception):
    """Base class for all bot errors."""


class DataUnavailable(CryptoPilotError):
    """Market data fetch failed (timeout, rate limit, bad payload)."""

    def __init__(self, symbol: str, detail: str) -> None:
        super().__init__(f"{symbol}: {detail}")
        self.symbol = symbol
        self.detail = detail


class InsufficientHistory(CryptoPilotError):
    """Fewer candles than the longest indicator lookback."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"need {required} candles, got {available}")
        self.required = required
        self.available = available


class InvalidSignal(CryptoPilotError):
    """Signal or plan with non-positive risk/reward or unusable size."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class OrderRejected(CryptoPilotError):
    """Gateway refused an order."""

    def __init__(self, symbol: str, detail: str) -> None:
        super().__init__(f"{symbol}: {detail}")
        self.symbol = symbol
        self.detail = detail


class EntryOrderRejected(OrderRejected):
    """Entry market order (or its leverage change) was refused."""


class ProtectiveOrderRejected(OrderRejected):
    """Take-profit or stop order was refused after a filled entry."""


class PersistenceFailure(CryptoPilotError):
    """Durable write or read failed."""


class IllegalTransition(CryptoPilotError):
    """Trade status change not allowed by the lifecycle."""
