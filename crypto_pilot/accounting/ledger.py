"""Append-only compounding capital ledger."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple


class TradeResult(str, Enum):
    WIN = "win"
    LOSS = "loss"


@dataclass(frozen=True)
class CapitalLedgerEntry:
    """Capital after one closed trade."""

    capital_after: float
    result: TradeResult
    ts: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"capital_after": self.capital_after, "result": self.result.value, "timestamp": self.ts.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapitalLedgerEntry":
        # Older capital logs used ``capital`` / ``time``.
        capital = data["capital_after"] if "capital_after" in data else data["capital"]
        stamp = data.get("timestamp") or data["time"]
        return cls(capital_after=float(capital), result=TradeResult(data["result"]), ts=datetime.fromisoformat(stamp))


class CapitalLedger:
    """Compounds capital multiplicatively; appends are serialized by one lock."""

    def __init__(
        self,
        initial_capital: float,
        entries: Iterable[CapitalLedgerEntry] = (),
        on_append: Optional[Callable[[CapitalLedgerEntry], None]] = None,
    ) -> None:
        if initial_capital <= 0:
            raise ValueError("initial capital must be > 0")
        self.initial_capital = initial_capital
        self._entries: List[CapitalLedgerEntry] = list(entries)
        self._on_append = on_append
        self._lock = asyncio.Lock()

    @property
    def capital(self) -> float:
        if self._entries:
            return self._entries[-1].capital_after
        return self.initial_capital

    @property
    def entries(self) -> Tuple[CapitalLedgerEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def record(self, result: TradeResult, fraction: float, ts: datetime) -> CapitalLedgerEntry:
        """Apply ``x(1 + fraction)`` on a win or ``x(1 - fraction)`` on a loss."""
        if fraction < 0:
            raise ValueError("fraction must be >= 0")
        factor = 1.0 + fraction if result is TradeResult.WIN else 1.0 - fraction
        if factor <= 0:
            raise ValueError(f"loss fraction {fraction} would wipe out capital")

        async with self._lock:
            entry = CapitalLedgerEntry(capital_after=self.capital * factor, result=result, ts=ts)
            self._entries.append(entry)
            if self._on_append is not None:
                self._on_append(entry)
            return entry
