"""Top-N selection and per-cycle open cap."""

from __future__ import annotations

from typing import Iterable, List

from crypto_pilot.strategy.signal import Signal


class TradeLimiter:
    """Ranks candidates by score and caps how many trades a scan cycle may open."""

    def __init__(self, max_trades_per_cycle: int) -> None:
        self.max_trades_per_cycle = max_trades_per_cycle
        self._opened_this_cycle = 0

    def select(self, signals: Iterable[Signal]) -> List[Signal]:
        """Highest scores first; equal scores keep their input order."""
        ranked = sorted(signals, key=lambda s: -s.score)
        return ranked[: self.max_trades_per_cycle]

    def start_cycle(self) -> None:
        self._opened_this_cycle = 0

    def allow_open(self) -> tuple[bool, str]:
        if self._opened_this_cycle >= self.max_trades_per_cycle:
            return False, "cycle_trade_limit"
        return True, "ok"

    def mark_trade(self) -> None:
        """Record a trade that left PENDING this cycle."""
        self._opened_this_cycle += 1

    @property
    def opened_this_cycle(self) -> int:
        return self._opened_this_cycle
