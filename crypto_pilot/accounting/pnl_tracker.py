"""PnL tracking and performance metrics."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PnLTracker:
    """Tracks trading performance statistics."""

    realized_pnl: float = 0.0
    wins: int = 0
    losses: int = 0
    peak_capital: float = 0.0
    max_drawdown: float = 0.0
    trades_closed: int = 0
    trades_opened: int = 0
    trades_failed: int = 0
    trades_simulated: int = 0

    def mark_open(self) -> None:
        self.trades_opened += 1

    def mark_failed(self) -> None:
        self.trades_failed += 1

    def mark_simulated(self) -> None:
        self.trades_simulated += 1

    def mark_close(self, pnl: float, is_win: bool, capital: float) -> None:
        """Finalize round-trip PnL, win/loss stats, and drawdown."""
        self.realized_pnl += pnl
        self.trades_closed += 1
        if is_win:
            self.wins += 1
        else:
            self.losses += 1
        self.update_capital(capital)

    def update_capital(self, capital: float) -> None:
        """Update peak and drawdown metrics."""
        self.peak_capital = max(self.peak_capital, capital)
        if self.peak_capital > 0:
            dd = (self.peak_capital - capital) / self.peak_capital
            self.max_drawdown = max(self.max_drawdown, dd)

    @property
    def win_rate(self) -> float:
        """Win ratio over closed trades."""
        if self.trades_closed == 0:
            return 0.0
        return self.wins / self.trades_closed
