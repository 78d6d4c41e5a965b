"""Metrics summary helpers."""

from __future__ import annotations

from dataclasses import asdict

from crypto_pilot.accounting.pnl_tracker import PnLTracker


def summarize_metrics(
    pnl: PnLTracker,
    initial_capital: float,
    current_capital: float,
    open_trades: int = 0,
) -> dict[str, float]:
    """Build a minimal metrics snapshot for reporting."""
    base = {
        "capital": current_capital,
        "capital_change_pct": (current_capital / initial_capital - 1.0) * 100.0 if initial_capital else 0.0,
        "win_rate": pnl.win_rate,
        "max_drawdown": pnl.max_drawdown,
        "open_trades": float(open_trades),
    }
    base.update({f"pnl_{k}": float(v) for k, v in asdict(pnl).items() if isinstance(v, (int, float))})
    return base
