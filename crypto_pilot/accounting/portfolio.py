"""Process-wide capital and active-trade context."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from crypto_pilot.accounting.ledger import CapitalLedger, CapitalLedgerEntry, TradeResult
from crypto_pilot.accounting.pnl_tracker import PnLTracker
from crypto_pilot.errors import PersistenceFailure
from crypto_pilot.logging.channels import get_ledger_logger

if TYPE_CHECKING:
    from crypto_pilot.persistence.json_sink import PersistenceSink
    from crypto_pilot.trading.trade import Trade


class Portfolio:
    """Owns the capital ledger, PnL stats, and the set of monitored trades.

    Instantiated once per process from the persisted ledger tail and flushed
    on teardown; scan and monitor code receive it by reference.
    """

    def __init__(
        self,
        initial_capital: float,
        entries: Iterable[CapitalLedgerEntry] = (),
        sink: Optional["PersistenceSink"] = None,
    ) -> None:
        self.sink = sink
        self.ledger = CapitalLedger(initial_capital, entries, on_append=self._persist_entry)
        self.pnl = PnLTracker(peak_capital=self.ledger.capital)
        self.active: Dict[str, "Trade"] = {}
        self.logger = get_ledger_logger()

    @classmethod
    def load(cls, sink: "PersistenceSink", initial_capital: float) -> "Portfolio":
        """Resume capital from the last persisted ledger entry, if any."""
        logger = get_ledger_logger()
        try:
            entries = sink.load_ledger()
        except PersistenceFailure as exc:
            logger.error("ledger_load_failed error=%s starting_capital=%.6f", exc, initial_capital)
            entries = []

        portfolio = cls(initial_capital, entries, sink)
        logger.info("ledger_loaded entries=%d capital=%.6f", len(entries), portfolio.capital)
        return portfolio

    @property
    def capital(self) -> float:
        return self.ledger.capital

    def add_active(self, trade: "Trade") -> None:
        self.active[trade.trade_id] = trade

    def remove_active(self, trade_id: str) -> None:
        self.active.pop(trade_id, None)

    def has_active_symbol(self, symbol: str) -> bool:
        return any(t.plan.symbol == symbol for t in self.active.values())

    async def record_close(
        self,
        trade: "Trade",
        result: TradeResult,
        fraction: float,
        ts: datetime,
        pnl: Optional[float] = None,
    ) -> CapitalLedgerEntry:
        """Append the trade's outcome to the ledger; called once per closed trade."""
        entry = await self.ledger.record(result, fraction, ts)
        realized = pnl if pnl is not None else (trade.pnl or 0.0)
        self.pnl.mark_close(pnl=realized, is_win=result is TradeResult.WIN, capital=entry.capital_after)
        self.logger.info(
            "capital_update trade=%s result=%s fraction=%.4f capital=%.6f",
            trade.trade_id,
            result.value,
            fraction,
            entry.capital_after,
        )
        return entry

    def history(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.ledger.entries]

    def _persist_entry(self, entry: CapitalLedgerEntry) -> None:
        if self.sink is None:
            return
        try:
            self.sink.append_ledger(entry)
        except PersistenceFailure as exc:
            self.logger.error("ledger_append_failed capital=%.6f error=%s", entry.capital_after, exc)

    def flush(self) -> None:
        """Rewrite the full ledger so the durable copy matches memory."""
        if self.sink is None:
            return
        try:
            self.sink.write_ledger(self.ledger.entries)
        except PersistenceFailure as exc:
            self.logger.error("ledger_flush_failed entries=%d error=%s", len(self.ledger), exc)
