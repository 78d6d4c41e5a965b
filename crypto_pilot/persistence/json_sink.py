"""JSON file persistence for signals, trades, and the capital log."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, List, Protocol

from crypto_pilot.accounting.ledger import CapitalLedgerEntry
from crypto_pilot.errors import PersistenceFailure

if TYPE_CHECKING:
    from crypto_pilot.strategy.signal import Signal
    from crypto_pilot.trading.trade import Trade


class PersistenceSink(Protocol):
    def save_signal(self, signal: "Signal") -> None: ...

    def save_trade(self, trade: "Trade") -> None: ...

    def append_ledger(self, entry: CapitalLedgerEntry) -> None: ...

    def load_ledger(self) -> List[CapitalLedgerEntry]: ...

    def write_ledger(self, entries: Iterable[CapitalLedgerEntry]) -> None: ...


class JsonFileSink:
    """One file per signal (symbol + timestamp) and per trade, plus ``capital_log.json``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.signals_dir = self.root / "signals"
        self.trades_dir = self.root / "trades"
        self.ledger_path = self.root / "capital_log.json"
        self._ledger_rows: List[dict] | None = None

    def save_signal(self, signal: "Signal") -> None:
        stamp = signal.ts.strftime("%Y%m%dT%H%M%S")
        self._write_json(self.signals_dir / f"{signal.symbol}_{stamp}_{signal.strategy}.json", signal.to_dict())

    def save_trade(self, trade: "Trade") -> None:
        self._write_json(self.trades_dir / f"{trade.trade_id}.json", trade.to_dict())

    def append_ledger(self, entry: CapitalLedgerEntry) -> None:
        """Append to the in-memory copy of the log; the file is read at most once."""
        if self._ledger_rows is None:
            self._ledger_rows = self._read_ledger_rows()
        rows = self._ledger_rows + [entry.to_dict()]
        self._write_json(self.ledger_path, rows)
        self._ledger_rows = rows

    def load_ledger(self) -> List[CapitalLedgerEntry]:
        try:
            return [CapitalLedgerEntry.from_dict(row) for row in self._read_ledger_rows()]
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"malformed ledger row in {self.ledger_path}: {exc}") from exc

    def write_ledger(self, entries: Iterable[CapitalLedgerEntry]) -> None:
        rows = [e.to_dict() for e in entries]
        self._write_json(self.ledger_path, rows)
        self._ledger_rows = rows

    def _read_ledger_rows(self) -> List[dict]:
        if not self.ledger_path.exists():
            return []
        try:
            with open(self.ledger_path, "r", encoding="utf-8") as f:
                rows = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"cannot read {self.ledger_path}: {exc}") from exc
        if not isinstance(rows, list):
            raise PersistenceFailure(f"{self.ledger_path} is not a JSON list")
        return rows

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        """Write through a temp file so readers never see a half-written document."""
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceFailure(f"cannot write {path}: {exc}") from exc
