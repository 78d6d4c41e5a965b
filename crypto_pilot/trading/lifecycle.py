"""Trade execution, price monitoring, and ledger settlement."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable, Dict, List
from uuid import uuid4

from crypto_pilot.accounting.ledger import TradeResult
from crypto_pilot.accounting.portfolio import Portfolio
from crypto_pilot.data.market_feed import MarketDataSource
from crypto_pilot.errors import (
    DataUnavailable,
    EntryOrderRejected,
    OrderRejected,
    PersistenceFailure,
    ProtectiveOrderRejected,
)
from crypto_pilot.execution.gateway import ExecutionGateway
from crypto_pilot.execution.order import OrderRequest, OrderType
from crypto_pilot.logging.channels import get_trade_logger
from crypto_pilot.notify.ws_notifier import Notifier
from crypto_pilot.persistence.json_sink import PersistenceSink
from crypto_pilot.risk.order_planner import OrderPlan
from crypto_pilot.trading.clock import Clock, PeriodicTask
from crypto_pilot.trading.trade import Trade, TradeStatus


class TradeLifecycle:
    """Drives each trade PENDING -> OPENED/FAILED/SIMULATED -> CLOSED_*.

    Every OPENED trade gets its own monitor task; state changes on one trade
    are serialized by a per-trade lock, and capital updates go through the
    portfolio's single ledger lock.
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        market: MarketDataSource,
        portfolio: Portfolio,
        sink: PersistenceSink,
        notifier: Notifier,
        clock: Clock,
        poll_interval: float,
        take_profit_pct: float,
        stop_loss_pct: float,
        dry_run: bool = False,
    ) -> None:
        self.gateway = gateway
        self.market = market
        self.portfolio = portfolio
        self.sink = sink
        self.notifier = notifier
        self.clock = clock
        self.poll_interval = poll_interval
        self.take_profit_pct = take_profit_pct
        self.stop_loss_pct = stop_loss_pct
        if not 0 < stop_loss_pct < 1 or take_profit_pct <= 0:
            raise ValueError(f"need 0 < stop_loss_pct < 1 and take_profit_pct > 0, got {stop_loss_pct}, {take_profit_pct}")
        self.dry_run = dry_run
        self.logger = get_trade_logger()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stop = asyncio.Event()

    async def open(self, plan: OrderPlan) -> Trade:
        """Execute ``plan`` and, when the entry fills, start monitoring it."""
        now = self.clock.now()
        trade = Trade(plan=plan, trade_id=f"{plan.symbol}_{int(now.timestamp() * 1000)}_{uuid4().hex[:6]}")

        if self.dry_run:
            trade.mark_simulated(now)
            self.portfolio.pnl.mark_simulated()
            self.logger.info(
                "simulated trade=%s side=%s entry=%.8f qty=%s",
                trade.trade_id,
                plan.side.value,
                plan.entry,
                plan.quantity,
            )
            self._persist(self.sink.save_trade, trade)
            return trade

        try:
            order_id = await self._enter(plan)
        except EntryOrderRejected as exc:
            trade.mark_failed(str(exc))
            self.portfolio.pnl.mark_failed()
            self.logger.error("entry_rejected trade=%s detail=%s", trade.trade_id, exc.detail)
            self._persist(self.sink.save_trade, trade)
            return trade

        trade.mark_opened(order_id, self.clock.now())
        self.portfolio.pnl.mark_open()
        self.logger.info(
            "opened trade=%s side=%s entry=%.8f qty=%s sl=%.8f tp=%.8f liq=%.8f",
            trade.trade_id,
            plan.side.value,
            plan.entry,
            plan.quantity,
            plan.stop_loss,
            plan.take_profit,
            plan.liquidation_price,
        )

        for label, request in self._protective_orders(plan):
            try:
                trade.protective_order_ids[label] = await self._submit(request, ProtectiveOrderRejected)
            except ProtectiveOrderRejected as exc:
                # The entry stays open without this protection; it is not unwound.
                trade.record_failure(f"{label}: {exc}")
                self.logger.error("protective_rejected trade=%s order=%s detail=%s", trade.trade_id, label, exc.detail)

        self.portfolio.add_active(trade)
        self._persist(self.sink.save_trade, trade)
        self._notify({"type": "trade_opened", "trade": trade.to_dict()})
        self.monitor(trade)
        return trade

    async def _enter(self, plan: OrderPlan) -> str:
        try:
            await asyncio.to_thread(self.gateway.change_leverage, plan.symbol, int(plan.leverage))
        except Exception as exc:
            raise EntryOrderRejected(plan.symbol, f"change_leverage: {_detail(exc)}") from exc
        request = OrderRequest(
            symbol=plan.symbol,
            side=plan.side.entry_order_side,
            order_type=OrderType.MARKET,
            quantity=plan.quantity,
        )
        return await self._submit(request, EntryOrderRejected)

    @staticmethod
    def _protective_orders(plan: OrderPlan) -> List[tuple[str, OrderRequest]]:
        exit_side = plan.side.exit_order_side
        return [
            (
                "take_profit",
                OrderRequest(
                    symbol=plan.symbol,
                    side=exit_side,
                    order_type=OrderType.LIMIT,
                    quantity=plan.quantity,
                    price=plan.take_profit,
                    time_in_force="GTC",
                ),
            ),
            (
                "stop_loss",
                OrderRequest(
                    symbol=plan.symbol,
                    side=exit_side,
                    order_type=OrderType.STOP_MARKET,
                    quantity=plan.quantity,
                    stop_price=plan.stop_loss,
                ),
            ),
        ]

    async def _submit(self, request: OrderRequest, kind: type[OrderRejected]) -> str:
        """Submit off the event loop; any venue or feed failure is re-raised as ``kind``."""
        try:
            return await asyncio.to_thread(self.gateway.submit_order, request)
        except Exception as exc:
            raise kind(request.symbol, _detail(exc)) from exc

    def monitor(self, trade: Trade) -> asyncio.Task:
        """Start polling ``trade`` every ``poll_interval`` seconds until it closes."""
        self._locks.setdefault(trade.trade_id, asyncio.Lock())
        task = PeriodicTask(
            clock=self.clock,
            interval=self.poll_interval,
            action=lambda: self.poll(trade),
            name=f"monitor:{trade.trade_id}",
            logger=self.logger,
            run_immediately=False,
        )
        self._tasks[trade.trade_id] = asyncio.create_task(task.run(self._stop), name=f"monitor:{trade.trade_id}")
        return self._tasks[trade.trade_id]

    async def poll(self, trade: Trade) -> bool:
        """One monitor tick; returns True once the trade is terminal."""
        async with self._locks.setdefault(trade.trade_id, asyncio.Lock()):
            if trade.status is not TradeStatus.OPENED:
                return True
            try:
                price = await asyncio.to_thread(self.market.latest_price, trade.plan.symbol)
            except DataUnavailable as exc:
                self.logger.warning("poll_failed trade=%s detail=%s retry=next_tick", trade.trade_id, exc.detail)
                return False

            status = trade.exit_status(price)
            if status is None:
                self.logger.debug("poll trade=%s price=%.8f", trade.trade_id, price)
                return False
            await self._settle(trade, status, price)
            return True

    async def _settle(self, trade: Trade, status: TradeStatus, price: float) -> None:
        now = self.clock.now()
        if status is TradeStatus.CLOSED_WIN:
            result, fraction = TradeResult.WIN, self.take_profit_pct
        else:
            result, fraction = TradeResult.LOSS, self.stop_loss_pct

        # Ledger first: if the append raises, the trade is still OPENED and the next tick retries.
        entry = await self.portfolio.record_close(trade, result, fraction, now, pnl=trade.realized_pnl(price))
        trade.close(status, price, now)
        self._persist(self.sink.save_trade, trade)
        self.portfolio.remove_active(trade.trade_id)
        self._locks.pop(trade.trade_id, None)
        self.logger.info(
            "closed trade=%s status=%s exit=%.8f pnl=%.6f capital=%.6f",
            trade.trade_id,
            status.value,
            price,
            trade.pnl,
            entry.capital_after,
        )
        self._notify({"type": "trade_closed", "trade": trade.to_dict()})
        self._notify({"type": "capital_update", "capital": entry.capital_after, "result": result.value})

    async def drain(self) -> None:
        """Wait until every monitored trade has closed."""
        while self._tasks:
            tasks = list(self._tasks.values())
            await asyncio.gather(*tasks, return_exceptions=True)
            for trade_id in [k for k, t in self._tasks.items() if t.done()]:
                del self._tasks[trade_id]

    async def shutdown(self) -> None:
        """Stop all monitors; open trades stay OPENED on the venue."""
        self._stop.set()
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    def _persist(self, write: Callable[[Any], None], record: Any) -> None:
        try:
            write(record)
        except PersistenceFailure as exc:
            self.logger.error("persist_failed record=%s error=%s", type(record).__name__, exc)

    def _notify(self, event: Dict[str, Any]) -> None:
        try:
            self.notifier.publish(event)
        except Exception as exc:
            self.logger.warning("notify_failed type=%s error=%s", event.get("type"), exc)


def _detail(exc: Exception) -> str:
    if isinstance(exc, (OrderRejected, DataUnavailable)):
        return exc.detail
    return f"{type(exc).__name__}: {exc}"
