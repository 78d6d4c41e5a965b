import asyncio
import json
from types import SimpleNamespace

import pytest

from crypto_pilot.accounting.portfolio import Portfolio
from crypto_pilot.errors import DataUnavailable
from crypto_pilot.execution.order import OrderType
from crypto_pilot.execution.paper_broker import PaperBroker
from crypto_pilot.persistence.json_sink import JsonFileSink
from crypto_pilot.risk.order_planner import OrderPlan
from crypto_pilot.strategy.signal import Side
from crypto_pilot.trading.lifecycle import TradeLifecycle
from crypto_pilot.trading.trade import Trade, TradeStatus

from conftest import FakeGateway, FakeMarket, make_signal, wait_until


def _plan(**kwargs):
    return OrderPlan(signal=make_signal(**kwargs), leverage=20, quantity=1.5, liquidation_price=100.7)


def _lifecycle(tmp_path, gateway, clock, notifier, market=None, dry_run=False):
    sink = JsonFileSink(tmp_path)
    portfolio = Portfolio(1000.0, sink=sink)
    return TradeLifecycle(
        gateway=gateway,
        market=market or FakeMarket(prices={"BTCUSDT": 106.0}),
        portfolio=portfolio,
        sink=sink,
        notifier=notifier,
        clock=clock,
        poll_interval=60.0,
        take_profit_pct=0.5,
        stop_loss_pct=0.15,
        dry_run=dry_run,
    )


def test_open_places_entry_then_protective_orders(tmp_path, gateway, clock, notifier):
    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier)
        trade = await lc.open(_plan())
        await lc.shutdown()
        return lc, trade

    lc, trade = asyncio.run(run())

    assert trade.status is TradeStatus.OPENED
    assert gateway.leverage_calls == [("BTCUSDT", 20)]
    entry, tp, sl = gateway.orders
    assert (entry.order_type, entry.side, entry.quantity) == (OrderType.MARKET, "BUY", 1.5)
    assert (tp.order_type, tp.side, tp.price, tp.time_in_force) == (OrderType.LIMIT, "SELL", 159.0, "GTC")
    assert (sl.order_type, sl.side, sl.stop_price) == (OrderType.STOP_MARKET, "SELL", 105.735)
    assert trade.order_id == "ord-1"
    assert set(trade.protective_order_ids) == {"take_profit", "stop_loss"}
    assert lc.portfolio.has_active_symbol("BTCUSDT")
    assert notifier.events[0]["type"] == "trade_opened"
    assert trade.trade_id.startswith("BTCUSDT_")


def test_entry_rejection_fails_without_protection(tmp_path, gateway, clock, notifier):
    gateway.reject_types.add(OrderType.MARKET)

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier)
        return lc, await lc.open(_plan())

    lc, trade = asyncio.run(run())

    assert trade.status is TradeStatus.FAILED
    assert gateway.orders == []
    assert not lc.portfolio.active
    assert lc.portfolio.pnl.trades_failed == 1
    saved = json.loads((tmp_path / "trades" / f"{trade.trade_id}.json").read_text())
    assert saved["status"] == "FAILED"


def test_leverage_rejection_counts_as_entry_failure(tmp_path, gateway, clock, notifier):
    gateway.reject_leverage = True

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier)
        return await lc.open(_plan())

    trade = asyncio.run(run())
    assert trade.status is TradeStatus.FAILED
    assert gateway.orders == []


def test_protective_rejection_keeps_trade_open(tmp_path, gateway, clock, notifier):
    gateway.reject_types.add(OrderType.STOP_MARKET)

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier)
        trade = await lc.open(_plan())
        await lc.shutdown()
        return trade

    trade = asyncio.run(run())
    assert trade.status is TradeStatus.OPENED
    assert list(trade.protective_order_ids) == ["take_profit"]
    assert len(trade.failures) == 1
    assert trade.failures[0].startswith("stop_loss:")


def test_dry_run_simulates_without_gateway(tmp_path, gateway, clock, notifier):
    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, dry_run=True)
        return lc, await lc.open(_plan())

    lc, trade = asyncio.run(run())
    assert trade.status is TradeStatus.SIMULATED
    assert gateway.leverage_calls == [] and gateway.orders == []
    assert not lc.portfolio.active
    assert lc.portfolio.pnl.trades_simulated == 1


@pytest.mark.parametrize(
    "price, status, capital",
    [(160.0, TradeStatus.CLOSED_WIN, 1500.0), (105.0, TradeStatus.CLOSED_LOSS, 850.0)],
)
def test_poll_closes_and_updates_ledger_once(tmp_path, gateway, clock, notifier, price, status, capital):
    market = FakeMarket(prices={"BTCUSDT": 106.0})

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, market=market)
        trade = await lc.open(_plan())
        assert await lc.poll(trade) is False
        market.prices["BTCUSDT"] = price
        assert await lc.poll(trade) is True
        assert await lc.poll(trade) is True
        await lc.shutdown()
        return lc, trade

    lc, trade = asyncio.run(run())

    assert trade.status is status
    assert trade.exit_price == price
    assert lc.portfolio.capital == pytest.approx(capital)
    assert len(lc.portfolio.ledger) == 1
    assert not lc.portfolio.active
    types = [e["type"] for e in notifier.events]
    assert types == ["trade_opened", "trade_closed", "capital_update"]
    saved = json.loads((tmp_path / "trades" / f"{trade.trade_id}.json").read_text())
    assert saved["status"] == status.value


def test_realized_pnl_uses_leveraged_margin(tmp_path, gateway, clock, notifier):
    market = FakeMarket(prices={"BTCUSDT": 159.0})

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, market=market)
        trade = await lc.open(_plan())
        await lc.poll(trade)
        await lc.shutdown()
        return trade

    trade = asyncio.run(run())
    margin = 1.5 * 106.0 / 20
    assert trade.pnl == pytest.approx((159.0 - 106.0) / 106.0 * 20 * margin)


def test_short_exit_conditions_are_inverted():
    plan = OrderPlan(
        signal=make_signal(side=Side.SHORT, entry=100.0, stop_loss=107.0, take_profit=50.0),
        leverage=5,
        quantity=1.0,
        liquidation_price=120.0,
    )
    trade = Trade(plan=plan, trade_id="t")
    assert trade.exit_status(49.0) is TradeStatus.CLOSED_WIN
    assert trade.exit_status(108.0) is TradeStatus.CLOSED_LOSS
    assert trade.exit_status(100.0) is None
    assert trade.realized_pnl(90.0) > 0


def test_poll_failure_retries_next_tick(tmp_path, gateway, clock, notifier):
    market = FakeMarket(prices={"BTCUSDT": 106.0})

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, market=market)
        trade = await lc.open(_plan())
        market.failing.add("BTCUSDT")
        assert await lc.poll(trade) is False
        assert trade.status is TradeStatus.OPENED
        market.failing.clear()
        market.prices["BTCUSDT"] = 200.0
        assert await lc.poll(trade) is True
        await lc.shutdown()
        return trade

    assert asyncio.run(run()).status is TradeStatus.CLOSED_WIN


def test_monitor_task_follows_the_clock(tmp_path, gateway, clock, notifier):
    market = FakeMarket(prices={"BTCUSDT": 106.0})

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, market=market)
        trade = await lc.open(_plan())
        await wait_until(lambda: clock.pending == 1)
        await clock.advance(60)
        await wait_until(lambda: clock.pending == 1)
        assert trade.status is TradeStatus.OPENED

        market.prices["BTCUSDT"] = 170.0
        await clock.advance(60)
        await wait_until(lambda: trade.status.is_terminal)
        await lc.drain()
        return lc, trade

    lc, trade = asyncio.run(run())
    assert trade.status is TradeStatus.CLOSED_WIN
    assert lc.portfolio.capital == pytest.approx(1500.0)
    assert lc.portfolio.pnl.wins == 1


def test_price_feed_outage_at_entry_fails_and_persists(tmp_path, clock, notifier):
    feed = FakeMarket(prices={"BTCUSDT": 106.0})
    feed.failing.add("BTCUSDT")
    broker = PaperBroker(price_source=feed.latest_price)

    async def run():
        lc = _lifecycle(tmp_path, broker, clock, notifier)
        return lc, await lc.open(_plan())

    lc, trade = asyncio.run(run())
    assert trade.status is TradeStatus.FAILED
    assert "timeout" in trade.failures[0]
    assert broker.orders == {}
    assert lc.portfolio.pnl.trades_failed == 1
    saved = json.loads((tmp_path / "trades" / f"{trade.trade_id}.json").read_text())
    assert saved["status"] == "FAILED"


class _MalformedProtectiveGateway(FakeGateway):
    def submit_order(self, order):
        if order.order_type is OrderType.LIMIT:
            raise KeyError("orderId")
        if order.order_type is OrderType.STOP_MARKET:
            raise DataUnavailable(order.symbol, "mark price stale")
        return super().submit_order(order)


def test_unexpected_protective_errors_keep_trade_open(tmp_path, clock, notifier):
    gateway = _MalformedProtectiveGateway()

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier)
        trade = await lc.open(_plan())
        await lc.shutdown()
        return lc, trade

    lc, trade = asyncio.run(run())
    assert trade.status is TradeStatus.OPENED
    assert trade.protective_order_ids == {}
    assert [f.split(":")[0] for f in trade.failures] == ["take_profit", "stop_loss"]
    assert "KeyError" in trade.failures[0]
    assert lc.portfolio.has_active_symbol("BTCUSDT")


def test_ledger_failure_leaves_trade_open_for_retry(tmp_path, gateway, clock, notifier):
    market = FakeMarket(prices={"BTCUSDT": 106.0})

    async def run():
        lc = _lifecycle(tmp_path, gateway, clock, notifier, market=market)
        trade = await lc.open(_plan())
        record_close = lc.portfolio.record_close
        calls = []

        async def flaky_record_close(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise ValueError("ledger unavailable")
            return await record_close(*args, **kwargs)

        lc.portfolio.record_close = flaky_record_close
        market.prices["BTCUSDT"] = 160.0
        with pytest.raises(ValueError):
            await lc.poll(trade)
        assert trade.status is TradeStatus.OPENED
        assert lc.portfolio.has_active_symbol("BTCUSDT")
        assert await lc.poll(trade) is True
        await lc.shutdown()
        return lc, trade

    lc, trade = asyncio.run(run())
    assert trade.status is TradeStatus.CLOSED_WIN
    assert len(lc.portfolio.ledger) == 1
    assert lc.portfolio.capital == pytest.approx(1500.0)


@pytest.mark.parametrize("stop_loss_pct, take_profit_pct", [(1.0, 0.5), (0.0, 0.5), (0.15, 0.0)])
def test_lifecycle_rejects_out_of_range_percentages(gateway, clock, notifier, tmp_path, stop_loss_pct, take_profit_pct):
    sink = JsonFileSink(tmp_path)
    with pytest.raises(ValueError):
        TradeLifecycle(
            gateway=gateway,
            market=FakeMarket(),
            portfolio=Portfolio(1000.0, sink=sink),
            sink=sink,
            notifier=notifier,
            clock=clock,
            poll_interval=60.0,
            take_profit_pct=take_profit_pct,
            stop_loss_pct=stop_loss_pct,
        )


@pytest.mark.parametrize(
    "side, take_profit, stop_loss, price",
    [(Side.LONG, 100.0, 105.0, 102.0), (Side.SHORT, 105.0, 100.0, 102.0)],
)
def test_take_profit_wins_when_levels_overlap(side, take_profit, stop_loss, price):
    plan = SimpleNamespace(side=side, take_profit=take_profit, stop_loss=stop_loss)
    trade = Trade(plan=plan, trade_id="t")
    assert trade.exit_status(price) is TradeStatus.CLOSED_WIN
