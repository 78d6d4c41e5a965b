"""Main orchestration engine for the futures signal bot."""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import asyncio
import copy
import os
from typing import Any, Dict, List, Optional
import yaml
from crypto_pilot.accounting.portfolio import Portfolio
from crypto_pilot.config.constants import (
    CONFIG_ENV_VAR,
    DEFAULT_CANDLE_LIMIT,
    DEFAULT_INTERVAL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_QUOTE_ASSET,
    DEFAULT_SCAN_INTERVAL_SECONDS,
    DEFAULT_TOP_N,
    DEFAULT_UNIVERSE_LIMIT,
)
from crypto_pilot.data.indicators import IndicatorParams, compute_snapshots
from crypto_pilot.data.market_feed import BinanceMarketData, MarketDataSource, SyntheticMarketData
from crypto_pilot.edge.regime_detector import RegimeDetector
from crypto_pilot.errors import DataUnavailable, InsufficientHistory, InvalidSignal, PersistenceFailure
from crypto_pilot.execution.gateway import BinanceFuturesGateway, ExecutionGateway, build_futures_client
from crypto_pilot.execution.paper_broker import PaperBroker
from crypto_pilot.logging.channels import get_scan_logger, get_signal_logger, set_level
from crypto_pilot.logging.metrics import summarize_metrics
from crypto_pilot.notify.ws_notifier import Notifier, NullNotifier, WebSocketNotifier
from crypto_pilot.persistence.json_sink import JsonFileSink, PersistenceSink
from crypto_pilot.risk.order_planner import OrderPlanner
from crypto_pilot.risk.position_sizer import PositionSizer
from crypto_pilot.risk.trade_limiter import TradeLimiter
from crypto_pilot.strategy.signal import Signal
from crypto_pilot.strategy.signal_engine import SignalEngine
from crypto_pilot.trading.clock import Clock, PeriodicTask, SystemClock
from crypto_pilot.trading.lifecycle import TradeLifecycle
from crypto_pilot.trading.trade import Trade, TradeStatus

MODES = ("live", "paper", "dry_run")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "engine": {
        "mode": "dry_run",
        "scan_interval_seconds": DEFAULT_SCAN_INTERVAL_SECONDS,
        "poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
        "max_cycles": 0,
        "seed": 42,
    },
    "market": {
        "source": "synthetic",
        "symbols": ["BTCUSDT", "ETHUSDT", "SOLUSDT"],
        "interval": DEFAULT_INTERVAL,
        "candle_limit": DEFAULT_CANDLE_LIMIT,
        "universe_limit": DEFAULT_UNIVERSE_LIMIT,
        "quote_asset": DEFAULT_QUOTE_ASSET,
    },
    "exchange": {
        "api_key_env": "BINANCE_API_KEY",
        "api_secret_env": "BINANCE_API_SECRET",
        "base_url": None,
        "timeout": None,
        "fee_rate": 0.0004,
        "slippage_bps": 1.0,
        "min_notional": 0.0,
    },
    "indicators": {
        "ema_fast": 9,
        "ema_slow": 21,
        "sma_short": 20,
        "sma_long": 200,
        "rsi_period": 14,
        "macd_fast": 12,
        "macd_slow": 26,
        "macd_signal": 9,
        "bb_period": 20,
        "bb_stddevs": 2.0,
    },
    "strategy": {
        "trend_threshold": 0.01,
        "mr_oversold": 35.0,
        "mr_overbought": 65.0,
        "scalp_volume_window": 20,
        "scalp_volume_multiplier": 1.5,
        "trend_confidence": 90.0,
        "mean_reversion_confidence": 85.0,
        "scalp_confidence": 80.0,
        "confidence_threshold": 80.0,
        "min_risk_reward": 2.0,
        "score_confidence_weight": 1.0,
        "score_rsi_weight": 0.5,
    },
    "risk": {
        "leverage": 20,
        "stop_loss_pct": 0.15,
        "take_profit_pct": 0.5,
        "take_profit_mode": "fixed_pct",
        "rr_multiple": 2.0,
        "liquidation_margin": 0.05,
        "risk_mode": "fraction",
        "risk_fraction": 0.01,
        "risk_amount": 10.0,
        "top_n": DEFAULT_TOP_N,
    },
    "account": {"initial_capital": 1000.0},
    "persistence": {"root": "data"},
    "notify": {"enabled": False, "host": "0.0.0.0", "port": 5001},
    "logging": {"level": "INFO"},
}


def deep_merge(a: Dict[str, Any], b: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Recursively overlay ``b`` on a copy of ``a``."""
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass
class EngineConfig:
    raw: dict[str, Any]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineConfig":
        raw = deep_merge(DEFAULT_SETTINGS, data)
        if raw["engine"]["mode"] not in MODES:
            raise ValueError(f"engine.mode must be one of {MODES}, got {raw['engine']['mode']!r}")
        risk = raw["risk"]
        if not 0 < float(risk["stop_loss_pct"]) < 1:
            raise ValueError(f"risk.stop_loss_pct must be in (0, 1), got {risk['stop_loss_pct']}")
        if float(risk["take_profit_pct"]) <= 0:
            raise ValueError(f"risk.take_profit_pct must be > 0, got {risk['take_profit_pct']}")
        if float(risk["leverage"]) < 1:
            raise ValueError(f"risk.leverage must be >= 1, got {risk['leverage']}")
        return cls(raw=raw)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "EngineConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def load(cls, path: str | Path | None = None) -> "EngineConfig":
        """Explicit path, else ``$CRYPTO_PILOT_CONFIG``, else the bundled settings.yaml."""
        path = path or os.environ.get(CONFIG_ENV_VAR) or Path(__file__).parent / "config" / "settings.yaml"
        return cls.from_yaml(path)

    @property
    def mode(self) -> str:
        return self.raw["engine"]["mode"]


class TradingEngine:
    """Coordinates market data, signal generation, risk planning, and trade execution."""

    def __init__(
        self,
        config: EngineConfig,
        market: Optional[MarketDataSource] = None,
        gateway: Optional[ExecutionGateway] = None,
        sink: Optional[PersistenceSink] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        cfg = config.raw
        set_level(cfg["logging"]["level"])
        self.mode = config.mode
        self.clock = clock or SystemClock()
        self._client = None

        self.market = market or self._build_market(cfg)
        self.gateway = gateway or self._build_gateway(cfg)
        self.sink = sink or JsonFileSink(cfg["persistence"]["root"])
        self.notifier = notifier or self._build_notifier(cfg)

        self.params = IndicatorParams(**cfg["indicators"])
        risk = cfg["risk"]
        strategy = cfg["strategy"]
        self.sizer = PositionSizer(
            risk_mode=risk["risk_mode"],
            risk_fraction=risk["risk_fraction"],
            risk_amount=risk["risk_amount"],
        )
        self.planner = OrderPlanner(
            leverage=risk["leverage"],
            stop_loss_pct=risk["stop_loss_pct"],
            take_profit_pct=risk["take_profit_pct"],
            liquidation_margin=risk["liquidation_margin"],
            sizer=self.sizer,
            take_profit_mode=risk["take_profit_mode"],
            rr_multiple=risk["rr_multiple"],
        )
        self.detector = RegimeDetector(
            trend_threshold=strategy["trend_threshold"],
            rsi_low=strategy["mr_oversold"],
            rsi_high=strategy["mr_overbought"],
        )
        self.signal_engine = SignalEngine(
            detector=self.detector,
            planner=self.planner,
            confidence_threshold=strategy["confidence_threshold"],
            min_risk_reward=strategy["min_risk_reward"],
            mr_oversold=strategy["mr_oversold"],
            mr_overbought=strategy["mr_overbought"],
            scalp_volume_window=strategy["scalp_volume_window"],
            scalp_volume_multiplier=strategy["scalp_volume_multiplier"],
            trend_confidence=strategy["trend_confidence"],
            mean_reversion_confidence=strategy["mean_reversion_confidence"],
            scalp_confidence=strategy["scalp_confidence"],
            score_confidence_weight=strategy["score_confidence_weight"],
            score_rsi_weight=strategy["score_rsi_weight"],
            timeframe=cfg["market"]["interval"],
        )
        self.trade_limiter = TradeLimiter(max_trades_per_cycle=int(risk["top_n"]))

        self.initial_capital = float(cfg["account"]["initial_capital"])
        self.portfolio = Portfolio.load(self.sink, self.initial_capital)
        self.lifecycle = TradeLifecycle(
            gateway=self.gateway,
            market=self.market,
            portfolio=self.portfolio,
            sink=self.sink,
            notifier=self.notifier,
            clock=self.clock,
            poll_interval=float(cfg["engine"]["poll_interval_seconds"]),
            take_profit_pct=risk["take_profit_pct"],
            stop_loss_pct=risk["stop_loss_pct"],
            dry_run=self.mode == "dry_run",
        )

        self.scan_interval = float(cfg["engine"]["scan_interval_seconds"])
        self.max_cycles = int(cfg["engine"]["max_cycles"])
        self.cycles = 0
        self.scan_logger = get_scan_logger()
        self.signal_logger = get_signal_logger()
        self._closed = False

    def _futures_client(self, cfg: Dict[str, Any]):
        if self._client is None:
            ex = cfg["exchange"]
            self._client = build_futures_client(
                api_key_env=ex["api_key_env"],
                api_secret_env=ex["api_secret_env"],
                base_url=ex["base_url"],
                timeout=ex["timeout"],
            )
        return self._client

    def _build_market(self, cfg: Dict[str, Any]) -> MarketDataSource:
        m = cfg["market"]
        if self.mode == "live" or m["source"] == "binance":
            return BinanceMarketData(
                client=self._futures_client(cfg),
                interval=m["interval"],
                candle_limit=m["candle_limit"],
                universe_limit=m["universe_limit"],
                quote_asset=m["quote_asset"],
            )
        return SyntheticMarketData(
            symbols=m["symbols"],
            seed=cfg["engine"]["seed"],
            interval=m["interval"],
            candle_limit=m["candle_limit"],
        )

    def _build_gateway(self, cfg: Dict[str, Any]) -> ExecutionGateway:
        if self.mode == "live":
            return BinanceFuturesGateway(self._futures_client(cfg))
        ex = cfg["exchange"]
        return PaperBroker(
            fee_rate=ex["fee_rate"],
            slippage_bps=ex["slippage_bps"],
            min_notional=ex["min_notional"],
            price_source=self.market.latest_price,
            seed=cfg["engine"]["seed"],
        )

    @staticmethod
    def _build_notifier(cfg: Dict[str, Any]) -> Notifier:
        n = cfg["notify"]
        if n["enabled"]:
            return WebSocketNotifier(host=n["host"], port=int(n["port"]))
        return NullNotifier()

    async def scan(self) -> List[Signal]:
        """Analyze the whole universe concurrently; failing instruments are excluded."""
        try:
            symbols = await asyncio.to_thread(self.market.symbols)
        except DataUnavailable as exc:
            self.scan_logger.warning("universe_unavailable detail=%s", exc.detail)
            return []

        results = await asyncio.gather(*(self._analyze(s) for s in symbols), return_exceptions=True)
        signals: List[Signal] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, DataUnavailable):
                self.scan_logger.warning("skip symbol=%s reason=data_unavailable detail=%s", symbol, result.detail)
            elif isinstance(result, InsufficientHistory):
                self.scan_logger.info(
                    "skip symbol=%s reason=insufficient_history required=%d available=%d",
                    symbol,
                    result.required,
                    result.available,
                )
            elif isinstance(result, BaseException):
                self.scan_logger.error("skip symbol=%s reason=%s error=%s", symbol, type(result).__name__, result)
            else:
                signals.extend(result)
        self.scan_logger.info("scan_complete symbols=%d signals=%d", len(symbols), len(signals))
        return signals

    async def _analyze(self, symbol: str) -> List[Signal]:
        candles = await asyncio.to_thread(self.market.candles, symbol)
        snapshots = compute_snapshots(candles, self.params)
        return self.signal_engine.generate(symbol, snapshots[-1], candles, self.clock.now())

    async def run_cycle(self) -> List[Trade]:
        """One scan: rank signals, plan the top-N, and hand them to the lifecycle."""
        self.cycles += 1
        self.trade_limiter.start_cycle()
        signals = await self.scan()
        for signal in signals:
            try:
                self.sink.save_signal(signal)
            except PersistenceFailure as exc:
                self.signal_logger.error("persist_failed symbol=%s error=%s", signal.symbol, exc)

        selected = self.trade_limiter.select(signals)
        self._publish(
            {
                "type": "signal_refresh",
                "count": len(signals),
                "capital": self.portfolio.capital,
                "signals": [s.to_dict() for s in selected],
            }
        )

        trades: List[Trade] = []
        taken: set[str] = set()
        for signal in selected:
            allowed, reason = self.trade_limiter.allow_open()
            if not allowed:
                self.signal_logger.info("skip signal symbol=%s reason=%s", signal.symbol, reason)
                break
            if signal.symbol in taken or self.portfolio.has_active_symbol(signal.symbol):
                self.signal_logger.info("skip signal symbol=%s reason=active_trade", signal.symbol)
                continue
            try:
                precision = await asyncio.to_thread(self.market.quantity_precision, signal.symbol)
                plan = self.planner.plan(signal, self.portfolio.capital, precision)
            except DataUnavailable as exc:
                self.signal_logger.warning("skip signal symbol=%s reason=data_unavailable detail=%s", signal.symbol, exc.detail)
                continue
            except InvalidSignal as exc:
                self.signal_logger.debug("skip signal symbol=%s reason=%s", signal.symbol, exc.reason)
                continue

            try:
                trade = await self.lifecycle.open(plan)
            except Exception:
                self.scan_logger.exception("open_failed symbol=%s", signal.symbol)
                continue
            trades.append(trade)
            if trade.status is not TradeStatus.FAILED:
                taken.add(signal.symbol)
                self.trade_limiter.mark_trade()
        self.scan_logger.info(
            "cycle=%d selected=%d opened=%d capital=%.6f",
            self.cycles,
            len(selected),
            self.trade_limiter.opened_this_cycle,
            self.portfolio.capital,
        )
        return trades

    async def _tick(self) -> bool:
        await self.run_cycle()
        return bool(self.max_cycles) and self.cycles >= self.max_cycles

    async def run(self, stop: asyncio.Event) -> dict[str, float]:
        """Scan every ``scan_interval_seconds`` until ``stop`` is set or ``max_cycles`` is reached."""
        await self.notifier.start()
        scanner = PeriodicTask(
            clock=self.clock,
            interval=self.scan_interval,
            action=self._tick,
            name="scan",
            logger=self.scan_logger,
        )
        try:
            await scanner.run(stop)
        finally:
            metrics = await self.shutdown()
        return metrics

    async def shutdown(self) -> dict[str, float]:
        """Stop monitors, flush the ledger, print the run summary."""
        metrics = summarize_metrics(
            pnl=self.portfolio.pnl,
            initial_capital=self.initial_capital,
            current_capital=self.portfolio.capital,
            open_trades=len(self.portfolio.active),
        )
        if self._closed:
            return metrics
        self._closed = True
        await self.lifecycle.shutdown()
        self.portfolio.flush()
        await self.notifier.stop()

        print("=== RUN SUMMARY ===")
        for k, v in metrics.items():
            print(f"{k}: {v:.6f}" if isinstance(v, float) else f"{k}: {v}")
        for logger in [self.scan_logger, self.signal_logger, self.lifecycle.logger, self.portfolio.logger]:
            for handler in logger.handlers:
                handler.flush()
        print("Engine shutdown complete.")
        return metrics

    def _publish(self, event: Dict[str, Any]) -> None:
        try:
            self.notifier.publish(event)
        except Exception as exc:
            self.scan_logger.warning("notify_failed type=%s error=%s", event.get("type"), exc)
