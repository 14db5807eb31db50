"""纸面交易引擎（TradingEngine）。

流程：配置 → 组合/风控/规则引擎 → 行情源 → 各 bot 在同一事件循环上定时运行 → 状态落盘 → 总结。
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Any

from bots.base import Clock, PeriodicBot
from bots.dca import DCABot
from bots.grid import GridBot, initialize_grid_orders
from bots.monitor import PositionMonitor
from bots.scanner import PatternScanner
from broker.paper_broker import PaperBroker
from engine.base_engine import BaseEngine, EngineResult
from lifecycle.manager import PositionLifecycleManager
from market_data.client import MarketDataSource, get_market_data
from patterns.base import PatternDetector
from patterns.registry import build_detector
from risk.manager import RiskManager
from rules.engine import RuleEngine
from rules.profiles import build_rule
from shared.config.config_loader import DEFAULT_CONFIG_PATH, load_config
from shared.config.schema import BotSchedule, DCASpec, GridSpec, MainConfig, RuleSpec
from shared.models.models import DCAConfig, GridConfig, TradingRule
from shared.state.codec import dca_from_record, grid_from_record, position_from_record, rule_from_record, to_record
from shared.state.store import RecordStore
from shared.utils.logging import setup_logger
from shared.utils.record_id import make_record_id
from utils.trade_logger import TradeLogger

PORTFOLIO_ID = "main"


def rule_from_spec(spec: RuleSpec) -> TradingRule:
    return build_rule(
        spec.symbol,
        direction=spec.direction,
        trigger=spec.trigger,
        pattern=spec.pattern,
        profile=spec.profile,
        name=spec.name,
        macd_settings=spec.macd,
        enabled=spec.enabled,
        **spec.overrides,
    )


def dca_from_spec(spec: DCASpec) -> DCAConfig:
    return DCAConfig(
        symbol=spec.symbol,
        amount=spec.amount,
        interval=spec.interval,
        enabled=spec.enabled,
        id=make_record_id("dca", spec.symbol, spec.interval, spec.amount),
    )


def grid_from_spec(spec: GridSpec) -> GridConfig:
    cfg = GridConfig(
        symbol=spec.symbol,
        lower_price=spec.lower_price,
        upper_price=spec.upper_price,
        grid_levels=spec.grid_levels,
        amount_per_grid=spec.amount_per_grid,
        enabled=spec.enabled,
        id=make_record_id("grid", spec.symbol, spec.lower_price, spec.upper_price, spec.grid_levels),
    )
    cfg.active_orders = initialize_grid_orders(cfg)
    return cfg


class TradingEngine(BaseEngine):
    """在一个 asyncio 事件循环上运行 DCA / 网格 / 形态扫描 / 持仓监控。

    Parameters
    ----------
    max_ticks:
        每个 bot 最多触发的次数；None 表示一直运行直到被取消。
    store:
        记录存储；缺省按 `cfg.state` 打开（disabled 时不落盘）。
    """

    def __init__(
        self,
        *,
        cfg_path: str = DEFAULT_CONFIG_PATH,
        cfg_obj: MainConfig | None = None,
        max_ticks: int | None = None,
        source: MarketDataSource | None = None,
        detector: PatternDetector | None = None,
        store: RecordStore | None = None,
        clock: Clock | None = None,
    ):
        self.cfg = cfg_obj or load_config(cfg_path)
        self.max_ticks = max_ticks
        self.clock = clock
        self.logger = setup_logger("engine")

        self.store = store
        self._owns_store = False
        if self.store is None and self.cfg.state.enabled:
            self.store = RecordStore(self.cfg.state.path)
            self._owns_store = True

        trade_logger = None
        if self.cfg.state.enabled and self.cfg.state.trade_log_dir:
            trade_logger = TradeLogger(self.cfg.state.trade_log_dir)
        self.broker = PaperBroker(self.cfg.portfolio.initial_cash, trade_logger=trade_logger)
        self.risk = RiskManager(self.cfg.auto_trade)
        self.rule_engine = RuleEngine(
            self.broker,
            [rule_from_spec(s) for s in self.cfg.rules],
            risk=self.risk,
            auto_trade_cfg=self.cfg.auto_trade,
            regime_cfg=self.cfg.regime,
        )
        self.lifecycle = PositionLifecycleManager(self.broker)
        self.source = source or get_market_data(self.cfg.market_data)
        self.detector = detector or build_detector(None)
        self.dca_configs = [dca_from_spec(s) for s in self.cfg.dca]
        self.grid_configs = [grid_from_spec(s) for s in self.cfg.grid]

        self.restore_state()
        self.bots = self._build_bots()

    # ---- 状态 ----
    def restore_state(self) -> None:
        """把存储中的运行状态挂回当前配置；参数以配置为准。"""
        if self.store is None:
            return
        for rule in self.rule_engine.rules:
            record = self.store.load("rule", rule.id)
            if record is not None:
                rule.last_executed_at = rule_from_record(record).last_executed_at
        for cfg in self.dca_configs:
            record = self.store.load("dca", cfg.id)
            if record is not None:
                saved = dca_from_record(record)
                cfg.last_executed = saved.last_executed
                cfg.next_execution = saved.next_execution
                cfg.total_invested = saved.total_invested
                cfg.total_units = saved.total_units
        for cfg in self.grid_configs:
            record = self.store.load("grid", cfg.id)
            if record is not None:
                saved = grid_from_record(record)
                cfg.active_orders = saved.active_orders or cfg.active_orders
                cfg.total_profit = saved.total_profit
                cfg.completed_trades = saved.completed_trades
        portfolio = self.store.load("portfolio", PORTFOLIO_ID)
        if portfolio is not None:
            with self.broker.transaction():
                self.broker.cash = float(portfolio["cash"])
                self.broker.realized_pnl_all = float(portfolio.get("realized_pnl_all", 0.0))
                for item in portfolio.get("positions") or []:
                    self.broker.restore_position(position_from_record(item))
            self.logger.info(
                "Restored portfolio: cash %.2f, %d open positions",
                self.broker.cash,
                len(self.broker.open_positions()),
            )

    def save_state(self) -> None:
        if self.store is None:
            return
        for rule in self.rule_engine.rules:
            self.store.save("rule", rule.id, to_record(rule))
        for cfg in self.dca_configs:
            self.store.save("dca", cfg.id, to_record(cfg))
        for cfg in self.grid_configs:
            self.store.save("grid", cfg.id, to_record(cfg))
        with self.broker.transaction():
            payload = {
                "cash": self.broker.cash,
                "realized_pnl_all": self.broker.realized_pnl_all,
                "positions": [to_record(p) for p in self.broker.open_positions()],
            }
        self.store.save("portfolio", PORTFOLIO_ID, payload)

    # ---- bots ----
    def _bot_kwargs(self, schedule: BotSchedule) -> dict[str, Any]:
        return {
            "interval": schedule.interval_seconds,
            "initial_delay": schedule.initial_delay_seconds,
            "clock": self.clock,
        }

    def _build_bots(self) -> list[PeriodicBot]:
        bots_cfg = self.cfg.bots
        bots: list[PeriodicBot] = []
        if bots_cfg.dca.enabled and self.dca_configs:
            bots.append(DCABot(self.source, self.broker, self.dca_configs, **self._bot_kwargs(bots_cfg.dca)))
        if bots_cfg.grid.enabled and self.grid_configs:
            bots.append(GridBot(self.source, self.broker, self.grid_configs, **self._bot_kwargs(bots_cfg.grid)))
        if bots_cfg.scanner.enabled and (self.rule_engine.rules or bots_cfg.watchlist):
            bots.append(
                PatternScanner(
                    self.source,
                    self.rule_engine,
                    self.detector,
                    watchlist=bots_cfg.watchlist,
                    batch_size=bots_cfg.scan_batch_size,
                    candle_interval=self.cfg.market_data.interval,
                    candles=self.cfg.market_data.candles,
                    symbol_delay=bots_cfg.symbol_delay_seconds,
                    **self._bot_kwargs(bots_cfg.scanner),
                )
            )
        if bots_cfg.monitor.enabled:
            bots.append(
                PositionMonitor(
                    self.source,
                    self.broker,
                    self.lifecycle,
                    self.rule_engine,
                    regime_cfg=self.cfg.regime,
                    candle_interval=self.cfg.market_data.interval,
                    candles=self.cfg.market_data.candles,
                    **self._bot_kwargs(bots_cfg.monitor),
                )
            )
        return bots

    async def run_async(self) -> EngineResult:
        self.logger.info("Starting %d bots: %s", len(self.bots), ", ".join(b.name for b in self.bots))
        try:
            tasks = [bot.start(self.max_ticks) for bot in self.bots]
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for bot in self.bots:
                await bot.stop()
            self.save_state()
            if self._owns_store and self.store is not None:
                self.store.close()
        return EngineResult(summary=self._build_summary())

    def run(self) -> EngineResult:
        return asyncio.run(self.run_async())

    def _build_summary(self) -> dict[str, Any]:
        return {
            "bots": {b.name: {"ticks": b.ticks, "skipped": b.skipped} for b in self.bots},
            "cash": self.broker.cash,
            "equity": self.broker.equity(),
            "open_positions": [asdict(p) for p in self.broker.open_positions()],
            "realized_pnl_all": self.broker.realized_pnl_all,
            "alerts": len(self.rule_engine.alerts),
            "executions": len(self.broker.executions),
            "completed_trades": len(self.rule_engine.completed_trades)
            + sum(len(b.closed) for b in self.bots if isinstance(b, PositionMonitor)),
        }
