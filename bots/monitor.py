"""持仓监控 bot：按现价评估每个持仓的止盈/止损/移动止损/时间止损。

规则要求状态反转离场时，另取一段 K 线识别当前市场状态。
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from bots.base import PeriodicBot
from broker.paper_broker import PaperBroker
from lifecycle.exits import ExitRules
from lifecycle.manager import PositionLifecycleManager
from market_data.client import MarketDataSource
from rules.engine import RuleEngine
from shared.models.models import CompletedTrade, Position, TradingRule
from strategy.regime import RegimeConfig, detect_regime


class PositionMonitor(PeriodicBot):
    name = "monitor"

    def __init__(
        self,
        source: MarketDataSource,
        broker: PaperBroker,
        lifecycle: PositionLifecycleManager,
        engine: RuleEngine,
        *,
        regime_cfg: RegimeConfig | None = None,
        candle_interval: str = "1m",
        candles: int = 100,
        interval: float = 30.0,
        initial_delay: float = 5.0,
        **kwargs,
    ):
        super().__init__(interval=interval, initial_delay=initial_delay, **kwargs)
        self.source = source
        self.broker = broker
        self.lifecycle = lifecycle
        self.engine = engine
        self.regime_cfg = regime_cfg or RegimeConfig()
        self.candle_interval = candle_interval
        self.candle_count = max(candles, self.regime_cfg.lookback_days)
        self.closed: list[CompletedTrade] = []

    def rule_for(self, position: Position) -> TradingRule | None:
        """开仓规则优先；找不到时按品种和方向匹配一条入场规则。"""
        if position.rule_id:
            rule = self.engine.get_rule(position.rule_id)
            if rule is not None:
                return rule
        for rule in self.engine.rules:
            if rule.symbol == position.symbol and rule.is_entry and rule.position_direction == position.direction:
                return rule
        return None

    async def current_regime(self, symbol: str) -> str | None:
        candles = await asyncio.to_thread(self.source.get_candles, symbol, self.candle_interval, self.candle_count)
        return detect_regime(candles, self.regime_cfg).regime if candles else None

    async def check_position(self, position: Position, now: datetime) -> CompletedTrade | None:
        rule = self.rule_for(position)
        if rule is None:
            return None
        exits = ExitRules.from_rule(rule)
        if exits.is_empty:
            return None
        price = await asyncio.to_thread(self.source.get_current_price, position.symbol)
        if price is None:
            return None
        current_regime = None
        if exits.exit_on_regime_change:
            current_regime = await self.current_regime(position.symbol)
        if self.broker.get_position(position.symbol, position.direction) is not position:
            # 等待行情期间已被其他路径平仓
            return None
        trade = self.lifecycle.process(position, price, now, exits, current_regime, rule_name=rule.name)
        if trade is not None:
            self.closed.append(trade)
        return trade

    async def tick(self, now: datetime) -> None:
        positions = self.broker.open_positions()
        if positions:
            self.logger.info(
                "Monitoring %d positions, cash %.2f, equity %.2f",
                len(positions),
                self.broker.cash,
                self.broker.equity(),
            )
        for position in positions:
            try:
                await self.check_position(position, now)
            except Exception:
                self.logger.exception("Position check failed for %s", position.symbol)
