"""定投（DCA）bot：到期时按固定金额市价买入。"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from bots.base import PeriodicBot
from broker.paper_broker import PaperBroker
from market_data.client import MarketDataSource
from shared.errors import InsufficientBalance
from shared.models.models import DCAConfig, DCAInterval, TradeRecord


def next_execution_time(interval: DCAInterval, from_: datetime) -> datetime:
    """hourly：下一个整点；daily：次日 9 点；weekly：7 天后 9 点。"""
    if interval == "hourly":
        return from_.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    if interval == "daily":
        return (from_ + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
    if interval == "weekly":
        return (from_ + timedelta(days=7)).replace(hour=9, minute=0, second=0, microsecond=0)
    raise ValueError(f"Unknown DCA interval: {interval}")


def is_dca_due(cfg: DCAConfig, now: datetime) -> bool:
    if not cfg.enabled:
        return False
    if cfg.last_executed is None:
        return True
    due = cfg.next_execution or next_execution_time(cfg.interval, cfg.last_executed)
    return now >= due


@dataclass
class DCAResult:
    success: bool
    trade: TradeRecord | None = None
    error: str | None = None


def execute_dca(cfg: DCAConfig, broker: PaperBroker, price: float | None, now: datetime) -> DCAResult:
    """买入 cfg.amount 金额；持仓成本按加权平均更新（由 broker 完成）。"""
    with broker.transaction():
        if broker.cash < cfg.amount:
            return DCAResult(False, error=f"Insufficient balance: ${broker.cash:.2f} < ${cfg.amount}")
        if not price or price <= 0:
            return DCAResult(False, error=f"Failed to fetch price for {cfg.symbol}")
        units = cfg.amount / price
        try:
            trade = broker.buy(cfg.symbol, units, price, ts=now, notes=f"DCA {cfg.interval}")
        except InsufficientBalance as exc:
            return DCAResult(False, error=str(exc))
        cfg.last_executed = now
        cfg.next_execution = next_execution_time(cfg.interval, now)
        cfg.total_invested += cfg.amount
        cfg.total_units += units
        return DCAResult(True, trade=trade)


class DCABot(PeriodicBot):
    name = "dca"

    def __init__(
        self,
        source: MarketDataSource,
        broker: PaperBroker,
        configs: Iterable[DCAConfig],
        *,
        interval: float = 60.0,
        initial_delay: float = 5.0,
        **kwargs,
    ):
        super().__init__(interval=interval, initial_delay=initial_delay, **kwargs)
        self.source = source
        self.broker = broker
        self.configs = list(configs)
        self.results: list[DCAResult] = []

    async def tick(self, now: datetime) -> None:
        for cfg in self.configs:
            if not is_dca_due(cfg, now):
                continue
            try:
                price = await asyncio.to_thread(self.source.get_current_price, cfg.symbol)
                result = execute_dca(cfg, self.broker, price, now)
            except Exception:
                self.logger.exception("DCA failed for %s", cfg.symbol)
                continue
            self.results.append(result)
            if result.success and result.trade is not None:
                self.logger.info(
                    "DCA bought %.6f %s @ %.4f, next at %s",
                    result.trade.shares,
                    cfg.symbol,
                    result.trade.price,
                    cfg.next_execution.isoformat() if cfg.next_execution else "-",
                )
            else:
                self.logger.error("DCA skipped for %s: %s", cfg.symbol, result.error)
