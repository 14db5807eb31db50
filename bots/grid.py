"""网格 bot：区间内等距挂单，价格穿越时成交并翻转方向。"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from bots.base import PeriodicBot
from broker.paper_broker import PaperBroker
from market_data.client import MarketDataSource
from shared.models.models import GridConfig, GridOrder, TradeRecord

_EPS = 1e-9


def calculate_grid_levels(lower_price: float, upper_price: float, grid_levels: int) -> list[float]:
    """step = (upper-lower)/(levels+1)，不含上下边界。"""
    step = (upper_price - lower_price) / (grid_levels + 1)
    return [lower_price + step * i for i in range(1, grid_levels + 1)]


def initialize_grid_orders(cfg: GridConfig) -> list[GridOrder]:
    """中点以下挂买单，以上挂卖单。"""
    midpoint = (cfg.lower_price + cfg.upper_price) / 2
    return [
        GridOrder(price=price, side="buy" if price < midpoint else "sell", amount=cfg.amount_per_grid)
        for price in calculate_grid_levels(cfg.lower_price, cfg.upper_price, cfg.grid_levels)
    ]


@dataclass
class GridResult:
    success: bool
    trade: TradeRecord | None = None
    order: GridOrder | None = None
    error: str | None = None
    orders: list[GridOrder] = field(default_factory=list)


def check_grid_orders(cfg: GridConfig, broker: PaperBroker, price: float, now: datetime) -> GridResult:
    """找到第一个被触发且可执行的挂单并成交。

    - 价格在区间外：不动作；
    - 买单需要现金 >= amount；卖单需要持仓 >= amount/price；
    - 成交后该挂单标记 filled 并翻转方向。
    """
    if not cfg.active_orders:
        cfg.active_orders = initialize_grid_orders(cfg)
    if price < cfg.lower_price or price > cfg.upper_price:
        return GridResult(False, error="Price outside grid range", orders=cfg.active_orders)

    with broker.transaction():
        for order in cfg.active_orders:
            if order.filled:
                continue
            if order.side == "buy" and price <= order.price:
                if broker.cash < order.amount:
                    continue
                trade = broker.buy(cfg.symbol, order.amount / price, price, ts=now, notes="Grid buy")
            elif order.side == "sell" and price >= order.price:
                units = order.amount / price
                pos = broker.get_position(cfg.symbol)
                if pos is None or pos.shares + _EPS < units:
                    continue
                trade = broker.sell(cfg.symbol, min(units, pos.shares), price, ts=now, notes="Grid sell")
                cfg.total_profit += trade.profit_loss or 0.0
                cfg.completed_trades += 1
            else:
                continue
            order.filled = True
            order.filled_at = now
            order.side = "sell" if order.side == "buy" else "buy"
            return GridResult(True, trade=trade, order=order, orders=cfg.active_orders)
    return GridResult(False, error="No orders triggered", orders=cfg.active_orders)


def grid_profit(cfg: GridConfig) -> float:
    """按已完成的买卖配对估算网格收益：配对数 × 网格间距 × (每格金额 / 上沿价)。"""
    filled_buys = sum(1 for o in cfg.active_orders if o.filled and o.side == "sell")
    filled_sells = sum(1 for o in cfg.active_orders if o.filled and o.side == "buy")
    pairs = min(filled_buys, filled_sells)
    spacing = (cfg.upper_price - cfg.lower_price) / (cfg.grid_levels + 1)
    return pairs * spacing * (cfg.amount_per_grid / cfg.upper_price)


class GridBot(PeriodicBot):
    name = "grid"

    def __init__(
        self,
        source: MarketDataSource,
        broker: PaperBroker,
        configs: Iterable[GridConfig],
        *,
        interval: float = 30.0,
        initial_delay: float = 3.0,
        **kwargs,
    ):
        super().__init__(interval=interval, initial_delay=initial_delay, **kwargs)
        self.source = source
        self.broker = broker
        self.configs = list(configs)

    async def tick(self, now: datetime) -> None:
        for cfg in self.configs:
            if not cfg.enabled:
                continue
            try:
                price = await asyncio.to_thread(self.source.get_current_price, cfg.symbol)
                if price is None:
                    continue
                result = check_grid_orders(cfg, self.broker, price, now)
            except Exception:
                self.logger.exception("Grid check failed for %s", cfg.symbol)
                continue
            if result.success and result.trade is not None:
                self.logger.info(
                    "Grid %s %.6f %s @ %.4f (realized %.2f)",
                    result.trade.side,
                    result.trade.shares,
                    cfg.symbol,
                    result.trade.price,
                    cfg.total_profit,
                )
