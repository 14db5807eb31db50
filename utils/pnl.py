"""盈亏计算。"""

from __future__ import annotations

from typing import Iterable, Mapping

from shared.models.models import Direction, Position


def realized_pnl(direction: Direction, entry_price: float, exit_price: float, shares: float) -> float:
    """多头 (exit-entry)*shares，空头 (entry-exit)*shares。"""
    if direction == "short":
        return (entry_price - exit_price) * shares
    return (exit_price - entry_price) * shares


def pnl_percent(direction: Direction, entry_price: float, exit_price: float) -> float:
    if not entry_price:
        return 0.0
    if direction == "short":
        return (entry_price - exit_price) / entry_price * 100.0
    return (exit_price - entry_price) / entry_price * 100.0


def compute_unrealized_pnl(positions: Iterable[Position], last_prices: Mapping[str, float]) -> float:
    """按最新价计算未实现盈亏，缺价的品种按持仓现价计。"""
    pnl = 0.0
    for pos in positions:
        price = last_prices.get(pos.symbol, pos.current_price)
        pnl += realized_pnl(pos.direction, pos.entry_price, price, pos.shares)
    return pnl
