"""Sizer 抽象、构建逻辑与统一的下单数量计算。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from shared.models.models import RuleAction
from shared.utils.precision import floor_to_step

DEFAULT_MIN_NOTIONAL = 10.0


class Sizer(Protocol):
    """Sizer：给出本次下单的目标名义金额（未做现金约束）。"""

    def target_notional(self, *, price: float, cash: float, portfolio_value: float) -> float: ...


@dataclass(frozen=True)
class FixedSharesSizer:
    shares: float

    def target_notional(self, *, price: float, cash: float, portfolio_value: float) -> float:
        return max(0.0, self.shares) * price


def build_sizer(action: RuleAction | None) -> Sizer:
    """按规则的 action 构建 sizer：shares / dollar_amount / percent_of_portfolio。"""
    from sizing.fixed_notional import FixedNotionalSizer
    from sizing.pct_equity import PctEquitySizer

    action = action or RuleAction()
    if action.sizing == "dollar_amount":
        return FixedNotionalSizer(trade_notional=float(action.dollar_amount or 0.0))
    if action.sizing == "percent_of_portfolio":
        return PctEquitySizer(position_pct=float(action.percent_of_portfolio or 0.0))
    return FixedSharesSizer(shares=float(action.shares))


def size_order(
    sizer: Sizer,
    *,
    price: float,
    cash: float,
    portfolio_value: float,
    fractional: bool = False,
    qty_step: float = 1e-6,
    min_notional: float = DEFAULT_MIN_NOTIONAL,
    max_shares: float | None = None,
    margin_ratio: float = 1.0,
) -> float:
    """计算下单数量；名义金额受可用现金约束，低于 min_notional 时返回 0。

    Parameters
    ----------
    fractional:
        True 时按 qty_step 向下取整（加密货币），否则取整股。
    max_shares:
        单笔最大数量（自动交易配置）。
    margin_ratio:
        开空时每 1 元名义需要的现金（1.5 表示 150% 保证金）。
    """
    if price <= 0 or cash <= 0:
        return 0.0
    target = sizer.target_notional(price=price, cash=cash, portfolio_value=portfolio_value)
    notional = min(target, cash / margin_ratio)
    shares = floor_to_step(notional / price, qty_step if fractional else 1.0)
    if max_shares is not None and max_shares > 0:
        shares = min(shares, max_shares)
    if shares <= 0 or shares * price < min_notional:
        return 0.0
    return shares
