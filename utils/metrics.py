"""回测绩效指标计算。"""

from __future__ import annotations

import math
from datetime import datetime
from statistics import mean, median, pstdev
from typing import Iterable, Sequence

from shared.models.models import CompletedTrade, EquityPoint


def _equity_values(equity_curve: Iterable[EquityPoint | float]) -> list[float]:
    return [p.equity if isinstance(p, EquityPoint) else float(p) for p in equity_curve]


def compute_drawdown(equity: Sequence[float], initial_capital: float | None = None) -> tuple[float, float]:
    """最大回撤（绝对值, 百分比）。

    峰值从 initial_capital（或首个权益点）开始，只增不减；
    绝对值与百分比分别取整条曲线上的最大值。
    """
    if not equity:
        return 0.0, 0.0
    peak = initial_capital if initial_capital is not None else equity[0]
    max_dd = 0.0
    max_dd_pct = 0.0
    for eq in equity:
        peak = max(peak, eq)
        dd = peak - eq
        max_dd = max(max_dd, dd)
        if peak > 0:
            max_dd_pct = max(max_dd_pct, dd / peak * 100.0)
    return max_dd, max_dd_pct


def _annualization_factor(times: list[datetime]) -> float:
    """根据权益点的时间间隔估计 Sharpe 年化因子。"""
    deltas = [(b - a).total_seconds() for a, b in zip(times, times[1:]) if (b - a).total_seconds() > 0]
    if not deltas:
        return math.sqrt(365)
    med = median(deltas)
    return math.sqrt(365 * (86400 / med))


def compute_sharpe(equity_curve: Sequence[EquityPoint]) -> float:
    points = sorted(equity_curve, key=lambda p: p.date)
    returns = [b.equity / a.equity - 1 for a, b in zip(points, points[1:]) if a.equity > 0]
    if len(returns) < 2:
        return 0.0
    sigma = pstdev(returns)
    if not sigma:
        return 0.0
    return mean(returns) / sigma * _annualization_factor([p.date for p in points])


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    """毛利/毛损；无亏损时有盈利返回 inf，否则 0（不会出现 NaN）。"""
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float("inf") if gross_profit > 0 else 0.0


def compute_metrics(
    trades: Iterable[CompletedTrade],
    equity_curve: Iterable[EquityPoint | float] = (),
    *,
    initial_capital: float | None = None,
    final_capital: float | None = None,
) -> dict:
    """由已平仓交易与权益曲线计算汇总指标。

    Parameters
    ----------
    trades:
        已平仓交易。
    equity_curve:
        `EquityPoint` 序列，或直接给权益数值序列。
    initial_capital / final_capital:
        期初/期末资金；缺省时分别取曲线首点与末点（再退化为交易盈亏之和）。

    Returns
    -------
    dict
        win_rate / profit_factor / max_drawdown / total_return 等字段。
    """
    trades = list(trades)
    points = list(equity_curve)
    equity = _equity_values(points)

    pnls = [t.profit_loss for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))

    start = initial_capital if initial_capital is not None else (equity[0] if equity else 0.0)
    if final_capital is not None:
        end = final_capital
    elif equity:
        end = equity[-1]
    else:
        end = start + sum(pnls)

    max_dd, max_dd_pct = compute_drawdown(equity, initial_capital)
    dated = [p for p in points if isinstance(p, EquityPoint)]

    return {
        "total_trades": len(trades),
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": len(wins) / len(trades) * 100.0 if trades else 0.0,
        "profit_factor": profit_factor(gross_profit, gross_loss),
        "average_win": mean(wins) if wins else 0.0,
        "average_loss": abs(mean(losses)) if losses else 0.0,
        "largest_win": max(wins) if wins else 0.0,
        "largest_loss": abs(min(losses)) if losses else 0.0,
        "max_drawdown": max_dd,
        "max_drawdown_percent": max_dd_pct,
        "average_holding_period": mean(t.holding_period for t in trades) if trades else 0.0,
        "initial_capital": start,
        "final_capital": end,
        "total_return": end - start,
        "total_return_percent": (end - start) / start * 100.0 if start else 0.0,
        "sharpe": compute_sharpe(dated) if len(dated) == len(points) else 0.0,
    }
