"""持仓退出条件。

每次价格更新：先刷新最高/最低价，再按固定优先级判断，命中第一个即返回：
止盈 → 止损 → 移动止损（价格曾向有利方向越过入场价后才生效）→ 时间止损 → 状态反转。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from shared.models.models import Position, TradingRule
from strategy.regime import regime_flipped


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    TIME_STOP = "time_stop"
    REGIME_CHANGE = "regime_change"
    SIGNAL = "signal"
    MANUAL = "manual"
    END_OF_PERIOD = "end_of_period"


class PositionState(str, Enum):
    OPEN = "open"
    CLOSED_TAKE_PROFIT = "closed_take_profit"
    CLOSED_STOP_LOSS = "closed_stop_loss"
    CLOSED_TRAILING_STOP = "closed_trailing_stop"
    CLOSED_TIME_STOP = "closed_time_stop"
    CLOSED_REGIME_CHANGE = "closed_regime_change"
    CLOSED_MANUAL = "closed_manual"


def closed_state(reason: ExitReason) -> PositionState:
    """退出原因对应的终态；信号平仓/期末平仓都归入手动平仓。"""
    try:
        return PositionState(f"closed_{reason.value}")
    except ValueError:
        return PositionState.CLOSED_MANUAL


@dataclass(frozen=True)
class ExitRules:
    take_profit_percent: float | None = None
    stop_loss_percent: float | None = None
    trailing_stop_percent: float | None = None
    time_stop_days: float | None = None
    exit_on_regime_change: bool = False

    @classmethod
    def from_rule(cls, rule: TradingRule) -> "ExitRules":
        return cls(
            take_profit_percent=rule.take_profit_percent,
            stop_loss_percent=rule.stop_loss_percent,
            trailing_stop_percent=rule.trailing_stop_percent,
            time_stop_days=rule.time_stop_days,
            exit_on_regime_change=rule.exit_on_regime_change,
        )

    @property
    def is_empty(self) -> bool:
        return (
            not self.take_profit_percent
            and not self.stop_loss_percent
            and not self.trailing_stop_percent
            and self.time_stop_days is None
            and not self.exit_on_regime_change
        )


@dataclass(frozen=True)
class PositionTargets:
    take_profit_price: float | None
    stop_loss_price: float | None
    trailing_stop_price: float | None
    trailing_armed: bool


def _pct(value: float | None) -> float | None:
    return value / 100.0 if value and value > 0 else None


def compute_targets(position: Position, rules: ExitRules) -> PositionTargets:
    """按入场价与持仓期间极值计算各触发价。空头方向的止损在入场价上方，移动止损跟随最低价。"""
    entry = position.entry_price
    tp, sl, trail = _pct(rules.take_profit_percent), _pct(rules.stop_loss_percent), _pct(rules.trailing_stop_percent)
    if position.direction == "short":
        return PositionTargets(
            take_profit_price=entry * (1 - tp) if tp else None,
            stop_loss_price=entry * (1 + sl) if sl else None,
            trailing_stop_price=position.lowest_price * (1 + trail) if trail else None,
            trailing_armed=position.lowest_price < entry,
        )
    return PositionTargets(
        take_profit_price=entry * (1 + tp) if tp else None,
        stop_loss_price=entry * (1 - sl) if sl else None,
        trailing_stop_price=position.highest_price * (1 - trail) if trail else None,
        trailing_armed=position.highest_price > entry,
    )


def days_held(position: Position, now: datetime) -> float:
    if position.entry_date is None:
        return 0.0
    return (now - position.entry_date).total_seconds() / 86400.0


def evaluate_exit(
    position: Position,
    price: float,
    now: datetime,
    rules: ExitRules,
    current_regime: str | None = None,
) -> ExitReason | None:
    """判断是否触发退出（不修改持仓）。"""
    targets = compute_targets(position, rules)
    short = position.direction == "short"

    if targets.take_profit_price is not None:
        if (price <= targets.take_profit_price) if short else (price >= targets.take_profit_price):
            return ExitReason.TAKE_PROFIT
    if targets.stop_loss_price is not None:
        if (price >= targets.stop_loss_price) if short else (price <= targets.stop_loss_price):
            return ExitReason.STOP_LOSS
    if targets.trailing_stop_price is not None and targets.trailing_armed:
        if (price >= targets.trailing_stop_price) if short else (price <= targets.trailing_stop_price):
            return ExitReason.TRAILING_STOP
    if rules.time_stop_days is not None and days_held(position, now) >= rules.time_stop_days:
        return ExitReason.TIME_STOP
    if rules.exit_on_regime_change and current_regime is not None:
        if regime_flipped(position.direction, position.origin_regime, current_regime):
            return ExitReason.REGIME_CHANGE
    return None
