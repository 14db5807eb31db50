"""核心数据结构：Candle/TradingRule/Position/CompletedTrade 等。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from uuid import uuid4

Direction = Literal["long", "short"]
RuleDirection = Literal["buy", "sell", "short", "cover"]
Trigger = Literal["pattern", "indicator_crossover"]
SignalSide = Literal["buy", "sell"]
DCAInterval = Literal["hourly", "daily", "weekly"]


def _new_id() -> str:
    return uuid4().hex


@dataclass
class Candle:
    """K 线数据（按时间从旧到新排列）。"""
    ts: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    symbol: str = ""


@dataclass
class RsiFilter:
    enabled: bool = False
    period: int = 14
    min_rsi: float | None = None
    max_rsi: float | None = None


@dataclass
class VolumeFilter:
    enabled: bool = False
    min_multiplier: float = 1.5


@dataclass
class MacdSettings:
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9
    crossover_type: Literal["bullish", "bearish"] = "bullish"


@dataclass
class RuleAction:
    """下单规模：固定股数 / 固定金额 / 组合百分比。"""
    sizing: Literal["shares", "dollar_amount", "percent_of_portfolio"] = "shares"
    shares: float = 10.0
    dollar_amount: float | None = None
    percent_of_portfolio: float | None = None


@dataclass
class TradingRule:
    """用户配置的交易规则。"""
    symbol: str
    direction: RuleDirection = "buy"
    trigger: Trigger = "pattern"
    pattern: str | None = None
    id: str = field(default_factory=_new_id)
    name: str = ""
    enabled: bool = True
    take_profit_percent: float | None = None
    stop_loss_percent: float | None = None
    trailing_stop_percent: float | None = None
    time_stop_days: float | None = None
    exit_on_regime_change: bool = False
    cooldown_minutes: float = 0.0
    min_confidence: float | None = None
    rsi_filter: RsiFilter = field(default_factory=RsiFilter)
    volume_filter: VolumeFilter = field(default_factory=VolumeFilter)
    macd_settings: MacdSettings | None = None
    action: RuleAction = field(default_factory=RuleAction)
    auto_trade: bool = False
    last_executed_at: datetime | None = None

    @property
    def is_entry(self) -> bool:
        return self.direction in ("buy", "short")

    @property
    def position_direction(self) -> Direction:
        """该规则作用的持仓方向（buy/sell → long，short/cover → short）。"""
        return "short" if self.direction in ("short", "cover") else "long"


@dataclass
class PatternMatch:
    """形态/指标交叉检测结果。"""
    pattern: str
    signal: SignalSide
    confidence: float
    trigger: Trigger = "pattern"


@dataclass
class Position:
    """持仓（多头或空头）。

    Notes
    -----
    持仓期间 highest_price 只增不减，lowest_price 只减不增（见 `mark`）。
    """
    symbol: str
    shares: float
    entry_price: float
    direction: Direction = "long"
    entry_date: datetime | None = None
    current_price: float = 0.0
    highest_price: float = 0.0
    lowest_price: float = 0.0
    origin_regime: str | None = None
    rule_id: str | None = None
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        if not self.current_price:
            self.current_price = self.entry_price
        if not self.highest_price:
            self.highest_price = self.entry_price
        if not self.lowest_price:
            self.lowest_price = self.entry_price

    def mark(self, price: float) -> None:
        """刷新现价与持仓期间的最高/最低价。"""
        self.current_price = price
        self.highest_price = max(self.highest_price, price)
        self.lowest_price = min(self.lowest_price, price)

    @property
    def market_value(self) -> float:
        """盯市价值：多头为市值，空头为浮动盈亏（开空时现金不变）。"""
        if self.direction == "short":
            return (self.entry_price - self.current_price) * self.shares
        return self.shares * self.current_price


@dataclass
class CompletedTrade:
    """已平仓交易。"""
    symbol: str
    direction: Direction
    shares: float
    entry_price: float
    entry_date: datetime
    exit_price: float
    exit_date: datetime
    profit_loss: float
    profit_loss_percent: float
    holding_period: int
    exit_reason: str
    rule_id: str | None = None
    rule_name: str = ""


@dataclass
class EquityPoint:
    date: datetime
    equity: float


@dataclass
class Alert:
    symbol: str
    pattern: str
    signal: Literal["buy", "sell", "short"]
    confidence: float
    timestamp: datetime
    message: str = ""
    rule_id: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class TradeRecord:
    """成交流水。"""
    symbol: str
    side: RuleDirection
    shares: float
    price: float
    timestamp: datetime
    notes: str = ""
    profit_loss: float | None = None
    id: str = field(default_factory=_new_id)

    @property
    def total(self) -> float:
        return self.shares * self.price


@dataclass
class ExecutionRecord:
    """一次自动执行的结果（executed / failed）。"""
    rule_id: str
    symbol: str
    action: RuleDirection
    shares: float
    price: float
    status: Literal["executed", "failed"]
    timestamp: datetime
    error: str | None = None


@dataclass
class DCAConfig:
    symbol: str
    amount: float
    interval: DCAInterval = "daily"
    next_execution: datetime | None = None
    last_executed: datetime | None = None
    enabled: bool = True
    total_invested: float = 0.0
    total_units: float = 0.0
    id: str = field(default_factory=_new_id)


@dataclass
class GridOrder:
    price: float
    side: SignalSide
    amount: float
    filled: bool = False
    filled_at: datetime | None = None


@dataclass
class GridConfig:
    symbol: str
    lower_price: float
    upper_price: float
    grid_levels: int
    amount_per_grid: float
    enabled: bool = True
    active_orders: list[GridOrder] = field(default_factory=list)
    total_profit: float = 0.0
    completed_trades: int = 0
    id: str = field(default_factory=_new_id)
