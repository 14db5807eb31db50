"""配置架构定义（Pydantic Schema）。

- 配置是强类型的边界协议，启动阶段尽早失败；
- 规则条目引用 `RiskProfile` 预设名，其余扁平字段自动收进 `overrides`。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from strategy.base import SwingStrategyConfig
from strategy.regime import RegimeConfig


class BacktestSettings(BaseModel):
    """回测默认参数（CLI 参数可覆盖）。"""
    data_dir: str = "dataset/history"
    output_dir: str = "results"
    initial_capital: float = 10000.0
    position_size_percent: float = 10.0
    intraday: bool = False
    interval: str = "1d"
    holding_unit: Literal["days", "hours"] = "days"
    use_rule_exits: bool = True
    model_config = ConfigDict(extra="forbid")


class AutoTradeConfig(BaseModel):
    """自动交易总闸。"""
    enabled: bool = True
    max_trades_per_day: int = 10
    max_position_size: Optional[float] = None
    trading_hours_only: bool = False
    timezone: str = "America/New_York"
    min_notional: float = 10.0
    fractional: bool = True
    model_config = ConfigDict(extra="forbid")


class MarketDataConfig(BaseModel):
    provider: Literal["fake", "binance"] = "fake"
    base_url: str = "https://api.binance.com"
    timeout: float = 10.0
    interval: str = "1m"
    candles: int = 100
    seed: int = 7
    model_config = ConfigDict(extra="forbid")


class BotSchedule(BaseModel):
    enabled: bool = True
    interval_seconds: float = 60.0
    initial_delay_seconds: float = 5.0
    model_config = ConfigDict(extra="forbid")


class BotsConfig(BaseModel):
    dca: BotSchedule = Field(default_factory=lambda: BotSchedule(interval_seconds=60, initial_delay_seconds=5))
    grid: BotSchedule = Field(default_factory=lambda: BotSchedule(interval_seconds=30, initial_delay_seconds=3))
    scanner: BotSchedule = Field(default_factory=lambda: BotSchedule(interval_seconds=60, initial_delay_seconds=5))
    monitor: BotSchedule = Field(default_factory=lambda: BotSchedule(interval_seconds=30, initial_delay_seconds=5))
    watchlist: List[str] = Field(default_factory=list)
    scan_batch_size: int = Field(default=8, ge=1)
    symbol_delay_seconds: float = 0.5
    model_config = ConfigDict(extra="forbid")


class RuleSpec(BaseModel):
    """规则条目：profile + 少量覆盖项。

    YAML 里可以直接写 `stop_loss_percent: 2`，校验前会被收进 `overrides`。
    """
    symbol: str
    direction: Literal["buy", "sell", "short", "cover"] = "buy"
    trigger: Literal["pattern", "indicator_crossover"] = "pattern"
    pattern: Optional[str] = None
    profile: Optional[str] = None
    name: str = ""
    enabled: bool = True
    macd: Optional[Dict[str, Any]] = None
    overrides: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack_overrides(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = set(cls.model_fields)
        extra = {k: v for k, v in data.items() if k not in known}
        if not extra:
            return data
        packed = {k: v for k, v in data.items() if k in known}
        packed["overrides"] = {**extra, **(data.get("overrides") or {})}
        return packed


class DCASpec(BaseModel):
    symbol: str
    amount: float = Field(gt=0)
    interval: Literal["hourly", "daily", "weekly"] = "daily"
    enabled: bool = True
    model_config = ConfigDict(extra="forbid")


class GridSpec(BaseModel):
    symbol: str
    lower_price: float = Field(gt=0)
    upper_price: float = Field(gt=0)
    grid_levels: int = Field(default=10, ge=1)
    amount_per_grid: float = Field(gt=0)
    enabled: bool = True
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_range(self) -> "GridSpec":
        if self.lower_price >= self.upper_price:
            raise ValueError("grid lower_price must be below upper_price")
        return self


class StateConfig(BaseModel):
    """本地记录存储（SQLite）配置。"""
    enabled: bool = True
    path: str = "dataset/state/store.sqlite3"
    trade_log_dir: Optional[str] = "dataset/trades"
    model_config = ConfigDict(extra="forbid")


class SwingAccountConfig(BaseModel):
    initial_capital: float = 5000.0
    goal: float = 10000.0
    months: int = 24
    max_positions: int = 3
    max_position_size_percent: float = 20.0
    symbols: List[str] = Field(default_factory=list)
    strategies: List[SwingStrategyConfig] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")


class PortfolioConfig(BaseModel):
    initial_cash: float = 10000.0
    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    auto_trade: AutoTradeConfig = Field(default_factory=AutoTradeConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    bots: BotsConfig = Field(default_factory=BotsConfig)
    rules: List[RuleSpec] = Field(default_factory=list)
    dca: List[DCASpec] = Field(default_factory=list)
    grid: List[GridSpec] = Field(default_factory=list)
    state: StateConfig = Field(default_factory=StateConfig)
    swing: SwingAccountConfig = Field(default_factory=SwingAccountConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
