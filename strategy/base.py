"""信号策略抽象与参数结构。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Sequence

from pydantic import BaseModel, ConfigDict

from shared.models.models import Candle, Direction

if TYPE_CHECKING:
    from strategy.regime import MarketRegimeAnalysis

Regime = Literal["uptrend", "downtrend", "sideways"]


class EntryRules(BaseModel):
    use_rsi: bool = True
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    use_sma_cross: bool = True
    use_macd: bool = True
    use_bollinger: bool = True
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    min_confidence: float = 50.0
    model_config = ConfigDict(extra="forbid")


class ExitRules(BaseModel):
    take_profit_percent: float = 8.0
    stop_loss_percent: float = 3.0
    trailing_stop_percent: float | None = None
    time_stop_days: float | None = None
    exit_on_regime_change: bool = True
    model_config = ConfigDict(extra="forbid")


class SwingStrategyConfig(BaseModel):
    """某一市场状态下使用的策略参数。"""
    name: str
    regime: Regime
    enabled: bool = True
    direction: Literal["long", "short", "both"] = "long"
    entry_rules: EntryRules = EntryRules()
    exit_rules: ExitRules = ExitRules()
    position_size_percent: float = 10.0
    model_config = ConfigDict(extra="forbid")

    @property
    def allows_long(self) -> bool:
        return self.direction in ("long", "both")

    @property
    def allows_short(self) -> bool:
        return self.direction in ("short", "both")


@dataclass
class TradeSignal:
    """方向性交易信号（含建议入场/止损/止盈）。"""
    symbol: str
    direction: Direction
    regime: Regime
    confidence: float
    suggested_entry: float
    suggested_stop_loss: float
    suggested_take_profit: float
    position_size_percent: float = 0.0
    reasons: list[str] = field(default_factory=list)


class Strategy(ABC):
    @abstractmethod
    def generate(
        self, symbol: str, candles: Sequence[Candle], regime: "MarketRegimeAnalysis"
    ) -> list[TradeSignal]:
        """输入一段 K 线与当前市场状态，输出 0~N 个信号。"""
        ...
