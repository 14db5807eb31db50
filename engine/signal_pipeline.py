"""单品种信号管线：K 线 → 市场状态 → 策略参数 → 信号。

CLI 的 `regime` / `signals` 子命令与波段账户扫描共用这段逻辑。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from shared.models.models import Candle
from strategy.base import SwingStrategyConfig, TradeSignal
from strategy.regime import MarketRegimeAnalysis, RegimeConfig, detect_regime
from strategy.swing import SwingStrategy


@dataclass
class SymbolAnalysis:
    symbol: str
    price: float | None
    regime: MarketRegimeAnalysis
    strategy: SwingStrategyConfig
    signals: list[TradeSignal] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "regime": self.regime.regime,
            "confidence": self.regime.confidence,
            "trend_strength": self.regime.trend_strength,
            "description": self.regime.description,
            "strategy": self.strategy.name,
            "signals": [
                {
                    "direction": s.direction,
                    "confidence": s.confidence,
                    "entry": s.suggested_entry,
                    "stop_loss": s.suggested_stop_loss,
                    "take_profit": s.suggested_take_profit,
                    "position_size_percent": s.position_size_percent,
                    "reasons": list(s.reasons),
                }
                for s in self.signals
            ],
        }


def strategy_overrides(strategies: Iterable[SwingStrategyConfig]) -> dict[str, SwingStrategyConfig]:
    """配置里的策略按 regime 建索引；同一 regime 以最后一条为准。"""
    return {s.regime: s for s in strategies}


def analyze_symbol(
    symbol: str,
    candles: Sequence[Candle],
    regime_cfg: RegimeConfig | None = None,
    overrides: Iterable[SwingStrategyConfig] = (),
) -> SymbolAnalysis:
    regime = detect_regime(candles, regime_cfg)
    strategy = SwingStrategy(strategy_overrides(overrides))
    return SymbolAnalysis(
        symbol=symbol,
        price=candles[-1].close if candles else None,
        regime=regime,
        strategy=strategy.config_for(regime),
        signals=strategy.generate(symbol, candles, regime),
    )


def suggested_shares(signal: TradeSignal, equity: float, max_position_size_percent: float = 100.0) -> float:
    """信号建议仓位（占权益百分比）换算成股数，不超过单仓上限。"""
    if signal.suggested_entry <= 0:
        return 0.0
    pct = min(signal.position_size_percent, max_position_size_percent)
    return equity * pct / 100.0 / signal.suggested_entry
