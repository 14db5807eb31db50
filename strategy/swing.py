"""按市场状态打分的波段信号生成器，以及波段账户的辅助计算。

Notes
-----
置信度由若干独立条件累加得到（+30/+25/+25/+30 等），权重为人工经验值，
未经统计验证；保持原样以便不同实现之间结果一致。
"""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from factors.indicators import bollinger_bands, macd
from shared.models.models import Candle, CompletedTrade, Direction, Position
from strategy.base import Strategy, SwingStrategyConfig, TradeSignal
from strategy.presets import get_strategy_for_regime
from strategy.regime import MarketRegimeAnalysis


def generate_signals(
    symbol: str,
    history: Sequence[Candle],
    regime: MarketRegimeAnalysis,
    strategy: SwingStrategyConfig,
) -> list[TradeSignal]:
    """根据当前状态与策略参数生成 0 或 1 个方向信号。"""
    if not strategy.enabled or not history:
        return []

    closes = [c.close for c in history]
    price = closes[-1]
    entry = strategy.entry_rules
    rsi_value = regime.rsi
    bands = bollinger_bands(closes, entry.bollinger_period, entry.bollinger_std_dev)
    macd_res = macd(closes)

    reasons: list[str] = []
    confidence = 0.0
    direction: Direction | None = None

    if regime.regime == "uptrend" and strategy.allows_long:
        if entry.use_rsi and entry.rsi_oversold <= rsi_value <= entry.rsi_oversold + 10:
            reasons.append(f"RSI pullback to {rsi_value:.1f} in uptrend")
            confidence += 30
        if entry.use_sma_cross and -2 <= regime.price_vs_fast_sma <= 1:
            reasons.append(f"Price near SMA({regime.sma_fast:.2f}) support")
            confidence += 25
        if entry.use_macd and macd_res and macd_res.histogram > 0 and macd_res.macd > macd_res.signal:
            reasons.append("MACD bullish crossover")
            confidence += 25
        if entry.use_bollinger and bands and price <= bands.lower * 1.01:
            reasons.append(f"Price at Bollinger lower band (${bands.lower:.2f})")
            confidence += 30
        if confidence >= entry.min_confidence:
            direction = "long"

    if regime.regime == "downtrend":
        if strategy.allows_short:
            if entry.use_rsi and entry.rsi_overbought - 10 <= rsi_value <= entry.rsi_overbought:
                reasons.append(f"RSI overbought rally to {rsi_value:.1f} in downtrend")
                confidence += 30
            if entry.use_sma_cross and -1 <= regime.price_vs_fast_sma <= 2:
                reasons.append(f"Price near SMA({regime.sma_fast:.2f}) resistance")
                confidence += 25
            if entry.use_macd and macd_res and macd_res.histogram < 0 and macd_res.macd < macd_res.signal:
                reasons.append("MACD bearish crossover")
                confidence += 25
            if entry.use_bollinger and bands and price >= bands.upper * 0.99:
                reasons.append(f"Price at Bollinger upper band (${bands.upper:.2f})")
                confidence += 30
            if confidence >= entry.min_confidence:
                direction = "short"

        # 逆势做多：只在极端超卖时出手，门槛额外 +10
        if strategy.allows_long and direction is None:
            if entry.use_rsi and rsi_value <= entry.rsi_oversold:
                reasons.append(f"Extreme RSI oversold ({rsi_value:.1f}) - contrarian long")
                confidence += 20
            if entry.use_bollinger and bands and price <= bands.lower * 0.99:
                reasons.append("Below Bollinger lower band - oversold bounce play")
                confidence += 20
            if confidence >= entry.min_confidence + 10:
                direction = "long"

    if regime.regime == "sideways" and entry.use_bollinger and bands:
        if strategy.allows_long and price <= bands.lower * 1.005:
            reasons.append(f"Price at Bollinger lower band (${bands.lower:.2f}) - mean reversion buy")
            confidence += 35
            if entry.use_rsi and rsi_value <= entry.rsi_oversold:
                reasons.append(f"RSI oversold ({rsi_value:.1f}) confirms")
                confidence += 25
            if confidence >= entry.min_confidence:
                direction = "long"
        if strategy.allows_short and direction is None and price >= bands.upper * 0.995:
            reasons.append(f"Price at Bollinger upper band (${bands.upper:.2f}) - mean reversion short")
            confidence += 35
            if entry.use_rsi and rsi_value >= entry.rsi_overbought:
                reasons.append(f"RSI overbought ({rsi_value:.1f}) confirms")
                confidence += 25
            if confidence >= entry.min_confidence:
                direction = "short"

    if direction is None or not reasons:
        return []

    tp = strategy.exit_rules.take_profit_percent / 100.0
    sl = strategy.exit_rules.stop_loss_percent / 100.0
    sign = 1.0 if direction == "long" else -1.0
    return [
        TradeSignal(
            symbol=symbol,
            direction=direction,
            regime=regime.regime,
            confidence=min(confidence, 100.0),
            suggested_entry=price,
            suggested_stop_loss=price * (1 - sign * sl),
            suggested_take_profit=price * (1 + sign * tp),
            position_size_percent=strategy.position_size_percent,
            reasons=reasons,
        )
    ]


class SwingStrategy(Strategy):
    """根据市场状态自动切换参数的波段策略。"""

    def __init__(self, overrides: Mapping[str, SwingStrategyConfig] | None = None):
        self.overrides = dict(overrides or {})

    def config_for(self, regime: MarketRegimeAnalysis) -> SwingStrategyConfig:
        return get_strategy_for_regime(regime.regime, self.overrides)

    def generate(self, symbol: str, candles: Sequence[Candle], regime: MarketRegimeAnalysis) -> list[TradeSignal]:
        return generate_signals(symbol, candles, regime, self.config_for(regime))


# ---------------------------------------------------------------------------
# 波段账户辅助计算
# ---------------------------------------------------------------------------

def calculate_swing_equity(cash: float, positions: Iterable[Position]) -> float:
    """现金 + 持仓盯市价值（空头按 (entry-current)*shares 计入）。"""
    return cash + sum(p.market_value for p in positions)


def required_monthly_return(current: float, goal: float, months: float) -> float:
    """达成目标所需的月复合收益率（百分比）。"""
    if current <= 0 or months <= 0:
        return 0.0
    if current >= goal:
        return 0.0
    return ((goal / current) ** (1.0 / months) - 1.0) * 100.0


def calculate_win_rate(trades: Iterable[CompletedTrade]) -> float:
    items = list(trades)
    if not items:
        return 0.0
    wins = sum(1 for t in items if t.profit_loss > 0)
    return wins / len(items) * 100.0
