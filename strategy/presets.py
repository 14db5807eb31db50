"""各市场状态下的默认策略参数，以及 状态 -> 策略 的映射。"""

from __future__ import annotations

from typing import Mapping

from strategy.base import EntryRules, ExitRules, Regime, SwingStrategyConfig

DEFAULT_UPTREND_STRATEGY = SwingStrategyConfig(
    name="uptrend_pullback",
    regime="uptrend",
    direction="long",
    entry_rules=EntryRules(rsi_oversold=30, rsi_overbought=70, min_confidence=50),
    exit_rules=ExitRules(take_profit_percent=8, stop_loss_percent=3, trailing_stop_percent=5, time_stop_days=30),
    position_size_percent=15,
)

DEFAULT_DOWNTREND_STRATEGY = SwingStrategyConfig(
    name="downtrend_rally_short",
    regime="downtrend",
    direction="both",
    entry_rules=EntryRules(rsi_oversold=25, rsi_overbought=65, min_confidence=60),
    exit_rules=ExitRules(take_profit_percent=5, stop_loss_percent=2, trailing_stop_percent=None, time_stop_days=15),
    position_size_percent=10,
)

DEFAULT_SIDEWAYS_STRATEGY = SwingStrategyConfig(
    name="sideways_mean_reversion",
    regime="sideways",
    direction="both",
    entry_rules=EntryRules(use_sma_cross=False, use_macd=False, min_confidence=50),
    exit_rules=ExitRules(take_profit_percent=4, stop_loss_percent=2, trailing_stop_percent=None, time_stop_days=10),
    position_size_percent=12,
)

_DEFAULTS: dict[str, SwingStrategyConfig] = {
    "uptrend": DEFAULT_UPTREND_STRATEGY,
    "downtrend": DEFAULT_DOWNTREND_STRATEGY,
    "sideways": DEFAULT_SIDEWAYS_STRATEGY,
}


def default_strategies() -> dict[str, SwingStrategyConfig]:
    return {k: v.model_copy(deep=True) for k, v in _DEFAULTS.items()}


def get_strategy_for_regime(
    regime: Regime, overrides: Mapping[str, SwingStrategyConfig] | None = None
) -> SwingStrategyConfig:
    """返回某状态对应的策略参数；配置里有覆盖时优先使用覆盖。"""
    if overrides and regime in overrides:
        return overrides[regime]
    if regime not in _DEFAULTS:
        raise ValueError(f"Unknown regime: {regime}")
    return _DEFAULTS[regime]
