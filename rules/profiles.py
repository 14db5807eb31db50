"""风险参数预设（RiskProfile）与规则构建。

同一套止盈/止损/移动止损/冷却/置信度/过滤器参数只在这里定义一次，
具体规则按名称引用预设，再叠加少量覆盖项。
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from shared.models.models import MacdSettings, RsiFilter, RuleAction, TradingRule, VolumeFilter
from shared.utils.record_id import make_record_id


class RiskProfile(BaseModel):
    name: str
    take_profit_percent: float | None = None
    stop_loss_percent: float | None = None
    trailing_stop_percent: float | None = None
    time_stop_days: float | None = None
    exit_on_regime_change: bool = False
    cooldown_minutes: float = 5.0
    min_confidence: float | None = None
    auto_trade: bool = True
    sizing: str = "dollar_amount"
    shares: float = 1.0
    dollar_amount: float | None = 100.0
    percent_of_portfolio: float | None = None
    rsi_filter: dict[str, Any] = Field(default_factory=dict)
    volume_filter: dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid", frozen=True)


PRESETS: dict[str, RiskProfile] = {
    # 不设止盈，靠移动止损吃趋势
    "default": RiskProfile(
        name="default",
        stop_loss_percent=1.0,
        trailing_stop_percent=0.75,
        cooldown_minutes=5,
        min_confidence=60,
        dollar_amount=100.0,
    ),
    "conservative": RiskProfile(
        name="conservative",
        take_profit_percent=8.0,
        stop_loss_percent=3.0,
        trailing_stop_percent=5.0,
        time_stop_days=30,
        exit_on_regime_change=True,
        cooldown_minutes=60,
        min_confidence=70,
        sizing="percent_of_portfolio",
        dollar_amount=None,
        percent_of_portfolio=10.0,
        rsi_filter={"enabled": True, "max_rsi": 70.0},
        volume_filter={"enabled": True, "min_multiplier": 1.5},
    ),
    "aggressive": RiskProfile(
        name="aggressive",
        take_profit_percent=3.0,
        stop_loss_percent=2.0,
        trailing_stop_percent=1.5,
        cooldown_minutes=1,
        min_confidence=50,
        sizing="percent_of_portfolio",
        dollar_amount=None,
        percent_of_portfolio=25.0,
    ),
    "crypto": RiskProfile(
        name="crypto",
        take_profit_percent=5.0,
        stop_loss_percent=3.0,
        cooldown_minutes=15,
        sizing="shares",
        shares=1.0,
        dollar_amount=None,
    ),
    # 只提醒不下单
    "alert_only": RiskProfile(
        name="alert_only",
        cooldown_minutes=5,
        min_confidence=60,
        auto_trade=False,
        sizing="percent_of_portfolio",
        dollar_amount=None,
        percent_of_portfolio=100.0,
    ),
}

DEFAULT_PROFILE = "default"


def get_profile(name: str | None, extra: Mapping[str, RiskProfile] | None = None) -> RiskProfile:
    key = name or DEFAULT_PROFILE
    if extra and key in extra:
        return extra[key]
    if key not in PRESETS:
        raise ValueError(f"Unknown risk profile: {key}")
    return PRESETS[key]


def build_rule(
    symbol: str,
    *,
    direction: str = "buy",
    trigger: str = "pattern",
    pattern: str | None = None,
    profile: str | RiskProfile | None = None,
    name: str = "",
    macd_settings: MacdSettings | Mapping[str, Any] | None = None,
    enabled: bool = True,
    **overrides: Any,
) -> TradingRule:
    """按预设构建一条规则；overrides 覆盖同名字段（如 cooldown_minutes）。

    未显式传入 id 时由品种/方向/触发/形态/名称派生，同样的参数总得到同一个 id。
    """
    prof = profile if isinstance(profile, RiskProfile) else get_profile(profile)
    if isinstance(macd_settings, Mapping):
        macd_settings = MacdSettings(**macd_settings)

    action = RuleAction(
        sizing=prof.sizing,  # type: ignore[arg-type]
        shares=prof.shares,
        dollar_amount=prof.dollar_amount,
        percent_of_portfolio=prof.percent_of_portfolio,
    )
    rule = TradingRule(
        symbol=symbol,
        id=make_record_id("rule", symbol, direction, trigger, pattern, name),
        direction=direction,  # type: ignore[arg-type]
        trigger=trigger,  # type: ignore[arg-type]
        pattern=pattern,
        name=name or f"{symbol} {pattern or trigger} {direction}",
        enabled=enabled,
        take_profit_percent=prof.take_profit_percent,
        stop_loss_percent=prof.stop_loss_percent,
        trailing_stop_percent=prof.trailing_stop_percent,
        time_stop_days=prof.time_stop_days,
        exit_on_regime_change=prof.exit_on_regime_change,
        cooldown_minutes=prof.cooldown_minutes,
        min_confidence=prof.min_confidence,
        rsi_filter=RsiFilter(**prof.rsi_filter),
        volume_filter=VolumeFilter(**prof.volume_filter),
        macd_settings=macd_settings,
        action=action,
        auto_trade=prof.auto_trade,
    )

    nested = {"action": RuleAction, "rsi_filter": RsiFilter, "volume_filter": VolumeFilter}
    updates: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key in nested and isinstance(value, Mapping):
            value = nested[key](**{**getattr(rule, key).__dict__, **value})
        if not hasattr(rule, key):
            raise ValueError(f"Unknown rule field: {key}")
        updates[key] = value
    return replace(rule, **updates) if updates else rule
