from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from broker.paper_broker import PaperBroker
from rules.alerts import AlertLog
from rules.engine import RuleEngine, exit_shares, rule_matches
from rules.filters import check_confidence, check_rsi_filter, check_volume_filter
from rules.profiles import PRESETS, build_rule, get_profile
from shared.config.schema import AutoTradeConfig
from shared.models.models import Alert, Candle, PatternMatch, RuleAction

T0 = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)

HAMMER = PatternMatch(pattern="hammer", signal="buy", confidence=80.0)


def _engine(rules, cash: float = 10000.0, **cfg) -> RuleEngine:
    return RuleEngine(PaperBroker(cash, quiet=True), rules, auto_trade_cfg=AutoTradeConfig(**cfg), quiet=True)


# ---- 预设与构建 ----
def test_get_profile_unknown_name():
    assert get_profile(None).name == "default"
    with pytest.raises(ValueError, match="Unknown risk profile: yolo"):
        get_profile("yolo")


def test_build_rule_applies_profile_and_overrides():
    rule = build_rule("AAPL", pattern="hammer", profile="conservative", cooldown_minutes=15)
    assert rule.take_profit_percent == PRESETS["conservative"].take_profit_percent
    assert rule.cooldown_minutes == 15
    assert rule.rsi_filter.enabled and rule.rsi_filter.max_rsi == 70.0
    assert rule.action.sizing == "percent_of_portfolio"
    assert rule.name == "AAPL hammer buy"


def test_build_rule_merges_nested_overrides():
    rule = build_rule("AAPL", profile="conservative", volume_filter={"min_multiplier": 2.0}, action={"percent_of_portfolio": 5})
    assert rule.volume_filter.enabled
    assert rule.volume_filter.min_multiplier == 2.0
    assert rule.action.percent_of_portfolio == 5
    assert rule.action.sizing == "percent_of_portfolio"


def test_build_rule_rejects_unknown_field():
    with pytest.raises(ValueError, match="Unknown rule field: colour"):
        build_rule("AAPL", colour="red")


# ---- 过滤器 ----
def test_confidence_filter():
    rule = build_rule("AAPL", profile="default")
    assert check_confidence(rule, 75).passed
    blocked = check_confidence(rule, 55)
    assert not blocked.passed
    assert blocked.reason == "Confidence 55% < min 60%"


def test_volume_filter_messages():
    rule = build_rule("AAPL", volume_filter={"enabled": True, "min_multiplier": 1.5})
    assert check_volume_filter(rule, None).reason == "Not enough data to calculate volume average"
    assert check_volume_filter(rule, 1.2).reason == "Volume 1.20x < min 1.5x avg"
    assert check_volume_filter(rule, 2.0).passed


def test_rsi_filter_messages():
    rule = build_rule("AAPL", rsi_filter={"enabled": True, "min_rsi": 30.0, "max_rsi": 70.0})
    assert check_rsi_filter(rule, None).reason == "Not enough data to calculate RSI"
    assert check_rsi_filter(rule, 72.0).reason == "RSI 72.0 > max 70.0"
    assert check_rsi_filter(rule, 25.0).reason == "RSI 25.0 < min 30.0"
    assert check_rsi_filter(rule, 50.0).passed


# ---- 告警抑制 ----
def test_alert_log_suppresses_within_window():
    log = AlertLog()
    log.add(Alert(symbol="AAPL", pattern="hammer", signal="buy", confidence=80, timestamp=T0))
    assert log.is_suppressed("AAPL", "hammer", "buy", T0 + timedelta(minutes=4))
    assert not log.is_suppressed("AAPL", "hammer", "buy", T0 + timedelta(minutes=5))
    assert not log.is_suppressed("AAPL", "hammer", "sell", T0)
    assert not log.seen_candle("AAPL", "hammer", T0)
    assert log.seen_candle("AAPL", "hammer", T0)


# ---- 匹配 ----
def test_rule_matching_by_trigger_and_direction():
    buy = build_rule("AAPL", pattern="hammer")
    cover = build_rule("AAPL", direction="cover", pattern="hammer")
    short = build_rule("AAPL", direction="short", pattern="hammer")
    assert rule_matches(buy, "AAPL", HAMMER)
    assert rule_matches(cover, "AAPL", HAMMER)
    assert not rule_matches(short, "AAPL", HAMMER)
    assert not rule_matches(buy, "MSFT", HAMMER)

    macd_rule = build_rule("AAPL", trigger="indicator_crossover", macd_settings={"crossover_type": "bearish"}, direction="sell")
    bearish = PatternMatch(pattern="macd_bearish", signal="sell", confidence=75, trigger="indicator_crossover")
    assert rule_matches(macd_rule, "AAPL", bearish)
    assert not rule_matches(macd_rule, "AAPL", HAMMER)


def test_exit_shares_never_exceeds_holding():
    assert exit_shares(RuleAction(sizing="percent_of_portfolio", percent_of_portfolio=50), 10, 100) == 5
    assert exit_shares(RuleAction(sizing="percent_of_portfolio", percent_of_portfolio=None), 10, 100) == 10
    assert exit_shares(RuleAction(sizing="dollar_amount", dollar_amount=5000), 10, 100) == 10
    assert exit_shares(RuleAction(sizing="shares", shares=3), 10, 100) == 3


# ---- 执行 ----
def test_buy_rule_executes_and_stamps_rule():
    rule = build_rule("AAPL", pattern="hammer", profile="default")
    engine = _engine([rule])
    result = engine.on_match("AAPL", HAMMER, 50.0, T0)

    assert result.alert is not None
    assert [o.executed for o in result.outcomes] == [True]
    assert result.executions[0].status == "executed"
    pos = engine.broker.get_position("AAPL")
    assert pos.shares == 2  # $100 / $50
    assert pos.rule_id == rule.id
    assert rule.last_executed_at == T0
    assert engine.risk.trades_today == 1


def test_entry_records_regime_from_event_candles():
    rule = build_rule(
        "AAPL",
        pattern="hammer",
        profile="conservative",
        rsi_filter={"enabled": False},
        volume_filter={"enabled": False},
    )
    assert rule.exit_on_regime_change
    rising = [
        Candle(ts=T0 - timedelta(days=80 - i), open=c, high=c, low=c, close=c, volume=1000.0)
        for i, c in enumerate(40.0 + 0.25 * n for n in range(80))
    ]
    engine = _engine([rule])
    assert engine.on_match("AAPL", HAMMER, 60.0, T0, rising).outcomes[0].executed
    assert engine.broker.get_position("AAPL").origin_regime == "uptrend"

    # 没有 K 线时不记录
    other = _engine([build_rule("AAPL", pattern="hammer", profile="default")])
    other.on_match("AAPL", HAMMER, 50.0, T0)
    assert other.broker.get_position("AAPL").origin_regime is None


def test_duplicate_event_suppressed_then_cooldown_blocks():
    rule = build_rule("AAPL", pattern="hammer", profile="default", cooldown_minutes=10)
    engine = _engine([rule])
    assert engine.on_match("AAPL", HAMMER, 50.0, T0).outcomes[0].executed

    # 5 分钟内重复检测：直接抑制，不产生告警
    again = engine.on_match("AAPL", HAMMER, 50.0, T0 + timedelta(minutes=1))
    assert again.suppressed and again.alert is None and again.outcomes == []

    later = engine.on_match("AAPL", HAMMER, 50.0, T0 + timedelta(minutes=6))
    assert not later.suppressed
    assert later.outcomes[0].reason == "Cooldown active: 4.0 minutes remaining"
    assert engine.broker.get_position("AAPL").shares == 2


def test_existing_position_blocks_second_entry():
    rule = build_rule("AAPL", pattern="hammer", profile="default", cooldown_minutes=0)
    engine = _engine([rule])
    engine.on_match("AAPL", HAMMER, 50.0, T0)
    second = engine.on_match("AAPL", HAMMER, 50.0, T0 + timedelta(minutes=6))
    assert second.outcomes[0].reason == "Position already open for rule"


def test_low_confidence_blocks_before_risk_gate():
    rule = build_rule("AAPL", pattern="hammer", profile="default")
    engine = _engine([rule])
    weak = PatternMatch(pattern="hammer", signal="buy", confidence=40.0)
    outcome = engine.on_match("AAPL", weak, 50.0, T0).outcomes[0]
    assert not outcome.executed
    assert outcome.reason == "Confidence 40% < min 60%"
    assert engine.broker.executions == []


def test_failed_execution_is_recorded():
    rule = build_rule("AAPL", pattern="hammer", profile="default")
    engine = _engine([rule], fractional=False)
    outcome = engine.on_match("AAPL", HAMMER, 1000.0, T0).outcomes[0]
    assert not outcome.executed
    assert outcome.execution.status == "failed"
    assert outcome.execution.error == "Order size below minimum notional $10.00"
    assert rule.last_executed_at is None
    assert engine.broker.cash == 10000


def test_disabled_auto_trade_blocks_everything():
    rule = build_rule("AAPL", pattern="hammer", profile="default")
    engine = _engine([rule], enabled=False)
    outcome = engine.on_match("AAPL", HAMMER, 50.0, T0).outcomes[0]
    assert outcome.reason == "Auto-trading is disabled"


def test_sell_rule_closes_full_position_with_signal_reason():
    buy = build_rule("BTC", trigger="indicator_crossover", profile="crypto", name="golden")
    sell = build_rule(
        "BTC",
        direction="sell",
        trigger="indicator_crossover",
        profile="crypto",
        macd_settings={"crossover_type": "bearish"},
        action={"sizing": "percent_of_portfolio", "percent_of_portfolio": 100},
        name="death",
    )
    engine = _engine([buy, sell])
    bullish = PatternMatch(pattern="macd_bullish", signal="buy", confidence=75, trigger="indicator_crossover")
    bearish = PatternMatch(pattern="macd_bearish", signal="sell", confidence=75, trigger="indicator_crossover")

    assert engine.on_match("BTC", bullish, 100.0, T0).outcomes[0].executed
    outcome = engine.on_match("BTC", bearish, 110.0, T0 + timedelta(hours=1)).outcomes[0]
    assert outcome.executed
    assert outcome.trade.exit_reason == "signal"
    assert outcome.trade.profit_loss == 10.0
    assert engine.broker.get_position("BTC") is None
    assert engine.completed_trades == [outcome.trade]


def test_sell_without_position_fails():
    sell = build_rule("AAPL", direction="sell", pattern="shooting_star", profile="crypto")
    engine = _engine([sell])
    star = PatternMatch(pattern="shooting_star", signal="sell", confidence=80)
    outcome = engine.on_match("AAPL", star, 100.0, T0).outcomes[0]
    assert outcome.execution.status == "failed"
    assert outcome.reason == "No position to sell in AAPL"
