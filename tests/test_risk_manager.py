from __future__ import annotations

from datetime import datetime, timedelta, timezone

from risk.manager import RiskManager, cooldown_remaining, is_within_trading_hours
from rules.profiles import build_rule
from shared.config.schema import AutoTradeConfig

MONDAY_10AM_NY = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)


def test_trading_hours_new_york():
    assert is_within_trading_hours(MONDAY_10AM_NY)
    # 8:00 纽约时间，未开盘
    assert not is_within_trading_hours(datetime(2024, 3, 4, 13, 0, tzinfo=timezone.utc))
    # 周六
    assert not is_within_trading_hours(datetime(2024, 3, 2, 15, 0, tzinfo=timezone.utc))
    # naive 时间按 UTC
    assert is_within_trading_hours(datetime(2024, 3, 4, 15, 0))


def test_gate_order():
    rule = build_rule("AAPL", profile="alert_only")
    assert RiskManager(AutoTradeConfig(enabled=False), True).can_execute(rule, MONDAY_10AM_NY).reason == (
        "Auto-trading is disabled"
    )
    assert RiskManager(suppress_warnings=True).can_execute(rule, MONDAY_10AM_NY).reason == (
        "Rule does not have auto-trade enabled"
    )

    rule = build_rule("AAPL", profile="default")
    weekend = datetime(2024, 3, 2, 15, 0, tzinfo=timezone.utc)
    risk = RiskManager(AutoTradeConfig(trading_hours_only=True), suppress_warnings=True)
    assert risk.can_execute(rule, weekend).reason == "Outside trading hours"
    assert risk.can_execute(rule, MONDAY_10AM_NY).passed


def test_cooldown_remaining():
    rule = build_rule("AAPL", profile="default", cooldown_minutes=30)
    assert cooldown_remaining(rule, MONDAY_10AM_NY) == 0.0
    rule.last_executed_at = MONDAY_10AM_NY
    assert cooldown_remaining(rule, MONDAY_10AM_NY + timedelta(minutes=10)) == 20.0
    risk = RiskManager(suppress_warnings=True)
    result = risk.can_execute(rule, MONDAY_10AM_NY + timedelta(minutes=10))
    assert result.reason == "Cooldown active: 20.0 minutes remaining"
    assert risk.can_execute(rule, MONDAY_10AM_NY + timedelta(minutes=31)).passed


def test_max_trades_per_day_resets_next_day():
    rule = build_rule("AAPL", profile="default", cooldown_minutes=0)
    risk = RiskManager(AutoTradeConfig(max_trades_per_day=2), suppress_warnings=True)
    risk.record_trade(MONDAY_10AM_NY)
    risk.record_trade(MONDAY_10AM_NY)
    assert risk.can_execute(rule, MONDAY_10AM_NY).reason == "Max trades per day reached (2)"
    assert risk.can_execute(rule, MONDAY_10AM_NY + timedelta(days=1)).passed
    assert risk.trades_today == 0
