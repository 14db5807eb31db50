"""自动交易风控闸门。"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from rules.filters import PASSED, FilterResult
from shared.config.schema import AutoTradeConfig
from shared.models.models import TradingRule
from shared.utils.logging import setup_logger

MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)


def cooldown_remaining(rule: TradingRule, now: datetime) -> float:
    """距离冷却结束还剩多少分钟（<=0 表示可执行）。"""
    if not rule.cooldown_minutes or rule.last_executed_at is None:
        return 0.0
    elapsed = (now - rule.last_executed_at).total_seconds() / 60.0
    return rule.cooldown_minutes - elapsed


def is_within_trading_hours(now: datetime, tz: str = "America/New_York") -> bool:
    """工作日 9:30–16:00（交易所时区）。naive 时间按 UTC 处理。"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz))
    if local.weekday() >= 5:
        return False
    return MARKET_OPEN <= local.time() <= MARKET_CLOSE


class RiskManager:
    """自动交易闸门。

    依次检查：总开关 → 规则 auto_trade → 交易时段 → 冷却 → 当日次数上限。
    当日计数在日期变化时自动清零。

    Parameters
    ----------
    cfg:
        自动交易配置。
    suppress_warnings:
        是否抑制拦截日志（回测常用）。
    """

    def __init__(self, cfg: AutoTradeConfig | None = None, suppress_warnings: bool = False):
        self.cfg = cfg or AutoTradeConfig()
        self.logger = setup_logger("risk")
        self.suppress_warnings = suppress_warnings
        self.trades_today = 0
        self._day: date | None = None

    def _roll_day(self, now: datetime) -> None:
        today = now.date()
        if self._day != today:
            if self._day is not None:
                self.reset_daily_state(log=False)
            self._day = today

    def reset_daily_state(self, log: bool = True):
        """跨日重置计数。"""
        self.trades_today = 0
        if log and not self.suppress_warnings:
            self.logger.info("[RISK] Daily state reset.")

    def can_execute(self, rule: TradingRule, now: datetime) -> FilterResult:
        self._roll_day(now)
        if not self.cfg.enabled:
            return self._block("Auto-trading is disabled", rule)
        if not rule.auto_trade:
            return self._block("Rule does not have auto-trade enabled", rule)
        if self.cfg.trading_hours_only and not is_within_trading_hours(now, self.cfg.timezone):
            return self._block("Outside trading hours", rule)
        remaining = cooldown_remaining(rule, now)
        if remaining > 0:
            return self._block(f"Cooldown active: {remaining:.1f} minutes remaining", rule)
        if self.trades_today >= self.cfg.max_trades_per_day:
            return self._block(f"Max trades per day reached ({self.cfg.max_trades_per_day})", rule)
        return PASSED

    def record_trade(self, now: datetime) -> None:
        self._roll_day(now)
        self.trades_today += 1

    def _block(self, reason: str, rule: TradingRule) -> FilterResult:
        if not self.suppress_warnings:
            self.logger.info("[RISK] %s blocked: %s", rule.name or rule.symbol, reason)
        return FilterResult(False, reason)
