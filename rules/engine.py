"""规则引擎 / 自动交易执行器。

一次形态或指标交叉事件的处理顺序：
    匹配规则 → 5 分钟重复告警抑制 → 置信度 → 量能/RSI 过滤
    → 自动交易闸门（含冷却）→ 已有持仓检查 → 计算数量 → 执行

“检查 → 下单 → 盖执行时间戳”在 broker 的同一事务里完成，
多个规则同时命中同一品种时不会重复花钱。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from broker.paper_broker import SHORT_MARGIN_RATIO, PaperBroker
from factors.indicators import rsi, volume_ratio
from lifecycle.exits import ExitReason
from patterns.macd_cross import crossover_pattern_name
from risk.manager import RiskManager
from rules.alerts import AlertLog
from rules.filters import PASSED, FilterResult, check_confidence, check_rsi_filter, check_volume_filter
from shared.config.schema import AutoTradeConfig
from shared.errors import ExecutionFailure
from shared.models.models import (
    Alert,
    Candle,
    CompletedTrade,
    ExecutionRecord,
    PatternMatch,
    RuleAction,
    TradingRule,
)
from shared.utils.logging import setup_logger
from sizing.base import build_sizer, size_order
from strategy.regime import RegimeConfig, detect_regime

_ENTRY_FOR_SIGNAL = {"buy": ("buy", "cover"), "sell": ("sell", "short")}


@dataclass
class RuleOutcome:
    """单条规则对一次事件的处理结果。"""
    rule: TradingRule
    executed: bool
    reason: str | None = None
    execution: ExecutionRecord | None = None
    trade: CompletedTrade | None = None


@dataclass
class EventResult:
    symbol: str
    match: PatternMatch
    alert: Alert | None = None
    suppressed: bool = False
    outcomes: list[RuleOutcome] = field(default_factory=list)

    @property
    def executions(self) -> list[ExecutionRecord]:
        return [o.execution for o in self.outcomes if o.execution is not None]


def rule_matches(rule: TradingRule, symbol: str, match: PatternMatch) -> bool:
    """symbol / trigger / 方向 是否与事件一致。"""
    if not rule.enabled or rule.symbol != symbol or rule.trigger != match.trigger:
        return False
    if rule.direction not in _ENTRY_FOR_SIGNAL.get(match.signal, ()):
        return False
    if rule.trigger == "indicator_crossover":
        crossover = rule.macd_settings.crossover_type if rule.macd_settings else "bullish"
        return match.pattern == crossover_pattern_name(crossover)
    return rule.pattern is None or rule.pattern == match.pattern


def exit_shares(action: RuleAction, held: float, price: float) -> float:
    """卖出/平空数量：股数、金额或持仓百分比，均不超过持仓。"""
    if action.sizing == "percent_of_portfolio":
        pct = action.percent_of_portfolio if action.percent_of_portfolio is not None else 100.0
        return held * min(100.0, max(0.0, pct)) / 100.0
    if action.sizing == "dollar_amount":
        return min(held, (action.dollar_amount or 0.0) / price) if price > 0 else 0.0
    return min(held, action.shares)


class RuleEngine:
    """把检测事件落到组合上。

    Parameters
    ----------
    broker:
        组合服务，所有现金/持仓变更都经由它。
    rules:
        规则列表（引擎会就地更新 `last_executed_at`）。
    risk:
        自动交易闸门；缺省按 `auto_trade_cfg` 构建。
    regime_cfg:
        开仓时用事件附带的 K 线识别市场状态，记到持仓的 origin_regime 上。
    """

    def __init__(
        self,
        broker: PaperBroker,
        rules: Iterable[TradingRule] = (),
        *,
        risk: RiskManager | None = None,
        auto_trade_cfg: AutoTradeConfig | None = None,
        alerts: AlertLog | None = None,
        regime_cfg: RegimeConfig | None = None,
        qty_step: float = 1e-6,
        logger: logging.Logger | None = None,
        quiet: bool = False,
    ):
        self.broker = broker
        self.rules: list[TradingRule] = list(rules)
        self.cfg = auto_trade_cfg or (risk.cfg if risk else AutoTradeConfig())
        self.risk = risk or RiskManager(self.cfg, suppress_warnings=quiet)
        self.alerts = alerts or AlertLog()
        self.regime_cfg = regime_cfg or RegimeConfig()
        self.qty_step = qty_step
        self.logger = logger or setup_logger("rule-engine")
        self.quiet = quiet
        self.completed_trades: list[CompletedTrade] = []

    # ---- 规则管理 ----
    def add_rule(self, rule: TradingRule) -> TradingRule:
        self.rules.append(rule)
        return rule

    def get_rule(self, rule_id: str) -> TradingRule | None:
        return next((r for r in self.rules if r.id == rule_id), None)

    def symbols(self) -> list[str]:
        """启用规则涉及的品种（保持首次出现的顺序）。"""
        return list(dict.fromkeys(r.symbol for r in self.rules if r.enabled))

    def matching_rules(self, symbol: str, match: PatternMatch) -> list[TradingRule]:
        return [r for r in self.rules if rule_matches(r, symbol, match)]

    # ---- 事件入口 ----
    def on_match(
        self,
        symbol: str,
        match: PatternMatch,
        price: float,
        now: datetime,
        candles: Sequence[Candle] = (),
    ) -> EventResult:
        """处理一次检测事件，返回告警与每条规则的处理结果。"""
        result = EventResult(symbol=symbol, match=match)
        rules = self.matching_rules(symbol, match)
        if not rules:
            return result

        if self.alerts.is_suppressed(symbol, match.pattern, match.signal, now):
            result.suppressed = True
            return result

        result.alert = self.alerts.add(
            Alert(
                symbol=symbol,
                pattern=match.pattern,
                signal=match.signal,
                confidence=match.confidence,
                timestamp=now,
                message=f"{match.pattern} detected on {symbol} ({match.confidence:.0f}%)",
                rule_id=rules[0].id,
            )
        )
        for rule in rules:
            result.outcomes.append(self.evaluate_rule(rule, match, price, now, candles))
        return result

    def evaluate_rule(
        self,
        rule: TradingRule,
        match: PatternMatch,
        price: float,
        now: datetime,
        candles: Sequence[Candle] = (),
    ) -> RuleOutcome:
        gate = self._check_gates(rule, match, candles)
        if not gate.passed:
            return RuleOutcome(rule, executed=False, reason=gate.reason)

        with self.broker.transaction():
            gate = self.risk.can_execute(rule, now)
            if not gate.passed:
                return RuleOutcome(rule, executed=False, reason=gate.reason)
            if rule.is_entry:
                pos = self.broker.get_position(rule.symbol, rule.position_direction)
                if pos is not None and pos.rule_id == rule.id:
                    return RuleOutcome(rule, executed=False, reason="Position already open for rule")
            return self._execute(rule, price, now, candles)

    def _check_gates(self, rule: TradingRule, match: PatternMatch, candles: Sequence[Candle]) -> FilterResult:
        checks = [check_confidence(rule, match.confidence)]
        if rule.volume_filter.enabled:
            checks.append(check_volume_filter(rule, volume_ratio([c.volume for c in candles])))
        if rule.rsi_filter.enabled:
            closes = [c.close for c in candles]
            checks.append(check_rsi_filter(rule, rsi(closes, rule.rsi_filter.period)))
        for check in checks:
            if not check.passed:
                if not self.quiet:
                    self.logger.info("Auto-trade blocked for %s: %s", rule.name or rule.symbol, check.reason)
                return check
        return PASSED

    # ---- 执行 ----
    def entry_regime(self, candles: Sequence[Candle]) -> str | None:
        return detect_regime(candles, self.regime_cfg).regime if candles else None

    def _execute(
        self, rule: TradingRule, price: float, now: datetime, candles: Sequence[Candle] = ()
    ) -> RuleOutcome:
        trade: CompletedTrade | None = None
        shares = 0.0
        try:
            if rule.is_entry:
                shares = self._entry_shares(rule, price)
                if shares <= 0:
                    raise ExecutionFailure(
                        f"Order size below minimum notional ${self.cfg.min_notional:.2f}",
                        rule_id=rule.id,
                        symbol=rule.symbol,
                    )
                order = self.broker.open_short if rule.direction == "short" else self.broker.buy
                order(
                    rule.symbol,
                    shares,
                    price,
                    ts=now,
                    notes=f"Auto: {rule.name}",
                    rule_id=rule.id,
                    regime=self.entry_regime(candles),
                )
            else:
                shares, trade = self._exit(rule, price, now)
        except Exception as exc:
            failure = exc if isinstance(exc, ExecutionFailure) else ExecutionFailure(
                str(exc), rule_id=rule.id, symbol=rule.symbol
            )
            self.logger.error("Auto-trade failed for %s: %s", rule.name or rule.symbol, failure)
            record = self.broker.record_execution(
                ExecutionRecord(
                    rule_id=rule.id,
                    symbol=rule.symbol,
                    action=rule.direction,
                    shares=shares,
                    price=price,
                    status="failed",
                    timestamp=now,
                    error=str(failure),
                )
            )
            return RuleOutcome(rule, executed=False, reason=str(failure), execution=record)

        rule.last_executed_at = now
        self.risk.record_trade(now)
        if trade is not None:
            self.completed_trades.append(trade)
        record = self.broker.record_execution(
            ExecutionRecord(
                rule_id=rule.id,
                symbol=rule.symbol,
                action=rule.direction,
                shares=shares,
                price=price,
                status="executed",
                timestamp=now,
            )
        )
        return RuleOutcome(rule, executed=True, execution=record, trade=trade)

    def _entry_shares(self, rule: TradingRule, price: float) -> float:
        max_shares = None
        if self.cfg.max_position_size:
            max_shares = self.cfg.max_position_size / price
        return size_order(
            build_sizer(rule.action),
            price=price,
            cash=self.broker.cash,
            portfolio_value=self.broker.equity(),
            fractional=self.cfg.fractional,
            qty_step=self.qty_step,
            min_notional=self.cfg.min_notional,
            max_shares=max_shares,
            margin_ratio=SHORT_MARGIN_RATIO if rule.direction == "short" else 1.0,
        )

    def _exit(self, rule: TradingRule, price: float, now: datetime) -> tuple[float, CompletedTrade | None]:
        direction = rule.position_direction
        pos = self.broker.get_position(rule.symbol, direction)
        if pos is None:
            kind = "short position to cover" if direction == "short" else "position to sell"
            raise ExecutionFailure(f"No {kind} in {rule.symbol}", rule_id=rule.id, symbol=rule.symbol)
        shares = exit_shares(rule.action, pos.shares, price)
        if shares <= 0:
            raise ExecutionFailure("Exit size is zero", rule_id=rule.id, symbol=rule.symbol)
        if shares >= pos.shares:
            trade = self.broker.close_position(
                rule.symbol,
                price,
                ts=now,
                direction=direction,
                reason=ExitReason.SIGNAL.value,
                rule_name=rule.name,
            )
            return trade.shares, trade
        if direction == "short":
            self.broker.cover_short(rule.symbol, shares, price, ts=now, notes=f"Auto: {rule.name}")
        else:
            self.broker.sell(rule.symbol, shares, price, ts=now, notes=f"Auto: {rule.name}")
        return shares, None
