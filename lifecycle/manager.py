"""持仓生命周期管理：刷新极值 → 判断退出 → 通过 broker 平仓。"""

from __future__ import annotations

import logging
from datetime import datetime

from broker.paper_broker import PaperBroker
from lifecycle.exits import ExitReason, ExitRules, PositionState, closed_state, evaluate_exit
from shared.models.models import CompletedTrade, Position
from shared.utils.logging import setup_logger


class PositionLifecycleManager:
    """单个组合上的持仓状态机。

    Parameters
    ----------
    broker:
        持有现金与持仓的组合服务。
    holding_unit:
        平仓时 holding_period 的单位（days / hours）。
    max_states:
        保留终态的已平仓持仓数上限，超出后丢弃最早的记录。
    """

    def __init__(
        self,
        broker: PaperBroker,
        *,
        holding_unit: str = "days",
        max_states: int = 500,
        quiet: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.broker = broker
        self.quiet = quiet
        self.holding_unit = holding_unit
        self.max_states = max_states
        self.logger = logger or setup_logger("lifecycle")
        self.states: dict[str, PositionState] = {}

    def state_of(self, position: Position) -> PositionState:
        return self.states.get(position.id, PositionState.OPEN)

    def update(
        self,
        position: Position,
        price: float,
        now: datetime,
        rules: ExitRules,
        current_regime: str | None = None,
    ) -> ExitReason | None:
        """刷新现价与极值，返回命中的退出原因（不平仓）。"""
        position.mark(price)
        return evaluate_exit(position, price, now, rules, current_regime)

    def process(
        self,
        position: Position,
        price: float,
        now: datetime,
        rules: ExitRules,
        current_regime: str | None = None,
        *,
        rule_name: str = "",
    ) -> CompletedTrade | None:
        """价格更新入口：命中退出条件时在同一事务内完成平仓。"""
        with self.broker.transaction():
            reason = self.update(position, price, now, rules, current_regime)
            if reason is None:
                return None
            return self.close(position, price, now, reason, rule_name=rule_name)

    def close(
        self,
        position: Position,
        price: float,
        now: datetime,
        reason: ExitReason,
        *,
        rule_name: str = "",
    ) -> CompletedTrade:
        with self.broker.transaction():
            trade = self.broker.close_position(
                position.symbol,
                price,
                ts=now,
                direction=position.direction,
                reason=reason.value,
                rule_name=rule_name,
                holding_unit=self.holding_unit,
            )
            self.states[position.id] = closed_state(reason)
            while len(self.states) > self.max_states:
                self.states.pop(next(iter(self.states)))
        if not self.quiet:
            self.logger.info(
                "Closed %s %s @ %.4f (%s) P/L %.2f",
                position.direction,
                position.symbol,
                price,
                reason.value,
                trade.profit_loss,
            )
        return trade
