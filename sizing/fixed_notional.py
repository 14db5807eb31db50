"""固定金额下单：trade_notional。"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FixedNotionalSizer:
    trade_notional: float

    def target_notional(self, *, price: float, cash: float, portfolio_value: float) -> float:
        return max(0.0, self.trade_notional)
