"""按组合价值百分比下单：portfolio_value * position_pct / 100。"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PctEquitySizer:
    position_pct: float

    def target_notional(self, *, price: float, cash: float, portfolio_value: float) -> float:
        if self.position_pct <= 0 or portfolio_value <= 0:
            return 0.0
        return portfolio_value * self.position_pct / 100.0
