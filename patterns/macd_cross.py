"""MACD 金叉/死叉检测器（指标交叉触发）。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from factors.indicators import macd, macd_crossover
from shared.models.models import Candle, MacdSettings, PatternMatch

MACD_CROSSOVER_CONFIDENCE = 75.0


def crossover_pattern_name(crossover_type: str) -> str:
    return f"macd_{crossover_type}"


@dataclass(frozen=True)
class MACDCrossoverDetector:
    fast: int = 12
    slow: int = 26
    signal: int = 9
    name: str = "macd_cross"

    @classmethod
    def from_settings(cls, settings: MacdSettings) -> "MACDCrossoverDetector":
        return cls(fast=settings.fast_period, slow=settings.slow_period, signal=settings.signal_period)

    @property
    def lookback(self) -> int:
        # 需要至少两组 MACD/signal 才能判断交叉
        return self.slow + self.signal + 1

    def detect(self, candles: Sequence[Candle]) -> list[PatternMatch]:
        closes = [c.close for c in candles]
        crossover = macd_crossover(macd(closes, self.fast, self.slow, self.signal))
        if crossover is None:
            return []
        return [
            PatternMatch(
                pattern=crossover_pattern_name(crossover),
                signal="buy" if crossover == "bullish" else "sell",
                confidence=MACD_CROSSOVER_CONFIDENCE,
                trigger="indicator_crossover",
            )
        ]
