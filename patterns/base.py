"""形态检测器协议。

K 线形态分类器本身由外部提供，这里只约定输入输出：
给定按时间升序的最近若干根 K 线，返回零个或多个 `PatternMatch`。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from shared.models.models import Candle, PatternMatch

DEFAULT_LOOKBACK = 10


class PatternDetector(Protocol):
    """检测器协议：`detect(candles) -> list[PatternMatch]`。"""

    name: str
    lookback: int

    def detect(self, candles: Sequence[Candle]) -> list[PatternMatch]:
        ...


@dataclass
class CompositeDetector:
    """把多个检测器合并成一个，lookback 取最大值。"""

    detectors: list[PatternDetector] = field(default_factory=list)
    name: str = "composite"

    @property
    def lookback(self) -> int:
        return max((d.lookback for d in self.detectors), default=DEFAULT_LOOKBACK)

    def detect(self, candles: Sequence[Candle]) -> list[PatternMatch]:
        matches: list[PatternMatch] = []
        for det in self.detectors:
            matches.extend(det.detect(candles[-det.lookback:]))
        return matches
