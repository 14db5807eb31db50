"""告警记录与短时间重复告警抑制。"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Iterator

from shared.models.models import Alert

SUPPRESSION_WINDOW = timedelta(minutes=5)


class AlertLog:
    """最近告警（新的在前）。

    同一 (symbol, pattern, signal) 在 `window` 内只告警一次；
    扫描器另外按 K 线时间去重，见 `seen_candle`。
    """

    def __init__(self, window: timedelta = SUPPRESSION_WINDOW, max_alerts: int = 100):
        self.window = window
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._candle_keys: set[tuple[str, str, datetime]] = set()

    def __iter__(self) -> Iterator[Alert]:
        return iter(self._alerts)

    def __len__(self) -> int:
        return len(self._alerts)

    def is_suppressed(self, symbol: str, pattern: str, signal: str, now: datetime) -> bool:
        for alert in self._alerts:
            if alert.symbol == symbol and alert.pattern == pattern and alert.signal == signal:
                if timedelta(0) <= now - alert.timestamp < self.window:
                    return True
        return False

    def add(self, alert: Alert) -> Alert:
        self._alerts.appendleft(alert)
        return alert

    def seen_candle(self, symbol: str, pattern: str, candle_ts: datetime) -> bool:
        """该 K 线上同一形态是否已处理过；首次调用时登记。"""
        key = (symbol, pattern, candle_ts)
        if key in self._candle_keys:
            return True
        self._candle_keys.add(key)
        if len(self._candle_keys) > 1000:
            # 只保留最近的一半，避免无限增长
            for old in sorted(self._candle_keys, key=lambda k: k[2])[:500]:
                self._candle_keys.discard(old)
        return False
