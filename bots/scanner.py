"""形态扫描 bot。

每个 tick 取一批品种（规则品种 ∪ 自选），拉 K 线跑检测器，
把新出现的形态交给规则引擎。批次轮转，品种之间留出间隔以照顾限频。
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Iterable, Sequence

from bots.base import PeriodicBot
from market_data.client import MarketDataSource
from patterns.base import PatternDetector
from patterns.macd_cross import MACDCrossoverDetector
from rules.engine import EventResult, RuleEngine
from shared.models.models import Candle, PatternMatch


class PatternScanner(PeriodicBot):
    name = "scanner"

    def __init__(
        self,
        source: MarketDataSource,
        engine: RuleEngine,
        detector: PatternDetector,
        *,
        watchlist: Iterable[str] = (),
        batch_size: int = 8,
        candle_interval: str = "1m",
        candles: int = 100,
        symbol_delay: float = 0.5,
        interval: float = 60.0,
        initial_delay: float = 5.0,
        **kwargs,
    ):
        super().__init__(interval=interval, initial_delay=initial_delay, **kwargs)
        self.source = source
        self.engine = engine
        self.detector = detector
        self.watchlist = list(watchlist)
        self.batch_size = max(1, batch_size)
        self.candle_interval = candle_interval
        self.candle_count = candles
        self.symbol_delay = symbol_delay
        self.events: list[EventResult] = []
        self._cursor = 0

    def symbols(self) -> list[str]:
        return list(dict.fromkeys([*self.engine.symbols(), *self.watchlist]))

    def next_batch(self) -> list[str]:
        """轮转取下一批；品种数不足一批时全部返回。"""
        symbols = self.symbols()
        if len(symbols) <= self.batch_size:
            return symbols
        start = self._cursor % len(symbols)
        batch = [symbols[(start + i) % len(symbols)] for i in range(self.batch_size)]
        self._cursor = (start + self.batch_size) % len(symbols)
        return batch

    def detectors_for(self, symbol: str) -> list[PatternDetector]:
        """基础检测器，加上该品种规则里自定义参数的 MACD 检测器。"""
        detectors: list[PatternDetector] = [self.detector]
        custom: dict[tuple[int, int, int], MACDCrossoverDetector] = {}
        for rule in self.engine.rules:
            if rule.symbol != symbol or not rule.enabled or rule.trigger != "indicator_crossover":
                continue
            if rule.macd_settings is None:
                continue
            det = MACDCrossoverDetector.from_settings(rule.macd_settings)
            if det != MACDCrossoverDetector():
                custom[(det.fast, det.slow, det.signal)] = det
        detectors.extend(custom.values())
        return detectors

    def detect(self, symbol: str, candles: Sequence[Candle]) -> list[PatternMatch]:
        matches: list[PatternMatch] = []
        for det in self.detectors_for(symbol):
            matches.extend(det.detect(candles[-det.lookback:]))
        return matches

    def scan_symbol(self, symbol: str, candles: Sequence[Candle], now: datetime) -> list[EventResult]:
        if not candles:
            return []
        last = candles[-1]
        results: list[EventResult] = []
        for match in self.detect(symbol, candles):
            if self.engine.alerts.seen_candle(symbol, match.pattern, last.ts):
                continue
            self.logger.info("%s %s on %s (%.0f%%)", match.pattern, match.signal, symbol, match.confidence)
            results.append(self.engine.on_match(symbol, match, last.close, now, candles))
        return results

    async def tick(self, now: datetime) -> None:
        batch = self.next_batch()
        for idx, symbol in enumerate(batch):
            if idx:
                await asyncio.sleep(self.symbol_delay)
            try:
                candles = await asyncio.to_thread(
                    self.source.get_candles, symbol, self.candle_interval, self.candle_count
                )
                self.events.extend(self.scan_symbol(symbol, candles, now))
            except Exception:
                self.logger.exception("Scan failed for %s", symbol)
