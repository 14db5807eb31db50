"""行情数据源（Binance REST / 本地假数据）。

两套访问方式：
- `fetch_candles` / `fetch_price`：严格模式，失败抛 `ProviderError`（回测用）；
- `get_candles` / `get_current_price`：降级模式，失败记日志后返回 [] / None（bot 用）。
"""

from __future__ import annotations

import zlib
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import numpy as np
import requests

from shared.config.schema import MarketDataConfig
from shared.errors import ProviderError, RateLimited
from shared.models.models import Candle
from shared.utils.logging import setup_logger

_INTERVALS = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
}


def interval_to_timedelta(interval: str) -> timedelta:
    if interval not in _INTERVALS:
        raise ValueError(f"Unsupported interval: {interval}")
    return _INTERVALS[interval]


class MarketDataSource(ABC):
    """行情数据源抽象基类。"""

    def __init__(self, logger=None):
        self.logger = logger or setup_logger("market-data")

    @abstractmethod
    def fetch_candles(
        self,
        symbol: str,
        interval: str = "1d",
        count: int = 100,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Candle]:
        """拉取 K 线（按时间升序）；失败抛 ProviderError。"""
        raise NotImplementedError

    @abstractmethod
    def fetch_price(self, symbol: str) -> float:
        """最新价；失败抛 ProviderError。"""
        raise NotImplementedError

    def get_candles(self, symbol: str, interval: str = "1d", count: int = 100) -> list[Candle]:
        try:
            return self.fetch_candles(symbol, interval, count)
        except ProviderError as exc:
            self.logger.warning("Candles unavailable for %s: %s", symbol, exc)
            return []

    def get_current_price(self, symbol: str) -> float | None:
        try:
            return self.fetch_price(symbol)
        except ProviderError as exc:
            self.logger.warning("Price unavailable for %s: %s", symbol, exc)
            return None


class FakeMarketData(MarketDataSource):
    """确定性的本地假数据（随机游走），便于离线开发/测试。

    同一 seed + symbol 总是生成同一条序列；测试可用 `set_candles` / `set_price` 固定数据。
    """

    def __init__(self, seed: int = 7, base_price: float = 100.0, anchor: datetime | None = None, logger=None):
        super().__init__(logger or setup_logger("market-fake"))
        self.seed = seed
        self.base_price = base_price
        self.anchor = anchor or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._candles: dict[str, list[Candle]] = {}
        self._prices: dict[str, float] = {}

    def set_candles(self, symbol: str, candles: list[Candle]) -> None:
        self._candles[symbol] = sorted(candles, key=lambda c: c.ts)

    def set_price(self, symbol: str, price: float | None) -> None:
        if price is None:
            self._prices.pop(symbol, None)
        else:
            self._prices[symbol] = price

    def _generate(self, symbol: str, interval: str, count: int, anchor: datetime | None = None) -> list[Candle]:
        rng = np.random.default_rng(self.seed + zlib.crc32(symbol.encode()))
        step = interval_to_timedelta(interval)
        returns = rng.normal(0.0005, 0.02, size=count)
        closes = self.base_price * np.cumprod(1 + returns)
        candles: list[Candle] = []
        prev = self.base_price
        for i, close in enumerate(closes):
            spread = abs(rng.normal(0, 0.01)) * close
            candles.append(
                Candle(
                    ts=(anchor or self.anchor) + step * i,
                    open=float(prev),
                    high=float(max(prev, close) + spread),
                    low=float(min(prev, close) - spread),
                    close=float(close),
                    volume=float(rng.uniform(1_000, 10_000)),
                    symbol=symbol,
                )
            )
            prev = close
        return candles

    def fetch_candles(
        self,
        symbol: str,
        interval: str = "1d",
        count: int = 100,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Candle]:
        candles = self._candles.get(symbol)
        if candles is None and start is not None and end is not None:
            # 区间模式：从 start 开始生成覆盖整个区间的序列
            span = int((end - start) / interval_to_timedelta(interval)) + 1
            candles = self._generate(symbol, interval, max(span, 1), anchor=start)
        if candles is None:
            candles = self._generate(symbol, interval, max(count, 1))
        if start is not None or end is not None:
            return [c for c in candles if (start is None or c.ts >= start) and (end is None or c.ts <= end)]
        return candles[-count:] if count else list(candles)

    def fetch_price(self, symbol: str) -> float:
        if symbol in self._prices:
            return self._prices[symbol]
        candles = self.fetch_candles(symbol, "1m", 1)
        if not candles:
            raise ProviderError(f"No price for {symbol}")
        return candles[-1].close


class BinanceMarketData(MarketDataSource):
    """Binance 公共 REST 行情（klines + ticker/price）。"""

    KLINE_LIMIT = 1000

    def __init__(self, base_url: str = "https://api.binance.com", timeout: float = 10.0, session=None, logger=None):
        super().__init__(logger or setup_logger("market-binance"))
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Request to {path} failed: {exc}") from exc
        if resp.status_code in (418, 429):
            raise RateLimited(f"Rate limited by provider ({resp.status_code})")
        try:
            resp.raise_for_status()
            return resp.json()
        except (requests.HTTPError, ValueError) as exc:
            raise ProviderError(f"Bad response from {path}: {exc}") from exc

    @staticmethod
    def _parse_kline(symbol: str, item: list) -> Candle:
        return Candle(
            ts=datetime.fromtimestamp(item[0] / 1000, tz=timezone.utc),
            open=float(item[1]),
            high=float(item[2]),
            low=float(item[3]),
            close=float(item[4]),
            volume=float(item[5]),
            symbol=symbol,
        )

    def fetch_candles(
        self,
        symbol: str,
        interval: str = "1d",
        count: int = 100,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Candle]:
        if start is None:
            data = self._get(
                "/api/v3/klines",
                {"symbol": symbol, "interval": interval, "limit": min(count, self.KLINE_LIMIT)},
            )
            return [self._parse_kline(symbol, item) for item in data]

        # 区间模式：分页拉取直到 end
        end_ms = int((end or datetime.now(timezone.utc)).timestamp() * 1000)
        cur = int(start.timestamp() * 1000)
        candles: list[Candle] = []
        while cur < end_ms:
            data = self._get(
                "/api/v3/klines",
                {"symbol": symbol, "interval": interval, "startTime": cur, "endTime": end_ms, "limit": self.KLINE_LIMIT},
            )
            if not data:
                break
            candles.extend(self._parse_kline(symbol, item) for item in data)
            cur = int(data[-1][6]) + 1
        return candles

    def fetch_price(self, symbol: str) -> float:
        data = self._get("/api/v3/ticker/price", {"symbol": symbol})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed price payload for {symbol}") from exc


def get_market_data(cfg: MarketDataConfig | None = None, logger=None) -> MarketDataSource:
    """根据配置选择行情数据源。"""
    cfg = cfg or MarketDataConfig()
    if cfg.provider == "binance":
        return BinanceMarketData(base_url=cfg.base_url, timeout=cfg.timeout, logger=logger)
    if cfg.provider == "fake":
        return FakeMarketData(seed=cfg.seed, logger=logger)
    raise ValueError(f"Unsupported market data provider: {cfg.provider}")
