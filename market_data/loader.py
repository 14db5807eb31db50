"""历史数据加载。

CSV 列：`ts, open, high, low, close, volume[, symbol]`；`ts` 可以是 ISO 时间或秒/毫秒时间戳。
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pandas as pd

from market_data.client import MarketDataSource
from shared.models.models import Candle

CANDLE_COLUMNS = ["ts", "symbol", "open", "high", "low", "close", "volume"]


def _parse_dt(val) -> datetime:
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    text = str(val).strip()
    try:
        if text.isdigit():
            ts_int = int(text)
            if ts_int > 1e12:
                return datetime.fromtimestamp(ts_int / 1000, tz=timezone.utc)
            return datetime.fromtimestamp(ts_int, tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime value: {val}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def candles_from_frame(df: pd.DataFrame, symbol: str = "") -> list[Candle]:
    missing = [c for c in ("ts", "open", "high", "low", "close") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing candle columns: {missing}")
    candles = [
        Candle(
            ts=_parse_dt(row["ts"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row.get("volume", 0.0) or 0.0),
            symbol=str(row.get("symbol") or symbol),
        )
        for row in df.to_dict("records")
    ]
    candles.sort(key=lambda c: c.ts)
    return candles


def load_candles_from_csv(path: str | Path, symbol: str = "") -> list[Candle]:
    """读取 CSV 为按时间升序的 Candle 列表。"""
    df = pd.read_csv(path, dtype={"ts": str})
    return candles_from_frame(df, symbol)


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "ts": c.ts.isoformat(),
                "symbol": c.symbol,
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ],
        columns=CANDLE_COLUMNS,
    )


class HistoricalDataLoader:
    """历史 K 线数据管理器：本地 CSV 优先，可选从数据源补齐。"""

    def __init__(self, data_dir: str = "dataset/history", source: MarketDataSource | None = None):
        self.data_dir = Path(data_dir)
        self.source = source

    def _klines_path(self, symbol: str, interval: str) -> Path:
        return self.data_dir / f"{symbol}_{interval}.csv"

    def load_klines(
        self,
        symbol: str,
        interval: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Candle]:
        """读取本地 CSV，不存在时返回 []。"""
        path = self._klines_path(symbol, interval)
        if not path.exists():
            return []
        candles = load_candles_from_csv(path, symbol)
        return [c for c in candles if (start is None or c.ts >= start) and (end is None or c.ts <= end)]

    def load_klines_for_backtest(
        self,
        symbol: str,
        interval: str,
        start: datetime,
        end: datetime,
        auto_download: bool = True,
    ) -> list[Candle]:
        """回测区间所需 K 线；本地缺失时通过数据源严格拉取（失败抛 ProviderError）。"""
        candles = self.load_klines(symbol, interval, start, end)
        if candles or not auto_download or self.source is None:
            return candles
        candles = self.source.fetch_candles(symbol, interval, start=start, end=end)
        if candles:
            self.save_klines(symbol, interval, candles)
        return candles

    def save_klines(self, symbol: str, interval: str, candles: list[Candle]) -> Path:
        path = self._klines_path(symbol, interval)
        path.parent.mkdir(parents=True, exist_ok=True)
        candles_to_frame(candles).to_csv(path, index=False)
        return path
