"""行情数据模块（market_data）。

该包聚合：
- 行情数据源（Binance REST / 本地假数据）
- 历史 K 线 CSV 加载与保存
"""

from market_data.client import (
    BinanceMarketData,
    FakeMarketData,
    MarketDataSource,
    get_market_data,
)
from market_data.loader import HistoricalDataLoader

__all__ = [
    "MarketDataSource",
    "FakeMarketData",
    "BinanceMarketData",
    "get_market_data",
    "HistoricalDataLoader",
]
