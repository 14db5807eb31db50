"""业务异常定义。

只有边界操作（拉数据、下单、回测初始化）会抛出这些异常；
指标/状态识别/信号生成这类纯计算在数据不足时返回 None 或中性默认值。
"""

from __future__ import annotations


class TradingError(Exception):
    """所有业务异常的基类。"""


class InsufficientData(TradingError):
    """历史数据为空或不足以回测。"""

    def __init__(self, message: str, *, symbol: str, rows: int):
        super().__init__(message)
        self.symbol = symbol
        self.rows = rows


class InsufficientBalance(TradingError):
    """现金（或保证金）不足。"""


class InsufficientShares(TradingError):
    """持仓数量不足（卖出/平空）。"""


class ProviderError(TradingError):
    """行情数据源调用失败。"""


class RateLimited(ProviderError):
    """行情数据源限流。"""


class ExecutionFailure(TradingError):
    """规则执行路径中的异常包装。"""

    def __init__(self, message: str, *, rule_id: str | None = None, symbol: str | None = None):
        super().__init__(message)
        self.rule_id = rule_id
        self.symbol = symbol
