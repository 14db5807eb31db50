"""Broker 抽象接口：组合（现金/持仓/流水）的唯一写入口。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from shared.models.models import Direction, Position, TradeRecord


class Broker(ABC):
    """交易执行抽象层。

    规则引擎、回测引擎、各个 bot 都只通过这里修改组合状态；
    “检查 → 修改”需要作为一个整体时，用 `transaction()` 包住。
    """

    cash: float
    positions: dict[str, Position]
    short_positions: dict[str, Position]
    trades: list[TradeRecord]

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """返回一个可重入的事务上下文。"""

    @abstractmethod
    def get_position(self, symbol: str, direction: Direction = "long") -> Position | None:
        """获取某个品种的当前持仓。"""

    @abstractmethod
    def buy(self, symbol: str, shares: float, price: float, *, ts: datetime, **kwargs) -> TradeRecord:
        """买入（开多/加仓）。"""

    @abstractmethod
    def sell(self, symbol: str, shares: float, price: float, *, ts: datetime, **kwargs) -> TradeRecord:
        """卖出（减多/平多）。"""

    @abstractmethod
    def open_short(self, symbol: str, shares: float, price: float, *, ts: datetime, **kwargs) -> TradeRecord:
        """开空/加空。"""

    @abstractmethod
    def cover_short(self, symbol: str, shares: float, price: float, *, ts: datetime, **kwargs) -> TradeRecord:
        """平空。"""

    @abstractmethod
    def adjust_cash(self, delta: float, reason: str = "") -> float:
        """直接调整现金，返回调整后余额。"""
