"""纸面组合（paper portfolio）：本地记账，不触网。

- 多头：买入扣现金，卖出加现金并实现盈亏；
- 空头：开空不动现金，但要求 150% 名义金额的现金作为保证金；平空时现金加上 (entry-exit)*shares；
- 加仓按加权平均成本更新入场价。
"""

from __future__ import annotations

import math
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Mapping

from broker.abstract_broker import Broker
from shared.errors import InsufficientBalance, InsufficientShares
from shared.models.models import CompletedTrade, Direction, ExecutionRecord, Position, TradeRecord
from shared.utils.logging import setup_logger
from utils.pnl import pnl_percent, realized_pnl
from utils.trade_logger import TradeLogger

SHORT_MARGIN_RATIO = 1.5
_EPS = 1e-9


def holding_period(entry: datetime, exit_: datetime, unit: str = "days") -> int:
    """持仓时长（向下取整）。"""
    seconds = (exit_ - entry).total_seconds()
    per_unit = 3600.0 if unit == "hours" else 86400.0
    return int(math.floor(seconds / per_unit))


class PaperBroker(Broker):
    """纸面交易 broker：唯一持有现金与持仓的事务服务。"""

    def __init__(
        self,
        initial_cash: float = 0.0,
        *,
        trade_logger: TradeLogger | None = None,
        name: str = "paper-broker",
        quiet: bool = False,
    ):
        self.cash = float(initial_cash)
        self.positions: dict[str, Position] = {}
        self.short_positions: dict[str, Position] = {}
        self.trades: list[TradeRecord] = []
        self.executions: list[ExecutionRecord] = []
        self.realized_pnl_all = 0.0
        self.trade_logger = trade_logger
        self.logger = setup_logger(name)
        self.quiet = quiet
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["PaperBroker"]:
        with self._lock:
            yield self

    def _book(self, direction: Direction) -> dict[str, Position]:
        return self.short_positions if direction == "short" else self.positions

    def get_position(self, symbol: str, direction: Direction = "long") -> Position | None:
        return self._book(direction).get(symbol)

    def open_positions(self) -> list[Position]:
        return list(self.positions.values()) + list(self.short_positions.values())

    def _record(self, record: TradeRecord) -> TradeRecord:
        self.trades.append(record)
        if self.trade_logger:
            self.trade_logger.log(record)
        if not self.quiet:
            pl = f" P/L {record.profit_loss:+.2f}" if record.profit_loss is not None else ""
            self.logger.info(
                "%s %.6f %s @ %.4f%s", record.side.upper(), record.shares, record.symbol, record.price, pl
            )
        return record

    def _upsert(
        self,
        direction: Direction,
        symbol: str,
        shares: float,
        price: float,
        ts: datetime,
        rule_id: str | None,
        regime: str | None,
    ) -> Position:
        book = self._book(direction)
        pos = book.get(symbol)
        if pos is None:
            pos = Position(
                symbol=symbol,
                shares=shares,
                entry_price=price,
                direction=direction,
                entry_date=ts,
                origin_regime=regime,
                rule_id=rule_id,
            )
            book[symbol] = pos
            return pos
        new_shares = pos.shares + shares
        pos.entry_price = (pos.entry_price * pos.shares + price * shares) / new_shares
        pos.shares = new_shares
        pos.mark(price)
        return pos

    def _reduce(self, direction: Direction, symbol: str, shares: float, price: float) -> tuple[Position, float]:
        book = self._book(direction)
        pos = book.get(symbol)
        if pos is None or pos.shares + _EPS < shares:
            held = pos.shares if pos else 0.0
            kind = "short position" if direction == "short" else "shares"
            raise InsufficientShares(f"Insufficient {kind} in {symbol}: need {shares}, have {held}")
        pnl = realized_pnl(direction, pos.entry_price, price, shares)
        pos.shares -= shares
        pos.mark(price)
        if pos.shares <= _EPS:
            book.pop(symbol, None)
        return pos, pnl

    def buy(
        self,
        symbol: str,
        shares: float,
        price: float,
        *,
        ts: datetime,
        notes: str = "",
        rule_id: str | None = None,
        regime: str | None = None,
    ) -> TradeRecord:
        if shares <= 0 or price <= 0:
            raise ValueError("shares and price must be positive")
        with self._lock:
            cost = shares * price
            if cost > self.cash + _EPS:
                raise InsufficientBalance(f"Insufficient funds: need ${cost:.2f}, have ${self.cash:.2f}")
            self.cash -= cost
            self._upsert("long", symbol, shares, price, ts, rule_id, regime)
            return self._record(TradeRecord(symbol=symbol, side="buy", shares=shares, price=price, timestamp=ts, notes=notes))

    def sell(self, symbol: str, shares: float, price: float, *, ts: datetime, notes: str = "") -> TradeRecord:
        if shares <= 0 or price <= 0:
            raise ValueError("shares and price must be positive")
        with self._lock:
            _, pnl = self._reduce("long", symbol, shares, price)
            self.cash += shares * price
            self.realized_pnl_all += pnl
            return self._record(
                TradeRecord(symbol=symbol, side="sell", shares=shares, price=price, timestamp=ts, notes=notes, profit_loss=pnl)
            )

    def open_short(
        self,
        symbol: str,
        shares: float,
        price: float,
        *,
        ts: datetime,
        notes: str = "",
        rule_id: str | None = None,
        regime: str | None = None,
    ) -> TradeRecord:
        if shares <= 0 or price <= 0:
            raise ValueError("shares and price must be positive")
        with self._lock:
            margin = shares * price * SHORT_MARGIN_RATIO
            if self.cash + _EPS < margin:
                raise InsufficientBalance(
                    f"Insufficient margin: need ${margin:.2f}, have ${self.cash:.2f}"
                )
            self._upsert("short", symbol, shares, price, ts, rule_id, regime)
            return self._record(TradeRecord(symbol=symbol, side="short", shares=shares, price=price, timestamp=ts, notes=notes))

    def cover_short(self, symbol: str, shares: float, price: float, *, ts: datetime, notes: str = "") -> TradeRecord:
        if shares <= 0 or price <= 0:
            raise ValueError("shares and price must be positive")
        with self._lock:
            _, pnl = self._reduce("short", symbol, shares, price)
            self.cash += pnl
            self.realized_pnl_all += pnl
            return self._record(
                TradeRecord(symbol=symbol, side="cover", shares=shares, price=price, timestamp=ts, notes=notes, profit_loss=pnl)
            )

    def adjust_cash(self, delta: float, reason: str = "") -> float:
        with self._lock:
            if self.cash + delta < -_EPS:
                raise InsufficientBalance(f"Cash adjustment {delta:.2f} exceeds balance {self.cash:.2f}")
            self.cash += delta
            if reason and not self.quiet:
                self.logger.info("Cash %+.2f (%s) -> %.2f", delta, reason, self.cash)
            return self.cash

    def close_position(
        self,
        symbol: str,
        price: float,
        *,
        ts: datetime,
        direction: Direction = "long",
        reason: str = "manual",
        rule_name: str = "",
        holding_unit: str = "days",
    ) -> CompletedTrade:
        """整笔平仓并返回已实现的交易。"""
        with self._lock:
            pos = self.get_position(symbol, direction)
            if pos is None:
                raise InsufficientShares(f"No open {direction} position in {symbol}")
            snapshot = (pos.shares, pos.entry_price, pos.entry_date or ts, pos.rule_id)
            if direction == "short":
                record = self.cover_short(symbol, pos.shares, price, ts=ts, notes=reason)
            else:
                record = self.sell(symbol, pos.shares, price, ts=ts, notes=reason)
            shares, entry_price, entry_date, rule_id = snapshot
            return CompletedTrade(
                symbol=symbol,
                direction=direction,
                shares=shares,
                entry_price=entry_price,
                entry_date=entry_date,
                exit_price=price,
                exit_date=ts,
                profit_loss=record.profit_loss or 0.0,
                profit_loss_percent=pnl_percent(direction, entry_price, price),
                holding_period=holding_period(entry_date, ts, holding_unit),
                exit_reason=reason,
                rule_id=rule_id,
                rule_name=rule_name,
            )

    def restore_position(self, position: Position) -> Position:
        """载入已保存的持仓（不动现金）。"""
        with self._lock:
            self._book(position.direction)[position.symbol] = position
            return position

    def mark_prices(self, prices: Mapping[str, float]) -> None:
        with self._lock:
            for pos in self.open_positions():
                price = prices.get(pos.symbol)
                if price is not None:
                    pos.mark(price)

    def equity(self, prices: Mapping[str, float] | None = None) -> float:
        """现金 + 持仓盯市价值。"""
        with self._lock:
            if prices:
                self.mark_prices(prices)
            return self.cash + sum(p.market_value for p in self.open_positions())

    def record_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            self.executions.append(record)
            return record
