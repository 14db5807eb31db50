"""交易日志持久化（CSV 日切）与回测产物导出。"""

import csv
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, TextIO

import pandas as pd

from shared.models.models import CompletedTrade, EquityPoint, TradeRecord

_TRADE_COLUMNS = ["ts", "symbol", "side", "shares", "price", "total", "profit_loss", "notes"]


class TradeLogger:
    """按日切 CSV 记录成交流水。

    Parameters
    ----------
    base_dir:
        输出目录。
    """

    def __init__(self, base_dir: str | Path = "dataset/trades"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.current_date: date | None = None
        self.file: Optional[TextIO] = None
        self.writer = None

    def _ensure_file(self, day: date) -> None:
        if self.current_date == day and self.file:
            return
        if self.file:
            self.file.close()
        self.current_date = day
        file_path = self.base_dir / f"trades_{day}.csv"
        new_file = not file_path.exists()
        self.file = file_path.open("a", newline="", encoding="utf-8")
        self.writer = csv.writer(self.file)
        if new_file:
            self.writer.writerow(_TRADE_COLUMNS)

    def log(self, record: TradeRecord) -> None:
        """写入一条成交记录。"""
        ts = record.timestamp
        self._ensure_file(ts.date() if isinstance(ts, datetime) else datetime.now(timezone.utc).date())
        if self.writer is None or self.file is None:
            raise RuntimeError("TradeLogger not initialized")
        self.writer.writerow(
            [
                ts.isoformat() if isinstance(ts, datetime) else str(ts),
                record.symbol,
                record.side,
                f"{record.shares:.6f}",
                f"{record.price:.4f}",
                f"{record.total:.2f}",
                f"{record.profit_loss:.2f}" if record.profit_loss is not None else "",
                record.notes,
            ]
        )
        self.file.flush()

    def close(self) -> None:
        if self.file:
            self.file.close()
            self.file = None
            self.writer = None


def export_trades_csv(trades: Iterable[CompletedTrade], path: str | Path) -> Path:
    """导出已平仓交易。"""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    rows = []
    for t in trades:
        rows.append(
            {
                "symbol": t.symbol,
                "direction": t.direction,
                "shares": t.shares,
                "entry_date": t.entry_date.isoformat(),
                "entry_price": t.entry_price,
                "exit_date": t.exit_date.isoformat(),
                "exit_price": t.exit_price,
                "profit_loss": t.profit_loss,
                "profit_loss_percent": t.profit_loss_percent,
                "holding_period": t.holding_period,
                "exit_reason": t.exit_reason,
                "rule": t.rule_name,
            }
        )
    pd.DataFrame(rows).to_csv(out, index=False)
    return out


def export_equity_csv(equity_curve: Iterable[EquityPoint], path: str | Path) -> Path:
    """导出权益曲线，附带 drawdown / drawdown_pct 列。"""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    rows = []
    peak: float | None = None
    for pt in equity_curve:
        peak = pt.equity if peak is None else max(peak, pt.equity)
        dd = peak - pt.equity
        rows.append(
            {
                "ts": pt.date.isoformat(),
                "equity": pt.equity,
                "drawdown": dd,
                "drawdown_pct": dd / peak * 100.0 if peak > 0 else 0.0,
            }
        )
    pd.DataFrame(rows).to_csv(out, index=False)
    return out
