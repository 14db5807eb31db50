from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from engine.backtest_engine import BacktestConfig, BacktestEngine, parse_iso, run_backtest
from rules.profiles import RiskProfile, build_rule
from shared.errors import InsufficientData
from shared.models.models import Candle, PatternMatch

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
CLOSES = [100.0] * 12 + [110.0, 120.0, 115.0, 115.0, 115.0, 115.0, 115.0, 115.0]


@dataclass
class StubDetector:
    """最后一根收盘 100 → 买入信号；120 → 卖出信号。"""

    name: str = "stub"
    lookback: int = 5

    def detect(self, candles: Sequence[Candle]) -> list[PatternMatch]:
        if not candles:
            return []
        close = candles[-1].close
        if close == 100.0:
            return [PatternMatch(pattern="stub", signal="buy", confidence=90.0)]
        if close == 120.0:
            return [PatternMatch(pattern="stub", signal="sell", confidence=90.0)]
        return []


def _candles(closes: list[float], step: timedelta = timedelta(days=1)) -> list[Candle]:
    return [
        Candle(ts=T0 + i * step, open=c, high=c, low=c, close=c, volume=1000.0, symbol="AAPL")
        for i, c in enumerate(closes)
    ]


def _cfg(*rules, **kw) -> BacktestConfig:
    kw.setdefault("use_rule_exits", False)
    return BacktestConfig(symbol="AAPL", start="2024-01-01", end="2024-12-31", rules=list(rules), **kw)


def _buy():
    return build_rule("AAPL", pattern="stub", profile="crypto", name="stub buy")


def _sell():
    return build_rule("AAPL", direction="sell", pattern="stub", profile="crypto", name="stub sell")


def test_parse_iso_treats_naive_as_utc():
    assert parse_iso("2024-01-01") == T0
    assert parse_iso("2024-01-01T00:00:00Z") == T0
    assert parse_iso(datetime(2024, 1, 1)) == T0


def test_empty_history_raises_with_symbol():
    with pytest.raises(InsufficientData, match="No historical data returned for AAPL") as exc:
        run_backtest(_cfg(), [])
    assert exc.value.symbol == "AAPL"
    assert exc.value.rows == 0


def test_short_history_reports_row_count():
    with pytest.raises(InsufficientData, match="Only 5 days available"):
        run_backtest(_cfg(), _candles([100.0] * 5))
    with pytest.raises(InsufficientData, match="Only 15 candles available"):
        run_backtest(_cfg(intraday=True), _candles([100.0] * 15, timedelta(minutes=5)))


def test_date_range_filter_applies_minimum():
    cfg = BacktestConfig(symbol="AAPL", start="2024-01-01", end="2024-01-03", rules=[])
    with pytest.raises(InsufficientData, match="Not enough data in selected date range for AAPL. Only 3 days"):
        run_backtest(cfg, _candles([100.0] * 30))


def test_entry_and_signal_exit():
    result = run_backtest(_cfg(_buy(), _sell()), _candles(CLOSES), StubDetector())
    assert len(result.trades) == 1
    trade = result.trades[0]
    # 10% × $10000 / $100 = 10 股，$115 平仓
    assert trade.shares == 10
    assert trade.entry_price == 100.0
    assert trade.exit_price == 115.0
    assert trade.profit_loss == 150.0
    assert trade.exit_reason == "signal"
    assert trade.rule_name == "stub sell"
    assert result.metrics["total_trades"] == 1
    assert result.metrics["winning_trades"] == 1
    assert len(result.equity_curve) == len(CLOSES) - 10


def test_open_position_closed_at_end_of_period():
    result = run_backtest(_cfg(_buy()), _candles(CLOSES), StubDetector())
    assert [t.exit_reason for t in result.trades] == ["end_of_period"]
    assert result.trades[0].exit_price == 115.0
    assert result.metrics["total_return"] == 150.0


def test_rule_exits_apply_when_enabled():
    result = run_backtest(_cfg(_buy(), use_rule_exits=True), _candles(CLOSES), StubDetector())
    # crypto 预设止盈 5%：110 触发
    assert result.trades[0].exit_reason == "take_profit"
    assert result.trades[0].exit_price == 110.0


def test_other_symbol_rules_ignored():
    other = build_rule("MSFT", pattern="stub", profile="crypto")
    result = run_backtest(_cfg(other), _candles(CLOSES), StubDetector())
    assert result.trades == []
    assert result.metrics["total_return"] == 0


def test_rule_ids_are_stable_across_builds():
    assert _buy().id == _buy().id
    assert _buy().id != _sell().id


def test_backtest_is_deterministic():
    a = run_backtest(_cfg(_buy(), _sell()), _candles(CLOSES), StubDetector())
    b = run_backtest(_cfg(_buy(), _sell()), _candles(CLOSES), StubDetector())
    assert a.trades == b.trades
    assert a.equity_curve == b.equity_curve


def test_run_exports_csv(tmp_path):
    engine = BacktestEngine(
        _cfg(_buy(), _sell()), candles=_candles(CLOSES), detector=StubDetector(), output_dir=tmp_path
    )
    res = engine.run()
    assert res.summary["trades"] == 1
    assert (tmp_path / "trades.csv").exists()
    assert (tmp_path / "equity.csv").exists()
    assert res.artifacts["trades_csv"] == str(tmp_path / "trades.csv")


@dataclass
class CloseDetector:
    """窗口最后一根收盘等于 `trigger` 时给出买入信号。"""

    trigger: float
    name: str = "stub"
    lookback: int = 5

    def detect(self, candles: Sequence[Candle]) -> list[PatternMatch]:
        if candles and candles[-1].close == self.trigger:
            return [PatternMatch(pattern="stub", signal="buy", confidence=90.0)]
        return []


def test_uptrend_entry_closes_on_regime_change():
    # 80 根单边上涨，随后每根下跌 3
    closes = [100.0 + i for i in range(80)] + [179.0 - 3 * j for j in range(1, 31)]
    rule = build_rule(
        "AAPL",
        pattern="stub",
        profile=RiskProfile(name="regime", exit_on_regime_change=True),
        name="regime buy",
    )
    result = run_backtest(_cfg(rule, use_rule_exits=True), _candles(closes), CloseDetector(trigger=165.0))

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.entry_price == 166.0
    assert trade.exit_reason == "regime_change"
    assert trade.exit_price < 179.0
    assert trade.exit_date < _candles(closes)[-1].ts


def test_regime_exit_ignored_when_rule_does_not_ask_for_it():
    closes = [100.0 + i for i in range(80)] + [179.0 - 3 * j for j in range(1, 31)]
    rule = build_rule("AAPL", pattern="stub", profile=RiskProfile(name="plain"), name="plain buy")
    result = run_backtest(_cfg(rule, use_rule_exits=True), _candles(closes), CloseDetector(trigger=165.0))
    assert [t.exit_reason for t in result.trades] == ["end_of_period"]
