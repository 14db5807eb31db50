from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from broker.paper_broker import PaperBroker
from shared.errors import InsufficientBalance, InsufficientShares
from utils.pnl import compute_unrealized_pnl

T0 = datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc)


def test_buy_averages_cost_and_sell_realizes_pnl():
    broker = PaperBroker(10000, quiet=True)
    broker.buy("AAPL", 10, 100.0, ts=T0)
    broker.buy("AAPL", 10, 110.0, ts=T0)
    pos = broker.get_position("AAPL")
    assert pos is not None
    assert pos.shares == 20
    assert pos.entry_price == 105.0
    assert broker.cash == 10000 - 2100

    rec = broker.sell("AAPL", 5, 120.0, ts=T0)
    assert rec.profit_loss == 75.0
    assert broker.get_position("AAPL").shares == 15


def test_buy_rejects_insufficient_cash_without_side_effects():
    broker = PaperBroker(100, quiet=True)
    with pytest.raises(InsufficientBalance):
        broker.buy("AAPL", 2, 100.0, ts=T0)
    assert broker.cash == 100
    assert broker.get_position("AAPL") is None
    assert broker.trades == []


def test_sell_more_than_held_raises():
    broker = PaperBroker(1000, quiet=True)
    broker.buy("AAPL", 1, 100.0, ts=T0)
    with pytest.raises(InsufficientShares):
        broker.sell("AAPL", 2, 100.0, ts=T0)
    with pytest.raises(InsufficientShares):
        broker.cover_short("AAPL", 1, 100.0, ts=T0)


def test_short_requires_150_percent_margin_and_cover_credits_pnl():
    broker = PaperBroker(1000, quiet=True)
    with pytest.raises(InsufficientBalance):
        broker.open_short("TSLA", 10, 100.0, ts=T0)  # 需要 1500
    broker.open_short("TSLA", 6, 100.0, ts=T0)
    assert broker.cash == 1000
    rec = broker.cover_short("TSLA", 6, 90.0, ts=T0)
    assert rec.profit_loss == 60.0
    assert broker.cash == 1060
    assert broker.get_position("TSLA", "short") is None


@pytest.mark.parametrize("direction", ["long", "short"])
def test_open_and_close_at_same_price_is_flat(direction):
    broker = PaperBroker(10000, quiet=True)
    if direction == "short":
        broker.open_short("AAPL", 10, 150.0, ts=T0)
    else:
        broker.buy("AAPL", 10, 150.0, ts=T0)
    trade = broker.close_position("AAPL", 150.0, ts=T0, direction=direction)
    assert trade.profit_loss == 0
    assert trade.profit_loss_percent == 0
    assert trade.holding_period == 0
    assert broker.cash == 10000


def test_close_position_reports_holding_period():
    broker = PaperBroker(10000, quiet=True)
    broker.buy("AAPL", 10, 100.0, ts=T0, rule_id="r1")
    trade = broker.close_position("AAPL", 110.0, ts=T0 + timedelta(days=3, hours=5), reason="take_profit")
    assert trade.holding_period == 3
    assert trade.profit_loss == 100.0
    assert trade.profit_loss_percent == 10.0
    assert trade.rule_id == "r1"
    assert trade.exit_reason == "take_profit"


def test_equity_marks_long_and_short_positions():
    broker = PaperBroker(10000, quiet=True)
    broker.buy("AAPL", 10, 100.0, ts=T0)
    broker.open_short("TSLA", 5, 200.0, ts=T0)
    equity = broker.equity({"AAPL": 110.0, "TSLA": 190.0})
    assert equity == 9000 + 1100 + 50
    assert compute_unrealized_pnl(broker.open_positions(), {"AAPL": 110.0, "TSLA": 190.0}) == 150.0


def test_adjust_cash_cannot_go_negative():
    broker = PaperBroker(50, quiet=True)
    assert broker.adjust_cash(25, "deposit") == 75
    with pytest.raises(InsufficientBalance):
        broker.adjust_cash(-100)


def test_transaction_is_reentrant():
    broker = PaperBroker(1000, quiet=True)
    with broker.transaction():
        with broker.transaction():
            broker.buy("AAPL", 1, 100.0, ts=T0)
    assert broker.cash == 900
