from __future__ import annotations

from datetime import datetime, timezone

from engine.trading_engine import TradingEngine, grid_from_spec, rule_from_spec
from market_data.client import FakeMarketData
from shared.config.config_loader import parse_config
from shared.config.schema import GridSpec, RuleSpec
from shared.state.store import RecordStore

T0 = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)

_FAST = {"interval_seconds": 0, "initial_delay_seconds": 0}


def _cfg(tmp_path, *, state: bool = True):
    return parse_config(
        {
            "portfolio": {"initial_cash": 5000},
            "bots": {"dca": _FAST, "grid": _FAST, "scanner": _FAST, "monitor": _FAST, "symbol_delay_seconds": 0},
            "rules": [{"symbol": "BTCUSDT", "trigger": "indicator_crossover", "profile": "crypto", "name": "golden"}],
            "dca": [{"symbol": "BTCUSDT", "amount": 50, "interval": "daily"}],
            "grid": [{"symbol": "ETHUSDT", "lower_price": 80, "upper_price": 120, "grid_levels": 4, "amount_per_grid": 100}],
            "state": {"enabled": state, "path": str(tmp_path / "state.sqlite3"), "trade_log_dir": None},
        }
    )


def test_specs_get_stable_ids():
    spec = RuleSpec(symbol="AAPL", pattern="hammer", profile="default", cooldown_minutes=3)
    assert rule_from_spec(spec).id == rule_from_spec(spec).id
    assert rule_from_spec(spec).cooldown_minutes == 3
    grid = grid_from_spec(GridSpec(symbol="ETH", lower_price=80, upper_price=120, grid_levels=4, amount_per_grid=10))
    assert len(grid.active_orders) == 4


def test_builds_bots_from_config(tmp_path):
    engine = TradingEngine(cfg_obj=_cfg(tmp_path, state=False), source=FakeMarketData())
    assert [b.name for b in engine.bots] == ["dca", "grid", "scanner", "monitor"]
    assert engine.store is None


def test_state_survives_restart(tmp_path):
    cfg = _cfg(tmp_path)
    with RecordStore(tmp_path / "state.sqlite3") as store:
        first = TradingEngine(cfg_obj=cfg, source=FakeMarketData(), store=store)
        first.broker.buy("BTCUSDT", 0.5, 100.0, ts=T0, rule_id=first.rule_engine.rules[0].id)
        first.rule_engine.rules[0].last_executed_at = T0
        first.dca_configs[0].last_executed = T0
        first.dca_configs[0].total_invested = 50.0
        first.grid_configs[0].active_orders[0].filled = True
        first.save_state()

        second = TradingEngine(cfg_obj=cfg, source=FakeMarketData(), store=store)
        assert second.broker.cash == 4950.0
        pos = second.broker.get_position("BTCUSDT")
        assert pos is not None and pos.shares == 0.5
        assert second.rule_engine.rules[0].last_executed_at == T0
        assert second.dca_configs[0].last_executed == T0
        assert second.dca_configs[0].total_invested == 50.0
        assert second.grid_configs[0].active_orders[0].filled


def test_run_ticks_each_bot_once(tmp_path):
    source = FakeMarketData()
    engine = TradingEngine(cfg_obj=_cfg(tmp_path, state=False), source=source, max_ticks=1)
    result = engine.run()
    assert result.summary["bots"] == {
        "dca": {"ticks": 1, "skipped": 0},
        "grid": {"ticks": 1, "skipped": 0},
        "scanner": {"ticks": 1, "skipped": 0},
        "monitor": {"ticks": 1, "skipped": 0},
    }
    dca_bot = engine.bots[0]
    assert dca_bot.results[0].success
    assert engine.dca_configs[0].total_invested == 50.0
