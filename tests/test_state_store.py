from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bots.grid import initialize_grid_orders
from rules.profiles import build_rule
from shared.models.models import DCAConfig, GridConfig, Position
from shared.state.codec import dca_from_record, grid_from_record, position_from_record, rule_from_record, to_record
from shared.state.migrations import MigrationChain
from shared.state.store import RecordStore
from shared.utils.record_id import make_record_id

T0 = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)


def test_v1_rule_record_is_migrated_and_written_back(tmp_path):
    with RecordStore(tmp_path / "state.sqlite3") as store:
        store.save("rule", "r1", {"schema_version": 1, "symbol": "AAPL", "type": "sell", "rule_type": "macd"})
        record = store.load("rule", "r1")
        assert record["schema_version"] == 2
        assert record["direction"] == "sell"
        assert record["trigger"] == "indicator_crossover"
        assert record["stop_loss_percent"] == 1.0
        assert record["trailing_stop_percent"] == 0.75
        assert "type" not in record

        rule = rule_from_record(record)
        assert rule.direction == "sell"
        assert store.load_all("rule")["r1"] == record


def test_missing_schema_version_is_treated_as_v1():
    chain = MigrationChain("demo", current_version=2)

    @chain.register(1)
    def _add_flag(record):
        record["flag"] = True
        return record

    assert chain.upgrade({"x": 1}) == {"x": 1, "flag": True, "schema_version": 2}
    with pytest.raises(ValueError, match="Duplicate migration"):
        chain.register(1)(_add_flag)


def test_future_schema_version_is_rejected(tmp_path):
    with RecordStore(tmp_path / "state.sqlite3") as store:
        store.save("rule", "r2", {"schema_version": 3, "symbol": "AAPL"})
        with pytest.raises(ValueError, match="Unknown schema_version 3 for rule"):
            store.load("rule", "r2")


def test_unknown_kind_and_delete(tmp_path):
    with RecordStore(tmp_path / "state.sqlite3") as store:
        with pytest.raises(ValueError, match="Unknown record kind"):
            store.save("orders", "x", {})
        store.save("dca", "d1", {"symbol": "BTC", "amount": 10})
        assert store.delete("dca", "d1")
        assert store.load("dca", "d1") is None
        assert not store.delete("dca", "d1")


def test_codec_round_trips_runtime_state(tmp_path):
    dca = DCAConfig(symbol="BTC", amount=50.0, last_executed=T0, next_execution=T0, total_invested=50.0, total_units=0.002)
    grid = GridConfig(symbol="ETH", lower_price=80, upper_price=120, grid_levels=3, amount_per_grid=100)
    grid.active_orders = initialize_grid_orders(grid)
    grid.active_orders[0].filled = True
    grid.active_orders[0].filled_at = T0
    pos = Position(symbol="AAPL", shares=3, entry_price=100.0, entry_date=T0, rule_id="r1")
    pos.mark(110.0)
    rule = build_rule("AAPL", pattern="hammer", profile="conservative")
    rule.last_executed_at = T0

    with RecordStore(tmp_path / "state.sqlite3") as store:
        store.save("dca", dca.id, to_record(dca))
        store.save("grid", grid.id, to_record(grid))
        store.save("rule", rule.id, to_record(rule))
        assert dca_from_record(store.load("dca", dca.id)) == dca
        assert grid_from_record(store.load("grid", grid.id)) == grid
        assert rule_from_record(store.load("rule", rule.id)) == rule
    assert position_from_record(to_record(pos)) == pos


def test_record_ids_are_deterministic():
    a = make_record_id("rule", "AAPL", "buy", "pattern", "hammer", "")
    assert a == make_record_id("rule", "AAPL", "buy", "pattern", "hammer", "")
    assert a != make_record_id("rule", "AAPL", "sell", "pattern", "hammer", "")
