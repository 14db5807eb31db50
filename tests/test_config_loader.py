from pathlib import Path

import pytest

from shared.config.config_loader import load_config, parse_config
from shared.config.schema import MainConfig

ROOT = Path(__file__).resolve().parents[1]


def test_sample_config_loads():
    cfg_path = ROOT / "config" / "config.yml"
    assert cfg_path.exists(), "示例配置缺失"

    cfg = load_config(str(cfg_path), load_env=False)
    assert isinstance(cfg, MainConfig)
    assert cfg.market_data.provider == "fake"
    assert cfg.portfolio.initial_cash == 10000
    assert [r.profile for r in cfg.rules] == ["crypto", "crypto", "conservative"]
    # 扁平写法的覆盖项被收进 overrides
    assert cfg.rules[1].overrides == {"action": {"sizing": "percent_of_portfolio", "percent_of_portfolio": 100}}
    assert cfg.rules[2].overrides == {"cooldown_minutes": 30}
    assert cfg.grid[0].grid_levels == 8
    assert cfg.bots.grid.interval_seconds == 30


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yml"))


def test_env_placeholders(tmp_path, monkeypatch: pytest.MonkeyPatch):
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text("market_data:\n  provider: binance\n  base_url: ${SWINGPILOT_TEST_URL}\n", encoding="utf-8")

    monkeypatch.delenv("SWINGPILOT_TEST_URL", raising=False)
    with pytest.raises(ValueError) as exc:
        load_config(str(cfg_path), load_env=False)
    assert "Missing environment variable: SWINGPILOT_TEST_URL" in str(exc.value)

    monkeypatch.setenv("SWINGPILOT_TEST_URL", "https://example.test")
    cfg = load_config(str(cfg_path), load_env=False)
    assert cfg.market_data.base_url == "https://example.test"


def test_unknown_key_suggests_fix():
    with pytest.raises(ValueError) as exc:
        parse_config({"auto_trade": {"max_trades_per_dya": 3}})
    assert "config.auto_trade contains unknown keys" in str(exc.value)
    assert "did you mean 'max_trades_per_day'" in str(exc.value)

    with pytest.raises(ValueError, match="config contains unknown keys"):
        parse_config({"portfolios": {}})


def test_unknown_rule_profile():
    with pytest.raises(ValueError) as exc:
        parse_config({"rules": [{"symbol": "AAPL", "profile": "agressive"}]})
    assert "config.rules[0].profile unknown: agressive" in str(exc.value)
    assert "did you mean 'aggressive'" in str(exc.value)


def test_rule_requires_symbol():
    with pytest.raises(ValueError, match=r"config.rules\[0\].symbol"):
        parse_config({"rules": [{"pattern": "hammer"}]})


def test_grid_range_validated():
    with pytest.raises(ValueError, match="lower_price must be below upper_price"):
        parse_config({"grid": [{"symbol": "ETH", "lower_price": 120, "upper_price": 80, "amount_per_grid": 10}]})


def test_empty_config_uses_defaults():
    cfg = parse_config(None)
    assert cfg.auto_trade.max_trades_per_day == 10
    assert cfg.bots.dca.interval_seconds == 60
    assert cfg.rules == []
