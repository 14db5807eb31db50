from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from engine.signal_pipeline import analyze_symbol, suggested_shares
from shared.models.models import Candle
from strategy.base import EntryRules, ExitRules, SwingStrategyConfig
from strategy.presets import get_strategy_for_regime
from strategy.regime import MarketRegimeAnalysis, RegimeConfig, detect_regime
from strategy.swing import SwingStrategy, calculate_win_rate, generate_signals, required_monthly_return

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candles(closes: list[float], spread: float = 1.0) -> list[Candle]:
    return [
        Candle(ts=T0 + timedelta(days=i), open=c, high=c + spread, low=c - spread, close=c, volume=1000.0, symbol="AAPL")
        for i, c in enumerate(closes)
    ]


def _analysis(regime: str, *, rsi: float = 50.0, vs_fast: float = 0.0) -> MarketRegimeAnalysis:
    return MarketRegimeAnalysis(
        regime=regime,  # type: ignore[arg-type]
        confidence=60.0,
        adx=30.0,
        rsi=rsi,
        sma_fast=100.0,
        sma_slow=95.0,
        price_vs_fast_sma=vs_fast,
        price_vs_slow_sma=vs_fast,
        bollinger_position=0.5,
        trend_strength="moderate",
    )


def test_regime_fallback_on_short_history():
    result = detect_regime(_candles([100.0 + i for i in range(59)]))
    assert result.regime == "sideways"
    assert result.confidence == 30
    assert result.rsi == 50
    assert result.bollinger_position == 0.5
    assert result.description == "Insufficient data for regime detection"


def test_regime_detects_uptrend_and_downtrend():
    up = detect_regime(_candles([100.0 + 2 * i + (1 if i % 2 else 0) for i in range(80)]))
    assert up.regime == "uptrend"
    assert up.confidence > 50
    down = detect_regime(_candles([300.0 - 2 * i - (1 if i % 2 else 0) for i in range(80)]))
    assert down.regime == "downtrend"


def test_regime_sideways_on_flat_market():
    closes = [100.0 + (1.0 if i % 2 else -1.0) for i in range(80)]
    result = detect_regime(_candles(closes), RegimeConfig())
    assert result.regime == "sideways"
    assert result.trend_strength == "weak"
    assert 50 <= result.confidence <= 90


def test_disabled_strategy_produces_no_signals():
    strategy = get_strategy_for_regime("sideways").model_copy(update={"enabled": False})
    closes = [100.0, 101.0, 99.0] * 10 + [80.0]
    assert generate_signals("AAPL", _candles(closes), _analysis("sideways", rsi=20), strategy) == []


def test_sideways_mean_reversion_long_at_lower_band():
    closes = [100.0, 101.0, 99.0] * 10 + [90.0]
    strategy = get_strategy_for_regime("sideways")
    signals = generate_signals("AAPL", _candles(closes), _analysis("sideways", rsi=25), strategy)
    assert len(signals) == 1
    sig = signals[0]
    assert sig.direction == "long"
    assert sig.confidence == 60
    assert math.isclose(sig.suggested_stop_loss, 90.0 * 0.98)
    assert math.isclose(sig.suggested_take_profit, 90.0 * 1.04)
    assert sig.position_size_percent == 12
    assert len(sig.reasons) == 2


def test_uptrend_pullback_rsi_window():
    strategy = SwingStrategyConfig(
        name="pullback",
        regime="uptrend",
        entry_rules=EntryRules(use_macd=False, use_bollinger=False, min_confidence=50),
        exit_rules=ExitRules(take_profit_percent=8, stop_loss_percent=3),
    )
    history = _candles([100.0 + i for i in range(30)])
    # RSI 在 [30, 40] 区间 + 价格贴近快线 → 55
    signals = generate_signals("AAPL", history, _analysis("uptrend", rsi=35, vs_fast=0.5), strategy)
    assert [s.direction for s in signals] == ["long"]
    assert signals[0].confidence == 55
    # RSI 超出回调区间时只剩均线条件，不够门槛
    assert generate_signals("AAPL", history, _analysis("uptrend", rsi=45, vs_fast=0.5), strategy) == []


def test_downtrend_rally_short():
    strategy = SwingStrategyConfig(
        name="rally",
        regime="downtrend",
        direction="short",
        entry_rules=EntryRules(rsi_overbought=65, use_macd=False, use_bollinger=False, min_confidence=50),
        exit_rules=ExitRules(take_profit_percent=5, stop_loss_percent=2),
    )
    history = _candles([100.0 - 0.5 * i for i in range(30)])
    signals = generate_signals("AAPL", history, _analysis("downtrend", rsi=60, vs_fast=1.0), strategy)
    assert len(signals) == 1
    sig = signals[0]
    assert sig.direction == "short"
    # 空头止损在入场价上方
    assert sig.suggested_stop_loss > sig.suggested_entry > sig.suggested_take_profit


def test_swing_strategy_prefers_overrides():
    custom = get_strategy_for_regime("uptrend").model_copy(update={"name": "mine"})
    assert SwingStrategy({"uptrend": custom}).config_for(_analysis("uptrend")).name == "mine"
    assert SwingStrategy().config_for(_analysis("uptrend")).name == "uptrend_pullback"


def test_swing_helpers():
    assert math.isclose(required_monthly_return(5000, 10000, 24), (2 ** (1 / 24) - 1) * 100)
    assert required_monthly_return(12000, 10000, 24) == 0.0
    assert calculate_win_rate([]) == 0.0


def test_analyze_symbol_pipeline():
    analysis = analyze_symbol("AAPL", _candles([100.0, 101.0]))
    assert analysis.regime.regime == "sideways"
    assert analysis.price == 101.0
    assert analysis.strategy.name == "sideways_mean_reversion"
    data = analysis.to_dict()
    assert data["symbol"] == "AAPL" and isinstance(data["signals"], list)


def test_suggested_shares_capped_by_max_position_size():
    closes = [100.0, 101.0, 99.0] * 10 + [90.0]
    sig = generate_signals("AAPL", _candles(closes), _analysis("sideways", rsi=25), get_strategy_for_regime("sideways"))[0]
    assert math.isclose(suggested_shares(sig, 10000, max_position_size_percent=10), 1000 / 90.0)
