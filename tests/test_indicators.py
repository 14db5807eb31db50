from __future__ import annotations

import math

import numpy as np

from factors.indicators import (
    adx,
    atr,
    bollinger_bands,
    bollinger_position,
    ema,
    macd,
    macd_crossover,
    rsi,
    rsi_series,
    sma,
    volume_ratio,
)


def test_rsi_none_when_shorter_than_period_plus_one():
    assert rsi([1.0] * 14, period=14) is None
    assert rsi([], period=14) is None
    assert rsi(list(range(15)), period=14) is not None


def test_rsi_is_100_when_no_losses():
    assert rsi([float(i) for i in range(1, 30)], period=14) == 100.0
    # 平盘也没有跌幅
    assert rsi([5.0] * 20, period=14) == 100.0


def test_rsi_bounded_and_low_on_steady_decline():
    closes = [100 - i * 0.5 + (0.3 if i % 3 == 0 else 0.0) for i in range(40)]
    value = rsi(closes, 14)
    assert value is not None
    assert 0.0 <= value < 30.0
    series = rsi_series(closes, 14)
    assert np.isnan(series[:14]).all()
    assert not np.isnan(series[14:]).any()


def test_sma_falls_back_to_last_price_when_short():
    assert sma([1.0, 2.0, 3.0], 5) == 3.0
    assert sma([], 5) is None
    assert sma([1.0, 2.0, 3.0, 4.0], 2) == 3.5


def test_ema_seeded_with_sma():
    assert ema([2.0, 4.0], 3) == 4.0  # 不足 period：退化为 SMA（最新价）
    value = ema([1.0, 2.0, 3.0, 4.0], 3)
    # 种子 2.0，k=0.5 → (4-2)*0.5+2 = 3
    assert math.isclose(value, 3.0)


def test_macd_requires_slow_plus_signal_samples():
    assert macd([float(i) for i in range(34)]) is None
    result = macd([float(i) for i in range(35)])
    assert result is not None
    assert result.macd > 0


def test_macd_crossover_detects_turn():
    # 加速下跌后反转上涨
    closes = [200.0 - 0.1 * i * i for i in range(40)] + [48.0 + 3 * i for i in range(1, 15)]
    kinds = set()
    for end in range(35, len(closes) + 1):
        kind = macd_crossover(macd(closes[:end]))
        if kind:
            kinds.add(kind)
    assert "bullish" in kinds
    assert macd_crossover(None) is None


def test_bollinger_short_data_collapses_to_mean():
    bands = bollinger_bands([1.0, 2.0, 3.0], period=20)
    assert bands is not None
    assert bands.upper == bands.middle == bands.lower == 2.0
    assert bands.bandwidth == 0.0
    assert bollinger_position(2.0, bands) == 0.5
    assert bollinger_bands([], 20) is None


def test_bollinger_position_clamped():
    bands = bollinger_bands([float(i % 5) for i in range(40)], period=20)
    assert bollinger_position(1000.0, bands) == 1.0
    assert bollinger_position(-1000.0, bands) == 0.0


def test_atr_short_data_rules():
    assert atr([1.0], [1.0], [1.0]) == 0.0
    # 两个 TR：|11-9|=2 与 |12-10|=2
    assert atr([11.0, 11.0, 12.0], [9.0, 9.0, 10.0], [10.0, 10.0, 11.0], period=14) == 2.0


def test_adx_neutral_when_short():
    result = adx([1.0] * 10, [1.0] * 10, [1.0] * 10, 14)
    assert result.adx == 20.0
    assert result.plus_di == 0.0 and result.minus_di == 0.0


def test_adx_strong_trend():
    closes = [100.0 + 2 * i for i in range(60)]
    highs = [c + 1 for c in closes]
    lows = [c - 1 for c in closes]
    result = adx(highs, lows, closes, 14)
    assert result.adx > 25
    assert result.plus_di > result.minus_di


def test_volume_ratio():
    assert volume_ratio([100.0, 100.0, 300.0]) == 3.0
    assert volume_ratio([100.0]) is None
    assert volume_ratio([0.0, 0.0, 10.0]) is None
