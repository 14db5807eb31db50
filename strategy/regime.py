"""市场状态识别（上涨 / 下跌 / 震荡）。

SMA 快慢线 + ADX/DI + RSI，外加布林带位置作为参考。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

from pydantic import BaseModel, ConfigDict

from factors.indicators import adx, bollinger_bands, bollinger_position, rsi, sma
from shared.models.models import Candle
from strategy.base import Regime

TrendStrength = Literal["strong", "moderate", "weak"]


class RegimeConfig(BaseModel):
    sma_fast_period: int = 20
    sma_slow_period: int = 50
    adx_period: int = 14
    adx_trend_threshold: float = 25.0
    rsi_period: int = 14
    lookback_days: int = 60
    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class MarketRegimeAnalysis:
    regime: Regime
    confidence: float
    adx: float
    rsi: float
    sma_fast: float
    sma_slow: float
    price_vs_fast_sma: float
    price_vs_slow_sma: float
    bollinger_position: float
    trend_strength: TrendStrength
    description: str = ""


FALLBACK_ANALYSIS = MarketRegimeAnalysis(
    regime="sideways",
    confidence=30.0,
    adx=20.0,
    rsi=50.0,
    sma_fast=0.0,
    sma_slow=0.0,
    price_vs_fast_sma=0.0,
    price_vs_slow_sma=0.0,
    bollinger_position=0.5,
    trend_strength="weak",
    description="Insufficient data for regime detection",
)


def _pct_diff(price: float, ref: float) -> float:
    return (price - ref) / ref * 100.0 if ref else 0.0


def _trend_strength(adx_value: float) -> TrendStrength:
    if adx_value >= 40:
        return "strong"
    if adx_value >= 30:
        return "moderate"
    return "weak"


def detect_regime(history: Sequence[Candle], cfg: RegimeConfig | None = None) -> MarketRegimeAnalysis:
    """识别当前市场状态。

    Parameters
    ----------
    history:
        按时间升序的 K 线。
    cfg:
        识别参数；为 None 时使用默认值。

    Returns
    -------
    MarketRegimeAnalysis
        历史长度不足 `lookback_days` 时固定返回 sideways / 置信度 30。
    """
    cfg = cfg or RegimeConfig()
    if len(history) < cfg.lookback_days:
        return FALLBACK_ANALYSIS

    closes = [c.close for c in history]
    highs = [c.high for c in history]
    lows = [c.low for c in history]
    price = closes[-1]

    sma_fast = sma(closes, cfg.sma_fast_period) or price
    sma_slow = sma(closes, cfg.sma_slow_period) or price
    trend = adx(highs, lows, closes, cfg.adx_period)
    rsi_value = rsi(closes, cfg.rsi_period)
    bands = bollinger_bands(closes, 20, 2.0)

    vs_fast = _pct_diff(price, sma_fast)
    vs_slow = _pct_diff(price, sma_slow)
    threshold = cfg.adx_trend_threshold
    a = trend.adx

    if a >= threshold:
        strength = _trend_strength(a)
        if trend.plus_di > trend.minus_di and sma_fast > sma_slow and price > sma_fast:
            regime: Regime = "uptrend"
            confidence = min(95.0, 50.0 + a + (10.0 if vs_fast > 0 else 0.0))
            description = f"Strong uptrend: ADX {a:.1f}, price above both SMAs, +DI > -DI"
        elif trend.minus_di > trend.plus_di and sma_fast < sma_slow and price < sma_fast:
            regime = "downtrend"
            confidence = min(95.0, 50.0 + a + (10.0 if vs_fast < 0 else 0.0))
            description = f"Downtrend: ADX {a:.1f}, price below both SMAs, -DI > +DI"
        elif trend.plus_di > trend.minus_di:
            regime = "uptrend"
            confidence = min(70.0, 40.0 + a * 0.5)
            description = f"Weak uptrend: ADX {a:.1f}, +DI > -DI but mixed SMA signals"
        else:
            regime = "downtrend"
            confidence = min(70.0, 40.0 + a * 0.5)
            description = f"Weak downtrend: ADX {a:.1f}, -DI > +DI but mixed SMA signals"
    else:
        regime = "sideways"
        strength = "weak"
        confidence = min(90.0, 50.0 + (threshold - a) * 2.0)
        bandwidth = bands.bandwidth if bands else 0.0
        description = (
            f"Sideways/ranging: ADX {a:.1f} (below {threshold:g} threshold), Bollinger BW: {bandwidth:.1f}%"
        )

    return MarketRegimeAnalysis(
        regime=regime,
        confidence=confidence,
        adx=a,
        rsi=rsi_value if rsi_value is not None else 50.0,
        sma_fast=sma_fast,
        sma_slow=sma_slow,
        price_vs_fast_sma=vs_fast,
        price_vs_slow_sma=vs_slow,
        bollinger_position=bollinger_position(price, bands),
        trend_strength=strength,
        description=description,
    )


def regime_flipped(direction: str, origin: str | None, current: str) -> bool:
    """上涨中开的多单遇到下跌、下跌中开的空单遇到上涨，视为状态反转。"""
    if direction == "long":
        return origin == "uptrend" and current == "downtrend"
    return origin == "downtrend" and current == "uptrend"
