"""技术指标纯函数库。

约定
----
- 输入序列按时间从旧到新排列；
- `xxx_series` 返回与输入等长的 numpy 数组，预热期为 NaN；
- 取“最新值”的函数在数据不足时返回 None 或中性默认值，从不抛异常。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np
import pandas as pd

Crossover = Literal["bullish", "bearish"]


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float
    histogram: float
    prev_macd: float | None = None
    prev_signal: float | None = None


@dataclass(frozen=True)
class ADXResult:
    adx: float
    plus_di: float
    minus_di: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float


NEUTRAL_ADX = ADXResult(adx=20.0, plus_di=0.0, minus_di=0.0)


def _as_array(values: Sequence[float] | np.ndarray | pd.Series) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _pad(values: np.ndarray, n: int, lead: int) -> np.ndarray:
    out = np.full(n, np.nan)
    out[lead:lead + len(values)] = values
    return out


def _wilder(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder 平滑：首值为前 period 个样本均值，之后 `(prev*(p-1)+x)/p`。"""
    out = np.full(len(values), np.nan)
    if len(values) < period:
        return out
    val = float(np.mean(values[:period]))
    out[period - 1] = val
    for i in range(period, len(values)):
        val = (val * (period - 1) + float(values[i])) / period
        out[i] = val
    return out


def _last(values: np.ndarray) -> float | None:
    if len(values) == 0 or np.isnan(values[-1]):
        return None
    return float(values[-1])


# ---------------------------------------------------------------------------
# 均线
# ---------------------------------------------------------------------------

def sma_series(prices: Sequence[float], period: int) -> np.ndarray:
    data = _as_array(prices)
    return pd.Series(data).rolling(period, min_periods=period).mean().to_numpy()


def sma(prices: Sequence[float], period: int) -> float | None:
    """简单移动平均；样本不足 period 时返回最新价。"""
    data = _as_array(prices)
    if len(data) == 0:
        return None
    if len(data) < period:
        return float(data[-1])
    return float(np.mean(data[-period:]))


def ema_series(prices: Sequence[float], period: int) -> np.ndarray:
    """EMA 序列，以前 period 个样本的 SMA 作为种子。"""
    data = _as_array(prices)
    out = np.full(len(data), np.nan)
    if len(data) < period:
        return out
    k = 2.0 / (period + 1)
    val = float(np.mean(data[:period]))
    out[period - 1] = val
    for i in range(period, len(data)):
        val = (float(data[i]) - val) * k + val
        out[i] = val
    return out


def ema(prices: Sequence[float], period: int) -> float | None:
    data = _as_array(prices)
    if len(data) < period:
        return sma(data, period)
    return _last(ema_series(data, period))


# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------

def rsi_series(closes: Sequence[float], period: int = 14) -> np.ndarray:
    data = _as_array(closes)
    n = len(data)
    if n < period + 1:
        return np.full(n, np.nan)
    changes = np.diff(data)
    avg_gain = _wilder(np.clip(changes, 0.0, None), period)
    avg_loss = _wilder(np.clip(-changes, 0.0, None), period)
    with np.errstate(divide="ignore", invalid="ignore"):
        rs = np.where(avg_loss == 0, np.inf, avg_gain / avg_loss)
        values = 100.0 - 100.0 / (1.0 + rs)
    values[np.isnan(avg_gain)] = np.nan
    return _pad(values, n, 1)


def rsi(closes: Sequence[float], period: int = 14) -> float | None:
    """Wilder RSI；样本少于 period+1 时返回 None，平均跌幅为 0 时返回 100。"""
    data = _as_array(closes)
    if len(data) < period + 1:
        return None
    return _last(rsi_series(data, period))


# ---------------------------------------------------------------------------
# MACD
# ---------------------------------------------------------------------------

def macd_series(
    closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """返回 (macd_line, signal_line, histogram)，均与输入等长。"""
    data = _as_array(closes)
    n = len(data)
    line = ema_series(data, fast) - ema_series(data, slow)
    start = max(fast, slow) - 1
    if n <= start:
        empty = np.full(n, np.nan)
        return line, empty, empty.copy()
    sig = _pad(ema_series(line[start:], signal), n, start)
    return line, sig, line - sig


def macd(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MACDResult | None:
    data = _as_array(closes)
    if len(data) < slow + signal:
        return None
    line, sig, hist = macd_series(data, fast, slow, signal)
    prev_macd = float(line[-2]) if not np.isnan(sig[-2]) else None
    prev_signal = float(sig[-2]) if not np.isnan(sig[-2]) else None
    return MACDResult(
        macd=float(line[-1]),
        signal=float(sig[-1]),
        histogram=float(hist[-1]),
        prev_macd=prev_macd,
        prev_signal=prev_signal,
    )


def macd_crossover(result: MACDResult | None) -> Crossover | None:
    """前一根 MACD<signal 且当前 MACD>signal 为金叉，反之为死叉。"""
    if result is None or result.prev_macd is None or result.prev_signal is None:
        return None
    if result.prev_macd < result.prev_signal and result.macd > result.signal:
        return "bullish"
    if result.prev_macd > result.prev_signal and result.macd < result.signal:
        return "bearish"
    return None


# ---------------------------------------------------------------------------
# 波动/趋势强度
# ---------------------------------------------------------------------------

def true_range(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> np.ndarray:
    """真实波幅，从第 2 根 K 线开始（长度 n-1）。"""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if len(c) < 2:
        return np.array([], dtype=float)
    prev_close = c[:-1]
    return np.maximum.reduce([h[1:] - l[1:], np.abs(h[1:] - prev_close), np.abs(l[1:] - prev_close)])


def atr_series(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> np.ndarray:
    n = len(closes)
    tr = true_range(highs, lows, closes)
    return _pad(_wilder(tr, period), n, 1) if n >= 2 else np.full(n, np.nan)


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> float:
    """Wilder ATR；不足 2 根返回 0，不足 period 个 TR 时返回 TR 均值。"""
    tr = true_range(highs, lows, closes)
    if len(tr) == 0:
        return 0.0
    if len(tr) < period:
        return float(np.mean(tr))
    return float(_wilder(tr, period)[-1])


def adx_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """返回 (adx, plus_di, minus_di)，均与输入等长。"""
    h, l = _as_array(highs), _as_array(lows)
    n = len(closes)
    if n < 2:
        empty = np.full(n, np.nan)
        return empty, empty.copy(), empty.copy()

    tr = true_range(h, l, closes)
    up = h[1:] - h[:-1]
    down = l[:-1] - l[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)

    s_tr = _wilder(tr, period)
    s_plus = _wilder(plus_dm, period)
    s_minus = _wilder(minus_dm, period)
    with np.errstate(divide="ignore", invalid="ignore"):
        plus_di = np.where(s_tr > 0, 100.0 * s_plus / s_tr, 0.0)
        minus_di = np.where(s_tr > 0, 100.0 * s_minus / s_tr, 0.0)
        di_sum = plus_di + minus_di
        dx = np.where(di_sum > 0, np.abs(plus_di - minus_di) / di_sum * 100.0, 0.0)
    warm = np.isnan(s_tr)
    plus_di[warm] = np.nan
    minus_di[warm] = np.nan
    dx[warm] = np.nan

    adx_vals = np.full(len(tr), np.nan)
    if len(tr) >= period:
        adx_vals = _pad(_wilder(dx[period - 1:], period), len(tr), period - 1)
    return _pad(adx_vals, n, 1), _pad(plus_di, n, 1), _pad(minus_di, n, 1)


def adx(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> ADXResult:
    """ADX 与 ±DI；不足 2×period 根时返回中性默认值（ADX=20, DI=0）。"""
    if len(closes) < 2 * period:
        return NEUTRAL_ADX
    adx_vals, plus_di, minus_di = adx_series(highs, lows, closes, period)
    last_adx = _last(adx_vals)
    if last_adx is None:
        return ADXResult(adx=20.0, plus_di=_last(plus_di) or 0.0, minus_di=_last(minus_di) or 0.0)
    return ADXResult(adx=last_adx, plus_di=float(plus_di[-1]), minus_di=float(minus_di[-1]))


# ---------------------------------------------------------------------------
# 布林带
# ---------------------------------------------------------------------------

def bollinger_bands(closes: Sequence[float], period: int = 20, std_dev: float = 2.0) -> BollingerBands | None:
    """布林带（总体标准差）；样本不足时三条轨道都取均值、带宽为 0。"""
    data = _as_array(closes)
    if len(data) == 0:
        return None
    if len(data) < period:
        avg = float(np.mean(data))
        return BollingerBands(upper=avg, middle=avg, lower=avg, bandwidth=0.0)
    window = data[-period:]
    middle = float(np.mean(window))
    sd = float(np.std(window))
    upper = middle + std_dev * sd
    lower = middle - std_dev * sd
    bandwidth = (upper - lower) / middle * 100.0 if middle else 0.0
    return BollingerBands(upper=upper, middle=middle, lower=lower, bandwidth=bandwidth)


def bollinger_position(price: float, bands: BollingerBands | None) -> float:
    """价格在带内的位置，0=下轨，1=上轨，裁剪到 [0, 1]。"""
    if bands is None or bands.upper == bands.lower:
        return 0.5
    pos = (price - bands.lower) / (bands.upper - bands.lower)
    return float(min(1.0, max(0.0, pos)))


def volume_ratio(volumes: Sequence[float]) -> float | None:
    """最新成交量 / 之前成交量均值。"""
    data = _as_array(volumes)
    if len(data) < 2:
        return None
    avg = float(np.mean(data[:-1]))
    if avg == 0:
        return None
    return float(data[-1]) / avg
