"""自动交易前的过滤条件：置信度、量能、RSI。"""

from __future__ import annotations

from dataclasses import dataclass

from shared.models.models import TradingRule


@dataclass(frozen=True)
class FilterResult:
    passed: bool
    reason: str | None = None


PASSED = FilterResult(True)


def check_confidence(rule: TradingRule, confidence: float | None) -> FilterResult:
    if not rule.min_confidence or confidence is None:
        return PASSED
    if confidence < rule.min_confidence:
        return FilterResult(False, f"Confidence {confidence:.0f}% < min {rule.min_confidence:.0f}%")
    return PASSED


def check_volume_filter(rule: TradingRule, volume_ratio: float | None) -> FilterResult:
    """volume_ratio = 最新成交量 / 之前均量；缺数据时不放行。"""
    if not rule.volume_filter.enabled:
        return PASSED
    if volume_ratio is None:
        return FilterResult(False, "Not enough data to calculate volume average")
    required = rule.volume_filter.min_multiplier
    if volume_ratio < required:
        return FilterResult(False, f"Volume {volume_ratio:.2f}x < min {required}x avg")
    return PASSED


def check_rsi_filter(rule: TradingRule, rsi_value: float | None) -> FilterResult:
    if not rule.rsi_filter.enabled:
        return PASSED
    if rsi_value is None:
        return FilterResult(False, "Not enough data to calculate RSI")
    f = rule.rsi_filter
    if f.min_rsi is not None and rsi_value < f.min_rsi:
        return FilterResult(False, f"RSI {rsi_value:.1f} < min {f.min_rsi}")
    if f.max_rsi is not None and rsi_value > f.max_rsi:
        return FilterResult(False, f"RSI {rsi_value:.1f} > max {f.max_rsi}")
    return PASSED
