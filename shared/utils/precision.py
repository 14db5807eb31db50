"""数量精度工具：按步进向下取整（整股 / 加密货币小数单位）。"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂）推导小数位数。"""
    d = Decimal(str(step))
    if d <= 0:
        return 0
    return max(0, -int(d.normalize().as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍，避免 0.30000000000004 这类浮点噪声。"""
    if step is None or step <= 0:
        return float(value)
    sd = Decimal(str(step))
    n = (Decimal(str(value)) / sd).to_integral_value(rounding=ROUND_FLOOR)
    decs = decimals_from_step(step)
    return float(round(float(n * sd), decs))
