"""检测器注册表。外部形态库通过 `register_detector` 接入。"""

from __future__ import annotations

from typing import Any, Callable

from patterns.base import CompositeDetector, PatternDetector
from patterns.macd_cross import MACDCrossoverDetector

_REGISTRY: dict[str, Callable[..., PatternDetector]] = {}


def register_detector(name: str, factory: Callable[..., PatternDetector]) -> None:
    _REGISTRY[name] = factory


def get_detector_factory(name: str) -> Callable[..., PatternDetector]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown pattern detector: {name}")
    return _REGISTRY[name]


def build_detector(items: list[Any] | None) -> PatternDetector:
    """按配置构建检测器；多个时合并为 CompositeDetector。

    `items` 元素可以是名称字符串，或 `{name: ..., **params}`。
    """
    detectors: list[PatternDetector] = []
    for item in items or ["macd_cross"]:
        if isinstance(item, str):
            detectors.append(get_detector_factory(item)())
            continue
        if not isinstance(item, dict) or not item.get("name"):
            raise ValueError("detector item must be a name or a dict with 'name'")
        params = {k: v for k, v in item.items() if k != "name"}
        detectors.append(get_detector_factory(str(item["name"]))(**params))
    if len(detectors) == 1:
        return detectors[0]
    return CompositeDetector(detectors=detectors)


register_detector("macd_cross", MACDCrossoverDetector)
