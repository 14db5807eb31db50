"""dataclass <-> JSON 记录的转换。"""

from __future__ import annotations

from dataclasses import asdict, fields, is_dataclass
from datetime import datetime
from typing import Any

from shared.models.models import (
    DCAConfig,
    GridConfig,
    GridOrder,
    MacdSettings,
    Position,
    RsiFilter,
    RuleAction,
    TradingRule,
    VolumeFilter,
)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


def to_record(obj: Any) -> dict[str, Any]:
    if not is_dataclass(obj):
        raise TypeError(f"Expected a dataclass instance, got {type(obj).__name__}")
    return _encode(asdict(obj))


def _dt(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _known(cls, record: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in record.items() if k in names}


def rule_from_record(record: dict[str, Any]) -> TradingRule:
    data = _known(TradingRule, record)
    data["rsi_filter"] = RsiFilter(**(data.get("rsi_filter") or {}))
    data["volume_filter"] = VolumeFilter(**(data.get("volume_filter") or {}))
    data["action"] = RuleAction(**(data.get("action") or {}))
    if data.get("macd_settings"):
        data["macd_settings"] = MacdSettings(**data["macd_settings"])
    data["last_executed_at"] = _dt(data.get("last_executed_at"))
    return TradingRule(**data)


def dca_from_record(record: dict[str, Any]) -> DCAConfig:
    data = _known(DCAConfig, record)
    data["next_execution"] = _dt(data.get("next_execution"))
    data["last_executed"] = _dt(data.get("last_executed"))
    return DCAConfig(**data)


def grid_from_record(record: dict[str, Any]) -> GridConfig:
    data = _known(GridConfig, record)
    data["active_orders"] = [
        GridOrder(**{**o, "filled_at": _dt(o.get("filled_at"))}) for o in data.get("active_orders") or []
    ]
    return GridConfig(**data)


def position_from_record(record: dict[str, Any]) -> Position:
    data = _known(Position, record)
    data["entry_date"] = _dt(data.get("entry_date"))
    return Position(**data)
