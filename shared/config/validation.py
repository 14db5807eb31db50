"""配置 Schema 预校验。

在交给 pydantic 之前先检查未知键，给出 "did you mean" 提示；
类型与取值范围由 `shared.config.schema` 负责。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from pydantic import BaseModel

from rules.profiles import PRESETS
from shared.config.schema import MainConfig


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _expect_dict(val: Any, *, ctx: str) -> dict[str, Any]:
    if not isinstance(val, dict):
        raise ValueError(f"{ctx} must be a dict")
    return val


def _section_model(model: type[BaseModel], field_name: str) -> type[BaseModel] | None:
    annotation = model.model_fields[field_name].annotation
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    return None


def _validate_block(block: dict[str, Any], model: type[BaseModel], *, ctx: str) -> None:
    _ensure_allowed_keys(block, allowed=set(model.model_fields), ctx=ctx)
    for key, value in block.items():
        sub = _section_model(model, key)
        if sub is not None and isinstance(value, dict):
            _validate_block(value, sub, ctx=f"{ctx}.{key}")


def _validate_rules(rules: Any, extra_profiles: Iterable[str] = ()) -> None:
    if not isinstance(rules, list):
        raise ValueError("config.rules must be a list")
    known = set(PRESETS) | set(extra_profiles)
    for i, item in enumerate(rules):
        rule = _expect_dict(item, ctx=f"config.rules[{i}]")
        if "symbol" not in rule:
            raise ValueError(f"Missing required config key: config.rules[{i}].symbol")
        profile = rule.get("profile")
        if profile is not None and profile not in known:
            suggestion = _suggest_key(str(profile), known)
            hint = f" (did you mean '{suggestion}'?)" if suggestion else ""
            raise ValueError(f"config.rules[{i}].profile unknown: {profile}{hint}")


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")
    _ensure_allowed_keys(cfg, allowed=set(MainConfig.model_fields), ctx="config")

    for key, value in cfg.items():
        if value is None:
            continue
        if key == "rules":
            _validate_rules(value)
            continue
        sub = _section_model(MainConfig, key)
        if sub is not None:
            _validate_block(_expect_dict(value, ctx=f"config.{key}"), sub, ctx=f"config.{key}")
