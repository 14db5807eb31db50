"""持久化记录的版本迁移链。

每条记录都带 `schema_version`（缺失视为 v1），读取时逐级升级到当前版本：
v1 → v2 → ...；遇到比当前更新的版本直接报错，不做猜测。
"""

from __future__ import annotations

from typing import Any, Callable

Record = dict[str, Any]
MigrationStep = Callable[[Record], Record]


class MigrationChain:
    def __init__(self, kind: str, current_version: int):
        if current_version < 1:
            raise ValueError("current_version must be >= 1")
        self.kind = kind
        self.current_version = current_version
        self._steps: dict[int, MigrationStep] = {}

    def register(self, from_version: int) -> Callable[[MigrationStep], MigrationStep]:
        """装饰器：注册 from_version → from_version+1 的升级函数。"""

        def deco(fn: MigrationStep) -> MigrationStep:
            if from_version in self._steps:
                raise ValueError(f"Duplicate migration for {self.kind} v{from_version}")
            self._steps[from_version] = fn
            return fn

        return deco

    def version_of(self, record: Record) -> int:
        return int(record.get("schema_version") or 1)

    def needs_upgrade(self, record: Record) -> bool:
        return self.version_of(record) < self.current_version

    def upgrade(self, record: Record) -> Record:
        version = self.version_of(record)
        if version > self.current_version:
            raise ValueError(
                f"Unknown schema_version {version} for {self.kind} (supported up to {self.current_version})"
            )
        out = dict(record)
        while version < self.current_version:
            step = self._steps.get(version)
            if step is None:
                raise ValueError(f"No migration registered for {self.kind} v{version} -> v{version + 1}")
            out = step(dict(out))
            version += 1
            out["schema_version"] = version
        out["schema_version"] = version
        return out


# ---------------------------------------------------------------------------
# 内置迁移
# ---------------------------------------------------------------------------

RULE_MIGRATIONS = MigrationChain("rule", current_version=2)


@RULE_MIGRATIONS.register(1)
def _rule_v1_to_v2(record: Record) -> Record:
    """v1：方向字段叫 type、触发字段叫 rule_type（pattern/macd），且没有止损与移动止损。

    v2 统一字段名，并给缺失的止损/移动止损补上默认值 1% / 0.75%。
    """
    if "type" in record and "direction" not in record:
        record["direction"] = record.pop("type")
    rule_type = record.pop("rule_type", None)
    if rule_type is not None and "trigger" not in record:
        record["trigger"] = "indicator_crossover" if rule_type == "macd" else "pattern"
    if record.get("stop_loss_percent") is None:
        record["stop_loss_percent"] = 1.0
    if record.get("trailing_stop_percent") is None:
        record["trailing_stop_percent"] = 0.75
    return record


DCA_MIGRATIONS = MigrationChain("dca", current_version=1)
GRID_MIGRATIONS = MigrationChain("grid", current_version=1)
PORTFOLIO_MIGRATIONS = MigrationChain("portfolio", current_version=1)

DEFAULT_MIGRATIONS: dict[str, MigrationChain] = {
    "rule": RULE_MIGRATIONS,
    "dca": DCA_MIGRATIONS,
    "grid": GRID_MIGRATIONS,
    "portfolio": PORTFOLIO_MIGRATIONS,
}
