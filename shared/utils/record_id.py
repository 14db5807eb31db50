"""持久化记录的确定性 ID。

同一份配置（品种/方向/触发/名称）在重启后得到同一个 ID，
这样存储里的执行时间戳、累计投入等状态可以挂回到对应配置上。
"""

from __future__ import annotations

import hashlib


def make_record_id(prefix: str, *parts: object) -> str:
    raw = "|".join(str(p) if p is not None else "" for p in parts)
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}_{digest}"
