"""SQLite 本地记录存储。

设计
----
- 每类记录一张表（rule / dca / grid / portfolio），主键为记录 ID；
- payload 以 JSON 存储，并带 `schema_version`；
- 读取时经 `MigrationChain` 升级到当前版本，升级后的记录回写。
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.state.migrations import DEFAULT_MIGRATIONS, MigrationChain


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


class RecordStore:
    def __init__(self, path: str | Path, migrations: dict[str, MigrationChain] | None = None):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.migrations = dict(migrations or DEFAULT_MIGRATIONS)
        self._conn = sqlite3.connect(str(path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _table(self, kind: str) -> str:
        if kind not in self.migrations:
            raise ValueError(f"Unknown record kind: {kind}")
        return f"{kind}_records"

    def _ensure_schema(self) -> None:
        for kind in self.migrations:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table(kind)} (
                  id TEXT PRIMARY KEY,
                  schema_version INTEGER NOT NULL,
                  payload_json TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );
                """
            )

    def save(self, kind: str, record_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        table = self._table(kind)
        data = dict(payload)
        data.setdefault("schema_version", self.migrations[kind].current_version)
        self._conn.execute(
            f"""
            INSERT INTO {table} (id, schema_version, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              schema_version = excluded.schema_version,
              payload_json = excluded.payload_json,
              updated_at = excluded.updated_at;
            """,
            (record_id, int(data["schema_version"]), _json_dumps(data), _utc_now_iso()),
        )
        return data

    def _migrate(self, kind: str, record_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        chain = self.migrations[kind]
        if not chain.needs_upgrade(payload):
            return chain.upgrade(payload)
        upgraded = chain.upgrade(payload)
        self.save(kind, record_id, upgraded)
        return upgraded

    def load(self, kind: str, record_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            f"SELECT payload_json FROM {self._table(kind)} WHERE id = ? LIMIT 1;", (record_id,)
        ).fetchone()
        if row is None:
            return None
        return self._migrate(kind, record_id, json.loads(row[0]))

    def load_all(self, kind: str) -> dict[str, dict[str, Any]]:
        rows = self._conn.execute(f"SELECT id, payload_json FROM {self._table(kind)} ORDER BY id;").fetchall()
        return {str(rid): self._migrate(kind, str(rid), json.loads(raw)) for rid, raw in rows}

    def delete(self, kind: str, record_id: str) -> bool:
        cur = self._conn.execute(f"DELETE FROM {self._table(kind)} WHERE id = ?;", (record_id,))
        return cur.rowcount > 0
