from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from .utils import utc_now_iso

ACTIVE_JOBS_KEY = "report_builder.active_reports"


class StateStore:
    """Durable key/value store backed by a single sqlite table."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        row = self.conn.execute("SELECT value_json FROM kv_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            return default

    def set(self, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO kv_state(key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), utc_now_iso()),
        )
        self.conn.commit()


class ActiveJobRepository(Protocol):
    def load(self) -> list[str]: ...

    def save(self, snapshot: list[str]) -> None: ...


def _clean_snapshot(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    output: list[str] = []
    for item in raw:
        if isinstance(item, str) and item and item not in output:
            output.append(item)
    return output


class SqliteActiveJobRepository:
    def __init__(self, store: StateStore, key: str = ACTIVE_JOBS_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> list[str]:
        return _clean_snapshot(self.store.get(self.key, []))

    def save(self, snapshot: list[str]) -> None:
        self.store.set(self.key, list(snapshot))


class MemoryActiveJobRepository:
    def __init__(self, initial: list[str] | None = None) -> None:
        self.saved: list[str] = _clean_snapshot(initial or [])
        self.save_count = 0

    def load(self) -> list[str]:
        return list(self.saved)

    def save(self, snapshot: list[str]) -> None:
        self.saved = list(snapshot)
        self.save_count += 1
