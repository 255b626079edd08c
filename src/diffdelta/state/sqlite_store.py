from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import UTC, datetime


logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class SqliteCursorStore:
    """
    SQLite cursor 存储：适合多个进程共享同一份 cursor 的场景。

    表设计：
    - cursors(feed_key PRIMARY KEY, cursor, updated_at)

    每次 set 是一次 upsert 事务，不存在 JSON 文件整体覆盖的问题。
    与 JsonCursorStore 一样不抛异常：数据库不可用时退化为进程内字典。
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        self._fallback: dict[str, str] = {}
        self._lock = threading.Lock()
        self._degraded = False
        try:
            self._ensure_schema()
        except sqlite3.Error as e:
            self._degrade("ensure_schema", e)

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.sqlite_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cursors (
                        feed_key TEXT PRIMARY KEY,
                        cursor TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        finally:
            conn.close()

    def _degrade(self, op: str, error: Exception) -> None:
        if not self._degraded:
            logger.warning(
                "cursor database unavailable, keeping cursors in memory only: op=%s path=%s error=%s",
                op,
                self.sqlite_path,
                error,
            )
        self._degraded = True

    def get(self, key: str) -> str | None:
        with self._lock:
            if self._degraded:
                return self._fallback.get(key)
            try:
                conn = self._connect()
                try:
                    row = conn.execute("SELECT cursor FROM cursors WHERE feed_key = ?", (key,)).fetchone()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                self._degrade("get", e)
                return self._fallback.get(key)
            return row["cursor"] if row else None

    def set(self, key: str, cursor: str) -> None:
        with self._lock:
            self._fallback[key] = cursor
            if self._degraded:
                return
            try:
                conn = self._connect()
                try:
                    with conn:
                        conn.execute(
                            """
                            INSERT INTO cursors(feed_key, cursor, updated_at)
                            VALUES(?, ?, ?)
                            ON CONFLICT(feed_key) DO UPDATE SET
                                cursor=excluded.cursor,
                                updated_at=excluded.updated_at
                            """,
                            (key, cursor, _utc_now_iso()),
                        )
                finally:
                    conn.close()
            except sqlite3.Error as e:
                self._degrade("set", e)

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._fallback.clear()
            else:
                self._fallback.pop(key, None)
            if self._degraded:
                return
            try:
                conn = self._connect()
                try:
                    with conn:
                        if key is None:
                            conn.execute("DELETE FROM cursors")
                        else:
                            conn.execute("DELETE FROM cursors WHERE feed_key = ?", (key,))
                finally:
                    conn.close()
            except sqlite3.Error as e:
                self._degrade("clear", e)
