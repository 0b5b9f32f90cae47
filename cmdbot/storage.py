from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from cryptography.fernet import InvalidToken

from cmdbot.security import ValueCipher


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyValueStore:
    def __init__(self, db_path: str | Path, cipher: ValueCipher | None = None) -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._cipher = cipher
        self._logger = logging.getLogger("storage")
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                encrypted INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def get(self, key: str) -> str | None:
        cur = self._conn.cursor()
        cur.execute("SELECT value, encrypted FROM kv WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        if not row["encrypted"]:
            return row["value"]
        if self._cipher is None:
            self._logger.warning("Encrypted value without cipher key=%s", key)
            return None
        try:
            return self._cipher.decrypt(row["value"])
        except InvalidToken:
            self._logger.warning("Failed to decrypt value key=%s", key)
            return None

    def put(self, key: str, value: str) -> None:
        encrypted = self._cipher is not None
        stored = self._cipher.encrypt(value) if self._cipher is not None else value
        cur = self._conn.cursor()
        cur.execute(
            """
            INSERT INTO kv (key, value, encrypted, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value=excluded.value,
                encrypted=excluded.encrypted,
                updated_at=excluded.updated_at
            """,
            (key, stored, 1 if encrypted else 0, _utc_now()),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        cur = self._conn.cursor()
        cur.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
