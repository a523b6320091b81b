"""SQLite-backed key-value store with per-key expiry."""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """The backing store is missing or cannot be reached."""


# DB helpers
class KVStore:
    """One logical key space; keys written with a ttl vanish once it lapses.

    Expired rows are never returned by reads. ``purge_expired`` deletes them
    physically and is run periodically by the server.
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time):
        if not db_path:
            raise StoreUnavailable("KV_BINDING_MISSING")
        self.db_path = db_path
        self.clock = clock
        self.init_db()

    def get_conn(self):
        try:
            return sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open store at {self.db_path}: {e}") from e

    def init_db(self):
        with self._cursor() as c:
            c.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at INTEGER DEFAULT NULL
            )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS kv_expires_at ON kv (expires_at)")

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    @contextmanager
    def _cursor(self):
        conn = self.get_conn()
        try:
            c = conn.cursor()
            yield c
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Group several writes so they commit together or not at all."""
        with self._cursor() as c:
            yield _Batch(c, self._now_ms())

    def get(self, key: str) -> Optional[str]:
        with self._cursor() as c:
            c.execute(
                "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, self._now_ms())
            )
            row = c.fetchone()
        return row[0] if row else None

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON value stored under {key}")
            return default

    def put(self, key: str, value: str, ttl: Optional[int] = None):
        with self.transaction() as batch:
            batch.put(key, value, ttl)

    def put_json(self, key: str, value: Any, ttl: Optional[int] = None):
        self.put(key, json.dumps(value), ttl)

    def delete(self, key: str):
        with self.transaction() as batch:
            batch.delete(key)

    def purge_expired(self) -> int:
        with self._cursor() as c:
            c.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._now_ms(),)
            )
            removed = c.rowcount
        if removed:
            logger.info(f"Purged {removed} expired key(s)")
        return removed


class _Batch:
    def __init__(self, cursor, now_ms: int):
        self._c = cursor
        self._now_ms = now_ms

    def put(self, key: str, value: str, ttl: Optional[int] = None):
        expires_at = self._now_ms + ttl * 1000 if ttl else None
        self._c.execute(
            "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at)
        )

    def put_json(self, key: str, value: Any, ttl: Optional[int] = None):
        self.put(key, json.dumps(value), ttl)

    def delete(self, key: str):
        self._c.execute("DELETE FROM kv WHERE key = ?", (key,))
