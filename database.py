# database.py
import json
import sqlite3
import logging
from datetime import datetime

logger = logging.getLogger("pos_system.database")


class Database:
    """
    Durable key-value store on SQLite. Holds the cart snapshot, the
    fulfillment method and the applied promotion id between sessions.
    Writes are last-writer-wins.
    """
    def __init__(self, db_name: str = "pos.db"):
        self.conn = sqlite3.connect(db_name)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        cur = self.conn.cursor()
        cur.execute("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT
        )
        """)
        self.conn.commit()

    def get(self, key: str, default=None):
        """Fetch the raw string stored under key."""
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cur.fetchone()
        return row['value'] if row else default

    def set(self, key: str, value: str):
        """Insert or replace the value stored under key."""
        ts = datetime.now().isoformat(timespec='seconds')
        cur = self.conn.cursor()
        cur.execute("""
        INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (key, str(value), ts))
        self.conn.commit()

    def delete(self, key: str):
        cur = self.conn.cursor()
        cur.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self.conn.commit()
        return cur.rowcount > 0

    def get_json(self, key: str, default=None):
        """Decode a JSON value; unreadable entries are treated as missing."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.error(f"Discarding unreadable value stored under '{key}'")
            return default

    def set_json(self, key: str, value):
        self.set(key, json.dumps(value))

    def keys(self):
        cur = self.conn.cursor()
        cur.execute("SELECT key FROM kv_store ORDER BY key")
        return [row['key'] for row in cur.fetchall()]

    def close(self):
        self.conn.close()
