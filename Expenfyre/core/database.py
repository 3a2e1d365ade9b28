"""
Local SQLite key-value store with per-key expiry.

Stands in for a TTL-capable key-value service: values are strings, keys are namespaced by a
``prefix:`` convention, and rows past their ``expires_at`` behave as absent on every read.
Expired rows stay on disk until :meth:`KeyValueStore.purge_expired` removes them.
"""

import datetime
import enum
import logging
import pathlib
import sqlite3
import time
from typing import Callable, Dict, List, Optional

# Define the expected schema for the key-value table
KV_SCHEMA: Dict[str, str] = {
    'key': 'TEXT PRIMARY KEY',
    'value': 'TEXT NOT NULL',
    'expires_at': 'REAL',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    KeyValue = 'kv'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string with a ``Z`` suffix.

    Returns:
        str: Current UTC date and time, e.g. ``2024-01-15T10:00:00.000Z``.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class KeyValueStore:
    """String key-value store with optional time-to-live, backed by a SQLite file.

    Every call opens its own connection, so one instance can be shared between request
    threads.

    Args:
        path: Path to the SQLite database file. Parent directories are created.
        clock: Callable returning the current epoch time in seconds.
    """

    def __init__(self, path, clock: Callable[[], float] = time.time) -> None:
        self.path = pathlib.Path(path)
        self.clock = clock
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_table()

    def connection(self) -> sqlite3.Connection:
        """Open a new connection to the store."""
        return sqlite3.connect(str(self.path), timeout=2.0)

    def _init_table(self) -> None:
        columns = ', '.join(f'"{k}" {v}' for k, v in KV_SCHEMA.items())
        conn = self.connection()
        try:
            conn.execute(f'CREATE TABLE IF NOT EXISTS {Table.KeyValue} ({columns})')
            conn.commit()
        finally:
            conn.close()
        logging.debug(f'Key-value store ready at "{self.path}"')

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        if ttl is None:
            return None
        return self.clock() + ttl

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None if it is absent or expired."""
        conn = self.connection()
        try:
            row = conn.execute(
                f'SELECT value, expires_at FROM {Table.KeyValue} WHERE key = ?', (key,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self.clock():
            return None
        return value

    def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, replacing any previous value and expiry.

        Args:
            key: The key.
            value: The string value.
            ttl: Seconds until the entry expires. None keeps it forever.
        """
        conn = self.connection()
        try:
            conn.execute(
                f'INSERT OR REPLACE INTO {Table.KeyValue} (key, value, expires_at) VALUES (?, ?, ?)',
                (key, str(value), self._expiry(ttl))
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are ignored."""
        conn = self.connection()
        try:
            conn.execute(f'DELETE FROM {Table.KeyValue} WHERE key = ?', (key,))
            conn.commit()
        finally:
            conn.close()

    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        """Increment the integer counter under ``key`` and return the new count.

        The expiry is set when the counter is created (or re-created after expiring) and is
        not extended by later increments, so the counter resets at the end of a fixed window.

        Args:
            key: The counter key.
            ttl: Window length in seconds for a newly created counter.

        Returns:
            int: The counter value after incrementing.
        """
        conn = self.connection()
        try:
            with conn:
                row = conn.execute(
                    f'SELECT value, expires_at FROM {Table.KeyValue} WHERE key = ?', (key,)
                ).fetchone()
                now = self.clock()
                if row is None or (row[1] is not None and row[1] <= now):
                    count, expires_at = 1, self._expiry(ttl)
                else:
                    try:
                        count = int(row[0]) + 1
                    except ValueError:
                        count = 1
                    expires_at = row[1]
                conn.execute(
                    f'INSERT OR REPLACE INTO {Table.KeyValue} (key, value, expires_at) VALUES (?, ?, ?)',
                    (key, str(count), expires_at)
                )
        finally:
            conn.close()
        return count

    def list_keys(self, prefix: str = '', include_expired: bool = False) -> List[str]:
        """List keys starting with ``prefix``.

        Args:
            prefix: Key prefix, e.g. ``refresh_token:``.
            include_expired: Also list keys whose entries have expired but were not purged.

        Returns:
            list[str]: Matching keys in key order.
        """
        escaped = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
        sql = f"SELECT key FROM {Table.KeyValue} WHERE key LIKE ? ESCAPE '\\'"
        args = [f'{escaped}%']
        if not include_expired:
            sql += ' AND (expires_at IS NULL OR expires_at > ?)'
            args.append(self.clock())
        sql += ' ORDER BY key'

        conn = self.connection()
        try:
            rows = conn.execute(sql, args).fetchall()
        finally:
            conn.close()
        return [r[0] for r in rows]

    def items(self, prefix: str = '') -> Dict[str, str]:
        """Return a mapping of live keys to values for keys starting with ``prefix``."""
        result = {}
        for key in self.list_keys(prefix):
            value = self.get(key)
            if value is not None:
                result[key] = value
        return result

    def purge_expired(self, prefix: str = '') -> int:
        """Delete expired entries under ``prefix`` and return how many were removed."""
        now = self.clock()
        expired = [k for k in self.list_keys(prefix, include_expired=True) if self.get(k) is None]
        if not expired:
            return 0

        conn = self.connection()
        try:
            with conn:
                conn.executemany(
                    f'DELETE FROM {Table.KeyValue} WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?',
                    [(k, now) for k in expired]
                )
        finally:
            conn.close()
        logging.debug(f'Purged {len(expired)} expired "{prefix}" entries.')
        return len(expired)
