"""Key/value cache with per-entry expiry, stored in the metadata database.

Semantics follow a plain get / set-with-TTL cache: expired entries read as
missing and are purged lazily. Pattern enumeration uses shell-style globs
(``context:P1:*``) for bulk invalidation.
"""

from __future__ import annotations

import sqlite3
import time
from typing import Callable, Protocol


class CacheStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set_with_ttl(self, key: str, value: str, seconds: int) -> None: ...

    def keys(self, pattern: str) -> list[str]: ...

    def delete(self, *keys: str) -> int: ...

    def purge_expired(self) -> int: ...


class SqliteCacheStore:
    """CacheStore backed by the ``cache_entries`` table.

    Args:
        conn: Open connection with the schema initialised.
        clock: Returns the current time in seconds (injectable for tests).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._conn = conn
        self._clock = clock

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            self._conn.execute(
                "DELETE FROM cache_entries WHERE key = ? AND expires_at <= ?",
                (key, self._clock()),
            )
            self._conn.commit()
            return None
        return row["value"]

    def set_with_ttl(self, key: str, value: str, seconds: int) -> None:
        self._conn.execute(
            """
            INSERT INTO cache_entries (key, value, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                expires_at = excluded.expires_at
            """,
            (key, value, self._clock() + seconds),
        )
        self._conn.commit()

    def keys(self, pattern: str) -> list[str]:
        """Return live keys matching the glob *pattern*."""
        rows = self._conn.execute(
            "SELECT key FROM cache_entries WHERE key GLOB ? AND expires_at > ? ORDER BY key",
            (pattern, self._clock()),
        ).fetchall()
        return [r["key"] for r in rows]

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        placeholders = ",".join("?" * len(keys))
        cur = self._conn.execute(
            f"DELETE FROM cache_entries WHERE key IN ({placeholders})", keys
        )
        self._conn.commit()
        return cur.rowcount

    def purge_expired(self) -> int:
        cur = self._conn.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
        )
        self._conn.commit()
        return cur.rowcount


def glob_escape(text: str) -> str:
    """Escape GLOB metacharacters so *text* matches literally."""
    return "".join(f"[{c}]" if c in "*?[" else c for c in text)
