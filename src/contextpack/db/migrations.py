"""Forward-only migration runner for the contextpack metadata schema.

Vec tables (vec_chunks_*) are NOT migration-managed — use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# created_at carries millisecond precision: recency ordering depends on it.
_V1_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
    id              INTEGER PRIMARY KEY,
    chunk_id        TEXT NOT NULL UNIQUE,
    project_id      TEXT NOT NULL,
    path            TEXT NOT NULL,
    token_offset    INTEGER NOT NULL,
    token_count     INTEGER NOT NULL,
    content_hash    TEXT NOT NULL UNIQUE,
    kind            TEXT NOT NULL
                    CHECK (kind IN ('code', 'binary', 'conversation', 'log')),
    language        TEXT NOT NULL DEFAULT 'text',
    blob_key        TEXT NOT NULL,
    mime_type       TEXT,
    size_bytes      INTEGER,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_project_path ON chunks(project_id, path);
CREATE INDEX IF NOT EXISTS idx_chunks_project_kind ON chunks(project_id, kind, created_at);

CREATE TABLE IF NOT EXISTS summaries (
    id              INTEGER PRIMARY KEY,
    summary_id      TEXT NOT NULL UNIQUE,
    project_id      TEXT NOT NULL,
    path            TEXT NOT NULL,
    level           TEXT NOT NULL CHECK (level IN ('chunk', 'file', 'project')),
    token_count     INTEGER NOT NULL,
    blob_key        TEXT NOT NULL,
    embedding       BLOB,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_summaries_project_path ON summaries(project_id, path);
CREATE INDEX IF NOT EXISTS idx_summaries_project_level ON summaries(project_id, level);

CREATE TABLE IF NOT EXISTS context_sessions (
    session_id      TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
    chunks_used     TEXT NOT NULL DEFAULT '[]',
    tokens_at_call  INTEGER NOT NULL,
    model           TEXT NOT NULL,
    result_meta     TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON context_sessions(project_id);

CREATE TABLE IF NOT EXISTS cache_entries (
    key             TEXT PRIMARY KEY,
    value           TEXT NOT NULL,
    expires_at      REAL NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here — use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
